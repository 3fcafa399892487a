"""Engine behaviour the binding layer relies on: collection, limits, errors."""

import pytest

from qjs_python import ErrorKind, Runtime, ScriptException
from qjs_python._engine import JS_UNDEFINED, ClassDef, EngineError, JSValue, Tag


def test_reference_counting_frees_on_last_release(context, runtime):
    baseline = runtime.live_object_count
    obj = context.new_object()
    assert runtime.live_object_count == baseline + 1
    obj.dispose()
    assert runtime.live_object_count == baseline


def test_use_after_free_is_detected(context, runtime):
    obj = context.new_object()
    raw = obj.raw
    obj.dispose()
    with pytest.raises(EngineError):
        runtime.rt.free_value(raw)
    with pytest.raises(EngineError):
        runtime.rt.dup_value(raw)


def test_function_drops_bound_data_once(context, runtime):
    cell = context.new_object()
    raw = context.ctx.new_c_function_data(lambda *args: JS_UNDEFINED, 0, 0, [cell.raw], name="f")
    assert cell.ref_count == 2
    runtime.rt.free_value(raw)
    assert cell.ref_count == 1
    cell.dispose()


def test_functions_sharing_bound_data(context, runtime):
    baseline = runtime.live_object_count
    cell = context.new_object()
    first = context.ctx.new_c_function_data(lambda *args: JS_UNDEFINED, 0, 0, [cell.raw])
    second = context.ctx.new_c_function_data(lambda *args: JS_UNDEFINED, 0, 1, [cell.raw])
    cell.dispose()
    runtime.rt.free_value(first)
    assert runtime.live_object_count == baseline + 2
    runtime.rt.free_value(second)
    assert runtime.live_object_count == baseline


def test_collector_frees_unreachable_cycles(context, runtime):
    baseline = runtime.live_object_count
    a = context.new_object()
    b = context.new_object()
    a.set_property("peer", b)
    b.set_property("peer", a)
    a.dispose()
    b.dispose()

    # each keeps the other alive by reference count alone
    assert runtime.live_object_count == baseline + 2
    assert runtime.run_gc() == 2
    assert runtime.live_object_count == baseline


def test_collector_keeps_externally_held_cycles(context, runtime):
    a = context.new_object()
    b = context.new_object()
    a.set_property("peer", b)
    b.set_property("peer", a)
    b.dispose()

    assert runtime.run_gc() == 0
    with a.get_property("peer") as peer:
        assert peer.is_object()
    a.dispose()
    assert runtime.run_gc() == 2


def test_class_gc_mark_reports_hidden_edges(context, runtime):
    rt = runtime.rt
    held = {}

    def gc_mark(rt_, val, mark_func):
        for value in held.get(val.payload.id, ()):
            mark_func(value)

    def finalizer(rt_, val):
        for value in held.pop(val.payload.id, ()):
            rt_.free_value(value)

    class_id = rt.new_class_id()
    assert rt.new_class(class_id, ClassDef("Holder", finalizer, gc_mark)) == 0
    assert rt.new_class(class_id, ClassDef("Holder")) == -1

    baseline = runtime.live_object_count
    holder = context.new_class_object(class_id)
    # the holder retains a reference to itself outside any property table
    held[holder.raw.payload.id] = [holder.copy_value()]
    holder.dispose()

    assert runtime.live_object_count == baseline + 1
    assert runtime.run_gc() == 1
    assert runtime.live_object_count == baseline
    assert held == {}


def test_memory_limit_throws_out_of_memory(context, runtime):
    runtime.set_memory_limit(runtime.live_object_count + 2)
    first = context.new_object()
    second = context.new_object()
    with pytest.raises(ScriptException, match="InternalError: out of memory"):
        context.new_object()
    first.dispose()
    second.dispose()
    runtime.set_memory_limit(0)


def test_max_stack_size_limits_native_recursion():
    runtime = Runtime(max_stack_size=16)
    try:
        context = runtime.new_context()
        depth = []

        def recurse(inner, args):
            depth.append(1)
            with inner.global_object() as global_obj:
                return global_obj.invoke("recurse")

        with context.global_object() as global_obj:
            global_obj.set_property("recurse", context.new_function("recurse", recurse))
            with pytest.raises(ScriptException) as exc_info:
                global_obj.invoke("recurse")

        assert "InternalError: stack overflow" in str(exc_info.value)
        assert "    at recurse (native)" in str(exc_info.value)
        assert len(depth) == 16
    finally:
        runtime.dispose()


def test_error_objects_stringify_with_name(context):
    with context.new_error("boom", ErrorKind.TYPE) as err:
        assert err.is_error()
        assert err.to_string() == "TypeError: boom"
        with err.get_property("name") as name:
            assert name.to_string() == "TypeError"


def test_to_string_honours_script_method(context):
    obj = context.new_object()
    obj.set_property("toString", lambda ctx, args: "custom")
    assert str(obj) == "custom"
    obj.dispose()


def test_parse_json(context):
    with context.parse_json('{"a": [1, 2, {"b": "c"}], "d": null, "e": true}') as value:
        assert value.to_python() == {"a": [1, 2, {"b": "c"}], "d": None, "e": True}


def test_parse_json_reports_syntax_error(context):
    with pytest.raises(ScriptException, match="SyntaxError: data.json:1: Expecting value"):
        context.parse_json('{"a": }', "data.json")


def test_raw_values_compare_by_identity_for_objects(context):
    obj = context.new_object()
    assert JSValue(Tag.OBJECT, obj.raw.payload) == obj.raw
    assert JSValue(Tag.INT, 1) == JSValue(Tag.INT, 1)
    assert JSValue(Tag.INT, 1) != JSValue(Tag.FLOAT64, 1.0)
    obj.dispose()
