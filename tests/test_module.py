"""Native modules and their two-phase export."""

import pytest

from qjs_python import ScriptException
from qjs_python._engine import ObjectState


def test_exports_appear_after_import(context):
    module = context.new_module("app")
    assert module.export_int32("FOO", 7)
    assert not module.linked
    assert context.ctx.modules["app"].exports == {}

    with context.import_module("app") as ns:
        assert module.linked
        with ns.get_property("FOO") as foo:
            assert foo.to_int32() == 7


def test_init_runs_once(context):
    module = context.new_module("app")
    module.export_string("name", "demo")
    for _ in range(3):
        context.import_module("app").dispose()
    assert module.flush_count == 1


def test_redeclaring_before_link_overwrites(context):
    module = context.new_module("app")
    module.export_int32("FOO", 1)
    module.export_int32("FOO", 2)
    with context.import_module("app") as ns:
        assert ns.get_properties() == ["FOO"]
        assert ns.get_property("FOO").to_int32() == 2


def test_cannot_export_after_link(context):
    module = context.new_module("app")
    module.export_int32("FOO", 7)
    context.import_module("app").dispose()
    with pytest.raises(RuntimeError, match="already linked"):
        module.export_int32("BAR", 8)


def test_typed_exports(context):
    module = context.new_module("app")
    module.export_uint32("u32", 2**32 - 1)
    module.export_int64("i64", -(2**40))
    module.export_uint64("u64", 2**64 - 1)
    module.export_float32("f32", 0.1)
    module.export_float64("f64", 0.1)
    module.export("data", {"items": [1, 2]})
    module.export_func("double", lambda ctx, args: args[0].to_int32() * 2)

    with context.import_module("app") as ns:
        assert ns.get_property("u32").to_uint32() == 2**32 - 1
        assert ns.get_property("i64").to_int64() == -(2**40)
        assert ns.get_property("u64").to_python() == 2**64 - 1
        assert ns.get_property("f32").to_float64() == pytest.approx(0.1, rel=1e-7)
        assert ns.get_property("f32").to_float64() != 0.1
        assert ns.get_property("f64").to_float64() == 0.1
        assert ns.get_property("data").to_python() == {"items": [1, 2]}
        with ns.invoke("double", 21) as result:
            assert result.to_int32() == 42


def test_lazy_export_is_built_at_link_time(context):
    calls = []

    def factory(ctx):
        calls.append(ctx)
        return "built"

    module = context.new_module("app")
    module.export_lazy("value", factory)
    assert calls == []
    with context.import_module("app") as ns:
        assert ns.get_property("value").to_string() == "built"
    assert calls == [context]


def test_failing_lazy_export_fails_the_module(context):
    def factory(ctx):
        raise ValueError("no config")

    module = context.new_module("app")
    module.export_lazy("config", factory)
    with pytest.raises(ScriptException, match="InternalError: no config"):
        context.import_module("app")
    with pytest.raises(ScriptException, match="module 'app' failed to initialize"):
        context.import_module("app")
    assert module.flush_count == 0


def test_unknown_module_is_a_reference_error(context):
    with pytest.raises(ScriptException, match="ReferenceError: could not load module 'missing'"):
        context.import_module("missing")


def test_duplicate_module_name(context):
    context.new_module("app")
    with pytest.raises(ValueError, match="already exists"):
        context.new_module("app")


def test_import_meta_url(context):
    module = context.new_module("app")
    with module.import_meta() as meta:
        assert meta.get_property("url").to_string() == "app"


def test_exported_class_constructor(context):
    class Point:
        def __init__(self, x, y):
            self.x = x
            self.y = y

    module = context.new_module("geometry")
    points = module.export_class("Point", Point).init()
    points.add_ctor(lambda ctx, args: Point(args[0].to_int32(), args[1].to_int32()), 2)
    points.add_get("x", lambda native, ctx: native.x)

    with context.global_object() as global_obj:
        assert not global_obj.has_property("Point")

    with context.import_module("geometry") as ns, ns.get_property("Point") as ctor:
        with ctor.construct(3, 4) as point:
            assert point.get_property("x").to_int32() == 3
            assert points.unwrap(point).y == 4


def test_pending_exports_released_on_teardown(runtime):
    context = runtime.new_context()
    module = context.new_module("app")
    data = context.new_object()
    module.export("data", data)
    raw = data.raw
    data.dispose()
    assert raw.payload.ref_count == 1

    context.dispose()
    assert raw.payload.state == ObjectState.FREED
