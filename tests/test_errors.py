"""Error conversion at the native boundary and error reporting."""

import pytest

from qjs_python import ErrorKind, ScriptException, Tag, WrongReceiverType
from qjs_python._runtime import throw_native_error


def raise_in_native(context, exc):
    def fail(ctx, args):
        raise exc

    with context.new_function("fail", fail) as func:
        with pytest.raises(ScriptException) as exc_info:
            func.call()
    return exc_info.value


def test_python_errors_become_internal_errors(context):
    err = raise_in_native(context, KeyError("missing"))
    assert str(err).startswith("InternalError: 'missing'")
    err = raise_in_native(context, RuntimeError())
    assert str(err).startswith("InternalError: RuntimeError")


def test_wrong_receiver_becomes_type_error(context):
    err = raise_in_native(context, WrongReceiverType("Widget"))
    assert str(err).startswith("TypeError: object is not an instance of Widget")
    assert err.value.is_error()


def test_script_exceptions_rethrow_the_same_value(context):
    thrown = context.new_error("original", ErrorKind.RANGE)

    def inner(ctx, args):
        ctx.ctx.throw(thrown.copy_value())
        raise ctx.take_exception()

    def outer(ctx, args):
        with ctx.global_object() as global_obj:
            return global_obj.invoke("inner")

    with context.global_object() as global_obj:
        global_obj.set_property("inner", inner)
        global_obj.set_property("outer", outer)
        with pytest.raises(ScriptException) as exc_info:
            global_obj.invoke("outer")
    assert exc_info.value.value == thrown
    assert str(exc_info.value).startswith("RangeError: original")
    thrown.dispose()


def test_exception_message_includes_native_stack(context):
    def fail(ctx, args):
        raise ValueError("deep")

    def middle(ctx, args):
        with ctx.global_object() as global_obj:
            return global_obj.invoke("fail")

    with context.global_object() as global_obj:
        global_obj.set_property("fail", fail)
        global_obj.set_property("middle", middle)
        with pytest.raises(ScriptException) as exc_info:
            global_obj.invoke("middle")
    assert str(exc_info.value) == (
        "InternalError: deep\n"
        "    at fail (native)\n"
        "    at middle (native)"
    )


def test_throw_helpers_return_exception_marker(context):
    marker = context.throw_range_error("too big")
    assert marker.is_exception()
    with pytest.raises(ScriptException, match="RangeError: too big"):
        raise context.take_exception()

    context.throw("plain")
    err = context.take_exception()
    assert str(err) == "plain"
    assert err.value.to_string() == "plain"


def test_throw_native_error_outside_a_call(context):
    assert throw_native_error(context, ValueError("bad")).tag == Tag.EXCEPTION
    with pytest.raises(ScriptException, match="InternalError: bad"):
        raise context.take_exception()


def test_dump_error_logs_message_and_stack(context, logs):
    def fail(ctx, args):
        raise ValueError("logged")

    with context.new_function("fail", fail) as func:
        raw = context.ctx.call(func.raw, func.raw, [])
    assert raw.tag == Tag.EXCEPTION
    context.dump_error()
    assert logs == ["InternalError: logged\n    at fail (native)"]
    assert not context.ctx.has_exception()


def test_failing_reaction_is_reported_as_rejection(context, logs):
    from qjs_python import Promise

    bridge = Promise(context)

    def handler(ctx, args):
        raise ValueError("in job")

    with bridge.promise() as p:
        p.invoke("then", handler).dispose()
    bridge.resolve(1)
    context.execute_jobs()
    # the failing handler rejects the derived promise, nobody handles it
    assert logs == ["Possibly unhandled promise rejection: InternalError: in job\n    at handler (native)"]
    bridge.dispose()


def test_failing_posted_task_is_logged(context, logs):
    def task():
        raise OSError("disk full")

    context.post_task(task)
    assert context.run_pending_tasks() == 1
    assert logs == ["posted task failed: OSError('disk full')"]


def test_posted_script_exception_is_logged_plainly(context, logs):
    def task():
        context.throw_type_error("from task")
        raise context.take_exception()

    context.post_task(task)
    context.run_pending_tasks()
    assert logs == ["TypeError: from task"]


def test_tasks_posted_to_a_disposed_context_are_skipped(runtime):
    context = runtime.new_context()
    ran = []
    context.post_task(lambda: ran.append(1))
    tasks = context.tasks
    context.dispose()
    assert tasks.run_pending() == 1
    assert ran == []


def test_log_defaults_to_stdout(context, capsys):
    context.log("hello")
    assert capsys.readouterr().out == "hello\n"
