"""Optional script hooks and event delegation."""

import pytest

from qjs_python import Class, EventDelegate, Hook, MissingCapability


def make_handler(context, **hooks):
    return context.new_value(hooks)


def test_handler_with_only_close_hook(context, logs):
    closed = []

    def on_close(ctx, args):
        closed.append(True)

    with make_handler(context, onClose=on_close) as handler, EventDelegate(context, handler) as delegate:
        assert delegate.supports("close")
        assert not delegate.supports("size")
        assert delegate.events() == ["close"]

        delegate.on_close()
        delegate.on_size(640, 480)

    assert closed == [True]
    assert logs == ["no function named 'onSize'"]


def test_event_arguments(context):
    received = []

    def on_size(ctx, args):
        received.append((args[0].to_uint32(), args[1].to_uint32()))

    def on_drop_files(ctx, args):
        received.append(args[0].to_python())

    def on_key_down(ctx, args):
        received.append(args[0].to_int32())
        return True

    handler = make_handler(context, onSize=on_size, onDropFiles=on_drop_files, onKeyDown=on_key_down)
    with EventDelegate(context, handler) as delegate:
        delegate.on_size(640, 480)
        delegate.on_drop_files(("a.txt", "b.txt"))
        with delegate.emit("key_down", 13) as result:
            assert result.to_bool()
    handler.dispose()
    assert received == [(640, 480), ["a.txt", "b.txt"], 13]


def test_unknown_event_name(context):
    with EventDelegate(context, context.new_object()) as delegate:
        with pytest.raises(KeyError):
            delegate.emit("resize")


def test_throwing_hook_is_logged(context, logs):
    def on_close(ctx, args):
        raise ValueError("cannot close")

    with EventDelegate(context, make_handler(context, onClose=on_close)) as delegate:
        delegate.on_close()
    assert len(logs) == 1
    assert logs[0].startswith("InternalError: cannot close\n    at on_close (native)")


def test_non_function_property_is_not_a_hook(context, logs):
    with EventDelegate(context, make_handler(context, onClose=5)) as delegate:
        assert not delegate.supports("close")
        delegate.on_close()
    assert logs == ["no function named 'onClose'"]


def test_hook_resolution(context):
    hook = Hook("onChar")
    with make_handler(context, onChar=lambda ctx, args: args[0].to_string().upper()) as handler:
        assert hook.available(handler)
        with hook.call(handler, "x") as result:
            assert result.to_string() == "X"
    with context.new_object() as empty:
        with pytest.raises(MissingCapability, match="no function named 'onChar'"):
            hook.resolve(empty)
    with context.new_int32(1) as not_an_object:
        assert not hook.available(not_an_object)


def test_notify_routes(context, logs):
    calls = []

    def save(ctx, args):
        calls.append(("save", args[0].to_string()))

    def click(ctx, args):
        calls.append(("click", len(args)))

    handler = context.new_value({"save": save, "toolbar": {"click": click}})
    with EventDelegate(context, handler) as delegate:
        assert delegate.notify("save", "doc.txt")
        assert delegate.notify("toolbar.click")
        assert not delegate.notify("load")
        assert not delegate.notify("menu.open")
        assert not delegate.notify("toolbar.hover")
    handler.dispose()

    assert calls == [("save", "doc.txt"), ("click", 0)]
    assert logs == ["no function named 'load'", "no object menu", "no property hover"]


def test_query_hooks(context):
    handler = make_handler(
        context,
        getSkinFile=lambda ctx, args: "main.xml",
        queryControlText=lambda ctx, args: f"{args[0].to_string()}:{args[1].to_string()}",
        createControl=lambda ctx, args: {"kind": args[0].to_string()},
    )
    with EventDelegate(context, handler) as delegate:
        assert delegate.get_skin_file() == "main.xml"
        assert delegate.get_skin_type() == ""
        assert delegate.get_manager_name() is None
        assert delegate.query_control_text("ok", "Button") == "ok:Button"
        with delegate.create_control("Chart") as control:
            assert control.to_python() == {"kind": "Chart"}
    handler.dispose()

    with EventDelegate(context, context.new_object()) as delegate:
        assert delegate.create_control("Chart") is None


class Frame:
    def __init__(self):
        self.delegate = None


def test_delegate_marked_by_its_owner_is_collected(context, runtime):
    released = []

    def dtor(frame):
        released.append(frame)
        frame.delegate.dispose()

    frames = Class(context, "Frame", Frame)
    frames.init(dtor=dtor, mark=lambda frame, mark: frame.delegate.mark(mark))

    frame = Frame()
    obj = frames.to_js(context, frame)
    obj.set_property("onClose", lambda ctx, args: None)
    # the proxy handles its own events
    frame.delegate = EventDelegate(context, obj)
    assert frame.delegate.events() == ["close"]
    obj.dispose()

    assert runtime.run_gc() == 2
    assert released == [frame]
