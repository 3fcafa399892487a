"""Weak and reference-counted ownership of bound natives."""

import gc

import pytest

from qjs_python import EngineError, RefClass, RefCounted, ScriptException, ScriptProxied, WeakClass


class Window(ScriptProxied):
    def __init__(self, title):
        self.title = title


class Texture(RefCounted):
    def __init__(self):
        self.destroy_calls = 0

    def destroy(self):
        self.destroy_calls += 1


@pytest.fixture
def windows(context):
    klass = WeakClass(context, "Window", Window).init()
    klass.add_func("title", lambda native, ctx, args: native.title)
    return klass


def test_weak_native_outlives_its_proxy(context, runtime, windows):
    native = Window("main")
    obj = windows.to_js(context, native)
    assert native.proxy == obj

    obj.dispose()
    assert native.proxy is None
    assert native.title == "main"

    # a fresh proxy works the same way
    with windows.to_js(context, native) as again:
        assert native.proxy == again
        with again.invoke("title") as title:
            assert title.to_string() == "main"


def test_weak_native_survives_proxy_collection(context, runtime, windows):
    native = Window("main")
    obj = windows.to_js(context, native)
    obj.set_property("self", obj)
    obj.dispose()

    assert runtime.run_gc() == 1
    assert native.proxy is None


def test_proxies_alias_one_native(context, windows):
    native = Window("main")
    first = windows.to_js(context, native)
    second = windows.to_js(context, native)
    assert windows.unwrap(first) is windows.unwrap(second) is native
    assert native.proxy == second

    # finalizing an older proxy leaves the current back-link alone
    first.dispose()
    assert native.proxy == second
    second.dispose()
    assert native.proxy is None


def test_weak_proxy_does_not_keep_native_alive(context, windows):
    native = Window("main")
    obj = windows.to_js(context, native)
    del native
    gc.collect()

    assert windows.to_c(obj) is None
    with pytest.raises(ScriptException, match="TypeError: object is not an instance of Window"):
        obj.invoke("title")
    obj.dispose()


def test_weak_native_is_not_destroyed_by_teardown(runtime):
    context = runtime.new_context()
    klass = WeakClass(context, "Window", Window).init()
    native = Window("main")
    obj = klass.to_js(context, native)
    context.dispose()
    assert native.proxy is None
    assert native.title == "main"
    obj.dispose()


def construct_window(context, *args):
    with context.global_object() as global_obj, global_obj.get_property("Window") as ctor:
        return ctor.construct(*args)


def test_constructed_weak_native_owns_itself(context, windows):
    windows.add_ctor2(lambda ctx, this, args: Window(args[0].to_string()))
    obj = construct_window(context, "main")
    gc.collect()
    with obj.invoke("title") as title:
        assert title.to_string() == "main"

    native = windows.unwrap(obj)
    assert native.proxy == obj
    # the window handled its final message
    native.release_self()
    del native
    gc.collect()
    with pytest.raises(ScriptException, match="TypeError: object is not an instance of Window"):
        obj.invoke("title")
    obj.dispose()


def test_constructed_weak_native_survives_its_proxy(context, windows):
    windows.add_ctor(lambda ctx, args: Window("main"))
    obj = construct_window(context)
    native = windows.unwrap(obj)
    obj.dispose()
    gc.collect()

    assert native.proxy is None
    assert list(context.self_owned.values()) == [native]
    native.release_self()
    assert context.self_owned == {}
    # releasing twice is harmless
    native.release_self()


def test_teardown_drops_self_owned_natives(runtime):
    context = runtime.new_context()
    klass = WeakClass(context, "Window", Window).init()
    klass.add_ctor(lambda ctx, args: Window("main"))
    obj = construct_window(context)
    native = klass.unwrap(obj)
    context.dispose()
    assert context.self_owned == {}
    assert native.proxy is None
    native.release_self()
    obj.dispose()


def test_ref_counted_native_is_shared(context):
    textures = RefClass(context, "Texture", Texture).init()
    texture = Texture().add_ref()

    a = textures.to_js(context, texture)
    b = textures.to_js(context, texture)
    assert texture.ref_count == 3

    a.dispose()
    b.dispose()
    assert texture.ref_count == 1
    assert texture.destroy_calls == 0

    assert texture.release() == 0
    assert texture.destroyed
    assert texture.destroy_calls == 1


def test_last_proxy_destroys_ref_counted_native(context):
    textures = RefClass(context, "Texture", Texture).init()
    textures.add_ctor(lambda ctx, args: Texture())
    with context.global_object() as global_obj, global_obj.get_property("Texture") as ctor:
        obj = ctor.construct()
    texture = textures.unwrap(obj)
    assert texture.ref_count == 1

    obj.dispose()
    assert texture.destroyed
    assert texture.destroy_calls == 1
    with pytest.raises(EngineError):
        texture.add_ref()


def test_ref_class_requires_ref_counted_native(context, runtime):
    class Plain:
        pass

    plain = RefClass(context, "Plain", Plain).init()
    baseline = runtime.live_object_count
    with pytest.raises(TypeError, match="is not RefCounted"):
        plain.to_js(context, Plain())
    assert runtime.live_object_count == baseline


def test_release_without_reference_is_an_error():
    with pytest.raises(EngineError):
        Texture().release()
