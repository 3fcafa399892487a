"""
Trampolines: the engine-callable shims around native Python callables.

Each one marshals the raw call frame into an ArgList, runs the native
callable, and converts the result back into a raw value the engine owns.
Python exceptions never cross into the engine; they are turned into pending
engine exceptions here.
"""

from typing import Any, Callable, Tuple, TYPE_CHECKING

from .._engine.context import EngineContext
from .._engine.types import JSValue, JS_UNDEFINED, Tag
from .._runtime.report import throw_native_error
from .._values.arglist import ArgList
from .._values.value import Value, WeakValue
from ..errors import ConstructionFailure, WrongReceiverType
from .registry import get_this

if TYPE_CHECKING:
    from .._runtime.context import Context
    from .klass import ClassBase

RawFunction = Callable[..., JSValue]

CTOR_ERROR = "ctor error"


def to_raw(context: "Context", result: Any) -> JSValue:
    """Convert a native return value into a raw value owned by the caller."""
    if isinstance(result, Value):
        return result.release()
    if isinstance(result, WeakValue):
        return context.runtime.rt.dup_value(result.raw)
    if result is None:
        return JS_UNDEFINED
    return context.new_value(result).release()


def call_native(context: "Context", argv, invoke: Callable[[ArgList], Any]) -> JSValue:
    """Run `invoke(args)` and return its result as a raw value, or the exception marker."""
    with ArgList(context, argv) as args:
        try:
            return to_raw(context, invoke(args))
        except Exception as e:
            return throw_native_error(context, e)


def _missing_this(context: "Context", klass: "ClassBase") -> JSValue:
    return throw_native_error(context, WrongReceiverType(klass.name, klass.class_id))


def function_trampoline(func: Callable[["Context", ArgList], Any]) -> RawFunction:
    """func(context, args)"""

    def trampoline(ctx: EngineContext, this: JSValue, argv) -> JSValue:
        context = ctx.opaque
        return call_native(context, argv, lambda args: func(context, args))

    return trampoline


def method_trampoline(klass: "ClassBase", func: Callable) -> RawFunction:
    """func(native, context, args)"""

    def trampoline(ctx: EngineContext, this: JSValue, argv) -> JSValue:
        context = ctx.opaque
        native = get_this(context, this)
        if native is None:
            return _missing_this(context, klass)
        return call_native(context, argv, lambda args: func(native, context, args))

    return trampoline


def getter_trampoline(klass: "ClassBase", get: Callable) -> RawFunction:
    """get(native, context)"""

    def trampoline(ctx: EngineContext, this: JSValue) -> JSValue:
        context = ctx.opaque
        native = get_this(context, this)
        if native is None:
            return _missing_this(context, klass)
        try:
            return to_raw(context, get(native, context))
        except Exception as e:
            return throw_native_error(context, e)

    return trampoline


def setter_trampoline(klass: "ClassBase", set_: Callable) -> RawFunction:
    """set(native, context, value)"""

    def trampoline(ctx: EngineContext, this: JSValue, value: JSValue) -> JSValue:
        context = ctx.opaque
        native = get_this(context, this)
        if native is None:
            return _missing_this(context, klass)
        with Value.borrow(context, value) as v:
            try:
                result = to_raw(context, set_(native, context, v))
            except Exception as e:
                return throw_native_error(context, e)
        if result.tag == Tag.EXCEPTION:
            return result
        context.runtime.rt.free_value(result)
        return JS_UNDEFINED

    return trampoline


def iterator_trampoline(klass: "ClassBase", itr: Callable) -> Callable:
    """itr(native, context, args) -> (value, finished)"""

    def trampoline(ctx: EngineContext, this: JSValue, argv) -> Tuple[JSValue, bool]:
        context = ctx.opaque
        native = get_this(context, this)
        if native is None:
            return _missing_this(context, klass), False
        finished = False

        def step(args: ArgList) -> Any:
            nonlocal finished
            value, finished = itr(native, context, args)
            return value

        return call_native(context, argv, step), bool(finished)

    return trampoline


def _prototype_of(ctx: EngineContext, new_target: JSValue, klass: "ClassBase") -> JSValue:
    """The prototype for a new instance: new.target's, else the class's."""
    proto = ctx.get_property(new_target, "prototype")
    if proto.tag in (Tag.OBJECT, Tag.EXCEPTION):
        return proto
    return ctx.get_class_proto(klass.class_id)


def ctor_trampoline(klass: "ClassBase", ctor: Callable) -> RawFunction:
    """
    Post-construct attach: ctor(context, args) -> native or None.

    The native is built first and the script object is only allocated once
    it exists, so a failed construction never produces an object.
    """

    def trampoline(ctx: EngineContext, new_target: JSValue, argv) -> JSValue:
        context = ctx.opaque
        with ArgList(context, argv) as args:
            try:
                native = ctor(context, args)
            except Exception as e:
                return throw_native_error(context, e)
        if native is None:
            return throw_native_error(context, ConstructionFailure(CTOR_ERROR))

        proto = _prototype_of(ctx, new_target, klass)
        if proto.tag == Tag.EXCEPTION:
            klass.discard(native)
            return proto
        obj = ctx.new_object_proto_class(proto, klass.class_id)
        ctx.rt.free_value(proto)
        if obj.tag == Tag.EXCEPTION:
            klass.discard(native)
            return obj
        try:
            klass.attach(context, obj, native)
        except Exception as e:
            ctx.rt.free_value(obj)
            return throw_native_error(context, e)
        klass.keep_constructed(context, native)
        return obj

    return trampoline


def ctor2_trampoline(klass: "ClassBase", ctor: Callable) -> RawFunction:
    """
    Pre-allocate attach: ctor(context, this, args) -> native or None.

    `this` is a borrowed view of the new object; a native that keeps it must
    take its own reference. If construction fails the object is released
    without ever receiving an opaque instance.
    """

    def trampoline(ctx: EngineContext, new_target: JSValue, argv) -> JSValue:
        context = ctx.opaque
        proto = _prototype_of(ctx, new_target, klass)
        if proto.tag == Tag.EXCEPTION:
            return proto
        obj = ctx.new_object_proto_class(proto, klass.class_id)
        ctx.rt.free_value(proto)
        if obj.tag == Tag.EXCEPTION:
            return obj

        with ArgList(context, argv) as args:
            try:
                native = ctor(context, WeakValue(context, obj), args)
            except Exception as e:
                ctx.rt.free_value(obj)
                return throw_native_error(context, e)
        if native is None:
            ctx.rt.free_value(obj)
            return throw_native_error(context, ConstructionFailure(CTOR_ERROR))
        try:
            klass.attach(context, obj, native)
        except Exception as e:
            ctx.rt.free_value(obj)
            return throw_native_error(context, e)
        klass.keep_constructed(context, native)
        return obj

    return trampoline