"""
Diagnostics for engine exceptions, and the conversion of native failures
into engine exceptions at the call boundary.
"""

from typing import TYPE_CHECKING

from .._engine import convert
from .._engine.types import ErrorKind, JSValue, Tag
from ..errors import ScriptException, WrongReceiverType

if TYPE_CHECKING:
    from .._engine.context import EngineContext
    from .context import Context


def _stringify(ctx: "EngineContext", value: JSValue) -> str:
    text = convert.to_string(ctx, value)
    if text is None:
        # toString itself threw; that exception is not the one being reported
        ctx.rt.free_value(ctx.get_exception())
        return "[exception]"
    return text


def format_exception(ctx: "EngineContext", exc: JSValue) -> str:
    """Stringify a thrown value, followed by its stack when it is an Error."""
    msg = _stringify(ctx, exc)
    if ctx.is_error(exc):
        stack = ctx.get_property(exc, "stack")
        if stack.tag == Tag.EXCEPTION:
            ctx.rt.free_value(ctx.get_exception())
        elif stack.tag != Tag.UNDEFINED:
            text = _stringify(ctx, stack)
            if text:
                msg = f"{msg}\n{text.rstrip()}"
            ctx.rt.free_value(stack)
    return msg


def throw_native_error(context: "Context", exc: BaseException) -> JSValue:
    """
    Convert a Python exception raised by native code into a pending engine
    exception and return the exception marker.

    ScriptException rethrows the engine value it carries, WrongReceiverType
    becomes a TypeError, anything else an InternalError.
    """
    ctx = context.ctx
    if isinstance(exc, ScriptException):
        if exc.value is not None and exc.value.context is context:
            return ctx.throw(exc.value.release())
        return ctx.throw_error(ErrorKind.ERROR, str(exc))
    if isinstance(exc, WrongReceiverType):
        return ctx.throw_error(ErrorKind.TYPE, str(exc))
    return ctx.throw_error(ErrorKind.INTERNAL, str(exc) or type(exc).__name__)
