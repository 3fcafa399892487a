"""
Engine promises: capabilities, reactions and thenable adoption.

Reference: https://tc39.es/ecma262/#sec-promise-objects
"""

from typing import List, Optional, Tuple, TYPE_CHECKING

from .heap import Reaction
from .types import (
    ErrorKind,
    JSValue,
    JS_EXCEPTION,
    JS_UNDEFINED,
    PromiseState,
    Tag,
    new_bool,
)

if TYPE_CHECKING:
    from .context import EngineContext


class ResolveState:
    """Already-resolved flag shared by one resolve/reject pair."""

    __slots__ = ("already_resolved",)

    def __init__(self):
        self.already_resolved = False


RESOLVE = 0
REJECT = 1


def new_promise_capability(ctx: "EngineContext") -> Tuple[JSValue, JSValue, JSValue]:
    """Create (promise, resolve, reject). On failure the promise slot is JS_EXCEPTION."""
    promise = ctx.new_promise_object()
    if promise.tag == Tag.EXCEPTION:
        return JS_EXCEPTION, JS_UNDEFINED, JS_UNDEFINED
    resolve, reject = _create_resolving_functions(ctx, promise)
    if resolve.tag == Tag.EXCEPTION:
        ctx.rt.free_value(promise)
        return JS_EXCEPTION, JS_UNDEFINED, JS_UNDEFINED
    return promise, resolve, reject


def _create_resolving_functions(ctx: "EngineContext", promise: JSValue) -> Tuple[JSValue, JSValue]:
    cell = ctx.new_object()
    if cell.tag == Tag.EXCEPTION:
        return JS_EXCEPTION, JS_EXCEPTION
    cell.payload.opaque = ResolveState()
    funcs: List[JSValue] = []
    for magic, name in ((RESOLVE, "resolve"), (REJECT, "reject")):
        func = ctx.new_c_function_data(_resolving_function, 1, magic, [promise, cell], name=name)
        if func.tag == Tag.EXCEPTION:
            for f in funcs:
                ctx.rt.free_value(f)
            ctx.rt.free_value(cell)
            return JS_EXCEPTION, JS_EXCEPTION
        funcs.append(func)
    ctx.rt.free_value(cell)
    return funcs[0], funcs[1]


def _resolving_function(ctx, this, argv, magic, data):
    promise, cell = data
    state = cell.payload.opaque
    if state.already_resolved:
        return JS_UNDEFINED
    state.already_resolved = True
    value = argv[0] if argv else JS_UNDEFINED
    if magic == REJECT:
        _settle(ctx, promise, PromiseState.REJECTED, ctx.rt.dup_value(value))
    else:
        _resolve_promise(ctx, promise, value)
    return JS_UNDEFINED


def _resolve_promise(ctx: "EngineContext", promise: JSValue, value: JSValue) -> None:
    if value.tag == Tag.OBJECT:
        if value.payload is promise.payload:
            err = ctx.new_error(ErrorKind.TYPE, "promise self resolution")
            _settle(ctx, promise, PromiseState.REJECTED, err)
            return
        then = ctx.get_property(value, "then")
        if then.tag == Tag.EXCEPTION:
            _settle(ctx, promise, PromiseState.REJECTED, ctx.get_exception())
            return
        if ctx.is_function(then):
            ctx.rt.enqueue_job(ctx, _resolve_thenable_job, [promise, value, then])
            ctx.rt.free_value(then)
            return
        ctx.rt.free_value(then)
    _settle(ctx, promise, PromiseState.FULFILLED, ctx.rt.dup_value(value))


def _resolve_thenable_job(ctx: "EngineContext", args: List[JSValue]) -> JSValue:
    promise, thenable, then = args
    resolve, reject = _create_resolving_functions(ctx, promise)
    if resolve.tag == Tag.EXCEPTION:
        return JS_EXCEPTION
    try:
        result = ctx.call(then, thenable, [resolve, reject])
        if result.tag == Tag.EXCEPTION:
            reason = ctx.get_exception()
            result = ctx.call(reject, JS_UNDEFINED, [reason])
            ctx.rt.free_value(reason)
        return result
    finally:
        ctx.rt.free_value(resolve)
        ctx.rt.free_value(reject)


def _settle(ctx: "EngineContext", promise: JSValue, state: PromiseState, value: JSValue) -> None:
    """Settle a pending promise. Takes ownership of `value`."""
    rt = ctx.rt
    obj = promise.payload
    if obj.promise_state != PromiseState.PENDING:
        rt.free_value(value)
        return
    obj.promise_state = state
    obj.result = value
    reactions, obj.reactions = obj.reactions, []
    is_reject = state == PromiseState.REJECTED
    for reaction in reactions:
        handler = reaction.on_rejected if is_reject else reaction.on_fulfilled
        rt.enqueue_job(
            ctx,
            _reaction_job,
            [handler, reaction.resolve, reaction.reject, value, new_bool(is_reject)],
        )
        for v in reaction.values():
            rt.free_value(v)
    if is_reject and not obj.is_handled:
        _track(ctx, promise, value, False)


def _track(ctx: "EngineContext", promise: JSValue, reason: JSValue, is_handled: bool) -> None:
    tracker = ctx.rt.rejection_tracker
    if tracker is not None:
        tracker(ctx, promise, reason, is_handled)


def _reaction_job(ctx: "EngineContext", args: List[JSValue]) -> JSValue:
    handler, resolve, reject, argument, is_reject = args
    if ctx.is_function(handler):
        result = ctx.call(handler, JS_UNDEFINED, [argument])
        if result.tag == Tag.EXCEPTION:
            reason = ctx.get_exception()
            settled = _call_settler(ctx, reject, reason)
            ctx.rt.free_value(reason)
            return settled
        settled = _call_settler(ctx, resolve, result)
        ctx.rt.free_value(result)
        return settled
    return _call_settler(ctx, reject if is_reject.payload else resolve, argument)


def _call_settler(ctx: "EngineContext", func: JSValue, value: JSValue) -> JSValue:
    if not ctx.is_function(func):
        return JS_UNDEFINED
    return ctx.call(func, JS_UNDEFINED, [value])


def promise_then(
    ctx: "EngineContext",
    promise: JSValue,
    on_fulfilled: JSValue,
    on_rejected: JSValue,
) -> JSValue:
    """Register reactions and return the derived promise. Handlers are borrowed."""
    if not ctx.is_promise(promise):
        return ctx.throw_type_error("not a promise")
    derived, resolve, reject = new_promise_capability(ctx)
    if derived.tag == Tag.EXCEPTION:
        return derived
    rt = ctx.rt
    fulfilled = rt.dup_value(on_fulfilled) if ctx.is_function(on_fulfilled) else JS_UNDEFINED
    rejected = rt.dup_value(on_rejected) if ctx.is_function(on_rejected) else JS_UNDEFINED
    obj = promise.payload
    if obj.promise_state == PromiseState.PENDING:
        obj.reactions.append(Reaction(fulfilled, rejected, resolve, reject))
    else:
        is_reject = obj.promise_state == PromiseState.REJECTED
        rt.enqueue_job(
            ctx,
            _reaction_job,
            [rejected if is_reject else fulfilled, resolve, reject, obj.result, new_bool(is_reject)],
        )
        for v in (fulfilled, rejected, resolve, reject):
            rt.free_value(v)
        if is_reject and not obj.is_handled:
            _track(ctx, promise, obj.result, True)
    obj.is_handled = True
    return derived


def promise_state(ctx: "EngineContext", promise: JSValue) -> Optional[PromiseState]:
    if not ctx.is_promise(promise):
        return None
    return promise.payload.promise_state


def promise_result(ctx: "EngineContext", promise: JSValue) -> JSValue:
    if not ctx.is_promise(promise):
        return JS_UNDEFINED
    return ctx.rt.dup_value(promise.payload.result)


def _then(ctx, this, argv):
    on_fulfilled = argv[0] if len(argv) > 0 else JS_UNDEFINED
    on_rejected = argv[1] if len(argv) > 1 else JS_UNDEFINED
    return promise_then(ctx, this, on_fulfilled, on_rejected)


def _catch(ctx, this, argv):
    return promise_then(ctx, this, JS_UNDEFINED, argv[0] if argv else JS_UNDEFINED)


def install_promise_proto(ctx: "EngineContext", proto: JSValue) -> None:
    """Define `then` and `catch` on the promise prototype."""
    for name, func, length in (("then", _then, 2), ("catch", _catch, 1)):
        ctx.define_property_value(proto, name, ctx.new_c_function(func, name, length), enumerable=False)
