"""
Promise bridge: a resolve/reject capability pair for completing script
promises from native code, plus the worker hand-off that funnels results
from other threads back onto the owning thread.
"""

from concurrent.futures import Executor, Future
from typing import Any, Callable, Optional, TYPE_CHECKING

from .._engine import promise as _promise
from .._engine.types import PromiseState, Tag
from .._runtime.disposable import Disposable
from .._values.value import Value
from ..errors import ScriptException

if TYPE_CHECKING:
    from .._runtime.context import Context


class Promise(Disposable):
    """
    One promise and the functions that settle it.

    Only the first settlement has any effect; later resolve/reject calls are
    ignored by the engine. Settling is only allowed on the thread that owns
    the context.
    """

    def __init__(self, context: "Context"):
        self.context = context
        promise, resolve, reject = _promise.new_promise_capability(context.ctx)
        if promise.tag == Tag.EXCEPTION:
            raise context.take_exception()
        self._promise = Value(context, promise)
        self._resolve = Value(context, resolve)
        self._reject = Value(context, reject)

    def promise(self) -> Value:
        """A new reference to the promise value, to hand to script."""
        return self._promise.dup()

    @property
    def state(self) -> Optional[PromiseState]:
        return _promise.promise_state(self.context.ctx, self._promise.raw)

    @property
    def result(self) -> Value:
        """The settled value or reason; undefined while pending."""
        return Value(self.context, _promise.promise_result(self.context.ctx, self._promise.raw))

    def _settle(self, func: Value, value: Any) -> bool:
        self.context.check_thread()
        if not func.is_function():
            return False
        arg = self.context.new_undefined() if value is None else self.context.new_value(value)
        with arg:
            func.call(arg).dispose()
        return True

    def resolve(self, value: Any = None) -> bool:
        return self._settle(self._resolve, value)

    def reject(self, value: Any = None) -> bool:
        return self._settle(self._reject, value)

    def mark(self, mark_func: Callable) -> None:
        """Report the held values when a native that owns this bridge is marked."""
        self._promise.mark(mark_func)
        self._resolve.mark(mark_func)
        self._reject.mark(mark_func)

    def clear(self) -> None:
        """Drop the settling functions. The promise itself stays readable."""
        self._resolve.dispose()
        self._reject.dispose()

    def dispose(self) -> None:
        self.clear()
        self._promise.dispose()

    def __repr__(self):
        state = self.state
        return f"<Promise {state.name if state is not None else 'disposed'}>"


def _rejection_value(context: "Context", exc: BaseException) -> Value:
    if isinstance(exc, ScriptException) and exc.value is not None and exc.value.context is context:
        return exc.value.dup()
    return context.new_error(str(exc) or type(exc).__name__)


def run_in_worker(
    context: "Context",
    executor: Executor,
    work: Callable[..., Any],
    *args: Any,
) -> Value:
    """
    Run `work(*args)` on `executor` and return a promise for its result.

    The worker never touches engine state: its completion is posted to the
    context's task queue and the promise is settled when the owning thread
    drains it. The result must be plain Python data.
    """
    bridge = Promise(context)
    result = bridge.promise()
    tasks = context.tasks
    tasks.expect()

    def settle(future: "Future") -> None:
        try:
            if future.cancelled():
                with context.new_error("task cancelled") as reason:
                    bridge.reject(reason)
                return
            exc = future.exception()
            if exc is None:
                bridge.resolve(future.result())
            else:
                with _rejection_value(context, exc) as reason:
                    bridge.reject(reason)
        finally:
            bridge.dispose()

    def on_done(future: "Future") -> None:
        def complete() -> None:
            tasks.done()
            settle(future)

        context.post_task(complete)

    try:
        executor.submit(work, *args).add_done_callback(on_done)
    except Exception:
        tasks.done()
        bridge.dispose()
        result.dispose()
        raise
    return result
