"""
Process-wide engine instance: heap limits, the type-identity registry and
unhandled-rejection tracking.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .._engine.heap import EngineRuntime
from .._engine.types import DEFAULT_GC_THRESHOLD, DEFAULT_MAX_STACK_SIZE, JSValue
from ..errors import UnhandledRejection
from .disposable import Disposable
from .report import format_exception

if TYPE_CHECKING:
    from .._engine.context import EngineContext
    from .context import Context


class Runtime(Disposable):
    """
    Owns one engine runtime and every context created from it.

    Class ids are handed out per native type: the first binding of a type
    allocates its id and later bindings of the same type, in any context,
    reuse it.
    """

    def __init__(
        self,
        memory_limit: int = 0,
        gc_threshold: int = DEFAULT_GC_THRESHOLD,
        max_stack_size: int = DEFAULT_MAX_STACK_SIZE,
        info: Optional[str] = None,
    ):
        self.rt = EngineRuntime()
        self.rt.opaque = self
        self.rt.rejection_tracker = self._track_rejection
        self.set_memory_limit(memory_limit)
        self.set_gc_threshold(gc_threshold)
        self.set_max_stack_size(max_stack_size)
        self.set_info(info)

        self.contexts: List["Context"] = []
        self._type_ids: Dict[Any, int] = {}
        # promise object id -> composed message, until a handler is attached
        self.unhandled_rejections: Dict[int, str] = {}
        self._reported: set = set()
        self.disposed = False

    @staticmethod
    def get(rt: EngineRuntime) -> Optional["Runtime"]:
        return rt.opaque

    # Limits

    def set_info(self, info: Optional[str]) -> None:
        self.rt.info = info

    def set_memory_limit(self, limit: int) -> None:
        """Cap the number of live engine objects. 0 disables the limit."""
        self.rt.memory_limit = limit

    def set_gc_threshold(self, gc_threshold: int) -> None:
        self.rt.gc_threshold = gc_threshold

    def set_max_stack_size(self, stack_size: int) -> None:
        """Cap the depth of nested native calls. 0 disables the limit."""
        self.rt.max_stack_size = stack_size

    @property
    def info(self) -> Optional[str]:
        return self.rt.info

    @property
    def memory_limit(self) -> int:
        return self.rt.memory_limit

    @property
    def gc_threshold(self) -> int:
        return self.rt.gc_threshold

    @property
    def max_stack_size(self) -> int:
        return self.rt.max_stack_size

    # Type identity registry

    def class_id_for(self, native_type: Any) -> int:
        """Return the class id of `native_type`, allocating it on first use."""
        class_id = self._type_ids.get(native_type)
        if class_id is None:
            class_id = self.rt.new_class_id()
            self._type_ids[native_type] = class_id
        return class_id

    # Contexts

    def new_context(self) -> "Context":
        from .context import Context

        return Context(self)

    def run_gc(self) -> int:
        return self.rt.run_gc()

    @property
    def live_object_count(self) -> int:
        return self.rt.live_object_count

    def is_job_pending(self) -> bool:
        return self.rt.is_job_pending()

    # Rejection tracking

    def _track_rejection(
        self, ctx: "EngineContext", promise: JSValue, reason: JSValue, is_handled: bool
    ) -> None:
        key = promise.payload.id
        if is_handled:
            self.unhandled_rejections.pop(key, None)
            self._reported.discard(key)
            return
        if key in self._reported:
            return
        self._reported.add(key)
        msg = format_exception(ctx, reason)
        self.unhandled_rejections[key] = msg
        context = ctx.opaque
        if context is not None:
            context.log(f"Possibly unhandled promise rejection: {msg}")
        else:
            print(f"Possibly unhandled promise rejection: {msg}")

    def check_rejections(self) -> None:
        """Raise UnhandledRejection while any rejected promise has no handler."""
        if self.unhandled_rejections:
            raise UnhandledRejection(list(self.unhandled_rejections.values()))

    # Teardown

    def dispose(self) -> None:
        """Dispose every context, then free the engine runtime."""
        if self.disposed:
            return
        for context in list(self.contexts):
            context.dispose()
        self._reported.clear()
        self.rt.free()
        self.disposed = True
