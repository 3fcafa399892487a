"""
Script execution context.

Reference: https://github.com/toyobayashi/emnapi/blob/main/packages/runtime/src/Context.ts
"""

from typing import Any, Callable, Dict, Optional, TYPE_CHECKING
import weakref

from .._engine import module as _module
from .._engine.context import EngineContext
from .._engine.types import (
    ErrorKind,
    JSValue,
    JS_EXCEPTION,
    JS_NULL,
    JS_UNDEFINED,
    Tag,
    new_big_int,
    new_bool,
    new_number,
    new_string,
)
from .._engine.convert import wrap_integer
from .._values.value import Value, WeakValue
from ..errors import ScriptException
from .disposable import Disposable, dispose_all
from .ref_tracker import RefTracker
from .report import format_exception
from .tasks import TaskQueue

if TYPE_CHECKING:
    from .module import Module
    from .runtime import Runtime

LogFunc = Callable[[str], None]


class Context(Disposable):
    """
    One engine context plus the binding state hung off it.

    Manages:
    - the class id -> parent class id registry
    - native modules declared against this context
    - live native instances, finalized at teardown at the latest
    - self-owned natives built by weak-class constructors
    - the log sink and the owning thread's task queue
    """

    def __init__(self, runtime: "Runtime"):
        self.runtime = runtime
        self.ctx = EngineContext(runtime.rt)
        self.ctx.opaque = self
        self.alive = True
        self.user_data: Any = None

        self._log_func: Optional[LogFunc] = None
        self._parent_ids: Dict[int, int] = {}
        self.modules: Dict[str, "Module"] = {}
        self.instances = RefTracker()
        self.tasks = TaskQueue()
        # script-constructed natives that own themselves, keyed by id()
        self.self_owned: Dict[int, Any] = {}

        runtime.contexts.append(self)

    @staticmethod
    def get(ctx: EngineContext) -> Optional["Context"]:
        return ctx.opaque

    # Logging

    def set_log_func(self, func: Optional[LogFunc]) -> None:
        self._log_func = func

    def log(self, msg: str) -> None:
        if self._log_func is not None:
            self._log_func(msg)
        else:
            print(msg)

    # Class registry

    def add_class_id(self, class_id: int, parent_class_id: int) -> None:
        if parent_class_id:
            self._parent_ids[class_id] = parent_class_id

    def get_parent_class_id(self, class_id: int) -> int:
        return self._parent_ids.get(class_id, 0)

    # Exceptions

    def wrap(self, raw: JSValue) -> Value:
        """Take ownership of a raw result, raising ScriptException if it is the exception marker."""
        if raw.tag == Tag.EXCEPTION:
            raise self.take_exception()
        return Value(self, raw)

    def take_exception(self) -> ScriptException:
        """Remove the pending exception and return it as a Python exception."""
        exc = self.ctx.get_exception()
        return ScriptException(format_exception(self.ctx, exc), Value(self, exc))

    def dump_error(self) -> None:
        """Log the pending exception and clear it."""
        exc = self.ctx.get_exception()
        try:
            self.log(format_exception(self.ctx, exc))
        finally:
            self.runtime.rt.free_value(exc)

    def throw(self, value: Any) -> Value:
        """Throw `value` and return the exception marker for a native to return."""
        self.ctx.throw(self.new_value(value).release())
        return Value(self, JS_EXCEPTION)

    def throw_error(self, kind: ErrorKind, message: str) -> Value:
        self.ctx.throw_error(kind, message)
        return Value(self, JS_EXCEPTION)

    def throw_syntax_error(self, message: str) -> Value:
        return self.throw_error(ErrorKind.SYNTAX, message)

    def throw_type_error(self, message: str) -> Value:
        return self.throw_error(ErrorKind.TYPE, message)

    def throw_reference_error(self, message: str) -> Value:
        return self.throw_error(ErrorKind.REFERENCE, message)

    def throw_range_error(self, message: str) -> Value:
        return self.throw_error(ErrorKind.RANGE, message)

    def throw_internal_error(self, message: str) -> Value:
        return self.throw_error(ErrorKind.INTERNAL, message)

    def throw_out_of_memory(self) -> Value:
        self.ctx.throw_out_of_memory()
        return Value(self, JS_EXCEPTION)

    # Value factories

    def new_undefined(self) -> Value:
        return Value(self, JS_UNDEFINED)

    def new_null(self) -> Value:
        return Value(self, JS_NULL)

    def new_bool(self, v: bool) -> Value:
        return Value(self, new_bool(v))

    def new_int32(self, v: int) -> Value:
        return Value(self, new_number(wrap_integer(int(v), 32, True)))

    def new_int64(self, v: int) -> Value:
        return Value(self, new_number(wrap_integer(int(v), 64, True)))

    def new_uint32(self, v: int) -> Value:
        return Value(self, new_number(wrap_integer(int(v), 32, False)))

    def new_big_int64(self, v: int) -> Value:
        return Value(self, new_big_int(wrap_integer(int(v), 64, True)))

    def new_big_uint64(self, v: int) -> Value:
        return Value(self, new_big_int(wrap_integer(int(v), 64, False)))

    def new_float64(self, v: float) -> Value:
        return Value(self, JSValue(Tag.FLOAT64, float(v)))

    def new_string(self, s: str) -> Value:
        return Value(self, new_string(s))

    def new_object(self) -> Value:
        return self.wrap(self.ctx.new_object())

    def new_array(self) -> Value:
        return self.wrap(self.ctx.new_array())

    def new_error(self, message: str, kind: ErrorKind = ErrorKind.ERROR) -> Value:
        return self.wrap(self.ctx.new_error(kind, message))

    def new_class_object(self, class_id: int) -> Value:
        """Allocate an object of `class_id` with that class's prototype."""
        return self.wrap(self.ctx.new_object_class(class_id))

    def new_value(self, value: Any) -> Value:
        """
        Convert a Python value to an owned engine value.

        Engine handles are duplicated; None becomes null, lists become arrays,
        dicts become objects and callables become functions taking
        (context, args).
        """
        if isinstance(value, WeakValue):
            return Value.borrow(self, value.raw)
        if isinstance(value, JSValue):
            return Value.borrow(self, value)
        if value is None:
            return self.new_null()
        if isinstance(value, (bool, int, float)):
            return Value(self, new_number(value))
        if isinstance(value, str):
            return self.new_string(value)
        if isinstance(value, (list, tuple)):
            arr = self.new_array()
            for i, item in enumerate(value):
                arr.set_property(i, item)
            return arr
        if isinstance(value, dict):
            obj = self.new_object()
            for key, item in value.items():
                obj.set_property(str(key), item)
            return obj
        if callable(value):
            return self.new_function(getattr(value, "__name__", ""), value)
        raise TypeError(f"cannot convert {type(value).__name__} to a script value")

    def new_c_function(self, func: Callable, name: str, length: int = 0) -> Value:
        """Wrap a raw engine function func(ctx, this, argv) -> JSValue."""
        return self.wrap(self.ctx.new_c_function(func, name, length))

    def new_function(self, name: str, func: Callable) -> Value:
        """Wrap func(context, args) so it can be called from script."""
        from .._binding.trampoline import function_trampoline

        return self.new_c_function(function_trampoline(func), name)

    def global_object(self) -> Value:
        return Value(self, self.ctx.get_global_object())

    def parse_json(self, text: str, filename: str = "<input>") -> Value:
        return self.wrap(self.ctx.parse_json(text, filename))

    # Jobs and collection

    def execute_jobs(self) -> int:
        """Run pending jobs until the queue is empty or a job throws."""
        count = 0
        while True:
            err, job_ctx = self.runtime.rt.execute_pending_job()
            if err <= 0:
                if err < 0:
                    context = job_ctx.opaque if job_ctx is not None else None
                    if context is None:
                        context = self
                    context.dump_error()
                return count
            count += 1

    def run_gc(self) -> int:
        return self.runtime.run_gc()

    # Modules

    def new_module(self, name: str) -> "Module":
        from .module import Module

        module = Module(self, name)
        self.modules[name] = module
        return module

    def import_module(self, name: str) -> Value:
        """Link the module if needed and return its namespace."""
        return self.wrap(_module.import_module(self.ctx, name))

    # Threading

    def check_thread(self) -> None:
        if not self.tasks.is_owner():
            raise RuntimeError("engine values may only be used on the thread that owns the context")

    def post_task(self, task: Callable[[], None]) -> None:
        """
        Queue `task` to run on the owning thread. Safe from any thread.

        The task is skipped if the context has been disposed by then; a
        failing task is logged.
        """
        context_ref = weakref.ref(self)

        def run():
            context = context_ref()
            if context is None or not context.alive:
                return
            try:
                task()
            except ScriptException as e:
                context.log(str(e))
            except Exception as e:
                context.log(f"posted task failed: {e!r}")

        self.tasks.post(run)

    def run_pending_tasks(self) -> int:
        """Drain posted tasks, then the jobs they scheduled."""
        count = self.tasks.run_pending()
        self.execute_jobs()
        return count

    def loop(self, timeout: Optional[float] = None) -> None:
        """Run tasks and jobs until nothing is queued or outstanding."""
        self.check_thread()
        while True:
            self.run_pending_tasks()
            if self.runtime.is_job_pending() or not self.tasks.empty():
                continue
            if self.tasks.outstanding == 0:
                return
            if not self.tasks.wait(timeout):
                return
            self.execute_jobs()

    # Self-owned natives

    def hold_native(self, native: Any) -> None:
        """Keep `native` alive until `release_native` or teardown."""
        self.self_owned[id(native)] = native

    def release_native(self, native: Any) -> bool:
        return self.self_owned.pop(id(native), None) is not None

    # Teardown

    def dispose(self) -> None:
        """Finalize live instances, drop modules and free the engine context."""
        if not self.alive:
            return
        RefTracker.finalize_all(self.instances)
        self.self_owned.clear()
        dispose_all(self.modules.values())
        self.modules.clear()
        self.ctx.free()
        self.alive = False
        if self in self.runtime.contexts:
            self.runtime.contexts.remove(self)
