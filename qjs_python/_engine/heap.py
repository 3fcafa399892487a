"""
Engine heap: reference-counted objects, the cycle collector and the job queue.

Objects are freed when their reference count drops to zero. Cycles are
reclaimed by `EngineRuntime.run_gc`, which uses trial deletion: every edge the
engine can see (its own property tables plus whatever class `gc_mark` hooks
report) is subtracted from the reference counts, objects with a positive
remainder are held from outside and act as roots, and whatever the roots
cannot reach is garbage.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING

from .store import ArrayStore, CountIdAllocator
from .types import (
    CLASS_INIT_COUNT,
    DEFAULT_GC_THRESHOLD,
    DEFAULT_MAX_STACK_SIZE,
    ClassDef,
    ClassID,
    CFuncKind,
    JSValue,
    JS_UNDEFINED,
    ObjectState,
    PromiseState,
    Tag,
)

if TYPE_CHECKING:
    from .context import EngineContext


class EngineError(RuntimeError):
    """Engine invariant violated (double free, use after free)."""


class Property:
    """A data or accessor property slot. Slot values are owned by the object."""

    __slots__ = ("value", "getter", "setter", "enumerable")

    def __init__(
        self,
        value: JSValue = JS_UNDEFINED,
        getter: Optional[JSValue] = None,
        setter: Optional[JSValue] = None,
        enumerable: bool = True,
    ):
        self.value = value
        self.getter = getter
        self.setter = setter
        self.enumerable = enumerable

    @property
    def is_accessor(self) -> bool:
        return self.getter is not None or self.setter is not None

    def values(self) -> Iterator[JSValue]:
        yield self.value
        if self.getter is not None:
            yield self.getter
        if self.setter is not None:
            yield self.setter


class HeapObject:
    """An engine object. `proto` is an owned reference to another HeapObject."""

    def __init__(self, class_id: int, proto: Optional["HeapObject"] = None):
        self.id = 0
        self.class_id = class_id
        self.ref_count = 1
        self.proto = proto
        self.props: Dict[str, Property] = {}
        self.opaque: Any = None
        self.state = ObjectState.LIVE
        self.ctx: Optional["EngineContext"] = None

    def children(self) -> Iterator[JSValue]:
        """Engine-owned outgoing edges."""
        if self.proto is not None:
            yield JSValue(Tag.OBJECT, self.proto)
        for prop in self.props.values():
            for value in prop.values():
                if value.tag == Tag.OBJECT:
                    yield value

    def release_children(self) -> List[JSValue]:
        """Detach every engine-owned edge and hand them to the caller to free."""
        edges = list(self.children())
        self.proto = None
        self.props = {}
        return edges

    def __repr__(self):
        return f"<{type(self).__name__} #{self.id} class={self.class_id} rc={self.ref_count}>"


class ArrayObject(HeapObject):
    def __init__(self, proto: Optional[HeapObject] = None):
        super().__init__(ClassID.ARRAY, proto)
        self.length = 0


class FunctionObject(HeapObject):
    """A native function. `data` values are owned by the function."""

    def __init__(
        self,
        proto: Optional[HeapObject],
        cfunc: Callable,
        name: str,
        length: int,
        kind: CFuncKind,
        magic: int = 0,
        data: Optional[List[JSValue]] = None,
    ):
        super().__init__(ClassID.C_FUNCTION, proto)
        self.cfunc = cfunc
        self.name = name
        self.length = length
        self.kind = kind
        self.magic = magic
        self.data = data

    def children(self) -> Iterator[JSValue]:
        yield from super().children()
        for value in self.data or ():
            if value.tag == Tag.OBJECT:
                yield value

    def release_children(self) -> List[JSValue]:
        # children() already yields the bound data
        edges = super().release_children()
        self.data = None
        return edges


class Reaction:
    """A pending `then` registration. All four slots are owned."""

    __slots__ = ("on_fulfilled", "on_rejected", "resolve", "reject")

    def __init__(self, on_fulfilled, on_rejected, resolve, reject):
        self.on_fulfilled = on_fulfilled
        self.on_rejected = on_rejected
        self.resolve = resolve
        self.reject = reject

    def values(self) -> Iterator[JSValue]:
        yield self.on_fulfilled
        yield self.on_rejected
        yield self.resolve
        yield self.reject


class PromiseObject(HeapObject):
    def __init__(self, proto: Optional[HeapObject] = None):
        super().__init__(ClassID.PROMISE, proto)
        self.promise_state = PromiseState.PENDING
        self.result: JSValue = JS_UNDEFINED
        self.reactions: List[Reaction] = []
        self.is_handled = False

    def children(self) -> Iterator[JSValue]:
        yield from super().children()
        if self.result.tag == Tag.OBJECT:
            yield self.result
        for reaction in self.reactions:
            for value in reaction.values():
                if value.tag == Tag.OBJECT:
                    yield value

    def release_children(self) -> List[JSValue]:
        edges = list(self.children())
        self.proto = None
        self.props = {}
        self.result = JS_UNDEFINED
        self.reactions = []
        return edges


class Job:
    __slots__ = ("ctx", "func", "args")

    def __init__(self, ctx: "EngineContext", func: Callable, args: List[JSValue]):
        self.ctx = ctx
        self.func = func
        self.args = args


class EngineRuntime:
    """
    Process-wide engine instance.

    Owns the object heap, the class table, the job queue and the limits.
    """

    def __init__(self):
        self._objects: Dict[int, HeapObject] = {}
        self._object_ids = CountIdAllocator(1)
        self._class_ids = CountIdAllocator(CLASS_INIT_COUNT)
        self._classes: ArrayStore[ClassDef] = ArrayStore(CLASS_INIT_COUNT)
        for class_id in ClassID:
            self._classes.assign(class_id, ClassDef(class_id.name.title()))

        self._jobs: Deque[Job] = deque()
        self.contexts: List["EngineContext"] = []

        self.opaque: Any = None
        self.info: Optional[str] = None
        self.memory_limit = 0
        self.gc_threshold = DEFAULT_GC_THRESHOLD
        self.max_stack_size = DEFAULT_MAX_STACK_SIZE
        self.rejection_tracker: Optional[Callable] = None

        self.stack_depth = 0
        self._alloc_since_gc = 0
        self._in_gc = False
        self.freed = False

    # Classes

    def new_class_id(self) -> int:
        """Allocate a class id for a native type."""
        return self._class_ids.acquire()

    def new_class(self, class_id: int, class_def: ClassDef) -> int:
        """Register a class definition. Returns -1 if the id is already registered."""
        if class_id < CLASS_INIT_COUNT or self._classes.contains(class_id):
            return -1
        self._classes.assign(class_id, class_def)
        return 0

    def get_class_def(self, class_id: int) -> Optional[ClassDef]:
        return self._classes.deref(class_id)

    # Allocation and reference counting

    @property
    def live_object_count(self) -> int:
        return len(self._objects)

    def register_object(self, obj: HeapObject, ctx: "EngineContext") -> JSValue:
        obj.id = self._object_ids.acquire()
        obj.ctx = ctx
        self._objects[obj.id] = obj
        self._alloc_since_gc += 1
        return JSValue(Tag.OBJECT, obj)

    def maybe_gc(self) -> None:
        """Collect cycles once enough allocations have happened."""
        if self.gc_threshold and self._alloc_since_gc >= self.gc_threshold:
            self.run_gc()

    def is_live_object(self, value: JSValue) -> bool:
        return value.tag == Tag.OBJECT and value.payload.state == ObjectState.LIVE

    def dup_value(self, value: JSValue) -> JSValue:
        if value.tag == Tag.OBJECT:
            obj = value.payload
            if obj.state == ObjectState.FREED:
                raise EngineError(f"use after free: {obj!r}")
            obj.ref_count += 1
        return value

    def free_value(self, value: JSValue) -> None:
        if value.tag != Tag.OBJECT:
            return
        obj = value.payload
        if obj.state == ObjectState.FREED:
            raise EngineError(f"use after free: {obj!r}")
        if obj.ref_count <= 0:
            if obj.state == ObjectState.LIVE:
                raise EngineError(f"double free: {obj!r}")
            return
        obj.ref_count -= 1
        if obj.ref_count == 0 and obj.state == ObjectState.LIVE:
            self._free_object(obj)

    def mark_value(self, value: JSValue, mark_func: Callable[[JSValue], None]) -> None:
        """Report a retained value to the collector."""
        if value.tag == Tag.OBJECT:
            mark_func(value)

    def _finalize(self, obj: HeapObject) -> None:
        class_def = self._classes.deref(obj.class_id)
        if class_def is not None and class_def.finalizer is not None:
            class_def.finalizer(self, JSValue(Tag.OBJECT, obj))

    def _free_object(self, obj: HeapObject) -> None:
        obj.state = ObjectState.FREEING
        self._finalize(obj)
        for child in obj.release_children():
            self.free_value(child)
        obj.state = ObjectState.FREED
        obj.opaque = None
        self._objects.pop(obj.id, None)

    # Cycle collection

    def _visit_edges(self, obj: HeapObject, visit: Callable[[JSValue], None]) -> None:
        for child in obj.children():
            visit(child)
        class_def = self._classes.deref(obj.class_id)
        if class_def is not None and class_def.gc_mark is not None:
            class_def.gc_mark(self, JSValue(Tag.OBJECT, obj), visit)

    def run_gc(self) -> int:
        """Collect unreachable cycles. Returns the number of objects freed."""
        if self._in_gc:
            return 0
        self._in_gc = True
        try:
            objects = [o for o in self._objects.values() if o.state == ObjectState.LIVE]
            internal: Dict[int, int] = {}

            def count(value: JSValue) -> None:
                if value.tag == Tag.OBJECT:
                    internal[value.payload.id] = internal.get(value.payload.id, 0) + 1

            for obj in objects:
                self._visit_edges(obj, count)

            stack = [o for o in objects if o.ref_count > internal.get(o.id, 0)]
            reachable = set()

            def push(value: JSValue) -> None:
                if value.tag == Tag.OBJECT and value.payload.state == ObjectState.LIVE:
                    stack.append(value.payload)

            while stack:
                obj = stack.pop()
                if obj.id in reachable:
                    continue
                reachable.add(obj.id)
                self._visit_edges(obj, push)

            garbage = [o for o in objects if o.id not in reachable]
            garbage_ids = {o.id for o in garbage}
            for obj in garbage:
                obj.state = ObjectState.FREEING
            for obj in garbage:
                self._finalize(obj)
            for obj in garbage:
                for child in obj.release_children():
                    if child.payload.id not in garbage_ids:
                        self.free_value(child)
            for obj in garbage:
                obj.state = ObjectState.FREED
                obj.opaque = None
                self._objects.pop(obj.id, None)
            return len(garbage)
        finally:
            self._in_gc = False
            self._alloc_since_gc = 0

    # Jobs

    def enqueue_job(self, ctx: "EngineContext", func: Callable, args: List[JSValue]) -> None:
        """Queue a job. Arguments are duplicated."""
        self._jobs.append(Job(ctx, func, [self.dup_value(a) for a in args]))

    def is_job_pending(self) -> bool:
        return bool(self._jobs)

    def execute_pending_job(self) -> Tuple[int, Optional["EngineContext"]]:
        """
        Run one job.

        Returns (1, ctx) when a job ran, (0, None) when idle and (-1, ctx)
        when the job raised; the exception is left pending on ctx.
        """
        if not self._jobs:
            return 0, None
        job = self._jobs.popleft()
        ctx = job.ctx
        try:
            if not ctx.alive:
                return 1, ctx
            result = job.func(ctx, job.args)
        finally:
            for arg in job.args:
                self.free_value(arg)
        if result.tag == Tag.EXCEPTION:
            return -1, ctx
        self.free_value(result)
        return 1, ctx

    # Teardown

    def free(self) -> None:
        """Free every context, drop queued jobs and finalize whatever is left."""
        if self.freed:
            return
        for ctx in list(self.contexts):
            ctx.free()
        while self._jobs:
            job = self._jobs.popleft()
            for arg in job.args:
                self.free_value(arg)
        self.run_gc()

        # Leaked objects still get their finalizers.
        leaked = list(self._objects.values())
        for obj in leaked:
            obj.state = ObjectState.FREEING
        for obj in leaked:
            self._finalize(obj)
        for obj in leaked:
            obj.release_children()
            obj.state = ObjectState.FREED
            obj.opaque = None
        self._objects.clear()
        self.freed = True
