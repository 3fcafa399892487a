"""
Binding of a native Python type to a script-constructible class.

A class owns one prototype per context. Constructors, methods, accessors
and the iterator slot are native functions defined on that prototype; the
instances carry an InstanceRef in their opaque slot.
"""

from typing import Any, Callable, Generic, Optional, TypeVar, TYPE_CHECKING

from .._engine import convert
from .._engine.heap import EngineRuntime
from .._engine.types import CFuncKind, ClassDef, JSValue, JS_UNDEFINED, Tag
from .._runtime.instance import InstanceRef, Ownership
from .._values.value import Value, WeakValue
from ..errors import BindingError, WrongReceiverType
from . import trampoline
from .registry import get_this, is_subclass

if TYPE_CHECKING:
    from .._runtime.context import Context
    from .._runtime.module import Module

T = TypeVar("T")

MarkFunc = Callable[[JSValue], None]


def _finalize_instance(rt: EngineRuntime, val: JSValue) -> None:
    ref = val.payload.opaque
    if isinstance(ref, InstanceRef):
        ref.finalize()


def _mark_instance(rt: EngineRuntime, val: JSValue, mark_func: MarkFunc) -> None:
    ref = val.payload.opaque
    if isinstance(ref, InstanceRef) and ref.mark is not None:
        native = ref.get()
        if native is not None:
            ref.mark(native, mark_func)


class ClassBase:
    """
    Declaration surface shared by every ownership mode.

    Subclasses decide what attaching an instance to a proxy means and what
    happens to the native when the proxy is finalized.
    """

    ownership = Ownership.OWNED

    def __init__(
        self,
        context: "Context",
        name: str,
        class_id: int,
        module: Optional["Module"] = None,
    ):
        self.context = context
        self.name = name
        self.class_id = class_id
        self.module = module
        self._constructor: Optional[Value] = None
        self._dtor: Optional[Callable[[Any], None]] = None
        self._mark: Optional[Callable[[Any, MarkFunc], None]] = None

    # Registration

    def init(
        self,
        dtor: Optional[Callable[[Any], None]] = None,
        mark: Optional[Callable[[Any, MarkFunc], None]] = None,
        parent_id: int = 0,
    ) -> "ClassBase":
        """
        Register the class and create its prototype in this context.

        `dtor(native)` runs when an owned instance is finalized. `mark(native,
        mark_func)` must report every engine value the native keeps alive.
        """
        self._dtor = dtor
        self._mark = mark
        self._register(ClassDef(self.name, _finalize_instance, _mark_instance), parent_id)
        return self

    def init_with_finalizer(
        self,
        finalizer: Callable[[EngineRuntime, JSValue], None],
        gc_mark: Optional[Callable[[EngineRuntime, JSValue, MarkFunc], None]] = None,
        parent_id: int = 0,
    ) -> "ClassBase":
        """Register the class with raw engine hooks, run ahead of the instance bookkeeping."""

        def finalize(rt, val):
            try:
                finalizer(rt, val)
            finally:
                _finalize_instance(rt, val)

        def mark(rt, val, mark_func):
            if gc_mark is not None:
                gc_mark(rt, val, mark_func)
            _mark_instance(rt, val, mark_func)

        self._register(ClassDef(self.name, finalize, mark), parent_id)
        return self

    def _register(self, class_def: ClassDef, parent_id: int) -> None:
        context = self.context
        ctx = context.ctx
        existing_proto = ctx.get_class_proto(self.class_id)
        if existing_proto.tag == Tag.OBJECT:
            ctx.rt.free_value(existing_proto)
            raise BindingError(f"class {self.name} is already initialized in this context")

        rt = context.runtime.rt
        if rt.new_class(self.class_id, class_def) < 0:
            # another context registered the type; only the shared hooks are compatible
            existing = rt.get_class_def(self.class_id)
            if (
                existing is None
                or existing.finalizer is not class_def.finalizer
                or existing.gc_mark is not class_def.gc_mark
            ):
                registered = existing.class_name if existing is not None else "a builtin class"
                raise BindingError(
                    f"class id {self.class_id} of {self.name} is already registered as {registered}"
                )

        proto = context.new_object()
        if parent_id:
            parent_proto = ctx.get_class_proto(parent_id)
            if parent_proto.tag != Tag.OBJECT:
                proto.dispose()
                raise BindingError(f"invalid parent class id {parent_id} for {self.name}")
            ctx.set_prototype(proto.raw, parent_proto)
            ctx.rt.free_value(parent_proto)
            context.add_class_id(self.class_id, parent_id)
        ctx.set_class_proto(self.class_id, proto.release())

    @property
    def prototype(self) -> Value:
        return Value(self.context, self.context.ctx.get_class_proto(self.class_id))

    @property
    def constructor(self) -> Optional[Value]:
        if self._constructor is None:
            return None
        return self._constructor.dup()

    def _new_function(self, func: Callable, name: str, length: int, kind: CFuncKind) -> JSValue:
        raw = self.context.ctx.new_c_function(func, name, length, kind)
        if raw.tag == Tag.EXCEPTION:
            raise self.context.take_exception()
        return raw

    def _require_prototype(self) -> Value:
        proto = self.prototype
        if proto.tag != Tag.OBJECT:
            raise BindingError(f"class {self.name} is not initialized")
        return proto

    def _define(self, name: str, raw: JSValue) -> None:
        try:
            proto = self._require_prototype()
        except BindingError:
            self.context.runtime.rt.free_value(raw)
            raise
        with proto:
            self.context.ctx.define_property_value(proto.raw, name, raw, enumerable=False)

    # Prototype constants

    def add_value(self, name: str, value: Any) -> None:
        self._define(name, self.context.new_value(value).release())

    def add_string(self, name: str, value: str) -> None:
        self.add_value(name, self.context.new_string(value))

    def add_int32(self, name: str, value: int) -> None:
        self.add_value(name, self.context.new_int32(value))

    def add_int64(self, name: str, value: int) -> None:
        self.add_value(name, self.context.new_int64(value))

    def add_float(self, name: str, value: float) -> None:
        self.add_value(name, self.context.new_float64(convert.round_float32(value)))

    def add_float64(self, name: str, value: float) -> None:
        self.add_value(name, self.context.new_float64(value))

    # Members

    def _publish_constructor(self, ctor: Callable, length: int) -> None:
        with self._require_prototype() as proto:
            func = self._new_function(ctor, self.name, length, CFuncKind.CONSTRUCTOR)
            self.context.ctx.set_constructor(func, proto.raw)
        if self._constructor is not None:
            self._constructor.dispose()
        self._constructor = Value(self.context, func)
        if self.module is not None:
            self.module.export(self.name, self._constructor)
        else:
            with self.context.global_object() as global_obj:
                global_obj.set_property(self.name, self._constructor)

    def add_ctor(self, ctor: Callable[["Context", Any], Optional[Any]], length: int = 0) -> None:
        """Constructor that builds the native first: ctor(context, args)."""
        self._publish_constructor(trampoline.ctor_trampoline(self, ctor), length)

    def add_ctor2(self, ctor: Callable[["Context", WeakValue, Any], Optional[Any]], length: int = 0) -> None:
        """Constructor that receives the new object: ctor(context, this, args)."""
        self._publish_constructor(trampoline.ctor2_trampoline(self, ctor), length)

    def add_func(self, name: str, func: Callable, length: int = 0) -> None:
        """Method: func(native, context, args)."""
        raw = self._new_function(trampoline.method_trampoline(self, func), name, length, CFuncKind.GENERIC)
        self._define(name, raw)

    def add_cfunc(self, name: str, func: Callable, length: int = 0) -> None:
        """Raw engine method: func(ctx, this, argv) -> JSValue."""
        self._define(name, self._new_function(func, name, length, CFuncKind.GENERIC))

    def add_get_set(self, name: str, get: Optional[Callable] = None, set: Optional[Callable] = None) -> None:
        """Accessor pair: get(native, context) and set(native, context, value)."""
        with self._require_prototype() as proto:
            getter = JS_UNDEFINED
            setter = JS_UNDEFINED
            if get is not None:
                getter = self._new_function(trampoline.getter_trampoline(self, get), name, 0, CFuncKind.GETTER)
            if set is not None:
                setter = self._new_function(trampoline.setter_trampoline(self, set), name, 1, CFuncKind.SETTER)
            self.context.ctx.define_property_get_set(proto.raw, name, getter, setter)

    def add_get(self, name: str, get: Callable) -> None:
        self.add_get_set(name, get=get)

    def add_set(self, name: str, set: Callable) -> None:
        self.add_get_set(name, set=set)

    def add_iterator(self, name: str, itr: Callable) -> None:
        """Iterator step: itr(native, context, args) -> (value, finished)."""
        raw = self._new_function(trampoline.iterator_trampoline(self, itr), name, 0, CFuncKind.ITERATOR_NEXT)
        self._define(name, raw)

    # Instances

    def _adopt(self, context: "Context", obj: JSValue, native: Any) -> None:
        """Hook run before a native is attached to a new proxy."""

    def _releaser(self, obj: JSValue) -> Optional[Callable[[Any], None]]:
        return self._dtor

    def attach(self, context: "Context", obj: JSValue, native: Any, class_id: int = 0) -> InstanceRef:
        """Store `native` in the opaque slot of a freshly allocated `obj`."""
        self._adopt(context, obj, native)
        ref = InstanceRef.create(
            context,
            class_id or self.class_id,
            native,
            self.ownership,
            self._releaser(obj),
            self._mark,
        )
        context.ctx.set_opaque(obj, ref)
        return ref

    def keep_constructed(self, context: "Context", native: Any) -> None:
        """Take ownership of a native built by a script constructor. Proxies already own theirs."""

    def discard(self, native: Any) -> None:
        """Dispose of a native whose proxy could not be allocated."""
        if self._dtor is not None:
            self._dtor(native)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r} id={self.class_id}>"


class Class(ClassBase, Generic[T]):
    """
    A native type bound as an owned class: the proxy owns its instance and
    finalizing the proxy runs `dtor`.
    """

    def __init__(
        self,
        context: "Context",
        name: str,
        native_type: type,
        module: Optional["Module"] = None,
    ):
        super().__init__(context, name, context.runtime.class_id_for(native_type), module)
        self.native_type = native_type

    def to_c(self, value: WeakValue) -> Optional[T]:
        """The native behind `value`, or None if it is not an instance of this class."""
        try:
            return get_this(value.context, value.raw, self.class_id)
        except WrongReceiverType:
            return None

    def unwrap(self, value: WeakValue) -> T:
        """Like `to_c`, but raises WrongReceiverType instead of returning None."""
        native = get_this(value.context, value.raw, self.class_id)
        if native is None:
            raise WrongReceiverType(self.name, value.context.ctx.get_class_id(value.raw))
        return native

    def to_js(self, context: "Context", native: Optional[T]) -> Value:
        """Wrap `native` in a new proxy. None becomes null."""
        if native is None:
            return context.new_null()
        return self.to_js_by_id(context, native, self.class_id)

    def to_js_by_id(self, context: "Context", native: T, class_id: int) -> Value:
        """Wrap `native` in a proxy of `class_id`, which must be this class or a subclass."""
        if not is_subclass(context, class_id, self.class_id):
            raise WrongReceiverType(self.name, class_id)
        obj = context.new_class_object(class_id)
        try:
            self.attach(context, obj.raw, native, class_id)
        except Exception:
            obj.dispose()
            raise
        return obj
