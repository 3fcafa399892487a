"""
Handles to engine values.

`WeakValue` is a borrowed view: it never touches the reference count.
`Value` owns one reference and releases it exactly once, on `dispose()`,
on leaving a `with` block, or when the wrapper itself is collected.
"""

from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

from .._engine import convert
from .._engine.types import ClassID, JSValue, JS_UNDEFINED, Tag
from .._runtime.disposable import Disposable

if TYPE_CHECKING:
    from .._runtime.context import Context

Key = Union[str, int]


class WeakValue:
    """A non-owning view of an engine value."""

    def __init__(self, context: "Context", raw: JSValue = JS_UNDEFINED):
        self.context = context
        self.raw = raw

    @property
    def _ctx(self):
        return self.context.ctx

    # Type predicates

    @property
    def tag(self) -> Tag:
        return self.raw.tag

    def is_number(self) -> bool:
        return self.raw.tag in (Tag.INT, Tag.FLOAT64)

    def is_big_int(self) -> bool:
        return self.raw.tag == Tag.BIG_INT

    def is_bool(self) -> bool:
        return self.raw.tag == Tag.BOOL

    def is_null(self) -> bool:
        return self.raw.tag == Tag.NULL

    def is_undefined(self) -> bool:
        return self.raw.tag == Tag.UNDEFINED

    def is_exception(self) -> bool:
        return self.raw.tag == Tag.EXCEPTION

    def is_uninitialized(self) -> bool:
        return self.raw.tag == Tag.UNINITIALIZED

    def is_string(self) -> bool:
        return self.raw.tag == Tag.STRING

    def is_object(self) -> bool:
        return self.raw.tag == Tag.OBJECT

    def is_array(self) -> bool:
        return self._ctx.is_array(self.raw)

    def is_function(self) -> bool:
        return self._ctx.is_function(self.raw)

    def is_error(self) -> bool:
        return self._ctx.is_error(self.raw)

    def is_promise(self) -> bool:
        return self._ctx.is_promise(self.raw)

    # Conversions

    def _converted(self, result):
        if result is None:
            raise self.context.take_exception()
        return result

    def to_bool(self) -> bool:
        return convert.to_bool(self.raw)

    def to_int32(self) -> int:
        return self._converted(convert.to_int32(self._ctx, self.raw))

    def to_uint32(self) -> int:
        return self._converted(convert.to_uint32(self._ctx, self.raw))

    def to_int64(self) -> int:
        return self._converted(convert.to_int64(self._ctx, self.raw))

    def to_float64(self) -> float:
        return self._converted(convert.to_float64(self._ctx, self.raw))

    def to_float(self) -> float:
        """Convert to a single-precision float."""
        return convert.round_float32(self.to_float64())

    def to_big_int64(self) -> int:
        return self._converted(convert.to_big_int64(self._ctx, self.raw))

    def to_string(self) -> str:
        return self._converted(convert.to_string(self._ctx, self.raw))

    def to_python(self) -> Any:
        """Convert to plain Python data. Functions and class instances stay wrapped."""
        tag = self.raw.tag
        if tag in (Tag.UNDEFINED, Tag.NULL, Tag.UNINITIALIZED):
            return None
        if tag in (Tag.INT, Tag.FLOAT64, Tag.BOOL, Tag.STRING, Tag.BIG_INT):
            return self.raw.payload
        if self.is_array():
            return [item.to_python() for item in self._elements()]
        if self.is_object() and not self.is_function() and self._ctx.get_class_id(self.raw) == ClassID.OBJECT:
            return {name: self.get_property(name).to_python() for name in self.get_properties()}
        return Value.borrow(self.context, self.raw)

    def _elements(self) -> List["Value"]:
        return [self.get_property(i) for i in range(self.length)]

    def __str__(self):
        return self.to_string()

    def __bool__(self):
        return self.to_bool()

    def __repr__(self):
        return f"<{type(self).__name__} {self.raw!r}>"

    def __eq__(self, other):
        if isinstance(other, WeakValue):
            return self.raw == other.raw
        return NotImplemented

    def __hash__(self):
        return hash(self.raw)

    # Properties

    def get_property(self, key: Key) -> "Value":
        return self.context.wrap(self._ctx.get_property(self.raw, str(key)))

    @property
    def length(self) -> int:
        return self.get_property("length").to_int32()

    def get_properties(self) -> List[str]:
        return self._ctx.get_own_property_names(self.raw)

    def has_property(self, key: Key) -> bool:
        return self._ctx.has_property(self.raw, str(key))

    def delete_property(self, key: Key) -> bool:
        return self._ctx.delete_property(self.raw, str(key))

    def set_property(self, key: Key, value: Any) -> None:
        """Assign a property. Engine handles are duplicated, Python values converted."""
        owned = self.context.new_value(value)
        if self._ctx.set_property(self.raw, str(key), owned.release()) < 0:
            raise self.context.take_exception()

    def get_prototype(self) -> "Value":
        return Value(self.context, self._ctx.get_prototype(self.raw))

    def set_prototype(self, proto: "WeakValue") -> None:
        if self._ctx.set_prototype(self.raw, proto.raw) < 0:
            raise self.context.take_exception()

    def as_dict(self) -> Dict[str, "Value"]:
        return {name: self.get_property(name) for name in self.get_properties()}

    # Opaque slot

    def set_opaque(self, opaque: Any) -> bool:
        return self._ctx.set_opaque(self.raw, opaque) == 0

    def get_opaque(self, class_id: int) -> Any:
        return self._ctx.get_opaque(self.raw, class_id)

    def mark(self, mark_func: Callable[[JSValue], None]) -> None:
        """Report this value to the collector during a mark pass."""
        self.context.runtime.rt.mark_value(self.raw, mark_func)

    # Calls

    def call(self, *args: Any, this: Optional["WeakValue"] = None) -> "Value":
        """Call this function. Raises ScriptException if it throws."""
        argv = [self.context.new_value(a) for a in args]
        try:
            this_raw = this.raw if this is not None else JS_UNDEFINED
            return self.context.wrap(self._ctx.call(self.raw, this_raw, [a.raw for a in argv]))
        finally:
            for a in argv:
                a.dispose()

    def construct(self, *args: Any) -> "Value":
        argv = [self.context.new_value(a) for a in args]
        try:
            return self.context.wrap(self._ctx.construct(self.raw, [a.raw for a in argv]))
        finally:
            for a in argv:
                a.dispose()

    def invoke(self, name: str, *args: Any) -> "Value":
        """Call the method `name` with this value as receiver."""
        argv = [self.context.new_value(a) for a in args]
        try:
            return self.context.wrap(self._ctx.invoke(self.raw, name, [a.raw for a in argv]))
        finally:
            for a in argv:
                a.dispose()

    @property
    def ref_count(self) -> int:
        """Engine reference count, 0 for values without one."""
        if self.raw.tag != Tag.OBJECT:
            return 0
        return self.raw.payload.ref_count


class Value(WeakValue, Disposable):
    """An owning handle. Construction from a raw value takes ownership."""

    @classmethod
    def borrow(cls, context: "Context", raw: JSValue) -> "Value":
        """Wrap a borrowed raw value, taking a new reference."""
        return cls(context, context.runtime.rt.dup_value(raw))

    def dup(self) -> "Value":
        return Value.borrow(self.context, self.raw)

    __copy__ = dup

    def copy_value(self) -> JSValue:
        """Return a new raw reference the caller must free."""
        return self.context.runtime.rt.dup_value(self.raw)

    def release(self) -> JSValue:
        """Move the raw value out, leaving this handle undefined."""
        raw = self.raw
        self.raw = JS_UNDEFINED
        return raw

    def assign(self, other: WeakValue) -> "Value":
        """Replace the held value with a new reference to `other`."""
        if other.raw is not self.raw:
            raw = self.context.runtime.rt.dup_value(other.raw)
            self.dispose()
            self.raw = raw
        return self

    def dispose(self) -> None:
        raw = self.raw
        self.raw = JS_UNDEFINED
        if raw.tag == Tag.OBJECT and self.context is not None and self.context.alive:
            self.context.runtime.rt.free_value(raw)

    def __del__(self):
        if getattr(self, "raw", None) is not None:
            self.dispose()
