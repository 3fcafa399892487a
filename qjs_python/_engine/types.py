"""
Engine type definitions.

Tag numbering follows the QuickJS value representation so that raw values
read the same way the engine's C API does.
Reference: https://github.com/bellard/quickjs/blob/master/quickjs.h
"""

from enum import IntEnum
from typing import Any, Callable, Optional


class Tag(IntEnum):
    """Value tags. All tags with a reference count are negative."""

    BIG_INT = -10
    STRING = -7
    OBJECT = -1
    INT = 0
    BOOL = 1
    NULL = 2
    UNDEFINED = 3
    UNINITIALIZED = 4
    EXCEPTION = 6
    FLOAT64 = 7


class CFuncKind(IntEnum):
    """Calling convention of a native function."""

    GENERIC = 0
    CONSTRUCTOR = 1
    GETTER = 2
    SETTER = 3
    ITERATOR_NEXT = 4


class ErrorKind(IntEnum):
    """Native error classes."""

    ERROR = 0
    SYNTAX = 1
    TYPE = 2
    REFERENCE = 3
    RANGE = 4
    INTERNAL = 5


ERROR_NAMES = {
    ErrorKind.ERROR: "Error",
    ErrorKind.SYNTAX: "SyntaxError",
    ErrorKind.TYPE: "TypeError",
    ErrorKind.REFERENCE: "ReferenceError",
    ErrorKind.RANGE: "RangeError",
    ErrorKind.INTERNAL: "InternalError",
}


class ClassID(IntEnum):
    """Built-in class ids. User classes are allocated from CLASS_INIT_COUNT."""

    OBJECT = 1
    ARRAY = 2
    ERROR = 3
    C_FUNCTION = 4
    PROMISE = 5
    MODULE_NS = 6


class ObjectState(IntEnum):
    LIVE = 0
    FREEING = 1  # finalizer running or being swept
    FREED = 2


class PromiseState(IntEnum):
    PENDING = 0
    FULFILLED = 1
    REJECTED = 2


# Limits and defaults
CLASS_INIT_COUNT = 16
MAX_ARG_COUNT = 16
DEFAULT_GC_THRESHOLD = 1024  # allocations between automatic collections
DEFAULT_MAX_STACK_SIZE = 256  # nested native calls
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class JSValue:
    """
    A raw engine value: a tag and a payload.

    For object-tagged values the payload is the heap object itself and the
    value is only valid while somebody holds a reference count on it.
    Raw values carry no ownership; that is what `Value` is for.
    """

    __slots__ = ("tag", "payload")

    def __init__(self, tag: Tag, payload: Any = None):
        self.tag = tag
        self.payload = payload

    def __eq__(self, other):
        if not isinstance(other, JSValue):
            return NotImplemented
        if self.tag == Tag.OBJECT:
            return other.tag == Tag.OBJECT and self.payload is other.payload
        return self.tag == other.tag and self.payload == other.payload

    def __hash__(self):
        if self.tag == Tag.OBJECT:
            return hash((self.tag, id(self.payload)))
        return hash((self.tag, self.payload))

    def __repr__(self):
        if self.tag == Tag.OBJECT:
            return f"<JSValue OBJECT {self.payload!r}>"
        return f"<JSValue {self.tag.name} {self.payload!r}>"


JS_UNDEFINED = JSValue(Tag.UNDEFINED)
JS_NULL = JSValue(Tag.NULL)
JS_TRUE = JSValue(Tag.BOOL, True)
JS_FALSE = JSValue(Tag.BOOL, False)
JS_EXCEPTION = JSValue(Tag.EXCEPTION)
JS_UNINITIALIZED = JSValue(Tag.UNINITIALIZED)


def has_ref_count(value: JSValue) -> bool:
    """Check if a raw value is reference counted."""
    return value.tag == Tag.OBJECT


def new_bool(value: bool) -> JSValue:
    return JS_TRUE if value else JS_FALSE


def new_number(value: Any) -> JSValue:
    """Create a number, packed as INT when it fits in 32 bits."""
    if isinstance(value, bool):
        return new_bool(value)
    if isinstance(value, int) and INT32_MIN <= value <= INT32_MAX:
        return JSValue(Tag.INT, value)
    return JSValue(Tag.FLOAT64, float(value))


def new_string(value: str) -> JSValue:
    return JSValue(Tag.STRING, value)


def new_big_int(value: int) -> JSValue:
    return JSValue(Tag.BIG_INT, int(value))


class ClassDef:
    """
    Runtime-level class definition.

    finalizer(rt, val) runs when an instance is freed.
    gc_mark(rt, val, mark_func) must report every engine value the instance
    retains outside the engine's own property tables.
    """

    def __init__(
        self,
        class_name: str,
        finalizer: Optional[Callable] = None,
        gc_mark: Optional[Callable] = None,
    ):
        self.class_name = class_name
        self.finalizer = finalizer
        self.gc_mark = gc_mark

    def __repr__(self):
        return f"<ClassDef {self.class_name}>"
