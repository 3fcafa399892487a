"""
Engine execution context.

One context owns a global object, the intrinsic prototypes, the per-class
prototype table, the pending exception slot and the C-module table.
All value-returning methods return owned raw values (the caller must free
them) and signal failure by returning JS_EXCEPTION with the exception
left pending on the context.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from .heap import (
    ArrayObject,
    EngineError,
    FunctionObject,
    HeapObject,
    PromiseObject,
    Property,
)
from .types import (
    CLASS_INIT_COUNT,
    ERROR_NAMES,
    CFuncKind,
    ClassID,
    ErrorKind,
    JSValue,
    JS_EXCEPTION,
    JS_NULL,
    JS_UNDEFINED,
    Tag,
    new_bool,
    new_number,
    new_string,
)
from . import promise as _promise

if TYPE_CHECKING:
    from .heap import EngineRuntime
    from .module import ModuleDef


def _is_index(name: str) -> bool:
    return name.isdigit() and (name == "0" or not name.startswith("0"))


class EngineContext:
    """A single script execution context."""

    def __init__(self, rt: "EngineRuntime"):
        self.rt = rt
        self.opaque: Any = None
        self.alive = True
        self.modules: Dict[str, "ModuleDef"] = {}

        self._exception: Optional[JSValue] = None
        self._in_oom = False
        self._frames: List[str] = []
        self._class_protos: Dict[int, JSValue] = {}
        self._error_protos: Dict[ErrorKind, JSValue] = {}

        rt.contexts.append(self)
        self._init_intrinsics()

    def _init_intrinsics(self) -> None:
        object_proto = self._allocate(HeapObject(ClassID.OBJECT, None))
        self._class_protos[ClassID.OBJECT] = object_proto
        for class_id in (ClassID.C_FUNCTION, ClassID.ARRAY, ClassID.PROMISE):
            self._class_protos[class_id] = self.new_object_proto(object_proto)

        base = self.new_object_proto(object_proto)
        self.define_property_value(base, "message", new_string(""), enumerable=False)
        self._class_protos[ClassID.ERROR] = base
        for kind, name in ERROR_NAMES.items():
            if kind == ErrorKind.ERROR:
                proto = self.rt.dup_value(base)
            else:
                proto = self.new_object_proto(base)
            self.define_property_value(proto, "name", new_string(name), enumerable=False)
            self._error_protos[kind] = proto

        _promise.install_promise_proto(self, self._class_protos[ClassID.PROMISE])
        self._global = self.new_object()

    # Allocation

    def _proto_ref(self, proto: JSValue) -> Optional[HeapObject]:
        if proto.tag == Tag.OBJECT:
            self.rt.dup_value(proto)
            return proto.payload
        return None

    def _allocate(self, obj: HeapObject) -> JSValue:
        rt = self.rt
        rt.maybe_gc()
        if rt.memory_limit and not self._in_oom and rt.live_object_count >= rt.memory_limit:
            rt.run_gc()
            if rt.live_object_count >= rt.memory_limit:
                for child in obj.release_children():
                    rt.free_value(child)
                return self.throw_out_of_memory()
        return rt.register_object(obj, self)

    def new_object_proto_class(self, proto: JSValue, class_id: int) -> JSValue:
        return self._allocate(HeapObject(class_id, self._proto_ref(proto)))

    def new_object_proto(self, proto: JSValue) -> JSValue:
        return self.new_object_proto_class(proto, ClassID.OBJECT)

    def new_object_class(self, class_id: int) -> JSValue:
        return self.new_object_proto_class(self._class_protos.get(class_id, JS_NULL), class_id)

    def new_object(self) -> JSValue:
        return self.new_object_proto(self._class_protos[ClassID.OBJECT])

    def new_array(self) -> JSValue:
        return self._allocate(ArrayObject(self._proto_ref(self._class_protos[ClassID.ARRAY])))

    def new_promise_object(self) -> JSValue:
        return self._allocate(PromiseObject(self._proto_ref(self._class_protos[ClassID.PROMISE])))

    def new_c_function(
        self,
        func: Callable,
        name: str,
        length: int,
        kind: CFuncKind = CFuncKind.GENERIC,
    ) -> JSValue:
        """Create a native function. See `_invoke_c` for the calling convention."""
        return self._new_function(func, name, length, kind, 0, None)

    def new_c_function_data(
        self,
        func: Callable,
        length: int,
        magic: int,
        data: Sequence[JSValue],
        name: str = "",
    ) -> JSValue:
        """Create a native function with bound data: func(ctx, this, argv, magic, data)."""
        owned = [self.rt.dup_value(v) for v in data]
        return self._new_function(func, name, length, CFuncKind.GENERIC, magic, owned)

    def _new_function(self, func, name, length, kind, magic, data) -> JSValue:
        fobj = FunctionObject(
            self._proto_ref(self._class_protos[ClassID.C_FUNCTION]),
            func,
            name,
            length,
            kind,
            magic,
            data,
        )
        fobj.props["name"] = Property(new_string(name), enumerable=False)
        fobj.props["length"] = Property(new_number(length), enumerable=False)
        return self._allocate(fobj)

    def new_error(self, kind: ErrorKind, message: str) -> JSValue:
        err = self.new_object_proto_class(self._error_protos[kind], ClassID.ERROR)
        if err.tag == Tag.EXCEPTION:
            return err
        err.payload.props["message"] = Property(new_string(message), enumerable=False)
        err.payload.props["stack"] = Property(new_string(self._format_stack()), enumerable=False)
        return err

    def _format_stack(self) -> str:
        return "".join(f"    at {name} (native)\n" for name in reversed(self._frames))

    def set_constructor(self, func: JSValue, proto: JSValue) -> None:
        """Link a constructor and its prototype both ways."""
        self.define_property_value(func, "prototype", self.rt.dup_value(proto), enumerable=False)
        self.define_property_value(proto, "constructor", self.rt.dup_value(func), enumerable=False)

    def set_class_proto(self, class_id: int, proto: JSValue) -> None:
        """Set the prototype used for new objects of `class_id`. Takes ownership."""
        old = self._class_protos.pop(class_id, None)
        self._class_protos[class_id] = proto
        if old is not None:
            self.rt.free_value(old)

    def get_class_proto(self, class_id: int) -> JSValue:
        proto = self._class_protos.get(class_id)
        if proto is None:
            return JS_NULL
        return self.rt.dup_value(proto)

    def get_global_object(self) -> JSValue:
        return self.rt.dup_value(self._global)

    # Predicates and opaque slots

    def is_function(self, value: JSValue) -> bool:
        return value.tag == Tag.OBJECT and isinstance(value.payload, FunctionObject)

    def is_constructor(self, value: JSValue) -> bool:
        return self.is_function(value) and value.payload.kind == CFuncKind.CONSTRUCTOR

    def is_array(self, value: JSValue) -> bool:
        return value.tag == Tag.OBJECT and isinstance(value.payload, ArrayObject)

    def is_error(self, value: JSValue) -> bool:
        return value.tag == Tag.OBJECT and value.payload.class_id == ClassID.ERROR

    def is_promise(self, value: JSValue) -> bool:
        return value.tag == Tag.OBJECT and isinstance(value.payload, PromiseObject)

    def get_class_id(self, value: JSValue) -> int:
        if value.tag != Tag.OBJECT:
            return 0
        return value.payload.class_id

    def set_opaque(self, value: JSValue, opaque: Any) -> int:
        if value.tag != Tag.OBJECT or value.payload.class_id < CLASS_INIT_COUNT:
            return -1
        value.payload.opaque = opaque
        return 0

    def get_opaque(self, value: JSValue, class_id: int) -> Any:
        """Return the opaque slot if the object is exactly of `class_id`."""
        if value.tag != Tag.OBJECT or value.payload.class_id != class_id:
            return None
        return value.payload.opaque

    # Properties

    @staticmethod
    def _lookup(obj: Optional[HeapObject], name: str) -> Optional[Property]:
        while obj is not None:
            prop = obj.props.get(name)
            if prop is not None:
                return prop
            obj = obj.proto
        return None

    def get_property(self, this: JSValue, name: str) -> JSValue:
        if this.tag != Tag.OBJECT:
            if this.tag in (Tag.UNDEFINED, Tag.NULL):
                kind = "undefined" if this.tag == Tag.UNDEFINED else "null"
                return self.throw_type_error(f"cannot read property '{name}' of {kind}")
            if this.tag == Tag.STRING:
                if name == "length":
                    return new_number(len(this.payload))
                if _is_index(name) and int(name) < len(this.payload):
                    return new_string(this.payload[int(name)])
            return JS_UNDEFINED
        obj = this.payload
        if isinstance(obj, ArrayObject) and name == "length":
            return new_number(obj.length)
        prop = self._lookup(obj, name)
        if prop is None:
            return JS_UNDEFINED
        if prop.is_accessor:
            if prop.getter is None or prop.getter.tag != Tag.OBJECT:
                return JS_UNDEFINED
            return self.call(prop.getter, this, [])
        return self.rt.dup_value(prop.value)

    def get_property_uint32(self, this: JSValue, index: int) -> JSValue:
        return self.get_property(this, str(index))

    def set_property(self, this: JSValue, name: str, value: JSValue) -> int:
        """Assign a property, running inherited setters. Takes ownership of `value`."""
        if this.tag != Tag.OBJECT:
            self.rt.free_value(value)
            self.throw_type_error(f"cannot set property '{name}' of non-object")
            return -1
        prop = self._lookup(this.payload, name)
        if prop is not None and prop.is_accessor:
            if prop.setter is None or prop.setter.tag != Tag.OBJECT:
                self.rt.free_value(value)
                self.throw_type_error(f"no setter for property '{name}'")
                return -1
            result = self.call(prop.setter, this, [value])
            self.rt.free_value(value)
            if result.tag == Tag.EXCEPTION:
                return -1
            self.rt.free_value(result)
            return 0
        self._set_own(this.payload, name, value, True)
        return 0

    def set_property_uint32(self, this: JSValue, index: int, value: JSValue) -> int:
        return self.set_property(this, str(index), value)

    def define_property_value(
        self, this: JSValue, name: str, value: JSValue, enumerable: bool = True
    ) -> int:
        """Define an own data property without running setters. Takes ownership."""
        if this.tag != Tag.OBJECT:
            self.rt.free_value(value)
            self.throw_type_error("not an object")
            return -1
        self._set_own(this.payload, name, value, enumerable)
        return 0

    def define_property_get_set(
        self,
        this: JSValue,
        name: str,
        getter: JSValue,
        setter: JSValue,
        enumerable: bool = False,
    ) -> int:
        """Define an accessor property. Takes ownership of getter and setter."""
        if this.tag != Tag.OBJECT:
            self.rt.free_value(getter)
            self.rt.free_value(setter)
            self.throw_type_error("not an object")
            return -1
        old = this.payload.props.get(name)
        this.payload.props[name] = Property(
            JS_UNDEFINED,
            getter if getter.tag == Tag.OBJECT else None,
            setter if setter.tag == Tag.OBJECT else None,
            enumerable,
        )
        if old is not None:
            for v in old.values():
                self.rt.free_value(v)
        return 0

    def _set_own(self, obj: HeapObject, name: str, value: JSValue, enumerable: bool) -> None:
        if isinstance(obj, ArrayObject):
            if name == "length":
                self._truncate(obj, int(value.payload or 0))
                return
            if _is_index(name):
                obj.length = max(obj.length, int(name) + 1)
        own = obj.props.get(name)
        if own is not None and not own.is_accessor:
            old = own.value
            own.value = value
            self.rt.free_value(old)
            return
        obj.props[name] = Property(value, enumerable=enumerable)
        if own is not None:
            for v in own.values():
                self.rt.free_value(v)

    def _truncate(self, obj: ArrayObject, length: int) -> None:
        for name in [k for k in obj.props if _is_index(k) and int(k) >= length]:
            for v in obj.props.pop(name).values():
                self.rt.free_value(v)
        obj.length = length

    def has_property(self, this: JSValue, name: str) -> bool:
        if this.tag != Tag.OBJECT:
            return False
        if isinstance(this.payload, ArrayObject) and name == "length":
            return True
        return self._lookup(this.payload, name) is not None

    def delete_property(self, this: JSValue, name: str) -> bool:
        if this.tag != Tag.OBJECT:
            return False
        prop = this.payload.props.pop(name, None)
        if prop is None:
            return False
        for v in prop.values():
            self.rt.free_value(v)
        return True

    def get_own_property_names(self, this: JSValue) -> List[str]:
        """Own enumerable keys, array indices first."""
        if this.tag != Tag.OBJECT:
            return []
        names = [k for k, p in this.payload.props.items() if p.enumerable]
        indices = sorted((k for k in names if _is_index(k)), key=int)
        return indices + [k for k in names if not _is_index(k)]

    def get_prototype(self, this: JSValue) -> JSValue:
        if this.tag != Tag.OBJECT or this.payload.proto is None:
            return JS_NULL
        return self.rt.dup_value(JSValue(Tag.OBJECT, this.payload.proto))

    def set_prototype(self, this: JSValue, proto: JSValue) -> int:
        if this.tag != Tag.OBJECT:
            self.throw_type_error("not an object")
            return -1
        cursor = proto.payload if proto.tag == Tag.OBJECT else None
        while cursor is not None:
            if cursor is this.payload:
                self.throw_type_error("circular prototype chain")
                return -1
            cursor = cursor.proto
        old = this.payload.proto
        this.payload.proto = self._proto_ref(proto)
        if old is not None:
            self.rt.free_value(JSValue(Tag.OBJECT, old))
        return 0

    # Calls

    def call(self, func: JSValue, this: JSValue, args: Sequence[JSValue]) -> JSValue:
        """Call a function. Arguments are borrowed."""
        if not self.is_function(func):
            return self.throw_type_error("not a function")
        if func.payload.kind == CFuncKind.CONSTRUCTOR:
            return self.throw_type_error("must be called with new")
        return self._invoke_c(func.payload, this, args)

    def construct(self, ctor: JSValue, args: Sequence[JSValue]) -> JSValue:
        """Run a constructor. The constructor receives itself as new.target in `this`."""
        if not self.is_constructor(ctor):
            return self.throw_type_error("not a constructor")
        return self._invoke_c(ctor.payload, ctor, args)

    def invoke(self, this: JSValue, name: str, args: Sequence[JSValue]) -> JSValue:
        func = self.get_property(this, name)
        if func.tag == Tag.EXCEPTION:
            return func
        try:
            if not self.is_function(func):
                return self.throw_type_error(f"'{name}' is not a function")
            return self.call(func, this, args)
        finally:
            self.rt.free_value(func)

    def _invoke_c(self, fobj: FunctionObject, this: JSValue, args: Sequence[JSValue]) -> JSValue:
        """
        Dispatch to a native function by kind.

        GENERIC and CONSTRUCTOR: func(ctx, this, argv)
        GETTER: func(ctx, this)
        SETTER: func(ctx, this, value)
        ITERATOR_NEXT: func(ctx, this, argv) -> (value, done)
        With bound data: func(ctx, this, argv, magic, data)
        """
        rt = self.rt
        if rt.max_stack_size and rt.stack_depth >= rt.max_stack_size:
            return self.throw_internal_error("stack overflow")
        rt.stack_depth += 1
        self._frames.append(fobj.name or "<anonymous>")
        argv = list(args)
        try:
            if fobj.data is not None:
                result = fobj.cfunc(self, this, argv, fobj.magic, fobj.data)
            elif fobj.kind == CFuncKind.GETTER:
                result = fobj.cfunc(self, this)
            elif fobj.kind == CFuncKind.SETTER:
                result = fobj.cfunc(self, this, argv[0] if argv else JS_UNDEFINED)
            elif fobj.kind == CFuncKind.ITERATOR_NEXT:
                value, done = fobj.cfunc(self, this, argv)
                if value.tag == Tag.EXCEPTION:
                    return value
                return self._new_iterator_result(value, done)
            else:
                result = fobj.cfunc(self, this, argv)
        finally:
            self._frames.pop()
            rt.stack_depth -= 1
        if not isinstance(result, JSValue):
            raise EngineError(
                f"native function {fobj.name!r} returned {type(result).__name__}, not a JSValue"
            )
        return result

    def _new_iterator_result(self, value: JSValue, done: bool) -> JSValue:
        result = self.new_object()
        if result.tag == Tag.EXCEPTION:
            self.rt.free_value(value)
            return result
        self.define_property_value(result, "value", value)
        self.define_property_value(result, "done", new_bool(done))
        return result

    # Exceptions

    def throw(self, value: JSValue) -> JSValue:
        """Make `value` the pending exception. Takes ownership."""
        if self._exception is not None:
            self.rt.free_value(self._exception)
        self._exception = value
        return JS_EXCEPTION

    def throw_error(self, kind: ErrorKind, message: str) -> JSValue:
        err = self.new_error(kind, message)
        if err.tag == Tag.EXCEPTION:
            return err
        return self.throw(err)

    def throw_type_error(self, message: str) -> JSValue:
        return self.throw_error(ErrorKind.TYPE, message)

    def throw_internal_error(self, message: str) -> JSValue:
        return self.throw_error(ErrorKind.INTERNAL, message)

    def throw_out_of_memory(self) -> JSValue:
        if self._in_oom:
            return self.throw(JS_NULL)
        self._in_oom = True
        try:
            return self.throw_internal_error("out of memory")
        finally:
            self._in_oom = False

    def get_exception(self) -> JSValue:
        """Take the pending exception, or null when there is none."""
        exc = self._exception
        self._exception = None
        return JS_NULL if exc is None else exc

    def has_exception(self) -> bool:
        return self._exception is not None

    # JSON

    def parse_json(self, text: str, filename: str = "<input>") -> JSValue:
        try:
            data = json.loads(text, parse_constant=_reject_constant)
        except ValueError as e:
            line = getattr(e, "lineno", 1)
            msg = getattr(e, "msg", str(e))
            return self.throw_error(ErrorKind.SYNTAX, f"{filename}:{line}: {msg}")
        return self.from_python(data)

    def from_python(self, data: Any) -> JSValue:
        """Build an engine value from JSON-like Python data."""
        if data is None:
            return JS_NULL
        if isinstance(data, JSValue):
            return self.rt.dup_value(data)
        if isinstance(data, (bool, int, float)):
            return new_number(data)
        if isinstance(data, str):
            return new_string(data)
        if isinstance(data, (list, tuple)):
            arr = self.new_array()
            if arr.tag == Tag.EXCEPTION:
                return arr
            for i, item in enumerate(data):
                element = self.from_python(item)
                if element.tag == Tag.EXCEPTION:
                    self.rt.free_value(arr)
                    return element
                self._set_own(arr.payload, str(i), element, True)
            return arr
        if isinstance(data, dict):
            obj = self.new_object()
            if obj.tag == Tag.EXCEPTION:
                return obj
            for key, item in data.items():
                element = self.from_python(item)
                if element.tag == Tag.EXCEPTION:
                    self.rt.free_value(obj)
                    return element
                self._set_own(obj.payload, str(key), element, True)
            return obj
        return self.throw_type_error(f"cannot convert {type(data).__name__}")

    # Teardown

    def free(self) -> None:
        """Release everything the context owns and collect what that orphans."""
        if not self.alive:
            return
        rt = self.rt
        for module in list(self.modules.values()):
            module.free()
        self.modules.clear()
        if self._exception is not None:
            rt.free_value(self._exception)
            self._exception = None
        rt.free_value(self._global)
        for proto in self._error_protos.values():
            rt.free_value(proto)
        self._error_protos.clear()
        for proto in self._class_protos.values():
            rt.free_value(proto)
        self._class_protos.clear()
        if self in rt.contexts:
            rt.contexts.remove(self)
        rt.run_gc()
        self.alive = False


def _reject_constant(name: str):
    raise ValueError(f"unexpected token '{name}'")
