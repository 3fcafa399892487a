"""
Native (C) modules.

A module declares its export names up front, and its init callback fills in
the values when the module is linked. The namespace object is only built
after init has run, so no export is observable before the link step.
"""

from enum import IntEnum
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from .heap import HeapObject, Property
from .types import ClassID, ErrorKind, JSValue, JS_UNDEFINED, Tag

if TYPE_CHECKING:
    from .context import EngineContext


class ModuleStatus(IntEnum):
    UNLINKED = 0
    LINKING = 1
    LINKED = 2
    FAILED = 3


class ModuleDef:
    """
    A native module record.

    init(ctx, module) -> int is called once at link time; a negative result
    marks the module as failed.
    """

    def __init__(self, ctx: "EngineContext", name: str, init: Callable[["EngineContext", "ModuleDef"], int]):
        self.ctx = ctx
        self.name = name
        self.init = init
        self.status = ModuleStatus.UNLINKED
        self.export_names: List[str] = []
        self.exports: Dict[str, JSValue] = {}
        self.namespace: Optional[JSValue] = None
        self.meta: Optional[JSValue] = None
        self.opaque = None

    def free(self) -> None:
        rt = self.ctx.rt
        for value in self.exports.values():
            rt.free_value(value)
        self.exports.clear()
        for value in (self.namespace, self.meta):
            if value is not None:
                rt.free_value(value)
        self.namespace = None
        self.meta = None

    def __repr__(self):
        return f"<ModuleDef {self.name!r} {self.status.name}>"


def new_c_module(ctx: "EngineContext", name: str, init: Callable) -> Optional[ModuleDef]:
    """Register a module. Returns None if the name is taken."""
    if name in ctx.modules:
        return None
    module = ModuleDef(ctx, name, init)
    ctx.modules[name] = module
    return module


def add_module_export(ctx: "EngineContext", module: ModuleDef, name: str) -> int:
    """Declare an export name. Only allowed before linking."""
    if module.status != ModuleStatus.UNLINKED:
        return -1
    if name not in module.export_names:
        module.export_names.append(name)
    return 0


def set_module_export(ctx: "EngineContext", module: ModuleDef, name: str, value: JSValue) -> int:
    """Set a declared export's value during init. Takes ownership of `value`."""
    if name not in module.export_names or module.status != ModuleStatus.LINKING:
        ctx.rt.free_value(value)
        return -1
    old = module.exports.get(name)
    module.exports[name] = value
    if old is not None:
        ctx.rt.free_value(old)
    return 0


def import_module(ctx: "EngineContext", name: str) -> JSValue:
    """Link the module if needed and return its namespace object."""
    module = ctx.modules.get(name)
    if module is None:
        return ctx.throw_error(ErrorKind.REFERENCE, f"could not load module '{name}'")
    if module.status == ModuleStatus.LINKED:
        return ctx.rt.dup_value(module.namespace)
    if module.status == ModuleStatus.LINKING:
        return ctx.throw_error(ErrorKind.REFERENCE, f"circular import of module '{name}'")
    if module.status == ModuleStatus.FAILED:
        return ctx.throw_error(ErrorKind.ERROR, f"module '{name}' failed to initialize")

    module.status = ModuleStatus.LINKING
    if module.init(ctx, module) < 0:
        module.status = ModuleStatus.FAILED
        if not ctx.has_exception():
            ctx.throw_error(ErrorKind.ERROR, f"module '{name}' failed to initialize")
        return JSValue(Tag.EXCEPTION)

    ns = ctx._allocate(HeapObject(ClassID.MODULE_NS, None))
    if ns.tag == Tag.EXCEPTION:
        module.status = ModuleStatus.FAILED
        return ns
    for export_name in module.export_names:
        value = module.exports.pop(export_name, JS_UNDEFINED)
        ns.payload.props[export_name] = Property(value)
    module.namespace = ns
    module.status = ModuleStatus.LINKED
    return ctx.rt.dup_value(ns)


def get_import_meta(ctx: "EngineContext", module: ModuleDef) -> JSValue:
    if module.meta is None:
        meta = ctx.new_object_proto(JSValue(Tag.NULL))
        if meta.tag == Tag.EXCEPTION:
            return meta
        ctx.define_property_value(meta, "url", JSValue(Tag.STRING, module.name))
        module.meta = meta
    return ctx.rt.dup_value(module.meta)
