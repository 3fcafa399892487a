"""
Native modules with two-phase export.

Exports can be declared at any time before the module is linked. They are
held here, invisible to script, and flushed into the engine's module
namespace when the engine runs the module's init callback at link time.
"""

from typing import Any, Callable, Dict, Optional, Tuple, TYPE_CHECKING

from .._engine import convert, module as _module
from .._engine.context import EngineContext
from .._values.value import Value
from .disposable import Disposable
from .report import throw_native_error

if TYPE_CHECKING:
    from .._binding.klass import Class
    from .._binding.ownership import RefClass, WeakClass
    from .context import Context

# (value, None) for plain exports, (None, factory) for deferred ones
PendingExport = Tuple[Optional[Value], Optional[Callable[["Context"], Any]]]


class Module(Disposable):
    """A named export table, linked into the engine exactly once."""

    def __init__(self, context: "Context", name: str):
        module_def = _module.new_c_module(context.ctx, name, self._on_init)
        if module_def is None:
            raise ValueError(f"module '{name}' already exists")
        module_def.opaque = self
        self.context = context
        self.name = name
        self.module_def = module_def
        self._exports: Dict[str, PendingExport] = {}
        self.flush_count = 0

    @property
    def linked(self) -> bool:
        return self.module_def.status == _module.ModuleStatus.LINKED

    def _declare(self, name: str, pending: PendingExport) -> bool:
        if self.module_def.status != _module.ModuleStatus.UNLINKED:
            raise RuntimeError(f"module '{self.name}' is already linked; cannot export '{name}'")
        rslt = _module.add_module_export(self.context.ctx, self.module_def, name)
        old = self._exports.pop(name, None)
        self._exports[name] = pending
        if old is not None and old[0] is not None:
            old[0].dispose()
        return rslt == 0

    def export(self, name: str, value: Any) -> bool:
        """Declare `name`. Redeclaring replaces the pending value."""
        return self._declare(name, (self.context.new_value(value), None))

    def export_lazy(self, name: str, factory: Callable[["Context"], Any]) -> bool:
        """Declare `name` with a value computed at link time."""
        return self._declare(name, (None, factory))

    def export_string(self, name: str, value: str) -> bool:
        return self.export(name, self.context.new_string(value))

    def export_int32(self, name: str, value: int) -> bool:
        return self.export(name, self.context.new_int32(value))

    def export_uint32(self, name: str, value: int) -> bool:
        return self.export(name, self.context.new_uint32(value))

    def export_int64(self, name: str, value: int) -> bool:
        return self.export(name, self.context.new_int64(value))

    def export_uint64(self, name: str, value: int) -> bool:
        return self.export(name, self.context.new_big_uint64(value))

    def export_float32(self, name: str, value: float) -> bool:
        return self.export(name, self.context.new_float64(convert.round_float32(value)))

    def export_float64(self, name: str, value: float) -> bool:
        return self.export(name, self.context.new_float64(value))

    def export_cfunc(self, name: str, func: Callable, length: int = 0) -> bool:
        """Export a raw engine function func(ctx, this, argv) -> JSValue."""
        return self.export(name, self.context.new_c_function(func, name, length))

    def export_func(self, name: str, func: Callable) -> bool:
        """Export func(context, args)."""
        return self.export(name, self.context.new_function(name, func))

    def export_class(self, name: str, native_type: type) -> "Class":
        from .._binding.klass import Class

        return Class(self.context, name, native_type, module=self)

    def export_weak_class(self, name: str, native_type: type) -> "WeakClass":
        from .._binding.ownership import WeakClass

        return WeakClass(self.context, name, native_type, module=self)

    def export_ref_class(self, name: str, native_type: type) -> "RefClass":
        from .._binding.ownership import RefClass

        return RefClass(self.context, name, native_type, module=self)

    def import_meta(self) -> Value:
        return self.context.wrap(_module.get_import_meta(self.context.ctx, self.module_def))

    def _on_init(self, ctx: EngineContext, module_def: _module.ModuleDef) -> int:
        """Link-time callback: flush every pending export into the namespace."""
        pending, self._exports = self._exports, {}
        try:
            for name, (value, factory) in pending.items():
                if factory is not None:
                    try:
                        value = self.context.new_value(factory(self.context))
                    except Exception as e:
                        throw_native_error(self.context, e)
                        return -1
                _module.set_module_export(ctx, module_def, name, value.copy_value())
                if factory is not None:
                    value.dispose()
        finally:
            for value, _ in pending.values():
                if value is not None:
                    value.dispose()
        self.flush_count += 1
        return 0

    def dispose(self) -> None:
        for value, _ in self._exports.values():
            if value is not None:
                value.dispose()
        self._exports = {}

    def __repr__(self):
        return f"<Module {self.name!r} exports={list(self._exports)}>"
