"""Runtime components: runtime, contexts, modules and instance tracking."""

from .disposable import Disposable, dispose_all
from .ref_tracker import RefTracker
from .instance import InstanceRef, Ownership
from .tasks import TaskQueue
from .report import format_exception, throw_native_error
from .context import Context
from .module import Module
from .runtime import Runtime

__all__ = [
    "Disposable",
    "dispose_all",
    "RefTracker",
    "InstanceRef",
    "Ownership",
    "TaskQueue",
    "format_exception",
    "throw_native_error",
    "Context",
    "Module",
    "Runtime",
]
