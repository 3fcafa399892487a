"""Binding layer: native classes, trampolines, the promise bridge and optional hooks."""

from .registry import class_chain, class_name, get_this, instance_ref, is_subclass
from .trampoline import function_trampoline, to_raw
from .klass import Class, ClassBase
from .ownership import RefClass, RefCounted, ScriptProxied, WeakClass
from .promise import Promise, run_in_worker
from .hooks import EVENT_HOOKS, EventDelegate, Hook

__all__ = [
    "class_chain",
    "class_name",
    "get_this",
    "instance_ref",
    "is_subclass",
    "function_trampoline",
    "to_raw",
    "Class",
    "ClassBase",
    "RefClass",
    "RefCounted",
    "ScriptProxied",
    "WeakClass",
    "Promise",
    "run_in_worker",
    "EVENT_HOOKS",
    "EventDelegate",
    "Hook",
]
