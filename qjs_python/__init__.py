"""
qjs-python: expose native Python objects to an embedded script engine.

Usage:
    from qjs_python import create_context

    context = create_context()
    module = context.new_module("app")
    module.export_int32("FOO", 7)
    ns = context.import_module("app")
"""

from ._runtime import Context, Module, Runtime
from ._values import ArgList, Value, WeakValue
from ._binding import (
    Class,
    ClassBase,
    EventDelegate,
    Hook,
    Promise,
    RefClass,
    RefCounted,
    ScriptProxied,
    WeakClass,
    get_this,
    run_in_worker,
)
from ._engine import ErrorKind, JSValue, PromiseState, Tag
from .errors import (
    ArgumentOverflowError,
    BindingError,
    ConstructionFailure,
    EngineError,
    MissingCapability,
    ScriptException,
    UnhandledRejection,
    WrongReceiverType,
)

__version__ = "0.1.0"

__all__ = [
    "create_context",
    "Runtime",
    "Context",
    "Module",
    "ArgList",
    "Value",
    "WeakValue",
    "Class",
    "ClassBase",
    "WeakClass",
    "RefClass",
    "RefCounted",
    "ScriptProxied",
    "EventDelegate",
    "Hook",
    "Promise",
    "get_this",
    "run_in_worker",
    "ErrorKind",
    "JSValue",
    "PromiseState",
    "Tag",
    "ArgumentOverflowError",
    "BindingError",
    "ConstructionFailure",
    "EngineError",
    "MissingCapability",
    "ScriptException",
    "UnhandledRejection",
    "WrongReceiverType",
]


def create_context(**runtime_options) -> Context:
    """
    Create a runtime and a context on it.

    Keyword arguments are passed to Runtime. Dispose the context's runtime
    to tear both down.
    """
    return Runtime(**runtime_options).new_context()
