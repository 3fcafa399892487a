"""
In-process script engine surface used by the binding layer.
"""

from .types import (
    Tag,
    CFuncKind,
    ErrorKind,
    ClassID,
    ObjectState,
    PromiseState,
    ClassDef,
    JSValue,
    JS_UNDEFINED,
    JS_NULL,
    JS_TRUE,
    JS_FALSE,
    JS_EXCEPTION,
    JS_UNINITIALIZED,
    CLASS_INIT_COUNT,
    MAX_ARG_COUNT,
    DEFAULT_GC_THRESHOLD,
    DEFAULT_MAX_STACK_SIZE,
    has_ref_count,
    new_bool,
    new_number,
    new_string,
    new_big_int,
)
from .heap import EngineRuntime, EngineError, HeapObject
from .context import EngineContext
from .module import (
    ModuleDef,
    ModuleStatus,
    new_c_module,
    add_module_export,
    set_module_export,
    import_module,
    get_import_meta,
)
from .promise import new_promise_capability, promise_then, promise_state, promise_result
from . import convert

__all__ = [
    "Tag",
    "CFuncKind",
    "ErrorKind",
    "ClassID",
    "ObjectState",
    "PromiseState",
    "ClassDef",
    "JSValue",
    "JS_UNDEFINED",
    "JS_NULL",
    "JS_TRUE",
    "JS_FALSE",
    "JS_EXCEPTION",
    "JS_UNINITIALIZED",
    "CLASS_INIT_COUNT",
    "MAX_ARG_COUNT",
    "DEFAULT_GC_THRESHOLD",
    "DEFAULT_MAX_STACK_SIZE",
    "has_ref_count",
    "new_bool",
    "new_number",
    "new_string",
    "new_big_int",
    "EngineRuntime",
    "EngineError",
    "HeapObject",
    "EngineContext",
    "ModuleDef",
    "ModuleStatus",
    "new_c_module",
    "add_module_export",
    "set_module_export",
    "import_module",
    "get_import_meta",
    "new_promise_capability",
    "promise_then",
    "promise_state",
    "promise_result",
    "convert",
]
