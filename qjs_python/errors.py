"""
Exceptions raised by the binding layer.

Native code raises these; trampolines convert them into engine exceptions
before control returns to the engine.
"""

from typing import List, Optional, TYPE_CHECKING

from ._engine.heap import EngineError

if TYPE_CHECKING:
    from ._values.value import Value


class BindingError(Exception):
    """Base class for binding failures."""


class ConstructionFailure(BindingError):
    """A native constructor declined to produce an instance."""


class WrongReceiverType(BindingError, TypeError):
    """`this` is not an instance of the expected native class."""

    def __init__(self, expected: str, class_id: int = 0):
        self.expected = expected
        self.class_id = class_id
        super().__init__(f"object is not an instance of {expected}")


class MissingCapability(BindingError):
    """An optional hook is not implemented by the script object."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"no function named '{name}'")


class ScriptException(BindingError):
    """
    An engine exception surfaced to native code.

    `value` is the thrown engine value (owned, may be None when it has
    already been handed back to the engine).
    """

    def __init__(self, message: str, value: Optional["Value"] = None):
        self.value = value
        super().__init__(message)


class UnhandledRejection(BindingError):
    """One or more promises were rejected with no handler attached."""

    def __init__(self, messages: List[str]):
        self.messages = messages
        super().__init__("\n".join(messages))


class ArgumentOverflowError(AssertionError):
    """More arguments were passed than an ArgList can hold."""


__all__ = [
    "BindingError",
    "ConstructionFailure",
    "WrongReceiverType",
    "MissingCapability",
    "ScriptException",
    "UnhandledRejection",
    "ArgumentOverflowError",
    "EngineError",
]
