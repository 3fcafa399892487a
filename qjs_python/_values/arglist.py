"""
Call arguments marshaled out of an engine call frame.
"""

from typing import Iterator, List, Sequence, TYPE_CHECKING

from .._engine.types import JSValue, JS_UNDEFINED, MAX_ARG_COUNT
from .._runtime.disposable import Disposable
from ..errors import ArgumentOverflowError
from .value import Value

if TYPE_CHECKING:
    from .._runtime.context import Context


class ArgList(Disposable):
    """
    Owned copies of the arguments of one native call.

    Arity is fixed by the binding declaration, so passing more than
    MAX_ARG_COUNT arguments is a programming error and asserts. Reading past
    the supplied arguments yields undefined.
    """

    def __init__(self, context: "Context", argv: Sequence[JSValue] = ()):
        if len(argv) > MAX_ARG_COUNT:
            raise ArgumentOverflowError(
                f"{len(argv)} arguments passed, at most {MAX_ARG_COUNT} supported"
            )
        self.context = context
        self._values: List[Value] = [Value.borrow(context, raw) for raw in argv]

    def size(self) -> int:
        return len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getitem__(self, index: int) -> Value:
        """Return a new owned copy of argument `index`."""
        if 0 <= index < len(self._values):
            return self._values[index].dup()
        return Value(self.context, JS_UNDEFINED)

    def __iter__(self) -> Iterator[Value]:
        for value in self._values:
            yield value.dup()

    def raw(self) -> List[JSValue]:
        """Borrowed raw values, valid while this ArgList is alive."""
        return [value.raw for value in self._values]

    def dispose(self) -> None:
        for value in self._values:
            value.dispose()
        self._values = []

    def __repr__(self):
        return f"<ArgList size={len(self._values)}>"
