"""
Opaque-slot entries tying a script object to its native instance.

Reference: https://github.com/toyobayashi/emnapi/blob/main/packages/runtime/src/Reference.ts
"""

from enum import IntEnum
from typing import Any, Callable, Optional, TYPE_CHECKING
import weakref

from .ref_tracker import RefTracker

if TYPE_CHECKING:
    from .context import Context


class Ownership(IntEnum):
    """Who decides when the native instance goes away."""

    OWNED = 0  # the proxy owns the native; finalizing destroys it
    WEAK = 1  # the native outlives any number of proxies
    REF_COUNTED = 2  # the proxy holds one native reference


class InstanceRef(RefTracker):
    """
    The value stored in a script object's opaque slot.

    Holds the native strongly, or weakly for WEAK ownership, and runs the
    release callback exactly once: either from the engine finalizer or from
    context teardown, whichever comes first.
    """

    def __init__(
        self,
        context: "Context",
        class_id: int,
        native: Any,
        ownership: Ownership,
        release: Optional[Callable[[Any], None]] = None,
        mark: Optional[Callable[[Any, Callable], None]] = None,
    ):
        super().__init__()
        self.context = context
        self.class_id = class_id
        self.ownership = ownership
        self._release = release
        self.mark = mark
        self.finalized = False
        if ownership == Ownership.WEAK:
            self._native = None
            self._weak: Optional[weakref.ref] = weakref.ref(native)
        else:
            self._native = native
            self._weak = None

    @classmethod
    def create(
        cls,
        context: "Context",
        class_id: int,
        native: Any,
        ownership: Ownership,
        release: Optional[Callable[[Any], None]] = None,
        mark: Optional[Callable[[Any, Callable], None]] = None,
    ) -> "InstanceRef":
        """Create an entry and link it into the context's instance list."""
        ref = cls(context, class_id, native, ownership, release, mark)
        ref.link(context.instances)
        return ref

    def get(self) -> Any:
        """The native instance, or None once finalized or collected."""
        if self._weak is not None:
            return self._weak()
        return self._native

    def finalize(self) -> None:
        if self.finalized:
            return
        self.finalized = True
        self.unlink()
        native = self.get()
        self._native = None
        self._weak = None
        if native is not None and self._release is not None:
            self._release(native)

    def dispose(self) -> None:
        """Drop the native without running the release callback."""
        self.finalized = True
        self.unlink()
        self._native = None
        self._weak = None

    def __repr__(self):
        return f"<InstanceRef class={self.class_id} {self.ownership.name} native={self.get()!r}>"
