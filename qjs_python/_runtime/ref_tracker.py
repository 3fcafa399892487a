"""
Intrusive list of entries that must be finalized at context teardown.

Reference: https://github.com/toyobayashi/emnapi/blob/main/packages/runtime/src/RefTracker.ts
"""

from typing import Optional

from .disposable import Disposable


class RefTracker(Disposable):
    """
    Doubly-linked list node.

    A bare RefTracker serves as the list head; subclasses are the entries
    and override `finalize`, which must unlink the entry.
    """

    def __init__(self):
        self._next: Optional["RefTracker"] = None
        self._prev: Optional["RefTracker"] = None

    @property
    def linked(self) -> bool:
        return self._prev is not None

    def link(self, list_head: "RefTracker") -> None:
        """Insert this entry right after `list_head`."""
        self._prev = list_head
        self._next = list_head._next
        if self._next is not None:
            self._next._prev = self
        list_head._next = self

    def unlink(self) -> None:
        if self._prev is not None:
            self._prev._next = self._next
        if self._next is not None:
            self._next._prev = self._prev
        self._prev = None
        self._next = None

    def finalize(self) -> None:
        self.unlink()

    def dispose(self) -> None:
        self.unlink()

    @staticmethod
    def finalize_all(list_head: "RefTracker") -> int:
        """Finalize every entry, newest first. Returns how many ran."""
        count = 0
        while list_head._next is not None:
            list_head._next.finalize()
            count += 1
        return count
