"""
Id allocation and id-indexed tables used by the engine runtime.
"""

from typing import TypeVar, Generic, Optional, List

T = TypeVar("T")


class CountIdAllocator:
    """Monotonic id allocator. Ids are never reused."""

    def __init__(self, initial_next: int = 1):
        self.next = initial_next

    def acquire(self) -> int:
        result = self.next
        self.next += 1
        return result


class ArrayStore(Generic[T]):
    """List-backed table indexed by small integer ids."""

    def __init__(self, initial_capacity: int = 1):
        self._values: List[Optional[T]] = [None] * initial_capacity

    def assign(self, id: int, value: T) -> T:
        while id >= len(self._values):
            self._values.extend([None] * (len(self._values) // 2 + 16))
        self._values[id] = value
        return value

    def deref(self, id: int) -> Optional[T]:
        if 0 <= id < len(self._values):
            return self._values[id]
        return None

    def contains(self, id: int) -> bool:
        return self.deref(id) is not None
