"""
Base class for resources with an explicit release step.
"""

from abc import ABC, abstractmethod
from typing import Iterable


class Disposable(ABC):
    """A resource released by `dispose()` or by leaving a `with` block."""

    @abstractmethod
    def dispose(self) -> None:
        """Release the resource. A second call must be a no-op."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()
        return False


def dispose_all(resources: Iterable[Disposable]) -> None:
    """Dispose resources in reverse order of acquisition."""
    for resource in reversed(list(resources)):
        resource.dispose()
