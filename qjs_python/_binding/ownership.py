"""
Ownership variants of Class.

WeakClass: the native lives independently of its proxies. Any number of
proxies may alias one native, and finalizing a proxy only detaches the
native's back-link to it. A native built by a script constructor is
held by its context until it calls `release_self()`.

RefClass: the native is reference counted and every proxy holds one
reference. Finalizing the proxy releases that reference; the native is
destroyed only when no other holder remains.
"""

from typing import Any, Callable, Optional, TYPE_CHECKING

from .._engine.types import JSValue
from .._runtime.instance import Ownership
from .._values.value import WeakValue
from ..errors import EngineError
from .klass import Class

if TYPE_CHECKING:
    from .._runtime.context import Context


class ScriptProxied:
    """
    Mixin for natives that keep a non-owning link back to their proxy.

    The link is a WeakValue: it never keeps the proxy alive, and the binding
    clears it when that proxy is finalized.
    """

    _proxy: Optional[WeakValue] = None
    _owner: Optional["Context"] = None

    @property
    def proxy(self) -> Optional[WeakValue]:
        return self._proxy

    def release_self(self) -> None:
        """
        Drop the hold a script constructor placed on this native.

        A native built by `new` on a weak class owns itself: its proxy never
        keeps it alive, so the context holds it until the native is done
        (for a window, once it has handled its final message).
        """
        owner, self._owner = self._owner, None
        if owner is not None:
            owner.release_native(self)

    def attach_proxy(self, proxy: WeakValue) -> None:
        self._proxy = proxy

    def detach_proxy(self, raw: Optional[JSValue] = None) -> None:
        """Clear the back-link, or only if it still points at `raw`."""
        if self._proxy is None:
            return
        if raw is None or self._proxy.raw.payload is raw.payload:
            self._proxy = None


class RefCounted:
    """Intrusive reference count for natives bound through RefClass."""

    ref_count = 0
    destroyed = False

    def add_ref(self) -> "RefCounted":
        if self.destroyed:
            raise EngineError(f"add_ref on destroyed {type(self).__name__}")
        self.ref_count += 1
        return self

    def release(self) -> int:
        """Drop one reference; the last one destroys the object."""
        if self.ref_count <= 0:
            raise EngineError(f"release of unreferenced {type(self).__name__}")
        self.ref_count -= 1
        if self.ref_count == 0:
            self.destroyed = True
            self.destroy()
        return self.ref_count

    def destroy(self) -> None:
        """Called once, when the last reference is released."""


def _detach(raw: JSValue, native: Any) -> None:
    if isinstance(native, ScriptProxied):
        native.detach_proxy(raw)


def _release_ref(native: RefCounted) -> None:
    native.release()


class WeakClass(Class):
    """A class whose proxies never own their native."""

    ownership = Ownership.WEAK

    def _adopt(self, context: "Context", obj: JSValue, native: Any) -> None:
        if isinstance(native, ScriptProxied):
            native.attach_proxy(WeakValue(context, obj))

    def _releaser(self, obj: JSValue) -> Optional[Callable[[Any], None]]:
        return lambda native: _detach(obj, native)

    def keep_constructed(self, context: "Context", native: Any) -> None:
        context.hold_native(native)
        if isinstance(native, ScriptProxied):
            native._owner = context

    def discard(self, native: Any) -> None:
        pass


class RefClass(Class):
    """A class whose proxies each hold one reference on a RefCounted native."""

    ownership = Ownership.REF_COUNTED

    def _adopt(self, context: "Context", obj: JSValue, native: Any) -> None:
        if not isinstance(native, RefCounted):
            raise TypeError(f"{type(native).__name__} is not RefCounted")
        native.add_ref()

    def _releaser(self, obj: JSValue) -> Optional[Callable[[Any], None]]:
        return _release_ref

    def discard(self, native: Any) -> None:
        pass
