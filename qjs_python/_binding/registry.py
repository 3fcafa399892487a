"""
Resolution of `this` against the per-context class registry.

The registry maps class id -> parent class id. Instance-of checks walk that
chain instead of the engine's prototype chain, so a script cannot spoof a
native receiver by rewriting prototypes.
"""

from typing import Any, Iterator, Optional, TYPE_CHECKING

from .._engine.types import JSValue
from .._runtime.instance import InstanceRef
from ..errors import WrongReceiverType

if TYPE_CHECKING:
    from .._runtime.context import Context


def class_name(context: "Context", class_id: int) -> str:
    class_def = context.runtime.rt.get_class_def(class_id)
    if class_def is None:
        return f"<class {class_id}>"
    return class_def.class_name


def class_chain(context: "Context", class_id: int) -> Iterator[int]:
    """Yield `class_id` and each of its ancestors, nearest first."""
    seen = set()
    while class_id and class_id not in seen:
        seen.add(class_id)
        yield class_id
        class_id = context.get_parent_class_id(class_id)


def is_subclass(context: "Context", class_id: int, target_id: int) -> bool:
    return any(cid == target_id for cid in class_chain(context, class_id))


def instance_ref(context: "Context", this: JSValue) -> Optional[InstanceRef]:
    """The opaque entry stored under the object's own class id, if any."""
    ctx = context.ctx
    opaque = ctx.get_opaque(this, ctx.get_class_id(this))
    if isinstance(opaque, InstanceRef):
        return opaque
    return None


def get_this(context: "Context", this: JSValue, class_id: int = 0) -> Any:
    """
    Resolve the native instance behind `this`.

    With no `class_id` the opaque slot under the object's dynamic class id is
    returned as is. This is the trusted path used by methods that are only
    reachable through their own prototype, and it never consults the parent
    chain.

    With a `class_id` the dynamic id must be that class or a descendant,
    otherwise WrongReceiverType is raised.

    Returns None when the object carries no native instance.
    """
    ctx = context.ctx
    dynamic_id = ctx.get_class_id(this)
    if class_id and not is_subclass(context, dynamic_id, class_id):
        raise WrongReceiverType(class_name(context, class_id), dynamic_id)
    opaque = ctx.get_opaque(this, dynamic_id)
    if isinstance(opaque, InstanceRef):
        return opaque.get()
    return opaque
