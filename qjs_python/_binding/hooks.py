"""
Optional hooks on script objects.

A script handler object may implement any subset of the hooks a native
component offers. Each hook is a named capability that can be checked on
its own; dispatching to one the handler lacks is logged and ignored.
"""

from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from .._runtime.disposable import Disposable
from .._values.value import Value, WeakValue
from ..errors import MissingCapability, ScriptException

if TYPE_CHECKING:
    from .._runtime.context import Context


class Hook:
    """A named optional method on a script object."""

    def __init__(self, name: str):
        self.name = name

    def available(self, target: WeakValue) -> bool:
        if not target.is_object() or not target.has_property(self.name):
            return False
        with target.get_property(self.name) as func:
            return func.is_function()

    def resolve(self, target: WeakValue) -> Value:
        """The hook function. Raises MissingCapability if the target lacks it."""
        if not target.is_object() or not target.has_property(self.name):
            raise MissingCapability(self.name)
        func = target.get_property(self.name)
        if not func.is_function():
            func.dispose()
            raise MissingCapability(self.name)
        return func

    def call(self, target: WeakValue, *args: Any) -> Value:
        """Call the hook, raising MissingCapability or ScriptException."""
        with self.resolve(target) as func:
            return func.call(*args, this=target)

    def dispatch(self, target: WeakValue, *args: Any) -> Optional[Value]:
        """
        Call the hook if present.

        A missing hook is logged and yields None. A script exception is
        logged the way Context.dump_error logs it and also yields None.
        """
        context = target.context
        try:
            return self.call(target, *args)
        except MissingCapability as e:
            context.log(str(e))
        except ScriptException as e:
            context.log(str(e))
        return None

    def __repr__(self):
        return f"<Hook {self.name!r}>"


# native event name -> script hook
EVENT_HOOKS: Dict[str, Hook] = {
    event: Hook(name)
    for event, name in (
        ("close", "onClose"),
        ("destroy", "onDestroy"),
        ("size", "onSize"),
        ("char", "onChar"),
        ("key_down", "onKeyDown"),
        ("key_up", "onKeyUp"),
        ("kill_focus", "onKillFocus"),
        ("set_focus", "onSetFocus"),
        ("mouse_move", "onMouseMove"),
        ("mouse_wheel", "onMouseWheel"),
        ("mouse_hover", "onMouseHover"),
        ("lbutton_down", "onLButtonDown"),
        ("lbutton_up", "onLButtonUp"),
        ("drop_files", "onDropFiles"),
        ("custom_message", "handleCustomMessage"),
    )
}

GET_SKIN_FILE = Hook("getSkinFile")
GET_SKIN_TYPE = Hook("getSkinType")
GET_MANAGER_NAME = Hook("getManagerName")
CREATE_CONTROL = Hook("createControl")
QUERY_CONTROL_TEXT = Hook("queryControlText")


class EventDelegate(Disposable):
    """
    Routes native events to a script handler object.

    The handler is held strongly. A native that owns a delegate must report
    it from its class mark hook via `mark`.
    """

    def __init__(self, context: "Context", handler: WeakValue):
        self.context = context
        self.handler = context.new_value(handler)

    def emit(self, event: str, *args: Any) -> Optional[Value]:
        """Dispatch `event` to its hook. Unknown event names raise KeyError."""
        return EVENT_HOOKS[event].dispatch(self.handler, *args)

    def supports(self, event: str) -> bool:
        return EVENT_HOOKS[event].available(self.handler)

    def on_close(self) -> None:
        self._discard(self.emit("close"))

    def on_destroy(self) -> None:
        self._discard(self.emit("destroy"))

    def on_size(self, width: int, height: int) -> None:
        self._discard(self.emit("size", self.context.new_uint32(width), self.context.new_uint32(height)))

    def on_drop_files(self, paths: Sequence[str]) -> None:
        self._discard(self.emit("drop_files", list(paths)))

    def notify(self, route: str, *args: Any) -> bool:
        """
        Deliver a control notification routed by name.

        `route` is either "func", a method of the handler, or "object.func",
        a method of the handler's `object` property. Returns False, after
        logging, when the route does not resolve.
        """
        target: WeakValue = self.handler
        owner: Optional[Value] = None
        name = route
        if "." in route:
            object_name, name = route.split(".", 1)
            owner = self.handler.get_property(object_name)
            if not owner.is_object():
                owner.dispose()
                self.context.log(f"no object {object_name}")
                return False
            target = owner
        try:
            hook = Hook(name)
            if not hook.available(target):
                self.context.log(f"no function named '{name}'" if owner is None else f"no property {name}")
                return False
            self._discard(hook.dispatch(target, *args))
            return True
        finally:
            if owner is not None:
                owner.dispose()

    def _query_string(self, hook: Hook, *args: Any) -> Optional[str]:
        if not hook.available(self.handler):
            return None
        result = hook.dispatch(self.handler, *args)
        if result is None:
            return None
        with result:
            return result.to_string()

    def get_skin_file(self) -> Optional[str]:
        return self._query_string(GET_SKIN_FILE)

    def get_skin_type(self) -> str:
        return self._query_string(GET_SKIN_TYPE) or ""

    def get_manager_name(self) -> Optional[str]:
        return self._query_string(GET_MANAGER_NAME)

    def query_control_text(self, control_id: str, control_type: str) -> Optional[str]:
        return self._query_string(QUERY_CONTROL_TEXT, control_id, control_type)

    def create_control(self, class_name: str) -> Optional[Value]:
        if not CREATE_CONTROL.available(self.handler):
            return None
        return CREATE_CONTROL.dispatch(self.handler, class_name)

    @staticmethod
    def _discard(result: Optional[Value]) -> None:
        if result is not None:
            result.dispose()

    def events(self) -> List[str]:
        """Events the handler implements."""
        return [event for event in EVENT_HOOKS if self.supports(event)]

    def mark(self, mark_func) -> None:
        self.handler.mark(mark_func)

    def dispose(self) -> None:
        self.handler.dispose()
