"""
Event dispatcher shared by system events, topic pushes and request replies.

Every registration returns a ListenerHandle. Passing the handle back to
``off`` removes exactly that registration, so callers never depend on
re-creating the same callable to deregister it.
"""

import asyncio
import inspect
import logging
import types
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

# Sole argument passed to a wait_for handler when its timer wins the race
TIMEOUT = "timeout"


def same_callable(a: Callable, b: Callable) -> bool:
    """
    Identity comparison for handlers.

    Bound methods are re-created on every attribute access, so two of them
    match when they wrap the same function on the same instance.
    """
    if a is b:
        return True
    if isinstance(a, (types.MethodType, types.BuiltinMethodType)):
        return a == b
    return False


class ListenerHandle:
    """Token for a single handler registration on an event."""

    __slots__ = ("event", "handler", "active", "shared", "_callback", "_timer")

    def __init__(self, event: str, handler: Callable, shared: bool = False):
        self.event = event
        self.handler = handler
        self.active = False
        # Plain on() registrations are reused by a later on() of the same handler
        self.shared = shared
        self._callback: Callable = handler
        self._timer: Optional[asyncio.TimerHandle] = None

    def __repr__(self) -> str:
        name = getattr(self.handler, "__qualname__", repr(self.handler))
        return f"<ListenerHandle event={self.event!r} handler={name} active={self.active}>"


class EventEmitter:
    """
    Maps event names to ordered handler sets.

    Any string is a valid event name. Handlers run synchronously in
    registration order; a handler returning a coroutine has it scheduled
    on the running loop. Unknown events behave as empty sets. Handlers are
    compared by identity, so they need not be hashable.
    """

    def __init__(self):
        self._events: Dict[str, List[ListenerHandle]] = {}

    def on(self, event: str, handler: Callable) -> ListenerHandle:
        """
        Register handler for event.

        Registering the identical handler again is a no-op and returns the
        existing handle.
        """
        for existing in self._events.get(event, ()):
            if existing.shared and same_callable(existing.handler, handler):
                return existing
        handle = ListenerHandle(event, handler, shared=True)
        self._add(handle)
        return handle

    def listen(self, event: str, handler: Callable) -> ListenerHandle:
        """Register handler as a separate registration, even if it is already registered."""
        handle = ListenerHandle(event, handler)
        self._add(handle)
        return handle

    def once(self, event: str, handler: Callable) -> ListenerHandle:
        """Register handler to run at most once, removing itself before it runs."""
        handle = ListenerHandle(event, handler)

        def _once(*args):
            self._remove(handle)
            return handler(*args)

        handle._callback = _once
        self._add(handle)
        return handle

    def wait_for(self, event: str, handler: Callable, timeout: float) -> ListenerHandle:
        """
        Register a one-shot handler raced against a timer.

        If event fires first the timer is cancelled and handler gets the
        event's arguments. If the timer fires first the registration is
        removed and handler gets the single argument TIMEOUT. Exactly one
        of the two happens.

        Args:
            event: Event name to wait for
            handler: Callable receiving the event args or TIMEOUT
            timeout: Seconds before giving up
        """
        loop = asyncio.get_running_loop()
        handle = ListenerHandle(event, handler)

        def _fire(*args):
            self._remove(handle)
            return handler(*args)

        def _expire():
            handle._timer = None
            if self._remove(handle):
                logger.debug(f"Timed out after {timeout}s waiting for {event}")
                self._invoke(handle, (TIMEOUT,), handler)

        handle._callback = _fire
        self._add(handle)
        handle._timer = loop.call_later(timeout, _expire)
        return handle

    def emit(self, event: str, *args: Any) -> None:
        """Invoke every handler currently registered for event, in order."""
        registered = self._events.get(event)
        if not registered:
            return
        for handle in list(registered):
            # Skip handlers removed by an earlier handler in this same emit
            if handle.active:
                self._invoke(handle, args, handle._callback)

    def off(self, event_or_handle: Union[str, ListenerHandle], handler: Optional[Callable] = None) -> bool:
        """
        Remove a registration.

        Accepts either a ListenerHandle, or an event name plus the original
        handler (removing every registration of that handler on the event).

        Returns:
            True if anything was removed
        """
        if isinstance(event_or_handle, ListenerHandle):
            return self._remove(event_or_handle)

        registered = self._events.get(event_or_handle)
        if not registered:
            return False
        matches = [h for h in registered if same_callable(h.handler, handler)]
        for handle in matches:
            self._remove(handle)
        return bool(matches)

    def listeners(self, event: str) -> List[Callable]:
        """Snapshot of the handlers registered for event."""
        return [h.handler for h in self._events.get(event, ())]

    def listener_count(self, event: str) -> int:
        return len(self._events.get(event, ()))

    def _add(self, handle: ListenerHandle) -> None:
        self._events.setdefault(handle.event, []).append(handle)
        handle.active = True

    def _remove(self, handle: ListenerHandle) -> bool:
        if handle._timer is not None:
            handle._timer.cancel()
            handle._timer = None
        if not handle.active:
            return False
        registered = self._events[handle.event]
        registered.remove(handle)
        if not registered:
            del self._events[handle.event]
        handle.active = False
        return True

    def _invoke(self, handle: ListenerHandle, args: tuple, callback: Callable) -> None:
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"Handler error for event {handle.event}: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            task.add_done_callback(lambda t, event=handle.event: _log_task_error(event, t))


def _log_task_error(event: str, task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Async handler error for event {event}: {error}", exc_info=error)
