"""In-process publish/subscribe for domain notifications.

Emission is fire-and-forget: every subscriber runs inside its own
failure boundary, so a raising subscriber never blocks the others or
the emitter.
"""

import asyncio
import inspect
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

from canvas_sync.app.core.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], Any]


class Events(str, Enum):
    """Event names published by the sync core."""

    SUSPICIOUS_ACTIVITY = "rate_limit:suspicious_activity"
    PAYLOAD_SAVED = "canvas:saved"
    SAVE_FAILED = "canvas:save_failed"
    PAYLOAD_QUEUED_OFFLINE = "canvas:queued_offline"
    PAYLOAD_DELETED = "canvas:deleted"
    RECOVERY_SUCCEEDED = "recovery:succeeded"
    RECOVERY_GAVE_UP = "recovery:gave_up"
    NETWORK_STATUS_CHANGED = "network:status_changed"


class EventBus:
    """Dispatcher with per-listener error isolation.

    Listeners may be plain callables or coroutine functions. Coroutine
    listeners are scheduled on the running loop and their failures are
    logged when they complete.

    Usage:
        bus = EventBus()
        unsubscribe = bus.on(Events.PAYLOAD_SAVED, handler)
        bus.emit(Events.PAYLOAD_SAVED, {"territoryId": "T1"})
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._once: Dict[str, List[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def _key(event: str | Events) -> str:
        return event.value if isinstance(event, Events) else str(event)

    def on(self, event: str | Events, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event.

        Returns:
            A function that removes the subscription
        """
        key = self._key(event)
        self._listeners[key].append(listener)
        return lambda: self.off(key, listener)

    def once(self, event: str | Events, listener: Listener) -> None:
        """Subscribe for a single delivery."""
        self._once[self._key(event)].append(listener)

    def off(self, event: str | Events, listener: Listener) -> None:
        key = self._key(event)
        for registry in (self._listeners, self._once):
            if listener in registry.get(key, []):
                registry[key].remove(listener)

    def emit(self, event: str | Events, data: Any = None) -> None:
        """Deliver ``data`` to every subscriber of ``event``.

        Never raises.
        """
        key = self._key(event)
        listeners = list(self._listeners.get(key, []))
        listeners.extend(self._once.pop(key, []))
        for listener in listeners:
            self._dispatch(key, listener, data)

    def _dispatch(self, key: str, listener: Listener, data: Any) -> None:
        try:
            result = listener(data)
        except Exception:
            logger.exception(f"Error in listener for '{key}'")
            return
        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError:
                logger.warning(f"No running loop for async listener of '{key}'")
                return
            self._pending.add(task)
            task.add_done_callback(lambda t: self._on_listener_done(key, t))

    def _on_listener_done(self, key: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error in async listener for '{key}': {exc}", exc_info=exc)

    def clear(self, event: str | Events | None = None) -> None:
        """Remove listeners for one event, or all of them."""
        if event is None:
            self._listeners.clear()
            self._once.clear()
            return
        key = self._key(event)
        self._listeners.pop(key, None)
        self._once.pop(key, None)

    def listener_count(self, event: str | Events) -> int:
        key = self._key(event)
        return len(self._listeners.get(key, [])) + len(self._once.get(key, []))
