"""
In-process sync event fan-out, optionally mirrored onto the IPC bus.
"""

import threading
from typing import Any, Callable, Dict, List, Optional

from masjid_display.common.ipc import MessagePublisher, MessageType
from masjid_display.common.logger import setup_logger

logger = setup_logger(__name__)

EventListener = Callable[[Dict[str, Any]], None]


class EventBus:
    """
    Delivers sync events to registered listeners.

    Listener errors are logged and swallowed so a broken consumer never
    fails the sync that emitted the event.
    """

    def __init__(self, publisher: Optional[MessagePublisher] = None):
        self._lock = threading.Lock()
        self._listeners: Dict[MessageType, List[EventListener]] = {}
        self._publisher = publisher

    def on(self, event_type: MessageType, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again
        """
        with self._lock:
            self._listeners.setdefault(event_type, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event_type, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: MessageType, data: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))

        for listener in listeners:
            try:
                listener(data)
            except Exception:
                logger.exception("Error in %s listener", event_type.value)

        if self._publisher is not None:
            try:
                self._publisher.publish(event_type, data)
            except Exception as e:
                logger.warning("Failed to publish %s event: %s", event_type.value, e)

    def listener_count(self, event_type: MessageType) -> int:
        with self._lock:
            return len(self._listeners.get(event_type, []))
