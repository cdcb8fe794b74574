"""Synchronous publish/subscribe for library change notifications."""

from __future__ import annotations

import threading
from typing import Any, Callable

from loguru import logger

from .models import LibraryEvent

log = logger.bind(stage="events")

Subscriber = Callable[[LibraryEvent, Any], None]


class EventBus:
    """Delivers events to subscribers in subscription order.

    A failing subscriber is logged and skipped; it never reaches the
    publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: LibraryEvent, payload: Any = None) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        log.debug(f"publish {event} to {len(subscribers)} subscribers")
        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception as e:
                log.warning(f"Subscriber {callback!r} failed on {event}: {e}")
