"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

In-process fan-out bus for coordination lifecycle events.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .events import CoordinationEvent

logger = logging.getLogger("courier.observability.bus")

EventListener = Callable[[CoordinationEvent], None]

WILDCARD = "*"


class EventBus:
    """
    Synchronous best-effort event fan-out.

    Listeners subscribe to one event type or to ``"*"``. A failing listener is
    logged and never prevents delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._wildcard: list[EventListener] = []

    def emit(self, event: CoordinationEvent) -> None:
        for listener in list(self._listeners.get(event.type, ())):
            self._call(listener, event)
        for listener in list(self._wildcard):
            self._call(listener, event)

    def subscribe(self, event_type: str, listener: EventListener) -> Callable[[], None]:
        """Register `listener`; returns a callable that unsubscribes it."""
        if event_type == WILDCARD:
            self._wildcard.append(listener)

            def _remove_wildcard() -> None:
                if listener in self._wildcard:
                    self._wildcard.remove(listener)

            return _remove_wildcard

        rows = self._listeners.setdefault(event_type, [])
        rows.append(listener)

        def _remove() -> None:
            current = self._listeners.get(event_type)
            if current is None:
                return
            if listener in current:
                current.remove(listener)
            if not current:
                self._listeners.pop(event_type, None)

        return _remove

    def reset(self) -> None:
        self._listeners.clear()
        self._wildcard.clear()

    @staticmethod
    def _call(listener: EventListener, event: CoordinationEvent) -> None:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Event listener failed for %s", event.type)
