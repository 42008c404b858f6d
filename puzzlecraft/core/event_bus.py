"""
Event Bus for puzzlecraft.

Synchronous publish/subscribe between event producers (UI, sync adapter)
and consumers (the orchestrator). Every current subscriber sees an event
before ``emit`` returns; there is no queue and no replay.

Architecture:
    UI / PuzzleSyncAdapter → EventBus.emit(event) → Orchestrator (+ any listener)
"""

from __future__ import annotations

import logging
from typing import Callable

from puzzlecraft.protocol.events import PayloadLike, UIEvent, UIEventType, make_event

logger = logging.getLogger(__name__)

EventHandler = Callable[[UIEvent], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """Typed, synchronous fan-out of ``UIEvent`` messages."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def emit(self, event: UIEvent) -> int:
        """
        Deliver an event to every current subscriber, in subscription order.

        A raising handler is logged and skipped; the rest still run.
        Returns the number of handlers that completed without raising.
        """
        # Snapshot so handlers may (un)subscribe while we iterate.
        handlers = list(self._handlers)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler failed for {event.type.value}: {e}", exc_info=True)

        logger.debug(f"Emitted {event.type.value} to {delivered}/{len(handlers)} handlers")
        return delivered

    def emit_type(self, event_type: UIEventType | str, payload: PayloadLike = None) -> UIEvent:
        """Build a ``{type, payload, timestamp}`` event, emit it, and return it."""
        event = make_event(event_type, payload)
        self.emit(event)
        return event

    def subscribe(self, handler: EventHandler) -> Unsubscribe:
        """Register a handler. Returns a function that removes it again."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def clear(self) -> None:
        """Drop every subscriber (teardown and tests)."""
        self._handlers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
