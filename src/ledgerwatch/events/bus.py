"""Synchronous publish/subscribe registry for domain events."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from ledgerwatch.constants import DomainEventKind
from ledgerwatch.events.models import DomainEvent, market_event_key

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """
    Event registry keyed by domain event kind.

    Owned by the composition root and injected where needed. Dispatch is
    synchronous, in registration order; a failing handler is logged and the
    remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(
        self,
        kind: DomainEventKind,
        handler: EventHandler,
        market_id: str | None = None,
    ) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            kind: Event kind to listen for.
            handler: Called with the DomainEvent.
            market_id: Only receive events for this market.

        Returns:
            Callable that removes the registration. Safe to call twice.
        """
        key = market_event_key(kind, market_id) if market_id else kind.value
        self._handlers.setdefault(key, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[key]

        return unsubscribe

    def emit(self, kind: DomainEventKind, market_id: str | None = None) -> None:
        """Publish a single event of the given kind."""
        self.publish_event(DomainEvent(kind, market_id))

    def publish_event(self, event: DomainEvent) -> None:
        self._dispatch(event.kind.value, event)
        if event.market_id:
            self._dispatch(market_event_key(event.kind, event.market_id), event)

    def publish(self, events: Iterable[DomainEvent]) -> None:
        """Publish a batch of events in order."""
        for event in events:
            self.publish_event(event)

    def handler_count(self, kind: DomainEventKind, market_id: str | None = None) -> int:
        key = market_event_key(kind, market_id) if market_id else kind.value
        return len(self._handlers.get(key, []))

    def clear(self) -> None:
        self._handlers.clear()

    def _dispatch(self, key: str, event: DomainEvent) -> None:
        # Copy so handlers may unsubscribe while we iterate
        for handler in list(self._handlers.get(key, [])):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in {key} handler {handler!r}: {e}", exc_info=True)
