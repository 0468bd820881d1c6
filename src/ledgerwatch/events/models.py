"""Ledger and domain event structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ledgerwatch.constants import DomainEventKind


@dataclass(frozen=True)
class EventAttribute:
    """Single key/value attribute of a ledger event."""

    key: str
    value: str
    index: bool = False


@dataclass(frozen=True)
class RawChainEvent:
    """Event emitted by the ledger for a block or transaction."""

    type: str
    attributes: tuple[EventAttribute, ...] = field(default_factory=tuple)

    def get(self, key: str) -> str | None:
        """Return the first attribute value for key, or None."""
        for attr in self.attributes:
            if attr.key == key:
                return attr.value
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawChainEvent | None:
        """Build from a decoded JSON event. Returns None for shapes we can't read."""
        if not isinstance(data, dict):
            return None

        event_type = data.get("type")
        if not isinstance(event_type, str):
            return None

        attributes = []
        for raw in data.get("attributes") or []:
            if not isinstance(raw, dict):
                continue
            key = raw.get("key")
            if key is None:
                continue
            value = raw.get("value")
            attributes.append(
                EventAttribute(
                    key=str(key),
                    value="" if value is None else str(value),
                    index=bool(raw.get("index", False)),
                )
            )

        return cls(type=event_type, attributes=tuple(attributes))


@dataclass(frozen=True)
class DomainEvent:
    """Normalized signal. Carries no payload beyond an optional market id."""

    kind: DomainEventKind
    market_id: str | None = None

    @classmethod
    def wallet_balance_changed(cls) -> DomainEvent:
        return cls(DomainEventKind.WALLET_BALANCE_CHANGED)

    @classmethod
    def supply_changed(cls) -> DomainEvent:
        return cls(DomainEventKind.SUPPLY_CHANGED)

    @classmethod
    def order_book_changed(cls, market_id: str) -> DomainEvent:
        return cls(DomainEventKind.ORDER_BOOK_CHANGED, market_id)

    @classmethod
    def order_executed(cls, market_id: str) -> DomainEvent:
        return cls(DomainEventKind.ORDER_EXECUTED, market_id)


def market_event_key(kind: DomainEventKind, market_id: str) -> str:
    """Build the bus key for market-scoped subscriptions."""
    return f"{kind.value}:{market_id}"
