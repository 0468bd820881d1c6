"""Market data structures and types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any


def create_market_id(base: str, quote: str) -> str:
    """Market ids are ``<base>/<quote>``."""
    return f"{base}/{quote}"


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Convert a JSON number or numeric string to Decimal."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


@dataclass(frozen=True)
class MarketTicker:
    """Rolling 24h snapshot of a market, from the aggregator."""

    base: str
    quote: str
    market_id: str
    last_price: Decimal = Decimal("0")
    base_volume: Decimal = Decimal("0")
    quote_volume: Decimal = Decimal("0")
    bid: Decimal = Decimal("0")
    ask: Decimal = Decimal("0")
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    open_price: Decimal = Decimal("0")
    change: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarketTicker:
        base = str(data["base"])
        quote = str(data["quote"])
        return cls(
            base=base,
            quote=quote,
            market_id=str(data.get("market_id") or create_market_id(base, quote)),
            last_price=to_decimal(data.get("last_price")),
            base_volume=to_decimal(data.get("base_volume")),
            quote_volume=to_decimal(data.get("quote_volume")),
            bid=to_decimal(data.get("bid")),
            ask=to_decimal(data.get("ask")),
            high=to_decimal(data.get("high")),
            low=to_decimal(data.get("low")),
            open_price=to_decimal(data.get("open_price")),
            change=to_decimal(data.get("change")),
        )


@dataclass(frozen=True)
class Market:
    """On-chain market listing. May exist without a ticker."""

    base: str
    quote: str

    @property
    def market_id(self) -> str:
        return create_market_id(self.base, self.quote)


@dataclass(frozen=True)
class Trade:
    """Executed trade from market history. Price is in micro-units."""

    market_id: str
    price: Decimal
    amount: Decimal = Decimal("0")
    executed_at: datetime | None = None


@dataclass(frozen=True)
class Asset:
    """Fungible asset known to the chain."""

    denom: str
    decimals: int = 6
    supply: Decimal = Decimal("0")


@dataclass(frozen=True)
class Balance:
    """Wallet balance in base units."""

    denom: str
    amount: Decimal


@dataclass(frozen=True)
class LiquidityPool:
    """AMM pool reserves, in base units."""

    id: str
    base: str
    quote: str
    reserve_base: Decimal
    reserve_quote: Decimal
