"""Event Classifier - map raw ledger events to domain events.

Rules are evaluated per raw event, in array order:

1. Balance: a ``transfer`` event naming the watched address in any value.
2. Burn: event type contains the burn marker.
3. Mint: event type contains the coinbase marker and the minted coins
   include a non-native denom.
4. Market: independent of 1-3, driven by a ``market_id`` attribute.

Rules 1-3 are exclusive (first match wins). Rule 4 can co-occur with them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation

from ledgerwatch.constants import (
    AMOUNT_ATTRIBUTE,
    BURN_EVENT_MARKER,
    COINBASE_EVENT_MARKER,
    DEFAULT_NATIVE_DENOM,
    MARKET_ID_ATTRIBUTE,
    ORDER_BOOK_EVENT_NAMESPACE,
    ORDER_EXECUTED_EVENT_MARKER,
    TRANSFER_EVENT_TYPE,
)
from ledgerwatch.events.models import DomainEvent, RawChainEvent

logger = logging.getLogger(__name__)

COIN_PATTERN = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([a-zA-Z][a-zA-Z0-9/:._-]{1,127})$")


class CoinParseError(ValueError):
    """Raised when a coin list string can't be parsed."""


def unquote(value: str) -> str:
    """Strip surrounding quote characters from an attribute value."""
    return value.strip().strip('"').strip("'")


def parse_coins(raw: str) -> list[tuple[str, Decimal]]:
    """
    Parse a comma separated coin list like ``"100ubze,5factory/x/abc"``.

    Returns:
        List of (denom, amount) pairs in input order.

    Raises:
        CoinParseError: If any entry is malformed or the list is empty.
    """
    text = unquote(raw or "")
    if not text:
        raise CoinParseError("empty coin list")

    coins = []
    for part in text.split(","):
        match = COIN_PATTERN.match(part.strip())
        if not match:
            raise CoinParseError(f"invalid coin: {part!r}")
        try:
            amount = Decimal(match.group(1))
        except InvalidOperation as e:
            raise CoinParseError(f"invalid amount in {part!r}") from e
        coins.append((match.group(2), amount))

    return coins


def _is_balance_event(event: RawChainEvent, watched_address: str) -> bool:
    if event.type != TRANSFER_EVENT_TYPE or not watched_address:
        return False
    return any(attr.value == watched_address for attr in event.attributes)


def _mints_non_native(event: RawChainEvent, native_denom: str) -> bool:
    raw_amount = event.get(AMOUNT_ATTRIBUTE) or ""
    try:
        coins = parse_coins(raw_amount)
    except CoinParseError as e:
        logger.warning(f"Could not parse coinbase amount {raw_amount!r}: {e}")
        coins = [(native_denom, Decimal("0"))]

    # Zero-amount entries never signal; see DESIGN.md (mint open question)
    return any(denom != native_denom and amount > 0 for denom, amount in coins)


def _market_events(event: RawChainEvent) -> list[DomainEvent]:
    raw_market_id = event.get(MARKET_ID_ATTRIBUTE)
    if raw_market_id is None:
        return []

    market_id = unquote(raw_market_id)
    if not market_id or not event.type.startswith(ORDER_BOOK_EVENT_NAMESPACE):
        return []

    events = [DomainEvent.order_book_changed(market_id)]
    if ORDER_EXECUTED_EVENT_MARKER in event.type:
        events.append(DomainEvent.order_executed(market_id))
    return events


def classify_event(
    event: RawChainEvent,
    watched_address: str = "",
    native_denom: str = DEFAULT_NATIVE_DENOM,
) -> list[DomainEvent]:
    """Classify a single raw event."""
    result: list[DomainEvent] = []

    if _is_balance_event(event, watched_address):
        result.append(DomainEvent.wallet_balance_changed())
    elif BURN_EVENT_MARKER in event.type:
        result.append(DomainEvent.supply_changed())
    elif COINBASE_EVENT_MARKER in event.type:
        if _mints_non_native(event, native_denom):
            result.append(DomainEvent.supply_changed())

    result.extend(_market_events(event))
    return result


def classify(
    events: Iterable[RawChainEvent],
    watched_address: str = "",
    native_denom: str = DEFAULT_NATIVE_DENOM,
) -> list[DomainEvent]:
    """
    Classify a batch of raw ledger events.

    Pure function: no state, never raises on malformed events.

    Args:
        events: Raw events in ledger order.
        watched_address: Current wallet address, empty if none.
        native_denom: The chain's native denom (mints of it are ignored).

    Returns:
        Domain events in the same order as their source events.
    """
    result: list[DomainEvent] = []
    for event in events:
        if not isinstance(event, RawChainEvent):
            continue
        result.extend(classify_event(event, watched_address, native_denom))
    return result
