"""Subscription Tracker - desired ledger subscriptions and address diffs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ledgerwatch.constants import (
    BLOCK_QUERY,
    BLOCK_SUBSCRIPTION_ID,
    TX_RECIPIENT_QUERY,
    TX_RECIPIENT_SUBSCRIPTION_ID,
    TX_SENDER_QUERY,
    TX_SENDER_SUBSCRIPTION_ID,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A single ledger-side subscription."""

    id: int
    query: str
    active: bool = True

    def subscribe_frame(self) -> dict[str, Any]:
        return build_frame("subscribe", self.id, self.query)

    def unsubscribe_frame(self) -> dict[str, Any]:
        return build_frame("unsubscribe", self.id, self.query)


def build_frame(method: str, request_id: int, query: str) -> dict[str, Any]:
    """Build a JSON-RPC subscribe/unsubscribe frame."""
    return {
        "jsonrpc": "2.0",
        "method": method,
        "id": request_id,
        "params": {"query": query},
    }


def block_subscription() -> Subscription:
    return Subscription(BLOCK_SUBSCRIPTION_ID, BLOCK_QUERY)


def tx_subscriptions(address: str) -> tuple[Subscription, Subscription]:
    """Recipient-match and sender-match subscriptions for an address."""
    return (
        Subscription(TX_RECIPIENT_SUBSCRIPTION_ID, TX_RECIPIENT_QUERY.format(address=address)),
        Subscription(TX_SENDER_SUBSCRIPTION_ID, TX_SENDER_QUERY.format(address=address)),
    )


class SubscriptionTracker:
    """
    Tracks the watched address and which address (if any) currently has a
    live tx-subscription pair on the channel.

    The tracker never talks to the transport. It returns the frames that
    must be sent and the Connection Manager sends them.
    """

    def __init__(self, address: str = "") -> None:
        self.address = address or ""
        self._subscribed_address: str | None = None

    @property
    def subscribed_address(self) -> str | None:
        """Address whose tx pair is live, None when no pair is live."""
        return self._subscribed_address

    def desired_subscriptions(self) -> list[Subscription]:
        """Subscriptions that should exist on a connected channel."""
        subs = [block_subscription()]
        if self.address:
            subs.extend(tx_subscriptions(self.address))
        return subs

    def on_connected(self) -> list[dict[str, Any]]:
        """Frames to send on a fresh channel: block subscription, then the tx pair."""
        self._subscribed_address = None
        frames = [block_subscription().subscribe_frame()]
        frames.extend(self._subscribe_pair(self.address))
        return frames

    def on_disconnected(self) -> None:
        """A new channel must resubscribe from scratch."""
        self._subscribed_address = None

    def update_address(self, address: str | None, connected: bool) -> list[dict[str, Any]]:
        """
        Record a new watched address.

        Args:
            address: New address, empty or None when no wallet is connected.
            connected: Whether frames can be sent right now.

        Returns:
            Unsubscribe frames for the old pair followed by subscribe frames
            for the new pair. Empty if nothing changed or not connected.
        """
        current = address or ""
        if current == self.address:
            return []

        previous = self.address
        self.address = current
        logger.info(f"Watched address changed: {previous or '<none>'} -> {current or '<none>'}")

        if not connected:
            self._subscribed_address = None
            return []

        frames: list[dict[str, Any]] = []
        if self._subscribed_address:
            frames.extend(sub.unsubscribe_frame() for sub in tx_subscriptions(self._subscribed_address))
            self._subscribed_address = None

        frames.extend(self._subscribe_pair(current))
        return frames

    def _subscribe_pair(self, address: str) -> list[dict[str, Any]]:
        if not address or self._subscribed_address == address:
            return []
        self._subscribed_address = address
        return [sub.subscribe_frame() for sub in tx_subscriptions(address)]
