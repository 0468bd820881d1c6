"""Ledger event stream: connection, subscriptions and polling fallback."""

from ledgerwatch.stream.connection import ConnectionManager, backoff_delay
from ledgerwatch.stream.polling import PollingFallback
from ledgerwatch.stream.subscriptions import Subscription, SubscriptionTracker

__all__ = [
    "ConnectionManager",
    "backoff_delay",
    "PollingFallback",
    "Subscription",
    "SubscriptionTracker",
]
