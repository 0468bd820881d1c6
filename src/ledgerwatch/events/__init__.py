"""Ledger event classification and dispatch."""

from ledgerwatch.events.bus import EventBus
from ledgerwatch.events.classifier import classify
from ledgerwatch.events.ingress import extract_events
from ledgerwatch.events.models import DomainEvent, EventAttribute, RawChainEvent

__all__ = [
    "EventBus",
    "classify",
    "extract_events",
    "DomainEvent",
    "EventAttribute",
    "RawChainEvent",
]
