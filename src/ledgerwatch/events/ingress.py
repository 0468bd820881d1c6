"""Normalize inbound stream frames into one flat list of raw ledger events.

Three frame shapes carry events:

- a finalized block's own event list (block subscription),
- the per-transaction results of that block, each with its events
  (block subscription),
- a single transaction result's events (tx subscription).

The classifier never sees these shapes, only the flattened list.
"""

from __future__ import annotations

import logging
from typing import Any

from ledgerwatch.events.models import RawChainEvent

logger = logging.getLogger(__name__)

# Block-level event lists, newest layout first
BLOCK_EVENT_KEYS = ("result_finalize_block", "result_begin_block", "result_end_block")


def _to_events(raw_events: Any) -> list[RawChainEvent]:
    if not isinstance(raw_events, list):
        return []
    events = []
    for raw in raw_events:
        event = RawChainEvent.from_dict(raw)
        if event is not None:
            events.append(event)
    return events


def _block_events(value: dict[str, Any]) -> list[RawChainEvent]:
    events: list[RawChainEvent] = []
    for key in BLOCK_EVENT_KEYS:
        section = value.get(key)
        if isinstance(section, dict):
            events.extend(_to_events(section.get("events")))
    return events


def _block_tx_events(value: dict[str, Any]) -> list[RawChainEvent]:
    section = value.get("result_finalize_block")
    if not isinstance(section, dict):
        return []

    events: list[RawChainEvent] = []
    for tx_result in section.get("tx_results") or []:
        if isinstance(tx_result, dict):
            events.extend(_to_events(tx_result.get("events")))
    return events


def _tx_events(value: dict[str, Any]) -> list[RawChainEvent]:
    tx_result = value.get("TxResult")
    if not isinstance(tx_result, dict):
        return []
    result = tx_result.get("result")
    if not isinstance(result, dict):
        return []
    return _to_events(result.get("events"))


def extract_events(frame: Any) -> list[RawChainEvent]:
    """
    Flatten a decoded JSON-RPC frame into raw ledger events.

    Subscription acknowledgements, errors and unknown shapes yield an empty list.
    """
    if not isinstance(frame, dict):
        return []

    if "error" in frame:
        logger.warning(f"Stream returned error frame: {frame.get('error')}")
        return []

    result = frame.get("result")
    if not isinstance(result, dict):
        return []

    data = result.get("data")
    if not isinstance(data, dict):
        return []

    value = data.get("value")
    if not isinstance(value, dict):
        return []

    if "TxResult" in value:
        return _tx_events(value)

    return _block_events(value) + _block_tx_events(value)
