"""Shared utilities."""

from ledgerwatch.utils.debounce import DebounceCoalescer

__all__ = ["DebounceCoalescer"]
