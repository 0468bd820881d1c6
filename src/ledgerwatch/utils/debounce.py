"""Debounce Coalescer - collapse bursts of refresh signals into bounded calls."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

RefreshFn = Callable[[], Awaitable[Any] | Any]


class DebounceCoalescer:
    """
    Keyed trailing debounce on the running asyncio loop.

    Keys are arbitrary strings so unrelated refresh signals never interfere.
    Functions may be plain callables or coroutine functions; their errors are
    logged and swallowed.
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.TimerHandle] = {}
        self._tails: dict[int, asyncio.TimerHandle] = {}
        self._tail_ids = itertools.count()
        self._tasks: set[asyncio.Task] = set()

    def debounce(self, key: str, delay: float, fn: RefreshFn) -> None:
        """
        Run fn once, delay seconds after the last call made with this key.
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._pending[key] = loop.call_later(delay, self._fire, key, fn)

    def debounce_repeat(self, key: str, delay: float, fn: RefreshFn, extra_times: int) -> None:
        """
        Trailing debounce, then extra_times more runs of fn, each delay apart.

        Only the initial window is cancelled by new signals. Once the first
        run has happened the follow-up runs complete regardless.
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._pending[key] = loop.call_later(
            delay, self._fire_repeat, key, delay, fn, max(0, extra_times)
        )

    def cancel(self, key: str) -> bool:
        """Cancel the pending initial window for key. Returns True if one existed."""
        handle = self._pending.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel every pending timer, including running repeat sequences."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        for handle in self._tails.values():
            handle.cancel()
        self._tails.clear()

    def pending(self, key: str) -> bool:
        return key in self._pending

    @property
    def in_flight(self) -> int:
        """Number of async refreshes started and not yet finished."""
        return len(self._tasks)

    def _fire(self, key: str, fn: RefreshFn) -> None:
        self._pending.pop(key, None)
        self._invoke(key, fn)

    def _fire_repeat(self, key: str, delay: float, fn: RefreshFn, remaining: int) -> None:
        self._pending.pop(key, None)
        self._invoke(key, fn)
        self._schedule_tail(key, delay, fn, remaining)

    def _schedule_tail(self, key: str, delay: float, fn: RefreshFn, remaining: int) -> None:
        if remaining <= 0:
            return
        tail_id = next(self._tail_ids)
        loop = asyncio.get_running_loop()
        self._tails[tail_id] = loop.call_later(
            delay, self._fire_tail, tail_id, key, delay, fn, remaining
        )

    def _fire_tail(
        self, tail_id: int, key: str, delay: float, fn: RefreshFn, remaining: int
    ) -> None:
        self._tails.pop(tail_id, None)
        self._invoke(key, fn)
        self._schedule_tail(key, delay, fn, remaining - 1)

    def _invoke(self, key: str, fn: RefreshFn) -> None:
        try:
            result = fn()
        except Exception as e:
            logger.error(f"Debounced function for '{key}' failed: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._task_done(key, t))

    def _task_done(self, key: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Debounced function for '{key}' failed: {exc}")
