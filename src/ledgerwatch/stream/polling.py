"""Polling Fallback - timer-driven refreshes while the event stream is down."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ledgerwatch.constants import DEFAULT_POLLING_INTERVAL, ConnectionType
from ledgerwatch.utils.debounce import DebounceCoalescer

logger = logging.getLogger(__name__)

WATCHDOG_KEY = "connection-type-none"


class PollingFallback:
    """
    Periodically runs refresh functions while the stream is not connected.

    Connection type is POLLING while polls keep completing. If no poll
    completes within two intervals a watchdog flips it to NONE.
    """

    def __init__(
        self,
        refreshers: list[Callable[[], Awaitable[object]]],
        coalescer: DebounceCoalescer,
        interval_sec: float = DEFAULT_POLLING_INTERVAL,
        on_connection_type: Callable[[ConnectionType], None] | None = None,
    ):
        self.refreshers = refreshers
        self.coalescer = coalescer
        self.interval_sec = interval_sec
        self._on_connection_type = on_connection_type
        self.connection_type = ConnectionType.NONE
        self.poll_count = 0
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling. No-op if already running."""
        if self.is_running:
            return

        self._set_connection_type(ConnectionType.POLLING)
        self._arm_watchdog()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Polling fallback started (every {self.interval_sec}s)")

    def stop(self) -> None:
        """Stop polling and disarm the watchdog."""
        self.coalescer.cancel(WATCHDOG_KEY)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Polling fallback stopped")
        self._task = None

    def mark_stream_live(self) -> None:
        """The event stream took over."""
        self.stop()
        self._set_connection_type(ConnectionType.WS)

    async def poll_once(self) -> None:
        """Run every refresher once, concurrently. Failures are logged only."""
        results = await asyncio.gather(
            *(refresh() for refresh in self.refreshers), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Polling refresh failed: {result}")
        self.poll_count += 1

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            await self.poll_once()
            self._set_connection_type(ConnectionType.POLLING)
            self._arm_watchdog()

    def _arm_watchdog(self) -> None:
        self.coalescer.debounce(WATCHDOG_KEY, self.interval_sec * 2, self._mark_stale)

    def _mark_stale(self) -> None:
        logger.warning("No successful poll within two intervals; chain state may be stale")
        self._set_connection_type(ConnectionType.NONE)

    def _set_connection_type(self, connection_type: ConnectionType) -> None:
        if connection_type == self.connection_type:
            return
        self.connection_type = connection_type
        if self._on_connection_type:
            self._on_connection_type(connection_type)
