"""Connection Manager - lifecycle of the single ledger event stream channel."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets

from ledgerwatch.config_loader import StreamConfig
from ledgerwatch.constants import (
    DEFAULT_NATIVE_DENOM,
    INTENTIONAL_CLOSE_CODE,
    INTENTIONAL_CLOSE_REASON,
    SHUTDOWN_CLOSE_REASON,
    ConnectionState,
)
from ledgerwatch.events.bus import EventBus
from ledgerwatch.events.classifier import classify
from ledgerwatch.events.ingress import extract_events
from ledgerwatch.stream.subscriptions import SubscriptionTracker

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState], None]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base, 2*base, 4*base ... capped at cap."""
    return min(base * 2 ** (attempt - 1), cap)


class ConnectionManager:
    """
    Owns the websocket channel to the ledger's event stream.

    Transitions:
        DISCONNECTED -> CONNECTING   on every (re)connect attempt
        CONNECTING   -> CONNECTED    on transport open (subscriptions sent)
        CONNECTED    -> DISCONNECTED on close/error, reconnect scheduled

    Any previous channel is closed with an intentional reason before a new
    one opens. Closes of superseded channels are ignored, so only one
    reconnect path exists. Transport errors end up in the same close path.
    """

    def __init__(
        self,
        url: str,
        bus: EventBus,
        tracker: SubscriptionTracker | None = None,
        *,
        config: StreamConfig | None = None,
        native_denom: str = DEFAULT_NATIVE_DENOM,
        connector: Callable[[str], Any] | None = None,
    ):
        self.url = url
        self.bus = bus
        self.tracker = tracker or SubscriptionTracker()
        self.config = config or StreamConfig()
        self.native_denom = native_denom
        self._connector = connector or self._default_connector

        self.state = ConnectionState.DISCONNECTED
        self.is_live = False
        self.reconnect_attempts = 0

        self._should_reconnect = False
        self._ws: Any = None
        self._channel_id = 0
        self._channel_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._closing: set[asyncio.Task] = set()
        # Held while tracker frames are computed and sent
        self._subscription_lock = asyncio.Lock()
        self._state_callbacks: list[StateCallback] = []

    def _default_connector(self, url: str) -> Any:
        return websockets.connect(
            url,
            ping_interval=self.config.ping_interval_seconds,
            close_timeout=5,
        )

    def add_state_callback(self, callback: StateCallback) -> None:
        """Register callback for connection state transitions."""
        self._state_callbacks.append(callback)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # --- Lifecycle ---

    def start(self) -> None:
        """Begin connecting. Resets the attempt budget."""
        self._should_reconnect = True
        self.reconnect_attempts = 0
        self.connect()

    def connect(self) -> None:
        """Close any existing channel and open a new one."""
        if not self._should_reconnect:
            return

        self._clear_reconnect_timer()
        self._close_channel(INTENTIONAL_CLOSE_REASON)

        channel_id = self._channel_id
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to {self.url}")
        self._channel_task = asyncio.get_running_loop().create_task(
            self._run_channel(channel_id)
        )

    async def stop(self) -> None:
        """Tear down: no more reconnects, timer cleared, channel closed."""
        self._should_reconnect = False
        self._clear_reconnect_timer()
        self._close_channel(SHUTDOWN_CLOSE_REASON)
        self.tracker.on_disconnected()
        self.is_live = False
        self._set_state(ConnectionState.DISCONNECTED)

        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        logger.info("Event stream stopped")

    # --- Wallet address ---

    async def set_address(self, address: str | None) -> None:
        """Switch the watched address, moving the tx subscription pair."""
        async with self._subscription_lock:
            connected = self.state == ConnectionState.CONNECTED
            for frame in self.tracker.update_address(address, connected):
                await self.send(frame)

        # A fresh address gives an exhausted channel a new attempt budget
        if (
            self._should_reconnect
            and self.state == ConnectionState.DISCONNECTED
            and not self.reconnect_pending
        ):
            logger.info("Restarting event stream after address change")
            self.start()

    async def send(self, frame: dict[str, Any]) -> bool:
        """Send a frame. Only allowed while CONNECTED."""
        if self.state != ConnectionState.CONNECTED or self._ws is None:
            logger.debug(f"Dropping frame while {self.state.value}: {frame.get('method')}")
            return False

        try:
            await self._ws.send(json.dumps(frame))
        except Exception as e:
            # The receive loop sees the broken channel and runs the close path
            logger.warning(f"Failed to send {frame.get('method')} frame: {e}")
            return False
        return True

    # --- Channel ---

    async def _run_channel(self, channel_id: int) -> None:
        error: Exception | None = None
        try:
            async with self._connector(self.url) as ws:
                if channel_id != self._channel_id:
                    return
                self._ws = ws
                if not await self._on_open(ws, channel_id):
                    return
                async for message in ws:
                    if channel_id != self._channel_id:
                        return
                    self._on_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        self._on_close(channel_id, error)

    async def _on_open(self, ws: Any, channel_id: int) -> bool:
        async with self._subscription_lock:
            for frame in self.tracker.on_connected():
                await ws.send(json.dumps(frame))

            if channel_id != self._channel_id:
                return False

            # Address switches only see CONNECTED once this pair is live
            self.reconnect_attempts = 0
            self.is_live = True
            self._set_state(ConnectionState.CONNECTED)

        logger.info("Event stream connected")
        return True

    def _on_message(self, message: str | bytes) -> None:
        try:
            frame = json.loads(message)
        except (TypeError, ValueError) as e:
            logger.debug(f"Ignoring undecodable frame: {e}")
            return

        events = extract_events(frame)
        if not events:
            return

        domain_events = classify(events, self.tracker.address, self.native_denom)
        if domain_events:
            logger.debug(f"Classified {len(events)} ledger events into {len(domain_events)}")
            self.bus.publish(domain_events)

    def _on_close(self, channel_id: int, error: Exception | None) -> None:
        if channel_id != self._channel_id:
            # Superseded or closed on purpose
            return

        self._ws = None
        self._channel_task = None
        self.tracker.on_disconnected()
        self.is_live = False
        self._set_state(ConnectionState.DISCONNECTED)

        if error is not None:
            logger.warning(f"Event stream error: {type(error).__name__}: {error}")
        else:
            logger.warning("Event stream closed by remote")

        if self._should_reconnect:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> float | None:
        """Schedule the next attempt. Returns the delay, None when exhausted."""
        self.reconnect_attempts += 1

        if self.reconnect_attempts > self.config.max_reconnect_attempts:
            logger.error("Max reconnection attempts reached")
            return None

        delay = backoff_delay(
            self.reconnect_attempts,
            self.config.reconnect_base_delay_seconds,
            self.config.reconnect_max_delay_seconds,
        )
        logger.info(
            f"Reconnecting in {delay:.1f}s "
            f"(attempt {self.reconnect_attempts}/{self.config.max_reconnect_attempts})"
        )

        self._clear_reconnect_timer()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._on_reconnect_timer)
        return delay

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        if self._should_reconnect:
            self.connect()

    def _clear_reconnect_timer(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _close_channel(self, reason: str) -> None:
        # Bumping the id marks the old channel's close as intentional
        self._channel_id += 1
        ws, task = self._ws, self._channel_task
        self._ws = None
        self._channel_task = None

        if ws is not None:
            closing = asyncio.ensure_future(self._close_ws(ws, reason, task))
            self._closing.add(closing)
            closing.add_done_callback(self._closing.discard)
        elif task is not None and not task.done():
            task.cancel()

    async def _close_ws(self, ws: Any, reason: str, task: asyncio.Task | None) -> None:
        try:
            await ws.close(code=INTENTIONAL_CLOSE_CODE, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing channel: {e}")
        finally:
            if task is not None and not task.done():
                task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        for cb in list(self._state_callbacks):
            try:
                cb(state)
            except Exception as e:
                logger.error(f"Error in connection state callback: {e}", exc_info=True)
