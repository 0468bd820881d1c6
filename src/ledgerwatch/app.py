"""LedgerWatch Main Application."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from pathlib import Path

from ledgerwatch.clients.chain import ChainDataClient
from ledgerwatch.config_loader import AppConfig, load_config_with_overrides
from ledgerwatch.constants import (
    LOG_FORMAT,
    ConnectionState,
    ConnectionType,
    DomainEventKind,
)
from ledgerwatch.events.bus import EventBus
from ledgerwatch.events.models import DomainEvent
from ledgerwatch.market.prices import PriceResolver
from ledgerwatch.state.chain_state import ASSETS, MARKETS, PRICES, TICKERS, ChainState
from ledgerwatch.stream.connection import ConnectionManager
from ledgerwatch.stream.polling import PollingFallback
from ledgerwatch.stream.subscriptions import SubscriptionTracker
from ledgerwatch.utils.debounce import DebounceCoalescer

logger = logging.getLogger(__name__)

# Debounce keys
REFRESH_ASSETS_KEY = "refresh-assets"
REFRESH_WALLET_KEY = "refresh-wallet"
REFRESH_MARKET_DATA_KEY = "refresh-market-data"
REFRESH_ORDER_BOOK_KEY = "refresh-order-book"
RECOMPUTE_PRICES_KEY = "recompute-prices"
REFRESH_POOLS_KEY = "refresh-pools"


class LedgerWatchApp:
    """Composition root: owns the bus, the stream, the state and the timers."""

    def __init__(
        self,
        config_path: str = "config/config.yaml",
        address: str | None = None,
        config: AppConfig | None = None,
    ):
        self.config_path = Path(config_path)
        self.config: AppConfig | None = config
        self._address_override = address

        # Components
        self.bus: EventBus | None = None
        self.coalescer: DebounceCoalescer | None = None
        self.client: ChainDataClient | None = None
        self.state: ChainState | None = None
        self.tracker: SubscriptionTracker | None = None
        self.connection: ConnectionManager | None = None
        self.polling: PollingFallback | None = None

        self._unsubscribers: list[Callable[[], None]] = []
        self._running = False
        self._shutdown_event = asyncio.Event()

    def _setup_logging(self) -> None:
        level = self.config.environment.log_level.value if self.config else "INFO"
        logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)

    async def initialize(self) -> None:
        """Load config and build components."""
        if self.config is None:
            self.config = load_config_with_overrides(
                self.config_path.absolute(), address=self._address_override
            )
        elif self._address_override is not None:
            self.config = self.config.model_copy(
                update={
                    "wallet": self.config.wallet.model_copy(
                        update={"address": self._address_override}
                    )
                }
            )

        self._setup_logging()
        logger.info("Initializing LedgerWatch...")

        cfg = self.config
        address = cfg.wallet.address

        self.bus = EventBus()
        self.coalescer = DebounceCoalescer()

        if self.client is None:
            self.client = ChainDataClient(cfg.endpoints, cfg.chain)

        resolver = PriceResolver(
            cfg.chain,
            history_lookup=self.client.fetch_trade_history,
            oracle_lookup=self.client.fetch_native_usd_price,
        )
        self.state = ChainState(self.client, resolver, cfg.chain, address)
        self.state.add_change_callback(self._on_state_change)

        self.tracker = SubscriptionTracker(address)
        self.connection = ConnectionManager(
            cfg.endpoints.websocket_url,
            self.bus,
            self.tracker,
            config=cfg.stream,
            native_denom=cfg.chain.native_denom,
        )
        self.connection.add_state_callback(self._on_connection_state)

        self.polling = PollingFallback(
            [
                self.state.refresh_balances,
                self.state.refresh_tickers,
                self.state.refresh_assets,
                self.state.refresh_pools,
            ],
            self.coalescer,
            interval_sec=cfg.polling.interval_seconds,
            on_connection_type=self._on_connection_type,
        )

        logger.info(f"Stream endpoint: {self.connection.url}")
        if address:
            logger.info(f"Watching wallet: {address}")

    # =========================================================================
    # Connection state -> handler binding and polling
    # =========================================================================

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self._bind_handlers()
            self.polling.mark_stream_live()
            return

        self._unbind_handlers()
        if self._running:
            self.polling.start()

    def _on_connection_type(self, connection_type: ConnectionType) -> None:
        logger.info(f"Connection type: {connection_type.value}")
        self.state.connection_type = connection_type

    def _bind_handlers(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.bus.subscribe(DomainEventKind.SUPPLY_CHANGED, self._on_supply_changed),
            self.bus.subscribe(
                DomainEventKind.WALLET_BALANCE_CHANGED, self._on_wallet_balance_changed
            ),
            self.bus.subscribe(DomainEventKind.ORDER_EXECUTED, self._on_order_executed),
            self.bus.subscribe(DomainEventKind.ORDER_BOOK_CHANGED, self._on_order_book_changed),
        ]
        logger.debug("Refresh handlers bound")

    def _unbind_handlers(self) -> None:
        if not self._unsubscribers:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        logger.debug("Refresh handlers unbound")

    # =========================================================================
    # Domain event handlers
    # =========================================================================

    def _on_supply_changed(self, event: DomainEvent) -> None:
        self.coalescer.debounce(
            REFRESH_ASSETS_KEY, self.config.refresh.assets_delay, self.state.refresh_assets
        )

    def _on_wallet_balance_changed(self, event: DomainEvent) -> None:
        self.coalescer.debounce(
            REFRESH_WALLET_KEY, self.config.refresh.balances_delay, self.state.refresh_balances
        )

    def _on_order_executed(self, event: DomainEvent) -> None:
        # Aggregator lags the chain, so re-fetch a couple more times
        self.coalescer.debounce_repeat(
            REFRESH_MARKET_DATA_KEY,
            self.config.refresh.market_data_delay,
            self.state.refresh_tickers,
            self.config.refresh.market_data_extra_times,
        )

    def _on_order_book_changed(self, event: DomainEvent) -> None:
        self.coalescer.debounce(
            f"{REFRESH_ORDER_BOOK_KEY}:{event.market_id}",
            self.config.refresh.order_book_delay,
            self.state.refresh_tickers,
        )

    def _on_state_change(self, name: str) -> None:
        if name in (ASSETS, MARKETS, TICKERS):
            self.coalescer.debounce(
                RECOMPUTE_PRICES_KEY, self.config.refresh.prices_delay, self.state.recompute_prices
            )
        elif name == PRICES:
            self.coalescer.debounce(
                REFRESH_POOLS_KEY, self.config.refresh.pools_delay, self.state.refresh_pools
            )

    # =========================================================================
    # Public operations
    # =========================================================================

    async def set_address(self, address: str) -> None:
        """Switch the watched wallet."""
        logger.info(f"Switching wallet to {address or '<none>'}")
        self.state.set_address(address)
        await self.connection.set_address(address)
        if address:
            await self.state.refresh_balances()

    async def start(self) -> None:
        """Load initial state, then start streaming with polling as fallback."""
        if self.connection is None:
            await self.initialize()

        self._running = True
        await self.state.refresh_all()
        self.polling.start()
        self.connection.start()

    async def shutdown(self) -> None:
        self._running = False
        self._unbind_handlers()
        if self.polling:
            self.polling.stop()
        if self.connection:
            await self.connection.stop()
        if self.coalescer:
            self.coalescer.cancel_all()
        if self.client:
            await self.client.close()

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM."""
        if self.connection is None:
            await self.initialize()

        logger.info("Starting run loop...")

        # Trap signals
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, lambda: self._handle_signal())
        except NotImplementedError:
            logger.warning("Signal handlers not supported in this environment. Use Ctrl+C to stop.")

        try:
            await self.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("Shutting down...")
            await self.shutdown()
            logger.info("Shutdown complete.")

    def _handle_signal(self) -> None:
        logger.info("Signal received, initiating shutdown...")
        self._shutdown_event.set()
