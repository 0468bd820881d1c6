"""
Chain state snapshot: balances, assets, markets, tickers, pools and prices.

Each map is replaced wholesale by a refresh, never mutated in place, so
readers always see a consistent snapshot. Every refresh takes a generation
number when it starts; a response that arrives after a newer one has been
applied is discarded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from ledgerwatch.clients.chain import ChainDataClient
from ledgerwatch.config_loader import ChainConfig
from ledgerwatch.constants import ConnectionType
from ledgerwatch.market.models import (
    Asset,
    Balance,
    LiquidityPool,
    Market,
    MarketTicker,
)
from ledgerwatch.market.prices import PriceResolver, price_change, total_usd_value

logger = logging.getLogger(__name__)

# Names passed to change callbacks
BALANCES = "balances"
ASSETS = "assets"
MARKETS = "markets"
TICKERS = "tickers"
POOLS = "pools"
PRICES = "prices"

ChangeCallback = Callable[[str], Any]

_EMPTY: Mapping[str, Any] = MappingProxyType({})


class ChainState:
    """
    Holds the latest chain data and refreshes it from a ChainDataClient.

    Args:
        client: REST collaborator.
        resolver: Price resolver used by recompute_prices.
        chain: Denominations and decimals.
        address: Wallet address whose balances are tracked.
    """

    def __init__(
        self,
        client: ChainDataClient,
        resolver: PriceResolver,
        chain: ChainConfig,
        address: str = "",
    ):
        self.client = client
        self.resolver = resolver
        self.chain = chain
        self._address = address

        self.balances: Mapping[str, Balance] = _EMPTY
        self.assets: Mapping[str, Asset] = _EMPTY
        self.markets: Mapping[str, Market] = _EMPTY
        self.tickers: Mapping[str, MarketTicker] = _EMPTY
        self.pools: Mapping[str, LiquidityPool] = _EMPTY
        self.prices: Mapping[str, Decimal] = _EMPTY

        self.connection_type = ConnectionType.NONE
        self.updated_at: dict[str, datetime] = {}

        self._issued: dict[str, int] = {}
        self._applied: dict[str, int] = {}
        self._change_callbacks: list[ChangeCallback] = []

    # =========================================================================
    # Callbacks
    # =========================================================================

    def add_change_callback(self, callback: ChangeCallback) -> None:
        """Register callback(name) fired after a map is swapped."""
        self._change_callbacks.append(callback)

    def _swap(self, name: str, value: Mapping[str, Any]) -> None:
        setattr(self, name, value)
        self.updated_at[name] = datetime.now(timezone.utc)
        self._notify(name)

    def _notify(self, name: str) -> None:
        for callback in list(self._change_callbacks):
            try:
                callback(name)
            except Exception as e:
                logger.error(f"Change callback error for {name}: {e}")

    # =========================================================================
    # Generations
    # =========================================================================

    def _begin(self, name: str) -> int:
        generation = self._issued.get(name, 0) + 1
        self._issued[name] = generation
        return generation

    def _accept(self, name: str, generation: int) -> bool:
        """True if a response of this generation may be applied."""
        if generation < self._applied.get(name, 0):
            logger.debug(f"Discarding stale {name} response (generation {generation})")
            return False
        self._applied[name] = generation
        return True

    def generation(self, name: str) -> int:
        """Last applied generation for a map, 0 if never refreshed."""
        return self._applied.get(name, 0)

    # =========================================================================
    # Address
    # =========================================================================

    @property
    def address(self) -> str:
        return self._address

    def set_address(self, address: str) -> None:
        """Switch wallets. Balances are cleared and in-flight fetches invalidated."""
        if address == self._address:
            return
        self._address = address
        # Anything already in flight belongs to the old address
        self._applied[BALANCES] = self._begin(BALANCES)
        self._swap(BALANCES, _EMPTY)

    # =========================================================================
    # Refreshes
    # =========================================================================

    async def refresh_balances(self) -> bool:
        generation = self._begin(BALANCES)
        address = self._address
        balances = await self.client.fetch_balances(address)
        if address != self._address or not self._accept(BALANCES, generation):
            return False
        self._swap(BALANCES, MappingProxyType({b.denom: b for b in balances}))
        return True

    async def refresh_assets(self) -> bool:
        generation = self._begin(ASSETS)
        assets = await self.client.fetch_assets()
        if not assets or not self._accept(ASSETS, generation):
            return False
        self._swap(ASSETS, MappingProxyType({a.denom: a for a in assets}))
        return True

    async def refresh_markets(self) -> bool:
        generation = self._begin(MARKETS)
        markets = await self.client.fetch_markets()
        if not markets or not self._accept(MARKETS, generation):
            return False
        self._swap(MARKETS, MappingProxyType({m.market_id: m for m in markets}))
        return True

    async def refresh_tickers(self) -> bool:
        generation = self._begin(TICKERS)
        tickers = await self.client.fetch_tickers()
        if not tickers or not self._accept(TICKERS, generation):
            return False
        self._swap(TICKERS, MappingProxyType({t.market_id: t for t in tickers}))
        return True

    async def refresh_pools(self) -> bool:
        generation = self._begin(POOLS)
        pools = await self.client.fetch_liquidity_pools()
        if not pools or not self._accept(POOLS, generation):
            return False
        self._swap(POOLS, MappingProxyType({p.id: p for p in pools}))
        return True

    async def recompute_prices(self) -> bool:
        """Rebuild the full price table from the current snapshot."""
        generation = self._begin(PRICES)
        prices = await self.resolver.recompute(
            self.assets, self.tickers, self.markets.keys(), self.pools
        )
        if not self._accept(PRICES, generation):
            return False
        self._swap(PRICES, prices)
        return True

    async def refresh_all(self) -> None:
        """Initial load: every map, then one price pass."""
        await self.refresh_assets()
        await self.refresh_markets()
        await self.refresh_tickers()
        await self.refresh_pools()
        await self.refresh_balances()
        await self.recompute_prices()

    # =========================================================================
    # Queries
    # =========================================================================

    def age(self, name: str) -> timedelta | None:
        """Time since a map was last replaced, None if it never was."""
        updated = self.updated_at.get(name)
        if updated is None:
            return None
        return datetime.now(timezone.utc) - updated

    def usd_price(self, denom: str) -> Decimal:
        """USD unit price, 0 when unknown."""
        return self.prices.get(denom, Decimal("0"))

    def price_change(self, denom: str) -> Decimal:
        return price_change(denom, self.tickers, self.chain)

    def total_usd_value(self) -> Decimal:
        """USD value of the tracked wallet."""
        return total_usd_value(self.balances.values(), self.prices, self.assets, self.chain)
