"""Price Resolver - USD unit price for every asset from partial market data.

Every non-native asset has up to two candidate prices:

- Path A: its market against the USD stable coin.
- Path B: its market against the native asset, times the native USD anchor.

Both available -> mean. One available -> that one. Neither -> 0, which
callers read as "no discoverable price".

For each path the ticker's ``last_price`` is used when positive. When the
market exists but the ticker has no price (quiet for 24h, or the market has
no ticker at all) the single most recent trade is used instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from decimal import Decimal
from types import MappingProxyType

from ledgerwatch.config_loader import ChainConfig
from ledgerwatch.constants import LP_ASSET_DECIMALS
from ledgerwatch.market.amounts import u_amount_to_amount, u_price_to_price
from ledgerwatch.market.models import (
    Asset,
    Balance,
    LiquidityPool,
    MarketTicker,
    Trade,
    create_market_id,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

TradeHistoryLookup = Callable[[str, int], Awaitable[list[Trade]]]
OracleLookup = Callable[[], Awaitable[Decimal]]
PriceTable = Mapping[str, Decimal]


class PriceResolver:
    """
    Resolve USD prices against one consistent native anchor per batch.

    Args:
        chain: Denominations (native, USD stable, LP prefix) and decimals.
        history_lookup: ``(market_id, limit) -> trades``, newest first.
        oracle_lookup: External USD price of the native asset, last resort
            for the anchor.
    """

    def __init__(
        self,
        chain: ChainConfig,
        history_lookup: TradeHistoryLookup,
        oracle_lookup: OracleLookup | None = None,
    ):
        self.chain = chain
        self.history_lookup = history_lookup
        self.oracle_lookup = oracle_lookup

    def _decimals(self, denom: str, assets: Mapping[str, Asset]) -> int:
        asset = assets.get(denom)
        if asset is not None:
            return asset.decimals
        return self.chain.decimals_for(denom)

    async def last_price(
        self,
        base: str,
        quote: str,
        tickers: Mapping[str, MarketTicker],
        markets: Iterable[str] = (),
        assets: Mapping[str, Asset] | None = None,
    ) -> Decimal | None:
        """
        Latest known price of base in quote units, None when unavailable.
        """
        market_id = create_market_id(base, quote)
        ticker = tickers.get(market_id)
        if ticker is not None and ticker.last_price > 0:
            return ticker.last_price

        if ticker is None and market_id not in markets:
            return None

        try:
            trades = await self.history_lookup(market_id, 1)
        except Exception as e:
            logger.error(f"Trade history lookup failed for {market_id}: {e}")
            return None

        if not trades:
            return None

        assets = assets or {}
        price = u_price_to_price(
            trades[0].price,
            self._decimals(quote, assets),
            self._decimals(base, assets),
        )
        return price if price > 0 else None

    async def resolve_anchor(
        self,
        tickers: Mapping[str, MarketTicker],
        markets: Iterable[str] = (),
        assets: Mapping[str, Asset] | None = None,
    ) -> Decimal:
        """USD price of the native asset: market, then trade history, then oracle, then 0."""
        price = await self.last_price(
            self.chain.native_denom, self.chain.usd_stable_denom, tickers, markets, assets
        )
        if price is not None:
            return price

        if self.oracle_lookup is not None:
            try:
                oracle_price = await self.oracle_lookup()
            except Exception as e:
                logger.error(f"Native price oracle failed: {e}")
                oracle_price = ZERO
            if oracle_price > 0:
                logger.info(f"Using oracle price for {self.chain.native_denom}: {oracle_price}")
                return oracle_price

        logger.warning(f"No USD price found for {self.chain.native_denom}")
        return ZERO

    async def resolve_usd(
        self,
        denom: str,
        tickers: Mapping[str, MarketTicker],
        markets: Iterable[str],
        anchor: Decimal,
        assets: Mapping[str, Asset] | None = None,
    ) -> Decimal:
        """USD unit price of denom using the batch's native anchor."""
        if denom == self.chain.native_denom:
            return anchor

        direct, via_native = await asyncio.gather(
            self.last_price(denom, self.chain.usd_stable_denom, tickers, markets, assets),
            self.last_price(denom, self.chain.native_denom, tickers, markets, assets),
        )

        # Without an anchor the native path can't be converted
        from_native = via_native * anchor if via_native is not None and anchor > 0 else None

        if direct is not None and from_native is not None:
            return (direct + from_native) / 2
        if direct is not None:
            return direct
        if from_native is not None:
            return from_native
        return ZERO

    def _leg_price(self, denom: str, prices: Mapping[str, Decimal]) -> Decimal:
        # The stable coin is the unit of account and never sits in the table
        if denom == self.chain.usd_stable_denom:
            return Decimal("1")
        return prices.get(denom, ZERO)

    def lp_share_price(
        self,
        lp_asset: Asset,
        pool: LiquidityPool,
        prices: Mapping[str, Decimal],
        assets: Mapping[str, Asset],
    ) -> Decimal | None:
        """USD value of one LP share, None unless both legs are priced."""
        base_price = self._leg_price(pool.base, prices)
        quote_price = self._leg_price(pool.quote, prices)
        if base_price <= 0 or quote_price <= 0:
            return None

        shares = u_amount_to_amount(lp_asset.supply, LP_ASSET_DECIMALS)
        if shares <= 0:
            return None

        base_value = base_price * u_amount_to_amount(
            pool.reserve_base, self._decimals(pool.base, assets)
        )
        quote_value = quote_price * u_amount_to_amount(
            pool.reserve_quote, self._decimals(pool.quote, assets)
        )
        return (base_value + quote_value) / shares

    async def recompute(
        self,
        assets: Mapping[str, Asset],
        tickers: Mapping[str, MarketTicker],
        markets: Iterable[str] = (),
        pools: Mapping[str, LiquidityPool] | None = None,
    ) -> PriceTable:
        """
        Build a complete price table for every known asset.

        The anchor is resolved once and reused for the whole batch. The
        result is a new read-only mapping; callers swap it in whole.
        """
        markets = frozenset(markets)
        pools = pools or {}
        native = self.chain.native_denom
        stable = self.chain.usd_stable_denom
        lp_prefix = self.chain.lp_denom_prefix

        anchor = await self.resolve_anchor(tickers, markets, assets)
        prices: dict[str, Decimal] = {native: anchor}

        regular = [
            denom
            for denom in assets
            if denom not in (native, stable) and not denom.startswith(lp_prefix)
        ]
        resolved = await asyncio.gather(
            *(self.resolve_usd(denom, tickers, markets, anchor, assets) for denom in regular)
        )
        prices.update(zip(regular, resolved))

        for denom, asset in assets.items():
            if not denom.startswith(lp_prefix):
                continue
            pool = pools.get(denom[len(lp_prefix) :])
            if pool is None:
                continue
            share_price = self.lp_share_price(asset, pool, prices, assets)
            if share_price is not None:
                prices[denom] = share_price

        logger.debug(f"Recomputed {len(prices)} prices (anchor {anchor})")
        return MappingProxyType(prices)


def total_usd_value(
    balances: Iterable[Balance],
    prices: Mapping[str, Decimal],
    assets: Mapping[str, Asset],
    chain: ChainConfig,
) -> Decimal:
    """Sum of price * display amount over balances with a positive price."""
    total = ZERO
    for balance in balances:
        price = prices.get(balance.denom, ZERO)
        if price <= 0:
            continue
        asset = assets.get(balance.denom)
        decimals = asset.decimals if asset else chain.decimals_for(balance.denom)
        total += price * u_amount_to_amount(balance.amount, decimals)
    return total


def price_change(
    denom: str, tickers: Mapping[str, MarketTicker], chain: ChainConfig
) -> Decimal:
    """24h change in percent, from the USD market first, then the native market."""
    for quote in (chain.usd_stable_denom, chain.native_denom):
        ticker = tickers.get(create_market_id(denom, quote))
        if ticker is not None:
            return ticker.change
    return ZERO
