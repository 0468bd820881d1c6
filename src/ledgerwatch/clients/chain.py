"""
REST client for chain state and the market aggregator.

Every fetch logs and returns an empty default on failure. Callers treat
an empty result as "nothing new" rather than an error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx

from ledgerwatch.config_loader import ChainConfig, EndpointsConfig
from ledgerwatch.constants import LP_ASSET_DECIMALS
from ledgerwatch.market.models import (
    Asset,
    Balance,
    LiquidityPool,
    Market,
    MarketTicker,
    Trade,
    to_decimal,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 1000


class ChainDataClient:
    """
    Thin async wrapper over the chain REST API and the aggregator.

    Args:
        endpoints: REST, aggregator and oracle endpoints.
        chain: Denominations used to assign asset decimals.
        client: Optional pre-built httpx client (tests inject a mock transport).
    """

    def __init__(
        self,
        endpoints: EndpointsConfig,
        chain: ChainConfig,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoints = endpoints
        self.chain = chain
        self._client = client or httpx.AsyncClient(timeout=endpoints.request_timeout_seconds)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _entries(data: Any, key: str, what: str) -> list[dict[str, Any]]:
        """The list of objects under key, skipping anything not shaped like one."""
        if not isinstance(data, dict):
            logger.error(f"Unexpected {what} payload: {type(data).__name__}")
            return []
        items = data.get(key) or []
        if not isinstance(items, list):
            logger.error(f"Unexpected {what} list: {type(items).__name__}")
            return []
        return [item for item in items if isinstance(item, dict)]

    # =========================================================================
    # Bank
    # =========================================================================

    async def fetch_balances(self, address: str) -> list[Balance]:
        """Spendable balances of address. Empty when no address is set."""
        if not address:
            return []

        url = f"{self.endpoints.rest_endpoint}/cosmos/bank/v1beta1/spendable_balances/{address}"
        try:
            data = await self._get_json(url, {"pagination.limit": DEFAULT_PAGE_LIMIT})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch balances for {address}: {e}")
            return []

        return [
            Balance(denom=coin["denom"], amount=to_decimal(coin.get("amount")))
            for coin in self._entries(data, "balances", "balances")
            if "denom" in coin
        ]

    async def fetch_assets(self) -> list[Asset]:
        """Every denom in total supply, with decimals from configuration."""
        url = f"{self.endpoints.rest_endpoint}/cosmos/bank/v1beta1/supply"
        try:
            data = await self._get_json(url, {"pagination.limit": DEFAULT_PAGE_LIMIT})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch supply: {e}")
            return []

        assets = []
        for coin in self._entries(data, "supply", "supply"):
            denom = coin.get("denom")
            if not denom or not isinstance(denom, str):
                continue
            if denom.startswith(self.chain.lp_denom_prefix):
                decimals = LP_ASSET_DECIMALS
            else:
                decimals = self.chain.decimals_for(denom)
            assets.append(Asset(denom=denom, decimals=decimals, supply=to_decimal(coin.get("amount"))))
        return assets

    # =========================================================================
    # Trade module
    # =========================================================================

    async def fetch_markets(self) -> list[Market]:
        url = f"{self.endpoints.rest_endpoint}/bze/tradebin/all_markets"
        try:
            data = await self._get_json(url, {"pagination.limit": DEFAULT_PAGE_LIMIT})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch markets: {e}")
            return []

        return [
            Market(base=m["base"], quote=m["quote"])
            for m in self._entries(data, "market", "markets")
            if "base" in m and "quote" in m
        ]

    async def fetch_trade_history(self, market_id: str, limit: int = 1) -> list[Trade]:
        """Most recent trades of a market, newest first."""
        url = f"{self.endpoints.rest_endpoint}/bze/tradebin/market_history"
        params = {"market": market_id, "pagination.limit": limit, "pagination.reverse": "true"}
        try:
            data = await self._get_json(url, params)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch trade history for {market_id}: {e}")
            return []

        trades = []
        for item in self._entries(data, "list", "trade history"):
            executed_at = None
            if item.get("executed_at"):
                try:
                    executed_at = datetime.fromtimestamp(int(item["executed_at"]), tz=timezone.utc)
                except (TypeError, ValueError, OverflowError):
                    executed_at = None
            trades.append(
                Trade(
                    market_id=item.get("market_id", market_id),
                    price=to_decimal(item.get("price")),
                    amount=to_decimal(item.get("amount")),
                    executed_at=executed_at,
                )
            )
        return trades

    async def fetch_liquidity_pools(self) -> list[LiquidityPool]:
        url = f"{self.endpoints.rest_endpoint}/bze/tradebin/all_liquidity_pools"
        try:
            data = await self._get_json(url, {"pagination.limit": DEFAULT_PAGE_LIMIT})
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch liquidity pools: {e}")
            return []

        pools = []
        for item in self._entries(data, "list", "liquidity pools"):
            try:
                pools.append(
                    LiquidityPool(
                        id=str(item["id"]),
                        base=item["base"],
                        quote=item["quote"],
                        reserve_base=to_decimal(item.get("reserve_base")),
                        reserve_quote=to_decimal(item.get("reserve_quote")),
                    )
                )
            except KeyError as e:
                logger.warning(f"Skipping malformed pool entry, missing {e}")
        return pools

    # =========================================================================
    # Aggregator and oracle
    # =========================================================================

    async def fetch_tickers(self) -> list[MarketTicker]:
        url = f"{self.endpoints.aggregator_host}/api/dex/tickers"
        try:
            data = await self._get_json(url)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch tickers: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Unexpected tickers payload: {type(data).__name__}")
            return []

        tickers = []
        for item in data:
            try:
                tickers.append(MarketTicker.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed ticker: {e}")
        return tickers

    async def fetch_native_usd_price(self) -> Decimal:
        """Native asset USD price from the external oracle, 0 when unavailable."""
        try:
            data = await self._get_json(self.endpoints.price_oracle_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch oracle price: {e}")
            return Decimal("0")

        coin = data.get(self.endpoints.price_oracle_coin_id) if isinstance(data, dict) else None
        if not isinstance(coin, dict):
            logger.error(f"Oracle response has no price for {self.endpoints.price_oracle_coin_id}")
            return Decimal("0")
        return to_decimal(coin.get("usd"))
