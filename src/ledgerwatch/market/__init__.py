"""Market data models and USD price resolution."""

from ledgerwatch.market.models import (
    Asset,
    Balance,
    LiquidityPool,
    Market,
    MarketTicker,
    Trade,
    create_market_id,
)
from ledgerwatch.market.prices import PriceResolver, price_change, total_usd_value

__all__ = [
    "Asset",
    "Balance",
    "LiquidityPool",
    "Market",
    "MarketTicker",
    "Trade",
    "create_market_id",
    "PriceResolver",
    "price_change",
    "total_usd_value",
]
