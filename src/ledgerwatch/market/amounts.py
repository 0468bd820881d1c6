"""Conversions between chain base units and display units."""

from __future__ import annotations

from decimal import Decimal

from ledgerwatch.market.models import to_decimal


def u_amount_to_amount(amount: Decimal | int | str, decimals: int) -> Decimal:
    """1_000_000 ubze with 6 decimals -> 1 BZE."""
    return to_decimal(amount).scaleb(-decimals)


def u_price_to_price(price: Decimal | int | str, quote_decimals: int, base_decimals: int) -> Decimal:
    """
    Convert an on-chain price (quote base units per base base unit) into a
    display price (quote units per base unit).
    """
    return to_decimal(price).scaleb(base_decimals - quote_decimals)
