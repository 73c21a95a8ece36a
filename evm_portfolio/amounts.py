"""Raw on-chain amount conversion.

Balances arrive as integers in the token's smallest unit. Conversion to a
human-readable amount uses ``decimal.Decimal`` with enough precision to be
exact; only the final USD valuation drops to ``float``.
"""
from __future__ import annotations

import math
from decimal import Context, Decimal


def to_decimal(amount: int | None, decimals: int) -> Decimal:
    """Return ``amount / 10**decimals`` exactly."""
    if amount is None:
        raise ValueError("amount is None")
    if decimals < 0:
        raise ValueError(f"negative decimals: {decimals}")
    precision = max(28, len(str(abs(amount))) + decimals + 2)
    return Decimal(amount).scaleb(-decimals, context=Context(prec=precision))


def format_units(amount: int | None, decimals: int) -> str:
    """Format a raw amount, e.g. ``(1234500000000000000, 18) -> "1.2345"``."""
    text = format(to_decimal(amount, decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("", "-0"):
        return "0"
    return text


def value_usd(amount: int | None, decimals: int, price_usd: float) -> float:
    """USD value of a raw amount at ``price_usd`` per whole token."""
    if amount is None:
        raise ValueError("amount is None")
    if amount == 0 or price_usd == 0:
        return 0.0
    value = float(to_decimal(amount, decimals)) * price_usd
    if not math.isfinite(value):
        raise ValueError(f"non-finite USD value for amount {amount}")
    return value
