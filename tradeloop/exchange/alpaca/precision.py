from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP


def to_decimal(x) -> Decimal:
    """
    Decimal from Decimal/float/str/int. Raises ValueError on garbage, NaN or inf.
    """
    if isinstance(x, Decimal):
        d = x
    else:
        if isinstance(x, float) and not math.isfinite(x):
            raise ValueError(f"non-finite number: {x!r}")
        try:
            d = Decimal(str(x).strip())
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"not a number: {x!r}") from e
    if not d.is_finite():
        raise ValueError(f"non-finite number: {x!r}")
    return d


def safe_decimal(x, default: Decimal = Decimal("0")) -> Decimal:
    """Lenient parse for brokerage payloads: None/''/NaN/garbage -> default."""
    if x is None or x == "":
        return default
    try:
        return to_decimal(x)
    except ValueError:
        return default


def quantum(decimals: int) -> Decimal:
    """10**-decimals, e.g. 2 -> Decimal('0.01')."""
    return Decimal("1").scaleb(-int(decimals))


def floor_to_decimals(value, decimals: int) -> Decimal:
    """
    Round DOWN (toward zero) to the given number of decimals.
    Used for everything buy-side: notional, quantity, buy limit price.
    """
    return to_decimal(value).quantize(quantum(decimals), rounding=ROUND_DOWN)


def round_to_decimals(value, decimals: int) -> Decimal:
    """
    Round half-up to the given number of decimals.
    Used for sell-side prices (take-profit, stop).
    """
    return to_decimal(value).quantize(quantum(decimals), rounding=ROUND_HALF_UP)


def as_wire(value: Decimal) -> str:
    """Plain (non-scientific) string for JSON payloads."""
    return format(value.normalize(), "f") if value == value.to_integral() else format(value, "f")
