"""Money helpers - all amounts are Decimals with two places"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")

# Currencies Stripe charges in whole units (amounts are not multiplied by 100)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})


def to_money(value: Any) -> Decimal:
    """Coerce a str/int/float/Decimal into a two-place Decimal

    Floats go through str() so 0.1 stays 0.10 instead of its binary expansion.
    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")
    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def from_minor_units(value: Any, currency: Optional[str] = None) -> Decimal:
    """Convert a gateway minor-unit amount to a two-place Decimal

    Amounts are in cents except for zero-decimal currencies such as JPY,
    which Stripe already reports in whole units.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Minor-unit amount must be an integer: {value!r}")
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value).quantize(CENT)
    return (Decimal(value) / 100).quantize(CENT)
