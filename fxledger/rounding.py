"""Per-currency rounding.

Zero-decimal currencies settle in whole units, everything else in cents.
``round_amount`` is for figures that are shown or reported; ``round_up`` is
for any amount about to leave an account, so a debit is never short by a
fraction of a minor unit.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

ZERO_DECIMAL_CURRENCIES = frozenset({"UZS", "JPY", "KRW", "VND", "CLP", "ISK", "PYG", "UGX"})

WHOLE_UNIT = Decimal("1")
CENT = Decimal("0.01")


def decimals_for(currency: str | None) -> int:
    if currency and currency.strip().upper() in ZERO_DECIMAL_CURRENCIES:
        return 0
    return 2


def minor_unit(currency: str | None) -> Decimal:
    return WHOLE_UNIT if decimals_for(currency) == 0 else CENT


def round_amount(value: Decimal | int | float | str, currency: str | None) -> Decimal:
    return coerce_decimal(value).quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def round_up(value: Decimal | int | float | str, currency: str | None) -> Decimal:
    return coerce_decimal(value).quantize(minor_unit(currency), rounding=ROUND_CEILING)


def coerce_decimal(value: Decimal | int | float | str) -> Decimal:
    """Decimal view of a number; floats go through str so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
