from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Protocol

import structlog

from fxledger import errors
from fxledger.models import FXRate
from fxledger.periods import parse_date_value
from fxledger.rounding import coerce_decimal

logger = structlog.get_logger(__name__)

ONE = Decimal("1")

# Units of each currency per 1 USD. Used only when no stored rate resolves.
DEFAULT_REFERENCE_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("147.50"),
    "CAD": Decimal("1.34"),
    "AUD": Decimal("1.52"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.20"),
    "RUB": Decimal("92.50"),
    "TRY": Decimal("32.10"),
    "AED": Decimal("3.6725"),
    "SAR": Decimal("3.75"),
    "UZS": Decimal("12650"),
}


class FXRateSource(Protocol):
    def list_fx_rates(
        self, from_currency: str | None = None, to_currency: str | None = None
    ) -> list[FXRate]:
        ...


@dataclass(frozen=True)
class FXRateResolver:
    """Resolves a conversion rate between two currencies as of a date.

    Stored rates are searched for the direct pair first, then the inverse
    pair, and only then the static reference table.
    """

    source: FXRateSource
    reference_rates: Mapping[str, Decimal] | None = None

    def resolve(self, from_currency: str, to_currency: str, on_date: date | str | None = None) -> Decimal:
        source_code = normalize_currency(from_currency)
        target_code = normalize_currency(to_currency)
        if source_code == target_code:
            return ONE
        target_date = parse_date_value(on_date) or date.today()

        direct = _pick_entry(self.source.list_fx_rates(source_code, target_code), target_date)
        if direct is not None:
            return direct

        inverse = _pick_entry(self.source.list_fx_rates(target_code, source_code), target_date)
        if inverse is not None:
            return ONE / inverse

        reference = self.reference_rates or {}
        if source_code in reference and target_code in reference:
            logger.info(
                "fx_reference_fallback",
                from_currency=source_code,
                to_currency=target_code,
            )
            return reference[target_code] / reference[source_code]

        raise errors.FXRateNotFound(from_currency=source_code, to_currency=target_code)


def rate_value(entry: FXRate) -> Decimal | None:
    """Per-unit value of a stored entry: rate, then mid, ask, bid over nominal."""
    for candidate in (entry.rate, entry.rate_mid, entry.rate_ask, entry.rate_bid):
        if candidate is not None and candidate > 0:
            nominal = entry.nominal if entry.nominal is not None and entry.nominal > 0 else ONE
            return coerce_decimal(candidate) / coerce_decimal(nominal)
    return None


def _pick_entry(entries: Iterable[FXRate], target_date: date) -> Decimal | None:
    usable = [(entry, rate_value(entry)) for entry in entries]
    usable = [(entry, value) for entry, value in usable if value is not None]
    if not usable:
        return None
    on_or_before = [item for item in usable if item[0].rate_date <= target_date]
    if on_or_before:
        return max(on_or_before, key=lambda item: item[0].rate_date)[1]
    # Nothing dated on or before the target: take the closest later entry.
    return min(usable, key=lambda item: item[0].rate_date)[1]


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    resolver: FXRateResolver,
    date: date | str | None = None,
) -> Decimal:
    """Convert an amount without rounding; callers apply the currency policy."""
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    coerced_amount = coerce_decimal(amount)

    if normalized_source == normalized_target:
        return coerced_amount

    return coerced_amount * resolver.resolve(normalized_source, normalized_target, date)


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if not 3 <= len(normalized) <= 5 or not normalized.isalpha():
        raise ValueError("Currency must be an ISO 4217 style code.")
    return normalized
