from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping

from fxledger.currency_conversion import DEFAULT_REFERENCE_RATES, normalize_currency

FALLBACK_CURRENCY = "USD"
DEFAULT_SUMMARY_TTL_SECONDS = 30


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", FALLBACK_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return FALLBACK_CURRENCY


def get_summary_ttl_seconds() -> int:
    raw = os.getenv("SUMMARY_CACHE_TTL_SECONDS")
    if not raw:
        return DEFAULT_SUMMARY_TTL_SECONDS
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_SUMMARY_TTL_SECONDS
    return value if value > 0 else DEFAULT_SUMMARY_TTL_SECONDS


def get_reference_rates() -> Mapping[str, Decimal]:
    """Last-resort FX table, overridable with a JSON object in FX_REFERENCE_RATES."""
    raw = os.getenv("FX_REFERENCE_RATES")
    if not raw:
        return dict(DEFAULT_REFERENCE_RATES)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("FX_REFERENCE_RATES must be a JSON object.") from exc
    if not isinstance(payload, dict):
        raise ValueError("FX_REFERENCE_RATES must be a JSON object.")
    rates: dict[str, Decimal] = {}
    for code, value in payload.items():
        try:
            rate = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid reference rate for {code}.") from exc
        if rate <= 0:
            raise ValueError(f"Reference rate for {code} must be positive.")
        rates[normalize_currency(code)] = rate
    return rates


@dataclass(frozen=True)
class Settings:
    database_url: str
    store: str
    default_currency: str
    summary_ttl_seconds: int
    redis_url: str | None
    frontend_origin: str
    log_level: str


def load_settings() -> Settings:
    store = os.getenv("FINANCE_STORE", "sql").strip().lower()
    if store not in {"sql", "memory"}:
        raise ValueError("FINANCE_STORE must be 'sql' or 'memory'.")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./fxledger.db"),
        store=store,
        default_currency=get_system_default_currency(),
        summary_ttl_seconds=get_summary_ttl_seconds(),
        redis_url=os.getenv("REDIS_URL") or None,
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
