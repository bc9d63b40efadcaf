from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Mapping, Optional

import structlog

from fxledger.budgets import BudgetService
from fxledger.config import Settings, get_reference_rates
from fxledger.counterparties import CounterpartyService
from fxledger.currency_conversion import FXRateResolver
from fxledger.debt_engine import DebtService
from fxledger.ledger import LedgerService
from fxledger.models import utc_now
from fxledger.repository import FinanceRepository, InMemoryRepository
from fxledger.sql_repository import create_sql_repository
from fxledger.summary import SummaryService
from fxledger.summary_cache import InMemorySummaryCache, RedisSummaryCache, SummaryCache

logger = structlog.get_logger(__name__)


@dataclass
class FinanceEngine:
    repository: FinanceRepository
    ledger: LedgerService
    budgets: BudgetService
    debts: DebtService
    counterparties: CounterpartyService
    summaries: SummaryService
    cache: SummaryCache


def build_engine(
    repository: FinanceRepository,
    *,
    reference_rates: Optional[Mapping[str, Decimal]] = None,
    cache: Optional[SummaryCache] = None,
    default_currency: str = "USD",
    today: Callable[[], date] = date.today,
    now: Callable[[], datetime] = utc_now,
) -> FinanceEngine:
    cache = cache or SummaryCache(InMemorySummaryCache())
    resolver = FXRateResolver(repository, reference_rates)
    ledger = LedgerService(repository, resolver, cache=cache, today=today, now=now)
    budgets = BudgetService(ledger)
    debts = DebtService(ledger, default_currency=default_currency)
    counterparties = CounterpartyService(ledger)
    summaries = SummaryService(
        ledger,
        budgets,
        debts,
        counterparties,
        cache=cache,
        default_currency=default_currency,
    )
    return FinanceEngine(
        repository=repository,
        ledger=ledger,
        budgets=budgets,
        debts=debts,
        counterparties=counterparties,
        summaries=summaries,
        cache=cache,
    )


def engine_from_settings(settings: Settings) -> FinanceEngine:
    if settings.store == "memory":
        repository: FinanceRepository = InMemoryRepository()
    else:
        repository = create_sql_repository(settings.database_url)

    if settings.redis_url:
        store = RedisSummaryCache.from_url(settings.redis_url)
    else:
        store = InMemorySummaryCache()

    logger.info(
        "finance_engine_configured",
        store=settings.store,
        cache="redis" if settings.redis_url else "memory",
        default_currency=settings.default_currency,
    )
    return build_engine(
        repository,
        reference_rates=get_reference_rates(),
        cache=SummaryCache(store, ttl_seconds=settings.summary_ttl_seconds),
        default_currency=settings.default_currency,
    )
