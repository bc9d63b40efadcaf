from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional

import structlog
from pydantic import BaseModel, ValidationError

from fxledger import errors
from fxledger.budgets import BudgetService
from fxledger.counterparties import CounterpartyService
from fxledger.debt_engine import STATUS_PAID, DebtService
from fxledger.ledger import LedgerService, coerce_currency, coerce_date
from fxledger.models import (
    Account,
    Budget,
    Counterparty,
    Debt,
    ShowStatus,
    Transaction,
    TransactionType,
)
from fxledger.periods import month_start, ranges_overlap, shift_month_keep_day
from fxledger.rounding import round_amount
from fxledger.summary_cache import SummaryCache, summary_key

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERCENT_STEP = Decimal("0.01")

TOP_CATEGORY_LIMIT = 5
RECENT_LIMIT = 5
EVENT_LIMIT = 3
DUE_SOON_DAYS = 7


class SummaryTotals(BaseModel):
    balance: Decimal
    income: Decimal
    expense: Decimal
    net: Decimal


class CurrencyBalance(BaseModel):
    currency: str
    native_amount: Decimal
    converted_amount: Decimal


class CategoryTotal(BaseModel):
    category_id: str | None = None
    amount: Decimal


class PeriodChange(BaseModel):
    previous_start: date
    previous_end: date
    previous_income: Decimal
    previous_expense: Decimal
    previous_net: Decimal
    income_percent: Decimal
    expense_percent: Decimal
    net_percent: Decimal


class BudgetProgress(BaseModel):
    budget_count: int
    total_limit: Decimal
    total_spent: Decimal
    percent_used: Decimal


class SummaryEvent(BaseModel):
    kind: str
    entity_id: str
    title: str
    label: str
    amount: Decimal
    currency: str
    due_date: date | None = None


class RecentTransaction(BaseModel):
    id: str
    type: str
    date: date
    amount: Decimal
    currency: str
    native_amount: Decimal
    native_currency: str
    category_id: str | None = None
    description: str | None = None


class FinanceSummary(BaseModel):
    base_currency: str
    date_from: date
    date_to: date
    rate_date: date
    totals: SummaryTotals
    balances_by_currency: list[CurrencyBalance]
    top_categories: list[CategoryTotal]
    changes: PeriodChange
    budget_progress: BudgetProgress
    events: list[SummaryEvent]
    recent_transactions: list[RecentTransaction]


@dataclass(frozen=True)
class FinanceBootstrap:
    """Everything a client needs to render its first screen in one read."""

    accounts: list[Account]
    budgets: list[Budget]
    debts: list[Debt]
    counterparties: list[Counterparty]
    summary: FinanceSummary


def percent_change(previous: Decimal, current: Decimal) -> Decimal:
    if previous == ZERO:
        if current == ZERO:
            return ZERO
        return HUNDRED if current > ZERO else -HUNDRED
    return ((current - previous) / abs(previous) * HUNDRED).quantize(
        PERCENT_STEP, rounding=ROUND_HALF_UP
    )


def due_label(days: int) -> str:
    if days < 0:
        overdue = -days
        return f"Overdue by {overdue} day" if overdue == 1 else f"Overdue by {overdue} days"
    if days == 0:
        return "Due today"
    if days == 1:
        return "Due tomorrow"
    return f"Due in {days} days"


def flow_of(txn: Transaction) -> tuple[Decimal, Decimal]:
    """Native (income, expense) contribution of a transaction, both non-negative."""
    if txn.type == TransactionType.TRANSFER:
        return ZERO, ZERO
    if txn.type == TransactionType.INCOME:
        return abs(txn.amount), ZERO
    if txn.type == TransactionType.EXPENSE:
        return ZERO, abs(txn.amount)
    if txn.type == TransactionType.ACCOUNT_DELETE_WITHDRAWAL:
        # Closing a negative account brings money in.
        if txn.amount < ZERO:
            return -txn.amount, ZERO
        return ZERO, txn.amount
    if txn.amount >= ZERO:
        return txn.amount, ZERO
    return ZERO, -txn.amount


class SummaryService:
    def __init__(
        self,
        ledger: LedgerService,
        budgets: BudgetService,
        debts: DebtService,
        counterparties: CounterpartyService,
        cache: SummaryCache | None = None,
        default_currency: str = "USD",
    ) -> None:
        self.ledger = ledger
        self.budgets = budgets
        self.debts = debts
        self.counterparties = counterparties
        self.cache = cache
        self.default_currency = default_currency

    @property
    def today(self) -> Callable[[], date]:
        return self.ledger.today

    def summary(
        self,
        user_id: str,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        base_currency: Optional[str] = None,
        account_ids: Optional[Iterable[str]] = None,
    ) -> FinanceSummary:
        start = coerce_date(date_from, lambda: None)
        end = coerce_date(date_to, lambda: None)
        base = coerce_currency(base_currency, "base_currency") if base_currency else None
        accounts_filter = sorted(set(account_ids)) if account_ids else None

        key = summary_key(
            user_id,
            start.isoformat() if start else "",
            end.isoformat() if end else "",
            base or "",
            accounts_filter,
        )
        if self.cache is not None:
            cached = self.cache.read(key)
            if cached is not None:
                try:
                    return FinanceSummary.model_validate_json(cached)
                except ValidationError:
                    logger.warning("summary_cache_payload_invalid", key=key)

        result = self.compute_summary(user_id, start, end, base, accounts_filter)
        if self.cache is not None:
            self.cache.write(key, result.model_dump_json())
        return result

    def bootstrap(
        self,
        user_id: str,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        base_currency: Optional[str] = None,
        account_ids: Optional[Iterable[str]] = None,
    ) -> FinanceBootstrap:
        # The account filter narrows the summary only; lists stay complete.
        summary = self.summary(user_id, date_from, date_to, base_currency, account_ids)
        return FinanceBootstrap(
            accounts=self.ledger.list_accounts(user_id),
            budgets=self.budgets.list_budgets(user_id),
            debts=self.debts.list_debts(user_id),
            counterparties=self.counterparties.list_counterparties(user_id),
            summary=summary,
        )

    def compute_summary(
        self,
        user_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
        base_currency: Optional[str] = None,
        account_ids: Optional[list[str]] = None,
    ) -> FinanceSummary:
        all_accounts = self.ledger.list_accounts(user_id)
        base = base_currency or (all_accounts[0].currency if all_accounts else self.default_currency)
        rate_date = date_to or date_from or self.today()
        span_end = date_to or self.today()
        span_start = date_from or month_start(span_end)

        selected = set(account_ids) if account_ids else None
        accounts = [
            account for account in all_accounts if selected is None or account.id in selected
        ]
        transactions = [
            txn
            for txn in self.ledger.list_transactions(user_id)
            if selected is None or txn.touches_account(selected)
        ]

        def convert(amount: Decimal, currency: str) -> Decimal:
            if currency == base:
                return amount
            try:
                return amount * self.ledger.resolver.resolve(currency, base, rate_date)
            except (errors.FinanceError, ValueError) as exc:
                logger.warning(
                    "summary_conversion_failed",
                    from_currency=currency,
                    to_currency=base,
                    error=str(exc),
                )
                return ZERO

        def flows(start: date, end: date) -> tuple[Decimal, Decimal]:
            income = ZERO
            expense = ZERO
            for txn in transactions:
                if not start <= txn.date <= end:
                    continue
                native_income, native_expense = flow_of(txn)
                if native_income:
                    income += convert(native_income, txn.currency)
                if native_expense:
                    expense += convert(native_expense, txn.currency)
            return round_amount(income, base), round_amount(expense, base)

        by_currency: dict[str, list[Decimal]] = {}
        balance = ZERO
        for account in accounts:
            converted = convert(account.current_balance, account.currency)
            balance += converted
            native, total = by_currency.get(account.currency, [ZERO, ZERO])
            by_currency[account.currency] = [native + account.current_balance, total + converted]

        income, expense = flows(span_start, span_end)
        previous_start = shift_month_keep_day(span_start, -1)
        previous_end = shift_month_keep_day(span_end, -1)
        previous_income, previous_expense = flows(previous_start, previous_end)

        categories: dict[Optional[str], Decimal] = {}
        for txn in transactions:
            if txn.type != TransactionType.EXPENSE or not span_start <= txn.date <= span_end:
                continue
            categories[txn.category_id] = categories.get(txn.category_id, ZERO) + convert(
                abs(txn.amount), txn.currency
            )
        top_categories = sorted(categories.items(), key=lambda item: item[1], reverse=True)

        recent = sorted(
            (txn for txn in transactions if txn.type != TransactionType.TRANSFER),
            key=lambda txn: (txn.date, txn.created_at or datetime.min),
            reverse=True,
        )[:RECENT_LIMIT]

        budgets = [
            budget
            for budget in self.budgets.list_budgets(user_id)
            if budget.show_status == ShowStatus.ACTIVE
            and (
                budget.period_type == "none"
                or ranges_overlap(budget.start_date, budget.end_date, span_start, span_end)
            )
        ]

        return FinanceSummary(
            base_currency=base,
            date_from=span_start,
            date_to=span_end,
            rate_date=rate_date,
            totals=SummaryTotals(
                balance=round_amount(balance, base),
                income=income,
                expense=expense,
                net=income - expense,
            ),
            balances_by_currency=[
                CurrencyBalance(
                    currency=currency,
                    native_amount=native,
                    converted_amount=round_amount(total, base),
                )
                for currency, (native, total) in sorted(by_currency.items())
            ],
            top_categories=[
                CategoryTotal(category_id=category_id, amount=round_amount(amount, base))
                for category_id, amount in top_categories[:TOP_CATEGORY_LIMIT]
            ],
            changes=PeriodChange(
                previous_start=previous_start,
                previous_end=previous_end,
                previous_income=previous_income,
                previous_expense=previous_expense,
                previous_net=previous_income - previous_expense,
                income_percent=percent_change(previous_income, income),
                expense_percent=percent_change(previous_expense, expense),
                net_percent=percent_change(previous_income - previous_expense, income - expense),
            ),
            budget_progress=self._budget_progress(budgets, convert, base),
            events=self._events(user_id, budgets),
            recent_transactions=[
                RecentTransaction(
                    id=txn.id,
                    type=txn.type,
                    date=txn.date,
                    amount=round_amount(convert(txn.amount, txn.currency), base),
                    currency=base,
                    native_amount=txn.amount,
                    native_currency=txn.currency,
                    category_id=txn.category_id,
                    description=txn.description,
                )
                for txn in recent
            ],
        )

    def _budget_progress(
        self,
        budgets: list[Budget],
        convert: Callable[[Decimal, str], Decimal],
        base: str,
    ) -> BudgetProgress:
        total_limit = ZERO
        total_spent = ZERO
        for budget in budgets:
            total_limit += convert(budget.limit_amount, budget.currency)
            total_spent += convert(budget.spent_amount or ZERO, budget.currency)
        percent_used = ZERO
        if total_limit > ZERO:
            percent_used = (total_spent / total_limit * HUNDRED).quantize(
                PERCENT_STEP, rounding=ROUND_HALF_UP
            )
        return BudgetProgress(
            budget_count=len(budgets),
            total_limit=round_amount(total_limit, base),
            total_spent=round_amount(total_spent, base),
            percent_used=percent_used,
        )

    def _events(self, user_id: str, budgets: list[Budget]) -> list[SummaryEvent]:
        today = self.today()
        upcoming = []
        for debt in self.debts.list_debts(user_id):
            if debt.status == STATUS_PAID or debt.due_date is None:
                continue
            if debt.show_status != ShowStatus.ACTIVE:
                continue
            days = (debt.due_date - today).days
            if days <= DUE_SOON_DAYS:
                upcoming.append((days, debt))
        upcoming.sort(key=lambda item: item[0])

        events = [
            SummaryEvent(
                kind="debt_overdue" if days < 0 else "debt_due",
                entity_id=debt.id,
                title=debt.name or debt.counterparty_name or "Debt",
                label=due_label(days),
                amount=debt.remaining_amount if debt.remaining_amount is not None else debt.principal_amount,
                currency=debt.principal_currency,
                due_date=debt.due_date,
            )
            for days, debt in upcoming
        ]
        for budget in budgets:
            if budget.is_overspent:
                events.append(
                    SummaryEvent(
                        kind="budget_overspent",
                        entity_id=budget.id,
                        title=budget.name,
                        label="Over budget",
                        amount=-(budget.remaining_amount or ZERO),
                        currency=budget.currency,
                        due_date=budget.end_date,
                    )
                )
        return events[:EVENT_LIMIT]


def normalize_account_filter(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    ids = [item.strip() for item in raw.split(",") if item.strip()]
    return ids or None
