from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from fxledger.models import Budget, ShowStatus, Transaction, TransactionType
from fxledger.rounding import coerce_decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BudgetRollup:
    spent_amount: Decimal
    remaining_amount: Decimal
    percent_used: Decimal
    is_overspent: bool


@dataclass(frozen=True)
class CategorySpend:
    category_id: Optional[str]
    amount: Decimal


def tracked_flow(budget: Budget) -> str:
    flow = (budget.transaction_type or TransactionType.EXPENSE).strip().lower()
    return TransactionType.INCOME if flow == TransactionType.INCOME else TransactionType.EXPENSE


def period_contains(budget: Budget, on_date: date) -> bool:
    if (budget.period_type or "none") == "none":
        return True
    if budget.start_date is not None and on_date < budget.start_date:
        return False
    if budget.end_date is not None and on_date > budget.end_date:
        return False
    return True


def counts_toward(budget: Budget, txn: Transaction) -> bool:
    if txn.budget_id != budget.id or txn.deleted_at is not None:
        return False
    if txn.type != TransactionType.BUDGET_ADD_VALUE and txn.type != tracked_flow(budget):
        return False
    return period_contains(budget, txn.date)


def contribution(budget: Budget, txn: Transaction) -> Decimal:
    """Amount a counted transaction adds to the budget, in the budget currency."""
    if txn.original_currency == budget.currency and txn.original_amount is not None:
        return abs(coerce_decimal(txn.original_amount))
    if txn.currency == budget.currency:
        return abs(coerce_decimal(txn.amount))
    if txn.converted_amount_to_base is not None:
        return abs(coerce_decimal(txn.converted_amount_to_base))
    return ZERO


def rollup(budget: Budget, transactions: Iterable[Transaction]) -> BudgetRollup:
    spent = ZERO
    for txn in transactions:
        if counts_toward(budget, txn):
            spent += contribution(budget, txn)

    limit = coerce_decimal(budget.limit_amount or ZERO)
    percent_used = spent / limit * HUNDRED if limit > ZERO else ZERO
    return BudgetRollup(
        spent_amount=spent,
        remaining_amount=limit - spent,
        percent_used=percent_used,
        is_overspent=spent > limit and limit > ZERO,
    )


def spending_by_category(budget: Budget, transactions: Iterable[Transaction]) -> list[CategorySpend]:
    totals: dict[Optional[str], Decimal] = {}
    for txn in transactions:
        if counts_toward(budget, txn):
            totals[txn.category_id] = totals.get(txn.category_id, ZERO) + contribution(budget, txn)
    return sorted(
        (CategorySpend(category_id=key, amount=value) for key, value in totals.items()),
        key=lambda item: item.amount,
        reverse=True,
    )


def with_rollup(budget: Budget, transactions: Iterable[Transaction]) -> Budget:
    result = rollup(budget, transactions)
    return replace(
        budget,
        spent_amount=result.spent_amount,
        remaining_amount=result.remaining_amount,
        percent_used=result.percent_used,
        is_overspent=result.is_overspent,
    )


def matches_budget(
    budget: Budget,
    *,
    txn_type: str,
    category_id: Optional[str],
    account_id: Optional[str],
    on_date: date,
) -> bool:
    """Whether an unlinked income/expense should be attached to this budget."""
    if budget.show_status != ShowStatus.ACTIVE or budget.deleted_at is not None:
        return False
    if category_id is None or not budget.category_ids or category_id not in budget.category_ids:
        return False
    if budget.account_ids is not None and account_id not in budget.account_ids:
        return False
    if txn_type != tracked_flow(budget):
        return False
    return period_contains(budget, on_date)
