from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional

import structlog

from fxledger import errors
from fxledger.budget_engine import CategorySpend, spending_by_category, with_rollup
from fxledger.ledger import LedgerService, coerce_currency, coerce_date, coerce_money
from fxledger.models import Account, Budget, ShowStatus, Transaction, TransactionType
from fxledger.rounding import round_up

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
PERIOD_TYPES = {"none", "custom_range"}
TRACKED_FLOWS = {TransactionType.EXPENSE, TransactionType.INCOME}
BUDGET_FIELDS = {
    "name",
    "currency",
    "limit_amount",
    "period_type",
    "start_date",
    "end_date",
    "account_ids",
    "category_ids",
    "transaction_type",
    "linked_goal_id",
    "show_status",
}


@dataclass(frozen=True)
class BudgetFunding:
    budget: Budget
    transaction: Transaction
    account: Account


class BudgetService:
    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger
        self.repository = ledger.repository

    def _view(self, user_id: str, budget: Budget) -> Budget:
        return with_rollup(budget, self.repository.list_transactions(user_id))

    def _load(self, user_id: str, budget_id: str) -> Budget:
        budget = self.repository.get_budget(user_id, budget_id)
        if budget is None:
            raise errors.BudgetNotFound(id=budget_id)
        return budget

    def list_budgets(self, user_id: str) -> list[Budget]:
        transactions = self.repository.list_transactions(user_id)
        return [with_rollup(budget, transactions) for budget in self.repository.list_budgets(user_id)]

    def get_budget(self, user_id: str, budget_id: str) -> Budget:
        return self._view(user_id, self._load(user_id, budget_id))

    def create_budget(self, user_id: str, **fields: Any) -> Budget:
        if not fields.get("name") or not fields.get("currency"):
            raise errors.InvalidFinanceData(field="name" if not fields.get("name") else "currency")
        budget = Budget(user_id=user_id, name="", currency="")
        _apply_fields(budget, fields)
        budget = self.repository.insert_budget(budget)
        logger.info("budget_created", user_id=user_id, budget_id=budget.id)
        self.ledger.invalidate(user_id)
        return self._view(user_id, budget)

    def update_budget(self, user_id: str, budget_id: str, **fields: Any) -> Budget:
        budget = self._load(user_id, budget_id)
        replacement = {
            "account_ids": None,
            "category_ids": None,
            "transaction_type": None,
            "linked_goal_id": None,
            "start_date": None,
            "end_date": None,
            "period_type": "none",
            "limit_amount": ZERO,
        }
        replacement.update(fields)
        _apply_fields(budget, replacement)
        return self._save(user_id, budget)

    def patch_budget(self, user_id: str, budget_id: str, fields: Mapping[str, Any]) -> Budget:
        budget = self._load(user_id, budget_id)
        _apply_fields(budget, fields)
        return self._save(user_id, budget)

    def delete_budget(self, user_id: str, budget_id: str) -> None:
        budget = self._load(user_id, budget_id)
        budget.deleted_at = self.ledger.now()
        budget.show_status = ShowStatus.DELETED
        self.repository.save_budget(budget)
        logger.info("budget_deleted", user_id=user_id, budget_id=budget_id)
        self.ledger.invalidate(user_id)

    def _save(self, user_id: str, budget: Budget) -> Budget:
        budget = self.repository.save_budget(budget)
        self.ledger.invalidate(user_id)
        return self._view(user_id, budget)

    def budget_transactions(self, user_id: str, budget_id: str) -> list[Transaction]:
        budget = self._load(user_id, budget_id)
        return [
            txn for txn in self.repository.list_transactions(user_id) if txn.budget_id == budget.id
        ]

    def spending(self, user_id: str, budget_id: str) -> list[CategorySpend]:
        budget = self._load(user_id, budget_id)
        return spending_by_category(budget, self.repository.list_transactions(user_id))

    def add_value(
        self,
        user_id: str,
        budget_id: str,
        *,
        account_id: str,
        amount: Any,
        amount_currency: Optional[str] = None,
        date: date | str | None = None,
        note: Optional[str] = None,
        category_id: Optional[str] = None,
    ) -> BudgetFunding:
        """Move money from an account into a budget.

        The amount may be given in the budget currency or the account
        currency; the other side is converted at the funding date. Both sides
        are rounded up.
        """
        value = coerce_money(amount)
        if value <= ZERO:
            raise errors.InvalidAmount(field="amount")
        budget = self._load(user_id, budget_id)
        account = self.ledger.require_account(user_id, account_id)
        currency = coerce_currency(amount_currency) if amount_currency else budget.currency
        funding_date = coerce_date(date, self.ledger.today)

        if currency == budget.currency:
            budget_amount = round_up(value, budget.currency)
            rate = self.ledger.resolver.resolve(budget.currency, account.currency, funding_date)
            account_amount = round_up(value * rate, account.currency)
        elif currency == account.currency:
            account_amount = round_up(value, account.currency)
            rate = self.ledger.resolver.resolve(account.currency, budget.currency, funding_date)
            budget_amount = round_up(value * rate, budget.currency)
        else:
            raise errors.InvalidCurrency(
                field="amount_currency", expected=f"{budget.currency} or {account.currency}"
            )

        txn = self.ledger.post(
            user_id,
            TransactionType.BUDGET_ADD_VALUE,
            account_id=account.id,
            amount=-account_amount,
            date=funding_date,
            budget_id=budget.id,
            category_id=category_id,
            original_currency=budget.currency,
            original_amount=budget_amount,
            conversion_rate=rate,
            description=note,
            skip_budget_matching=True,
        )
        logger.info(
            "budget_funded",
            user_id=user_id,
            budget_id=budget.id,
            account_id=account.id,
            amount=str(budget_amount),
            currency=budget.currency,
        )
        return BudgetFunding(
            budget=self.get_budget(user_id, budget.id),
            transaction=txn,
            account=self.ledger.get_account(user_id, account.id),
        )


def _apply_fields(budget: Budget, fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - BUDGET_FIELDS
    if unknown:
        raise errors.InvalidFinanceData(fields=",".join(sorted(unknown)))

    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise errors.InvalidFinanceData(field="name")
        budget.name = name
    if "currency" in fields:
        budget.currency = coerce_currency(fields["currency"])
    if "limit_amount" in fields:
        limit = coerce_money(fields["limit_amount"] if fields["limit_amount"] is not None else ZERO, "limit_amount")
        if limit < ZERO:
            raise errors.InvalidAmount(field="limit_amount")
        budget.limit_amount = limit
    if "period_type" in fields:
        period_type = (fields["period_type"] or "none").strip().lower()
        if period_type not in PERIOD_TYPES:
            raise errors.InvalidFinanceData(field="period_type")
        budget.period_type = period_type
    for key in ("start_date", "end_date"):
        if key in fields:
            try:
                setattr(budget, key, coerce_date(fields[key], lambda: None))
            except errors.FinanceError as exc:
                raise errors.InvalidFinanceData(field=key) from exc
    for key in ("account_ids", "category_ids"):
        if key in fields:
            value = fields[key]
            setattr(budget, key, [str(item) for item in value] if value is not None else None)
    if "transaction_type" in fields:
        flow = fields["transaction_type"]
        if flow is not None:
            flow = flow.strip().lower()
            if flow not in TRACKED_FLOWS:
                raise errors.InvalidFinanceData(field="transaction_type")
        budget.transaction_type = flow
    if "linked_goal_id" in fields:
        budget.linked_goal_id = fields["linked_goal_id"]
    if "show_status" in fields:
        status = (fields["show_status"] or "").strip().lower()
        if status not in {ShowStatus.ACTIVE, ShowStatus.ARCHIVED}:
            raise errors.InvalidFinanceData(field="show_status")
        budget.show_status = status

    if budget.period_type == "custom_range":
        if budget.start_date is None or budget.end_date is None:
            raise errors.InvalidFinanceData(field="start_date")
        if budget.end_date < budget.start_date:
            raise errors.InvalidFinanceData(field="end_date")
