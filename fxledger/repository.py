from __future__ import annotations

import copy
import threading
from typing import Optional, Protocol

from fxledger.models import (
    Account,
    Budget,
    Counterparty,
    Debt,
    DebtPayment,
    FXRate,
    Transaction,
    utc_now,
)


class FinanceRepository(Protocol):
    """Storage seam used by the engine services.

    Lookups are scoped by user and return ``None`` for missing or
    soft-deleted rows; the services turn that into a NOT_FOUND error.
    """

    def insert_account(self, account: Account) -> Account: ...

    def save_account(self, account: Account) -> Account: ...

    def get_account(self, user_id: str, account_id: str) -> Optional[Account]: ...

    def list_accounts(self, user_id: str) -> list[Account]: ...

    def insert_transaction(self, txn: Transaction) -> Transaction: ...

    def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]: ...

    def list_transactions(
        self, user_id: str, account_id: Optional[str] = None
    ) -> list[Transaction]: ...

    def insert_budget(self, budget: Budget) -> Budget: ...

    def save_budget(self, budget: Budget) -> Budget: ...

    def get_budget(self, user_id: str, budget_id: str) -> Optional[Budget]: ...

    def list_budgets(self, user_id: str) -> list[Budget]: ...

    def insert_debt(self, debt: Debt) -> Debt: ...

    def save_debt(self, debt: Debt) -> Debt: ...

    def get_debt(self, user_id: str, debt_id: str) -> Optional[Debt]: ...

    def list_debts(self, user_id: str) -> list[Debt]: ...

    def insert_counterparty(self, counterparty: Counterparty) -> Counterparty: ...

    def save_counterparty(self, counterparty: Counterparty) -> Counterparty: ...

    def get_counterparty(self, user_id: str, counterparty_id: str) -> Optional[Counterparty]: ...

    def list_counterparties(self, user_id: str) -> list[Counterparty]: ...

    def insert_payment(self, payment: DebtPayment) -> DebtPayment: ...

    def get_payment(
        self, user_id: str, debt_id: str, payment_id: str
    ) -> Optional[DebtPayment]: ...

    def list_payments(self, user_id: str, debt_id: str) -> list[DebtPayment]: ...

    def insert_fx_rate(self, rate: FXRate) -> FXRate: ...

    def get_fx_rate(self, rate_id: str) -> Optional[FXRate]: ...

    def list_fx_rates(
        self, from_currency: Optional[str] = None, to_currency: Optional[str] = None
    ) -> list[FXRate]: ...


class InMemoryRepository:
    """Thread-safe dict-backed repository.

    Every read and write hands out copies so callers can never mutate the
    stored rows in place.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._accounts: dict[str, Account] = {}
        self._transactions: dict[str, Transaction] = {}
        self._budgets: dict[str, Budget] = {}
        self._debts: dict[str, Debt] = {}
        self._counterparties: dict[str, Counterparty] = {}
        self._payments: dict[str, DebtPayment] = {}
        self._fx_rates: dict[str, FXRate] = {}

    # accounts

    def insert_account(self, account: Account) -> Account:
        now = utc_now()
        with self._lock:
            account.created_at = account.created_at or now
            account.updated_at = now
            self._accounts[account.id] = copy.deepcopy(account)
            return copy.deepcopy(account)

    def save_account(self, account: Account) -> Account:
        with self._lock:
            account.updated_at = utc_now()
            self._accounts[account.id] = copy.deepcopy(account)
            return copy.deepcopy(account)

    def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        with self._lock:
            return _visible(self._accounts.get(account_id), user_id)

    def list_accounts(self, user_id: str) -> list[Account]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._accounts.values()
                if row.user_id == user_id and row.deleted_at is None
            ]
        return sorted(rows, key=lambda row: row.created_at)

    # transactions

    def insert_transaction(self, txn: Transaction) -> Transaction:
        with self._lock:
            txn.created_at = txn.created_at or utc_now()
            self._transactions[txn.id] = copy.deepcopy(txn)
            return copy.deepcopy(txn)

    def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return _visible(self._transactions.get(transaction_id), user_id)

    def list_transactions(
        self, user_id: str, account_id: Optional[str] = None
    ) -> list[Transaction]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._transactions.values()
                if row.user_id == user_id
                and row.deleted_at is None
                and (account_id is None or row.touches_account({account_id}))
            ]
        return sorted(rows, key=lambda row: (row.date, row.created_at), reverse=True)

    # budgets

    def insert_budget(self, budget: Budget) -> Budget:
        now = utc_now()
        with self._lock:
            budget.created_at = budget.created_at or now
            budget.updated_at = now
            self._budgets[budget.id] = copy.deepcopy(budget)
            return copy.deepcopy(budget)

    def save_budget(self, budget: Budget) -> Budget:
        with self._lock:
            budget.updated_at = utc_now()
            self._budgets[budget.id] = copy.deepcopy(budget)
            return copy.deepcopy(budget)

    def get_budget(self, user_id: str, budget_id: str) -> Optional[Budget]:
        with self._lock:
            return _visible(self._budgets.get(budget_id), user_id)

    def list_budgets(self, user_id: str) -> list[Budget]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._budgets.values()
                if row.user_id == user_id and row.deleted_at is None
            ]
        return sorted(rows, key=lambda row: row.created_at)

    # debts

    def insert_debt(self, debt: Debt) -> Debt:
        now = utc_now()
        with self._lock:
            debt.created_at = debt.created_at or now
            debt.updated_at = now
            self._debts[debt.id] = copy.deepcopy(debt)
            return copy.deepcopy(debt)

    def save_debt(self, debt: Debt) -> Debt:
        with self._lock:
            debt.updated_at = utc_now()
            self._debts[debt.id] = copy.deepcopy(debt)
            return copy.deepcopy(debt)

    def get_debt(self, user_id: str, debt_id: str) -> Optional[Debt]:
        with self._lock:
            return _visible(self._debts.get(debt_id), user_id)

    def list_debts(self, user_id: str) -> list[Debt]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._debts.values()
                if row.user_id == user_id and row.deleted_at is None
            ]
        return sorted(rows, key=lambda row: row.created_at)

    # counterparties

    def insert_counterparty(self, counterparty: Counterparty) -> Counterparty:
        now = utc_now()
        with self._lock:
            counterparty.created_at = counterparty.created_at or now
            counterparty.updated_at = now
            self._counterparties[counterparty.id] = copy.deepcopy(counterparty)
            return copy.deepcopy(counterparty)

    def save_counterparty(self, counterparty: Counterparty) -> Counterparty:
        with self._lock:
            counterparty.updated_at = utc_now()
            self._counterparties[counterparty.id] = copy.deepcopy(counterparty)
            return copy.deepcopy(counterparty)

    def get_counterparty(self, user_id: str, counterparty_id: str) -> Optional[Counterparty]:
        with self._lock:
            return _visible(self._counterparties.get(counterparty_id), user_id)

    def list_counterparties(self, user_id: str) -> list[Counterparty]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._counterparties.values()
                if row.user_id == user_id and row.deleted_at is None
            ]
        return sorted(rows, key=lambda row: row.created_at)

    # debt payments

    def insert_payment(self, payment: DebtPayment) -> DebtPayment:
        with self._lock:
            payment.created_at = payment.created_at or utc_now()
            self._payments[payment.id] = copy.deepcopy(payment)
            return copy.deepcopy(payment)

    def get_payment(
        self, user_id: str, debt_id: str, payment_id: str
    ) -> Optional[DebtPayment]:
        with self._lock:
            row = self._payments.get(payment_id)
            if row is None or row.user_id != user_id or row.debt_id != debt_id:
                return None
            return copy.deepcopy(row)

    def list_payments(self, user_id: str, debt_id: str) -> list[DebtPayment]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._payments.values()
                if row.user_id == user_id and row.debt_id == debt_id
            ]
        return sorted(rows, key=lambda row: (row.payment_date, row.created_at))

    # fx rates

    def insert_fx_rate(self, rate: FXRate) -> FXRate:
        with self._lock:
            rate.created_at = rate.created_at or utc_now()
            self._fx_rates[rate.id] = copy.deepcopy(rate)
            return copy.deepcopy(rate)

    def get_fx_rate(self, rate_id: str) -> Optional[FXRate]:
        with self._lock:
            row = self._fx_rates.get(rate_id)
            return copy.deepcopy(row) if row is not None else None

    def list_fx_rates(
        self, from_currency: Optional[str] = None, to_currency: Optional[str] = None
    ) -> list[FXRate]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._fx_rates.values()
                if (from_currency is None or row.from_currency == from_currency)
                and (to_currency is None or row.to_currency == to_currency)
            ]
        return sorted(rows, key=lambda row: row.rate_date, reverse=True)


def _visible(row, user_id: str):
    if row is None or row.user_id != user_id or row.deleted_at is not None:
        return None
    return copy.deepcopy(row)
