from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

ZERO = Decimal("0")


class TransactionType:
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    SYSTEM_OPENING = "system_opening"
    SYSTEM_ADJUSTMENT = "system_adjustment"
    DEBT_CREATE = "debt_create"
    DEBT_PAYMENT = "debt_payment"
    DEBT_FULL_PAYMENT = "debt_full_payment"
    DEBT_ADJUSTMENT = "debt_adjustment"
    BUDGET_ADD_VALUE = "budget_add_value"
    DEBT_ADD_VALUE = "debt_add_value"
    ACCOUNT_CREATE_FUNDING = "account_create_funding"
    ACCOUNT_DELETE_WITHDRAWAL = "account_delete_withdrawal"

    public = {INCOME, EXPENSE, TRANSFER, SYSTEM_ADJUSTMENT, DEBT_ADJUSTMENT}
    signed = {
        SYSTEM_ADJUSTMENT,
        DEBT_CREATE,
        DEBT_PAYMENT,
        DEBT_FULL_PAYMENT,
        DEBT_ADJUSTMENT,
        BUDGET_ADD_VALUE,
        DEBT_ADD_VALUE,
    }

    @classmethod
    def validate_public(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.public:
            raise ValueError("Invalid transaction type.")
        return normalized


class AccountType:
    values = {"cash", "card", "savings", "investment", "credit", "debt", "other"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid account type.")
        return normalized


class DebtDirection:
    I_OWE = "i_owe"
    THEY_OWE_ME = "they_owe_me"

    values = {I_OWE, THEY_OWE_ME}


class ShowStatus:
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


def new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    user_id: str
    name: str
    account_type: str
    currency: str
    initial_balance: Decimal = ZERO
    current_balance: Decimal = ZERO
    show_status: str = ShowStatus.ACTIVE
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass
class Transaction:
    user_id: str
    type: str
    amount: Decimal
    currency: str
    date: date
    account_id: Optional[str] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    base_currency: Optional[str] = None
    rate_used_to_base: Optional[Decimal] = None
    converted_amount_to_base: Optional[Decimal] = None
    to_amount: Optional[Decimal] = None
    to_currency: Optional[str] = None
    effective_rate_from_to: Optional[Decimal] = None
    category_id: Optional[str] = None
    budget_id: Optional[str] = None
    debt_id: Optional[str] = None
    goal_id: Optional[str] = None
    habit_id: Optional[str] = None
    counterparty_id: Optional[str] = None
    original_currency: Optional[str] = None
    original_amount: Optional[Decimal] = None
    conversion_rate: Optional[Decimal] = None
    description: Optional[str] = None
    skip_budget_matching: bool = False
    show_status: str = ShowStatus.ACTIVE
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def touches_account(self, account_ids: set[str]) -> bool:
        return any(
            ref in account_ids
            for ref in (self.account_id, self.from_account_id, self.to_account_id)
            if ref is not None
        )


@dataclass
class Budget:
    user_id: str
    name: str
    currency: str
    limit_amount: Decimal = ZERO
    period_type: str = "none"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_ids: Optional[list[str]] = None
    category_ids: Optional[list[str]] = None
    transaction_type: Optional[str] = None
    linked_goal_id: Optional[str] = None
    show_status: str = ShowStatus.ACTIVE
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    # Derived on read, never persisted.
    spent_amount: Optional[Decimal] = None
    remaining_amount: Optional[Decimal] = None
    percent_used: Optional[Decimal] = None
    is_overspent: Optional[bool] = None


@dataclass
class Counterparty:
    """A person or institution debts and transactions can be linked to."""

    user_id: str
    display_name: str
    phone_number: Optional[str] = None
    comment: Optional[str] = None
    search_keywords: Optional[str] = None
    show_status: str = ShowStatus.ACTIVE
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


@dataclass
class Debt:
    user_id: str
    direction: str
    principal_amount: Decimal
    principal_currency: str
    base_currency: str
    start_date: date
    name: Optional[str] = None
    counterparty_id: Optional[str] = None
    counterparty_name: Optional[str] = None
    description: Optional[str] = None
    rate_on_start: Optional[Decimal] = None
    principal_base_value: Optional[Decimal] = None
    repayment_currency: Optional[str] = None
    repayment_rate_on_start: Optional[Decimal] = None
    exchange_rate_current: Optional[Decimal] = None
    due_date: Optional[date] = None
    funding_account_id: Optional[str] = None
    funding_transaction_id: Optional[str] = None
    status: str = "active"
    settled_at: Optional[datetime] = None
    show_status: str = ShowStatus.ACTIVE
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    # Derived from the payment history on read.
    total_paid: Optional[Decimal] = None
    remaining_amount: Optional[Decimal] = None
    percent_paid: Optional[Decimal] = None
    total_paid_in_repayment_currency: Optional[Decimal] = None


@dataclass
class DebtPayment:
    user_id: str
    debt_id: str
    account_id: str
    amount: Decimal
    currency: str
    base_currency: str
    rate_used_to_base: Decimal
    converted_amount_to_base: Decimal
    rate_used_to_debt: Decimal
    converted_amount_to_debt: Decimal
    payment_date: date
    applied_rate: Decimal
    note: Optional[str] = None
    related_transaction_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None


@dataclass
class FXRate:
    rate_date: date
    from_currency: str
    to_currency: str
    rate: Optional[Decimal] = None
    rate_mid: Optional[Decimal] = None
    rate_ask: Optional[Decimal] = None
    rate_bid: Optional[Decimal] = None
    nominal: Optional[Decimal] = None
    source: str = "manual"
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime] = None
