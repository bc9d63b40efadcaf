"""Debt bookkeeping and dual-currency repayment.

A debt is denominated in its principal currency. Repayments can come from an
account in any currency; the debt keeps a stored rate from its principal
currency to a counter currency (its repayment currency, or its base currency
when none is set) and repayments from an account in that counter currency
reuse the stored rate rather than the live market rate.

Totals are always recomputed from the payment history, never tracked
incrementally, so ``total_paid`` is exactly the sum of the payments'
debt-currency amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

import structlog

from fxledger import errors
from fxledger.counterparties import build_counterparty
from fxledger.ledger import LedgerService, coerce_currency, coerce_date, coerce_money, ensure_funds
from fxledger.models import (
    Account,
    Counterparty,
    Debt,
    DebtDirection,
    DebtPayment,
    ShowStatus,
    Transaction,
    TransactionType,
    new_id,
)
from fxledger.rounding import minor_unit, round_amount, round_up

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
SETTLEMENT_EPSILON = Decimal("0.01")

STATUS_ACTIVE = "active"
STATUS_PAID = "paid"

DEBT_PATCH_FIELDS = {
    "name",
    "counterparty_id",
    "counterparty_name",
    "description",
    "due_date",
    "exchange_rate_current",
    "show_status",
}


@dataclass(frozen=True)
class DebtTotals:
    total_paid: Decimal
    remaining_amount: Decimal
    percent_paid: Decimal
    total_paid_in_repayment_currency: Decimal


@dataclass(frozen=True)
class RepaymentResult:
    debt: Debt
    payment: DebtPayment
    transaction: Transaction


@dataclass(frozen=True)
class DebtValueResult:
    debt: Debt
    transaction: Transaction


def settlement_epsilon(currency: str) -> Decimal:
    # Whole-unit currencies cannot express a remainder below one unit.
    return max(SETTLEMENT_EPSILON, minor_unit(currency))


def counter_currency(debt: Debt) -> str:
    return debt.repayment_currency or debt.base_currency


def effective_rate(debt: Debt) -> Optional[Decimal]:
    """Stored principal -> counter currency rate, newest first."""
    if debt.exchange_rate_current is not None and debt.exchange_rate_current > ZERO:
        return debt.exchange_rate_current
    if debt.repayment_currency:
        return debt.repayment_rate_on_start
    return debt.rate_on_start


def debt_totals(debt: Debt, payments: Iterable[DebtPayment]) -> DebtTotals:
    total_paid = ZERO
    paid_in_repayment = ZERO
    for payment in payments:
        total_paid += payment.converted_amount_to_debt
        if debt.repayment_currency == payment.currency:
            paid_in_repayment += payment.amount
        elif debt.repayment_currency == debt.principal_currency:
            paid_in_repayment += payment.converted_amount_to_debt

    principal = debt.principal_amount
    percent_paid = ZERO
    if principal > ZERO:
        percent_paid = min(HUNDRED, total_paid / principal * HUNDRED)
    return DebtTotals(
        total_paid=total_paid,
        remaining_amount=principal - total_paid,
        percent_paid=percent_paid,
        total_paid_in_repayment_currency=paid_in_repayment,
    )


def with_totals(debt: Debt, payments: Iterable[DebtPayment]) -> Debt:
    totals = debt_totals(debt, payments)
    return replace(
        debt,
        total_paid=totals.total_paid,
        remaining_amount=totals.remaining_amount,
        percent_paid=totals.percent_paid,
        total_paid_in_repayment_currency=totals.total_paid_in_repayment_currency,
    )


class DebtService:
    def __init__(self, ledger: LedgerService, default_currency: str = "USD") -> None:
        self.ledger = ledger
        self.repository = ledger.repository
        self.resolver = ledger.resolver
        self.default_currency = default_currency

    # reads

    def _load(self, user_id: str, debt_id: str) -> Debt:
        debt = self.repository.get_debt(user_id, debt_id)
        if debt is None:
            raise errors.DebtNotFound(id=debt_id)
        return debt

    def _counterparty(self, user_id: str, counterparty_id: str) -> Counterparty:
        counterparty = self.repository.get_counterparty(user_id, counterparty_id)
        if counterparty is None:
            raise errors.CounterpartyNotFound(id=counterparty_id)
        return counterparty

    def _view(self, user_id: str, debt: Debt) -> Debt:
        return with_totals(debt, self.repository.list_payments(user_id, debt.id))

    def list_debts(self, user_id: str) -> list[Debt]:
        return [self._view(user_id, debt) for debt in self.repository.list_debts(user_id)]

    def counterparty_debts(self, user_id: str, counterparty_id: str) -> list[Debt]:
        counterparty = self._counterparty(user_id, counterparty_id)
        return [debt for debt in self.list_debts(user_id) if debt.counterparty_id == counterparty.id]

    def get_debt(self, user_id: str, debt_id: str) -> Debt:
        return self._view(user_id, self._load(user_id, debt_id))

    def list_payments(self, user_id: str, debt_id: str) -> list[DebtPayment]:
        self._load(user_id, debt_id)
        return self.repository.list_payments(user_id, debt_id)

    def get_payment(self, user_id: str, debt_id: str, payment_id: str) -> DebtPayment:
        self._load(user_id, debt_id)
        payment = self.repository.get_payment(user_id, debt_id, payment_id)
        if payment is None:
            raise errors.DebtPaymentNotFound(id=payment_id)
        return payment

    def update_payment(self, user_id: str, debt_id: str, payment_id: str, *_: Any, **__: Any) -> DebtPayment:
        self.get_payment(user_id, debt_id, payment_id)
        raise errors.DebtPaymentImmutable(id=payment_id)

    def delete_payment(self, user_id: str, debt_id: str, payment_id: str) -> None:
        self.get_payment(user_id, debt_id, payment_id)
        raise errors.DebtPaymentImmutable(id=payment_id)

    # lifecycle

    def create_debt(
        self,
        user_id: str,
        *,
        direction: str,
        principal_amount: Any,
        principal_currency: Optional[str],
        start_date: date | str | None,
        base_currency: Optional[str] = None,
        name: Optional[str] = None,
        counterparty_id: Optional[str] = None,
        counterparty_name: Optional[str] = None,
        inline_counterparty: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
        due_date: date | str | None = None,
        repayment_currency: Optional[str] = None,
        rate_on_start: Any = None,
        repayment_rate_on_start: Any = None,
        exchange_rate_current: Any = None,
        funding_account_id: Optional[str] = None,
    ) -> Debt:
        direction = (direction or "").strip().lower()
        if direction not in DebtDirection.values:
            raise errors.InvalidDebtDirection(field="direction")
        principal = _money_or(principal_amount, errors.InvalidDebtAmount)
        if principal <= ZERO:
            raise errors.InvalidDebtAmount(field="principal_amount")
        if not principal_currency or not principal_currency.strip():
            raise errors.PrincipalCurrencyRequired(field="principal_currency")
        currency = coerce_currency(principal_currency, "principal_currency")
        if start_date is None or (isinstance(start_date, str) and not start_date.strip()):
            raise errors.InvalidFinanceData(field="start_date")
        start = coerce_date(start_date, self.ledger.today)
        due = coerce_date(due_date, lambda: None) if due_date else None
        if due is not None and due < start:
            raise errors.InvalidDueDateRange(field="due_date")

        linked: Optional[Counterparty] = None
        if inline_counterparty is not None:
            linked = build_counterparty(
                user_id,
                display_name=inline_counterparty.get("display_name"),
                phone_number=inline_counterparty.get("phone_number"),
                comment=inline_counterparty.get("comment"),
            )
        elif counterparty_id:
            linked = self._counterparty(user_id, counterparty_id)

        account = (
            self.ledger.require_account(user_id, funding_account_id) if funding_account_id else None
        )
        if base_currency:
            base = coerce_currency(base_currency, "base_currency")
        else:
            base = account.currency if account is not None else self.default_currency
        repayment = (
            coerce_currency(repayment_currency, "repayment_currency") if repayment_currency else None
        )

        start_rate = _positive_or_none(rate_on_start, "rate_on_start")
        if start_rate is None:
            start_rate = self.resolver.resolve(currency, base, start)
        repayment_rate = _positive_or_none(repayment_rate_on_start, "repayment_rate_on_start")
        if repayment is not None and repayment_rate is None:
            repayment_rate = self.resolver.resolve(currency, repayment, start)

        debt = Debt(
            user_id=user_id,
            direction=direction,
            principal_amount=round_amount(principal, currency),
            principal_currency=currency,
            base_currency=base,
            start_date=start,
            name=(name or "").strip() or None,
            counterparty_id=linked.id if linked is not None else None,
            counterparty_name=(counterparty_name or "").strip()
            or (linked.display_name if linked is not None else None),
            description=description,
            rate_on_start=start_rate,
            principal_base_value=round_amount(principal * start_rate, base),
            repayment_currency=repayment,
            repayment_rate_on_start=repayment_rate,
            exchange_rate_current=_positive_or_none(exchange_rate_current, "exchange_rate_current"),
            due_date=due,
            status=STATUS_ACTIVE,
        )

        funding_amount = ZERO
        if account is not None:
            if account.currency == currency:
                funding_amount = debt.principal_amount
            else:
                funding_amount = self.resolver.resolve(currency, account.currency, start) * debt.principal_amount
            if direction == DebtDirection.THEY_OWE_ME:
                funding_amount = round_up(funding_amount, account.currency)
                ensure_funds(account, funding_amount)
            else:
                funding_amount = round_amount(funding_amount, account.currency)
            debt.funding_account_id = account.id
            debt.funding_transaction_id = new_id()

        if inline_counterparty is not None:
            self.repository.insert_counterparty(linked)
            logger.info("counterparty_created", user_id=user_id, counterparty_id=linked.id)
        debt = self.repository.insert_debt(debt)
        if account is not None:
            signed = funding_amount if direction == DebtDirection.I_OWE else -funding_amount
            self.ledger.post(
                user_id,
                TransactionType.DEBT_CREATE,
                id=debt.funding_transaction_id,
                account_id=account.id,
                amount=signed,
                date=start,
                debt_id=debt.id,
                counterparty_id=debt.counterparty_id,
                original_currency=currency,
                original_amount=debt.principal_amount,
                skip_budget_matching=True,
            )
        logger.info(
            "debt_created",
            user_id=user_id,
            debt_id=debt.id,
            direction=direction,
            principal=str(debt.principal_amount),
            currency=currency,
        )
        self.ledger.invalidate(user_id)
        return self._view(user_id, debt)

    def update_debt(self, user_id: str, debt_id: str, **fields: Any) -> Debt:
        replacement: dict[str, Any] = {
            "name": None,
            "counterparty_id": None,
            "counterparty_name": None,
            "description": None,
            "due_date": None,
        }
        replacement.update(fields)
        return self.patch_debt(user_id, debt_id, replacement)

    def patch_debt(self, user_id: str, debt_id: str, fields: Mapping[str, Any]) -> Debt:
        debt = self._load(user_id, debt_id)
        unknown = set(fields) - DEBT_PATCH_FIELDS
        if unknown:
            raise errors.InvalidFinanceData(fields=",".join(sorted(unknown)))
        for key in ("name", "counterparty_name", "description"):
            if key in fields:
                value = fields[key]
                setattr(debt, key, (value.strip() or None) if isinstance(value, str) else value)
        if "counterparty_id" in fields:
            linked = (
                self._counterparty(user_id, fields["counterparty_id"])
                if fields["counterparty_id"]
                else None
            )
            debt.counterparty_id = linked.id if linked is not None else None
            if linked is not None and not fields.get("counterparty_name"):
                debt.counterparty_name = linked.display_name
        if "due_date" in fields:
            due = coerce_date(fields["due_date"], lambda: None)
            if due is not None and due < debt.start_date:
                raise errors.InvalidDueDateRange(field="due_date")
            debt.due_date = due
        if "exchange_rate_current" in fields:
            debt.exchange_rate_current = _positive_or_none(
                fields["exchange_rate_current"], "exchange_rate_current"
            )
        if "show_status" in fields:
            status = (fields["show_status"] or "").strip().lower()
            if status not in {ShowStatus.ACTIVE, ShowStatus.ARCHIVED}:
                raise errors.InvalidFinanceData(field="show_status")
            debt.show_status = status
        debt = self.repository.save_debt(debt)
        self.ledger.invalidate(user_id)
        return self._view(user_id, debt)

    def delete_debt(self, user_id: str, debt_id: str) -> None:
        debt = self._load(user_id, debt_id)
        debt.deleted_at = self.ledger.now()
        debt.show_status = ShowStatus.DELETED
        self.repository.save_debt(debt)
        logger.info("debt_deleted", user_id=user_id, debt_id=debt_id)
        self.ledger.invalidate(user_id)

    def settle(self, user_id: str, debt_id: str) -> Debt:
        debt = self._load(user_id, debt_id)
        if debt.status != STATUS_PAID:
            debt.status = STATUS_PAID
            debt.settled_at = self.ledger.now()
            debt = self.repository.save_debt(debt)
            logger.info("debt_settled", user_id=user_id, debt_id=debt_id, manual=True)
            self.ledger.invalidate(user_id)
        return self._view(user_id, debt)

    def extend(self, user_id: str, debt_id: str, due_date: date | str | None) -> Debt:
        debt = self._load(user_id, debt_id)
        due = coerce_date(due_date, lambda: None)
        if due is None:
            raise errors.InvalidFinanceData(field="due_date")
        if due < debt.start_date:
            raise errors.InvalidDueDateRange(field="due_date")
        debt.due_date = due
        debt = self.repository.save_debt(debt)
        logger.info("debt_extended", user_id=user_id, debt_id=debt_id, due_date=due.isoformat())
        self.ledger.invalidate(user_id)
        return self._view(user_id, debt)

    # money movement

    def _rate_to_account(self, debt: Debt, account: Account, on_date: date) -> Decimal:
        """Principal -> account currency rate for a repayment or top-up."""
        if account.currency == debt.principal_currency:
            return ONE
        stored = effective_rate(debt)
        if account.currency == counter_currency(debt) and stored is not None and stored > ZERO:
            return stored
        return self.resolver.resolve(debt.principal_currency, account.currency, on_date)

    def _split_amount(
        self, debt: Debt, account: Account, value: Decimal, currency: str, rate: Decimal
    ) -> tuple[Decimal, Decimal]:
        """Return (account amount, debt amount), both rounded up."""
        if currency == debt.principal_currency:
            return (
                round_up(value * rate, account.currency),
                round_up(value, debt.principal_currency),
            )
        if currency == account.currency:
            return (
                round_up(value, account.currency),
                round_up(value / rate, debt.principal_currency),
            )
        raise errors.InvalidCurrency(
            field="amount_currency",
            expected=f"{debt.principal_currency} or {account.currency}",
        )

    def _rate_to_base(self, debt: Debt, account: Account, rate_to_account: Decimal, on_date: date) -> Decimal:
        if account.currency == debt.base_currency:
            return ONE
        if debt.principal_currency == debt.base_currency:
            return ONE / rate_to_account
        return self.resolver.resolve(account.currency, debt.base_currency, on_date)

    def repay(
        self,
        user_id: str,
        debt_id: str,
        *,
        account_id: str,
        amount: Any,
        amount_currency: Optional[str],
        date: date | str | None = None,
        applied_rate: Any = None,
        note: Optional[str] = None,
    ) -> RepaymentResult:
        value = coerce_money(amount)
        if value <= ZERO:
            raise errors.InvalidAmount(field="amount")
        if not amount_currency or not amount_currency.strip():
            raise errors.InvalidCurrency(field="amount_currency")
        account = self.ledger.require_account(user_id, account_id)
        debt = self._load(user_id, debt_id)
        currency = coerce_currency(amount_currency, "amount_currency")
        if currency not in (debt.principal_currency, account.currency):
            raise errors.InvalidCurrency(
                field="amount_currency",
                expected=f"{debt.principal_currency} or {account.currency}",
            )
        payment_date = coerce_date(date, self.ledger.today)

        rate_to_account = self._rate_to_account(debt, account, payment_date)
        account_amount, debt_amount = self._split_amount(
            debt, account, value, currency, rate_to_account
        )
        if debt.direction == DebtDirection.I_OWE:
            ensure_funds(account, account_amount)

        epsilon = settlement_epsilon(debt.principal_currency)
        before = debt_totals(debt, self.repository.list_payments(user_id, debt.id))
        full_payment = debt_amount >= before.remaining_amount - epsilon

        rate_to_base = self._rate_to_base(debt, account, rate_to_account, payment_date)
        client_rate = _positive_or_none(applied_rate, "applied_rate")
        stored_rate = effective_rate(debt)
        transaction_id = new_id()
        payment = DebtPayment(
            user_id=user_id,
            debt_id=debt.id,
            account_id=account.id,
            amount=account_amount,
            currency=account.currency,
            base_currency=debt.base_currency,
            rate_used_to_base=rate_to_base,
            converted_amount_to_base=round_amount(account_amount * rate_to_base, debt.base_currency),
            rate_used_to_debt=ONE / rate_to_account,
            converted_amount_to_debt=debt_amount,
            payment_date=payment_date,
            applied_rate=client_rate or stored_rate or rate_to_account,
            note=note,
            related_transaction_id=transaction_id,
        )
        payment = self.repository.insert_payment(payment)

        # Payment and ledger posting are separate writes; a failure below
        # leaves the payment recorded without its transaction or settlement.
        try:
            txn = self.ledger.post(
                user_id,
                TransactionType.DEBT_FULL_PAYMENT if full_payment else TransactionType.DEBT_PAYMENT,
                id=transaction_id,
                account_id=account.id,
                amount=-account_amount if debt.direction == DebtDirection.I_OWE else account_amount,
                date=payment_date,
                debt_id=debt.id,
                counterparty_id=debt.counterparty_id,
                original_currency=debt.principal_currency,
                original_amount=debt_amount,
                conversion_rate=payment.rate_used_to_debt,
                description=note,
                skip_budget_matching=True,
            )
            after = debt_totals(debt, self.repository.list_payments(user_id, debt.id))
            if after.remaining_amount <= epsilon and debt.status != STATUS_PAID:
                debt.status = STATUS_PAID
                debt.settled_at = self.ledger.now()
                debt = self.repository.save_debt(debt)
                logger.info("debt_settled", user_id=user_id, debt_id=debt.id, manual=False)
        except Exception:
            logger.exception(
                "debt_repayment_partial_failure",
                user_id=user_id,
                debt_id=debt.id,
                payment_id=payment.id,
            )
            raise

        logger.info(
            "debt_repaid",
            user_id=user_id,
            debt_id=debt.id,
            payment_id=payment.id,
            account_amount=str(account_amount),
            account_currency=account.currency,
            debt_amount=str(debt_amount),
            debt_currency=debt.principal_currency,
            full_payment=full_payment,
        )
        self.ledger.invalidate(user_id)
        return RepaymentResult(debt=self._view(user_id, debt), payment=payment, transaction=txn)

    def add_value(
        self,
        user_id: str,
        debt_id: str,
        *,
        account_id: str,
        amount: Any,
        amount_currency: Optional[str],
        date: date | str | None = None,
        note: Optional[str] = None,
    ) -> DebtValueResult:
        """Grow the principal, moving the extra money through an account."""
        value = coerce_money(amount)
        if value <= ZERO:
            raise errors.InvalidAmount(field="amount")
        if not amount_currency or not amount_currency.strip():
            raise errors.InvalidCurrency(field="amount_currency")
        account = self.ledger.require_account(user_id, account_id)
        debt = self._load(user_id, debt_id)
        currency = coerce_currency(amount_currency, "amount_currency")
        value_date = coerce_date(date, self.ledger.today)

        rate_to_account = self._rate_to_account(debt, account, value_date)
        account_amount, debt_amount = self._split_amount(
            debt, account, value, currency, rate_to_account
        )

        txn = self.ledger.post(
            user_id,
            TransactionType.DEBT_ADD_VALUE,
            account_id=account.id,
            amount=account_amount if debt.direction == DebtDirection.I_OWE else -account_amount,
            date=value_date,
            debt_id=debt.id,
            counterparty_id=debt.counterparty_id,
            original_currency=debt.principal_currency,
            original_amount=debt_amount,
            conversion_rate=ONE / rate_to_account,
            description=note,
            skip_budget_matching=True,
        )

        debt.principal_amount += debt_amount
        if debt.rate_on_start is not None:
            debt.principal_base_value = round_amount(
                debt.principal_amount * debt.rate_on_start, debt.base_currency
            )
        totals = debt_totals(debt, self.repository.list_payments(user_id, debt.id))
        if debt.status == STATUS_PAID and totals.remaining_amount > settlement_epsilon(debt.principal_currency):
            debt.status = STATUS_ACTIVE
            debt.settled_at = None
        debt = self.repository.save_debt(debt)
        logger.info(
            "debt_value_added",
            user_id=user_id,
            debt_id=debt.id,
            debt_amount=str(debt_amount),
            debt_currency=debt.principal_currency,
        )
        self.ledger.invalidate(user_id)
        return DebtValueResult(debt=self._view(user_id, debt), transaction=txn)


def _money_or(value: Any, error: errors.FinanceError) -> Decimal:
    try:
        return coerce_money(value, "principal_amount")
    except errors.FinanceError as exc:
        raise error(field="principal_amount") from exc


def _positive_or_none(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    rate = coerce_money(value, field)
    return rate if rate > ZERO else None
