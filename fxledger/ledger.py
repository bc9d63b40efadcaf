from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from fxledger import errors
from fxledger.budget_engine import matches_budget
from fxledger.currency_conversion import FXRateResolver, normalize_currency, rate_value
from fxledger.models import (
    Account,
    AccountType,
    FXRate,
    ShowStatus,
    Transaction,
    TransactionType,
    new_id,
    utc_now,
)
from fxledger.periods import parse_date_value
from fxledger.repository import FinanceRepository
from fxledger.rounding import coerce_decimal, round_amount, round_up
from fxledger.summary_cache import SummaryCache

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
ONE = Decimal("1")

ACCOUNT_PATCH_FIELDS = {"name", "account_type", "currency", "show_status"}
SHOW_STATUSES = {ShowStatus.ACTIVE, ShowStatus.ARCHIVED}


@dataclass(frozen=True)
class BalanceDrift:
    account_id: str
    recorded_balance: Decimal
    computed_balance: Decimal
    drift: Decimal


@dataclass(frozen=True)
class BalancePoint:
    date: date
    change: Decimal
    balance: Decimal


@dataclass(frozen=True)
class BalanceHistory:
    account_id: str
    currency: str
    opening_balance: Decimal
    points: list[BalancePoint]


def coerce_money(value: Any, field: str = "amount") -> Decimal:
    if value is None or isinstance(value, bool):
        raise errors.InvalidAmount(field=field)
    try:
        parsed = coerce_decimal(value)
    except ArithmeticError as exc:
        raise errors.InvalidAmount(field=field) from exc
    if not parsed.is_finite():
        raise errors.InvalidAmount(field=field)
    return parsed


def coerce_currency(value: Optional[str], field: str = "currency") -> str:
    if not value:
        raise errors.InvalidCurrency(field=field)
    try:
        return normalize_currency(value)
    except ValueError as exc:
        raise errors.InvalidCurrency(field=field) from exc


def coerce_date(value: date | str | None, fallback: Callable[[], date]) -> date:
    try:
        parsed = parse_date_value(value)
    except ValueError as exc:
        raise errors.InvalidTransactionDate(field="date") from exc
    return parsed if parsed is not None else fallback()


def ledger_effect(txn: Transaction, account_id: str) -> Decimal:
    """Signed change a transaction makes to one account's running balance."""
    amount = txn.amount
    if txn.type == TransactionType.TRANSFER:
        effect = ZERO
        if txn.from_account_id == account_id:
            effect -= amount
        if txn.to_account_id == account_id:
            effect += txn.to_amount if txn.to_amount is not None else amount
        return effect
    if txn.account_id != account_id:
        return ZERO
    if txn.type == TransactionType.INCOME:
        return abs(amount)
    if txn.type == TransactionType.EXPENSE:
        return -abs(amount)
    # Opening funding and closing withdrawal carry the signed balance.
    if txn.type == TransactionType.ACCOUNT_DELETE_WITHDRAWAL:
        return -amount
    return amount


class LedgerService:
    def __init__(
        self,
        repository: FinanceRepository,
        resolver: FXRateResolver,
        cache: SummaryCache | None = None,
        today: Callable[[], date] = date.today,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.resolver = resolver
        self.cache = cache
        self.today = today
        self.now = now

    def invalidate(self, user_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(user_id)

    # accounts

    def list_accounts(self, user_id: str) -> list[Account]:
        return self.repository.list_accounts(user_id)

    def get_account(self, user_id: str, account_id: str) -> Account:
        account = self.repository.get_account(user_id, account_id)
        if account is None:
            raise errors.AccountNotFound(id=account_id)
        return account

    def require_account(self, user_id: str, account_id: Optional[str]) -> Account:
        """Like ``get_account`` but reports a user with no accounts at all."""
        account = self.repository.get_account(user_id, account_id) if account_id else None
        if account is not None:
            return account
        if not self.repository.list_accounts(user_id):
            raise errors.AccountRequired()
        raise errors.AccountNotFound(id=account_id or "")

    def create_account(
        self,
        user_id: str,
        *,
        name: str,
        account_type: str,
        currency: str,
        initial_balance: Decimal | int | str = ZERO,
    ) -> Account:
        name = (name or "").strip()
        if not name:
            raise errors.InvalidFinanceData(field="name")
        try:
            account_type = AccountType.validate(account_type)
        except ValueError as exc:
            raise errors.InvalidFinanceData(field="account_type") from exc
        currency = coerce_currency(currency)
        opening = round_amount(coerce_money(initial_balance, "initial_balance"), currency)

        account = Account(
            user_id=user_id,
            name=name,
            account_type=account_type,
            currency=currency,
            initial_balance=opening,
            current_balance=opening,
        )
        account = self.repository.insert_account(account)
        if opening != ZERO:
            self.repository.insert_transaction(
                Transaction(
                    user_id=user_id,
                    type=TransactionType.ACCOUNT_CREATE_FUNDING,
                    account_id=account.id,
                    amount=opening,
                    currency=currency,
                    base_currency=currency,
                    rate_used_to_base=ONE,
                    converted_amount_to_base=opening,
                    date=self.today(),
                    skip_budget_matching=True,
                )
            )
        logger.info("account_created", user_id=user_id, account_id=account.id, currency=currency)
        self.invalidate(user_id)
        return account

    def update_account(
        self,
        user_id: str,
        account_id: str,
        *,
        name: str,
        account_type: str,
        currency: Optional[str] = None,
        show_status: Optional[str] = None,
    ) -> Account:
        fields: dict[str, Any] = {"name": name, "account_type": account_type}
        if currency is not None:
            fields["currency"] = currency
        if show_status is not None:
            fields["show_status"] = show_status
        return self.patch_account(user_id, account_id, fields)

    def patch_account(self, user_id: str, account_id: str, fields: Mapping[str, Any]) -> Account:
        account = self.get_account(user_id, account_id)
        unknown = set(fields) - ACCOUNT_PATCH_FIELDS
        if unknown:
            raise errors.InvalidFinanceData(fields=",".join(sorted(unknown)))

        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise errors.InvalidFinanceData(field="name")
            account.name = name
        if "account_type" in fields:
            try:
                account.account_type = AccountType.validate(fields["account_type"] or "")
            except ValueError as exc:
                raise errors.InvalidFinanceData(field="account_type") from exc
        if "currency" in fields and coerce_currency(fields["currency"]) != account.currency:
            raise errors.InvalidCurrency(field="currency", reason="account currency is fixed")
        if "show_status" in fields:
            status = (fields["show_status"] or "").strip().lower()
            if status not in SHOW_STATUSES:
                raise errors.InvalidFinanceData(field="show_status")
            account.show_status = status

        account = self.repository.save_account(account)
        self.invalidate(user_id)
        return account

    def delete_account(self, user_id: str, account_id: str) -> Optional[Transaction]:
        account = self.get_account(user_id, account_id)
        withdrawal = None
        if account.current_balance != ZERO:
            withdrawal = self.repository.insert_transaction(
                Transaction(
                    user_id=user_id,
                    type=TransactionType.ACCOUNT_DELETE_WITHDRAWAL,
                    account_id=account.id,
                    amount=account.current_balance,
                    currency=account.currency,
                    base_currency=account.currency,
                    rate_used_to_base=ONE,
                    converted_amount_to_base=account.current_balance,
                    date=self.today(),
                    skip_budget_matching=True,
                )
            )
            account.current_balance = ZERO
        account.deleted_at = self.now()
        account.show_status = ShowStatus.DELETED
        self.repository.save_account(account)
        logger.info("account_deleted", user_id=user_id, account_id=account_id)
        self.invalidate(user_id)
        return withdrawal

    def balance_drift(self, user_id: str, account_id: str) -> BalanceDrift:
        """Compare the running balance with one recomputed from the ledger.

        Drift is reported and logged, never repaired.
        """
        account = self.get_account(user_id, account_id)
        computed = ZERO
        for txn in self.repository.list_transactions(user_id, account_id=account_id):
            computed += ledger_effect(txn, account_id)
        drift = account.current_balance - computed
        if drift != ZERO:
            logger.warning(
                "balance_drift_detected",
                user_id=user_id,
                account_id=account_id,
                recorded=str(account.current_balance),
                computed=str(computed),
            )
        return BalanceDrift(
            account_id=account_id,
            recorded_balance=account.current_balance,
            computed_balance=computed,
            drift=drift,
        )

    def balance_history(
        self,
        user_id: str,
        account_id: str,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
    ) -> BalanceHistory:
        """Closing balance of every day the account had postings, oldest first.

        Postings before ``date_from`` are folded into the opening balance.
        """
        account = self.get_account(user_id, account_id)
        start = coerce_date(date_from, lambda: None)
        end = coerce_date(date_to, lambda: None)
        if start is not None and end is not None and end < start:
            raise errors.InvalidFinanceData(field="date_to")

        opening = ZERO
        daily: dict[date, Decimal] = {}
        for txn in self.repository.list_transactions(user_id, account_id=account_id):
            effect = ledger_effect(txn, account_id)
            if start is not None and txn.date < start:
                opening += effect
            elif end is None or txn.date <= end:
                daily[txn.date] = daily.get(txn.date, ZERO) + effect

        points = []
        running = opening
        for day in sorted(daily):
            running += daily[day]
            points.append(BalancePoint(date=day, change=daily[day], balance=running))
        return BalanceHistory(
            account_id=account.id,
            currency=account.currency,
            opening_balance=opening,
            points=points,
        )

    # transactions

    def list_transactions(self, user_id: str, account_id: Optional[str] = None) -> list[Transaction]:
        return self.repository.list_transactions(user_id, account_id=account_id)

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        txn = self.repository.get_transaction(user_id, transaction_id)
        if txn is None:
            raise errors.TransactionNotFound(id=transaction_id)
        return txn

    def create_transaction(self, user_id: str, *, type: str, **fields: Any) -> Transaction:
        try:
            txn_type = TransactionType.validate_public(type or "")
        except ValueError as exc:
            raise errors.InvalidFinanceData(field="type") from exc
        return self._record(user_id, txn_type, **fields)

    def create_transactions(
        self, user_id: str, items: Iterable[Mapping[str, Any]]
    ) -> list[Transaction]:
        """Record several public transactions in order.

        Every item's type is checked before anything is written. The batch is
        not atomic: when an item fails, the ones before it stay recorded and
        the error carries the failing index.
        """
        batch = [dict(item) for item in items]
        for index, item in enumerate(batch):
            try:
                TransactionType.validate_public(item.get("type") or "")
            except ValueError as exc:
                raise errors.InvalidFinanceData(field="type", index=index) from exc

        created: list[Transaction] = []
        for index, item in enumerate(batch):
            try:
                created.append(self.create_transaction(user_id, **item))
            except errors.FinanceError as exc:
                exc.details.setdefault("index", index)
                logger.warning(
                    "transaction_batch_failed",
                    user_id=user_id,
                    index=index,
                    recorded=len(created),
                    code=exc.code,
                )
                raise
        logger.info("transaction_batch_recorded", user_id=user_id, count=len(created))
        return created

    def post(self, user_id: str, txn_type: str, **fields: Any) -> Transaction:
        """Record an engine-originated transaction of any kind."""
        return self._record(user_id, txn_type, **fields)

    def update_transaction(self, user_id: str, transaction_id: str, *_: Any, **__: Any) -> Transaction:
        self.get_transaction(user_id, transaction_id)
        raise errors.TransactionImmutable(id=transaction_id)

    def patch_transaction(self, user_id: str, transaction_id: str, *_: Any, **__: Any) -> Transaction:
        self.get_transaction(user_id, transaction_id)
        raise errors.TransactionImmutable(id=transaction_id)

    def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        self.get_transaction(user_id, transaction_id)
        raise errors.TransactionImmutable(id=transaction_id)

    def _record(
        self,
        user_id: str,
        txn_type: str,
        *,
        amount: Any,
        account_id: Optional[str] = None,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        currency: Optional[str] = None,
        to_amount: Any = None,
        date: date | str | None = None,
        base_currency: Optional[str] = None,
        category_id: Optional[str] = None,
        budget_id: Optional[str] = None,
        debt_id: Optional[str] = None,
        goal_id: Optional[str] = None,
        habit_id: Optional[str] = None,
        counterparty_id: Optional[str] = None,
        original_currency: Optional[str] = None,
        original_amount: Any = None,
        conversion_rate: Any = None,
        description: Optional[str] = None,
        skip_budget_matching: bool = False,
        id: Optional[str] = None,
    ) -> Transaction:
        txn_date = coerce_date(date, self.today)
        value = coerce_money(amount)
        touched: list[Account] = []

        if txn_type == TransactionType.TRANSFER:
            if not from_account_id or not to_account_id or from_account_id == to_account_id:
                raise errors.InvalidFinanceData(field="to_account_id")
            if value <= ZERO:
                raise errors.InvalidAmount(field="amount")
            source = self.require_account(user_id, from_account_id)
            target = self.require_account(user_id, to_account_id)
            txn_currency = coerce_currency(currency) if currency else source.currency
            if txn_currency != source.currency:
                raise errors.InvalidCurrency(field="currency", expected=source.currency)
            debit = round_up(value, txn_currency)
            ensure_funds(source, debit)
            if to_amount is not None:
                credit = round_amount(coerce_money(to_amount, "to_amount"), target.currency)
                if credit <= ZERO:
                    raise errors.InvalidAmount(field="to_amount")
            elif target.currency == txn_currency:
                credit = debit
            else:
                credit = round_amount(
                    debit * self.resolver.resolve(txn_currency, target.currency, txn_date),
                    target.currency,
                )
            source.current_balance -= debit
            target.current_balance += credit
            touched = [source, target]
            txn = Transaction(
                user_id=user_id,
                type=txn_type,
                amount=debit,
                currency=txn_currency,
                date=txn_date,
                from_account_id=source.id,
                to_account_id=target.id,
                to_amount=credit,
                to_currency=target.currency,
                effective_rate_from_to=credit / debit,
            )
            base_account = source
        else:
            account = self.require_account(user_id, account_id)
            txn_currency = coerce_currency(currency) if currency else account.currency
            if txn_currency != account.currency:
                raise errors.InvalidCurrency(field="currency", expected=account.currency)
            if txn_type in (TransactionType.INCOME, TransactionType.EXPENSE):
                if value <= ZERO:
                    raise errors.InvalidAmount(field="amount")
                if txn_type == TransactionType.EXPENSE:
                    posted = round_up(value, txn_currency)
                    ensure_funds(account, posted)
                    account.current_balance -= posted
                else:
                    posted = round_amount(value, txn_currency)
                    account.current_balance += posted
            elif txn_type in TransactionType.signed or txn_type == TransactionType.SYSTEM_OPENING:
                if value == ZERO:
                    raise errors.InvalidAmount(field="amount")
                if value < ZERO:
                    posted = -round_up(-value, txn_currency)
                    ensure_funds(account, -posted)
                else:
                    posted = round_amount(value, txn_currency)
                account.current_balance += posted
            else:
                raise errors.InvalidFinanceData(field="type")
            touched = [account]
            txn = Transaction(
                user_id=user_id,
                type=txn_type,
                amount=posted,
                currency=txn_currency,
                date=txn_date,
                account_id=account.id,
            )
            base_account = account

        txn.base_currency = coerce_currency(base_currency, "base_currency") if base_currency else base_account.currency
        if txn.base_currency == txn.currency:
            txn.rate_used_to_base = ONE
            txn.converted_amount_to_base = txn.amount
        else:
            rate = self.resolver.resolve(txn.currency, txn.base_currency, txn_date)
            txn.rate_used_to_base = rate
            txn.converted_amount_to_base = round_amount(txn.amount * rate, txn.base_currency)

        if budget_id and self.repository.get_budget(user_id, budget_id) is None:
            raise errors.BudgetNotFound(id=budget_id)
        if debt_id and self.repository.get_debt(user_id, debt_id) is None:
            raise errors.DebtNotFound(id=debt_id)
        if counterparty_id and self.repository.get_counterparty(user_id, counterparty_id) is None:
            raise errors.CounterpartyNotFound(id=counterparty_id)

        txn.category_id = category_id
        txn.budget_id = budget_id or None
        txn.debt_id = debt_id or None
        txn.goal_id = goal_id
        txn.habit_id = habit_id
        txn.counterparty_id = counterparty_id or None
        txn.original_currency = (
            coerce_currency(original_currency, "original_currency") if original_currency else None
        )
        txn.original_amount = (
            coerce_money(original_amount, "original_amount") if original_amount is not None else None
        )
        txn.conversion_rate = (
            coerce_money(conversion_rate, "conversion_rate") if conversion_rate is not None else None
        )
        txn.description = description.strip() if description else None
        txn.skip_budget_matching = bool(skip_budget_matching)
        if id:
            txn.id = id

        if (
            txn.budget_id is None
            and not txn.skip_budget_matching
            and txn_type in (TransactionType.INCOME, TransactionType.EXPENSE)
            and txn.category_id
        ):
            txn.budget_id = self._match_budget(user_id, txn)

        for account in touched:
            self.repository.save_account(account)
        txn = self.repository.insert_transaction(txn)
        logger.info(
            "transaction_recorded",
            user_id=user_id,
            transaction_id=txn.id,
            type=txn.type,
            amount=str(txn.amount),
            currency=txn.currency,
        )
        self.invalidate(user_id)
        return txn

    def _match_budget(self, user_id: str, txn: Transaction) -> Optional[str]:
        for budget in self.repository.list_budgets(user_id):
            if matches_budget(
                budget,
                txn_type=txn.type,
                category_id=txn.category_id,
                account_id=txn.account_id,
                on_date=txn.date,
            ):
                return budget.id
        return None

    # fx rates

    def list_fx_rates(
        self,
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
        on_date: date | str | None = None,
    ) -> list[FXRate]:
        source = coerce_currency(from_currency, "from_currency") if from_currency else None
        target = coerce_currency(to_currency, "to_currency") if to_currency else None
        rates = self.repository.list_fx_rates(source, target)
        if on_date is not None:
            target_date = coerce_date(on_date, self.today)
            rates = [rate for rate in rates if rate.rate_date == target_date]
        return rates

    def get_fx_rate(self, rate_id: str) -> FXRate:
        rate = self.repository.get_fx_rate(rate_id)
        if rate is None:
            raise errors.FXRateNotFound(id=rate_id)
        return rate

    def create_fx_rate(
        self,
        *,
        rate_date: date | str | None,
        from_currency: str,
        to_currency: str,
        rate: Any = None,
        rate_mid: Any = None,
        rate_ask: Any = None,
        rate_bid: Any = None,
        nominal: Any = None,
        source: Optional[str] = None,
    ) -> FXRate:
        if rate_date is None:
            raise errors.InvalidFinanceData(field="rate_date")
        entry = FXRate(
            rate_date=coerce_date(rate_date, self.today),
            from_currency=coerce_currency(from_currency, "from_currency"),
            to_currency=coerce_currency(to_currency, "to_currency"),
            rate=_optional_money(rate, "rate"),
            rate_mid=_optional_money(rate_mid, "rate_mid"),
            rate_ask=_optional_money(rate_ask, "rate_ask"),
            rate_bid=_optional_money(rate_bid, "rate_bid"),
            nominal=_optional_money(nominal, "nominal") or ONE,
            source=(source or "manual").strip() or "manual",
            id=new_id(),
        )
        if entry.nominal <= ZERO:
            raise errors.InvalidFinanceData(field="nominal")
        if rate_value(entry) is None:
            raise errors.InvalidFinanceData(field="rate")
        entry = self.repository.insert_fx_rate(entry)
        logger.info(
            "fx_rate_created",
            from_currency=entry.from_currency,
            to_currency=entry.to_currency,
            rate_date=entry.rate_date.isoformat(),
        )
        if self.cache is not None:
            self.cache.invalidate_all()
        return entry

    def resolve_rate(
        self, from_currency: str, to_currency: str, on_date: date | str | None = None
    ) -> Decimal:
        source = coerce_currency(from_currency, "from_currency")
        target = coerce_currency(to_currency, "to_currency")
        return self.resolver.resolve(source, target, coerce_date(on_date, self.today))


def ensure_funds(account: Account, required: Decimal) -> None:
    if account.current_balance < required:
        raise errors.InsufficientFunds(
            required=required,
            available=account.current_balance,
            currency=account.currency,
        )


def _optional_money(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    return coerce_money(value, field)
