from __future__ import annotations

from contextlib import contextmanager
from dataclasses import fields
from typing import Iterator, Optional

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from fxledger import errors
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

logger = structlog.get_logger(__name__)

metadata = MetaData()

MONEY = Numeric(18, 2)
RATE = Numeric(24, 12)

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("account_type", String(20), nullable=False),
    Column("currency", String(5), nullable=False),
    Column("initial_balance", MONEY, nullable=False),
    Column("current_balance", MONEY, nullable=False),
    Column("show_status", String(10), nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True)),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("type", String(30), nullable=False),
    Column("account_id", String(36), index=True),
    Column("from_account_id", String(36)),
    Column("to_account_id", String(36)),
    Column("amount", MONEY, nullable=False),
    Column("currency", String(5), nullable=False),
    Column("base_currency", String(5)),
    Column("rate_used_to_base", RATE),
    Column("converted_amount_to_base", MONEY),
    Column("to_amount", MONEY),
    Column("to_currency", String(5)),
    Column("effective_rate_from_to", RATE),
    Column("category_id", String(64)),
    Column("budget_id", String(36)),
    Column("debt_id", String(36)),
    Column("goal_id", String(36)),
    Column("habit_id", String(36)),
    Column("counterparty_id", String(36), index=True),
    Column("original_currency", String(5)),
    Column("original_amount", MONEY),
    Column("conversion_rate", RATE),
    Column("description", String(500)),
    Column("skip_budget_matching", Boolean, nullable=False, default=False),
    Column("date", Date, nullable=False),
    Column("show_status", String(10), nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True)),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("currency", String(5), nullable=False),
    Column("limit_amount", MONEY, nullable=False),
    Column("period_type", String(20), nullable=False),
    Column("start_date", Date),
    Column("end_date", Date),
    Column("account_ids", JSON),
    Column("category_ids", JSON),
    Column("transaction_type", String(20)),
    Column("linked_goal_id", String(36)),
    Column("show_status", String(10), nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True)),
)

debts = Table(
    "debts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("name", String(255)),
    Column("direction", String(20), nullable=False),
    Column("counterparty_id", String(36), index=True),
    Column("counterparty_name", String(255)),
    Column("description", String(500)),
    Column("principal_amount", MONEY, nullable=False),
    Column("principal_currency", String(5), nullable=False),
    Column("base_currency", String(5), nullable=False),
    Column("rate_on_start", RATE),
    Column("principal_base_value", MONEY),
    Column("repayment_currency", String(5)),
    Column("repayment_rate_on_start", RATE),
    Column("exchange_rate_current", RATE),
    Column("start_date", Date, nullable=False),
    Column("due_date", Date),
    Column("funding_account_id", String(36)),
    Column("funding_transaction_id", String(36)),
    Column("status", String(10), nullable=False),
    Column("settled_at", DateTime(timezone=True)),
    Column("show_status", String(10), nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True)),
)

counterparties = Table(
    "counterparties",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("display_name", String(255), nullable=False),
    Column("phone_number", String(50)),
    Column("comment", String(500)),
    Column("search_keywords", String(500)),
    Column("show_status", String(10), nullable=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("deleted_at", DateTime(timezone=True)),
)

debt_payments = Table(
    "debt_payments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("debt_id", String(36), nullable=False, index=True),
    Column("account_id", String(36), nullable=False),
    Column("amount", MONEY, nullable=False),
    Column("currency", String(5), nullable=False),
    Column("base_currency", String(5), nullable=False),
    Column("rate_used_to_base", RATE, nullable=False),
    Column("converted_amount_to_base", MONEY, nullable=False),
    Column("rate_used_to_debt", RATE, nullable=False),
    Column("converted_amount_to_debt", MONEY, nullable=False),
    Column("payment_date", Date, nullable=False),
    Column("applied_rate", RATE, nullable=False),
    Column("note", String(500)),
    Column("related_transaction_id", String(36)),
    Column("created_at", DateTime(timezone=True)),
)

fx_rates = Table(
    "fx_rates",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("rate_date", Date, nullable=False),
    Column("from_currency", String(5), nullable=False, index=True),
    Column("to_currency", String(5), nullable=False, index=True),
    Column("rate", RATE),
    Column("rate_mid", RATE),
    Column("rate_ask", RATE),
    Column("rate_bid", RATE),
    Column("nominal", RATE),
    Column("source", String(50), nullable=False),
    Column("created_at", DateTime(timezone=True)),
)


def create_sql_repository(database_url: str) -> "SqlRepository":
    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    metadata.create_all(engine)
    return SqlRepository(engine)


def _columns_for(model) -> list[str]:
    return [item.name for item in fields(model)]


def _values(table: Table, obj) -> dict:
    return {name: getattr(obj, name) for name in table.c.keys()}


def _to_model(model, row):
    if row is None:
        return None
    names = set(_columns_for(model))
    return model(**{key: value for key, value in row.items() if key in names})


class SqlRepository:
    """SQLAlchemy Core implementation of the finance repository."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("database_error", error_class=type(exc).__name__)
            raise errors.DatabaseError() from exc

    def _insert(self, table: Table, obj):
        with self._begin() as conn:
            conn.execute(insert(table).values(**_values(table, obj)))
        return obj

    def _save(self, table: Table, obj):
        values = _values(table, obj)
        values.pop("id")
        with self._begin() as conn:
            conn.execute(update(table).where(table.c.id == obj.id).values(**values))
        return obj

    def _get(self, table: Table, model, user_id: str, row_id: str):
        stmt = select(table).where(
            table.c.id == row_id,
            table.c.user_id == user_id,
            table.c.deleted_at.is_(None),
        )
        with self._begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return _to_model(model, row)

    def _list(self, table: Table, model, user_id: str):
        stmt = (
            select(table)
            .where(table.c.user_id == user_id, table.c.deleted_at.is_(None))
            .order_by(table.c.created_at.asc())
        )
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_to_model(model, row) for row in rows]

    # accounts

    def insert_account(self, account: Account) -> Account:
        now = utc_now()
        account.created_at = account.created_at or now
        account.updated_at = now
        return self._insert(accounts, account)

    def save_account(self, account: Account) -> Account:
        account.updated_at = utc_now()
        return self._save(accounts, account)

    def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        return self._get(accounts, Account, user_id, account_id)

    def list_accounts(self, user_id: str) -> list[Account]:
        return self._list(accounts, Account, user_id)

    # transactions

    def insert_transaction(self, txn: Transaction) -> Transaction:
        txn.created_at = txn.created_at or utc_now()
        return self._insert(transactions, txn)

    def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        return self._get(transactions, Transaction, user_id, transaction_id)

    def list_transactions(
        self, user_id: str, account_id: Optional[str] = None
    ) -> list[Transaction]:
        stmt = select(transactions).where(
            transactions.c.user_id == user_id,
            transactions.c.deleted_at.is_(None),
        )
        if account_id is not None:
            stmt = stmt.where(
                (transactions.c.account_id == account_id)
                | (transactions.c.from_account_id == account_id)
                | (transactions.c.to_account_id == account_id)
            )
        stmt = stmt.order_by(transactions.c.date.desc(), transactions.c.created_at.desc())
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_to_model(Transaction, row) for row in rows]

    # budgets

    def insert_budget(self, budget: Budget) -> Budget:
        now = utc_now()
        budget.created_at = budget.created_at or now
        budget.updated_at = now
        return self._insert(budgets, budget)

    def save_budget(self, budget: Budget) -> Budget:
        budget.updated_at = utc_now()
        return self._save(budgets, budget)

    def get_budget(self, user_id: str, budget_id: str) -> Optional[Budget]:
        return self._get(budgets, Budget, user_id, budget_id)

    def list_budgets(self, user_id: str) -> list[Budget]:
        return self._list(budgets, Budget, user_id)

    # debts

    def insert_debt(self, debt: Debt) -> Debt:
        now = utc_now()
        debt.created_at = debt.created_at or now
        debt.updated_at = now
        return self._insert(debts, debt)

    def save_debt(self, debt: Debt) -> Debt:
        debt.updated_at = utc_now()
        return self._save(debts, debt)

    def get_debt(self, user_id: str, debt_id: str) -> Optional[Debt]:
        return self._get(debts, Debt, user_id, debt_id)

    def list_debts(self, user_id: str) -> list[Debt]:
        return self._list(debts, Debt, user_id)

    # counterparties

    def insert_counterparty(self, counterparty: Counterparty) -> Counterparty:
        now = utc_now()
        counterparty.created_at = counterparty.created_at or now
        counterparty.updated_at = now
        return self._insert(counterparties, counterparty)

    def save_counterparty(self, counterparty: Counterparty) -> Counterparty:
        counterparty.updated_at = utc_now()
        return self._save(counterparties, counterparty)

    def get_counterparty(self, user_id: str, counterparty_id: str) -> Optional[Counterparty]:
        return self._get(counterparties, Counterparty, user_id, counterparty_id)

    def list_counterparties(self, user_id: str) -> list[Counterparty]:
        return self._list(counterparties, Counterparty, user_id)

    # debt payments

    def insert_payment(self, payment: DebtPayment) -> DebtPayment:
        payment.created_at = payment.created_at or utc_now()
        return self._insert(debt_payments, payment)

    def get_payment(
        self, user_id: str, debt_id: str, payment_id: str
    ) -> Optional[DebtPayment]:
        stmt = select(debt_payments).where(
            debt_payments.c.id == payment_id,
            debt_payments.c.debt_id == debt_id,
            debt_payments.c.user_id == user_id,
        )
        with self._begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return _to_model(DebtPayment, row)

    def list_payments(self, user_id: str, debt_id: str) -> list[DebtPayment]:
        stmt = (
            select(debt_payments)
            .where(debt_payments.c.debt_id == debt_id, debt_payments.c.user_id == user_id)
            .order_by(debt_payments.c.payment_date.asc(), debt_payments.c.created_at.asc())
        )
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_to_model(DebtPayment, row) for row in rows]

    # fx rates

    def insert_fx_rate(self, rate: FXRate) -> FXRate:
        rate.created_at = rate.created_at or utc_now()
        return self._insert(fx_rates, rate)

    def get_fx_rate(self, rate_id: str) -> Optional[FXRate]:
        with self._begin() as conn:
            row = conn.execute(select(fx_rates).where(fx_rates.c.id == rate_id)).mappings().first()
        return _to_model(FXRate, row)

    def list_fx_rates(
        self, from_currency: Optional[str] = None, to_currency: Optional[str] = None
    ) -> list[FXRate]:
        stmt = select(fx_rates)
        if from_currency is not None:
            stmt = stmt.where(fx_rates.c.from_currency == from_currency)
        if to_currency is not None:
            stmt = stmt.where(fx_rates.c.to_currency == to_currency)
        stmt = stmt.order_by(fx_rates.c.rate_date.desc())
        with self._begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_to_model(FXRate, row) for row in rows]
