import unittest
from datetime import date
from decimal import Decimal

from fxledger import errors
from fxledger.engine import build_engine
from fxledger.ledger import ledger_effect
from fxledger.models import TransactionType
from fxledger.repository import InMemoryRepository

USER = "user-1"
TODAY = date(2024, 5, 15)


class LedgerServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine(InMemoryRepository(), reference_rates={}, today=lambda: TODAY)
        self.ledger = self.engine.ledger

    def open_account(self, name: str = "Cash", currency: str = "USD", balance: str = "0"):
        return self.ledger.create_account(
            USER, name=name, account_type="cash", currency=currency, initial_balance=balance
        )

    def assertFinanceError(self, template, callable_, *args, **kwargs):
        with self.assertRaises(errors.FinanceError) as ctx:
            callable_(*args, **kwargs)
        self.assertTrue(ctx.exception.is_(template), ctx.exception)
        return ctx.exception

    def test_create_account_posts_opening_funding(self) -> None:
        account = self.open_account(balance="250")

        transactions = self.ledger.list_transactions(USER)

        self.assertEqual(account.current_balance, Decimal("250.00"))
        self.assertEqual(len(transactions), 1)
        self.assertEqual(transactions[0].type, TransactionType.ACCOUNT_CREATE_FUNDING)
        self.assertEqual(transactions[0].amount, Decimal("250.00"))
        self.assertTrue(transactions[0].skip_budget_matching)

    def test_zero_opening_balance_posts_nothing(self) -> None:
        self.open_account()

        self.assertEqual(self.ledger.list_transactions(USER), [])

    def test_income_and_expense_move_balance(self) -> None:
        account = self.open_account(balance="100")

        self.ledger.create_transaction(USER, type="income", account_id=account.id, amount="40")
        expense = self.ledger.create_transaction(USER, type="expense", account_id=account.id, amount="15.50")

        self.assertEqual(expense.amount, Decimal("15.50"))
        self.assertEqual(expense.date, TODAY)
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("124.50"))

    def test_expense_rounds_up_in_whole_unit_currency(self) -> None:
        account = self.open_account(currency="JPY", balance="1000")

        expense = self.ledger.create_transaction(USER, type="expense", account_id=account.id, amount="100.2")

        self.assertEqual(expense.amount, Decimal("101"))
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("899"))

    def test_expense_beyond_balance_is_rejected(self) -> None:
        account = self.open_account(balance="10")

        exc = self.assertFinanceError(
            errors.InsufficientFunds,
            self.ledger.create_transaction,
            USER,
            type="expense",
            account_id=account.id,
            amount="30",
        )

        self.assertEqual(exc.details["required"], Decimal("30.00"))
        self.assertEqual(exc.details["available"], Decimal("10.00"))
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("10.00"))
        self.assertEqual(len(self.ledger.list_transactions(USER)), 1)

    def test_currency_must_match_account(self) -> None:
        account = self.open_account(balance="10")

        self.assertFinanceError(
            errors.InvalidCurrency,
            self.ledger.create_transaction,
            USER,
            type="income",
            account_id=account.id,
            amount="5",
            currency="EUR",
        )

    def test_non_positive_amount_is_rejected(self) -> None:
        account = self.open_account()

        self.assertFinanceError(
            errors.InvalidAmount,
            self.ledger.create_transaction,
            USER,
            type="income",
            account_id=account.id,
            amount="0",
        )
        self.assertFinanceError(
            errors.InvalidAmount,
            self.ledger.create_transaction,
            USER,
            type="income",
            account_id=account.id,
            amount="ten",
        )

    def test_non_finite_amounts_are_rejected(self) -> None:
        account = self.open_account(balance="10")

        for raw in ("NaN", "Infinity", "-Infinity", "sNaN", float("nan")):
            self.assertFinanceError(
                errors.InvalidAmount,
                self.ledger.create_transaction,
                USER,
                type="expense",
                account_id=account.id,
                amount=raw,
            )
        self.assertFinanceError(
            errors.InvalidAmount,
            self.ledger.create_account,
            USER,
            name="Broken",
            account_type="cash",
            currency="USD",
            initial_balance="Infinity",
        )
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("10.00"))

    def test_internal_types_are_not_public(self) -> None:
        account = self.open_account(balance="10")

        self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.create_transaction,
            USER,
            type="debt_payment",
            account_id=account.id,
            amount="-5",
        )

    def test_user_without_accounts_needs_one_first(self) -> None:
        self.assertFinanceError(
            errors.AccountRequired,
            self.ledger.create_transaction,
            USER,
            type="income",
            account_id="missing",
            amount="5",
        )

        self.open_account()

        self.assertFinanceError(
            errors.AccountNotFound,
            self.ledger.create_transaction,
            USER,
            type="income",
            account_id="missing",
            amount="5",
        )

    def test_accounts_are_scoped_to_their_owner(self) -> None:
        account = self.open_account()

        self.assertFinanceError(errors.AccountNotFound, self.ledger.get_account, "user-2", account.id)
        self.assertEqual(self.ledger.list_accounts("user-2"), [])

    def test_transactions_are_immutable(self) -> None:
        account = self.open_account(balance="100")
        txn = self.ledger.create_transaction(USER, type="expense", account_id=account.id, amount="20")

        for attempt in (
            lambda: self.ledger.update_transaction(USER, txn.id, amount="5"),
            lambda: self.ledger.patch_transaction(USER, txn.id, {"amount": "5"}),
            lambda: self.ledger.delete_transaction(USER, txn.id),
        ):
            with self.assertRaises(errors.FinanceError) as ctx:
                attempt()
            self.assertTrue(ctx.exception.is_(errors.TransactionImmutable))
            self.assertEqual(errors.status_for_type(ctx.exception.type), 409)

        stored = self.ledger.get_transaction(USER, txn.id)
        self.assertEqual(stored.amount, Decimal("20.00"))
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("80.00"))

    def test_mutating_missing_transaction_reports_not_found(self) -> None:
        self.assertFinanceError(errors.TransactionNotFound, self.ledger.delete_transaction, USER, "nope")

    def test_same_currency_transfer(self) -> None:
        source = self.open_account("Cash", balance="300")
        target = self.open_account("Savings")

        txn = self.ledger.create_transaction(
            USER,
            type="transfer",
            from_account_id=source.id,
            to_account_id=target.id,
            amount="120",
        )

        self.assertEqual(txn.to_amount, Decimal("120.00"))
        self.assertEqual(txn.effective_rate_from_to, Decimal("1"))
        self.assertEqual(self.ledger.get_account(USER, source.id).current_balance, Decimal("180.00"))
        self.assertEqual(self.ledger.get_account(USER, target.id).current_balance, Decimal("120.00"))

    def test_cross_currency_transfer_uses_stored_rate(self) -> None:
        self.ledger.create_fx_rate(
            rate_date="2024-05-01", from_currency="USD", to_currency="EUR", rate="0.9"
        )
        source = self.open_account("Cash", balance="500")
        target = self.open_account("Euro", currency="EUR")

        txn = self.ledger.create_transaction(
            USER,
            type="transfer",
            from_account_id=source.id,
            to_account_id=target.id,
            amount="100",
        )

        self.assertEqual(txn.to_amount, Decimal("90.00"))
        self.assertEqual(txn.to_currency, "EUR")
        self.assertEqual(txn.effective_rate_from_to, Decimal("0.9"))
        self.assertEqual(self.ledger.get_account(USER, source.id).current_balance, Decimal("400.00"))
        self.assertEqual(self.ledger.get_account(USER, target.id).current_balance, Decimal("90.00"))

    def test_transfer_to_same_account_is_rejected(self) -> None:
        account = self.open_account(balance="50")

        self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.create_transaction,
            USER,
            type="transfer",
            from_account_id=account.id,
            to_account_id=account.id,
            amount="10",
        )

    def test_base_currency_conversion_uses_inverse_rate(self) -> None:
        self.ledger.create_fx_rate(
            rate_date="2024-05-01", from_currency="USD", to_currency="EUR", rate="0.9"
        )
        account = self.open_account("Euro", currency="EUR")

        txn = self.ledger.create_transaction(
            USER, type="income", account_id=account.id, amount="100", base_currency="USD"
        )

        self.assertEqual(txn.base_currency, "USD")
        self.assertEqual(txn.converted_amount_to_base, Decimal("111.11"))

    def test_budget_reference_must_exist(self) -> None:
        account = self.open_account(balance="50")

        self.assertFinanceError(
            errors.BudgetNotFound,
            self.ledger.create_transaction,
            USER,
            type="expense",
            account_id=account.id,
            amount="10",
            budget_id="missing",
        )
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("50.00"))

    def test_expense_is_matched_to_budget_by_category(self) -> None:
        account = self.open_account(balance="100")
        budget = self.engine.budgets.create_budget(
            USER, name="Food", currency="USD", limit_amount="200", category_ids=["food"]
        )

        matched = self.ledger.create_transaction(
            USER, type="expense", account_id=account.id, amount="10", category_id="food"
        )
        skipped = self.ledger.create_transaction(
            USER,
            type="expense",
            account_id=account.id,
            amount="10",
            category_id="food",
            skip_budget_matching=True,
        )
        other = self.ledger.create_transaction(
            USER, type="expense", account_id=account.id, amount="10", category_id="rent"
        )

        self.assertEqual(matched.budget_id, budget.id)
        self.assertIsNone(skipped.budget_id)
        self.assertIsNone(other.budget_id)
        self.assertEqual(self.engine.budgets.get_budget(USER, budget.id).spent_amount, Decimal("10.00"))

    def test_delete_account_withdraws_remaining_balance(self) -> None:
        account = self.open_account(balance="75")

        withdrawal = self.ledger.delete_account(USER, account.id)

        self.assertEqual(withdrawal.type, TransactionType.ACCOUNT_DELETE_WITHDRAWAL)
        self.assertEqual(withdrawal.amount, Decimal("75.00"))
        self.assertEqual(self.ledger.list_accounts(USER), [])
        self.assertFinanceError(errors.AccountNotFound, self.ledger.get_account, USER, account.id)

    def test_negative_opening_balance_keeps_its_sign(self) -> None:
        card = self.ledger.create_account(
            USER, name="Card", account_type="credit", currency="USD", initial_balance="-500"
        )

        drift = self.ledger.balance_drift(USER, card.id)

        self.assertEqual(card.current_balance, Decimal("-500.00"))
        self.assertEqual(drift.computed_balance, Decimal("-500.00"))
        self.assertEqual(drift.drift, Decimal("0"))

    def test_delete_negative_account_withdraws_signed_balance(self) -> None:
        card = self.ledger.create_account(
            USER, name="Card", account_type="credit", currency="USD", initial_balance="-500"
        )
        self.ledger.create_transaction(USER, type="income", account_id=card.id, amount="200")

        withdrawal = self.ledger.delete_account(USER, card.id)

        self.assertEqual(withdrawal.amount, Decimal("-300.00"))
        effects = [ledger_effect(txn, card.id) for txn in self.ledger.list_transactions(USER)]
        self.assertEqual(sum(effects, Decimal("0")), Decimal("0"))

    def test_balance_history_runs_per_day(self) -> None:
        account = self.open_account()
        self.ledger.create_transaction(
            USER, type="income", account_id=account.id, amount="100", date="2024-05-01"
        )
        self.ledger.create_transaction(
            USER, type="expense", account_id=account.id, amount="30", date="2024-05-03"
        )
        self.ledger.create_transaction(
            USER, type="expense", account_id=account.id, amount="5", date="2024-05-03"
        )
        self.ledger.create_transaction(
            USER, type="income", account_id=account.id, amount="10", date="2024-05-10"
        )

        history = self.ledger.balance_history(
            USER, account.id, date_from="2024-05-02", date_to="2024-05-09"
        )

        self.assertEqual(history.currency, "USD")
        self.assertEqual(history.opening_balance, Decimal("100.00"))
        self.assertEqual(len(history.points), 1)
        self.assertEqual(history.points[0].date, date(2024, 5, 3))
        self.assertEqual(history.points[0].change, Decimal("-35.00"))
        self.assertEqual(history.points[0].balance, Decimal("65.00"))

        full = self.ledger.balance_history(USER, account.id)
        self.assertEqual(full.opening_balance, Decimal("0"))
        self.assertEqual([point.balance for point in full.points][-1], Decimal("75.00"))

    def test_balance_history_rejects_inverted_range(self) -> None:
        account = self.open_account()

        self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.balance_history,
            USER,
            account.id,
            date_from="2024-05-10",
            date_to="2024-05-01",
        )
        self.assertFinanceError(
            errors.AccountNotFound, self.ledger.balance_history, USER, "missing"
        )

    def test_bulk_create_records_items_in_order(self) -> None:
        account = self.open_account(balance="50")

        created = self.ledger.create_transactions(
            USER,
            [
                {"type": "income", "account_id": account.id, "amount": "20"},
                {"type": "expense", "account_id": account.id, "amount": "15"},
            ],
        )

        self.assertEqual([txn.type for txn in created], [TransactionType.INCOME, TransactionType.EXPENSE])
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("55.00"))

    def test_bulk_create_checks_every_type_first(self) -> None:
        account = self.open_account(balance="50")

        error = self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.create_transactions,
            USER,
            [
                {"type": "income", "account_id": account.id, "amount": "20"},
                {"type": "debt_payment", "account_id": account.id, "amount": "5"},
            ],
        )

        self.assertEqual(error.details["index"], 1)
        self.assertEqual(len(self.ledger.list_transactions(USER)), 1)

    def test_bulk_create_failure_keeps_earlier_items(self) -> None:
        account = self.open_account(balance="50")

        error = self.assertFinanceError(
            errors.InsufficientFunds,
            self.ledger.create_transactions,
            USER,
            [
                {"type": "expense", "account_id": account.id, "amount": "30"},
                {"type": "expense", "account_id": account.id, "amount": "30"},
            ],
        )

        self.assertEqual(error.details["index"], 1)
        self.assertEqual(self.ledger.get_account(USER, account.id).current_balance, Decimal("20.00"))

    def test_account_currency_cannot_change(self) -> None:
        account = self.open_account()

        self.assertFinanceError(
            errors.InvalidCurrency, self.ledger.patch_account, USER, account.id, {"currency": "EUR"}
        )
        renamed = self.ledger.patch_account(USER, account.id, {"name": "Wallet", "currency": "usd"})
        self.assertEqual(renamed.name, "Wallet")

    def test_balance_drift_is_zero_for_ledger_postings(self) -> None:
        account = self.open_account(balance="100")
        other = self.open_account("Savings")
        self.ledger.create_transaction(USER, type="income", account_id=account.id, amount="20")
        self.ledger.create_transaction(USER, type="expense", account_id=account.id, amount="5")
        self.ledger.create_transaction(
            USER, type="transfer", from_account_id=account.id, to_account_id=other.id, amount="30"
        )
        self.ledger.create_transaction(
            USER, type="system_adjustment", account_id=account.id, amount="-2.5"
        )

        drift = self.ledger.balance_drift(USER, account.id)

        self.assertEqual(drift.recorded_balance, Decimal("82.50"))
        self.assertEqual(drift.drift, Decimal("0"))
        self.assertEqual(self.ledger.balance_drift(USER, other.id).drift, Decimal("0"))

    def test_balance_drift_reports_tampered_balance(self) -> None:
        account = self.open_account(balance="100")
        stored = self.engine.repository.get_account(USER, account.id)
        stored.current_balance = Decimal("90")
        self.engine.repository.save_account(stored)

        drift = self.ledger.balance_drift(USER, account.id)

        self.assertEqual(drift.computed_balance, Decimal("100.00"))
        self.assertEqual(drift.drift, Decimal("-10.00"))

    def test_fx_rate_requires_positive_value(self) -> None:
        self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.create_fx_rate,
            rate_date="2024-05-01",
            from_currency="USD",
            to_currency="EUR",
            rate="0",
        )
        self.assertFinanceError(
            errors.InvalidFinanceData,
            self.ledger.create_fx_rate,
            rate_date=None,
            from_currency="USD",
            to_currency="EUR",
            rate="1",
        )

    def test_fx_rate_listing_filters_by_pair_and_date(self) -> None:
        self.ledger.create_fx_rate(rate_date="2024-05-01", from_currency="USD", to_currency="EUR", rate="0.9")
        self.ledger.create_fx_rate(rate_date="2024-05-02", from_currency="USD", to_currency="EUR", rate="0.91")
        self.ledger.create_fx_rate(rate_date="2024-05-01", from_currency="USD", to_currency="UZS", rate="12000")

        self.assertEqual(len(self.ledger.list_fx_rates("usd", "eur")), 2)
        on_date = self.ledger.list_fx_rates("USD", None, "2024-05-01")
        self.assertEqual({rate.to_currency for rate in on_date}, {"EUR", "UZS"})
        self.assertEqual(self.ledger.resolve_rate("USD", "EUR", "2024-05-03"), Decimal("0.91"))


if __name__ == "__main__":
    unittest.main()
