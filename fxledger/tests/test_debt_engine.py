import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from fxledger import errors
from fxledger.debt_engine import STATUS_ACTIVE, STATUS_PAID, settlement_epsilon
from fxledger.engine import build_engine
from fxledger.models import TransactionType
from fxledger.repository import InMemoryRepository

USER = "user-1"
TODAY = date(2024, 5, 15)


class DebtServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine(InMemoryRepository(), reference_rates={}, today=lambda: TODAY)
        self.ledger = self.engine.ledger
        self.debts = self.engine.debts

    def open_account(self, name: str = "Cash", currency: str = "USD", balance: str = "0"):
        return self.ledger.create_account(
            USER, name=name, account_type="cash", currency=currency, initial_balance=balance
        )

    def open_debt(self, principal: str = "100", currency: str = "USD", **fields):
        values = dict(
            direction="i_owe",
            principal_amount=principal,
            principal_currency=currency,
            start_date="2024-05-01",
            name="Loan",
        )
        values.update(fields)
        return self.debts.create_debt(USER, **values)

    def balance(self, account_id: str) -> Decimal:
        return self.ledger.get_account(USER, account_id).current_balance

    def test_same_currency_partial_repayment(self) -> None:
        cash = self.open_account(balance="1000")
        debt = self.open_debt()

        result = self.debts.repay(
            USER, debt.id, account_id=cash.id, amount="30", amount_currency="USD"
        )

        self.assertEqual(result.debt.remaining_amount, Decimal("70.00"))
        self.assertEqual(result.debt.total_paid, Decimal("30.00"))
        self.assertEqual(result.debt.status, STATUS_ACTIVE)
        self.assertEqual(result.payment.converted_amount_to_debt, Decimal("30.00"))
        self.assertEqual(result.payment.related_transaction_id, result.transaction.id)
        self.assertEqual(result.transaction.type, TransactionType.DEBT_PAYMENT)
        self.assertEqual(result.transaction.amount, Decimal("-30.00"))
        self.assertEqual(self.balance(cash.id), Decimal("970.00"))

    def test_cross_currency_repayment_uses_live_rate(self) -> None:
        self.ledger.create_fx_rate(
            rate_date="2024-05-10", from_currency="USD", to_currency="UZS", rate="12000"
        )
        wallet = self.open_account("UZS Wallet", currency="UZS", balance="1000000")
        debt = self.open_debt(start_date="2024-05-10", base_currency="USD")

        result = self.debts.repay(
            USER,
            debt.id,
            account_id=wallet.id,
            amount="10",
            amount_currency="USD",
            date="2024-05-10",
        )

        self.assertEqual(result.payment.amount, Decimal("120000"))
        self.assertEqual(result.payment.currency, "UZS")
        self.assertEqual(result.payment.converted_amount_to_base, Decimal("10.00"))
        self.assertEqual(result.debt.remaining_amount, Decimal("90.00"))
        self.assertEqual(self.balance(wallet.id), Decimal("880000"))

    def test_repayment_in_counter_currency_uses_stored_rate(self) -> None:
        self.ledger.create_fx_rate(
            rate_date="2024-05-01", from_currency="USD", to_currency="UZS", rate="12000"
        )
        wallet = self.open_account("UZS Wallet", currency="UZS", balance="1000000")
        debt = self.open_debt(repayment_currency="UZS", repayment_rate_on_start="12500")

        by_principal = self.debts.repay(
            USER, debt.id, account_id=wallet.id, amount="10", amount_currency="USD"
        )
        by_account = self.debts.repay(
            USER, debt.id, account_id=wallet.id, amount="125000", amount_currency="UZS"
        )

        self.assertEqual(by_principal.payment.amount, Decimal("125000"))
        self.assertEqual(by_principal.payment.applied_rate, Decimal("12500"))
        self.assertEqual(by_account.payment.converted_amount_to_debt, Decimal("10.00"))
        self.assertEqual(by_account.debt.total_paid_in_repayment_currency, Decimal("250000"))
        self.assertEqual(self.balance(wallet.id), Decimal("750000"))

    def test_account_currency_amount_rounds_debt_side_up(self) -> None:
        self.ledger.create_fx_rate(
            rate_date="2024-05-01", from_currency="USD", to_currency="UZS", rate="12000"
        )
        wallet = self.open_account("UZS Wallet", currency="UZS", balance="1000000")
        debt = self.open_debt()

        result = self.debts.repay(
            USER, debt.id, account_id=wallet.id, amount="100000", amount_currency="UZS"
        )

        self.assertEqual(result.payment.amount, Decimal("100000"))
        self.assertEqual(result.payment.converted_amount_to_debt, Decimal("8.34"))

    def test_total_paid_equals_sum_of_payments(self) -> None:
        cash = self.open_account(balance="1000")
        debt = self.open_debt()

        for amount in ("30", "20.5", "10"):
            self.debts.repay(USER, debt.id, account_id=cash.id, amount=amount, amount_currency="USD")

        payments = self.debts.list_payments(USER, debt.id)
        refreshed = self.debts.get_debt(USER, debt.id)

        self.assertEqual(len(payments), 3)
        self.assertEqual(
            refreshed.total_paid, sum((p.converted_amount_to_debt for p in payments), Decimal("0"))
        )
        self.assertEqual(refreshed.total_paid, Decimal("60.50"))
        self.assertEqual(refreshed.remaining_amount, Decimal("39.50"))
        self.assertEqual(refreshed.percent_paid, Decimal("60.5"))

    def test_full_repayment_settles_debt(self) -> None:
        cash = self.open_account(balance="1000")
        debt = self.open_debt()

        result = self.debts.repay(
            USER, debt.id, account_id=cash.id, amount="100", amount_currency="USD"
        )

        self.assertEqual(result.transaction.type, TransactionType.DEBT_FULL_PAYMENT)
        self.assertEqual(result.debt.status, STATUS_PAID)
        self.assertIsNotNone(result.debt.settled_at)
        self.assertEqual(result.debt.remaining_amount, Decimal("0.00"))
        self.assertEqual(result.debt.percent_paid, Decimal("100"))

    def test_remainder_within_epsilon_settles_debt(self) -> None:
        cash = self.open_account(balance="1000")
        debt = self.open_debt()

        result = self.debts.repay(
            USER, debt.id, account_id=cash.id, amount="99.99", amount_currency="USD"
        )

        self.assertEqual(result.debt.remaining_amount, Decimal("0.01"))
        self.assertEqual(result.debt.status, STATUS_PAID)

    def test_whole_unit_currency_epsilon_is_one_unit(self) -> None:
        wallet = self.open_account("UZS Wallet", currency="UZS", balance="5000")
        debt = self.open_debt(principal="1000", currency="UZS", base_currency="UZS")

        result = self.debts.repay(
            USER, debt.id, account_id=wallet.id, amount="999", amount_currency="UZS"
        )

        self.assertEqual(settlement_epsilon("UZS"), Decimal("1"))
        self.assertEqual(settlement_epsilon("USD"), Decimal("0.01"))
        self.assertEqual(result.debt.status, STATUS_PAID)

    def test_repayment_beyond_balance_is_rejected(self) -> None:
        cash = self.open_account(balance="10")
        debt = self.open_debt()

        with self.assertRaises(errors.FinanceError) as ctx:
            self.debts.repay(USER, debt.id, account_id=cash.id, amount="30", amount_currency="USD")

        self.assertTrue(ctx.exception.is_(errors.InsufficientFunds))
        self.assertEqual(self.debts.list_payments(USER, debt.id), [])
        self.assertEqual(self.balance(cash.id), Decimal("10.00"))

    def test_non_finite_amounts_are_rejected(self) -> None:
        cash = self.open_account(balance="100")
        debt = self.open_debt()

        for amount in ("NaN", "Infinity"):
            with self.assertRaises(errors.FinanceError) as ctx:
                self.debts.repay(
                    USER, debt.id, account_id=cash.id, amount=amount, amount_currency="USD"
                )
            self.assertTrue(ctx.exception.is_(errors.InvalidAmount))
        with self.assertRaises(errors.FinanceError) as ctx:
            self.open_debt(principal="-Infinity")
        self.assertTrue(ctx.exception.is_(errors.InvalidDebtAmount))
        self.assertEqual(self.debts.list_payments(USER, debt.id), [])

    def test_collecting_debt_credits_account(self) -> None:
        cash = self.open_account()
        debt = self.open_debt(direction="they_owe_me")

        result = self.debts.repay(USER, debt.id, account_id=cash.id, amount="30", amount_currency="USD")

        self.assertEqual(result.transaction.amount, Decimal("30.00"))
        self.assertEqual(self.balance(cash.id), Decimal("30.00"))

    def test_amount_currency_must_be_debt_or_account_currency(self) -> None:
        cash = self.open_account(balance="100")
        debt = self.open_debt()

        for currency in ("EUR", None):
            with self.assertRaises(errors.FinanceError) as ctx:
                self.debts.repay(
                    USER, debt.id, account_id=cash.id, amount="10", amount_currency=currency
                )
            self.assertTrue(ctx.exception.is_(errors.InvalidCurrency))

    def test_payments_are_immutable(self) -> None:
        cash = self.open_account(balance="100")
        debt = self.open_debt()
        payment = self.debts.repay(
            USER, debt.id, account_id=cash.id, amount="10", amount_currency="USD"
        ).payment

        for attempt in (
            lambda: self.debts.update_payment(USER, debt.id, payment.id, amount="1"),
            lambda: self.debts.delete_payment(USER, debt.id, payment.id),
        ):
            with self.assertRaises(errors.FinanceError) as ctx:
                attempt()
            self.assertTrue(ctx.exception.is_(errors.DebtPaymentImmutable))

        self.assertEqual(len(self.debts.list_payments(USER, debt.id)), 1)

    def test_ledger_failure_after_payment_keeps_payment_and_reraises(self) -> None:
        cash = self.open_account(balance="100")
        debt = self.open_debt()

        with mock.patch.object(self.ledger, "post", side_effect=RuntimeError("ledger down")):
            with self.assertRaises(RuntimeError):
                self.debts.repay(USER, debt.id, account_id=cash.id, amount="10", amount_currency="USD")

        self.assertEqual(len(self.debts.list_payments(USER, debt.id)), 1)
        self.assertEqual(self.balance(cash.id), Decimal("100.00"))

    def test_add_value_reopens_settled_debt(self) -> None:
        cash = self.open_account(balance="1000")
        debt = self.open_debt()
        self.debts.repay(USER, debt.id, account_id=cash.id, amount="100", amount_currency="USD")

        result = self.debts.add_value(
            USER, debt.id, account_id=cash.id, amount="50", amount_currency="USD"
        )

        self.assertEqual(result.transaction.type, TransactionType.DEBT_ADD_VALUE)
        self.assertEqual(result.debt.principal_amount, Decimal("150.00"))
        self.assertEqual(result.debt.principal_base_value, Decimal("150.00"))
        self.assertEqual(result.debt.remaining_amount, Decimal("50.00"))
        self.assertEqual(result.debt.status, STATUS_ACTIVE)
        self.assertIsNone(result.debt.settled_at)
        self.assertEqual(self.balance(cash.id), Decimal("950.00"))

    def test_funding_account_receives_borrowed_principal(self) -> None:
        cash = self.open_account()

        debt = self.open_debt(funding_account_id=cash.id)

        funding = self.ledger.get_transaction(USER, debt.funding_transaction_id)
        self.assertEqual(funding.type, TransactionType.DEBT_CREATE)
        self.assertEqual(funding.debt_id, debt.id)
        self.assertEqual(self.balance(cash.id), Decimal("100.00"))

    def test_lending_requires_funds_in_funding_account(self) -> None:
        cash = self.open_account(balance="50")

        with self.assertRaises(errors.FinanceError) as ctx:
            self.open_debt(direction="they_owe_me", funding_account_id=cash.id)

        self.assertTrue(ctx.exception.is_(errors.InsufficientFunds))
        self.assertEqual(self.debts.list_debts(USER), [])

    def test_create_debt_validation(self) -> None:
        cases = [
            (errors.InvalidDebtDirection, dict(direction="sideways")),
            (errors.InvalidDebtAmount, dict(principal_amount="0")),
            (errors.PrincipalCurrencyRequired, dict(principal_currency="")),
            (errors.InvalidDueDateRange, dict(due_date="2024-04-01")),
        ]
        for template, overrides in cases:
            with self.subTest(template=template.type, overrides=overrides):
                with self.assertRaises(errors.FinanceError) as ctx:
                    self.open_debt(**overrides)
                self.assertTrue(ctx.exception.is_(template))

    def test_settle_and_extend(self) -> None:
        debt = self.open_debt(due_date="2024-06-01")

        extended = self.debts.extend(USER, debt.id, "2024-07-01")
        settled = self.debts.settle(USER, debt.id)

        self.assertEqual(extended.due_date, date(2024, 7, 1))
        self.assertEqual(settled.status, STATUS_PAID)
        with self.assertRaises(errors.FinanceError) as ctx:
            self.debts.extend(USER, debt.id, "2024-04-01")
        self.assertTrue(ctx.exception.is_(errors.InvalidDueDateRange))

    def test_deleted_debt_is_hidden(self) -> None:
        debt = self.open_debt()

        self.debts.delete_debt(USER, debt.id)

        self.assertEqual(self.debts.list_debts(USER), [])
        with self.assertRaises(errors.FinanceError) as ctx:
            self.debts.get_debt(USER, debt.id)
        self.assertTrue(ctx.exception.is_(errors.DebtNotFound))


if __name__ == "__main__":
    unittest.main()
