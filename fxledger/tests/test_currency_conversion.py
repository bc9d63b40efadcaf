import unittest
from datetime import date
from decimal import Decimal

from fxledger import errors
from fxledger.currency_conversion import (
    FXRateResolver,
    convert_amount,
    normalize_currency,
    rate_value,
)
from fxledger.models import FXRate
from fxledger.repository import InMemoryRepository


class CurrencyConversionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repository = InMemoryRepository()
        self.resolver = FXRateResolver(
            self.repository,
            reference_rates={
                "USD": Decimal("1"),
                "EUR": Decimal("2"),
                "JPY": Decimal("4"),
            },
        )

    def add_rate(self, from_currency: str, to_currency: str, rate_date: date, **values) -> None:
        self.repository.insert_fx_rate(
            FXRate(
                rate_date=rate_date,
                from_currency=from_currency,
                to_currency=to_currency,
                **values,
            )
        )

    def test_same_currency_returns_one(self) -> None:
        self.assertEqual(self.resolver.resolve("usd", "USD", date(2024, 5, 1)), Decimal("1"))

    def test_uses_latest_direct_rate_on_or_before_date(self) -> None:
        self.add_rate("USD", "UZS", date(2024, 5, 1), rate=Decimal("12000"))
        self.add_rate("USD", "UZS", date(2024, 5, 10), rate=Decimal("12100"))
        self.add_rate("USD", "UZS", date(2024, 5, 20), rate=Decimal("12200"))

        rate = self.resolver.resolve("USD", "UZS", date(2024, 5, 15))

        self.assertEqual(rate, Decimal("12100"))

    def test_falls_back_to_closest_later_rate(self) -> None:
        self.add_rate("USD", "UZS", date(2024, 6, 1), rate=Decimal("12300"))
        self.add_rate("USD", "UZS", date(2024, 7, 1), rate=Decimal("12400"))

        rate = self.resolver.resolve("USD", "UZS", date(2024, 5, 1))

        self.assertEqual(rate, Decimal("12300"))

    def test_inverse_rate_is_reciprocal_of_direct_rate(self) -> None:
        self.add_rate("USD", "UZS", date(2024, 5, 1), rate=Decimal("12000"))

        direct = self.resolver.resolve("USD", "UZS", date(2024, 5, 1))
        inverse = self.resolver.resolve("UZS", "USD", date(2024, 5, 1))

        self.assertAlmostEqual(float(direct * inverse), 1.0, places=12)
        self.assertEqual(inverse, Decimal("1") / Decimal("12000"))

    def test_entry_value_prefers_rate_then_mid_over_nominal(self) -> None:
        entry = FXRate(
            rate_date=date(2024, 5, 1),
            from_currency="RUB",
            to_currency="UZS",
            rate_mid=Decimal("13500"),
            rate_bid=Decimal("13400"),
            nominal=Decimal("100"),
        )

        self.assertEqual(rate_value(entry), Decimal("135"))

    def test_entry_without_positive_value_is_ignored(self) -> None:
        self.add_rate("USD", "EUR", date(2024, 5, 1), rate=Decimal("0"))

        rate = self.resolver.resolve("USD", "EUR", date(2024, 5, 1))

        self.assertEqual(rate, Decimal("2"))

    def test_reference_table_used_when_no_stored_rate(self) -> None:
        rate = self.resolver.resolve("EUR", "JPY", date(2024, 5, 1))

        self.assertEqual(rate, Decimal("2"))

    def test_missing_rate_raises_not_found(self) -> None:
        with self.assertRaises(errors.FinanceError) as ctx:
            self.resolver.resolve("USD", "CAD", date(2024, 5, 1))

        self.assertTrue(ctx.exception.is_(errors.FXRateNotFound))
        self.assertEqual(errors.status_for_type(ctx.exception.type), 404)

    def test_convert_amount_normalizes_currency_codes(self) -> None:
        amount = convert_amount(Decimal("6"), " eur ", "jpy", self.resolver, date(2024, 5, 1))

        self.assertEqual(amount, Decimal("12"))

    def test_convert_amount_same_currency_is_identity(self) -> None:
        amount = convert_amount(Decimal("12.50"), "USD", "usd", self.resolver)

        self.assertEqual(amount, Decimal("12.50"))

    def test_normalize_currency_rejects_invalid_codes(self) -> None:
        self.assertEqual(normalize_currency(" usdt "), "USDT")
        with self.assertRaises(ValueError):
            normalize_currency("US")
        with self.assertRaises(ValueError):
            normalize_currency("U5D")


if __name__ == "__main__":
    unittest.main()
