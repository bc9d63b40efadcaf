import unittest
from decimal import Decimal

from fxledger.rounding import coerce_decimal, decimals_for, minor_unit, round_amount, round_up


class RoundingTests(unittest.TestCase):
    def test_zero_decimal_currencies_round_to_whole_units(self) -> None:
        for currency in ("UZS", "JPY", "krw"):
            value = round_amount(Decimal("1234.5"), currency)
            self.assertEqual(value, value.to_integral_value())
            self.assertEqual(decimals_for(currency), 0)

        self.assertEqual(round_amount(Decimal("1234.5"), "UZS"), Decimal("1235"))
        self.assertEqual(round_amount(Decimal("1234.4"), "JPY"), Decimal("1234"))

    def test_other_currencies_round_half_up_to_cents(self) -> None:
        self.assertEqual(round_amount(Decimal("10.005"), "USD"), Decimal("10.01"))
        self.assertEqual(round_amount(Decimal("10.004"), "EUR"), Decimal("10.00"))
        self.assertEqual(minor_unit("USD"), Decimal("0.01"))

    def test_round_up_never_under_debits(self) -> None:
        samples = [Decimal("0.001"), Decimal("8.3333"), Decimal("99.99"), Decimal("120000.2")]
        for currency in ("USD", "UZS"):
            step = minor_unit(currency)
            for value in samples:
                rounded = round_up(value, currency)
                self.assertGreaterEqual(rounded, value)
                self.assertLess(rounded - value, step)

    def test_coerce_decimal_keeps_float_text(self) -> None:
        self.assertEqual(coerce_decimal(0.1), Decimal("0.1"))
        self.assertEqual(coerce_decimal(" 12.50 "), Decimal("12.50"))
        self.assertEqual(coerce_decimal(7), Decimal("7"))
        self.assertEqual(round_amount(0.1 + 0.2, "USD"), Decimal("0.30"))

    def test_round_up_keeps_exact_values(self) -> None:
        self.assertEqual(round_up(Decimal("120000"), "UZS"), Decimal("120000"))
        self.assertEqual(round_up(Decimal("30"), "USD"), Decimal("30.00"))


if __name__ == "__main__":
    unittest.main()
