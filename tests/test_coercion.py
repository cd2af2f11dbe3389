from __future__ import annotations

import unittest
from datetime import date

from budget_import.coercion import (
    INVALID_DATE,
    analyse_price_scale,
    coerce_boolean,
    coerce_currency,
    coerce_currency_with_note,
    coerce_date,
    coerce_integer,
    coerce_phone,
    format_brl,
    format_currency,
    parse_decimal,
)


class CurrencyTests(unittest.TestCase):
    def test_brazilian_and_us_formats_resolve_to_cents(self):
        cases = {
            "1.234,56": 123456,
            "1,234.56": 123456,
            "150,00": 15000,
            "350.00": 35000,
            "R$ 150,50": 15050,
            "R$1.000": 100000,
            "2.899,90": 289990,
            "1,234": 123400,
            "0,5": 50,
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(coerce_currency(raw), expected)

    def test_integer_input_is_already_minor_units(self):
        self.assertEqual(coerce_currency(35000), 35000)
        self.assertEqual(coerce_currency(coerce_currency("1.234,56")), 123456)

    def test_negative_and_accounting_values(self):
        self.assertEqual(coerce_currency("-80,00"), -8000)
        self.assertEqual(coerce_currency("(1.234,56)"), -123456)

    def test_unparseable_values_return_none(self):
        self.assertIsNone(coerce_currency("abc"))
        self.assertIsNone(coerce_currency(""))
        self.assertIsNone(coerce_currency(None))

    def test_reais_mode_never_rescales_large_values(self):
        cents, note = coerce_currency_with_note("250000", "reais")
        self.assertEqual(cents, 25_000_000)
        self.assertEqual(note, "")

    def test_auto_mode_rescales_and_reports_it(self):
        cents, note = coerce_currency_with_note("250000", "auto")
        self.assertEqual(cents, 250_000)
        self.assertIn("divided by 100", note)

        cents, note = coerce_currency_with_note("350,00", "auto")
        self.assertEqual(cents, 35000)
        self.assertEqual(note, "")

    def test_cents_mode_reads_numbers_as_minor_units(self):
        self.assertEqual(coerce_currency("35000", "cents"), 35000)

    def test_unknown_mode_is_rejected(self):
        with self.assertRaisesRegex(ValueError, "Unknown currency mode"):
            coerce_currency("10", "dollars")

    def test_formatting_back_to_major_units(self):
        self.assertEqual(format_currency(35000), "350.00")
        self.assertEqual(format_currency(123456), "1234.56")
        self.assertEqual(format_currency(None), "")
        self.assertEqual(format_brl(123456), "1.234,56")
        self.assertEqual(parse_decimal(format_currency(123456)), 1234.56)


class ScalarTests(unittest.TestCase):
    def test_boolean_allow_list(self):
        for raw in ["sim", "SIM", "Yes", "true", "1", "verdadeiro", "s", "y"]:
            with self.subTest(raw=raw):
                self.assertTrue(coerce_boolean(raw))
        for raw in ["não", "nao", "no", "false", "0", "", "talvez", None]:
            with self.subTest(raw=raw):
                self.assertFalse(coerce_boolean(raw))

    def test_integer_strips_noise_and_keeps_sign(self):
        self.assertEqual(coerce_integer("3x"), 3)
        self.assertEqual(coerce_integer("12 meses"), 12)
        self.assertEqual(coerce_integer("3.0"), 3)
        self.assertEqual(coerce_integer("-2"), -2)
        self.assertEqual(coerce_integer("abc"), 0)
        self.assertEqual(coerce_integer(None), 0)

    def test_phone_formats_by_digit_count(self):
        self.assertEqual(coerce_phone("11987654321"), "(11) 98765-4321")
        self.assertEqual(coerce_phone("(21) 3456-7890"), "(21) 3456-7890")
        self.assertEqual(coerce_phone("2134567890"), "(21) 3456-7890")
        self.assertEqual(coerce_phone("119"), "119")
        self.assertEqual(coerce_phone("+55 11 98765-4321"), "5511987654321")


class DateTests(unittest.TestCase):
    def test_supported_layouts(self):
        cases = {
            "2026-10-31": date(2026, 10, 31),
            "2026-10-31T14:30:00Z": date(2026, 10, 31),
            "2026/10/31": date(2026, 10, 31),
            "31/10/2026": date(2026, 10, 31),
            "31.10.2026": date(2026, 10, 31),
            "31/10/26": date(2026, 10, 31),
            "10 de dezembro de 2026": date(2026, 12, 10),
            "5 March 2026": date(2026, 3, 5),
            "46000": date(2025, 12, 9),
            "1793404800": date(2026, 10, 31),
            "October 31, 2026": date(2026, 10, 31),
            "Sat 31 Oct 2026": date(2026, 10, 31),
        }
        for raw, expected in cases.items():
            with self.subTest(raw=raw):
                self.assertEqual(coerce_date(raw), expected)

    def test_blank_is_none_and_garbage_is_sentinel(self):
        self.assertIsNone(coerce_date(""))
        self.assertIsNone(coerce_date(None))
        self.assertIs(coerce_date("31/02/2026"), INVALID_DATE)
        self.assertIs(coerce_date("amanhã"), INVALID_DATE)
        self.assertIs(coerce_date("350,00"), INVALID_DATE)
        self.assertFalse(INVALID_DATE)


class PriceScaleTests(unittest.TestCase):
    def test_column_of_large_integers_looks_like_cents(self):
        analysis = analyse_price_scale(["35000", "120000", "15050", "99900", ""])
        self.assertTrue(analysis["looks_like_cents"])
        self.assertEqual(analysis["suggested_mode"], "cents")
        self.assertEqual(analysis["numeric_values"], 4)

    def test_decimal_prices_do_not(self):
        analysis = analyse_price_scale(["350,00", "1.234,56", "150.00"])
        self.assertFalse(analysis["looks_like_cents"])
        self.assertEqual(analysis["suggested_mode"], "reais")


if __name__ == "__main__":
    unittest.main()
