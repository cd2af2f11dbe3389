from __future__ import annotations

import unittest
from datetime import date

from budget_import.validator import FieldValidator, infer_device_type, payment_condition_for

TODAY = date(2026, 10, 19)


def validate(row, **kwargs):
    return FieldValidator(today=TODAY, **kwargs).validate_row(row, 0)


class AutoFillTests(unittest.TestCase):
    def test_minimal_row_is_filled_with_defaults(self):
        result = validate({"device_model": "iPhone 12", "total_price": "350,00"})
        self.assertTrue(result.is_valid)
        self.assertEqual(result.data["device_type"], "Smartphone")
        self.assertEqual(result.data["total_price"], 35000)
        self.assertEqual(result.data["cash_price"], 35000)
        self.assertEqual(result.data["installments"], 1)
        self.assertIsNone(result.data.get("installment_price"))
        self.assertEqual(result.data["payment_condition"], "À Vista")
        self.assertEqual(result.data["warranty_months"], 3)
        self.assertEqual(result.data["issue"], "Não informado")
        self.assertEqual(result.data["part_type"], "Reparo Geral")
        self.assertEqual(result.data["valid_until"], date(2026, 11, 3))
        self.assertFalse(result.data["includes_delivery"])
        self.assertFalse(result.data["includes_screen_protector"])
        self.assertEqual(result.data["status"], "pending")
        self.assertEqual(result.data["workflow_status"], "pending")
        self.assertTrue(any("auto-filled" in fix for fix in result.auto_fixes))

    def test_installments_derive_price_and_payment_condition(self):
        result = validate({"device_model": "iPad 9", "total_price": "900,00", "installments": "3"})
        self.assertEqual(result.data["device_type"], "Tablet")
        self.assertEqual(result.data["installment_price"], 30000)
        self.assertEqual(result.data["payment_condition"], "Cartão de Crédito em 3x de R$ 300,00")

    def test_explicit_values_are_kept(self):
        result = validate(
            {
                "device_model": "Galaxy S21",
                "total_price": "1.234,56",
                "cash_price": "1.100,00",
                "warranty_months": "6",
                "validity_days": "30",
                "includes_delivery": "sim",
                "client_phone": "11987654321",
            }
        )
        self.assertTrue(result.is_valid)
        self.assertEqual(result.data["total_price"], 123456)
        self.assertEqual(result.data["cash_price"], 110000)
        self.assertEqual(result.data["warranty_months"], 6)
        self.assertEqual(result.data["valid_until"], date(2026, 11, 18))
        self.assertTrue(result.data["includes_delivery"])
        self.assertEqual(result.data["client_phone"], "(11) 98765-4321")

    def test_explicit_valid_until_is_parsed(self):
        result = validate({"device_model": "Moto G8", "total_price": "150", "valid_until": "30/11/2026"})
        self.assertEqual(result.data["valid_until"], date(2026, 11, 30))

    def test_configured_validity_days(self):
        result = FieldValidator(today=TODAY, validity_days=7).validate_row(
            {"device_model": "Moto G8", "total_price": "150"}, 0
        )
        self.assertEqual(result.data["valid_until"], date(2026, 10, 26))

    def test_unknown_fields_stay_out_of_data_but_in_source(self):
        result = validate({"device_model": "iPhone", "total_price": "100", "foo": "bar"})
        self.assertNotIn("foo", result.data)
        self.assertEqual(result.source["foo"], "bar")


class RequiredFieldTests(unittest.TestCase):
    def test_required_fields(self):
        self.assertEqual(FieldValidator().required_fields, ["device_model", "total_price"])

    def test_empty_model_blocks_the_row(self):
        result = validate({"device_model": "", "total_price": "100"})
        self.assertFalse(result.is_valid)
        self.assertEqual(result.errors, ["Required field 'device_model' is empty"])

    def test_missing_price_blocks_the_row(self):
        result = validate({"device_model": "LG K62"})
        self.assertEqual(result.errors, ["Required field 'total_price' is empty"])

    def test_unparseable_price_is_reported_once(self):
        result = validate({"device_model": "Apple Watch", "total_price": "abc"})
        self.assertEqual(result.errors, ["Field 'total_price' is not a valid number: 'abc'"])


class BusinessRuleTests(unittest.TestCase):
    def test_negative_price_is_an_error(self):
        result = validate({"device_model": "Redmi Note 10", "total_price": "-80,00"})
        self.assertIn("Field 'total_price' has a negative price: -80.00", result.errors)

    def test_zero_price_is_an_error(self):
        result = validate({"device_model": "Redmi Note 10", "total_price": "0"})
        self.assertIn("Field 'total_price' must be greater than zero", result.errors)

    def test_odd_prices_are_warnings(self):
        low = validate({"device_model": "Capa", "total_price": "5,00"})
        self.assertTrue(low.is_valid)
        self.assertTrue(any("looks too low" in warning for warning in low.warnings))

        high = validate({"device_model": "MacBook Pro", "total_price": "15.000,00"})
        self.assertTrue(high.is_valid)
        self.assertTrue(any("looks too high" in warning for warning in high.warnings))

    def test_installments_and_warranty_ranges(self):
        result = validate(
            {"device_model": "MacBook Air", "total_price": "2.899,90", "installments": "0", "warranty_months": "-2"}
        )
        self.assertIn("Field 'installments' must be at least 1: 0", result.errors)
        self.assertIn("Field 'warranty_months' cannot be negative: -2", result.errors)

        result = validate(
            {"device_model": "Xiaomi 11", "total_price": "950,00", "installments": "30", "warranty_months": "72"}
        )
        self.assertTrue(result.is_valid)
        self.assertEqual(len(result.warnings), 2)

    def test_short_phone_is_a_warning(self):
        result = validate({"device_model": "iPhone", "total_price": "100", "client_phone": "119"})
        self.assertTrue(result.is_valid)
        self.assertEqual(result.warnings, ["Field 'client_phone' may have a wrong format: '119'"])

    def test_validity_days_range(self):
        negative = validate({"device_model": "iPhone", "total_price": "350", "validity_days": "-30"})
        self.assertFalse(negative.is_valid)
        self.assertEqual(negative.errors, ["Field 'validity_days' cannot be negative: -30"])
        self.assertIsNone(negative.data.get("valid_until"))

        huge = validate({"device_model": "iPhone", "total_price": "350", "validity_days": "99999999"})
        self.assertEqual(huge.errors, ["Field 'validity_days' is out of range: 99999999"])
        self.assertIsNone(huge.data.get("valid_until"))

        long = validate({"device_model": "iPhone", "total_price": "350", "validity_days": "400"})
        self.assertTrue(long.is_valid)
        self.assertEqual(long.warnings, ["Field 'validity_days' looks too long (400 days), please check it"])
        self.assertEqual(long.data["valid_until"], date(2027, 11, 23))

    def test_impossible_date_is_an_error(self):
        result = validate({"device_model": "Notebook Dell", "total_price": "2500", "valid_until": "31/02/2026"})
        self.assertIn("Field 'valid_until' is not a valid date: '31/02/2026'", result.errors)


class CurrencyModeTests(unittest.TestCase):
    def test_auto_mode_rescales_with_a_warning(self):
        result = validate({"device_model": "iPhone", "total_price": "250000"}, currency_mode="auto")
        self.assertTrue(result.is_valid)
        self.assertEqual(result.data["total_price"], 250000)
        self.assertEqual(
            result.warnings,
            ["Field 'total_price': value 250000 looked like cents and was divided by 100"],
        )

    def test_cents_mode(self):
        result = validate({"device_model": "iPhone", "total_price": "35000"}, currency_mode="cents")
        self.assertEqual(result.data["total_price"], 35000)


class HelperTests(unittest.TestCase):
    def test_device_type_inference(self):
        self.assertEqual(infer_device_type("MacBook Air M1"), "Notebook")
        self.assertEqual(infer_device_type("Apple Watch S7"), "Smartwatch")
        self.assertEqual(infer_device_type("Something else"), "Smartphone")
        self.assertEqual(infer_device_type(None), "Smartphone")

    def test_payment_condition(self):
        self.assertEqual(payment_condition_for(1, None), "À Vista")
        self.assertEqual(payment_condition_for(10, 123456), "Cartão de Crédito em 10x de R$ 1.234,56")

    def test_validate_batch_numbers_rows(self):
        rows = [{"device_model": "A", "total_price": "10"}, {"device_model": "B", "total_price": "20"}]
        results = FieldValidator(today=TODAY).validate_batch(rows, start_index=5)
        self.assertEqual([r.row_index for r in results], [5, 6])


if __name__ == "__main__":
    unittest.main()
