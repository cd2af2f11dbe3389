from __future__ import annotations

import unittest

from budget_import.fields import BUDGET_FIELD_ALIASES, TEMPLATE_COLUMNS
from budget_import.header_mapper import (
    HeaderMapper,
    build_mapped_row,
    conflict_warnings,
    low_confidence_mappings,
    similarity,
    unmapped_headers,
)
from budget_import.models import ColumnMapping


class SimilarityTests(unittest.TestCase):
    def test_similarity_tiers(self):
        self.assertEqual(similarity("precototal", "precototal"), 1.0)
        self.assertEqual(similarity("precototalr", "precototal"), 0.9)
        self.assertAlmostEqual(similarity("ab", "abc"), 2 / 3)
        self.assertAlmostEqual(similarity("kitten", "sitting"), 4 / 7)
        self.assertEqual(similarity("", "abc"), 0.0)


class HeaderMapperTests(unittest.TestCase):
    def setUp(self):
        self.mapper = HeaderMapper()

    def test_accented_and_snake_case_headers_map_identically(self):
        accented = self.mapper.map_headers(["Preço Total"])[0]
        snake = self.mapper.map_headers(["preco_total"])[0]
        self.assertEqual(accented.canonical_field, "total_price")
        self.assertEqual(snake.canonical_field, "total_price")
        self.assertGreaterEqual(accented.confidence, 80)
        self.assertEqual(accented.confidence, snake.confidence)

    def test_every_template_header_maps_back_with_full_confidence(self):
        mappings = self.mapper.map_headers([header for header, _ in TEMPLATE_COLUMNS])
        for mapping, (header, field) in zip(mappings, TEMPLATE_COLUMNS):
            with self.subTest(header=header):
                self.assertEqual(mapping.canonical_field, field)
                self.assertEqual(mapping.confidence, 100)

    def test_template_headers_are_the_first_alias(self):
        for header, field in TEMPLATE_COLUMNS:
            self.assertEqual(BUDGET_FIELD_ALIASES[field][0], header)

    def test_common_aliases(self):
        cases = {
            "Modelo": "device_model",
            "Aparelho": "device_model",
            "Valor": "total_price",
            "Telefone": "client_phone",
            "WhatsApp": "client_phone",
            "Cliente": "client_name",
            "Garantia": "warranty_months",
            "Qtd Parcelas": "installments",
            "Forma de Pagamento": "payment_condition",
        }
        mappings = self.mapper.map_headers(list(cases))
        for mapping in mappings:
            with self.subTest(header=mapping.source_header):
                self.assertEqual(mapping.canonical_field, cases[mapping.source_header])

    def test_currency_suffix_headers_prefer_the_specific_alias(self):
        cases = {
            "Preço à vista (R$)": "cash_price",
            "Valor Parcela (R$)": "installment_price",
            "Preco parcelado R$": "installment_price",
            "Valor Total (R$)": "total_price",
        }
        for header, field in cases.items():
            with self.subTest(header=header):
                self.assertEqual(self.mapper.match(header)[0], field)

    def test_cash_column_before_total_does_not_supply_the_total(self):
        mappings = self.mapper.map_headers(["Modelo", "Preço à vista (R$)", "Preço Total"])
        row = build_mapped_row(["iPhone 12", "330,00", "350,00"], mappings)
        self.assertEqual(row["total_price"], "350,00")
        self.assertEqual(row["cash_price"], "330,00")

    def test_typo_maps_with_partial_confidence(self):
        mapping = self.mapper.map_headers(["Garantai"])[0]
        self.assertEqual(mapping.canonical_field, "warranty_months")
        self.assertLess(mapping.confidence, 100)
        self.assertGreaterEqual(mapping.confidence, 60)

    def test_unrelated_header_is_unknown_with_zero_confidence(self):
        mapping = self.mapper.map_headers(["xyz"])[0]
        self.assertEqual(mapping.canonical_field, "unknown")
        self.assertEqual(mapping.confidence, 0)
        self.assertFalse(mapping.is_mapped)

    def test_blank_header_is_unknown(self):
        self.assertEqual(self.mapper.match("  ")[0], "unknown")

    def test_source_index_and_header_are_kept(self):
        mappings = self.mapper.map_headers(["Modelo", "xyz", "Valor"])
        self.assertEqual([m.source_index for m in mappings], [0, 1, 2])
        self.assertEqual(unmapped_headers(mappings), ["xyz"])

    def test_custom_alias_table(self):
        mapper = HeaderMapper(aliases={"device_model": ["equipo"], "total_price": ["importe"]})
        mappings = mapper.map_headers(["Equipo", "Importe"])
        self.assertEqual([m.canonical_field for m in mappings], ["device_model", "total_price"])

    def test_client_aliases_for_client_files(self):
        mapping = self.mapper.map_headers(["Email"], file_type="clients")[0]
        self.assertEqual(mapping.canonical_field, "email")


class MappedRowTests(unittest.TestCase):
    def test_duplicate_fields_prefer_higher_confidence(self):
        mappings = [
            ColumnMapping(0, "Valor Total", "total_price", 90),
            ColumnMapping(1, "Preco Total", "total_price", 100),
        ]
        row = build_mapped_row(["100,00", "350,00"], mappings)
        self.assertEqual(row["total_price"], "350,00")
        self.assertEqual(len(conflict_warnings(mappings)), 1)
        self.assertIn("total_price", conflict_warnings(mappings)[0])

    def test_duplicate_fields_tie_goes_to_first_non_empty(self):
        mappings = [
            ColumnMapping(0, "Telefone", "client_phone", 100),
            ColumnMapping(1, "Telefone_2", "client_phone", 100),
        ]
        self.assertEqual(build_mapped_row(["", "11999990000"], mappings)["client_phone"], "11999990000")
        self.assertEqual(build_mapped_row(["1133334444", "11999990000"], mappings)["client_phone"], "1133334444")

    def test_unknown_columns_are_dropped(self):
        mappings = [ColumnMapping(0, "Modelo", "device_model", 100), ColumnMapping(1, "xyz", "unknown", 0)]
        self.assertEqual(build_mapped_row(["iPhone", "lixo"], mappings), {"device_model": "iPhone"})

    def test_low_confidence_filter(self):
        mappings = [ColumnMapping(0, "Garantai", "warranty_months", 62), ColumnMapping(1, "Modelo", "device_model", 100)]
        self.assertEqual([m.source_header for m in low_confidence_mappings(mappings)], ["Garantai"])


if __name__ == "__main__":
    unittest.main()
