from __future__ import annotations

import io
import unittest

from openpyxl import Workbook

from budget_import.format_detector import (
    FormatDetector,
    analyse_delimited_content,
    detect_encoding_info,
    looks_like_json,
)


def xlsx_bytes() -> bytes:
    wb = Workbook()
    wb.active.append(["Modelo", "Preco"])
    wb.active.append(["iPhone 12", "350,00"])
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class FormatDetectorTests(unittest.TestCase):
    def setUp(self):
        self.detector = FormatDetector()

    def test_zip_magic_is_excel_regardless_of_name(self):
        detection = self.detector.detect(xlsx_bytes(), "export.csv")
        self.assertEqual(detection.format, "excel")
        self.assertEqual(detection.confidence, 0.95)
        self.assertEqual(detection.metadata["container"], "zip")
        self.assertEqual(detection.encoding, "binary")

    def test_ole_magic_is_legacy_excel(self):
        detection = self.detector.detect(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64, "old.xls")
        self.assertEqual(detection.format, "excel")
        self.assertEqual(detection.metadata["container"], "ole")

    def test_extension_and_content_agreeing_boosts_confidence(self):
        text = "Modelo;Preco;Cliente\niPhone 12;350,00;Maria\nGalaxy;200,00;Joao\n"
        detection = self.detector.detect(text.encode("utf-8"), "orcamentos.csv")
        self.assertEqual(detection.format, "csv")
        self.assertEqual(detection.delimiter, ";")
        self.assertGreater(detection.confidence, 0.8)
        self.assertLessEqual(detection.confidence, 0.95)

    def test_strong_content_beats_misleading_extension(self):
        payload = b'[{"modelo": "iPhone 12", "preco": "350,00"}]'
        detection = self.detector.detect(payload, "orcamentos.csv")
        self.assertEqual(detection.format, "json")
        self.assertEqual(detection.metadata["root_elements"], ["modelo", "preco"])

    def test_xml_content_is_recognised(self):
        payload = b"<orcamentos><orcamento><modelo>iPhone</modelo></orcamento></orcamentos>"
        detection = self.detector.detect(payload)
        self.assertEqual(detection.format, "xml")
        self.assertIn("orcamentos", detection.metadata["root_elements"])

    def test_tab_separated_content(self):
        text = "Modelo\tPreco\tCliente\niPhone\t350\tMaria\nGalaxy\t200\tJoao\n"
        detection = self.detector.detect(text.encode("utf-8"), "dados.tsv")
        self.assertEqual(detection.format, "tsv")
        self.assertEqual(detection.delimiter, "\t")

    def test_ambiguous_input_falls_back_to_low_confidence_csv(self):
        detection = self.detector.detect(b"just some words", "")
        self.assertEqual(detection.format, "csv")
        self.assertEqual(detection.confidence, 0.3)

    def test_weak_extension_only_is_scaled_down(self):
        detection = self.detector.detect(b"single line without delimiters", "notes.txt")
        self.assertEqual(detection.format, "csv")
        self.assertAlmostEqual(detection.confidence, 0.24)

    def test_detect_never_raises_on_binary_noise(self):
        detection = self.detector.detect(bytes(range(256)) * 4, "noise.bin")
        self.assertIn(detection.format, FormatDetector.supported_formats())


class EncodingTests(unittest.TestCase):
    def test_bom_wins_over_statistics(self):
        info = detect_encoding_info(b"\xef\xbb\xbfModelo;Preco\n")
        self.assertEqual(info["detected"], "utf-8-sig")
        self.assertTrue(info["bom"])
        self.assertTrue(info["is_utf8"])

    def test_latin1_bytes_are_reported_as_suspicious(self):
        raw = "Modelo;Preço;Observação\nMoto G8;150,00;Tela trincada\n".encode("latin-1") * 5
        info = detect_encoding_info(raw)
        self.assertFalse(info["is_utf8"])
        self.assertTrue(info["suspicious_chars"])


class DelimitedContentTests(unittest.TestCase):
    def test_widest_consistent_delimiter_wins(self):
        analysis = analyse_delimited_content("a,b;c;d\n1,2;3;4\n5,6;7;8\n")
        self.assertEqual(analysis["delimiter"], ";")
        self.assertTrue(analysis["has_header"])

    def test_single_line_has_no_confidence(self):
        analysis = analyse_delimited_content("a;b;c")
        self.assertEqual(analysis["confidence"], 0.0)


class JsonSniffingTests(unittest.TestCase):
    def test_brackets_must_balance(self):
        self.assertTrue(looks_like_json('[{"modelo": "iPhone", "obs": "tela } quebrada"}]'))
        self.assertFalse(looks_like_json('[{"modelo": "iPhone"]'))
        self.assertFalse(looks_like_json('{"modelo": "iPhone"'))
        self.assertFalse(looks_like_json("[Orcamentos] } modelo;preco"))

    def test_truncated_prefix_only_needs_to_be_consistent(self):
        self.assertTrue(looks_like_json('[{"modelo": "iPhone"}, {"modelo": "Gal', truncated=True))
        self.assertFalse(looks_like_json('[{"modelo": "iPhone"]', truncated=True))

    def test_large_array_is_still_json(self):
        payload = ("[" + ", ".join('{"modelo": "iPhone", "preco": "350,00"}' for _ in range(200)) + "]").encode("utf-8")
        detection = FormatDetector().detect(payload)
        self.assertEqual(detection.format, "json")

    def test_unbalanced_prefix_is_not_json(self):
        detection = FormatDetector().detect(b'{"modelo": "iPhone"')
        self.assertNotEqual(detection.format, "json")


class FormatValidationTests(unittest.TestCase):
    def setUp(self):
        self.detector = FormatDetector()

    def test_valid_csv(self):
        data = b"Modelo;Preco\niPhone;350\nGalaxy;200\n"
        detection = self.detector.detect(data, "a.csv")
        report = self.detector.validate_format(detection, data)
        self.assertTrue(report["is_valid"])
        self.assertEqual(report["errors"], [])

    def test_expected_format_mismatch_is_an_error(self):
        data = b"Modelo;Preco\niPhone;350\nGalaxy;200\n"
        detection = self.detector.detect(data, "a.csv")
        report = self.detector.validate_format(detection, data, expected="excel")
        self.assertFalse(report["is_valid"])
        self.assertTrue(report["suggestions"])

    def test_empty_json_root_is_an_error(self):
        data = b"[]"
        detection = self.detector.detect(data, "a.json")
        report = self.detector.validate_format(detection, data)
        self.assertFalse(report["is_valid"])
        self.assertIn("JSON root is empty", report["errors"])

    def test_broken_json_is_an_error(self):
        data = b'[{"modelo": "iPhone"'
        detection = self.detector.detect(data, "a.json")
        report = self.detector.validate_format(detection, data)
        self.assertFalse(report["is_valid"])

    def test_low_confidence_is_only_a_warning(self):
        data = b"just some words"
        detection = self.detector.detect(data, "")
        report = self.detector.validate_format(detection, data)
        self.assertTrue(any("low confidence" in warning for warning in report["warnings"]))


if __name__ == "__main__":
    unittest.main()
