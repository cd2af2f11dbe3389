from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import load_workbook

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "budget_import.cli"]

MIXED_CSV = (
    "Modelo;Preço Total;Parcelas;Telefone\n"
    "iPhone 12;350,00;1;11987654321\n"
    ";200,00;1;11911112222\n"
    "Redmi Note 10;-80,00;1;119\n"
)
CLEAN_CSV = "Modelo;Preco\niPhone 12;350,00\nGalaxy S21;1.234,56\n"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env.pop("BUDGET_IMPORT_CURRENCY_MODE", None)
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


def write_input(tmpdir: str, name: str, text: str) -> Path:
    path = Path(tmpdir) / name
    path.write_text(text, encoding="utf-8")
    return path


class PreviewCommandTests(unittest.TestCase):
    def test_preview_text(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "orcamentos.csv", MIXED_CSV)
            proc = run_cli("preview", str(path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("budget-import preview", proc.stderr)
        self.assertIn("- Modelo -> device_model (100)", proc.stderr)
        self.assertIn("Ready to import: yes", proc.stderr)

    def test_preview_json_stdout_contains_only_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "orcamentos.csv", MIXED_CSV)
            proc = run_cli("preview", str(path), "--json", "--rows", "1")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "budget_import.preview")
        self.assertEqual(len(payload["preview"]["sample_rows"]), 1)

    def test_preview_of_empty_file_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "empty.csv", "")
            proc = run_cli("preview", str(path))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("File is empty", proc.stderr)


class ImportCommandTests(unittest.TestCase):
    def test_clean_file_returns_exit_0(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "limpo.csv", CLEAN_CSV)
            proc = run_cli("import", str(path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Processed 2 rows: 2 valid, 0 with errors", proc.stderr)

    def test_invalid_rows_return_exit_3(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "orcamentos.csv", MIXED_CSV)
            proc = run_cli("import", str(path))
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertIn("Processed 3 rows: 1 valid, 2 with errors", proc.stderr)
        self.assertIn("Row 2: Required field 'device_model' is empty", proc.stderr)

    def test_json_output_with_owner_and_recovery(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "orcamentos.csv", MIXED_CSV)
            proc = run_cli("import", str(path), "--json", "--owner-id", "shop-1", "--auto-recover")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "budget_import.import_result")
        self.assertEqual(payload["status"], "partial")
        self.assertEqual(payload["metrics"]["valid_rows"], 2)
        self.assertEqual({record["owner_id"] for record in payload["result"]["data"]}, {"shop-1"})

    def test_csv_output_reimports_cleanly(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "orcamentos.csv", MIXED_CSV)
            out = Path(tmpdir) / "validos.csv"
            proc = run_cli("import", str(path), "--output", str(out))
            self.assertEqual(proc.returncode, 3, proc.stderr)
            self.assertIn(f"Output written: {out}", proc.stderr)
            self.assertTrue(out.exists())

            again = run_cli("import", str(out))
        self.assertEqual(again.returncode, 0, again.stderr)
        self.assertIn("Processed 1 rows: 1 valid", again.stderr)

    def test_json_file_output(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "limpo.csv", CLEAN_CSV)
            out = Path(tmpdir) / "resultado.json"
            proc = run_cli("import", str(path), "--output", str(out), "-q")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            payload = json.loads(out.read_text(encoding="utf-8"))
        self.assertEqual(payload["output_file"], str(out))
        self.assertEqual(payload["result"]["valid_rows"], 2)

    def test_verbose_import_prints_progress(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "limpo.csv", CLEAN_CSV)
            proc = run_cli("import", str(path), "-v", "--batch-size", "1")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("[100%] Import complete", proc.stderr)

    def test_header_only_file_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "vazio.csv", "Modelo;Preco\n")
            proc = run_cli("import", str(path))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Import failed: Header found but the file has no data rows", proc.stderr)

    def test_missing_and_unsupported_inputs_return_exit_1(self):
        proc = run_cli("import", "does/not/exist.csv")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "report.pdf", "hello")
            proc = run_cli("import", str(path))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unsupported file type '.pdf'", proc.stderr)

    def test_currency_mode_from_environment(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "centavos.csv", "Modelo;Preco\niPhone;35000\nGalaxy;120000\n")
            proc = run_cli("import", str(path), "--json", env={"BUDGET_IMPORT_CURRENCY_MODE": "cents"})
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["result"]["data"][0]["total_price"], 35000)


class ConfigTests(unittest.TestCase):
    def test_config_init_and_use(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = Path(tmpdir) / "budget-import.json"
            proc = run_cli("config", "init", "--path", str(config))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(json.loads(config.read_text(encoding="utf-8"))["currency_mode"], "reais")

            again = run_cli("config", "init", "--path", str(config))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite", again.stderr)

            config.write_text(json.dumps({"currency_mode": "cents", "owner_id": "loja-2"}), encoding="utf-8")
            path = write_input(tmpdir, "centavos.csv", "Modelo;Preco\niPhone;35000\n")
            proc = run_cli("import", str(path), "--config", str(config), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        record = json.loads(proc.stdout)["result"]["data"][0]
        self.assertEqual(record["total_price"], 35000)
        self.assertEqual(record["owner_id"], "loja-2")

    def test_bad_configs_return_exit_1(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_input(tmpdir, "limpo.csv", CLEAN_CSV)
            unknown = write_input(tmpdir, "unknown.json", json.dumps({"colour": "blue"}))
            yaml_config = write_input(tmpdir, "config.yaml", "currency_mode: cents\n")
            not_object = write_input(tmpdir, "list.json", "[1, 2]")

            unknown_proc = run_cli("import", str(path), "--config", str(unknown))
            yaml_proc = run_cli("import", str(path), "--config", str(yaml_config))
            list_proc = run_cli("import", str(path), "--config", str(not_object))

        self.assertEqual(unknown_proc.returncode, 1)
        self.assertIn("Invalid options: Unknown option(s): colour", unknown_proc.stderr)
        self.assertEqual(yaml_proc.returncode, 1)
        self.assertIn("YAML configs are not supported", yaml_proc.stderr)
        self.assertEqual(list_proc.returncode, 1)
        self.assertIn("Config root must be a JSON object", list_proc.stderr)


class TemplateCommandTests(unittest.TestCase):
    def test_template_csv_and_overwrite_guard(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "modelo.csv"
            proc = run_cli("template", "--output", str(out))
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertIn(f"Template written: {out}", proc.stderr)
            self.assertIn("Modelo Aparelho", out.read_text(encoding="utf-8"))

            again = run_cli("template", "--output", str(out))
            self.assertEqual(again.returncode, 1)
            self.assertIn("Refusing to overwrite existing output", again.stderr)

            forced = run_cli("template", "--output", str(out), "--force", "--no-examples")
            self.assertEqual(forced.returncode, 0, forced.stderr)
            self.assertEqual(len(out.read_text(encoding="utf-8").splitlines()), 1)

    def test_template_xlsx(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = Path(tmpdir) / "modelo.xlsx"
            proc = run_cli("template", "--output", str(out), "--format", "xlsx")
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(load_workbook(out).sheetnames, ["Orcamentos", "Instrucoes"])


class MiscCommandTests(unittest.TestCase):
    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")

    def test_usage_errors_return_exit_1(self):
        proc = run_cli("import")
        self.assertEqual(proc.returncode, 1)
        proc = run_cli("import", "x.csv", "--currency-mode", "dollars")
        self.assertEqual(proc.returncode, 1)


if __name__ == "__main__":
    unittest.main()
