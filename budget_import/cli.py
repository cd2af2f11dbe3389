from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from budget_import import __version__ as TOOL_VERSION
from budget_import.contracts import build_import_payload, build_preview_payload
from budget_import.errors import format_user_message
from budget_import.loader import ALL_FORMATS
from budget_import.processor import BudgetImporter, ImportOptions, format_processing_time
from budget_import.template import export_records_csv, write_template

TOOL_NAME = "budget-import"
DEFAULT_CONFIG_PATH = "budget-import.json"
DEFAULT_TEMPLATE_PATH = "budget-import-template.csv"
SUPPORTED_CONFIG_SUFFIXES = {".json", ".yml", ".yaml"}

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_INVALID_ROWS = 3
EXIT_CANCELLED = 4

STARTER_CONFIG = {
    "batch_size": 100,
    "currency_mode": "reais",
    "validity_days": 15,
    "owner_id": None,
    "auto_recover": False,
    "min_confidence": 30,
    "sheet_name": None,
}


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class BudgetImportArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def check_input(input_path: Path) -> None:
    if not input_path.exists():
        raise CliError(f"File not found: {input_path}", EXIT_COMMAND_ERROR)
    suffix = input_path.suffix.lower()
    if suffix and suffix not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{suffix}'. Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )


def load_config(config_path: Path | None) -> dict[str, Any]:
    if config_path is None:
        return {}
    if not config_path.exists():
        raise CliError(f"Config not found: {config_path}", EXIT_COMMAND_ERROR)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise CliError("Config must be a .json file", EXIT_COMMAND_ERROR)
    if suffix in {".yml", ".yaml"}:
        raise CliError("YAML configs are not supported. Use JSON instead.", EXIT_COMMAND_ERROR)
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise CliError(f"Could not read config: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError("Config root must be a JSON object.", EXIT_COMMAND_ERROR)
    return payload


def build_options(args: argparse.Namespace, *, progress=None) -> ImportOptions:
    config = load_config(Path(args.config) if args.config else None)
    try:
        options = ImportOptions.from_mapping(
            config,
            batch_size=getattr(args, "batch_size", None),
            currency_mode=getattr(args, "currency_mode", None),
            owner_id=getattr(args, "owner_id", None),
            auto_recover=True if getattr(args, "auto_recover", False) else None,
            sheet_name=getattr(args, "sheet_name", None),
        )
    except (TypeError, ValueError) as exc:
        raise CliError(f"Invalid options: {exc}", EXIT_COMMAND_ERROR) from exc
    options.progress = progress
    return options


# ══════════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════════

def render_preview_text(preview: dict[str, Any]) -> str:
    if preview.get("error"):
        return f"budget-import preview\nFile: {preview.get('file')}\nError: {preview['error']['message']}\n"
    detection = preview["detection"]
    structure = detection.get("structure") or {}
    lines = [
        "budget-import preview",
        f"File: {preview.get('file') or '[bytes]'}",
        f"Format: {detection.get('detected_format', '[unknown]')}",
        f"Encoding: {detection.get('encoding') or '[binary]'}",
        f"File type: {structure.get('file_type', '[unknown]')} (confidence {structure.get('confidence', 0)})",
        f"Rows: {preview.get('total_rows', 0)}",
        "Columns:",
    ]
    for mapping in preview["mappings"]:
        lines.append(
            f"- {mapping['source_header']} -> {mapping['canonical_field']} ({mapping['confidence']})"
        )
    if preview["missing_required"]:
        lines.append(f"Missing required fields: {', '.join(preview['missing_required'])}")
    if preview["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in preview["warnings"])
    lines.append(f"Ready to import: {'yes' if preview['can_process'] else 'no'}")
    return "\n".join(lines) + "\n"


def render_import_text(result, input_path: Path) -> str:
    return (
        "budget-import import\n"
        f"Input: {input_path}\n"
        f"{format_user_message(result)}\n"
        f"Time: {format_processing_time(result.processing_time)}\n"
    )


def exit_code_for_result(result) -> int:
    if result.fatal_error is not None:
        return EXIT_PARSE_FAILED
    if result.cancelled:
        return EXIT_CANCELLED
    if result.invalid_rows:
        return EXIT_INVALID_ROWS
    return EXIT_SUCCESS


# ══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════════

def run_preview(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    try:
        check_input(input_path)
        importer = BudgetImporter(build_options(args))
        preview = importer.preview(input_path.read_bytes(), input_path.name, sample_size=args.rows)
        if args.json:
            maybe_emit_json_stdout(build_preview_payload(preview, tool=TOOL_NAME, input_path=input_path), True)
        else:
            emit_human(render_preview_text(preview).rstrip(), quiet=args.quiet)
        return EXIT_PARSE_FAILED if preview.get("error") else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_import(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    try:
        check_input(input_path)

        def progress(percent: int, status: str) -> None:
            if args.verbose:
                emit_human(f"[{percent:3d}%] {status}", quiet=args.quiet)

        importer = BudgetImporter(build_options(args, progress=progress))
        result = importer.import_file(input_path)

        output_path = Path(args.output) if args.output else None
        payload = build_import_payload(result, tool=TOOL_NAME, input_path=input_path, output_path=output_path)
        if output_path is not None:
            if output_path.suffix.lower() == ".csv":
                write_text(output_path, export_records_csv(result.data))
            else:
                write_json(output_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_import_text(result, input_path).rstrip(), quiet=args.quiet)
            if output_path is not None:
                emit_human(f"Output written: {output_path}", quiet=args.quiet)
        return exit_code_for_result(result)
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_template(args: argparse.Namespace) -> int:
    output_path = Path(args.output)
    if output_path.exists() and not args.force:
        eprint(f"Refusing to overwrite existing output: {output_path}")
        return EXIT_COMMAND_ERROR
    try:
        write_template(output_path, args.format, include_examples=not args.no_examples)
    except ValueError as exc:
        eprint(str(exc))
        return EXIT_COMMAND_ERROR
    emit_human(f"Template written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, STARTER_CONFIG)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = BudgetImportArgumentParser(prog=TOOL_NAME, description="Import repair budgets from messy spreadsheets.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview = subparsers.add_parser("preview", help="Show detection and column mapping without importing.")
    preview.add_argument("input", help="Input file path")
    preview.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    preview.add_argument("--rows", type=int, default=5, help="Sample rows to include")
    preview.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    preview.add_argument("--config", help="JSON options file")
    preview.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    preview.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    run = subparsers.add_parser("import", help="Validate a file and build persistence-ready records.")
    run.add_argument("input", help="Input file path")
    run.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    run.add_argument("--output", help="Write the result (.json) or the valid records (.csv)")
    run.add_argument("--batch-size", dest="batch_size", type=int, help="Rows per batch")
    run.add_argument("--currency-mode", dest="currency_mode", choices=["reais", "cents", "auto"], help="How price cells are read")
    run.add_argument("--owner-id", dest="owner_id", help="Owner identifier stamped on every record")
    run.add_argument("--auto-recover", dest="auto_recover", action="store_true", help="Apply high-confidence corrections")
    run.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    run.add_argument("--config", help="JSON options file")
    run.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    run.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    template = subparsers.add_parser("template", help="Write the import template.")
    template.add_argument("--output", default=DEFAULT_TEMPLATE_PATH, help="Template output path")
    template.add_argument("--format", choices=["csv", "xlsx"], default=None, help="Defaults to the output suffix")
    template.add_argument("--no-examples", dest="no_examples", action="store_true", help="Header row only")
    template.add_argument("--force", action="store_true", help="Overwrite an existing file")
    template.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_PATH, help="Config output path")

    subparsers.add_parser("version", help="Print the version.")
    return parser


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "preview":
            return run_preview(args)
        if args.command == "import":
            return run_import(args)
        if args.command == "template":
            return run_template(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
