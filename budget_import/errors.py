"""
Error taxonomy for the import pipeline.

File-level problems raise ImportFileError and abort the whole import.
Row-level problems are plain message strings collected on ValidatedRow;
the templates below are shared by the validator and the recovery
pattern-matcher so the two cannot drift.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from budget_import.models import BatchResult


class ErrorCode:
    EMPTY_FILE = "EMPTY_FILE"
    INVALID_FILE_FORMAT = "INVALID_FILE_FORMAT"
    HEADER_NOT_FOUND = "HEADER_NOT_FOUND"
    NO_DATA_ROWS = "NO_DATA_ROWS"
    PARSE_FAILED = "PARSE_FAILED"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    CANCELLED = "CANCELLED"


ERROR_DEFINITIONS = {
    ErrorCode.EMPTY_FILE: {
        "severity": "critical",
        "hint": "The file has no content. Export the spreadsheet again and check it is not empty.",
    },
    ErrorCode.INVALID_FILE_FORMAT: {
        "severity": "critical",
        "hint": "Use CSV, TSV, XLSX, XLS, ODS, JSON or XML.",
    },
    ErrorCode.HEADER_NOT_FOUND: {
        "severity": "critical",
        "hint": "Add a header row such as 'Modelo Aparelho;Preco Total' or start from the import template.",
    },
    ErrorCode.NO_DATA_ROWS: {
        "severity": "critical",
        "hint": "The header was found but no data rows follow it.",
    },
    ErrorCode.PARSE_FAILED: {
        "severity": "critical",
        "hint": "The file content could not be parsed. Check quoting and the file extension.",
    },
    ErrorCode.LOW_CONFIDENCE: {
        "severity": "critical",
        "hint": "The file structure could not be recognised with enough confidence.",
    },
    ErrorCode.CANCELLED: {
        "severity": "info",
        "hint": "The import was cancelled before it finished.",
    },
}


class ImportFileError(ValueError):
    """A file-level failure: nothing from the file can be imported."""

    def __init__(self, message: str, code: str = ErrorCode.PARSE_FAILED) -> None:
        super().__init__(message)
        self.code = code

    @property
    def hint(self) -> str:
        return ERROR_DEFINITIONS.get(self.code, {}).get("hint", "")

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self), "hint": self.hint}


# Row-level message templates.
MSG_REQUIRED_EMPTY = "Required field '{field}' is empty"
MSG_INVALID_NUMBER = "Field '{field}' is not a valid number: '{value}'"
MSG_INVALID_DATE = "Field '{field}' is not a valid date: '{value}'"
MSG_NEGATIVE_PRICE = "Field '{field}' has a negative price: {value}"
MSG_PRICE_NOT_POSITIVE = "Field '{field}' must be greater than zero"
MSG_PRICE_TOO_HIGH = "Field '{field}' looks too high ({value}), please check it"
MSG_PRICE_TOO_LOW = "Field '{field}' looks too low ({value}), please check it"
MSG_NEGATIVE_WARRANTY = "Field 'warranty_months' cannot be negative: {value}"
MSG_LONG_WARRANTY = "Field 'warranty_months' looks too long ({value} months), please check it"
MSG_NEGATIVE_VALIDITY = "Field 'validity_days' cannot be negative: {value}"
MSG_VALIDITY_OUT_OF_RANGE = "Field 'validity_days' is out of range: {value}"
MSG_LONG_VALIDITY = "Field 'validity_days' looks too long ({value} days), please check it"
MSG_INSTALLMENTS_MIN = "Field 'installments' must be at least 1: {value}"
MSG_INSTALLMENTS_MAX = "Field 'installments' looks too high ({value}), please check it"
MSG_PHONE_FORMAT = "Field 'client_phone' may have a wrong format: '{value}'"
MSG_CURRENCY_RESCALED = "Field '{field}': value {original} looked like cents and was divided by 100"
MSG_MAPPING_CONFLICT = "Columns {headers} all map to '{field}'; using the best match per row"


def format_user_message(result: "BatchResult", max_errors: int = 5, max_warnings: int = 3) -> str:
    """Short human summary of an import: counts, then the first few problems."""
    if result.fatal_error is not None:
        hint = result.fatal_error.hint
        return f"Import failed: {result.fatal_error}" + (f"\n{hint}" if hint else "")

    lines = [
        f"Processed {result.total_rows} rows: {result.valid_rows} valid, "
        f"{result.invalid_rows} with errors, {result.warning_rows} with warnings."
    ]
    if result.cancelled:
        lines.append("Import was cancelled before all rows were processed.")
    if result.errors:
        lines.append("Errors:")
        lines.extend(f"- {message}" for message in result.errors[:max_errors])
        if len(result.errors) > max_errors:
            lines.append(f"... and {len(result.errors) - max_errors} more errors")
    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"- {message}" for message in result.warnings[:max_warnings])
        if len(result.warnings) > max_warnings:
            lines.append(f"... and {len(result.warnings) - max_warnings} more warnings")
    return "\n".join(lines)
