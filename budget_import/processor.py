"""
processor.py — Batch orchestration for budget imports.

    importer = BudgetImporter(ImportOptions(owner_id="shop-1"))
    result   = importer.import_file("orcamentos.csv")
    result.data          # persistence-ready records
    result.errors        # "Row 3: Required field 'device_model' is empty"

Pipeline per file:
    bytes -> FormatDetector -> loader -> StructureDetector -> HeaderMapper
          -> per row: build_mapped_row -> FieldValidator (-> ErrorRecovery)
          -> valid rows become BudgetRecord dicts

A malformed row never stops the batch. File-level failures are returned as
an empty BatchResult whose ``fatal_error`` is set.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterable, Mapping, Optional, Sequence, Union

from budget_import import loader
from budget_import.coercion import CURRENCY_MODES, analyse_price_scale
from budget_import.errors import ErrorCode, ImportFileError
from budget_import.fields import REQUIRED_FIELDS
from budget_import.format_detector import FormatDetector
from budget_import.header_mapper import (
    HeaderMapper,
    build_mapped_row,
    conflict_warnings,
    low_confidence_mappings,
    unmapped_headers,
)
from budget_import.models import (
    BatchResult,
    BudgetRecord,
    ColumnMapping,
    FormatDetection,
    RawRow,
    RawTable,
    ValidatedRow,
)
from budget_import.recovery import ErrorRecovery
from budget_import.structure_detector import StructureDetector
from budget_import.validator import DEFAULT_DEVICE_TYPE, DEFAULT_VALIDITY_DAYS, MAX_VALIDITY_DAYS, FieldValidator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

CURRENCY_MODE_ENV = "BUDGET_IMPORT_CURRENCY_MODE"
DEFAULT_BATCH_SIZE = 100
DEFAULT_MIN_CONFIDENCE = 30
PREVIEW_ROWS = 5
PREVIEW_MIN_CONFIDENCE = 50

# Record fields that vary with the import date are left out of the key.
IMPORT_KEY_EXCLUDED = {"import_key", "valid_until", "expires_at", "status", "workflow_status"}


# ══════════════════════════════════════════════════════════════════════════════
# OPTIONS
# ══════════════════════════════════════════════════════════════════════════════

class CancelToken:
    """Set from any thread; the importer checks it at each batch boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def default_currency_mode() -> str:
    return os.environ.get(CURRENCY_MODE_ENV, "reais").strip().lower() or "reais"


@dataclass
class ImportOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    currency_mode: str = dataclasses.field(default_factory=default_currency_mode)
    validity_days: int = DEFAULT_VALIDITY_DAYS
    owner_id: Optional[str] = None
    auto_recover: bool = False
    min_confidence: int = DEFAULT_MIN_CONFIDENCE
    sheet_name: Optional[str] = None
    progress: Optional[ProgressCallback] = None
    cancel_token: Optional[CancelToken] = None

    # Keys a plain config mapping may set; callbacks are code-only.
    CONFIG_KEYS = (
        "batch_size",
        "currency_mode",
        "validity_days",
        "owner_id",
        "auto_recover",
        "min_confidence",
        "sheet_name",
    )

    def __post_init__(self) -> None:
        if self.currency_mode not in CURRENCY_MODES:
            raise ValueError(
                f"currency_mode must be one of {', '.join(CURRENCY_MODES)}, got '{self.currency_mode}'"
            )
        if not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if not isinstance(self.validity_days, int) or not 0 <= self.validity_days <= MAX_VALIDITY_DAYS:
            raise ValueError(f"validity_days must be between 0 and {MAX_VALIDITY_DAYS}, got {self.validity_days!r}")
        if not 0 <= self.min_confidence <= 100:
            raise ValueError(f"min_confidence must be between 0 and 100, got {self.min_confidence!r}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], **overrides: Any) -> "ImportOptions":
        unknown = sorted(set(mapping) - set(cls.CONFIG_KEYS))
        if unknown:
            raise ValueError(f"Unknown option(s): {', '.join(unknown)}")
        values = dict(mapping)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in self.CONFIG_KEYS}


# ══════════════════════════════════════════════════════════════════════════════
# STATS HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def success_rate(result: BatchResult) -> float:
    return result.success_rate()


def warning_rate(result: BatchResult) -> float:
    return result.warning_rate()


def format_processing_time(seconds: float) -> str:
    """850ms, 2.3s, 1m 5s"""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m {rest}s"


# ══════════════════════════════════════════════════════════════════════════════
# RECORD BUILDING
# ══════════════════════════════════════════════════════════════════════════════

def compute_import_key(record: Mapping[str, Any]) -> str:
    """Stable SHA-1 over the owner and the row's canonical values."""
    payload = {key: value for key, value in record.items() if key not in IMPORT_KEY_EXCLUDED}
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def build_record(data: Mapping[str, Any], owner_id: Optional[str] = None) -> BudgetRecord:
    """Turn a valid row's typed data into the flat persistence record."""
    total_price = data["total_price"]
    valid_until = data.get("valid_until")
    valid_until_iso = valid_until.isoformat() if valid_until is not None else None

    record: dict[str, Any] = {
        "owner_id":                  owner_id,
        "device_type":               data.get("device_type") or DEFAULT_DEVICE_TYPE,
        "device_model":              data["device_model"],
        "issue":                     data.get("issue") or "",
        "part_quality":              data.get("part_quality"),
        "part_type":                 data.get("part_type") or "",
        "notes":                     data.get("notes"),
        "total_price":               total_price,
        "cash_price":                data.get("cash_price") or total_price,
        "installment_price":         data.get("installment_price"),
        "installments":              data.get("installments") or 1,
        "payment_condition":         data.get("payment_condition") or "",
        "warranty_months":           data.get("warranty_months") or 0,
        "includes_delivery":         bool(data.get("includes_delivery")),
        "includes_screen_protector": bool(data.get("includes_screen_protector")),
        "valid_until":               valid_until_iso,
        "expires_at":                valid_until_iso,
        "client_name":               data.get("client_name"),
        "client_phone":              data.get("client_phone"),
        "status":                    data.get("status") or "pending",
        "workflow_status":           data.get("workflow_status") or "pending",
    }
    record["import_key"] = compute_import_key(record)
    return record  # type: ignore[return-value]


def _row_label(row_index: int) -> str:
    return f"Row {row_index + 1}"


# ══════════════════════════════════════════════════════════════════════════════
# IMPORTER
# ══════════════════════════════════════════════════════════════════════════════

class BudgetImporter:
    """
    Runs the whole pipeline. Every stage is an injectable collaborator so
    tests can swap in a fake detector or validator.
    """

    def __init__(
        self,
        options: Optional[ImportOptions] = None,
        *,
        format_detector: Optional[FormatDetector] = None,
        structure_detector: Optional[StructureDetector] = None,
        header_mapper: Optional[HeaderMapper] = None,
        validator: Optional[FieldValidator] = None,
        recovery: Optional[ErrorRecovery] = None,
    ) -> None:
        self.options = options or ImportOptions()
        self.format_detector = format_detector or FormatDetector()
        self.structure_detector = structure_detector or StructureDetector()
        self.header_mapper = header_mapper or HeaderMapper()
        self.validator = validator or FieldValidator(
            currency_mode=self.options.currency_mode,
            validity_days=self.options.validity_days,
        )
        self.recovery = recovery or ErrorRecovery(currency_mode=self.options.currency_mode)

    # ── Progress / cancellation ───────────────────────────────────────────────

    def _report(self, percent: int, status: str) -> None:
        logger.debug("Progress %d%%: %s", percent, status)
        if self.options.progress is not None:
            self.options.progress(percent, status)

    def _cancel_requested(self) -> bool:
        token = self.options.cancel_token
        return token is not None and token.cancelled

    # ── Reading ───────────────────────────────────────────────────────────────

    def read(self, data: bytes, filename: str = "") -> tuple[FormatDetection, RawTable]:
        detection = self.format_detector.detect(data, filename)
        if detection.confidence < 0.5:
            logger.warning(
                "Low-confidence format detection for %s: %s (%.2f)",
                filename or "[bytes]",
                detection.format,
                detection.confidence,
            )
        table = loader.read_bytes(
            data,
            filename,
            detection=detection,
            sheet_name=self.options.sheet_name,
            structure_detector=self.structure_detector,
        )
        return detection, table

    def map_columns(self, table: RawTable) -> list[ColumnMapping]:
        # Only budgets are imported, so clients/parts/mixed files still map
        # against the budget aliases.
        return self.header_mapper.map_headers(table.headers, "budgets")

    # ── Preview ───────────────────────────────────────────────────────────────

    def preview(self, data: bytes, filename: str = "", sample_size: int = PREVIEW_ROWS) -> dict[str, Any]:
        """Detection and mapping on the first rows, without validating anything."""
        try:
            detection, table = self.read(data, filename)
        except ImportFileError as exc:
            logger.warning("Preview failed for %s: %s", filename or "[bytes]", exc)
            return {
                "file":             filename,
                "error":            exc.to_dict(),
                "can_process":      False,
            }

        mappings = self.map_columns(table)
        mapped_fields = {mapping.canonical_field for mapping in mappings if mapping.is_mapped}
        missing_required = [field for field in REQUIRED_FIELDS if field not in mapped_fields]
        structure = table.structure
        price_scale = self._price_scale(table, mappings)

        warnings = list(table.warnings)
        warnings.extend(self._mapping_warnings(mappings))
        if structure is not None:
            warnings.extend(structure.suggestions)
        if price_scale["looks_like_cents"] and self.options.currency_mode != "cents":
            warnings.append(self._cents_warning())

        can_process = (
            structure is not None
            and structure.confidence > PREVIEW_MIN_CONFIDENCE
            and bool(mapped_fields)
            and not missing_required
        )
        return {
            "file":             filename,
            "detection":        self._detection_payload(detection, table),
            "headers":          list(table.headers),
            "mappings":         [mapping.to_dict() for mapping in mappings],
            "sample_rows":      [dict(row) for row in table.rows[:sample_size]],
            "total_rows":       len(table.rows),
            "unmapped_columns": unmapped_headers(mappings),
            "missing_required": missing_required,
            "price_scale":      price_scale,
            "warnings":         warnings,
            "can_process":      can_process,
        }

    # ── Import entry points ───────────────────────────────────────────────────

    def import_file(self, source: Union[str, Path, BinaryIO], filename: Optional[str] = None) -> BatchResult:
        """
        Import from a path or a binary file-like object. A missing path raises
        FileNotFoundError; everything about the content is reported on the
        returned BatchResult.
        """
        if hasattr(source, "read"):
            data = source.read()
            name = filename or str(getattr(source, "name", "") or "")
        else:
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"File not found: {path}")
            data = path.read_bytes()
            name = filename or path.name
        return self.import_bytes(data, name)

    def import_bytes(self, data: bytes, filename: str = "") -> BatchResult:
        started = time.perf_counter()
        logger.info("Importing %s (%d bytes)", filename or "[bytes]", len(data))
        try:
            self._report(10, "Detecting file format")
            detection, table = self.read(data, filename)
            self._report(20, f"Read {len(table.rows)} rows")
            result = self.import_table(table, detection)
        except ImportFileError as exc:
            logger.warning("Import of %s failed: [%s] %s", filename or "[bytes]", exc.code, exc)
            result = BatchResult(errors=[str(exc)], fatal_error=exc)
        result.processing_time = time.perf_counter() - started
        logger.info(
            "Imported %s: %d valid, %d invalid, %d with warnings in %s",
            filename or "[bytes]",
            result.valid_rows,
            result.invalid_rows,
            result.warning_rows,
            format_processing_time(result.processing_time),
        )
        return result

    def import_table(self, table: RawTable, detection: Optional[FormatDetection] = None) -> BatchResult:
        """
        Validate a table a reader already produced.

        Raises ImportFileError for file-level problems; import_bytes turns
        that into a fatal BatchResult.
        """
        structure = table.structure
        if structure is not None and structure.confidence < self.options.min_confidence:
            raise ImportFileError(
                f"File structure confidence {structure.confidence} is below {self.options.min_confidence}",
                ErrorCode.LOW_CONFIDENCE,
            )
        if not table.headers or (structure is not None and not structure.has_headers):
            raise ImportFileError("No header row found", ErrorCode.HEADER_NOT_FOUND)
        if not table.rows:
            raise ImportFileError("Header found but the file has no data rows", ErrorCode.NO_DATA_ROWS)

        self._report(30, "Mapping columns")
        mappings = self.map_columns(table)
        if not any(mapping.is_mapped for mapping in mappings):
            raise ImportFileError(
                f"None of the columns match a budget field: {table.headers}",
                ErrorCode.HEADER_NOT_FOUND,
            )

        result = self.process_rows(table.rows, mappings)
        result.detection = self._detection_payload(detection, table)

        file_warnings = list(table.warnings)
        file_warnings.extend(self._mapping_warnings(mappings))
        mapped_fields = {mapping.canonical_field for mapping in mappings if mapping.is_mapped}
        missing = [field for field in self.validator.required_fields if field not in mapped_fields]
        if missing:
            file_warnings.append(f"Required field(s) not mapped to any column: {', '.join(missing)}")
        if structure is not None and structure.file_type in ("clients", "parts"):
            file_warnings.append(f"File looks like {structure.file_type} data; importing it as budgets")
        if self._price_scale(table, mappings)["looks_like_cents"] and self.options.currency_mode == "reais":
            file_warnings.append(self._cents_warning())
        result.warnings = file_warnings + result.warnings

        self._report(95, "Finishing")
        self._report(100, "Import complete")
        return result

    def process_rows(self, rows: Sequence[RawRow], mappings: list[ColumnMapping]) -> BatchResult:
        """
        Validate rows in fixed-size batches. Progress moves from 30 to 90 as
        batches complete. The cancel token is checked before each batch.
        """
        result = BatchResult(mappings=list(mappings))
        headers = [mapping.source_header for mapping in sorted(mappings, key=lambda item: item.source_index)]
        total = len(rows)
        batch_size = self.options.batch_size

        for start in range(0, total, batch_size):
            if self._cancel_requested():
                result.cancelled = True
                result.warnings.append(f"Import cancelled after {start} of {total} rows")
                logger.info("Import cancelled at row %d of %d", start, total)
                break
            for offset, raw in enumerate(rows[start : start + batch_size]):
                values = [raw.get(header, "") for header in headers]
                validated = self.process_row(build_mapped_row(values, mappings), start + offset)
                self._accumulate(result, validated)
            done = min(start + batch_size, total)
            self._report(30 + int(done / total * 60), f"Processed {done} of {total} rows")

        return result

    def process_row(self, mapped_row: dict[str, Any], row_index: int) -> ValidatedRow:
        validated = self.validator.validate_row(mapped_row, row_index)
        if validated.is_valid or not self.options.auto_recover:
            return validated

        recovery = self.recovery.attempt_auto_correction(validated)
        if not recovery.can_recover or recovery.corrected_data is None:
            return validated
        recovered = self.validator.validate_row(recovery.corrected_data, row_index)
        recovered.auto_fixes = [
            f"Field '{suggestion.field}' corrected: {suggestion.reason}"
            for suggestion in recovery.suggestions
        ] + recovered.auto_fixes
        logger.debug("Row %s recovered automatically", row_index)
        return recovered

    # ── Internals ─────────────────────────────────────────────────────────────

    def _accumulate(self, result: BatchResult, row: ValidatedRow) -> None:
        label = _row_label(row.row_index)
        result.total_rows += 1
        result.errors.extend(f"{label}: {message}" for message in row.errors)
        result.warnings.extend(f"{label}: {message}" for message in row.warnings)
        result.auto_fixes.extend(f"{label}: {message}" for message in row.auto_fixes)
        if row.warnings:
            result.warning_rows += 1
        if row.is_valid:
            result.valid_rows += 1
            result.data.append(build_record(row.data, self.options.owner_id))
        else:
            result.invalid_rows += 1

    @staticmethod
    def _mapping_warnings(mappings: list[ColumnMapping]) -> list[str]:
        warnings = conflict_warnings(mappings)
        for mapping in low_confidence_mappings(mappings):
            warnings.append(
                f"Column '{mapping.source_header}' was mapped to '{mapping.canonical_field}' "
                f"with low confidence ({mapping.confidence}%); please confirm"
            )
        return warnings

    @staticmethod
    def _price_scale(table: RawTable, mappings: Iterable[ColumnMapping]) -> dict:
        headers = [mapping.source_header for mapping in mappings if mapping.canonical_field == "total_price"]
        values = [row.get(header, "") for row in table.rows for header in headers]
        return analyse_price_scale(values)

    @staticmethod
    def _cents_warning() -> str:
        return "Prices look like they were exported in cents; re-run with currency_mode='cents' if so"

    @staticmethod
    def _detection_payload(detection: Optional[FormatDetection], table: RawTable) -> dict[str, Any]:
        return {
            "format":          detection.to_dict() if detection else {"format": table.detected_format},
            "structure":       table.structure.to_dict() if table.structure else None,
            "detected_format": table.detected_format,
            "encoding":        table.encoding,
            "delimiter":       table.delimiter,
            "header_row":      table.header_row,
            "sheet_name":      table.sheet_name,
            "sheet_names":     table.sheet_names,
            "file":            dict(table.metadata),
        }
