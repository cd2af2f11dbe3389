from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, TypedDict

from budget_import.errors import ImportFileError

# A reader's row before header mapping: source header -> raw cell text.
RawRow = Dict[str, str]

# A row after header mapping: canonical field -> raw cell text.
MappedRow = Dict[str, Any]

UNKNOWN_FIELD = "unknown"


@dataclass
class RawTable:
    headers: list[str]
    rows: list[RawRow]
    detected_format: str
    encoding: Optional[str] = None
    encoding_info: Optional[dict] = None
    delimiter: Optional[str] = None
    header_row: int = 0
    sheet_name: Optional[str] = None
    sheet_names: Optional[list[str]] = None
    raw_text: Optional[str] = None
    structure: Optional[StructureDetection] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


@dataclass
class FormatDetection:
    """Serialization format guess. ``confidence`` is on a 0-1 scale."""

    format: str
    confidence: float
    encoding: str
    delimiter: Optional[str] = None
    has_header: Optional[bool] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StructureDetection:
    """Tabular layout guess. ``confidence`` is on a 0-100 scale."""

    separator: str
    has_headers: bool
    header_row: int
    file_type: str
    confidence: int
    total_rows: int = 0
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ColumnMapping:
    """One source column's best canonical field. ``confidence`` is 0-100."""

    source_index: int
    source_header: str
    canonical_field: str
    confidence: int
    matched_alias: Optional[str] = None

    @property
    def is_mapped(self) -> bool:
        return self.canonical_field != UNKNOWN_FIELD

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FieldRule:
    field: str
    required: bool
    type: str
    kind: str
    default: Any = None
    validator: Optional[Callable[[Any, dict], tuple[list[str], list[str]]]] = None


@dataclass
class ValidatedRow:
    row_index: int
    data: dict[str, Any]
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    auto_fixes: list[str] = field(default_factory=list)
    source: MappedRow = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class DataSuggestion:
    field: str
    current_value: Any
    suggested_value: Any
    reason: str
    confidence: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RecoveryResult:
    can_recover: bool
    suggestions: list[DataSuggestion]
    corrected_data: Optional[dict[str, Any]] = None
    message: str = ""


class BudgetRecord(TypedDict):
    owner_id: Optional[str]
    device_type: str
    device_model: str
    issue: str
    part_quality: Optional[str]
    part_type: str
    notes: Optional[str]
    total_price: int
    cash_price: int
    installment_price: Optional[int]
    installments: int
    payment_condition: str
    warranty_months: int
    includes_delivery: bool
    includes_screen_protector: bool
    valid_until: str
    expires_at: str
    client_name: Optional[str]
    client_phone: Optional[str]
    status: str
    workflow_status: str
    import_key: str


@dataclass
class BatchResult:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    warning_rows: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    auto_fixes: List[str] = field(default_factory=list)
    data: List[BudgetRecord] = field(default_factory=list)
    detection: dict[str, Any] = field(default_factory=dict)
    mappings: List[ColumnMapping] = field(default_factory=list)
    processing_time: float = 0.0
    cancelled: bool = False
    fatal_error: Optional[ImportFileError] = None

    def success_rate(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.valid_rows / self.total_rows * 100, 1)

    def warning_rate(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.warning_rows / self.total_rows * 100, 1)

    def raise_for_fatal(self) -> None:
        if self.fatal_error is not None:
            raise self.fatal_error

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rows":      self.total_rows,
            "valid_rows":      self.valid_rows,
            "invalid_rows":    self.invalid_rows,
            "warning_rows":    self.warning_rows,
            "success_rate":    self.success_rate(),
            "warning_rate":    self.warning_rate(),
            "errors":          list(self.errors),
            "warnings":        list(self.warnings),
            "auto_fixes":      list(self.auto_fixes),
            "data":            [dict(record) for record in self.data],
            "detection":       self.detection,
            "mappings":        [mapping.to_dict() for mapping in self.mappings],
            "processing_time": round(self.processing_time, 3),
            "cancelled":       self.cancelled,
            "fatal_error":     self.fatal_error.to_dict() if self.fatal_error else None,
        }
