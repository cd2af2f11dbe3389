"""Budget (quote) import pipeline for device-repair spreadsheets."""

__version__ = "0.3.0"

from budget_import.errors import ErrorCode, ImportFileError
from budget_import.format_detector import FormatDetector
from budget_import.header_mapper import HeaderMapper
from budget_import.models import (
    BatchResult,
    ColumnMapping,
    DataSuggestion,
    FieldRule,
    RawTable,
    ValidatedRow,
)
from budget_import.processor import BudgetImporter, CancelToken, ImportOptions
from budget_import.structure_detector import StructureDetector
from budget_import.validator import FieldValidator

__all__ = [
    "__version__",
    "BatchResult",
    "BudgetImporter",
    "CancelToken",
    "ColumnMapping",
    "DataSuggestion",
    "ErrorCode",
    "FieldRule",
    "FieldValidator",
    "FormatDetector",
    "HeaderMapper",
    "ImportFileError",
    "ImportOptions",
    "RawTable",
    "StructureDetector",
    "ValidatedRow",
]
