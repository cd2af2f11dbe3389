"""
Error recovery: turn row validation errors into correction suggestions.

Each error message is pattern-matched against the templates in errors.py.
A ``high`` suggestion is safe to apply automatically. ``medium`` and ``low``
need a person to confirm, and a row is recoverable only when every error got
a high-confidence suggestion.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from budget_import.coercion import coerce_currency, coerce_integer
from budget_import.errors import (
    MSG_INSTALLMENTS_MIN,
    MSG_INVALID_DATE,
    MSG_INVALID_NUMBER,
    MSG_NEGATIVE_PRICE,
    MSG_NEGATIVE_WARRANTY,
    MSG_REQUIRED_EMPTY,
)
from budget_import.fields import PRICE_FIELDS
from budget_import.models import DataSuggestion, RecoveryResult, ValidatedRow

logger = logging.getLogger(__name__)

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

REQUIRED_DEFAULTS = {
    "device_model": ("Modelo não informado", "Default value for the device model"),
}

_NUMBER_IN_TEXT_RE = re.compile(r"\d+(?:[.,]\d+)*")


def _template_regex(template: str) -> re.Pattern:
    """Compile an errors.py message template into a matcher with named groups."""
    pattern = re.escape(template)
    pattern = pattern.replace(re.escape("{field}"), r"(?P<field>[a-z_]+)")
    pattern = pattern.replace(re.escape("{value}"), r"(?P<value>.*)")
    return re.compile(f"^{pattern}$")


NEGATIVE_PRICE_RE = _template_regex(MSG_NEGATIVE_PRICE)
REQUIRED_EMPTY_RE = _template_regex(MSG_REQUIRED_EMPTY)
INVALID_NUMBER_RE = _template_regex(MSG_INVALID_NUMBER)
INVALID_DATE_RE = _template_regex(MSG_INVALID_DATE)
INSTALLMENTS_MIN_RE = _template_regex(MSG_INSTALLMENTS_MIN)
NEGATIVE_WARRANTY_RE = _template_regex(MSG_NEGATIVE_WARRANTY)


class ErrorRecovery:
    def __init__(self, currency_mode: str = "reais") -> None:
        self.currency_mode = currency_mode

    def analyse_error(self, error: str, data: dict[str, Any], source: Optional[dict[str, Any]] = None) -> Optional[DataSuggestion]:
        source = source or {}

        m = NEGATIVE_PRICE_RE.match(error)
        if m:
            field = m.group("field")
            current = data.get(field)
            if isinstance(current, int) and current < 0:
                return DataSuggestion(field, current, abs(current), "Negative price turned positive", HIGH)

        m = INSTALLMENTS_MIN_RE.match(error)
        if m:
            return DataSuggestion("installments", data.get("installments"), 1, "At least one installment", HIGH)

        m = NEGATIVE_WARRANTY_RE.match(error)
        if m:
            current = data.get("warranty_months")
            return DataSuggestion("warranty_months", current, abs(current or 0), "Negative warranty turned positive", MEDIUM)

        m = REQUIRED_EMPTY_RE.match(error)
        if m:
            field = m.group("field")
            if field in REQUIRED_DEFAULTS:
                value, reason = REQUIRED_DEFAULTS[field]
                return DataSuggestion(field, source.get(field, ""), value, reason, MEDIUM)
            return None

        m = INVALID_NUMBER_RE.match(error)
        if m:
            field = m.group("field")
            current = source.get(field, m.group("value"))
            number = _NUMBER_IN_TEXT_RE.search(str(current))
            if number:
                if field in PRICE_FIELDS:
                    suggested = coerce_currency(number.group(0), self.currency_mode)
                else:
                    suggested = coerce_integer(number.group(0))
                return DataSuggestion(field, current, suggested, "Number extracted from the text", MEDIUM)
            return None

        m = INVALID_DATE_RE.match(error)
        if m:
            field = m.group("field")
            return DataSuggestion(field, source.get(field, m.group("value")), None,
                                  "Date could not be read; leave empty to use the default", LOW)

        return None

    def attempt_auto_correction(self, row: ValidatedRow) -> RecoveryResult:
        suggestions: list[DataSuggestion] = []
        corrected = dict(row.source)
        can_recover = bool(row.errors)

        for error in row.errors:
            suggestion = self.analyse_error(error, row.data, row.source)
            if suggestion is None:
                can_recover = False
                continue
            suggestions.append(suggestion)
            if suggestion.confidence == HIGH:
                corrected[suggestion.field] = suggestion.suggested_value
            else:
                can_recover = False

        logger.debug(
            "Row %s recovery: %d suggestions, recoverable=%s",
            row.row_index,
            len(suggestions),
            can_recover,
        )
        return RecoveryResult(
            can_recover=can_recover,
            suggestions=suggestions,
            corrected_data=corrected if can_recover else None,
            message="Data corrected automatically" if can_recover else "Manual correction needed",
        )


def build_recovery_report(results: list[tuple[int, RecoveryResult]]) -> str:
    """Plain-text report; ``results`` pairs a row index with its recovery result."""
    total = len(results)
    recovered = sum(1 for _, result in results if result.can_recover)
    needs_attention = total - recovered

    lines = [
        "=== DATA RECOVERY REPORT ===",
        "",
        f"Rows with problems: {total}",
        f"Corrected automatically: {recovered}",
        f"Need manual attention: {needs_attention}",
    ]
    if needs_attention:
        lines.extend(["", "ACTIONS NEEDED:"])
        for row_index, result in results:
            if result.can_recover:
                continue
            lines.append(f"Row {row_index + 1}:")
            if not result.suggestions:
                lines.append("   • no automatic suggestion")
            for suggestion in result.suggestions:
                lines.append(
                    f"   • {suggestion.field}: \"{suggestion.current_value}\" -> "
                    f"\"{suggestion.suggested_value}\" ({suggestion.confidence})"
                )
                lines.append(f"     Reason: {suggestion.reason}")
    return "\n".join(lines) + "\n"
