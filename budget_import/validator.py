"""
Field validation for one mapped budget row.

Stages run in order on a working copy of the row:
    1. cleanup      raw text -> typed values, each change noted as an auto-fix
    2. auto-fill    defaults / inferred values for empty optional fields
    3. required     only device_model and total_price are mandatory
    4. business     range checks; impossible values are errors, odd ones warnings

A row is valid iff it has no errors. Warnings never block.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Optional

from budget_import.coercion import (
    INVALID_DATE,
    coerce_boolean,
    coerce_currency_with_note,
    coerce_date,
    coerce_integer,
    coerce_phone,
    coerce_text,
    format_brl,
    format_currency,
)
from budget_import.errors import (
    MSG_CURRENCY_RESCALED,
    MSG_INSTALLMENTS_MAX,
    MSG_INSTALLMENTS_MIN,
    MSG_INVALID_DATE,
    MSG_INVALID_NUMBER,
    MSG_LONG_VALIDITY,
    MSG_LONG_WARRANTY,
    MSG_NEGATIVE_PRICE,
    MSG_NEGATIVE_VALIDITY,
    MSG_NEGATIVE_WARRANTY,
    MSG_PHONE_FORMAT,
    MSG_PRICE_NOT_POSITIVE,
    MSG_PRICE_TOO_HIGH,
    MSG_PRICE_TOO_LOW,
    MSG_REQUIRED_EMPTY,
    MSG_VALIDITY_OUT_OF_RANGE,
)
from budget_import.models import FieldRule, ValidatedRow
from budget_import.text import clean_cell_text, is_blank

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_DAYS = 15
DEFAULT_WARRANTY_MONTHS = 3
MAX_PRICE_CENTS = 1_000_000
MIN_PRICE_CENTS = 1_000
MAX_WARRANTY_MONTHS = 60
MAX_INSTALLMENTS = 24
LONG_VALIDITY_DAYS = 365
MAX_VALIDITY_DAYS = 3650

CASH_PAYMENT = "À Vista"
CARD_PAYMENT = "Cartão de Crédito em {installments}x de R$ {price}"

BusinessResult = tuple[list[str], list[str]]


# ══════════════════════════════════════════════════════════════════════════════
# INFERENCE
# ══════════════════════════════════════════════════════════════════════════════

DEVICE_TYPE_RULES = [
    ("Smartphone", re.compile(r"iphone|samsung|galaxy|xiaomi|redmi|motorola|moto\s?[a-z]\d|\blg\b|huawei")),
    ("Tablet", re.compile(r"ipad|tablet|\btab\b")),
    ("Notebook", re.compile(r"macbook|notebook|laptop")),
    ("Desktop", re.compile(r"imac|\bpc\b|desktop")),
    ("Smartwatch", re.compile(r"watch")),
    ("Acessório", re.compile(r"airpods|fone|headphone")),
]
DEFAULT_DEVICE_TYPE = "Smartphone"


def infer_device_type(model: Optional[str]) -> str:
    text = (model or "").lower()
    for device_type, pattern in DEVICE_TYPE_RULES:
        if pattern.search(text):
            return device_type
    return DEFAULT_DEVICE_TYPE


def payment_condition_for(installments: Optional[int], installment_price: Optional[int]) -> str:
    if installments and installments > 1 and installment_price:
        return CARD_PAYMENT.format(installments=installments, price=format_brl(installment_price))
    return CASH_PAYMENT


# ══════════════════════════════════════════════════════════════════════════════
# BUSINESS RULES
# ══════════════════════════════════════════════════════════════════════════════

def _price_rule(field: str, optional: bool) -> Callable[[Any, dict], BusinessResult]:
    def check(value: int, row: dict) -> BusinessResult:
        errors: list[str] = []
        warnings: list[str] = []
        if optional and value == 0:
            return errors, warnings
        if value < 0:
            errors.append(MSG_NEGATIVE_PRICE.format(field=field, value=format_currency(value)))
            return errors, warnings
        if value == 0:
            errors.append(MSG_PRICE_NOT_POSITIVE.format(field=field))
            return errors, warnings
        if value > MAX_PRICE_CENTS:
            warnings.append(MSG_PRICE_TOO_HIGH.format(field=field, value=format_currency(value)))
        if value < MIN_PRICE_CENTS:
            warnings.append(MSG_PRICE_TOO_LOW.format(field=field, value=format_currency(value)))
        return errors, warnings

    return check


def check_warranty(value: int, row: dict) -> BusinessResult:
    if value < 0:
        return [MSG_NEGATIVE_WARRANTY.format(value=value)], []
    if value > MAX_WARRANTY_MONTHS:
        return [], [MSG_LONG_WARRANTY.format(value=value)]
    return [], []


def check_installments(value: int, row: dict) -> BusinessResult:
    if value < 1:
        return [MSG_INSTALLMENTS_MIN.format(value=value)], []
    if value > MAX_INSTALLMENTS:
        return [], [MSG_INSTALLMENTS_MAX.format(value=value)]
    return [], []


def check_validity_days(value: int, row: dict) -> BusinessResult:
    if value < 0:
        return [MSG_NEGATIVE_VALIDITY.format(value=value)], []
    if value > MAX_VALIDITY_DAYS:
        return [MSG_VALIDITY_OUT_OF_RANGE.format(value=value)], []
    if value > LONG_VALIDITY_DAYS:
        return [], [MSG_LONG_VALIDITY.format(value=value)]
    return [], []


def check_phone(value: str, row: dict) -> BusinessResult:
    digits = re.sub(r"\D", "", value)
    if value and not 10 <= len(digits) <= 11:
        return [], [MSG_PHONE_FORMAT.format(value=value)]
    return [], []


# ══════════════════════════════════════════════════════════════════════════════
# DEFAULTS
# ══════════════════════════════════════════════════════════════════════════════

def _default_cash_price(row: dict, validator: "FieldValidator") -> Optional[int]:
    return row.get("total_price")


def _default_installment_price(row: dict, validator: "FieldValidator") -> Optional[int]:
    installments = row.get("installments") or 1
    total = row.get("total_price")
    if installments > 1 and total:
        return int(round(total / installments))
    return None


def _default_payment_condition(row: dict, validator: "FieldValidator") -> str:
    return payment_condition_for(row.get("installments"), row.get("installment_price"))


def _default_valid_until(row: dict, validator: "FieldValidator") -> Optional[date]:
    days = row.get("validity_days")
    if days is None:
        days = validator.validity_days
    # Out-of-range offsets are reported by check_validity_days; leave the date empty.
    if not 0 <= days <= MAX_VALIDITY_DAYS:
        return None
    return validator.today + timedelta(days=days)


def _default_device_type(row: dict, validator: "FieldValidator") -> str:
    return infer_device_type(row.get("device_model"))


def _default_validity_days(row: dict, validator: "FieldValidator") -> int:
    return validator.validity_days


# Auto-fill runs in this list's order, so derived defaults come after
# the values they read.
FIELD_RULES = [
    FieldRule("device_type", False, "string", "text", _default_device_type),
    FieldRule("device_model", True, "string", "text"),
    FieldRule("part_quality", False, "string", "text"),
    FieldRule("issue", False, "string", "text", "Não informado"),
    FieldRule("part_type", False, "string", "text", "Reparo Geral"),
    FieldRule("notes", False, "string", "text"),
    FieldRule("total_price", True, "number", "currency", None, _price_rule("total_price", optional=False)),
    FieldRule("cash_price", False, "number", "currency", _default_cash_price, _price_rule("cash_price", optional=True)),
    FieldRule("installments", False, "number", "integer", 1, check_installments),
    FieldRule("installment_price", False, "number", "currency", _default_installment_price,
              _price_rule("installment_price", optional=True)),
    FieldRule("payment_condition", False, "string", "text", _default_payment_condition),
    FieldRule("warranty_months", False, "number", "integer", DEFAULT_WARRANTY_MONTHS, check_warranty),
    FieldRule("validity_days", False, "number", "integer", _default_validity_days, check_validity_days),
    FieldRule("valid_until", False, "date", "date", _default_valid_until),
    FieldRule("includes_delivery", False, "boolean", "boolean", False),
    FieldRule("includes_screen_protector", False, "boolean", "boolean", False),
    FieldRule("client_name", False, "string", "text"),
    FieldRule("client_phone", False, "string", "phone", None, check_phone),
    FieldRule("status", False, "string", "text", "pending"),
    FieldRule("workflow_status", False, "string", "text", "pending"),
]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _display(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class FieldValidator:
    def __init__(
        self,
        rules: Optional[Iterable[FieldRule]] = None,
        currency_mode: str = "reais",
        validity_days: int = DEFAULT_VALIDITY_DAYS,
        today: Optional[date] = None,
    ) -> None:
        self.rules = list(rules) if rules is not None else list(FIELD_RULES)
        self.currency_mode = currency_mode
        self.validity_days = validity_days
        self.today = today or date.today()

    @property
    def required_fields(self) -> list[str]:
        return [rule.field for rule in self.rules if rule.required]

    def validate_row(self, mapped_row: dict[str, Any], row_index: int) -> ValidatedRow:
        known = {rule.field for rule in self.rules}
        result = ValidatedRow(
            row_index=row_index,
            data={field: value for field, value in mapped_row.items() if field in known},
            source=dict(mapped_row),
        )
        failed: set[str] = set()

        self.cleanup(result, failed)
        self.auto_fill(result)
        self.check_required(result, failed)
        self.check_business_rules(result, failed)

        if result.errors:
            logger.debug("Row %s invalid: %s", row_index, "; ".join(result.errors))
        return result

    def validate_batch(self, rows: Iterable[dict[str, Any]], start_index: int = 0) -> list[ValidatedRow]:
        return [self.validate_row(row, start_index + offset) for offset, row in enumerate(rows)]

    # ── Stage 1 ───────────────────────────────────────────────────────────────

    def cleanup(self, result: ValidatedRow, failed: set[str]) -> None:
        for rule in self.rules:
            if rule.field not in result.data:
                continue
            original = result.data[rule.field]
            value = original
            if isinstance(value, str):
                value, _ = clean_cell_text(value)
                if is_blank(value):
                    result.data[rule.field] = None
                    continue
            elif value is None:
                continue

            cleaned = self._coerce(rule, value, result, failed)
            result.data[rule.field] = cleaned
            if cleaned is not None and _display(cleaned) != str(original):
                result.auto_fixes.append(f"Field '{rule.field}': '{original}' -> '{_display(cleaned)}'")

    def _coerce(self, rule: FieldRule, value: Any, result: ValidatedRow, failed: set[str]) -> Any:
        if rule.kind == "currency":
            cents, note = coerce_currency_with_note(value, self.currency_mode)
            if cents is None:
                result.errors.append(MSG_INVALID_NUMBER.format(field=rule.field, value=value))
                failed.add(rule.field)
            elif note:
                result.warnings.append(MSG_CURRENCY_RESCALED.format(field=rule.field, original=value))
            return cents
        if rule.kind == "integer":
            return coerce_integer(value)
        if rule.kind == "boolean":
            return coerce_boolean(value)
        if rule.kind == "phone":
            return coerce_phone(value) or None
        if rule.kind == "date":
            parsed = coerce_date(value)
            if parsed is INVALID_DATE:
                result.errors.append(MSG_INVALID_DATE.format(field=rule.field, value=value))
                failed.add(rule.field)
                return None
            return parsed
        return coerce_text(value) or None

    # ── Stage 2 ───────────────────────────────────────────────────────────────

    def auto_fill(self, result: ValidatedRow) -> None:
        for rule in self.rules:
            if rule.required or rule.default is None:
                continue
            if not _is_empty(result.data.get(rule.field)):
                continue
            value = rule.default(result.data, self) if callable(rule.default) else rule.default
            if value is None:
                continue
            result.data[rule.field] = value
            result.auto_fixes.append(f"Field '{rule.field}' auto-filled: '{_display(value)}'")

    # ── Stage 3 ───────────────────────────────────────────────────────────────

    def check_required(self, result: ValidatedRow, failed: set[str]) -> None:
        for field in self.required_fields:
            if field in failed:
                continue
            if _is_empty(result.data.get(field)):
                result.errors.append(MSG_REQUIRED_EMPTY.format(field=field))
                failed.add(field)

    # ── Stage 4 ───────────────────────────────────────────────────────────────

    def check_business_rules(self, result: ValidatedRow, failed: set[str]) -> None:
        for rule in self.rules:
            if rule.validator is None or rule.field in failed:
                continue
            value = result.data.get(rule.field)
            if value is None:
                continue
            errors, warnings = rule.validator(value, result.data)
            result.errors.extend(errors)
            result.warnings.extend(warnings)
