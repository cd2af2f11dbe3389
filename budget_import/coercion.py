"""
Value coercers: raw cell text -> canonical typed values.

Every coercer is total (never raises). Currency values come back as integer
minor units (centavos). Dates are the one exception to "always return a
usable value": an unparseable date returns INVALID_DATE so the caller can
turn it into a field error instead of silently defaulting.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, Optional, Union

import pandas as pd

from budget_import.text import collapse_whitespace, is_blank, normalize_text

CURRENCY_MODES = ("reais", "cents", "auto")
AUTO_RESCALE_THRESHOLD = 100_000

TRUE_VALUES = {"true", "1", "sim", "s", "yes", "y", "verdadeiro"}

EXCEL_EPOCH = "1899-12-30"
MONTH_NAMES = {
    "jan": 1, "janeiro": 1, "january": 1,
    "fev": 2, "fevereiro": 2, "feb": 2, "february": 2,
    "mar": 3, "marco": 3, "march": 3,
    "abr": 4, "abril": 4, "apr": 4, "april": 4,
    "mai": 5, "maio": 5, "may": 5,
    "jun": 6, "junho": 6, "june": 6,
    "jul": 7, "julho": 7, "july": 7,
    "ago": 8, "agosto": 8, "aug": 8, "august": 8,
    "set": 9, "setembro": 9, "sep": 9, "september": 9,
    "out": 10, "outubro": 10, "oct": 10, "october": 10,
    "nov": 11, "novembro": 11, "november": 11,
    "dez": 12, "dezembro": 12, "dec": 12, "december": 12,
}

_CURRENCY_STRIP_RE = re.compile(r"[^0-9.,\-]")
_ACCOUNTING_NEGATIVE_RE = re.compile(r"^\(\s*(.+?)\s*\)$")


class _InvalidDate:
    def __repr__(self) -> str:
        return "INVALID_DATE"

    def __bool__(self) -> bool:
        return False


INVALID_DATE = _InvalidDate()

DateResult = Union[date, None, _InvalidDate]


# ══════════════════════════════════════════════════════════════════════════════
# CURRENCY
# ══════════════════════════════════════════════════════════════════════════════

def parse_decimal(value: object) -> Optional[float]:
    """
    Parse a human-formatted number, resolving ',' and '.' separators.

    Both present: the rightmost one is the decimal point.
    Comma only:   decimal iff exactly one comma with <= 2 digits after it.
    Dot only:     several dots, or one dot followed by exactly 3 digits,
                  are thousands separators; otherwise the dot is decimal.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    negative = False
    accounting = _ACCOUNTING_NEGATIVE_RE.match(text)
    if accounting:
        text = accounting.group(1)
        negative = True

    cleaned = _CURRENCY_STRIP_RE.sub("", text)
    if "-" in cleaned:
        negative = negative or cleaned.startswith("-") or text.endswith("-")
        cleaned = cleaned.replace("-", "")
    if not any(ch.isdigit() for ch in cleaned):
        return None

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        whole, _, fraction = cleaned.partition(",")
        if cleaned.count(",") == 1 and len(fraction) <= 2:
            cleaned = f"{whole}.{fraction}"
        else:
            cleaned = cleaned.replace(",", "")
    elif "." in cleaned:
        fraction = cleaned.rsplit(".", 1)[1]
        if cleaned.count(".") > 1 or len(fraction) == 3:
            cleaned = cleaned.replace(".", "")

    try:
        number = float(cleaned)
    except ValueError:
        return None
    return -number if negative else number


def coerce_currency_with_note(value: object, mode: str = "reais") -> tuple[Optional[int], str]:
    """
    Convert a price cell to integer minor units.

    Returns (cents, note). ``note`` is non-empty only when the ``auto`` mode
    rescaled a value it judged to be miskeyed cents. An int input is taken to
    be minor units already and returned unchanged.
    """
    if mode not in CURRENCY_MODES:
        raise ValueError(f"Unknown currency mode '{mode}'. Expected one of {CURRENCY_MODES}")
    if isinstance(value, int) and not isinstance(value, bool):
        return value, ""

    number = parse_decimal(value)
    if number is None:
        return None, ""

    if mode == "cents":
        return int(round(number)), ""

    note = ""
    if mode == "auto" and number > AUTO_RESCALE_THRESHOLD:
        note = f"value {number:g} looked like cents and was divided by 100"
        number = number / 100
    return int(round(number * 100)), note


def coerce_currency(value: object, mode: str = "reais") -> Optional[int]:
    return coerce_currency_with_note(value, mode)[0]


def format_currency(cents: Optional[int]) -> str:
    """Minor units back to the export form: 2 decimals, dot separator."""
    if cents is None:
        return ""
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(int(cents)), 100)
    return f"{sign}{whole}.{fraction:02d}"


def format_brl(cents: int) -> str:
    """Display form used in payment-condition strings: 1.234,56."""
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(int(cents)), 100)
    return f"{sign}{whole:,}".replace(",", ".") + f",{fraction:02d}"


# ══════════════════════════════════════════════════════════════════════════════
# SCALARS
# ══════════════════════════════════════════════════════════════════════════════

def coerce_boolean(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return normalize_text(value) in TRUE_VALUES


def coerce_integer(value: object) -> int:
    """Digits only, keeping a leading minus; anything unparseable is 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value))
    if value is None:
        return 0
    text = str(value).strip()
    if re.match(r"^-?\d+[.,]0+$", text):
        text = re.split(r"[.,]", text)[0]
    digits = re.sub(r"\D", "", text)
    if not digits:
        return 0
    number = int(digits)
    return -number if text.startswith("-") else number


def coerce_phone(value: object) -> str:
    if value is None:
        return ""
    digits = re.sub(r"\D", "", str(value))
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    return digits


def coerce_text(value: object) -> str:
    if value is None:
        return ""
    return collapse_whitespace(str(value))


# ══════════════════════════════════════════════════════════════════════════════
# DATES
# ══════════════════════════════════════════════════════════════════════════════

def _safe_date(year: int, month: int, day: int) -> DateResult:
    try:
        return date(year, month, day)
    except ValueError:
        return INVALID_DATE


def _timestamp_date(parsed) -> DateResult:
    if pd.isna(parsed):
        return INVALID_DATE
    return parsed.date()


def coerce_date(value: object) -> DateResult:
    """
    Parse a date cell. Brazilian day-first order is assumed for DD/MM/YYYY.

    Returns a ``date``, None for a blank cell, or INVALID_DATE.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if is_blank(value):
        return None

    v = str(value).strip()

    m = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ][\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$", v)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = re.match(r"^(\d{4})/(\d{1,2})/(\d{1,2})$", v)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    # DD/MM/YYYY, DD-MM-YYYY, DD.MM.YYYY; two-digit years are 20xx below 50
    m = re.match(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2}|\d{4})(?:\s+[\d:]+)?$", v)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if year < 100:
            year = 2000 + year if year < 50 else 1900 + year
        return _safe_date(year, month, day)

    m = re.match(r"^(\d{1,2})\s+(?:de\s+)?([A-Za-zçÇ]+)\.?\s+(?:de\s+)?(\d{4})$", v)
    if m:
        month_num = MONTH_NAMES.get(normalize_text(m.group(2)))
        if month_num:
            return _safe_date(int(m.group(3)), month_num, int(m.group(1)))
        return INVALID_DATE

    if re.match(r"^\d{10}$", v):
        return _timestamp_date(pd.to_datetime(int(v), unit="s", errors="coerce"))

    # Excel serial date (Windows epoch)
    m = re.match(r"^(\d{5})(?:\.0+)?$", v)
    if m and 20_000 <= int(m.group(1)) <= 80_000:
        return _timestamp_date(pd.to_datetime(int(m.group(1)), unit="D", origin=EXCEL_EPOCH, errors="coerce"))

    if re.fullmatch(r"[\d.,]+", v):
        return INVALID_DATE

    # Free-form text ("October 31, 2026", "Sat 31 Oct 2026") as a last resort.
    return _timestamp_date(pd.to_datetime(v, errors="coerce", dayfirst=True))


# ══════════════════════════════════════════════════════════════════════════════
# COLUMN-LEVEL ANALYSIS
# ══════════════════════════════════════════════════════════════════════════════

def analyse_price_scale(values: Iterable[object]) -> dict:
    """
    Look at a whole price column and report whether it looks like it was
    exported in cents (more than 80% integers above 10000).

    This is advisory only. Nothing is converted here.
    """
    numeric = 0
    large_integers = 0
    for value in values:
        if is_blank(value):
            continue
        text = str(value).strip()
        number = parse_decimal(text)
        if number is None:
            continue
        numeric += 1
        compact = re.sub(r"[^\d.,\-]", "", text)
        if re.fullmatch(r"\d+", compact) and number > 10_000:
            large_integers += 1

    ratio = large_integers / numeric if numeric else 0.0
    looks_like_cents = numeric > 0 and ratio > 0.8
    return {
        "numeric_values":    numeric,
        "large_integers":    large_integers,
        "ratio":             round(ratio, 2),
        "looks_like_cents":  looks_like_cents,
        "suggested_mode":    "cents" if looks_like_cents else "reais",
    }
