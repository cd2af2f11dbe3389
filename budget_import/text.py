"""Loose text comparison helpers shared by detection, mapping and cleanup."""

from __future__ import annotations

import re
import unicodedata

SMART_QUOTES = {
    "\u201c": '"',
    "\u201d": '"',
    "\u2018": "'",
    "\u2019": "'",
}

SENTINEL_NULLS = {"", "nan", "none", "null", "n/a", "na", "-", "--"}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def collapse_whitespace(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_text(value: object) -> str:
    """Lowercase, accent-free, BOM-free text with single spaces."""
    if value is None:
        return ""
    text = str(value).replace("\ufeff", "")
    return collapse_whitespace(strip_accents(text).lower())


def header_token(value: object) -> str:
    """Canonical snake token: 'Preço Total' and 'preco_total' both give 'preco_total'."""
    return _NON_ALNUM_RE.sub("_", normalize_text(value)).strip("_")


def compact_token(value: object) -> str:
    """Alphanumeric-only form used for edit-distance comparison."""
    return _NON_ALNUM_RE.sub("", normalize_text(value))


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in SENTINEL_NULLS
    return False


def clean_cell_text(value: object) -> tuple[str, list[str]]:
    """Strip BOM, null bytes, line breaks, smart quotes. Returns (cleaned_value, reasons)."""
    if value is None:
        return "", []
    new_val = str(value)
    reasons = []

    if "\ufeff" in new_val:
        new_val = new_val.replace("\ufeff", "")
        reasons.append("BOM byte-order mark stripped")
    if "\x00" in new_val:
        new_val = new_val.replace("\x00", "")
        reasons.append("Null byte removed")
    if "\n" in new_val or "\r" in new_val:
        new_val = new_val.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        reasons.append("Embedded line break replaced with space")

    had_smart = any(s in new_val for s in SMART_QUOTES)
    for smart, straight in SMART_QUOTES.items():
        new_val = new_val.replace(smart, straight)
    if had_smart:
        reasons.append("Smart/curly quotes normalised to straight quotes")

    return new_val.strip(), reasons


def dedupe_headers(headers: list[str]) -> list[str]:
    """Blank headers become Column_N and repeats become Name_2, Name_3."""
    seen: dict[str, int] = {}
    result = []
    for index, header in enumerate(headers, start=1):
        name, _ = clean_cell_text(header)
        if not name:
            name = f"Column_{index}"
        count = seen.get(name, 0) + 1
        seen[name] = count
        result.append(name if count == 1 else f"{name}_{count}")
    return result
