"""
Structure detection for delimited text and spreadsheet rows.

Works out the separator, where the header row sits and what kind of records
the file holds (budgets, clients, parts). Never raises: a file that cannot be
classified comes back as ``unknown`` with suggestions for the user.
"""

from __future__ import annotations

import csv
import logging
import re
from typing import Optional

from budget_import.fields import BUDGET_FIELD_ALIASES
from budget_import.models import StructureDetection
from budget_import.text import compact_token, normalize_text

logger = logging.getLogger(__name__)

SEPARATORS = [";", ",", "|", "\t"]
SAMPLE_LINES = 10
HEADER_SCAN_ROWS = 5
HEADER_FALLBACK_ROWS = 20
HEADER_SCORE_THRESHOLD = 5
LOW_VARIANCE = 2

HEADER_KEYWORDS = (
    ("nome", "name"),
    ("preco", "price"),
    ("telefone", "phone"),
    ("modelo", "device"),
    ("cliente", "client"),
)

BUDGET_PATTERNS = [
    re.compile(r"modelo|device|aparelho"),
    re.compile(r"preco|price|valor|total"),
    re.compile(r"cliente|client|nome"),
    re.compile(r"telefone|phone|celular"),
]
CLIENT_PATTERNS = [
    re.compile(r"nome|name|cliente"),
    re.compile(r"telefone|phone|celular"),
    re.compile(r"email|e-mail"),
    re.compile(r"endereco|address"),
]
PART_PATTERNS = [
    re.compile(r"parte|part|peca"),
    re.compile(r"preco|price|valor"),
    re.compile(r"quantidade|quantity|qtd"),
    re.compile(r"garantia|warranty"),
]
CURRENCY_SIGNAL_RE = re.compile(r"r\$\s*\d+|[\d,]+\.\d{2}\b|\b\d+,\d{2}\b")
PHONE_SIGNAL_RE = re.compile(r"\(\d{2}\)\s*\d{4,5}-?\d{4}")

_ALIAS_TOKENS = {
    compact_token(alias)
    for aliases in BUDGET_FIELD_ALIASES.values()
    for alias in aliases
}


def split_line(line: str, separator: str) -> list[str]:
    """Quote-aware split of a single line."""
    row = next(csv.reader([line], delimiter=separator), [])
    return [cell.strip() for cell in row]


def trimmed_width(row: list[str]) -> int:
    width = len(row)
    while width and not str(row[width - 1]).strip():
        width -= 1
    return width


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def column_count_variance(rows: list[list[str]]) -> float:
    counts = [trimmed_width(row) for row in rows]
    if not counts:
        return 0.0
    avg = _mean(counts)
    return _mean([(count - avg) ** 2 for count in counts])


class StructureDetector:
    """Layout detection. Confidence is reported on a 0-100 scale."""

    def __init__(self, sample_lines: int = SAMPLE_LINES, header_scan_rows: int = HEADER_SCAN_ROWS) -> None:
        self.sample_lines = sample_lines
        self.header_scan_rows = header_scan_rows

    # ── Entry points ──────────────────────────────────────────────────────────

    def detect(self, text: str) -> StructureDetection:
        lines = [line for line in text.splitlines() if line.strip()]
        separator = self.detect_separator(lines)
        rows = [split_line(line, separator) for line in lines[: max(self.sample_lines, HEADER_FALLBACK_ROWS)]]
        return self.detect_rows(rows, separator=separator, total_rows=len(lines))

    def detect_rows(
        self,
        rows: list[list[str]],
        separator: str = "",
        total_rows: Optional[int] = None,
        known_header_row: Optional[int] = None,
    ) -> StructureDetection:
        sample = rows[: self.sample_lines]
        if known_header_row is None:
            has_headers, header_row = self.detect_header_row(rows)
        else:
            has_headers, header_row = True, known_header_row
        file_type = self.detect_file_type(rows, header_row)
        confidence = self.calculate_confidence(sample, has_headers, file_type)
        suggestions = self.build_suggestions(rows, has_headers, file_type)

        detection = StructureDetection(
            separator=separator,
            has_headers=has_headers,
            header_row=header_row,
            file_type=file_type,
            confidence=confidence,
            total_rows=len(rows) if total_rows is None else total_rows,
            suggestions=suggestions,
        )
        logger.debug(
            "Structure: separator=%r header_row=%s file_type=%s confidence=%s",
            separator,
            header_row if has_headers else None,
            file_type,
            confidence,
        )
        return detection

    # ── Separator ─────────────────────────────────────────────────────────────

    def detect_separator(self, lines: list[str]) -> str:
        """
        Score = total column count over the sample, minus 10x the mean absolute
        deviation of the per-line counts. Ties keep the earlier candidate.
        """
        sample = [line for line in lines if line.strip()][: self.sample_lines]
        best_separator = SEPARATORS[0]
        best_score = float("-inf")

        for separator in SEPARATORS:
            counts = [len(split_line(line, separator)) for line in sample]
            if not counts:
                continue
            score = float(sum(counts))
            if len(counts) > 1:
                avg = _mean(counts)
                score -= _mean([abs(count - avg) for count in counts]) * 10
            if score > best_score:
                best_score = score
                best_separator = separator

        return best_separator

    # ── Header row ────────────────────────────────────────────────────────────

    @staticmethod
    def header_score(row: list[str]) -> int:
        score = 0
        for cell in row:
            text = normalize_text(cell)
            for keywords in HEADER_KEYWORDS:
                if any(keyword in text for keyword in keywords):
                    score += 3
            if re.match(r"^\d+", text):
                score -= 2
            if re.search(r"r\$\s*\d+", text):
                score -= 2
            if len(text) > 3 and not re.fullmatch(r"\d+", text):
                score += 1
        return score

    @staticmethod
    def alias_hits(row: list[str]) -> int:
        return sum(1 for cell in row if cell and compact_token(cell) in _ALIAS_TOKENS)

    def detect_header_row(self, rows: list[list[str]]) -> tuple[bool, int]:
        for index, row in enumerate(rows[: self.header_scan_rows]):
            if self.header_score(row) >= HEADER_SCORE_THRESHOLD:
                return True, index

        # Headers without any of the scoring keywords ("Marca;Valor") still
        # count when at least two cells are known field aliases.
        for index, row in enumerate(rows[:HEADER_FALLBACK_ROWS]):
            if self.alias_hits(row) >= 2:
                return True, index

        return False, 0

    # ── File type ─────────────────────────────────────────────────────────────

    def detect_file_type(self, rows: list[list[str]], header_row: int) -> str:
        sample = rows[header_row : header_row + self.sample_lines]
        budget_score = client_score = part_score = 0

        for row in sample:
            line_text = normalize_text(" | ".join(str(cell) for cell in row))
            budget_score += sum(1 for pattern in BUDGET_PATTERNS if pattern.search(line_text))
            client_score += sum(1 for pattern in CLIENT_PATTERNS if pattern.search(line_text))
            part_score += sum(1 for pattern in PART_PATTERNS if pattern.search(line_text))
            if CURRENCY_SIGNAL_RE.search(line_text):
                budget_score += 2
            if PHONE_SIGNAL_RE.search(line_text):
                client_score += 2

        if max(budget_score, client_score, part_score) == 0:
            return "unknown"
        if budget_score > client_score and budget_score > part_score:
            return "budgets"
        if client_score > budget_score and client_score > part_score:
            return "clients"
        if part_score > budget_score and part_score > client_score:
            return "parts"
        return "mixed"

    # ── Confidence and suggestions ────────────────────────────────────────────

    @staticmethod
    def calculate_confidence(sample: list[list[str]], has_headers: bool, file_type: str) -> int:
        confidence = 50
        if has_headers:
            confidence += 20
        if file_type != "unknown":
            confidence += 20
        if sample and column_count_variance(sample) < LOW_VARIANCE:
            confidence += 10
        return min(100, confidence)

    @staticmethod
    def build_suggestions(rows: list[list[str]], has_headers: bool, file_type: str) -> list[str]:
        suggestions = []
        if file_type == "unknown":
            suggestions.append(
                "Could not tell what kind of data this is. Check that the file holds budgets, clients or parts."
            )
        elif file_type in ("clients", "parts"):
            suggestions.append(f"File looks like {file_type} data; only budgets are imported.")
        if len(rows) < 2:
            suggestions.append("File is very small. Make sure it has a header row and at least one data row.")
        if not has_headers:
            suggestions.append("No header row found. Start from the import template or add column names.")
        if not any(trimmed_width(row) > 1 for row in rows):
            suggestions.append("No row with more than one column was found. Check the file's separator.")
        return suggestions
