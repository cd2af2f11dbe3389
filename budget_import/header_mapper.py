"""
Header mapping: arbitrary column headers -> canonical field names.

Scoring per (header, alias) pair, on normalized alphanumeric tokens:
    1.0  exact match
    0.9  one contains the other (shorter side at least 3 characters)
    else 1 - levenshtein / max(len)   (rapidfuzz)

The best field per header wins. Equal scores go to the alias closest in
length to the header, so "Preco a Vista (R$)" lands on the cash alias rather
than the bare "preco"; remaining ties keep the field evaluated first. Scores
under MIN_SCORE map to ``unknown`` with confidence 0.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Optional

from rapidfuzz.distance import Levenshtein

from budget_import.errors import MSG_MAPPING_CONFLICT
from budget_import.fields import aliases_for
from budget_import.models import UNKNOWN_FIELD, ColumnMapping
from budget_import.text import compact_token

logger = logging.getLogger(__name__)

CONTAINMENT_SCORE = 0.9
MIN_CONTAINMENT_LENGTH = 3
MIN_SCORE = 0.6
LOW_CONFIDENCE = 70


def similarity(header: str, alias: str) -> float:
    """Similarity of two already-normalized tokens, in [0, 1]."""
    if header == alias:
        return 1.0
    if not header or not alias:
        return 0.0
    shorter, longer = sorted((header, alias), key=len)
    if len(shorter) >= MIN_CONTAINMENT_LENGTH and shorter in longer:
        return CONTAINMENT_SCORE
    return Levenshtein.normalized_similarity(longer, shorter)


class HeaderMapper:
    def __init__(self, aliases: Optional[dict[str, list[str]]] = None, min_score: float = MIN_SCORE) -> None:
        self._explicit_aliases = aliases
        self.min_score = min_score

    def _alias_table(self, file_type: str) -> list[tuple[str, list[tuple[str, str]]]]:
        aliases = self._explicit_aliases or aliases_for(file_type)
        return [
            (field, [(alias, compact_token(alias)) for alias in names])
            for field, names in aliases.items()
        ]

    def match(self, header: str, file_type: str = "budgets") -> tuple[str, float, Optional[str]]:
        """Best (field, score, alias) for one header."""
        token = compact_token(header)
        if not token:
            return UNKNOWN_FIELD, 0.0, None
        table = self._alias_table(file_type)

        # Exact hits anywhere beat fuzzy hits on an earlier field.
        for field, aliases in table:
            for alias, alias_token in aliases:
                if alias_token == token:
                    return field, 1.0, alias

        best_field, best_score, best_alias, best_token = UNKNOWN_FIELD, 0.0, None, ""
        for field, aliases in table:
            for alias, alias_token in aliases:
                score = similarity(token, alias_token)
                closer = abs(len(alias_token) - len(token)) < abs(len(best_token) - len(token))
                if score > best_score or (score == best_score and score > 0 and closer):
                    best_field, best_score, best_alias, best_token = field, score, alias, alias_token

        if best_score < self.min_score:
            return UNKNOWN_FIELD, 0.0, None
        return best_field, best_score, best_alias

    def map_headers(self, headers: list[str], file_type: str = "budgets") -> list[ColumnMapping]:
        mappings = []
        for index, header in enumerate(headers):
            field, score, alias = self.match(header, file_type)
            mappings.append(
                ColumnMapping(
                    source_index=index,
                    source_header=header,
                    canonical_field=field,
                    confidence=int(round(score * 100)),
                    matched_alias=alias,
                )
            )
            logger.debug("Header %r -> %s (%d)", header, field, mappings[-1].confidence)
        return mappings


def mapping_conflicts(mappings: list[ColumnMapping]) -> dict[str, list[ColumnMapping]]:
    """Canonical fields claimed by more than one source column."""
    by_field: dict[str, list[ColumnMapping]] = defaultdict(list)
    for mapping in mappings:
        if mapping.is_mapped:
            by_field[mapping.canonical_field].append(mapping)
    return {field: items for field, items in by_field.items() if len(items) > 1}


def conflict_warnings(mappings: list[ColumnMapping]) -> list[str]:
    return [
        MSG_MAPPING_CONFLICT.format(
            headers=", ".join(repr(item.source_header) for item in items),
            field=field,
        )
        for field, items in mapping_conflicts(mappings).items()
    ]


def unmapped_headers(mappings: list[ColumnMapping]) -> list[str]:
    return [mapping.source_header for mapping in mappings if not mapping.is_mapped]


def low_confidence_mappings(mappings: list[ColumnMapping], threshold: int = LOW_CONFIDENCE) -> list[ColumnMapping]:
    return [mapping for mapping in mappings if mapping.is_mapped and mapping.confidence < threshold]


def build_mapped_row(values: list[str], mappings: list[ColumnMapping]) -> dict[str, str]:
    """
    Join one row's cells with the mapping. When several columns claim the
    same field, the higher-confidence column wins; on a tie the first
    non-empty value wins.
    """
    row: dict[str, str] = {}
    chosen_confidence: dict[str, int] = {}
    for mapping in mappings:
        if not mapping.is_mapped or mapping.source_index >= len(values):
            continue
        value = values[mapping.source_index]
        value = "" if value is None else str(value)
        field = mapping.canonical_field
        if field not in row:
            row[field] = value
            chosen_confidence[field] = mapping.confidence
            continue
        current_empty = not row[field].strip()
        if mapping.confidence > chosen_confidence[field] and value.strip():
            row[field] = value
            chosen_confidence[field] = mapping.confidence
        elif current_empty and value.strip() and mapping.confidence >= chosen_confidence[field]:
            row[field] = value
            chosen_confidence[field] = mapping.confidence
    return row
