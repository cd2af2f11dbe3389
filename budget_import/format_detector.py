"""
format_detector.py — Serialization format sniffing from a byte prefix.

    detector  = FormatDetector()
    detection = detector.detect(raw_bytes, "orcamentos.csv")
    detection.format      # "csv" | "tsv" | "excel" | "json" | "xml"
    detection.confidence  # 0-1

Detection never raises. An ambiguous input resolves to CSV with a low
confidence, which is the caller's cue to warn the user.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from pathlib import PurePath
from typing import Optional

import chardet

from budget_import.models import FormatDetection

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "tsv", "excel", "json", "xml")

MAGIC_XLSX = b"PK\x03\x04"
MAGIC_XLS = b"\xd0\xcf\x11\xe0"
BOM_UTF8 = b"\xef\xbb\xbf"
BOM_UTF16_LE = b"\xff\xfe"
BOM_UTF16_BE = b"\xfe\xff"

MAGIC_CONFIDENCE = 0.95
MAX_COMBINED_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.3
LARGE_EXCEL_BYTES = 50 * 1024 * 1024

SNIFF_BYTES = 2048
SAMPLE_LINES = 10

CSV_DELIMITERS = [",", ";", "\t", "|"]

EXTENSION_MAP = {
    ".csv":  ("csv", 0.8),
    ".xlsx": ("excel", 0.9),
    ".xlsm": ("excel", 0.9),
    ".xls":  ("excel", 0.9),
    ".ods":  ("excel", 0.8),
    ".json": ("json", 0.8),
    ".jsonl": ("json", 0.7),
    ".xml":  ("xml", 0.8),
    ".tsv":  ("tsv", 0.8),
    ".txt":  ("csv", 0.3),
}


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING
# ══════════════════════════════════════════════════════════════════════════════

def detect_bom(raw: bytes) -> Optional[str]:
    if raw.startswith(BOM_UTF8):
        return "utf-8-sig"
    if raw.startswith(BOM_UTF16_LE):
        return "utf-16-le"
    if raw.startswith(BOM_UTF16_BE):
        return "utf-16-be"
    return None


def detect_encoding_info(raw: bytes) -> dict:
    """
    Detect encoding from raw bytes.

    Returns dict with: detected, confidence, is_utf8, bom, suspicious_chars.
    A BOM wins over chardet's statistical guess.
    """
    bom = detect_bom(raw)
    if bom:
        detected, confidence = bom, 1.0
    else:
        result = chardet.detect(raw)
        detected = result.get("encoding") or "unknown"
        confidence = round(result.get("confidence") or 0.0, 2)

    is_utf8 = detected.upper().replace("-", "").replace("SIG", "") in ("UTF8", "ASCII")

    suspicious: list[str] = []
    if not is_utf8 and not bom:
        for row_idx, line in enumerate(raw.split(b"\n")[:100], start=1):
            try:
                line.decode("utf-8")
            except UnicodeDecodeError as e:
                bad_byte = line[e.start : e.end]
                suspicious.append(
                    f"row {row_idx}: byte {bad_byte!r} at position {e.start}"
                )

    return {
        "detected":         detected,
        "confidence":       confidence,
        "is_utf8":          is_utf8,
        "bom":              bom is not None,
        "suspicious_chars": suspicious[:10],
    }


def decode_prefix(raw: bytes, encoding: str) -> str:
    try:
        return raw.decode(encoding, errors="replace").lstrip("\ufeff")
    except LookupError:
        return raw.decode("utf-8", errors="replace").lstrip("\ufeff")


# ══════════════════════════════════════════════════════════════════════════════
# CONTENT SNIFFING
# ══════════════════════════════════════════════════════════════════════════════

def looks_like_json(text: str, truncated: bool = False) -> bool:
    """
    Starts with an object or array and its brackets balance, ignoring any
    inside strings. A truncated prefix only has to stay consistent so far.
    """
    trimmed = text.strip()
    if not trimmed or trimmed[0] not in "{[":
        return False
    pairs = {"}": "{", "]": "["}
    stack: list[str] = []
    in_string = escaped = False
    for char in trimmed:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in pairs:
            if not stack or stack.pop() != pairs[char]:
                return False
    if stack or in_string:
        return truncated
    return True


def looks_like_xml(text: str) -> bool:
    trimmed = text.strip()
    return trimmed.startswith("<") and bool(re.search(r"</\w[\w:.\-]*\s*>|/>", trimmed))


def json_root_elements(text: str) -> list[str]:
    try:
        data = json.loads(text)
    except ValueError:
        return []
    if isinstance(data, dict):
        return list(data.keys())[:5]
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return list(data[0].keys())[:5]
    return []


def xml_root_elements(text: str) -> list[str]:
    tags: list[str] = []
    for tag in re.findall(r"<([A-Za-z_][\w.\-]*)[^>]*>", text):
        if tag not in tags:
            tags.append(tag)
    return tags[:5]


def analyse_delimited_content(text: str, max_lines: int = SAMPLE_LINES) -> dict:
    """
    Test each candidate delimiter for a consistent column count over the
    first lines; the delimiter with the widest consistent split wins.
    """
    text = text.replace("\x00", "")
    lines = [line for line in text.splitlines() if line.strip()][:max_lines]
    # The last line of a byte prefix may be cut mid-record.
    if len(lines) > 2 and not text.endswith(("\n", "\r")):
        lines = lines[:-1]
    if len(lines) < 2:
        return {"confidence": 0.0, "delimiter": ",", "has_header": False, "estimated_rows": len(lines)}

    best_delimiter = ","
    best_count = 0
    for delimiter in CSV_DELIMITERS:
        counts = [len(row) - 1 for row in csv.reader(io.StringIO("\n".join(lines)), delimiter=delimiter)]
        if counts and counts[0] > 0 and len(set(counts)) == 1 and counts[0] > best_count:
            best_count = counts[0]
            best_delimiter = delimiter

    first_row = next(csv.reader([lines[0]], delimiter=best_delimiter), [])
    has_header = any(cell.strip() and not _is_number(cell) for cell in first_row)
    confidence = min(0.9, best_count / 10 + 0.5) if best_count > 0 else 0.2

    return {
        "confidence":     round(confidence, 2),
        "delimiter":      best_delimiter,
        "has_header":     has_header,
        "estimated_rows": len(lines),
    }


def _is_number(value: str) -> bool:
    try:
        float(value.strip())
        return True
    except ValueError:
        return False


# ══════════════════════════════════════════════════════════════════════════════
# DETECTOR
# ══════════════════════════════════════════════════════════════════════════════

class FormatDetector:
    """Guess a file's serialization format from its first bytes and name."""

    def __init__(self, sniff_bytes: int = SNIFF_BYTES) -> None:
        self.sniff_bytes = sniff_bytes

    def detect(self, data: bytes, filename: str = "", file_size: Optional[int] = None) -> FormatDetection:
        prefix = data[: self.sniff_bytes]
        size = len(data) if file_size is None else file_size
        enc_info = detect_encoding_info(prefix)
        encoding = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
        base_metadata = {"file_size": size, "encoding": encoding, "bom": enc_info["bom"]}

        magic = self.detect_by_magic(prefix)
        if magic:
            logger.debug("Magic number matched %s container for %s", magic, filename or "[bytes]")
            return FormatDetection(
                format="excel",
                confidence=MAGIC_CONFIDENCE,
                encoding="binary",
                metadata={**base_metadata, "encoding": "binary", "container": magic},
            )

        by_extension = self.detect_by_extension(filename)
        by_content = self.detect_by_content(decode_prefix(prefix, encoding), truncated=len(data) > len(prefix))
        detection = self.combine(by_extension, by_content, base_metadata)
        logger.debug(
            "Format for %s: %s (%.2f); extension=%s content=%s",
            filename or "[bytes]",
            detection.format,
            detection.confidence,
            by_extension,
            by_content and by_content["format"],
        )
        return detection

    @staticmethod
    def detect_by_magic(prefix: bytes) -> Optional[str]:
        if prefix.startswith(MAGIC_XLSX):
            return "zip"
        if prefix.startswith(MAGIC_XLS):
            return "ole"
        return None

    @staticmethod
    def detect_by_extension(filename: str) -> Optional[tuple[str, float]]:
        if not filename:
            return None
        return EXTENSION_MAP.get(PurePath(filename).suffix.lower())

    @staticmethod
    def detect_by_content(text: str, truncated: bool = False) -> Optional[dict]:
        if looks_like_json(text, truncated):
            return {"format": "json", "confidence": 0.9, "metadata": {"root_elements": json_root_elements(text)}}
        if looks_like_xml(text):
            return {"format": "xml", "confidence": 0.9, "metadata": {"root_elements": xml_root_elements(text)}}

        analysis = analyse_delimited_content(text)
        if analysis["confidence"] > 0.5:
            return {
                "format":     "tsv" if analysis["delimiter"] == "\t" else "csv",
                "confidence": analysis["confidence"],
                "metadata": {
                    "delimiter":      analysis["delimiter"],
                    "has_header":     analysis["has_header"],
                    "estimated_rows": analysis["estimated_rows"],
                },
            }
        return None

    @staticmethod
    def combine(
        by_extension: Optional[tuple[str, float]],
        by_content: Optional[dict],
        base_metadata: dict,
    ) -> FormatDetection:
        encoding = base_metadata["encoding"]

        def build(fmt: str, confidence: float, metadata: dict) -> FormatDetection:
            return FormatDetection(
                format=fmt,
                confidence=round(confidence, 2),
                encoding=encoding,
                delimiter=metadata.get("delimiter"),
                has_header=metadata.get("has_header"),
                metadata=metadata,
            )

        if by_extension and by_content and by_extension[0] == by_content["format"]:
            confidence = min(MAX_COMBINED_CONFIDENCE, (by_extension[1] + by_content["confidence"]) / 2 + 0.2)
            return build(by_extension[0], confidence, {**base_metadata, **by_content["metadata"]})

        if by_content and by_content["confidence"] > 0.8:
            return build(by_content["format"], by_content["confidence"], {**base_metadata, **by_content["metadata"]})

        if by_extension:
            return build(by_extension[0], by_extension[1] * 0.8, dict(base_metadata))

        return build("csv", FALLBACK_CONFIDENCE, dict(base_metadata))

    def validate_format(self, detection: FormatDetection, data: bytes, expected: Optional[str] = None) -> dict:
        """Format-specific sanity checks on top of detection."""
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        if expected and detection.format != expected:
            errors.append(f"Expected format {expected}, detected {detection.format}")
            suggestions.append(f"Convert the file to {expected} or check its extension")
        if detection.confidence < 0.5:
            warnings.append(f"Format detected with low confidence ({round(detection.confidence * 100)}%)")

        if detection.format in ("csv", "tsv"):
            analysis = analyse_delimited_content(decode_prefix(data[: self.sniff_bytes], detection.encoding))
            if analysis["confidence"] < 0.5:
                warnings.append("File does not look like delimited text")
            if not analysis["has_header"]:
                warnings.append("File may not have a header row")
        elif detection.format == "excel":
            if detection.metadata.get("file_size", len(data)) > LARGE_EXCEL_BYTES:
                warnings.append("Excel file is very large; processing may be slow")
        elif detection.format == "json":
            try:
                parsed = json.loads(decode_prefix(data, detection.encoding))
            except ValueError as exc:
                errors.append(f"Invalid JSON: {exc}")
            else:
                if not parsed:
                    errors.append("JSON root is empty")
                elif isinstance(parsed, dict):
                    detection.metadata["root_elements"] = list(parsed)[:5]
        elif detection.format == "xml":
            text = decode_prefix(data[: self.sniff_bytes], detection.encoding).strip()
            if not text.startswith("<"):
                errors.append("XML must start with a tag")
            else:
                roots = xml_root_elements(text)
                if len(roots) < 2:
                    errors.append("XML root element has no child records")
                detection.metadata["root_elements"] = roots

        return {
            "is_valid":    not errors,
            "errors":      errors,
            "warnings":    warnings,
            "suggestions": suggestions,
        }

    @staticmethod
    def supported_formats() -> list[str]:
        return list(SUPPORTED_FORMATS)
