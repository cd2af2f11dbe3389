#!/usr/bin/env python3
"""
loader.py — Universal tabular reader for budget imports

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods .json .jsonl .xml

Public API:
    table = load_file("path/to/orcamentos.csv")
    table = read_bytes(raw_bytes, "orcamentos.csv")
    table.headers   — deduplicated header strings
    table.rows      — list of {header: raw cell text}

Every reader produces the same RawTable shape: cell values are always
strings, blank cells are "", and header rows above the data (title lines,
notes) are skipped using the structure detector.
"""

from __future__ import annotations

import csv
import io
import json as _json
import logging
import time
import xml.etree.ElementTree as ET
from collections import Counter
from pathlib import Path, PurePath
from typing import BinaryIO, Optional, Union

import pandas as pd

from budget_import.errors import ErrorCode, ImportFileError
from budget_import.format_detector import FormatDetector, detect_bom, detect_encoding_info
from budget_import.models import FormatDetection, RawRow, RawTable
from budget_import.structure_detector import StructureDetector
from budget_import.text import dedupe_headers

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xls", ".xlsm"}
ODS_FORMATS   = {".ods"}
JSON_FORMATS  = {".json"}
JSONL_FORMATS = {".jsonl"}
XML_FORMATS   = {".xml"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS | ODS_FORMATS | JSON_FORMATS | JSONL_FORMATS | XML_FORMATS


# ══════════════════════════════════════════════════════════════════════════════
# SAFE TEXT READING (mixed-encoding tolerant)
# ══════════════════════════════════════════════════════════════════════════════

def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)

    UTF-16 input (BOM-marked) is decoded as a whole. Null bytes and the
    leading BOM are stripped so downstream parsers don't choke.
    """
    bom = detect_bom(raw)
    if bom and bom.startswith("utf-16"):
        return raw.decode("utf-16", errors="replace").lstrip("\ufeff").replace("\x00", "")

    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: Optional[str] = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines).lstrip("\ufeff")


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, dict)):
        return _json.dumps(value, ensure_ascii=False)
    return str(value)


def _is_empty_row(row: list[str]) -> bool:
    return not any(str(cell).strip() for cell in row)


# ══════════════════════════════════════════════════════════════════════════════
# TABLE ASSEMBLY
# ══════════════════════════════════════════════════════════════════════════════

def _table_from_rows(
    all_rows: list[list[str]],
    *,
    detected_format: str,
    structure_detector: StructureDetector,
    separator: str = "",
    known_header_row: Optional[int] = None,
    warnings: Optional[list[str]] = None,
) -> RawTable:
    """Locate the header in a grid of cells and turn the rest into RawRows."""
    warnings = list(warnings or [])
    rows = [[_cell_text(cell).strip() for cell in row] for row in all_rows]
    blank_rows = sum(1 for row in rows if _is_empty_row(row))
    rows = [row for row in rows if not _is_empty_row(row)]

    structure = structure_detector.detect_rows(
        rows,
        separator=separator,
        total_rows=len(rows),
        known_header_row=known_header_row,
    )

    width = max((len(row) for row in rows), default=0)
    if structure.has_headers and rows:
        header_cells = rows[structure.header_row]
        data_rows = rows[structure.header_row + 1 :]
        preamble = structure.header_row
        if preamble:
            warnings.append(f"Skipped {preamble} line(s) above the header row")
    else:
        header_cells = []
        data_rows = rows
        preamble = 0
        if rows:
            warnings.append("No header row detected; columns were named Column_1, Column_2, ...")

    header_cells = list(header_cells) + [""] * (width - len(header_cells))
    headers = dedupe_headers(header_cells)
    if any(header != original.strip() for header, original in zip(headers, header_cells) if original.strip()):
        warnings.append("Duplicate header names were renamed with a numeric suffix")

    raw_rows: list[RawRow] = []
    for row in data_rows:
        padded = list(row) + [""] * (len(headers) - len(row))
        raw_rows.append(dict(zip(headers, padded)))

    return RawTable(
        headers=headers,
        rows=raw_rows,
        detected_format=detected_format,
        delimiter=separator or None,
        header_row=structure.header_row,
        structure=structure,
        metadata={
            "total_rows":     len(rows) + blank_rows,
            "processed_rows": len(raw_rows),
            "skipped_rows":   blank_rows + preamble,
        },
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT READERS
# ══════════════════════════════════════════════════════════════════════════════

def _read_delimited(
    raw: bytes,
    detected_format: str,
    structure_detector: StructureDetector,
    delimiter: Optional[str] = None,
) -> RawTable:
    """Read .csv / .tsv / .txt bytes with pandas, after picking the separator."""
    enc_info = detect_encoding_info(raw)
    enc      = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    text     = _read_text_safely(raw, enc)

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise ImportFileError("File contains no data", ErrorCode.EMPTY_FILE)

    if delimiter is None:
        delimiter = "\t" if detected_format == "tsv" else structure_detector.detect_separator(lines)

    width = max(len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter))
    sep = r"\|" if delimiter == "|" else delimiter
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            header=None,
            names=list(range(width)),
            keep_default_na=False,
            skip_blank_lines=True,
            sep=sep,
            engine="python",
        )
    except Exception as exc:
        raise ImportFileError(f"Could not parse {detected_format} file: {exc}", ErrorCode.PARSE_FAILED) from exc

    table = _table_from_rows(
        df.fillna("").values.tolist(),
        detected_format=detected_format,
        structure_detector=structure_detector,
        separator=delimiter,
    )
    table.encoding = enc
    table.encoding_info = enc_info
    table.raw_text = text
    if not enc_info["is_utf8"]:
        table.warnings.append(f"File decoded as {enc}; check accented characters")
    return table


def _read_excel(
    raw: bytes,
    suffix: str,
    structure_detector: StructureDetector,
    sheet_name: Optional[str] = None,
) -> RawTable:
    """
    Read .xlsx / .xlsm / .xls / .ods bytes. The first sheet is used unless
    ``sheet_name`` is given; other sheets are reported in the warnings.
    """
    engine: Optional[str] = None
    # .xls requires xlrd and .ods requires odfpy; give a clear error if missing.
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(
                ".xls files require xlrd — run: pip install xlrd"
            )
    if suffix == ".ods":
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(
                ".ods files require odfpy — run: pip install odfpy"
            )
        engine = "odf"

    warnings: list[str] = []
    try:
        with pd.ExcelFile(io.BytesIO(raw), engine=engine) as xf:
            all_sheets = [str(name) for name in xf.sheet_names]
            if not all_sheets:
                raise ImportFileError("Workbook has no sheets", ErrorCode.EMPTY_FILE)
            if sheet_name is not None and sheet_name not in all_sheets:
                raise ImportFileError(
                    f"Sheet '{sheet_name}' not found. Available: {all_sheets}",
                    ErrorCode.INVALID_FILE_FORMAT,
                )
            chosen = sheet_name or all_sheets[0]
            df = pd.read_excel(xf, sheet_name=chosen, header=None, dtype=str)
    except ImportFileError:
        raise
    except Exception as exc:
        raise ImportFileError(f"Could not read workbook: {exc}", ErrorCode.PARSE_FAILED) from exc

    if len(all_sheets) > 1:
        others = [name for name in all_sheets if name != chosen]
        warnings.append(
            f"Multiple sheets found ({len(all_sheets)} total); "
            f"used '{chosen}'. Ignored: {others}"
        )

    table = _table_from_rows(
        df.fillna("").values.tolist(),
        detected_format=suffix.lstrip(".") if suffix else "xlsx",
        structure_detector=structure_detector,
        warnings=warnings,
    )
    table.sheet_name = chosen
    table.sheet_names = all_sheets
    return table


def _json_records(data: object, root_element: Optional[str], warnings: list[str]) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if root_element is not None:
            if not isinstance(data.get(root_element), list):
                raise ImportFileError(
                    f"JSON key '{root_element}' is not an array",
                    ErrorCode.INVALID_FILE_FORMAT,
                )
            return data[root_element]
        list_keys = [k for k, v in data.items() if isinstance(v, list)]
        if list_keys:
            key = list_keys[0]
            warnings.append(f"Nested JSON: used array at top-level key '{key}'")
            return data[key]
        warnings.append("JSON is a single object; treated as a one-row table")
        return [data]
    raise ImportFileError(
        f"JSON root must be an array or object, got {type(data).__name__}",
        ErrorCode.INVALID_FILE_FORMAT,
    )


def _records_table(
    records: list,
    *,
    detected_format: str,
    structure_detector: StructureDetector,
    warnings: list[str],
) -> RawTable:
    objects = [record for record in records if isinstance(record, dict)]
    if len(objects) != len(records):
        warnings.append(f"{len(records) - len(objects)} non-object record(s) ignored")
    if not objects:
        return _table_from_rows([], detected_format=detected_format, structure_detector=structure_detector,
                                known_header_row=0, warnings=warnings)

    try:
        df = pd.json_normalize(objects)
    except Exception as exc:
        raise ImportFileError(f"Could not flatten JSON records: {exc}", ErrorCode.PARSE_FAILED) from exc

    grid = [list(df.columns)] + df.astype(object).where(df.notna(), None).values.tolist()
    return _table_from_rows(
        grid,
        detected_format=detected_format,
        structure_detector=structure_detector,
        known_header_row=0,
        warnings=warnings,
    )


def _read_json(raw: bytes, structure_detector: StructureDetector, root_element: Optional[str] = None) -> RawTable:
    """
    Read a .json file holding an array of objects or a nested dict.

    Arrays → rows directly.
    Dicts  → the array under ``root_element``, else the first top-level list
             value; falls back to treating the whole dict as a single row.
    Nested objects inside rows are flattened with pd.json_normalize().
    """
    enc_info = detect_encoding_info(raw)
    enc      = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    text     = _read_text_safely(raw, enc)

    try:
        data = _json.loads(text)
    except _json.JSONDecodeError as exc:
        raise ImportFileError(f"Invalid JSON: {exc}", ErrorCode.PARSE_FAILED) from exc

    warnings: list[str] = []
    records = _json_records(data, root_element, warnings)
    table = _records_table(records, detected_format="json", structure_detector=structure_detector, warnings=warnings)
    table.encoding = enc
    table.encoding_info = enc_info
    table.raw_text = text
    table.metadata["root_elements"] = list(data.keys())[:5] if isinstance(data, dict) else []
    return table


def _read_jsonl(raw: bytes, structure_detector: StructureDetector) -> RawTable:
    """One JSON object per line. Blank lines and parse errors are skipped with a warning."""
    enc_info = detect_encoding_info(raw)
    enc      = enc_info["detected"] if enc_info["detected"] != "unknown" else "utf-8"
    text     = _read_text_safely(raw, enc)

    records: list[dict] = []
    parse_errors: list[str] = []
    for line_num, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            records.append(_json.loads(line))
        except _json.JSONDecodeError as exc:
            parse_errors.append(f"line {line_num}: {exc}")

    warnings: list[str] = []
    if parse_errors:
        sample = "; ".join(parse_errors[:3])
        extra  = f" (+{len(parse_errors) - 3} more)" if len(parse_errors) > 3 else ""
        warnings.append(f"{len(parse_errors)} lines could not be parsed — {sample}{extra}")

    table = _records_table(records, detected_format="jsonl", structure_detector=structure_detector, warnings=warnings)
    table.encoding = enc
    table.encoding_info = enc_info
    table.metadata["skipped_rows"] = table.metadata.get("skipped_rows", 0) + len(parse_errors)
    return table


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _xml_record(element: ET.Element) -> dict[str, str]:
    """Attributes plus child text; grandchildren flatten to 'child.grandchild'."""
    record = {_local_name(key): value for key, value in element.attrib.items()}
    for child in element:
        name = _local_name(child.tag)
        if len(child):
            for key, value in _xml_record(child).items():
                record[f"{name}.{key}"] = value
        else:
            record[name] = (child.text or "").strip()
        for key, value in child.attrib.items():
            record.setdefault(f"{name}.{_local_name(key)}", value)
    return record


def _xml_record_elements(root: ET.Element, record_tag: Optional[str]) -> list[ET.Element]:
    if record_tag:
        return [el for el in root.iter() if _local_name(el.tag) == record_tag]
    # Record elements are the most repeated tag among the children of the
    # shallowest element that has repeated children.
    queue = [root]
    while queue:
        element = queue.pop(0)
        children = list(element)
        if not children:
            continue
        tag, count = Counter(_local_name(child.tag) for child in children).most_common(1)[0]
        if count > 1 or (element is root and len(children) == 1 and len(children[0])):
            return [child for child in children if _local_name(child.tag) == tag]
        queue.extend(children)
    return [root] if root.attrib or len(root) else []


def _read_xml(raw: bytes, structure_detector: StructureDetector, record_tag: Optional[str] = None) -> RawTable:
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise ImportFileError(f"Invalid XML: {exc}", ErrorCode.PARSE_FAILED) from exc

    elements = _xml_record_elements(root, record_tag)
    records = [_xml_record(element) for element in elements]
    headers: list[str] = []
    for record in records:
        for key in record:
            if key not in headers:
                headers.append(key)

    warnings: list[str] = []
    if not records:
        warnings.append("No repeated record elements found in XML")
    grid = [headers] + [[record.get(header, "") for header in headers] for record in records] if headers else []
    table = _table_from_rows(
        grid,
        detected_format="xml",
        structure_detector=structure_detector,
        known_header_row=0,
        warnings=warnings,
    )
    table.metadata["root_elements"] = [_local_name(root.tag)] + sorted({_local_name(el.tag) for el in elements})[:4]
    return table


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

_FORMAT_SUFFIX = {"csv": ".csv", "tsv": ".tsv", "json": ".json", "xml": ".xml"}


def resolve_suffix(filename: str, detection: FormatDetection) -> str:
    """
    Pick the reader. Content detection wins when it disagrees with the
    extension, so a JSON export saved as .csv still reads as JSON.
    """
    suffix = PurePath(filename).suffix.lower() if filename else ""
    if detection.format == "excel":
        if suffix in EXCEL_FORMATS | ODS_FORMATS:
            return suffix
        return ".xls" if detection.metadata.get("container") == "ole" else ".xlsx"
    if suffix in ALL_FORMATS and _FORMAT_SUFFIX.get(detection.format) in (suffix, None):
        return suffix
    if suffix == ".txt" and detection.format in ("csv", "tsv"):
        return suffix
    if suffix == ".jsonl" and detection.format == "json":
        return suffix
    return _FORMAT_SUFFIX.get(detection.format, ".csv")


def read_bytes(
    data: bytes,
    filename: str = "",
    *,
    detection: Optional[FormatDetection] = None,
    sheet_name: Optional[str] = None,
    root_element: Optional[str] = None,
    format_detector: Optional[FormatDetector] = None,
    structure_detector: Optional[StructureDetector] = None,
) -> RawTable:
    """
    Parse file bytes into a RawTable.

    Raises:
        ImportFileError  for empty, unsupported or unparseable content.
        ImportError      if an optional engine (xlrd, odfpy) is missing.
    """
    started = time.perf_counter()
    if not data or not data.strip(b" \t\r\n\x00\xef\xbb\xbf\xff\xfe"):
        raise ImportFileError("File is empty", ErrorCode.EMPTY_FILE)

    structure_detector = structure_detector or StructureDetector()
    if detection is None:
        detection = (format_detector or FormatDetector()).detect(data, filename)

    suffix = PurePath(filename).suffix.lower() if filename else ""
    if suffix and suffix not in ALL_FORMATS and detection.confidence < 0.5:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ImportFileError(
            f"Unsupported format '{suffix}'. Supported: {supported}",
            ErrorCode.INVALID_FILE_FORMAT,
        )

    suffix = resolve_suffix(filename, detection)
    logger.debug("Reading %s as %s", filename or "[bytes]", suffix)

    if suffix in TEXT_FORMATS:
        fmt = "tsv" if suffix == ".tsv" or detection.format == "tsv" else "csv"
        table = _read_delimited(data, fmt, structure_detector, delimiter="\t" if fmt == "tsv" else None)
    elif suffix in EXCEL_FORMATS | ODS_FORMATS:
        table = _read_excel(data, suffix, structure_detector, sheet_name)
    elif suffix in JSON_FORMATS:
        table = _read_json(data, structure_detector, root_element)
    elif suffix in JSONL_FORMATS:
        table = _read_jsonl(data, structure_detector)
    elif suffix in XML_FORMATS:
        table = _read_xml(data, structure_detector, root_element)
    else:
        raise ImportFileError(f"Unhandled format: {suffix}", ErrorCode.INVALID_FILE_FORMAT)

    table.metadata["file_size"] = len(data)
    table.metadata["processing_time"] = round(time.perf_counter() - started, 4)
    return table


def read_stream(stream: BinaryIO, filename: str = "", **kwargs) -> RawTable:
    """Read a binary file-like object to completion, then parse it."""
    name = filename or getattr(stream, "name", "") or ""
    return read_bytes(stream.read(), str(name), **kwargs)


def load_file(path: Union[str, Path], **kwargs) -> RawTable:
    """
    Load any supported file from disk.

    Raises:
        FileNotFoundError  if the file does not exist.
        ImportFileError    (a ValueError) if the content is unusable.
        ImportError        if a required optional dependency is missing.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return read_bytes(path.read_bytes(), path.name, **kwargs)
