"""
template.py — Import template and records export.

The header row comes from fields.TEMPLATE_COLUMNS, the same list that seeds
the header mapper's aliases, so an exported file always re-imports with
full mapping confidence.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import openpyxl
import pandas as pd
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from budget_import.coercion import format_currency
from budget_import.fields import BOOLEAN_FIELDS, PRICE_FIELDS, REQUIRED_FIELDS, TEMPLATE_COLUMNS, TEMPLATE_HEADERS

TEMPLATE_DELIMITER = ";"
UTF8_BOM = "\ufeff"

EXAMPLE_ROWS = [
    {
        "device_type": "Smartphone",
        "device_model": "iPhone 12",
        "part_quality": "Original",
        "issue": "Troca de tela",
        "part_type": "Tela",
        "notes": "Cliente trouxe sem capa",
        "total_price": "350.00",
        "cash_price": "330.00",
        "installment_price": "",
        "installments": "1",
        "payment_condition": "À Vista",
        "warranty_months": "3",
        "validity_days": "15",
        "valid_until": "",
        "includes_delivery": "nao",
        "includes_screen_protector": "sim",
        "client_name": "Maria Silva",
        "client_phone": "(11) 98765-4321",
    },
    {
        "device_type": "Tablet",
        "device_model": "iPad 9",
        "part_quality": "Paralela",
        "issue": "Troca de bateria",
        "part_type": "Bateria",
        "notes": "",
        "total_price": "480.00",
        "cash_price": "450.00",
        "installment_price": "160.00",
        "installments": "3",
        "payment_condition": "Cartão de Crédito em 3x de R$ 160,00",
        "warranty_months": "6",
        "validity_days": "15",
        "valid_until": "",
        "includes_delivery": "sim",
        "includes_screen_protector": "nao",
        "client_name": "João Souza",
        "client_phone": "(21) 3456-7890",
    },
]

HEADER_COLOR = "1F4E78"
REQUIRED_HEADER_COLOR = "C00000"
FILL_EXAMPLE = PatternFill("solid", fgColor="F2F2F2")   # light grey


# ══════════════════════════════════════════════════════════════════════════════
# CSV
# ══════════════════════════════════════════════════════════════════════════════

def _to_csv(rows: list[dict[str, str]], include_bom: bool) -> str:
    frame = pd.DataFrame(
        [[row.get(field, "") for _, field in TEMPLATE_COLUMNS] for row in rows],
        columns=TEMPLATE_HEADERS,
        dtype=str,
    )
    text = frame.to_csv(sep=TEMPLATE_DELIMITER, index=False, lineterminator="\n")
    return (UTF8_BOM if include_bom else "") + text


def build_template_csv(include_examples: bool = True, include_bom: bool = True) -> str:
    """UTF-8 (with BOM) CSV text: the template header row plus example rows."""
    return _to_csv(EXAMPLE_ROWS if include_examples else [], include_bom)


def _export_value(field: str, value: Any) -> str:
    if value is None:
        return ""
    if field in PRICE_FIELDS:
        return format_currency(value)
    if field in BOOLEAN_FIELDS:
        return "sim" if value else "nao"
    return str(value)


def export_records_csv(records: Iterable[Mapping[str, Any]], include_bom: bool = True) -> str:
    """
    Write persistence records back in the template layout: prices in major
    units with two decimals, booleans as sim/nao, dates as ISO strings.
    """
    rows = [
        {field: _export_value(field, record.get(field)) for _, field in TEMPLATE_COLUMNS}
        for record in records
    ]
    return _to_csv(rows, include_bom)


def write_template_csv(path: Path, include_examples: bool = True) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_template_csv(include_examples), encoding="utf-8")
    return path


# ══════════════════════════════════════════════════════════════════════════════
# XLSX
# ══════════════════════════════════════════════════════════════════════════════

def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 45) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1:]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _style_header(ws, col_widths: list[int]) -> None:
    """Bold white header, required columns in red, frozen first row."""
    for cell in ws[1]:
        field = dict(TEMPLATE_COLUMNS).get(cell.value)
        color = REQUIRED_HEADER_COLOR if field in REQUIRED_FIELDS else HEADER_COLOR
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = PatternFill("solid", fgColor=color)
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def build_template_workbook(include_examples: bool = True) -> openpyxl.Workbook:
    wb = openpyxl.Workbook()

    # ── Sheet 1 — Orcamentos ─────────────────────────────────────────────
    ws = wb.active
    ws.title = "Orcamentos"
    rows_for_width: list[list] = [list(TEMPLATE_HEADERS)]
    ws.append(TEMPLATE_HEADERS)
    for example in EXAMPLE_ROWS if include_examples else []:
        row_out = [example.get(field, "") for _, field in TEMPLATE_COLUMNS]
        ws.append(row_out)
        rows_for_width.append(row_out)
        for cell in ws[ws.max_row]:
            cell.fill = FILL_EXAMPLE
    _style_header(ws, _infer_col_widths(rows_for_width))

    # ── Sheet 2 — Instrucoes ─────────────────────────────────────────────
    notes = wb.create_sheet("Instrucoes")
    notes.append(["Coluna", "Obrigatoria", "Formato"])
    for header, field in TEMPLATE_COLUMNS:
        if field in PRICE_FIELDS:
            fmt = "valor em reais, ex. 350,00 ou 350.00"
        elif field in BOOLEAN_FIELDS:
            fmt = "sim / nao"
        elif field == "valid_until":
            fmt = "data, ex. 2026-10-31 ou 31/10/2026"
        elif field in ("installments", "warranty_months", "validity_days"):
            fmt = "numero inteiro"
        else:
            fmt = "texto"
        notes.append([header, "sim" if field in REQUIRED_FIELDS else "nao", fmt])
    notes["A1"].font = Font(bold=True)
    notes["B1"].font = Font(bold=True)
    notes["C1"].font = Font(bold=True)
    notes.freeze_panes = "A2"
    notes.column_dimensions["A"].width = 24
    notes.column_dimensions["B"].width = 12
    notes.column_dimensions["C"].width = 40
    return wb


def write_template_xlsx(path: Path, include_examples: bool = True) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    build_template_workbook(include_examples).save(path)
    return path


def template_bytes(fmt: str = "csv", include_examples: bool = True) -> bytes:
    if fmt == "csv":
        return build_template_csv(include_examples).encode("utf-8")
    if fmt == "xlsx":
        buffer = io.BytesIO()
        build_template_workbook(include_examples).save(buffer)
        return buffer.getvalue()
    raise ValueError(f"Unknown template format '{fmt}'. Expected csv or xlsx")


def write_template(path: Path, fmt: Optional[str] = None, include_examples: bool = True) -> Path:
    """Write the template; the format defaults to the path's suffix."""
    path = Path(path)
    fmt = fmt or (path.suffix.lstrip(".").lower() or "csv")
    if fmt == "xlsx":
        return write_template_xlsx(path, include_examples)
    if fmt == "csv":
        return write_template_csv(path, include_examples)
    raise ValueError(f"Unknown template format '{fmt}'. Expected csv or xlsx")
