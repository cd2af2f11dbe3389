#!/usr/bin/env python3
"""
generate_messy_budgets.py

Generates two files for manual smoke runs of budget-import:

  sample-data/messy_budgets.csv   — a semicolon export from an old shop system,
                                    re-saved in Excel by two different people
  sample-data/messy_budgets.xlsx  — the same kind of data in a workbook with a
                                    title row above the header and an extra sheet

Run: python sample-data/generate_messy_budgets.py
Then: budget-import preview sample-data/messy_budgets.csv
"""

from pathlib import Path

import openpyxl

HERE = Path(__file__).parent
OUT_CSV = HERE / "messy_budgets.csv"
OUT_XLSX = HERE / "messy_budgets.xlsx"

# ── encoding helpers ─────────────────────────────────────────────────────
def L(s):
    """Encode string as Latin-1 bytes (what Excel on Windows writes)."""
    return s.encode("latin-1")

def U(s):
    """Encode string as UTF-8 bytes."""
    return s.encode("utf-8")

BOM = b"\xef\xbb\xbf"

lines = []

# Title line above the header (system export artifact)
lines.append(BOM + U("Relatório de Orçamentos;;;;;;\r\n"))

# Header: accented, mixed case, one alias per column
lines.append(U("Modelo;Preço Total;Qtd Parcelas;Garantia;Cliente;Telefone;Entrega;Validade\r\n"))

# ── clean rows ───────────────────────────────────────────────────────────
lines.append(U("iPhone 12;R$ 350,00;1;3;Maria Silva;11987654321;sim;15\r\n"))
lines.append(U("Galaxy S21;1.234,56;3;6;João Souza;(21) 3456-7890;não;30\r\n"))
lines.append(U("iPad 9;480.00;2;3;Ana Lima;21 99876 5432;true;\r\n"))

# ── latin-1 row saved by a second person ─────────────────────────────────
lines.append(L("Moto G8;150,00;1;3;José Araújo;1133334444;nao;10\r\n"))

# ── problem rows ─────────────────────────────────────────────────────────
lines.append(U(";200,00;1;3;Sem Modelo;11911112222;sim;15\r\n"))            # missing model
lines.append(U("Redmi Note 10;-80,00;1;3;Preço Negativo;11922223333;;15\r\n"))  # negative price
lines.append(U("MacBook Air;2.899,90;0;-2;Carlos;119;sim;15\r\n"))            # 0 installments, bad warranty
lines.append(U("Apple Watch;abc;1;3;Texto no Preço;;;\r\n"))                  # price not a number
lines.append(U("Xiaomi 11;95,00;30;72;Parcelas Demais;11955556666;sim;15\r\n"))  # warnings only

# blank line in the middle of the export
lines.append(b";;;;;;;\r\n")
lines.append(U("LG K62;;1;3;Sem Preço;;;\r\n"))                               # missing price

OUT_CSV.write_bytes(b"".join(lines))
print(f"Created: {OUT_CSV}")

# ── Workbook ─────────────────────────────────────────────────────────────
wb = openpyxl.Workbook()
ws = wb.active
ws.title = "Orcamentos"
ws.append(["Orçamentos de Outubro"])
ws.append([])
ws.append(["Aparelho", "Valor", "Parcelas", "Garantia (meses)", "Nome do Cliente", "Whatsapp", "Valido Ate"])
ws.append(["iPhone 13", 899.9, 3, 3, "Pedro", "11987651234", "2026-11-30"])
ws.append(["Galaxy A52", "420,00", 1, 3, "Luiza", "(11) 3222-1111", "30/11/2026"])
ws.append(["iPad Pro", 1500, 6, 12, "Rafael", "21999990000", "10 de dezembro de 2026"])
ws.append(["Moto E7", "", 1, 3, "Sem Preço", "", ""])
ws.append(["Notebook Dell", 2500, 10, 3, "Bianca", "1140044004", "31/02/2026"])   # impossible date

ws_notes = wb.create_sheet("Notas")
ws_notes.append(["Observação", "Autor"])
ws_notes.append(["Preços conferidos em 01/10", "Gerência"])

wb.save(OUT_XLSX)
print(f"Created: {OUT_XLSX}")
