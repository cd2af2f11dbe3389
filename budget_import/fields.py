"""
Canonical budget fields, the import template's column list and the header
alias tables.

TEMPLATE_COLUMNS is the single source for both the exported template header
row and the first alias of every field, so an exported file always maps back
with full confidence.
"""

from __future__ import annotations

# (template header, canonical field), in template order
TEMPLATE_COLUMNS = [
    ("Tipo Aparelho", "device_type"),
    ("Modelo Aparelho", "device_model"),
    ("Qualidade", "part_quality"),
    ("Servico Realizado", "issue"),
    ("Tipo Peca", "part_type"),
    ("Observacoes", "notes"),
    ("Preco Total", "total_price"),
    ("Preco a Vista", "cash_price"),
    ("Preco Parcelado", "installment_price"),
    ("Parcelas", "installments"),
    ("Metodo de Pagamento", "payment_condition"),
    ("Garantia (meses)", "warranty_months"),
    ("Validade (dias)", "validity_days"),
    ("Valido Ate", "valid_until"),
    ("Inclui Entrega", "includes_delivery"),
    ("Inclui Pelicula", "includes_screen_protector"),
    ("Nome do Cliente", "client_name"),
    ("Telefone do Cliente", "client_phone"),
]

TEMPLATE_HEADERS = [header for header, _ in TEMPLATE_COLUMNS]
TEMPLATE_FIELD_BY_HEADER = dict(TEMPLATE_COLUMNS)
TEMPLATE_HEADER_BY_FIELD = {field: header for header, field in TEMPLATE_COLUMNS}

REQUIRED_FIELDS = ("device_model", "total_price")

PRICE_FIELDS = ("total_price", "cash_price", "installment_price")
BOOLEAN_FIELDS = ("includes_delivery", "includes_screen_protector")

# Evaluation order matters: on equal scores the earlier field wins.
_EXTRA_BUDGET_ALIASES = {
    "device_type": ["tipo", "type", "categoria", "device type", "tipo de aparelho", "tipo do aparelho"],
    "device_model": ["modelo", "model", "device", "aparelho", "device model", "modelo do aparelho", "equipamento"],
    "part_quality": ["quality", "grade", "qualidade da peca", "part quality"],
    "issue": ["servico", "problema", "issue", "defeito", "service", "reparo", "descricao do servico"],
    "part_type": ["tipo de peca", "peca", "part type", "part"],
    "notes": ["obs", "observacao", "notes", "notas", "comentarios", "comments"],
    "total_price": ["preco", "price", "valor", "total", "valor total", "total price"],
    "cash_price": ["preco avista", "a vista", "cash price", "valor a vista"],
    "installment_price": ["valor parcelado", "installment price", "valor parcela", "preco parcela"],
    "installments": ["installments", "numero de parcelas", "qtd parcelas", "vezes"],
    "payment_condition": ["metodo pagamento", "pagamento", "payment", "condicao", "forma de pagamento", "payment condition"],
    "warranty_months": ["garantia", "warranty", "meses de garantia", "warranty months"],
    "validity_days": ["validade", "validity", "dias de validade", "validity days"],
    "valid_until": ["valid until", "data de validade", "vencimento", "expira em", "expires at"],
    "includes_delivery": ["entrega", "delivery", "includes delivery"],
    "includes_screen_protector": ["pelicula", "screen protector", "includes screen protector"],
    "client_name": ["cliente", "client", "nome", "name", "client name", "customer"],
    "client_phone": ["telefone", "phone", "celular", "tel", "whatsapp", "client phone"],
    "status": ["status", "situacao"],
    "workflow_status": ["status do fluxo", "workflow", "workflow status", "etapa"],
}

CANONICAL_FIELDS = list(_EXTRA_BUDGET_ALIASES)


def _build_aliases() -> dict[str, list[str]]:
    aliases: dict[str, list[str]] = {}
    for field in CANONICAL_FIELDS:
        names = []
        if field in TEMPLATE_HEADER_BY_FIELD:
            names.append(TEMPLATE_HEADER_BY_FIELD[field])
        names.append(field)
        names.extend(_EXTRA_BUDGET_ALIASES[field])
        aliases[field] = names
    return aliases


BUDGET_FIELD_ALIASES = _build_aliases()

CLIENT_FIELD_ALIASES = {
    "name": ["nome", "name", "cliente"],
    "phone": ["telefone", "phone", "celular"],
    "email": ["email", "e-mail", "mail"],
    "address": ["endereco", "address", "rua"],
    "city": ["cidade", "city"],
    "state": ["estado", "state", "uf"],
}

FIELD_ALIASES_BY_FILE_TYPE = {
    "clients": CLIENT_FIELD_ALIASES,
}


def aliases_for(file_type: str) -> dict[str, list[str]]:
    return FIELD_ALIASES_BY_FILE_TYPE.get(file_type, BUDGET_FIELD_ALIASES)
