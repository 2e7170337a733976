"""Canonical records from the SGP backend's loosely shaped JSON.

Each backend version names and nests fields differently, so every field is
read through an ordered fallback chain: the first non-empty candidate wins,
otherwise a literal default is used. Nothing here performs I/O, and shape
mismatches never raise; only an explicit backend error field does.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from models.schemas import ConnectionSession, Contract, FiscalInvoice, Invoice, TrafficExtract
from tools.errors import DomainError
from tools.formatting import parse_date, to_float, to_int

DEFAULT_CUSTOMER_NAME = "Cliente"
DEFAULT_PLAN_NAME = "Plano Personalizado"
DEFAULT_CONTRACT_STATUS = "Ativo"
DEFAULT_ADDRESS_NUMBER = "S/N"
DEFAULT_INVOICE_DESCRIPTION = "Fatura Mensal"

# Display concatenation relies on this order.
PLAN_COMPONENTS = (
    ("planointernet", "planointernet_valor"),
    ("planotv", "planotv_valor"),
    ("planotelefonia", "planotelefonia_valor"),
    ("planomultimidia", "planomultimidia_valor"),
)
GENERIC_PLAN_KEYS = ("plano", "descricao_plano", "nome_plano", "pacote")
GENERIC_VALUE_KEYS = ("valor", "valor_mensal", "valor_contrato", "preco")


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _pick(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is None or value is False or value == "" or value == 0:
            continue
        return value
    return default


def _text(raw: Dict[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = raw.get(key)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        text = str(value).strip()
        if text:
            return text
    return default


def _by_date_desc(items: Iterable[Any], attr: str) -> List[Any]:
    # sorted() stays stable with reverse=True, so equal dates keep input order.
    return sorted(items, key=lambda item: parse_date(getattr(item, attr)) or datetime.min, reverse=True)


def raise_for_backend_error(payload: Any) -> None:
    if isinstance(payload, dict):
        message = _text(payload, "erro", "error")
        if message:
            raise DomainError(message)


def extract_contract_rows(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        data = _as_dict(payload.get("data"))
        if isinstance(data.get("contratos"), list):
            return [row for row in data["contratos"] if isinstance(row, dict)]
        if isinstance(payload.get("contratos"), list):
            return [row for row in payload["contratos"] if isinstance(row, dict)]
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    if isinstance(payload, dict):
        if payload.get("id_contrato") or payload.get("contrato"):
            return [payload]
        raise_for_backend_error(payload)
    return []


def normalize_contract(raw: Any, fallback_tax_id: str = "") -> Contract:
    item = _as_dict(raw)
    contract_id = _text(item, "contrato", "id_contrato", "id", "cod_contrato", default="0")

    address = item.get("endereco_instalacao")
    if not isinstance(address, dict):
        address = item if item.get("logradouro") else {}

    plan_parts: List[str] = []
    total_value = 0.0
    for name_key, value_key in PLAN_COMPONENTS:
        component = _text(item, name_key)
        if component:
            plan_parts.append(component)
            total_value += to_float(item.get(value_key))
    if not plan_parts:
        generic_plan = _text(item, *GENERIC_PLAN_KEYS)
        if generic_plan:
            plan_parts.append(generic_plan)
        if total_value == 0:
            total_value = to_float(_pick(item, *GENERIC_VALUE_KEYS, default=0))

    return Contract(
        contract_id=contract_id,
        customer_id=_text(item, "id_cliente", "cliente_id"),
        customer_name=_text(
            item, "razaosocial", "razao_social", "nome", "cliente", "nome_cliente", default=DEFAULT_CUSTOMER_NAME
        ),
        tax_id=_text(item, "cpfcnpj", "cnpj_cpf", "cpf", "cnpj", default=fallback_tax_id),
        status=_text(item, "status", "status_internet", "situacao", default=DEFAULT_CONTRACT_STATUS),
        registered_at=_text(item, "data_cadastro", "data_ativacao"),
        street=_text(address, "logradouro") or _text(item, "endereco", "rua", "endereco_res"),
        number=_text(address, "numero") or _text(item, "numero", "numero_res", default=DEFAULT_ADDRESS_NUMBER),
        district=_text(address, "bairro") or _text(item, "bairro", "bairro_res"),
        city=_text(address, "cidade") or _text(item, "cidade", "cidade_res"),
        state=_text(address, "uf") or _text(item, "estado", "uf_res"),
        zip_code=_text(address, "cep") or _text(item, "cep", "cep_res"),
        plan_name=" + ".join(plan_parts) or DEFAULT_PLAN_NAME,
        monthly_value=total_value,
    )


def normalize_contracts(payload: Any, fallback_tax_id: str = "") -> List[Contract]:
    return [normalize_contract(row, fallback_tax_id) for row in extract_contract_rows(payload)]


def extract_invoice_rows(payload: Any) -> List[Dict[str, Any]]:
    rows: Any = []
    data = _as_dict(payload).get("data")
    if isinstance(data, dict) and isinstance(data.get("faturas"), list):
        rows = data["faturas"]
    elif isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict) and isinstance(payload.get("titulos"), list):
        rows = payload["titulos"]
    elif isinstance(payload, dict) and isinstance(payload.get("faturas"), list):
        rows = payload["faturas"]
    return [row for row in rows if isinstance(row, dict)]


def normalize_invoice(raw: Any, position: int = 0) -> Invoice:
    item = _as_dict(raw)
    payment_date = _text(item, "data_pagamento", "pagamento") or None
    return Invoice(
        invoice_id=_text(item, "id", "id_titulo", "numero_documento", default=f"fatura-{position + 1}"),
        due_date=_text(item, "vencimento", "data_vencimento"),
        updated_due_date=_text(item, "vencimento_atualizado"),
        amount=to_float(_pick(item, "valor", "valor_titulo", "valor_total", default=0)),
        adjusted_amount=to_float(_pick(item, "valorcorrigido", "valor_corrigido", "valor", default=0)),
        paid_amount=to_float(_pick(item, "valor_pago", "pago", default=0)),
        payment_date=payment_date,
        status=_text(item, "status", "situacao") or ("Pago" if payment_date else "Aberto"),
        barcode_line=_text(item, "linhadigitavel", "linha_digitavel", "codigo_barra"),
        pix_code=_text(item, "codigopix", "qr_code_pix"),
        boleto_link=_text(item, "link_completo", "link", "url_imprimir", "url"),
        receipt_link=_text(item, "recibo", "link_recibo"),
        description=_text(item, "descricao", "historico", default=DEFAULT_INVOICE_DESCRIPTION),
    )


def normalize_invoices(payload: Any) -> List[Invoice]:
    invoices = [normalize_invoice(row, idx) for idx, row in enumerate(extract_invoice_rows(payload))]
    return _by_date_desc(invoices, "due_date")


def extract_fiscal_rows(payload: Any) -> List[Dict[str, Any]]:
    rows: Any = []
    if isinstance(payload, dict) and to_int(payload.get("status")) == 200 and isinstance(payload.get("data"), list):
        rows = payload["data"]
    elif isinstance(payload, list):
        rows = payload
    return [row for row in rows if isinstance(row, dict)]


def normalize_fiscal_invoice(raw: Any) -> FiscalInvoice:
    item = _as_dict(raw)
    return FiscalInvoice(
        number=_text(item, "numero"),
        series=_text(item, "serie"),
        issued_at=_text(item, "data_emissao"),
        total_value=to_float(_pick(item, "valortotal", "valor_total", default=0)),
        pdf_link=_text(item, "link"),
        company_name=_text(item, "empresa_razao_social"),
        status=_text(item, "status"),
        description=_text(item, "infcomp"),
    )


def normalize_fiscal_invoices(payload: Any) -> List[FiscalInvoice]:
    return _by_date_desc([normalize_fiscal_invoice(row) for row in extract_fiscal_rows(payload)], "issued_at")


def normalize_traffic(payload: Any, contract_id: str, month: int, year: int) -> Optional[TrafficExtract]:
    if not isinstance(payload, dict) or to_int(payload.get("status")) != 200:
        return None
    data = payload.get("data")
    if not data:
        return None
    if not isinstance(data, dict):
        data = {"registros": data}
    return TrafficExtract(contract_id=str(contract_id), month=int(month), year=int(year), data=data)


def extract_service_rows(payload: Any) -> List[Dict[str, Any]]:
    rows: Any = None
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(payload.get("result"), list):
            rows = payload["result"]
        elif isinstance(data, dict) and isinstance(data.get("result"), list):
            rows = data["result"]
        elif isinstance(data, list):
            rows = data
        else:
            raise_for_backend_error(payload)
    elif isinstance(payload, list):
        rows = payload
    return [row for row in rows or [] if isinstance(row, dict)]


def pick_best_session(sessions: Any) -> Dict[str, Any]:
    """Open session (no stop time) if any, else the first one, else empty."""
    candidates = [s for s in sessions if isinstance(s, dict)] if isinstance(sessions, list) else []
    for session in candidates:
        if not session.get("acctstoptime"):
            return session
    return candidates[0] if candidates else {}


def _is_online(value: Any) -> bool:
    return value is True or str(value).strip().lower() == "true"


def normalize_connection_session(raw: Any) -> ConnectionSession:
    service = _as_dict(raw)
    best = pick_best_session(service.get("radacct"))
    return ConnectionSession(
        username=_text(best, "username") or _text(service, "pppoe_login"),
        pppoe_login=_text(service, "pppoe_login"),
        online=_is_online(service.get("online")),
        ip=_text(service, "ip") or _text(best, "framedipaddress"),
        framed_ip=_text(best, "framedipaddress") or _text(service, "ip"),
        nas_ip=_text(best, "nasipaddress"),
        mac=_text(best, "callingstationid"),
        session_start=_text(best, "acctstarttime"),
        session_stop=_text(best, "acctstoptime") or None,
        input_octets=to_int(best.get("acctinputoctets")),
        output_octets=to_int(best.get("acctoutputoctets")),
        terminate_cause=_text(best, "acctterminatecause") or None,
        session_id=_text(best, "acctsessionid"),
        plan_name=_text(service, "plano"),
        street=_text(service, "endereco_logradouro"),
    )


def normalize_connection_sessions(payload: Any) -> List[ConnectionSession]:
    return [normalize_connection_session(row) for row in extract_service_rows(payload)]
