from __future__ import annotations

import asyncio
import json
import re
from typing import Dict, List

import httpx
import pytest

from tools.errors import AuthError, DomainError, TransportError
from tools.sgp_gateway import ExternalApiGateway

BASE_URL = "https://sgp.test/api/central"
RADIUS_URL = "https://sgp.test/ws/radius/radacct/list/all/"
TICKET_URL = "https://sgp.test/api/ura/chamado/"


def _form_fields(request: httpx.Request) -> Dict[str, str]:
    body = request.content
    return {
        name.decode(): value.decode()
        for name, value in re.findall(rb'name="([^"]+)"\r\n\r\n(.*?)\r\n', body, flags=re.S)
    }


def _gateway(handler, seen: List[httpx.Request]) -> ExternalApiGateway:
    def _recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return ExternalApiGateway(
        base_url=BASE_URL,
        radius_url=RADIUS_URL,
        ticket_url=TICKET_URL,
        app_name="portal",
        app_token="tok-1",
        timeout_seconds=5,
        transport=httpx.MockTransport(_recording),
    )


def test_authenticate_posts_form_and_normalizes_contracts():
    seen: List[httpx.Request] = []
    gateway = _gateway(
        lambda r: httpx.Response(200, json={"contratos": [{"contrato": 1001, "razaosocial": "MARIA"}]}), seen
    )

    contracts = asyncio.run(gateway.authenticate("123.456.789-00", "segredo"))

    assert [c.contract_id for c in contracts] == ["1001"]
    assert contracts[0].tax_id == "123.456.789-00"
    assert str(seen[0].url) == f"{BASE_URL}/contratos"
    assert _form_fields(seen[0]) == {"cpfcnpj": "123.456.789-00", "senha": "segredo"}


def test_authenticate_without_contracts_is_auth_error():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"contratos": []}), seen)
    with pytest.raises(AuthError):
        asyncio.run(gateway.authenticate("1", "x"))


def test_authenticate_backend_error_field_is_domain_error():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"erro": "CPF não encontrado"}), seen)
    with pytest.raises(DomainError, match="CPF não encontrado"):
        asyncio.run(gateway.authenticate("1", "x"))


def test_http_failure_is_transport_error_with_status():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(500, text="boom"), seen)
    with pytest.raises(TransportError, match="500"):
        asyncio.run(gateway.authenticate("1", "x"))


def test_network_failure_is_transport_error():
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    seen: List[httpx.Request] = []
    gateway = _gateway(_refuse, seen)
    with pytest.raises(TransportError):
        asyncio.run(gateway.request_trust_unlock("1", "x", "1001"))


def test_list_invoices_soft_fails():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(500), seen)

    assert asyncio.run(gateway.list_invoices("1", "x", "0")) == []
    assert asyncio.run(gateway.list_invoices("1", "x", None)) == []
    assert seen == []

    assert asyncio.run(gateway.list_invoices("1", "x", "1001")) == []
    assert str(seen[0].url) == f"{BASE_URL}/titulos/"


def test_list_invoices_sends_contract_and_sorts():
    seen: List[httpx.Request] = []
    payload = {"titulos": [{"id": "1", "vencimento": "2024-01-05"}, {"id": "2", "vencimento": "2024-02-05"}]}
    gateway = _gateway(lambda r: httpx.Response(200, json=payload), seen)

    invoices = asyncio.run(gateway.list_invoices("1", "x", 1001))

    assert [i.invoice_id for i in invoices] == ["2", "1"]
    assert _form_fields(seen[0])["contrato"] == "1001"


def test_fetch_traffic_zero_pads_month():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"status": 200, "data": {"total": "3 GB"}}), seen)

    extract = asyncio.run(gateway.fetch_traffic("1", "x", "1001", 3, 2024))

    assert extract.data == {"total": "3 GB"}
    fields = _form_fields(seen[0])
    assert fields["mes"] == "03"
    assert fields["ano"] == "2024"
    assert str(seen[0].url) == f"{BASE_URL}/extratouso/"


def test_fetch_traffic_unavailable_is_none():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(503), seen)
    assert asyncio.run(gateway.fetch_traffic("1", "x", "1001", 12, 2023)) is None


def test_fiscal_invoices_use_service_token():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"status": 200, "data": [{"numero": "9"}]}), seen)

    rows = asyncio.run(gateway.list_fiscal_invoices("1001"))

    assert [r.number for r in rows] == ["9"]
    assert _form_fields(seen[0]) == {"app": "portal", "token": "tok-1", "contrato": "1001"}


def test_connection_sessions_send_json_with_digits_only_tax_id():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"result": [{"pppoe_login": "maria", "online": True}]}), seen)

    sessions = asyncio.run(gateway.list_connection_sessions("123.456.789-00"))

    assert sessions[0].pppoe_login == "maria"
    assert str(seen[0].url) == RADIUS_URL
    assert json.loads(seen[0].content) == {
        "app": "portal",
        "token": "tok-1",
        "tipoconexao": "ppp",
        "cpfcnpj": "12345678900",
    }


def test_open_ticket_body():
    seen: List[httpx.Request] = []
    gateway = _gateway(lambda r: httpx.Response(200, json={"status": 1, "chamado": 77}), seen)

    result = asyncio.run(
        gateway.open_ticket("1", None, "1001", "Sem sinal desde ontem", "Ana", "84999990000", "200")
    )

    assert result == {"status": 1, "chamado": 77}
    body = json.loads(seen[0].content)
    assert str(seen[0].url) == TICKET_URL
    assert body["contrato"] == "1001"
    assert body["ocorrenciatipo"] == "200"
    assert body["conteudo"] == "Sem sinal desde ontem"
    assert body["observacao"] == "Contato: Ana | Tel: 84999990000"
    assert body["notificar_cliente"] == 1


def test_trust_unlock_passes_verdict_through():
    seen: List[httpx.Request] = []
    verdict = {"liberado": False, "msg": "Limite de desbloqueios atingido"}
    gateway = _gateway(lambda r: httpx.Response(200, json=verdict), seen)

    assert asyncio.run(gateway.request_trust_unlock("1", "x", "1001")) == verdict
    assert str(seen[0].url) == f"{BASE_URL}/promessapagamento/"


def test_fetch_invoices_raises_while_list_invoices_soft_fails():
    seen: List[httpx.Request] = []
    down = _gateway(lambda r: httpx.Response(503), seen)
    with pytest.raises(TransportError, match="503"):
        asyncio.run(down.fetch_invoices("1", "x", "1001"))
    assert asyncio.run(down.list_invoices("1", "x", "1001")) == []

    rejected = _gateway(lambda r: httpx.Response(200, json={"erro": "Contrato inválido"}), seen)
    with pytest.raises(DomainError, match="Contrato inválido"):
        asyncio.run(rejected.fetch_invoices("1", "x", "1001"))
    assert asyncio.run(rejected.list_invoices("1", "x", "1001")) == []

    assert asyncio.run(down.fetch_invoices("1", "x", "0")) == []
