from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import pytest

from agents.llm_runtime import LLMError, LLMTurn
from compliance.audit_logger import AuditLogger
from models.schemas import ConnectionSession, Contract, Invoice, SessionCredentials, ToolCall, TrafficExtract
from tools.errors import AuthError, SGPError, TransportError

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


class FakeGateway:
    """In-memory stand-in for ExternalApiGateway that records every call."""

    def __init__(
        self,
        contracts: Optional[List[Contract]] = None,
        invoices: Optional[List[Invoice]] = None,
        sessions: Optional[List[ConnectionSession]] = None,
        traffic: Optional[TrafficExtract] = None,
        failing: Sequence[str] = (),
    ) -> None:
        self.contracts = contracts if contracts is not None else []
        self.invoices = invoices or []
        self.sessions = sessions or []
        self.traffic = traffic
        self.failing = set(failing)
        self.calls: List[tuple] = []

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        if operation in self.failing:
            raise TransportError(f"{operation}: HTTP 503 Service Unavailable")

    def called(self, operation: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == operation]

    async def authenticate(self, tax_id, password):
        self._record("authenticate", tax_id, password)
        if not self.contracts:
            raise AuthError("no contracts found for these credentials")
        return list(self.contracts)

    async def fetch_invoices(self, tax_id, password, contract_id):
        self._record("fetch_invoices", tax_id, password, contract_id)
        return list(self.invoices)

    async def list_invoices(self, tax_id, password, contract_id):
        try:
            return await self.fetch_invoices(tax_id, password, contract_id)
        except SGPError:
            return []

    async def list_fiscal_invoices(self, contract_id):
        self._record("list_fiscal_invoices", contract_id)
        return []

    async def fetch_traffic(self, tax_id, password, contract_id, month, year):
        self._record("fetch_traffic", tax_id, password, contract_id, month, year)
        return self.traffic

    async def list_connection_sessions(self, tax_id, password=None, contract_id=None):
        self._record("list_connection_sessions", tax_id, password, contract_id)
        return list(self.sessions)

    async def request_trust_unlock(self, tax_id, password, contract_id):
        self._record("request_trust_unlock", tax_id, password, contract_id)
        return {"liberado": True, "msg": "Liberado por 3 dias"}

    async def open_ticket(self, tax_id, password, contract_id, description, contact_name, contact_phone, category_id):
        self._record(
            "open_ticket", tax_id, password, contract_id, description, contact_name, contact_phone, category_id
        )
        return {"status": 1, "chamado": 5521}


class ScriptedLLM:
    """Model capability that replays prepared turns and records each request."""

    provider = "scripted"
    model = "scripted-1"

    def __init__(self, turns: Sequence[Any] = (), is_available: bool = True) -> None:
        self.turns = list(turns)
        self.is_available = is_available
        self.requests: List[Dict[str, Any]] = []

    def available(self) -> bool:
        return self.is_available

    async def generate_turn(self, system_prompt, history, message, tools=(), exchange=None):
        self.requests.append(
            {
                "system_prompt": system_prompt,
                "history": list(history),
                "message": message,
                "tools": [t.name for t in tools],
                "exchange": exchange,
            }
        )
        if not self.turns:
            raise LLMError("no scripted turn left")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn


def llm_turn(text: str = "", calls: Sequence[tuple] = ()) -> LLMTurn:
    tool_calls = [ToolCall(call_id=f"call_{i}", name=name, args=args) for i, (name, args) in enumerate(calls)]
    return LLMTurn(text=text, tool_calls=tool_calls, provider="scripted", model="scripted-1", raw={})


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest.fixture
def make_turn():
    return llm_turn


@pytest.fixture
def fixed_now():
    return datetime(2024, 4, 1, 10, 30, tzinfo=SAO_PAULO)


@pytest.fixture
def contract() -> Contract:
    return Contract(
        contract_id="1001",
        customer_id="77",
        customer_name="MARIA DA SILVA",
        tax_id="123.456.789-00",
        status="Ativo",
        street="Rua das Flores",
        number="120",
        district="Centro",
        city="Natal",
        state="RN",
        zip_code="59000-000",
        plan_name="Fibra 500MB",
        monthly_value=99.9,
    )


@pytest.fixture
def credentials() -> SessionCredentials:
    return SessionCredentials(tax_id="123.456.789-00", password="segredo", contract_id="1001")


@pytest.fixture
def audit_logger(tmp_path) -> AuditLogger:
    return AuditLogger(path=str(tmp_path / "audit.log.jsonl"))


@pytest.fixture
def invoices() -> List[Invoice]:
    return [
        Invoice(invoice_id="3", due_date="2024-04-10", amount=99.9, status="Aberto", pix_code="PIX-3", barcode_line="L3"),
        Invoice(invoice_id="2", due_date="2024-03-05", amount=99.9, status="Aberto", pix_code="PIX-2", barcode_line="L2"),
        Invoice(invoice_id="1", due_date="2024-02-05", amount=99.9, status="pago", payment_date="2024-02-04"),
    ]


@pytest.fixture
def sessions() -> List[ConnectionSession]:
    return [
        ConnectionSession(
            pppoe_login="maria.fibra",
            username="maria.fibra",
            online=True,
            ip="100.64.10.2",
            mac="AA:BB:CC:DD:EE:FF",
            session_start="2024-04-01 08:00:00",
            input_octets=536870912,
            output_octets=1073741824,
            plan_name="Fibra 500MB",
            street="Rua das Flores",
        )
    ]
