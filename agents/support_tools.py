from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, ValidationError, field_validator

from agents.llm_runtime import ToolSpec
from models.schemas import Contract, SessionCredentials, ToolCall
from settings import SETTINGS
from tools.connection_matcher import match_connection
from tools.errors import ToolExecutionError
from tools.formatting import bytes_to_gb, format_currency, format_date, format_datetime
from tools.sgp_gateway import ExternalApiGateway

NO_OPEN_INVOICES = "Nenhuma fatura em aberto encontrada."
NO_CONNECTION_FOUND = "Nenhuma conexão encontrada para este contrato."
MISSING_PASSWORD = "Senha do cliente não disponível nesta sessão. Não é possível executar a consulta."
MISSING_CONTRACT = "ID do contrato não identificado na sessão."

TICKET_CATEGORIES: Dict[str, str] = {
    "13": "Mudança de Endereço",
    "23": "Mudança de Plano",
    "3": "Mudança de senha do Wi-Fi",
    "206": "Mudança de Titular",
    "4": "Novo ponto",
    "40": "Ativação de Streaming",
    "22": "Problema na fatura",
    "14": "Relocação do Roteador",
    "200": "Reparo",
}


class ToolName(str, Enum):
    OPEN_SUPPORT_TICKET = "openSupportTicket"
    UNLOCK_TRUST = "unlockTrust"
    CHECK_INVOICES = "checkInvoices"
    CHECK_CONNECTION = "checkConnection"
    CHECK_TRAFFIC = "checkTraffic"


SIDE_EFFECT_TOOLS = {ToolName.OPEN_SUPPORT_TICKET.value, ToolName.UNLOCK_TRUST.value}


# Requests carry only domain arguments; identity fields sent by the model are dropped.
class OpenSupportTicket(BaseModel):
    description: str = Field(min_length=1)
    contact_name: str = ""
    contact_phone: str = Field(min_length=1)
    category_id: str = Field(min_length=1)

    @field_validator("category_id", "contact_phone", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value) if isinstance(value, (int, float)) else value


class UnlockTrust(BaseModel):
    pass


class CheckInvoices(BaseModel):
    pass


class CheckConnection(BaseModel):
    pass


class CheckTraffic(BaseModel):
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=2000, le=2100)


ToolRequest = Union[OpenSupportTicket, UnlockTrust, CheckInvoices, CheckConnection, CheckTraffic]

TOOL_REQUESTS: Dict[str, Type[BaseModel]] = {
    ToolName.OPEN_SUPPORT_TICKET.value: OpenSupportTicket,
    ToolName.UNLOCK_TRUST.value: UnlockTrust,
    ToolName.CHECK_INVOICES.value: CheckInvoices,
    ToolName.CHECK_CONNECTION.value: CheckConnection,
    ToolName.CHECK_TRAFFIC.value: CheckTraffic,
}

_NO_ARGS = {"type": "object", "properties": {}}

TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        name=ToolName.OPEN_SUPPORT_TICKET.value,
        description="Abre um chamado técnico ou solicitação para o provedor quando o problema não pode ser resolvido no chat.",
        parameters={
            "type": "object",
            "properties": {
                "description": {"type": "string", "description": "Descrição detalhada do problema ou solicitação."},
                "contact_name": {"type": "string", "description": "Nome da pessoa para contato."},
                "contact_phone": {"type": "string", "description": "Telefone para contato (obrigatório)."},
                "category_id": {
                    "type": "string",
                    "description": "ID do tipo de ocorrência: "
                    + ", ".join(f"{key}={label}" for key, label in TICKET_CATEGORIES.items()),
                },
            },
            "required": ["description", "contact_name", "contact_phone", "category_id"],
        },
    ),
    ToolSpec(
        name=ToolName.UNLOCK_TRUST.value,
        description="Desbloqueio de confiança: libera a internet temporariamente (3 dias) para contratos reduzidos ou suspensos.",
        parameters=dict(_NO_ARGS),
    ),
    ToolSpec(
        name=ToolName.CHECK_INVOICES.value,
        description="Consulta faturas em aberto, valores, vencimentos, código Pix e linha digitável.",
        parameters=dict(_NO_ARGS),
    ),
    ToolSpec(
        name=ToolName.CHECK_CONNECTION.value,
        description="Verifica o status técnico atual da conexão (online/offline), IP, login e consumo da sessão.",
        parameters=dict(_NO_ARGS),
    ),
    ToolSpec(
        name=ToolName.CHECK_TRAFFIC.value,
        description="Consulta o consumo de internet (download/upload) de um mês. Sem parâmetros, usa o mês atual.",
        parameters={
            "type": "object",
            "properties": {
                "month": {"type": "integer", "description": "Mês numérico (1-12)."},
                "year": {"type": "integer", "description": "Ano com 4 dígitos."},
            },
        },
    ),
]


def parse_tool_call(call: ToolCall) -> ToolRequest:
    request_type = TOOL_REQUESTS.get(call.name)
    if request_type is None:
        raise ToolExecutionError(f"Ferramenta não implementada: {call.name}")
    try:
        return request_type.model_validate(call.args or {})
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ToolExecutionError(f"Argumentos inválidos para {call.name}: {fields}") from exc


class SupportToolbox:
    """Executes model tool requests against the gateway with session credentials."""

    def __init__(
        self,
        gateway: ExternalApiGateway,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.timezone = ZoneInfo(timezone or SETTINGS.support_timezone)
        self._clock = clock

    def declarations(self) -> List[ToolSpec]:
        return list(TOOL_SPECS)

    def now(self) -> datetime:
        return self._clock() if self._clock is not None else datetime.now(self.timezone)

    async def execute(self, call: ToolCall, contract: Contract, credentials: SessionCredentials) -> Any:
        request = parse_tool_call(call)
        if isinstance(request, OpenSupportTicket):
            return await self.open_support_ticket(request, credentials)
        if isinstance(request, UnlockTrust):
            return await self.unlock_trust(credentials)
        if isinstance(request, CheckInvoices):
            return await self.check_invoices(credentials)
        if isinstance(request, CheckConnection):
            return await self.check_connection(contract, credentials)
        if isinstance(request, CheckTraffic):
            return await self.check_traffic(request, credentials)
        raise ToolExecutionError(f"Ferramenta não implementada: {call.name}")

    def _require_password(self, credentials: SessionCredentials) -> str:
        if not credentials.password:
            raise ToolExecutionError(MISSING_PASSWORD)
        return credentials.password

    def _require_contract(self, credentials: SessionCredentials) -> str:
        if not credentials.contract_id or credentials.contract_id == "0":
            raise ToolExecutionError(MISSING_CONTRACT)
        return credentials.contract_id

    async def open_support_ticket(self, request: OpenSupportTicket, credentials: SessionCredentials) -> Any:
        contract_id = self._require_contract(credentials)
        return await self.gateway.open_ticket(
            credentials.tax_id,
            credentials.password,
            contract_id,
            request.description,
            request.contact_name,
            request.contact_phone,
            request.category_id,
        )

    async def unlock_trust(self, credentials: SessionCredentials) -> Any:
        password = self._require_password(credentials)
        contract_id = self._require_contract(credentials)
        return await self.gateway.request_trust_unlock(credentials.tax_id, password, contract_id)

    async def check_invoices(self, credentials: SessionCredentials) -> Any:
        password = self._require_password(credentials)
        contract_id = self._require_contract(credentials)
        invoices = await self.gateway.fetch_invoices(credentials.tax_id, password, contract_id)
        pending = [
            {
                "vencimento": format_date(inv.due_date),
                "valor": format_currency(inv.amount),
                "status": inv.status,
                "pix": inv.pix_code,
                "linha_digitavel": inv.barcode_line,
            }
            for inv in invoices
            if inv.is_open()
        ]
        return pending or NO_OPEN_INVOICES

    async def check_connection(self, contract: Contract, credentials: SessionCredentials) -> Any:
        password = self._require_password(credentials)
        sessions = await self.gateway.list_connection_sessions(credentials.tax_id, password, credentials.contract_id)
        session = match_connection(contract, sessions)
        if session is None:
            return NO_CONNECTION_FOUND
        return {
            "online": session.online,
            "ip": session.ip,
            "login": session.pppoe_login or session.username,
            "inicio_sessao": format_datetime(session.session_start),
            "consumo_sessao": f"Down {bytes_to_gb(session.output_octets)}",
        }

    async def check_traffic(self, request: CheckTraffic, credentials: SessionCredentials) -> Any:
        password = self._require_password(credentials)
        contract_id = self._require_contract(credentials)
        now = self.now()
        month = request.month or now.month
        year = request.year or now.year
        extract = await self.gateway.fetch_traffic(credentials.tax_id, password, contract_id, month, year)
        if extract is None:
            return f"Extrato de uso indisponível para {month:02d}/{year}."
        return extract.data
