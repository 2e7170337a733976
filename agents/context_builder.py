from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from models.schemas import ConnectionSession, Contract, Invoice, SessionCredentials
from settings import SETTINGS
from tools.connection_matcher import match_connection
from tools.formatting import bytes_to_gb, format_currency, format_date, format_datetime, format_duration, parse_date
from tools.sgp_gateway import ExternalApiGateway

logger = logging.getLogger(__name__)


class ContractHealth(str, Enum):
    NORMAL = "NORMAL"
    THROTTLED = "THROTTLED"
    SUSPENDED = "SUSPENDED"


THROTTLED_TEXT = (
    "ALERTA: O contrato está com velocidade REDUZIDA por atraso no pagamento. "
    "A internet funciona, mas está propositalmente lenta. Não é defeito técnico: "
    "o cliente precisa pagar a fatura ou usar o Desbloqueio de Confiança."
)
SUSPENDED_TEXT = (
    "ALERTA CRÍTICO: O contrato está SUSPENSO por inadimplência. A internet NÃO vai funcionar "
    "até que o pagamento seja realizado e compensado (ou via Desbloqueio de Confiança)."
)

CONTEXT_INSTRUCTIONS = """INSTRUÇÕES ESPECÍFICAS:
- Se o status for REDUZIDO ou SUSPENSO, explique que o problema é financeiro, não técnico. Indique o pagamento ou o Desbloqueio de Confiança.
- Se o cliente estiver OFFLINE, sugira verificar os cabos e reiniciar a ONU.
- Se o cliente quiser abrir chamado, pergunte o telefone de contato antes de usar a ferramenta.
- Use a data e hora atual para contextualizar a saudação (ex: "Bom dia", "Boa tarde")."""


def contract_health(status: str) -> ContractHealth:
    lower = (status or "").lower()
    if "reduzido" in lower:
        return ContractHealth.THROTTLED
    if "suspenso" in lower or "bloqueado" in lower:
        return ContractHealth.SUSPENDED
    return ContractHealth.NORMAL


def contract_health_text(status: str) -> str:
    health = contract_health(status)
    if health == ContractHealth.THROTTLED:
        return THROTTLED_TEXT
    if health == ContractHealth.SUSPENDED:
        return SUSPENDED_TEXT
    return f"Status do Contrato: {status}"


def first_name(contract: Contract) -> str:
    parts = (contract.customer_name or "").split()
    return parts[0].title() if parts else ""


def greeting_for(contract: Contract) -> str:
    name = first_name(contract)
    salutation = f"Olá, {name}!" if name else "Olá!"
    return (
        f"{salutation} Sou o assistente virtual da {SETTINGS.brand_name}.\n"
        "Analisei sua conexão e situação financeira. Como posso ajudar você hoje?"
    )


FALLBACK_GREETING = f"Olá! Sou o assistente virtual da {SETTINGS.brand_name}. Como posso ajudar?"


class ContextBuilder:
    """Builds the grounding snapshot sent with every model turn of one chat.

    Each section degrades to an explanatory sentence on failure, so ``build``
    always returns text.
    """

    def __init__(
        self,
        gateway: ExternalApiGateway,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.timezone = ZoneInfo(timezone or SETTINGS.support_timezone)
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.timezone)

    def _local_naive_now(self) -> datetime:
        now = self.now()
        if now.tzinfo is not None:
            now = now.astimezone(self.timezone).replace(tzinfo=None)
        return now

    async def financial_section(self, contract: Contract, credentials: SessionCredentials) -> str:
        if not credentials.password:
            return "Situação Financeira: Não verificado (senha não fornecida)."
        try:
            invoices = await self.gateway.fetch_invoices(credentials.tax_id, credentials.password, contract.contract_id)
        except Exception as exc:
            logger.warning("context_invoices_failed", extra={"contract_id": contract.contract_id, "error": repr(exc)})
            return "Situação Financeira: Não foi possível verificar as faturas no momento."
        return self.describe_invoices(invoices)

    def describe_invoices(self, invoices: List[Invoice]) -> str:
        open_invoices = [inv for inv in invoices if inv.is_open()]
        if not open_invoices:
            return "Situação Financeira: O cliente está em dia. Nenhuma fatura em aberto."
        oldest = min(open_invoices, key=lambda inv: parse_date(inv.due_date) or datetime.max)
        due = parse_date(oldest.due_date)
        is_late = due is not None and due < self._local_naive_now()
        overall = "EM ATRASO" if is_late else "EM DIA (a vencer)"
        return (
            f"Situação Financeira: O cliente possui {len(open_invoices)} fatura(s) em aberto.\n"
            f"A mais antiga vence em {format_date(oldest.due_date)} no valor de {format_currency(oldest.amount)}.\n"
            f"Status Geral: {overall}."
        )

    async def technical_section(self, contract: Contract, credentials: SessionCredentials) -> str:
        if not credentials.password:
            return "Status da Conexão: Não verificado."
        try:
            sessions = await self.gateway.list_connection_sessions(
                credentials.tax_id, credentials.password, contract.contract_id
            )
        except Exception as exc:
            logger.warning("context_connection_failed", extra={"contract_id": contract.contract_id, "error": repr(exc)})
            return "Status da Conexão: Não foi possível verificar o diagnóstico técnico no momento."
        return self.describe_connection(match_connection(contract, sessions))

    def describe_connection(self, session: Optional[ConnectionSession]) -> str:
        if session is None:
            return "Status da Conexão: Nenhuma conexão ativa encontrada recentemente."
        lines = [
            "=== DIAGNÓSTICO TÉCNICO ===",
            f"Status Atual: {'ONLINE (Conectado)' if session.online else 'OFFLINE (Sem conexão no momento)'}",
            f"IP Atual: {session.ip or 'Sem IP'}",
            f"MAC Address: {session.mac or 'N/A'}",
            f"Login PPPoE: {session.pppoe_login or session.username or 'N/A'}",
            f"Início da Sessão: {format_datetime(session.session_start)}",
        ]
        started = parse_date(session.session_start)
        if session.online and session.session_stop is None and started is not None:
            elapsed = (self._local_naive_now() - started).total_seconds()
            lines.append(f"Tempo de Sessão: {format_duration(elapsed)}")
        lines.append(
            f"Consumo na Sessão: Down {bytes_to_gb(session.output_octets)} / Up {bytes_to_gb(session.input_octets)}"
        )
        return "\n".join(lines)

    async def build(self, contract: Contract, credentials: SessionCredentials) -> str:
        financial = await self.financial_section(contract, credentials)
        technical = await self.technical_section(contract, credentials)
        return "\n".join(
            [
                "=== DADOS DO SISTEMA ===",
                f"Data e Hora Atual do Suporte: {self.now().strftime('%d/%m/%Y %H:%M:%S')} ({self.timezone.key})",
                "",
                "=== DADOS DO CLIENTE ===",
                f"Nome: {contract.customer_name}",
                f"Contrato ID: {contract.contract_id}",
                f"Plano Contratado: {contract.plan_name}",
                contract_health_text(contract.status),
                f"Endereço de Instalação: {contract.address_line}",
                "",
                "=== FINANCEIRO ===",
                financial,
                "",
                technical,
                "",
                CONTEXT_INSTRUCTIONS,
            ]
        )
