from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Sequence, Tuple

from agents.context_builder import FALLBACK_GREETING, ContextBuilder, greeting_for
from agents.llm_runtime import LLMRuntime, LLMTurn, ToolExchange, ToolSpec
from agents.support_tools import SIDE_EFFECT_TOOLS, TICKET_CATEGORIES, SupportToolbox
from compliance.audit_logger import AuditLogger
from models.schemas import (
    AgentDecisionLog,
    ChatMessage,
    ChatRole,
    ChatState,
    Contract,
    SessionCredentials,
    ToolCall,
    ToolCallRecord,
    ToolResult,
)
from settings import SETTINGS
from tools.formatting import digits_only
from tools.sgp_gateway import ExternalApiGateway

logger = logging.getLogger(__name__)

UNAVAILABLE_REPLY = "O assistente virtual está indisponível no momento. Tente novamente mais tarde."
APOLOGY_REPLY = "Desculpe, estou tendo dificuldades técnicas no momento. Tente novamente em instantes."
NOT_UNDERSTOOD_REPLY = "Desculpe, não entendi. Pode reformular sua pergunta?"
ACTION_DONE_REPLY = "Ação processada."
TOOL_FAILURE_MESSAGE = "Falha na execução da ferramenta."

# Tool arguments written to the audit trail with only their last digits kept.
MASKED_AUDIT_ARGS = ("contact_phone",)


def mask_phone(value: Any) -> str:
    digits = digits_only(value)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def audit_args(call: ToolCall) -> Dict[str, Any]:
    args = dict(call.args)
    for key in MASKED_AUDIT_ARGS:
        if args.get(key):
            args[key] = mask_phone(args[key])
    return args


_CATEGORY_LINES = ", ".join(f"{key}: {label}" for key, label in TICKET_CATEGORIES.items())

BASE_INSTRUCTION = f"""Você é o "Assistente Virtual {SETTINGS.brand_name}", especialista em suporte técnico e financeiro de internet.
Seu tom é amigável, técnico (mas acessível) e resolutivo.

STATUS DO CONTRATO:
1. "REDUZIDO": há faturas em atraso. A internet FUNCIONA, mas com velocidade reduzida de propósito.
   Não trate como defeito técnico. Explique que a lentidão se deve ao débito e sugira o pagamento via Pix
   ou a ferramenta 'unlockTrust' se o cliente pedir.
2. "SUSPENSO": bloqueio total por inadimplência. A internet NÃO FUNCIONA. O foco é a regularização financeira.

FERRAMENTAS:
- 'checkInvoices': faturas pendentes, valores e códigos Pix.
- 'checkConnection': status ONLINE/OFFLINE, IP e consumo da sessão.
- 'checkTraffic': consumo de internet de um mês.
- 'unlockTrust': desbloqueio de confiança (promessa de pagamento) por 3 dias.
- 'openSupportTicket': abre chamado quando não for possível resolver pelo chat.

DIRETRIZES:
1. Use os DADOS DO CLIENTE do contexto para responder diretamente.
2. Se a conexão estiver OFFLINE e o contrato ATIVO, sugira reiniciar a ONU/roteador.
3. Se houver faturas em aberto, informe valor e vencimento.
4. Tente resolver primeiro. Se o problema persistir ou o cliente pedir técnico/visita, ofereça abrir um chamado.
5. Tipos de ocorrência para chamados: {_CATEGORY_LINES}.
6. Responda sempre em português do Brasil, de forma concisa."""


class ConversationStateError(RuntimeError):
    pass


class ChatOrchestrator:
    """One support conversation: grounding, history and the tool round.

    A user message costs at most two model round trips: the first turn, and
    when it requests tools, one follow-up turn carrying every result. Tool
    calls requested by the follow-up turn are not dispatched.
    """

    def __init__(
        self,
        contract: Contract,
        credentials: SessionCredentials,
        gateway: ExternalApiGateway,
        llm: LLMRuntime | None = None,
        context_builder: ContextBuilder | None = None,
        toolbox: SupportToolbox | None = None,
        audit_logger: AuditLogger | None = None,
        session_id: str | None = None,
    ) -> None:
        self.name = "chat_orchestrator"
        self.session_id = session_id or uuid.uuid4().hex
        self.contract = contract
        self.credentials = credentials
        self.gateway = gateway
        self.llm = llm or LLMRuntime()
        self.context_builder = context_builder or ContextBuilder(gateway)
        self.toolbox = toolbox or SupportToolbox(gateway)
        self.audit_logger = audit_logger or AuditLogger()
        self.state = ChatState.IDLE
        self.context = ""
        self.model_round_trips = 0
        self._history: List[ChatMessage] = []

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._history)

    def system_prompt(self) -> str:
        if not self.context:
            return BASE_INSTRUCTION
        return f"{BASE_INSTRUCTION}\n\n=== DADOS DO CLIENTE EM TEMPO REAL ===\n{self.context}"

    def _append(self, role: ChatRole, text: str) -> ChatMessage:
        message = ChatMessage(role=role, text=text)
        self._history.append(message)
        return message

    def _reply(self, text: str) -> ChatMessage:
        message = self._append(ChatRole.MODEL, text)
        if self.state != ChatState.CLOSED:
            self.state = ChatState.READY
        return message

    async def open(self) -> ChatMessage:
        if self.state != ChatState.IDLE:
            raise ConversationStateError(f"conversation already opened ({self.state.value})")
        self.state = ChatState.INITIALIZING
        try:
            self.context = await self.context_builder.build(self.contract, self.credentials)
            greeting = greeting_for(self.contract)
        except Exception as exc:
            logger.warning("chat_context_failed", extra={"session_id": self.session_id, "error": repr(exc)})
            self.context = ""
            greeting = FALLBACK_GREETING
        return self._reply(greeting)

    def close(self) -> None:
        self.state = ChatState.CLOSED

    async def send(self, text: str) -> ChatMessage:
        if self.state != ChatState.READY:
            raise ConversationStateError(f"conversation is {self.state.value}")
        content = (text or "").strip()
        if not content:
            raise ValueError("message text is empty")
        prior = tuple(self._history)
        self._append(ChatRole.USER, content)
        if not self.llm.available():
            return self._reply(UNAVAILABLE_REPLY)
        self.state = ChatState.AWAITING_MODEL
        try:
            reply_text = await self._run_turn(prior, content)
        except Exception as exc:
            logger.warning("chat_model_failed", extra={"session_id": self.session_id, "error": repr(exc)})
            reply_text = APOLOGY_REPLY
        return self._reply(reply_text)

    async def _model_turn(
        self,
        history: Sequence[ChatMessage],
        content: str,
        tools: Sequence[ToolSpec],
        exchange: ToolExchange | None = None,
    ) -> LLMTurn:
        self.model_round_trips += 1
        return await self.llm.generate_turn(self.system_prompt(), history, content, tools, exchange)

    async def _run_turn(self, history: Sequence[ChatMessage], content: str) -> str:
        tools = self.toolbox.declarations()
        first = await self._model_turn(history, content, tools)
        if not first.tool_calls:
            return first.text or NOT_UNDERSTOOD_REPLY

        self.state = ChatState.DISPATCHING_TOOLS
        results = await self.dispatch_tools(first.tool_calls)

        self.state = ChatState.AWAITING_MODEL
        exchange = ToolExchange(calls=list(first.tool_calls), results=results, text=first.text)
        final = await self._model_turn(history, content, tools, exchange)
        if final.tool_calls:
            logger.info(
                "chat_followup_tool_calls_ignored",
                extra={"session_id": self.session_id, "tools": [c.name for c in final.tool_calls]},
            )
        return final.text or ACTION_DONE_REPLY

    async def dispatch_tools(self, calls: Sequence[ToolCall]) -> List[ToolResult]:
        """Run every call in model order; a failing tool yields ``{"error": ...}``."""
        results: List[ToolResult] = []
        records: List[ToolCallRecord] = []
        round_start = time.perf_counter()
        for call in calls:
            start = time.perf_counter()
            success = True
            try:
                result: Any = await self.toolbox.execute(call, self.contract, self.credentials)
            except Exception as exc:
                logger.warning(
                    "chat_tool_failed",
                    extra={"session_id": self.session_id, "tool": call.name, "error": repr(exc)},
                )
                result = {"error": str(exc) or TOOL_FAILURE_MESSAGE}
                success = False
            results.append(ToolResult(call_id=call.call_id, name=call.name, result=result))
            records.append(
                ToolCallRecord(
                    tool_name=call.name,
                    args=audit_args(call),
                    result_summary=self._summarize(result),
                    success=success,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )
            )
        self._audit_round(records, int((time.perf_counter() - round_start) * 1000))
        return results

    def _summarize(self, result: Any) -> str:
        if isinstance(result, dict) and "error" in result:
            return f"error: {result['error']}"[:200]
        if isinstance(result, list):
            return f"{len(result)} item(s)"
        return str(result)[:200]

    def _audit_round(self, records: List[ToolCallRecord], duration_ms: int) -> AgentDecisionLog:
        names = [r.tool_name for r in records]
        side_effects = [n for n in names if n in SIDE_EFFECT_TOOLS]
        record = AgentDecisionLog(
            session_id=self.session_id,
            agent=self.name,
            action="dispatch_tools",
            reasoning=f"model requested {', '.join(names)}"
            + (f"; side effects: {', '.join(side_effects)}" if side_effects else ""),
            tool_calls=records,
            duration_ms=duration_ms,
            outcome="ok" if all(r.success for r in records) else "partial_failure",
        )
        self.audit_logger.log_decision(record)
        return record
