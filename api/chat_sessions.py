from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from agents.chat_orchestrator import ChatOrchestrator
from agents.llm_runtime import LLMRuntime
from compliance.audit_logger import AuditLogger
from models.schemas import SessionCredentials
from settings import SETTINGS
from tools.sgp_gateway import ExternalApiGateway

logger = logging.getLogger(__name__)


class ContractNotFoundError(LookupError):
    pass


class ChatSessionPool:
    """Open conversations keyed by session id; each owns its own orchestrator.

    Conversations idle for longer than ``ttl_seconds`` are closed and dropped,
    along with the credentials they hold. When ``max_sessions`` are open, the
    least recently used one is evicted to make room.
    """

    def __init__(
        self,
        gateway: ExternalApiGateway,
        llm: LLMRuntime | None = None,
        audit_logger: AuditLogger | None = None,
        ttl_seconds: int | None = None,
        max_sessions: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.gateway = gateway
        self.llm = llm or LLMRuntime()
        self.audit_logger = audit_logger or AuditLogger()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else SETTINGS.chat_session_ttl_seconds
        self.max_sessions = max(1, max_sessions if max_sessions is not None else SETTINGS.max_chat_sessions)
        self._clock = clock
        self._sessions: Dict[str, ChatOrchestrator] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        self.purge_expired()
        return len(self._sessions)

    def _drop(self, session_id: str, reason: str) -> bool:
        orchestrator = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if orchestrator is None:
            return False
        orchestrator.close()
        logger.info("chat_session_closed", extra={"session_id": session_id, "reason": reason})
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, seen in self._last_seen.items() if now - seen > self.ttl_seconds]
        for session_id in expired:
            self._drop(session_id, "expired")
        return len(expired)

    async def open(self, tax_id: str, password: str, contract_id: str | None = None) -> ChatOrchestrator:
        self.purge_expired()
        contracts = await self.gateway.authenticate(tax_id, password)
        if contract_id:
            contract = next((c for c in contracts if c.contract_id == str(contract_id)), None)
            if contract is None:
                raise ContractNotFoundError(str(contract_id))
        else:
            contract = contracts[0]
        orchestrator = ChatOrchestrator(
            contract=contract,
            credentials=SessionCredentials(tax_id=tax_id, password=password, contract_id=contract.contract_id),
            gateway=self.gateway,
            llm=self.llm,
            audit_logger=self.audit_logger,
        )
        await orchestrator.open()
        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._last_seen, key=self._last_seen.get)
            self._drop(oldest, "evicted")
        self._sessions[orchestrator.session_id] = orchestrator
        self._last_seen[orchestrator.session_id] = self._clock()
        logger.info("chat_session_opened", extra={"session_id": orchestrator.session_id, "contract_id": contract.contract_id})
        return orchestrator

    def get(self, session_id: str) -> Optional[ChatOrchestrator]:
        self.purge_expired()
        orchestrator = self._sessions.get(session_id)
        if orchestrator is not None:
            self._last_seen[session_id] = self._clock()
        return orchestrator

    def close(self, session_id: str) -> bool:
        return self._drop(session_id, "closed")
