from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from agents.chat_orchestrator import ChatOrchestrator, ConversationStateError
from api.chat_sessions import ChatSessionPool, ContractNotFoundError
from api.http_errors import gateway_http_error
from tools.errors import SGPError


router = APIRouter(prefix="/chat", tags=["chat"])


class OpenChatRequest(BaseModel):
    tax_id: str = Field(min_length=1)
    password: str = Field(min_length=1)
    contract_id: Optional[str] = None


class ChatMessageRequest(BaseModel):
    content: str = Field(min_length=1)


def _pool(request: Request) -> ChatSessionPool:
    return request.app.state.chat_sessions


def _session(request: Request, session_id: str) -> ChatOrchestrator:
    orchestrator = _pool(request).get(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return orchestrator


@router.post("/sessions")
async def open_chat(payload: OpenChatRequest, request: Request):
    try:
        orchestrator = await _pool(request).open(payload.tax_id, payload.password, payload.contract_id)
    except ContractNotFoundError as exc:
        raise HTTPException(status_code=404, detail="contract_not_found") from exc
    except SGPError as exc:
        raise gateway_http_error(exc) from exc
    greeting = orchestrator.history[-1]
    return {
        "session_id": orchestrator.session_id,
        "contract_id": orchestrator.contract.contract_id,
        "state": orchestrator.state.value,
        "greeting": greeting.model_dump(mode="json"),
    }


@router.post("/sessions/{session_id}/messages")
async def post_chat_message(session_id: str, payload: ChatMessageRequest, request: Request):
    orchestrator = _session(request, session_id)
    try:
        reply = await orchestrator.send(payload.content)
    except ConversationStateError as exc:
        raise HTTPException(status_code=409, detail="conversation_busy") from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail="empty_message") from exc
    return {"session_id": session_id, "state": orchestrator.state.value, "reply": reply.model_dump(mode="json")}


@router.get("/sessions/{session_id}/history")
async def get_chat_history(session_id: str, request: Request):
    orchestrator = _session(request, session_id)
    return {
        "session_id": session_id,
        "state": orchestrator.state.value,
        "history": [m.model_dump(mode="json") for m in orchestrator.history],
    }


@router.delete("/sessions/{session_id}")
async def close_chat(session_id: str, request: Request):
    if not _pool(request).close(session_id):
        raise HTTPException(status_code=404, detail="session_not_found")
    return {"session_id": session_id, "closed": True}
