from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from agents.llm_runtime import LLMError, LLMRuntime, ToolExchange, ToolSpec
from models.schemas import ChatMessage, ChatRole, ToolCall, ToolResult

TOOLS = [
    ToolSpec(name="checkInvoices", description="faturas"),
    ToolSpec(
        name="checkTraffic",
        description="consumo",
        parameters={"type": "object", "properties": {"month": {"type": "integer"}}},
    ),
]
HISTORY = [
    ChatMessage(role=ChatRole.MODEL, text="Olá, Maria!"),
    ChatMessage(role=ChatRole.USER, text="Oi"),
    ChatMessage(role=ChatRole.MODEL, text="Como posso ajudar?"),
]


def _runtime(provider: str, payload: dict, seen: List[httpx.Request], status_code: int = 200) -> LLMRuntime:
    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json=payload)

    return LLMRuntime(provider=provider, model="test-model", api_key="k-1", transport=httpx.MockTransport(_handler))


def test_gemini_function_call_is_parsed():
    seen: List[httpx.Request] = []
    payload = {
        "candidates": [
            {"content": {"parts": [{"text": "Vou verificar."}, {"functionCall": {"name": "checkInvoices", "args": {}}}]}}
        ]
    }
    runtime = _runtime("gemini", payload, seen)

    turn = asyncio.run(runtime.generate_turn("sistema", HISTORY, "Minhas faturas?", TOOLS))

    assert turn.text == "Vou verificar."
    assert [c.name for c in turn.tool_calls] == ["checkInvoices"]
    request = seen[0]
    assert request.url.path.endswith("/models/test-model:generateContent")
    assert request.headers["x-goog-api-key"] == "k-1"
    body = json.loads(request.content)
    assert body["systemInstruction"]["parts"][0]["text"] == "sistema"
    assert [c["role"] for c in body["contents"]] == ["model", "user", "model", "user"]
    declarations = body["tools"][0]["functionDeclarations"]
    assert "parameters" not in declarations[0]
    assert declarations[1]["parameters"]["properties"]["month"]["type"] == "INTEGER"


def test_gemini_threads_tool_exchange():
    seen: List[httpx.Request] = []
    runtime = _runtime("gemini", {"candidates": [{"content": {"parts": [{"text": "Tudo em dia."}]}}]}, seen)
    exchange = ToolExchange(
        calls=[ToolCall(call_id="call_0", name="checkInvoices", args={})],
        results=[ToolResult(call_id="call_0", name="checkInvoices", result="Nenhuma fatura em aberto encontrada.")],
    )

    turn = asyncio.run(runtime.generate_turn("sistema", [], "Minhas faturas?", TOOLS, exchange))

    assert turn.text == "Tudo em dia."
    assert turn.tool_calls == []
    contents = json.loads(seen[0].content)["contents"]
    assert contents[-2] == {"role": "model", "parts": [{"functionCall": {"name": "checkInvoices", "args": {}}}]}
    response = contents[-1]["parts"][0]["functionResponse"]
    assert response == {"name": "checkInvoices", "response": {"result": "Nenhuma fatura em aberto encontrada."}}


def test_chat_completions_tool_calls():
    seen: List[httpx.Request] = []
    payload = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "tc1", "type": "function", "function": {"name": "checkTraffic", "arguments": '{"month": 3}'}}
                    ],
                }
            }
        ]
    }
    runtime = _runtime("openai", payload, seen)

    turn = asyncio.run(runtime.generate_turn("sistema", HISTORY, "Consumo de março", TOOLS))

    assert turn.text == ""
    assert turn.tool_calls[0].call_id == "tc1"
    assert turn.tool_calls[0].args == {"month": 3}
    assert seen[0].headers["Authorization"] == "Bearer k-1"
    body = json.loads(seen[0].content)
    assert body["messages"][0] == {"role": "system", "content": "sistema"}


def test_anthropic_drops_leading_assistant_turns():
    seen: List[httpx.Request] = []
    payload = {"content": [{"type": "tool_use", "id": "tu1", "name": "checkInvoices", "input": {}}]}
    runtime = _runtime("anthropic", payload, seen)

    turn = asyncio.run(runtime.generate_turn("sistema", HISTORY, "Minhas faturas?", TOOLS))

    assert turn.tool_calls[0].call_id == "tu1"
    body = json.loads(seen[0].content)
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assert body["system"] == "sistema"


def test_http_error_becomes_llm_error():
    seen: List[httpx.Request] = []
    runtime = _runtime("gemini", {"error": "overloaded"}, seen, status_code=503)
    with pytest.raises(LLMError):
        asyncio.run(runtime.generate_turn("sistema", [], "Oi"))


def test_missing_key_is_unavailable():
    runtime = LLMRuntime(provider="gemini", api_key="")
    assert runtime.available() is False
    with pytest.raises(LLMError, match="llm_not_configured"):
        asyncio.run(runtime.generate_turn("sistema", [], "Oi"))
