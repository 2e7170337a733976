from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import httpx

from models.schemas import ChatMessage, ChatRole, ToolCall, ToolResult
from settings import SETTINGS


class LLMError(RuntimeError):
    pass


@dataclass
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class ToolExchange:
    """Tool calls the model asked for in the first turn and their results."""

    calls: List[ToolCall]
    results: List[ToolResult]
    text: str = ""


@dataclass
class LLMTurn:
    text: str
    tool_calls: List[ToolCall]
    provider: str
    model: str
    raw: Dict[str, Any]


class LLMRuntime:
    """Swappable chat model capability with function calling.

    One call is one model round trip. The caller replays the full history every
    time and may thread back a single ``ToolExchange``.
    """

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = (provider or SETTINGS.default_llm_provider or "gemini").lower()
        self.model = model or SETTINGS.default_model
        self._api_key_override = api_key
        self.transport = transport

    def api_key(self) -> str:
        if self._api_key_override is not None:
            return self._api_key_override
        if self.provider == "gemini":
            return SETTINGS.gemini_api_key
        if self.provider == "anthropic":
            return SETTINGS.anthropic_api_key
        if self.provider in {"xai", "grok"}:
            return SETTINGS.xai_api_key
        if self.provider == "openai":
            return SETTINGS.openai_api_key
        return ""

    def available(self) -> bool:
        return bool(self.api_key())

    async def generate_turn(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        message: str,
        tools: Sequence[ToolSpec] = (),
        exchange: ToolExchange | None = None,
    ) -> LLMTurn:
        if not self.available():
            raise LLMError("llm_not_configured")
        try:
            if self.provider == "gemini":
                return await self._generate_gemini(system_prompt, history, message, tools, exchange)
            if self.provider == "anthropic":
                return await self._generate_anthropic(system_prompt, history, message, tools, exchange)
            if self.provider in {"openai", "xai", "grok"}:
                return await self._generate_chat_completions(system_prompt, history, message, tools, exchange)
        except LLMError:
            raise
        except (httpx.HTTPError, ValueError, TypeError, KeyError, AttributeError) as exc:
            raise LLMError(f"{self.provider}: {exc}") from exc
        raise LLMError(f"unsupported_provider:{self.provider}")

    async def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=SETTINGS.llm_timeout_seconds, transport=self.transport) as client:
            resp = await client.post(url, headers=headers, json=body)
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict):
            raise LLMError("unexpected_response_shape")
        return data

    async def _generate_gemini(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        message: str,
        tools: Sequence[ToolSpec],
        exchange: ToolExchange | None,
    ) -> LLMTurn:
        contents: List[Dict[str, Any]] = [
            {"role": "user" if m.role == ChatRole.USER else "model", "parts": [{"text": m.text}]} for m in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})
        if exchange is not None:
            model_parts: List[Dict[str, Any]] = [{"text": exchange.text}] if exchange.text else []
            model_parts.extend({"functionCall": {"name": c.name, "args": c.args}} for c in exchange.calls)
            contents.append({"role": "model", "parts": model_parts})
            contents.append(
                {
                    "role": "user",
                    "parts": [
                        {"functionResponse": {"name": r.name, "response": {"result": r.result}}} for r in exchange.results
                    ],
                }
            )
        body: Dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
            "generationConfig": {"temperature": SETTINGS.llm_temperature},
        }
        if tools:
            body["tools"] = [{"functionDeclarations": [self._gemini_declaration(t) for t in tools]}]
        base_url = SETTINGS.gemini_base_url.rstrip("/")
        data = await self._post(
            f"{base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key(), "content-type": "application/json"},
            body=body,
        )
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text_parts: List[str] = []
        calls: List[ToolCall] = []
        for idx, part in enumerate(parts):
            if not isinstance(part, dict):
                continue
            if part.get("text"):
                text_parts.append(str(part["text"]))
            call = part.get("functionCall")
            if isinstance(call, dict) and call.get("name"):
                calls.append(
                    ToolCall(call_id=str(call.get("id") or f"call_{idx}"), name=str(call["name"]), args=dict(call.get("args") or {}))
                )
        return LLMTurn(text="\n".join(text_parts).strip(), tool_calls=calls, provider="gemini", model=self.model, raw=data)

    def _gemini_declaration(self, spec: ToolSpec) -> Dict[str, Any]:
        declaration: Dict[str, Any] = {"name": spec.name, "description": spec.description}
        if spec.parameters.get("properties"):
            declaration["parameters"] = self._gemini_schema(spec.parameters)
        return declaration

    def _gemini_schema(self, schema: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in schema.items():
            if key == "type" and isinstance(value, str):
                out[key] = value.upper()
            elif key == "properties" and isinstance(value, dict):
                out[key] = {name: self._gemini_schema(prop) for name, prop in value.items()}
            elif key == "items" and isinstance(value, dict):
                out[key] = self._gemini_schema(value)
            else:
                out[key] = value
        return out

    async def _generate_chat_completions(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        message: str,
        tools: Sequence[ToolSpec],
        exchange: ToolExchange | None,
    ) -> LLMTurn:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(
            {"role": "user" if m.role == ChatRole.USER else "assistant", "content": m.text} for m in history
        )
        messages.append({"role": "user", "content": message})
        if exchange is not None:
            messages.append(
                {
                    "role": "assistant",
                    "content": exchange.text or None,
                    "tool_calls": [
                        {
                            "id": c.call_id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": json.dumps(c.args, ensure_ascii=False)},
                        }
                        for c in exchange.calls
                    ],
                }
            )
            for result in exchange.results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.call_id,
                        "content": json.dumps({"result": result.result}, ensure_ascii=False, default=str),
                    }
                )
        body: Dict[str, Any] = {"model": self.model, "messages": messages, "temperature": SETTINGS.llm_temperature}
        if tools:
            body["tools"] = [
                {"type": "function", "function": {"name": t.name, "description": t.description, "parameters": t.parameters}}
                for t in tools
            ]
        base_url = SETTINGS.openai_base_url if self.provider == "openai" else SETTINGS.xai_base_url
        data = await self._post(
            f"{base_url.rstrip('/')}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key()}"},
            body=body,
        )
        calls: List[ToolCall] = []
        choices = data.get("choices") or []
        message_obj = choices[0].get("message") if choices and isinstance(choices[0], dict) else {}
        for idx, raw_call in enumerate((message_obj or {}).get("tool_calls") or []):
            function = raw_call.get("function") or {}
            try:
                args = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError:
                args = {}
            calls.append(
                ToolCall(
                    call_id=str(raw_call.get("id") or f"call_{idx}"),
                    name=str(function.get("name") or ""),
                    args=args if isinstance(args, dict) else {},
                )
            )
        return LLMTurn(
            text=self._extract_chat_completion_text(data),
            tool_calls=calls,
            provider=self.provider,
            model=self.model,
            raw=data,
        )

    async def _generate_anthropic(
        self,
        system_prompt: str,
        history: Sequence[ChatMessage],
        message: str,
        tools: Sequence[ToolSpec],
        exchange: ToolExchange | None,
    ) -> LLMTurn:
        messages: List[Dict[str, Any]] = []
        for m in history:
            role = "user" if m.role == ChatRole.USER else "assistant"
            if not messages and role == "assistant":
                # The conversation must open with a user turn.
                continue
            messages.append({"role": role, "content": m.text})
        messages.append({"role": "user", "content": message})
        if exchange is not None:
            assistant_blocks: List[Dict[str, Any]] = [{"type": "text", "text": exchange.text}] if exchange.text else []
            assistant_blocks.extend(
                {"type": "tool_use", "id": c.call_id, "name": c.name, "input": c.args} for c in exchange.calls
            )
            messages.append({"role": "assistant", "content": assistant_blocks})
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": r.call_id,
                            "content": json.dumps({"result": r.result}, ensure_ascii=False, default=str),
                        }
                        for r in exchange.results
                    ],
                }
            )
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": 900,
            "temperature": SETTINGS.llm_temperature,
            "system": system_prompt,
            "messages": messages,
        }
        if tools:
            body["tools"] = [{"name": t.name, "description": t.description, "input_schema": t.parameters} for t in tools]
        data = await self._post(
            f"{SETTINGS.anthropic_base_url.rstrip('/')}/messages",
            headers={
                "x-api-key": self.api_key(),
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            body=body,
        )
        text_parts: List[str] = []
        calls: List[ToolCall] = []
        for block in data.get("content", []):
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                text_parts.append(str(block.get("text", "")))
            elif block.get("type") == "tool_use":
                calls.append(
                    ToolCall(call_id=str(block.get("id", "")), name=str(block.get("name", "")), args=dict(block.get("input") or {}))
                )
        return LLMTurn(
            text="\n".join(t for t in text_parts if t).strip(),
            tool_calls=calls,
            provider="anthropic",
            model=self.model,
            raw=data,
        )

    def _extract_chat_completion_text(self, data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else {}
        content = message.get("content", "") if isinstance(message, dict) else ""
        if content is None:
            return ""
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            out: List[str] = []
            for part in content:
                if isinstance(part, dict) and "text" in part:
                    out.append(str(part.get("text", "")))
            return "\n".join(t for t in out if t).strip()
        return str(content).strip()
