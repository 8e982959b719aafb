"""Concrete LLM adapters and factory helpers."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from typing import Protocol
from typing import runtime_checkable

import httpx

from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import Role
from chatgate.chat.schemas import TokenUsage
from chatgate.chat.schemas import ToolCall
from chatgate.config import LLMConfig
from chatgate.config import validate_llm_config
from chatgate.errors import FatalUpstreamFailure
from chatgate.errors import TransientUpstreamFailure
from chatgate.errors import timeout_failure

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LLM abstraction
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMAdapter(Protocol):
    """Protocol for model provider adapters.

    ``stream`` returns a finite, non-restartable async iterator that ends on
    completion or raises on error.
    """

    async def complete(self, request: ChatRequest) -> ChatResponse: ...

    def stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]: ...


# ---------------------------------------------------------------------------
# Noop
# ---------------------------------------------------------------------------


class NoopLLMAdapter:
    """Deterministic adapter that echoes the latest user message."""

    model_id = "noop"

    @staticmethod
    def _reply(request: ChatRequest) -> str:
        for message in reversed(request.messages):
            if message.role is Role.user:
                return message.content
        return ""

    async def complete(self, request: ChatRequest) -> ChatResponse:
        text = self._reply(request)
        words = len(text.split())
        return ChatResponse(
            text=text,
            model_id=self.model_id,
            usage=TokenUsage(
                prompt_tokens=sum(len(m.content.split()) for m in request.messages),
                completion_tokens=words,
                total_tokens=sum(len(m.content.split()) for m in request.messages) + words,
            ),
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]:
        words = self._reply(request).split(" ")
        for idx, word in enumerate(words):
            text = word if idx == 0 else f" {word}"
            if text:
                yield ChatChunk(text=text, model_id=self.model_id)


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------

_SSE_DONE = "[DONE]"


def _usage(raw: Any) -> TokenUsage | None:
    if not isinstance(raw, dict):
        return None
    return TokenUsage(
        prompt_tokens=int(raw.get("prompt_tokens") or 0),
        completion_tokens=int(raw.get("completion_tokens") or 0),
        total_tokens=int(raw.get("total_tokens") or 0),
    )


def _parse_tool_calls(raw: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for item in raw or []:
        function = item.get("function") or {}
        arguments_raw = function.get("arguments") or "{}"
        try:
            arguments = json.loads(arguments_raw)
        except ValueError as exc:
            raise FatalUpstreamFailure(
                f"provider returned invalid tool arguments for {function.get('name')}"
            ) from exc
        calls.append(
            ToolCall(
                id=str(item.get("id") or ""),
                name=str(function.get("name") or ""),
                arguments=arguments if isinstance(arguments, dict) else {},
            )
        )
    return calls


def parse_sse_line(line: str) -> ChatChunk | str | None:
    """Parse one ``data:`` line of a chat-completions stream.

    Returns a ``ChatChunk``, the ``[DONE]`` sentinel, or ``None`` for lines
    that carry nothing for the caller (comments, keep-alives, role deltas).
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if data == _SSE_DONE:
        return _SSE_DONE
    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise FatalUpstreamFailure(f"provider sent malformed stream frame: {data[:200]}") from exc

    text = ""
    choices = payload.get("choices") or []
    if choices:
        delta = choices[0].get("delta") or {}
        text = delta.get("content") or ""
    usage = _usage(payload.get("usage"))
    if not text and usage is None:
        return None
    return ChatChunk(text=text, usage=usage, model_id=payload.get("model"))


class OpenAICompatibleLLMAdapter:
    """OpenAI-compatible chat-completions adapter (blocking and SSE streaming)."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @property
    def url(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, request: ChatRequest, *, stream: bool = False) -> dict:
        system = request.system_prompt
        if request.format_instructions:
            system = f"{system}\n\n{request.format_instructions}".strip()

        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend(
            {"role": m.role.value, "content": m.content} for m in request.messages
        )
        for turn in request.tool_turns:
            messages.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in turn.calls
                    ],
                }
            )
            for call, result in zip(turn.calls, turn.results):
                messages.append(
                    {"role": "tool", "tool_call_id": call.id, "content": result}
                )

        payload: dict[str, Any] = {
            "model": request.options.model or self._model,
            "messages": messages,
            "temperature": request.options.temperature,
            "max_tokens": request.options.max_tokens,
        }
        if request.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": spec.name,
                        "description": spec.description,
                        "parameters": spec.input_schema
                        or {"type": "object", "properties": {}},
                    },
                }
                for spec in request.tools
            ]
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def complete(self, request: ChatRequest) -> ChatResponse:
        payload = self.build_payload(request)
        try:
            response = await self._client.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=request.options.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise timeout_failure(f"provider timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamFailure(f"provider network error: {exc}") from exc

        if response.status_code >= 400:
            raise FatalUpstreamFailure(
                f"provider HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            message = data["choices"][0]["message"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise FatalUpstreamFailure(
                "provider response missing choices[0].message"
            ) from exc

        content = message.get("content")
        if content is not None and not isinstance(content, str):
            raise FatalUpstreamFailure("provider response content must be a string")

        return ChatResponse(
            text=content or "",
            usage=_usage(data.get("usage")),
            model_id=data.get("model") or payload["model"],
            tool_calls=_parse_tool_calls(message.get("tool_calls")),
        )

    async def stream(self, request: ChatRequest) -> AsyncIterator[ChatChunk]:
        payload = self.build_payload(request, stream=True)
        try:
            async with self._client.stream(
                "POST",
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=request.options.timeout_seconds,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise FatalUpstreamFailure(
                        f"provider HTTP {response.status_code}: {body[:200]}"
                    )
                # aiter_lines pulls from the socket only as the consumer pulls.
                async for line in response.aiter_lines():
                    parsed = parse_sse_line(line)
                    if isinstance(parsed, str):
                        break
                    if isinstance(parsed, ChatChunk):
                        yield parsed
        except httpx.TimeoutException as exc:
            raise timeout_failure(f"provider stream timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamFailure(f"provider stream network error: {exc}") from exc

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create a concrete adapter from ``LLMConfig``."""

    validate_llm_config(config)
    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )
