"""Completion orchestrator: the entry point in front of the advisor chain.

Normalizes raw messages, attaches the system prompt and conversation id,
runs the chain and translates whatever escapes it into the gateway error
taxonomy.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import AsyncIterator
from collections.abc import Mapping
from collections.abc import Sequence
from contextlib import aclosing
from typing import Any
from typing import TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError

from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.chain import AdvisorChain
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import Message
from chatgate.chat.schemas import ModelOptions
from chatgate.chat.schemas import Role
from chatgate.errors import ConversionFailure
from chatgate.errors import FatalUpstreamFailure
from chatgate.errors import GatewayError
from chatgate.errors import InvalidRequest
from chatgate.errors import TransientUpstreamFailure
from chatgate.errors import timeout_failure
from chatgate.prompts import StaticPromptProvider
from chatgate.prompts import SystemPromptProvider

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

RawMessage = Message | Mapping[str, Any]

# Regex to strip Markdown code fences wrapping JSON output
_CODE_FENCE_RE = re.compile(
    r"^\s*```(?:json)?\s*\n?(.*?)\n?\s*```\s*$",
    re.DOTALL,
)

_FORMAT_TEMPLATE = """Your response should be in JSON format.
Do not include any explanations, only provide a RFC8259 compliant JSON response following this format without deviation.
Do not include markdown code blocks in your response.
Here is the JSON Schema instance your output must adhere to:
{schema}"""


def resolve_conversation_id(conversation_id: str | None = None) -> str:
    """Return the supplied id (stripped) or a fresh ``conv_<hex>`` id."""
    if conversation_id is not None and conversation_id.strip():
        return conversation_id.strip()
    return f"conv_{uuid.uuid4().hex}"


def format_instructions(target: type[BaseModel]) -> str:
    schema = json.dumps(target.model_json_schema(), indent=2)
    return _FORMAT_TEMPLATE.format(schema=schema)


def parse_structured(text: str, target: type[T]) -> T:
    """Map a model reply onto ``target`` or raise ``ConversionFailure``."""
    match = _CODE_FENCE_RE.match(text)
    if match:
        text = match.group(1).strip()

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConversionFailure(
            target.__name__, [], detail=f"response is not valid JSON: {exc}"
        ) from exc

    try:
        return target.model_validate(data)
    except ValidationError as exc:
        fields: list[str] = []
        for err in exc.errors():
            path = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
            if path not in fields:
                fields.append(path)
        raise ConversionFailure(target.__name__, fields) from exc


def _translate(exc: Exception) -> GatewayError:
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return timeout_failure(f"Upstream call timed out: {exc}")
    if isinstance(exc, (ConnectionError, httpx.TransportError)):
        return TransientUpstreamFailure(f"Upstream connection failed: {exc}")
    return FatalUpstreamFailure(f"Chat completion failed: {exc}")


class CompletionOrchestrator:
    """Turns caller input into a ``ChatRequest`` and runs it through the chain."""

    def __init__(
        self,
        chain: AdvisorChain,
        prompts: SystemPromptProvider | None = None,
        *,
        options: ModelOptions | None = None,
    ) -> None:
        self._chain = chain
        self._prompts = prompts or StaticPromptProvider()
        self._options = options or ModelOptions()

    @property
    def chain(self) -> AdvisorChain:
        return self._chain

    # -- request building --

    def _normalize(self, raw_messages: Sequence[RawMessage]) -> tuple[list[str], list[Message]]:
        if not raw_messages:
            raise InvalidRequest("Request must contain at least one message")

        system_parts: list[str] = []
        messages: list[Message] = []
        for raw in raw_messages:
            if isinstance(raw, Message):
                role_raw: Any = raw.role.value
                content: Any = raw.content
            elif isinstance(raw, Mapping):
                role_raw = raw.get("role")
                content = raw.get("content")
            else:
                raise InvalidRequest(
                    f"Unsupported message type: {type(raw).__name__}"
                )

            role_name = str(role_raw or "").strip().lower()
            if not isinstance(content, str) or not content.strip():
                logger.warning("Skipping message with empty content (role: %s)", role_name)
                continue

            try:
                role = Role(role_name)
            except ValueError:
                logger.warning("Unknown message role: %s", role_raw)
                continue

            if role is Role.system:
                system_parts.append(content)
            elif role is Role.assistant:
                logger.debug("Assistant message in history (handled by memory advisor)")
            else:
                messages.append(Message(role=role, content=content))

        if not messages:
            raise InvalidRequest("Request must contain at least one non-blank user message")
        return system_parts, messages

    def build_request(
        self,
        raw_messages: Sequence[RawMessage],
        conversation_id: str | None = None,
        *,
        instructions: str | None = None,
    ) -> ChatRequest:
        system_parts, messages = self._normalize(raw_messages)
        system_prompt = (
            "\n\n".join(system_parts) if system_parts else self._prompts.get_prompt()
        )
        return ChatRequest(
            conversation_id=resolve_conversation_id(conversation_id),
            system_prompt=system_prompt,
            messages=messages,
            options=self._options,
            format_instructions=instructions,
        )

    # -- execution --

    async def _invoke(self, request: ChatRequest) -> str:
        context = AdvisorContext(conversation_id=request.conversation_id)
        logger.debug(
            "Processing chat request %s with %d messages",
            context.request_id,
            len(request.messages),
        )
        try:
            response = await self._chain.invoke(request, context)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Chat completion failed for request %s", context.request_id)
            raise _translate(exc) from exc
        logger.debug("Chat completion successful, response length: %d", len(response.text))
        return response.text

    async def complete(
        self,
        messages: Sequence[RawMessage],
        conversation_id: str | None = None,
    ) -> str:
        """Return the full reply text."""
        return await self._invoke(self.build_request(messages, conversation_id))

    def complete_streaming(
        self,
        messages: Sequence[RawMessage],
        conversation_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Return an async iterator of reply fragments.

        Input is validated immediately; the model is not contacted until the
        first fragment is pulled.  Closing the iterator early cancels the
        upstream stream and leaves memory untouched.
        """
        return self._stream(self.build_request(messages, conversation_id))

    async def _stream(self, request: ChatRequest) -> AsyncIterator[str]:
        context = AdvisorContext(conversation_id=request.conversation_id)
        logger.debug(
            "Processing streaming chat request %s with %d messages",
            context.request_id,
            len(request.messages),
        )
        try:
            async with aclosing(self._chain.invoke_streaming(request, context)) as stream:
                async for chunk in stream:
                    if chunk.text:
                        yield chunk.text
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("Chat stream failed for request %s", context.request_id)
            raise _translate(exc) from exc

    async def complete_structured(
        self,
        messages: Sequence[RawMessage],
        target: type[T],
        conversation_id: str | None = None,
    ) -> T:
        """Return the reply parsed and validated as ``target``."""
        request = self.build_request(
            messages, conversation_id, instructions=format_instructions(target)
        )
        text = await self._invoke(request)
        try:
            result = parse_structured(text, target)
        except ConversionFailure as exc:
            logger.error("Failed to map response to type %s: %s", target.__name__, exc)
            raise
        logger.debug("Structured output mapping successful to type: %s", target.__name__)
        return result
