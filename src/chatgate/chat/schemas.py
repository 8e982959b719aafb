"""Pydantic models for the chat pipeline.

``Message`` is the unit stored in conversation memory.  ``ChatRequest`` is
what advisors forward down the chain; ``ChatResponse`` (sync) and
``ChatChunk`` (stream) are what flows back up.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Conversation roles accepted by the gateway."""

    user = "user"
    system = "system"
    assistant = "assistant"


class Message(BaseModel):
    """A single immutable conversation message."""

    model_config = {"frozen": True}

    role: Role = Field(
        description="Author of the message.",
    )
    content: str = Field(
        description="Message text; never blank.",
    )

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message content must not be blank")
        return value

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.user, content=content)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.system, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        return cls(role=Role.assistant, content=content)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolSpec(BaseModel):
    """A tool advertised to the model."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolTurn(BaseModel):
    """One round of tool calls and their textual results, in call order."""

    calls: list[ToolCall]
    results: list[str]


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------


class ModelOptions(BaseModel):
    """Generation options forwarded to the model backend."""

    model_config = {"frozen": True}

    model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single terminal invocation.",
    )


class ChatRequest(BaseModel):
    """The request as seen by advisors and the terminal invocation."""

    model_config = {"frozen": True}

    conversation_id: str
    system_prompt: str = ""
    messages: list[Message] = Field(
        default_factory=list,
        description="Ordered messages sent to the model (history first once memory ran).",
    )
    options: ModelOptions = Field(default_factory=ModelOptions)
    tools: list[ToolSpec] = Field(default_factory=list)
    tool_turns: list[ToolTurn] = Field(default_factory=list)
    format_instructions: str | None = Field(
        default=None,
        description="Output-format instructions appended to the system prompt.",
    )

    def user_messages(self) -> list[Message]:
        return [m for m in self.messages if m.role is Role.user]


class TokenUsage(BaseModel):
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """A complete model reply."""

    text: str = ""
    usage: TokenUsage | None = None
    model_id: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ChatChunk(BaseModel):
    """One element of a streamed reply.

    Providers may attach ``usage`` / ``model_id`` to any chunk, typically
    the last one.
    """

    text: str = ""
    usage: TokenUsage | None = None
    model_id: str | None = None


# ---------------------------------------------------------------------------
# MCP surface
# ---------------------------------------------------------------------------


class ReplyMessage(BaseModel):
    """The assistant message returned to MCP callers."""

    role: Role = Role.assistant
    content: str


class ChatResult(BaseModel):
    """Output of the ``chat`` MCP tool.

    On success ``message`` holds the assistant reply; on failure
    ``status`` is ``"error"`` and ``message`` is a human-readable string.
    """

    status: str = "ok"
    conversation_id: str | None = None
    message: ReplyMessage | str
    error_code: str | None = None
