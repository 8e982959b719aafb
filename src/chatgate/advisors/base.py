"""Advisor contract shared by every interceptor in the chain.

An advisor wraps the remainder of the chain.  On the sync path it receives
``next_call`` and decides whether (and how often) to await it; on the stream
path it receives ``next_stream`` and re-yields the chunks it wants the
caller to see.  The base class passes both paths through untouched.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse

# Well-known context attribute keys
ATTR_RETRY_ATTEMPTS = "retry.attempts"
ATTR_MODEL_INVOCATIONS = "model.invocations"
ATTR_MEMORY_HISTORY = "memory.history_size"


@dataclass
class AdvisorContext:
    """Per-request state shared between advisors; never persisted."""

    conversation_id: str
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex}")
    start_time: float = field(default_factory=time.perf_counter)
    started_at: float = field(default_factory=time.time)
    attributes: dict[str, Any] = field(default_factory=dict)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000


@dataclass(frozen=True)
class AdvisorDescriptor:
    """Chain position of one advisor; lower ``order`` runs further out."""

    name: str
    order: int


CallNext = Callable[[ChatRequest, AdvisorContext], Awaitable[ChatResponse]]
StreamNext = Callable[[ChatRequest, AdvisorContext], AsyncIterator[ChatChunk]]


class Advisor:
    """Pass-through advisor; subclasses override one or both paths."""

    name = "Advisor"
    order = 0

    async def advise_call(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_call: CallNext,
    ) -> ChatResponse:
        return await next_call(request, context)

    async def advise_stream(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_stream: StreamNext,
    ) -> AsyncIterator[ChatChunk]:
        async with aclosing(next_stream(request, context)) as stream:
            async for chunk in stream:
                yield chunk

    def descriptor(self, order: int | None = None) -> AdvisorDescriptor:
        return AdvisorDescriptor(
            name=self.name, order=self.order if order is None else order
        )
