"""Ordered composition of advisors around a terminal invocation.

``AdvisorChainBuilder`` replaces framework bean wiring: advisors are added
explicitly with an order, sorted stably, and nested once into an immutable
pipeline.  The chain itself never retries, logs or touches memory.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Protocol
from typing import runtime_checkable

from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import AdvisorDescriptor
from chatgate.advisors.base import CallNext
from chatgate.advisors.base import StreamNext
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse

logger = logging.getLogger(__name__)


@runtime_checkable
class TerminalInvocation(Protocol):
    """The innermost link: the actual model call."""

    async def call(self, request: ChatRequest, context: AdvisorContext) -> ChatResponse: ...

    def stream(
        self, request: ChatRequest, context: AdvisorContext
    ) -> AsyncIterator[ChatChunk]: ...


def _link_call(advisor: Advisor, inner: CallNext) -> CallNext:
    async def call(request: ChatRequest, context: AdvisorContext) -> ChatResponse:
        return await advisor.advise_call(request, context, inner)

    return call


def _link_stream(advisor: Advisor, inner: StreamNext) -> StreamNext:
    def stream(request: ChatRequest, context: AdvisorContext) -> AsyncIterator[ChatChunk]:
        return advisor.advise_stream(request, context, inner)

    return stream


class AdvisorChain:
    """Immutable, pre-composed advisor pipeline."""

    def __init__(
        self,
        advisors: list[tuple[AdvisorDescriptor, Advisor]],
        terminal: TerminalInvocation,
    ) -> None:
        self._entries = tuple(advisors)
        self._terminal = terminal

        call_next: CallNext = terminal.call
        stream_next: StreamNext = terminal.stream
        # Innermost first so the lowest order ends up outermost.
        for _, advisor in reversed(self._entries):
            call_next = _link_call(advisor, call_next)
            stream_next = _link_stream(advisor, stream_next)
        self._call_entry = call_next
        self._stream_entry = stream_next

    @property
    def descriptors(self) -> tuple[AdvisorDescriptor, ...]:
        return tuple(descriptor for descriptor, _ in self._entries)

    @property
    def advisors(self) -> tuple[Advisor, ...]:
        return tuple(advisor for _, advisor in self._entries)

    async def invoke(
        self, request: ChatRequest, context: AdvisorContext | None = None
    ) -> ChatResponse:
        """Run the synchronous path through every advisor."""
        ctx = context or AdvisorContext(conversation_id=request.conversation_id)
        return await self._call_entry(request, ctx)

    def invoke_streaming(
        self, request: ChatRequest, context: AdvisorContext | None = None
    ) -> AsyncIterator[ChatChunk]:
        """Run the streaming path; nothing executes until the first pull."""
        ctx = context or AdvisorContext(conversation_id=request.conversation_id)
        return self._stream_entry(request, ctx)


class AdvisorChainBuilder:
    """Collects ``(advisor, order)`` pairs and builds an ``AdvisorChain``."""

    def __init__(self) -> None:
        self._entries: list[tuple[AdvisorDescriptor, Advisor]] = []

    def add(self, advisor: Advisor, order: int | None = None) -> AdvisorChainBuilder:
        self._entries.append((advisor.descriptor(order), advisor))
        return self

    def extend(self, advisors: list[Advisor]) -> AdvisorChainBuilder:
        for advisor in advisors:
            self.add(advisor)
        return self

    def build(self, terminal: TerminalInvocation) -> AdvisorChain:
        # sorted() is stable: equal orders keep registration order.
        ordered = sorted(self._entries, key=lambda entry: entry[0].order)
        logger.info(
            "Advisor chain built: %s",
            ", ".join(f"{d.name}({d.order})" for d, _ in ordered) or "<empty>",
        )
        return AdvisorChain(ordered, terminal)
