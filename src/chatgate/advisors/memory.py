"""Conversation memory advisor.

Prepends the stored window to the outgoing messages and, only after a
successful exchange, appends the new user turn followed by the reply.  The
conversation stays locked for the whole exchange so concurrent requests on
one id run one after another.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from chatgate.advisors.base import ATTR_MEMORY_HISTORY
from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import CallNext
from chatgate.advisors.base import StreamNext
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import Message
from chatgate.chat.schemas import Role
from chatgate.memory.conversation import ConversationMemory
from chatgate.memory.conversation import ConversationWindow

logger = logging.getLogger(__name__)


def _exchange(request: ChatRequest, reply_text: str) -> list[Message]:
    """Messages to persist: the new user turn, then the assistant reply."""
    turn = request.user_messages()
    if reply_text.strip():
        turn.append(Message(role=Role.assistant, content=reply_text))
    else:
        logger.debug(
            "Blank reply for conversation %s; storing user turn only",
            request.conversation_id,
        )
    return turn


class MemoryAdvisor(Advisor):
    """Reads the conversation window before the call and writes it after."""

    name = "MemoryAdvisor"
    order = -1000

    def __init__(self, memory: ConversationMemory) -> None:
        self._memory = memory

    @property
    def memory(self) -> ConversationMemory:
        return self._memory

    def _augment(
        self, request: ChatRequest, window: ConversationWindow, context: AdvisorContext
    ) -> ChatRequest:
        history = window.messages
        context.attributes[ATTR_MEMORY_HISTORY] = len(history)
        if not history:
            return request
        return request.model_copy(update={"messages": history + list(request.messages)})

    async def advise_call(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_call: CallNext,
    ) -> ChatResponse:
        async with self._memory.exclusive(request.conversation_id) as window:
            response = await next_call(self._augment(request, window, context), context)
            await window.append(_exchange(request, response.text))
            return response

    async def advise_stream(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_stream: StreamNext,
    ) -> AsyncIterator[ChatChunk]:
        async with self._memory.exclusive(request.conversation_id) as window:
            parts: list[str] = []
            augmented = self._augment(request, window, context)
            async with aclosing(next_stream(augmented, context)) as stream:
                async for chunk in stream:
                    parts.append(chunk.text)
                    yield chunk
            # Reached only when the stream completed normally.
            await window.append(_exchange(request, "".join(parts)))
