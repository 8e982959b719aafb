"""Unit test fixtures: scripted terminal invocations and model adapters.

Nothing here talks to a network or a container.
"""

from __future__ import annotations

import asyncio

import pytest

from chatgate.advisors.base import ATTR_MODEL_INVOCATIONS
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import TokenUsage
from chatgate.memory import ConversationMemory
from chatgate.memory import InMemoryConversationStore


def _response(text: str) -> ChatResponse:
    return ChatResponse(
        text=text,
        model_id="fake-model",
        usage=TokenUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5),
    )


class ScriptedTerminal:
    """Terminal invocation that plays back a list of outcomes.

    Each ``call`` pops the next outcome: an exception is raised, a string
    becomes the reply text, a ``ChatResponse`` is returned as-is.  Once the
    script is exhausted every call answers ``reply``.
    """

    def __init__(
        self,
        outcomes: list | None = None,
        *,
        chunks: list | None = None,
        reply: str = "ok",
        delay: float = 0.0,
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.chunks = list(chunks if chunks is not None else ["Hello", " world"])
        self.reply = reply
        self.delay = delay
        self.calls: list[ChatRequest] = []
        self.stream_calls: list[ChatRequest] = []
        self.stream_closed = False

    async def call(self, request: ChatRequest, context) -> ChatResponse:
        self.calls.append(request)
        context.attributes[ATTR_MODEL_INVOCATIONS] = len(self.calls)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else self.reply
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return _response(outcome)
        return outcome

    async def stream(self, request: ChatRequest, context):
        self.stream_calls.append(request)
        try:
            for item in self.chunks:
                if isinstance(item, BaseException):
                    raise item
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield ChatChunk(text=item, model_id="fake-model")
            yield ChatChunk(
                text="",
                model_id="fake-model",
                usage=TokenUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5),
            )
        finally:
            self.stream_closed = True


class ScriptedAdapter:
    """``LLMAdapter`` double with the same outcome script as ``ScriptedTerminal``."""

    def __init__(
        self,
        outcomes: list | None = None,
        *,
        chunks: list[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.outcomes = list(outcomes or [])
        self.chunks = list(chunks if chunks is not None else ["Hello", " world"])
        self.delay = delay
        self.requests: list[ChatRequest] = []

    async def complete(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return _response(outcome)
        return outcome

    async def stream(self, request: ChatRequest):
        self.requests.append(request)
        for text in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield ChatChunk(text=text, model_id="fake-model")


@pytest.fixture()
def memory() -> ConversationMemory:
    """Return a ConversationMemory over a fresh in-process store."""
    return ConversationMemory(InMemoryConversationStore(), max_window=20)


@pytest.fixture()
def make_terminal():
    """Factory for ``ScriptedTerminal`` instances."""
    return ScriptedTerminal


@pytest.fixture()
def make_adapter():
    """Factory for ``ScriptedAdapter`` instances."""
    return ScriptedAdapter


@pytest.fixture()
def fake_sleep():
    """Record backoff delays instead of sleeping."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
