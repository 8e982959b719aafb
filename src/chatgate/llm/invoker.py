"""Terminal invocation: the innermost link of the advisor chain.

Applies the per-call timeout, advertises tools and runs the bounded
tool-call loop on the sync path, and counts invocations in the context.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from chatgate.advisors.base import ATTR_MODEL_INVOCATIONS
from chatgate.advisors.base import AdvisorContext
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import ToolTurn
from chatgate.errors import FatalUpstreamFailure
from chatgate.errors import timeout_failure
from chatgate.llm.adapters import LLMAdapter
from chatgate.tools import ToolRegistry

logger = logging.getLogger(__name__)


class ModelInvoker:
    """Wraps an ``LLMAdapter`` as the chain's terminal capability."""

    def __init__(
        self,
        adapter: LLMAdapter,
        *,
        tools: ToolRegistry | None = None,
        max_tool_rounds: int = 5,
    ) -> None:
        self._adapter = adapter
        self._tools = tools
        self._max_tool_rounds = max_tool_rounds

    @property
    def adapter(self) -> LLMAdapter:
        return self._adapter

    @staticmethod
    def _count(context: AdvisorContext) -> int:
        count = int(context.attributes.get(ATTR_MODEL_INVOCATIONS, 0)) + 1
        context.attributes[ATTR_MODEL_INVOCATIONS] = count
        logger.debug(
            "Model invocation %d for request %s", count, context.request_id
        )
        return count

    async def _complete(self, request: ChatRequest) -> ChatResponse:
        timeout = request.options.timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await self._adapter.complete(request)
        except TimeoutError as exc:
            raise timeout_failure(f"model call exceeded {timeout}s timeout") from exc

    async def call(self, request: ChatRequest, context: AdvisorContext) -> ChatResponse:
        self._count(context)
        if self._tools is not None and len(self._tools):
            specs = await self._tools.list_tools()
            if specs:
                request = request.model_copy(update={"tools": specs})

        turns = list(request.tool_turns)
        for _ in range(self._max_tool_rounds + 1):
            current = request.model_copy(update={"tool_turns": turns}) if turns else request
            response = await self._complete(current)
            if not response.tool_calls or self._tools is None:
                return response
            results = [
                await self._tools.execute(call.name, call.arguments)
                for call in response.tool_calls
            ]
            turns.append(ToolTurn(calls=response.tool_calls, results=results))
        raise FatalUpstreamFailure(
            f"model kept requesting tools after {self._max_tool_rounds} rounds"
        )

    async def stream(
        self, request: ChatRequest, context: AdvisorContext
    ) -> AsyncIterator[ChatChunk]:
        """Relay adapter chunks; the timeout bounds each wait for the next chunk."""
        self._count(context)
        timeout = request.options.timeout_seconds
        async with aclosing(self._adapter.stream(request)) as stream:
            while True:
                try:
                    async with asyncio.timeout(timeout):
                        chunk = await anext(stream)
                except StopAsyncIteration:
                    return
                except TimeoutError as exc:
                    raise timeout_failure(
                        f"model stream idle for more than {timeout}s"
                    ) from exc
                yield chunk
