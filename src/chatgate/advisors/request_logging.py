"""Request/response logging advisor.

``summary`` verbosity logs one INFO line per request and per outcome;
``detailed`` adds message contents, token usage and context attributes at
DEBUG.  The advisor never changes the request or the reply, and a failure
while formatting a log line never fails the request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from collections.abc import Callable
from contextlib import aclosing
from enum import Enum
from typing import Any

from chatgate.advisors.base import ATTR_RETRY_ATTEMPTS
from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import CallNext
from chatgate.advisors.base import StreamNext
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import Role

logger = logging.getLogger(__name__)


class LogVerbosity(str, Enum):
    """How much of each exchange gets logged."""

    SUMMARY = "summary"
    DETAILED = "detailed"


class LoggingAdvisor(Advisor):
    """Logs request and response summaries around the rest of the chain."""

    name = "LoggingAdvisor"
    order = 0

    def __init__(self, verbosity: LogVerbosity | str = LogVerbosity.SUMMARY) -> None:
        self._verbosity = LogVerbosity(verbosity)

    @property
    def detailed(self) -> bool:
        return self._verbosity is LogVerbosity.DETAILED

    # -- helpers --

    @staticmethod
    def _safe(fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as exc:
            logger.debug("Request logging failed: %s", exc)

    def _log_request(self, request: ChatRequest, context: AdvisorContext) -> None:
        logger.info(
            "Chat request received request_id=%s conversation=%s messages=%d",
            context.request_id,
            context.conversation_id,
            len(request.messages),
        )
        if self.detailed:
            latest_user = next(
                (m.content for m in reversed(request.messages) if m.role is Role.user),
                "No user message",
            )
            logger.debug("User message: %s", latest_user)
            if context.attributes:
                logger.debug("Advise context: %s", context.attributes)

    def _log_response(self, response: ChatResponse, context: AdvisorContext) -> None:
        logger.info(
            "Chat response generated in %.0fms using model: %s (attempts=%s)",
            context.elapsed_ms(),
            response.model_id or "unknown",
            context.attributes.get(ATTR_RETRY_ATTEMPTS, 1),
        )
        if self.detailed:
            logger.debug("Assistant message: %s", response.text)
            if response.usage is not None:
                logger.debug(
                    "Token usage - Prompt: %d, Completion: %d, Total: %d",
                    response.usage.prompt_tokens,
                    response.usage.completion_tokens,
                    response.usage.total_tokens,
                )

    # -- sync path --

    async def advise_call(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_call: CallNext,
    ) -> ChatResponse:
        self._safe(self._log_request, request, context)
        try:
            response = await next_call(request, context)
        except Exception as exc:
            logger.error(
                "Chat request %s failed after %.0fms: %s",
                context.request_id,
                context.elapsed_ms(),
                exc,
                exc_info=True,
            )
            raise
        self._safe(self._log_response, response, context)
        return response

    # -- stream path --

    async def advise_stream(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_stream: StreamNext,
    ) -> AsyncIterator[ChatChunk]:
        self._safe(self._log_request, request, context)
        chunk_count = 0
        try:
            async with aclosing(next_stream(request, context)) as stream:
                async for chunk in stream:
                    chunk_count += 1
                    yield chunk
        except Exception as exc:
            logger.error(
                "Chat stream %s failed after %.0fms (%d chunks): %s",
                context.request_id,
                context.elapsed_ms(),
                chunk_count,
                exc,
                exc_info=True,
            )
            raise
        except (GeneratorExit, asyncio.CancelledError):
            logger.info(
                "Chat stream %s cancelled after %.0fms (%d chunks)",
                context.request_id,
                context.elapsed_ms(),
                chunk_count,
            )
            raise
        logger.info(
            "Chat stream %s completed in %.0fms (%d chunks)",
            context.request_id,
            context.elapsed_ms(),
            chunk_count,
        )
