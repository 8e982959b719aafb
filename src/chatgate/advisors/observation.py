"""Observation advisor: one structured event per request, two per stream.

Sync calls emit a single END event.  Streams emit START before the first
chunk is pulled and exactly one END event (success, error or cancelled)
when the stream finishes; nothing is emitted per chunk.  Emission failures
are logged and swallowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from chatgate.advisors.base import ATTR_RETRY_ATTEMPTS
from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import CallNext
from chatgate.advisors.base import StreamNext
from chatgate.chat.schemas import ChatChunk
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.chat.schemas import TokenUsage
from chatgate.events.schemas import EventKind
from chatgate.events.schemas import EventPhase
from chatgate.events.schemas import ObservationEvent
from chatgate.events.schemas import Outcome
from chatgate.observability import ObservationEmitter

logger = logging.getLogger(__name__)


class ObservationAdvisor(Advisor):
    """Emits request id, duration, outcome, model and token counts."""

    name = "ObservationAdvisor"
    order = 50

    def __init__(self, emitter: ObservationEmitter | None = None) -> None:
        self._emitter = emitter or ObservationEmitter()

    async def _record(
        self,
        kind: EventKind,
        context: AdvisorContext,
        outcome: Outcome | None = None,
        *,
        model_id: str | None = None,
        usage: TokenUsage | None = None,
        error_type: str | None = None,
    ) -> None:
        # Event construction is guarded too: context attributes are free-form.
        try:
            if outcome is None:
                event = ObservationEvent(
                    request_id=context.request_id,
                    conversation_id=context.conversation_id,
                    kind=kind,
                    phase=EventPhase.START,
                )
            else:
                event = ObservationEvent(
                    request_id=context.request_id,
                    conversation_id=context.conversation_id,
                    kind=kind,
                    phase=EventPhase.END,
                    outcome=outcome,
                    duration_ms=context.elapsed_ms(),
                    model_id=model_id,
                    usage=usage,
                    attempts=context.attributes.get(ATTR_RETRY_ATTEMPTS),
                    error_type=error_type,
                )
            await self._emitter.emit(event)
        except Exception as exc:
            logger.warning(
                "Observation failed for request %s: %s", context.request_id, exc
            )

    async def advise_call(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_call: CallNext,
    ) -> ChatResponse:
        try:
            response = await next_call(request, context)
        except asyncio.CancelledError:
            await self._record(
                EventKind.CALL, context, Outcome.CANCELLED, error_type="CancelledError"
            )
            raise
        except Exception as exc:
            await self._record(
                EventKind.CALL, context, Outcome.ERROR, error_type=type(exc).__name__
            )
            raise
        await self._record(
            EventKind.CALL,
            context,
            Outcome.SUCCESS,
            model_id=response.model_id,
            usage=response.usage,
        )
        return response

    async def advise_stream(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_stream: StreamNext,
    ) -> AsyncIterator[ChatChunk]:
        await self._record(EventKind.STREAM, context)
        model_id: str | None = None
        usage: TokenUsage | None = None
        try:
            async with aclosing(next_stream(request, context)) as stream:
                async for chunk in stream:
                    if chunk.model_id:
                        model_id = chunk.model_id
                    if chunk.usage is not None:
                        usage = chunk.usage
                    yield chunk
        except Exception as exc:
            await self._record(
                EventKind.STREAM,
                context,
                Outcome.ERROR,
                model_id=model_id,
                error_type=type(exc).__name__,
            )
            raise
        except (GeneratorExit, asyncio.CancelledError) as exc:
            await self._record(
                EventKind.STREAM,
                context,
                Outcome.CANCELLED,
                model_id=model_id,
                error_type=type(exc).__name__,
            )
            raise
        await self._record(
            EventKind.STREAM,
            context,
            Outcome.SUCCESS,
            model_id=model_id,
            usage=usage,
        )
