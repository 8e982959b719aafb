"""Retry with exponential backoff for the synchronous path.

Retries re-await the next link only; the rest of the chain above this
advisor runs once.  Streams are passed through untouched: by the time a
stream fails, part of the reply has already reached the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from chatgate.advisors.base import ATTR_RETRY_ATTEMPTS
from chatgate.advisors.base import Advisor
from chatgate.advisors.base import AdvisorContext
from chatgate.advisors.base import CallNext
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import ChatResponse
from chatgate.config import RetryConfig
from chatgate.errors import GatewayError
from chatgate.errors import TransientUpstreamFailure

logger = logging.getLogger(__name__)

_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    TransientUpstreamFailure,
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    httpx.TransportError,
)


@dataclass
class RetryState:
    """Progress of one logical request; never shared across requests."""

    attempt: int = 1
    last_error: Exception | None = None
    next_backoff: float = 0.0


class RetryPolicy:
    """Classifies failures and computes the backoff schedule."""

    def __init__(
        self,
        max_attempts: int = 3,
        min_backoff: float = 1.0,
        max_backoff: float = 10.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if min_backoff < 0 or max_backoff < min_backoff:
            raise ValueError("backoff bounds must satisfy 0 <= min_backoff <= max_backoff")
        self.max_attempts = max_attempts
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            min_backoff=config.min_backoff_seconds,
            max_backoff=config.max_backoff_seconds,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        """Timeouts and transport failures, directly or as the direct cause.

        A classified ``GatewayError`` other than ``TransientUpstreamFailure``
        is final whatever its cause: a ``ToolExecutionFailure`` wrapping a
        timeout must not re-run tools that already executed.
        """
        if isinstance(exc, _RETRYABLE_TYPES):
            return True
        if isinstance(exc, GatewayError):
            return False
        cause = exc.__cause__
        return cause is not None and isinstance(cause, _RETRYABLE_TYPES)

    def backoff(self, attempt: int) -> float:
        """Delay after failed *attempt* (1-based): ``min * 2**(attempt-1)``, capped."""
        return min(self.max_backoff, self.min_backoff * (2 ** (attempt - 1)))


class RetryAdvisor(Advisor):
    """Re-invokes the remainder of the chain on retryable failures."""

    name = "RetryAdvisor"
    order = 100

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def advise_call(
        self,
        request: ChatRequest,
        context: AdvisorContext,
        next_call: CallNext,
    ) -> ChatResponse:
        max_attempts = self._policy.max_attempts
        state = RetryState()
        while True:
            context.attributes[ATTR_RETRY_ATTEMPTS] = state.attempt
            if state.attempt > 1:
                logger.info(
                    "Retry attempt %d of %d (request_id=%s)",
                    state.attempt,
                    max_attempts,
                    context.request_id,
                )
            try:
                return await next_call(request, context)
            except Exception as exc:
                state.last_error = exc
                if not self._policy.is_retryable(exc):
                    logger.warning(
                        "Non-retryable error on attempt %d: %s", state.attempt, exc
                    )
                    raise
                if state.attempt >= max_attempts:
                    logger.error(
                        "Max retry attempts (%d) reached, giving up: %s",
                        max_attempts,
                        exc,
                    )
                    raise
                state.next_backoff = self._policy.backoff(state.attempt)
                logger.warning(
                    "Chat request failed (attempt %d/%d): %s. Retrying in %.0fms",
                    state.attempt,
                    max_attempts,
                    exc,
                    state.next_backoff * 1000,
                )
            # Cancellation raised here propagates; no further attempts.
            await self._sleep(state.next_backoff)
            state.attempt += 1
