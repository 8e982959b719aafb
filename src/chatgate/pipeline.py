"""Default advisor pipeline wiring.

Memory is outermost so a retried or failed attempt never touches the
conversation; retry sits innermost, right above the model call.
"""

from __future__ import annotations

import logging

from chatgate.advisors.base import Advisor
from chatgate.advisors.chain import AdvisorChain
from chatgate.advisors.chain import AdvisorChainBuilder
from chatgate.advisors.chain import TerminalInvocation
from chatgate.advisors.memory import MemoryAdvisor
from chatgate.advisors.observation import ObservationAdvisor
from chatgate.advisors.request_logging import LoggingAdvisor
from chatgate.advisors.retry import RetryAdvisor
from chatgate.advisors.retry import RetryPolicy
from chatgate.chat.schemas import ModelOptions
from chatgate.config import LLMConfig
from chatgate.config import LoggingConfig
from chatgate.config import ObservationConfig
from chatgate.config import RetryConfig
from chatgate.events.store import JsonlEventSink
from chatgate.memory.conversation import ConversationMemory
from chatgate.observability import LatencySink
from chatgate.observability import LogSink
from chatgate.observability import ObservationEmitter

logger = logging.getLogger(__name__)


def build_emitter(config: ObservationConfig) -> ObservationEmitter:
    sinks = [LatencySink(), LogSink()]
    if config.events_file:
        sinks.append(
            JsonlEventSink(config.events_file, record_starts=config.record_stream_starts)
        )
    return ObservationEmitter(sinks)


def model_options(config: LLMConfig) -> ModelOptions:
    return ModelOptions(
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )


def build_advisor_chain(
    terminal: TerminalInvocation,
    *,
    memory: ConversationMemory | None = None,
    retry_config: RetryConfig | None = None,
    logging_config: LoggingConfig | None = None,
    observation_config: ObservationConfig | None = None,
    extra_advisors: list[Advisor] | None = None,
) -> AdvisorChain:
    """Assemble the standard chain; disabled concerns are simply not added."""
    retry_cfg = retry_config or RetryConfig()
    logging_cfg = logging_config or LoggingConfig()
    observation_cfg = observation_config or ObservationConfig()

    builder = AdvisorChainBuilder()
    if memory is not None:
        builder.add(MemoryAdvisor(memory))
    if logging_cfg.enabled:
        builder.add(LoggingAdvisor(logging_cfg.verbosity))
    if observation_cfg.enabled:
        builder.add(ObservationAdvisor(build_emitter(observation_cfg)))
    if retry_cfg.enabled:
        builder.add(RetryAdvisor(RetryPolicy.from_config(retry_cfg)))
    else:
        logger.info("Retry disabled; upstream failures surface on the first attempt")
    builder.extend(extra_advisors or [])
    return builder.build(terminal)
