"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing; just plain defaults that can
be overridden at construction time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_PLACEHOLDER_KEYS = {"REPLACE_ME", "changeme"}
_MAX_TOKENS_WARNING = 100_000


@dataclass(frozen=True)
class LLMConfig:
    """Model provider settings used by the terminal invocation."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RetryConfig:
    """Retry advisor policy for the synchronous path."""

    enabled: bool = True
    max_attempts: int = 3
    min_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 10.0


@dataclass(frozen=True)
class MemoryConfig:
    """Conversation window settings."""

    enabled: bool = True
    max_messages: int = 20
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    ttl: int = 3600


@dataclass(frozen=True)
class LoggingConfig:
    """Request logger verbosity: ``summary`` or ``detailed``."""

    enabled: bool = True
    verbosity: str = "summary"


@dataclass(frozen=True)
class ObservationConfig:
    """Observation events; ``events_file`` enables the JSONL sink."""

    enabled: bool = True
    events_file: str | None = None
    record_stream_starts: bool = False


@dataclass(frozen=True)
class PromptConfig:
    """System prompt source."""

    path: str = "system-prompt.md"
    fallback: str = "You are a helpful AI assistant."


@dataclass(frozen=True)
class ToolConfig:
    """External tool invocation limits."""

    timeout_seconds: float = 30.0
    max_rounds: int = 5


def validate_llm_config(config: LLMConfig) -> None:
    """Fail fast on an unusable ``LLMConfig``.

    Raises ``ValueError`` for a non-HTTP base URL, a placeholder API key
    or an out-of-range temperature.  An unusually large ``max_tokens`` is
    only logged.
    """
    if not config.base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid base_url: {config.base_url}. Must start with http:// or https://"
        )
    if config.api_key is not None:
        key = config.api_key.strip()
        if key.startswith("your-") or key in _PLACEHOLDER_KEYS:
            raise ValueError("llm_config.api_key appears to be a placeholder")
        if len(key) < 20:
            logger.warning(
                "API key seems unusually short (length=%d); it may be invalid",
                len(key),
            )
    if not 0.0 <= config.temperature <= 2.0:
        raise ValueError(
            f"Invalid temperature: {config.temperature}. Must be between 0.0 and 2.0"
        )
    if config.max_tokens < 1:
        raise ValueError("max_tokens must be >= 1")
    if config.max_tokens > _MAX_TOKENS_WARNING:
        logger.warning(
            "max_tokens is very high (%d); this may result in high costs",
            config.max_tokens,
        )
    logger.debug(
        "LLM config validated: provider=%s model=%s temperature=%s max_tokens=%d",
        config.provider,
        config.model,
        config.temperature,
        config.max_tokens,
    )
