"""Observation event types and data models."""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel
from pydantic import Field

from chatgate.chat.schemas import TokenUsage


class EventKind(str, Enum):
    """Which call path produced the event."""

    CALL = "call"
    STREAM = "stream"


class EventPhase(str, Enum):
    """Streams emit START then END; calls emit END only."""

    START = "start"
    END = "end"


class Outcome(str, Enum):
    """Terminal status of a request or stream."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class ObservationEvent(BaseModel):
    """A single immutable observation record."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event was emitted.",
    )
    request_id: str = Field(
        description="Unique token of the observed request.",
    )
    conversation_id: str | None = Field(
        default=None,
        description="Conversation the request belongs to.",
    )
    kind: EventKind = Field(
        description="Call path (call or stream).",
    )
    phase: EventPhase = Field(
        default=EventPhase.END,
        description="START only for streams; END carries the outcome.",
    )
    outcome: Outcome | None = Field(
        default=None,
        description="Set on END events.",
    )
    duration_ms: float | None = Field(
        default=None,
        description="Elapsed time since chain entry, END events only.",
    )
    model_id: str | None = Field(
        default=None,
        description="Model identifier reported by the provider.",
    )
    usage: TokenUsage | None = Field(
        default=None,
        description="Token counts when the provider reported them.",
    )
    attempts: int | None = Field(
        default=None,
        description="Retry attempts consumed (sync path).",
    )
    error_type: str | None = Field(
        default=None,
        description="Exception class name for ERROR outcomes.",
    )
