"""Lightweight in-process observability: latency aggregates and event fan-out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Protocol
from typing import runtime_checkable

from chatgate.errors import ObservationFailure
from chatgate.events.schemas import EventPhase
from chatgate.events.schemas import ObservationEvent
from chatgate.events.schemas import Outcome

logger = logging.getLogger(__name__)


@dataclass
class LatencySummary:
    """Aggregated latency metrics for one operation."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0
    total_tokens: int = 0


class _LatencyRecorder:
    def __init__(self) -> None:
        self._lock = Lock()
        self._stats: dict[str, LatencySummary] = {}

    def record(
        self, *, operation: str, duration_ms: float, ok: bool, tokens: int = 0
    ) -> None:
        normalized = max(float(duration_ms), 0.0)
        with self._lock:
            summary = self._stats.setdefault(operation, LatencySummary())
            summary.count += 1
            if not ok:
                summary.error_count += 1
            summary.total_ms += normalized
            summary.last_ms = normalized
            summary.total_tokens += max(int(tokens), 0)
            if summary.count == 1:
                summary.min_ms = normalized
                summary.max_ms = normalized
            else:
                summary.min_ms = min(summary.min_ms, normalized)
                summary.max_ms = max(summary.max_ms, normalized)

        logger.debug(
            "latency operation=%s duration_ms=%.3f ok=%s",
            operation,
            normalized,
            ok,
        )

    def snapshot(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                operation: {
                    "count": summary.count,
                    "error_count": summary.error_count,
                    "total_ms": round(summary.total_ms, 3),
                    "avg_ms": round(
                        summary.total_ms / summary.count if summary.count else 0.0,
                        3,
                    ),
                    "min_ms": round(summary.min_ms, 3),
                    "max_ms": round(summary.max_ms, 3),
                    "last_ms": round(summary.last_ms, 3),
                    "total_tokens": summary.total_tokens,
                }
                for operation, summary in sorted(self._stats.items())
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


_RECORDER = _LatencyRecorder()


def record_latency(
    *, operation: str, duration_ms: float, ok: bool = True, tokens: int = 0
) -> None:
    """Record one latency sample."""
    _RECORDER.record(operation=operation, duration_ms=duration_ms, ok=ok, tokens=tokens)


def latency_metrics_snapshot() -> dict[str, dict[str, float | int]]:
    """Return current in-process latency aggregates."""
    return _RECORDER.snapshot()


def reset_latency_metrics() -> None:
    """Clear all latency aggregates (test helper)."""
    _RECORDER.reset()


# ---------------------------------------------------------------------------
# Event sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class EventSink(Protocol):
    """Destination for observation events."""

    async def write(self, event: ObservationEvent) -> None: ...


class LatencySink:
    """Feeds END events into the in-process latency aggregates."""

    async def write(self, event: ObservationEvent) -> None:
        if event.phase is not EventPhase.END:
            return
        record_latency(
            operation=f"chat.{event.kind.value}",
            duration_ms=event.duration_ms or 0.0,
            ok=event.outcome is Outcome.SUCCESS,
            tokens=event.usage.total_tokens if event.usage else 0,
        )


class LogSink:
    """Writes one structured log line per event."""

    async def write(self, event: ObservationEvent) -> None:
        logger.info(
            "observation request_id=%s kind=%s phase=%s outcome=%s "
            "duration_ms=%s model=%s tokens=%s attempts=%s error_type=%s",
            event.request_id,
            event.kind.value,
            event.phase.value,
            event.outcome.value if event.outcome else None,
            f"{event.duration_ms:.3f}" if event.duration_ms is not None else None,
            event.model_id,
            event.usage.total_tokens if event.usage else None,
            event.attempts,
            event.error_type,
        )


class ObservationEmitter:
    """Fans events out to every sink.

    All sinks are attempted; if any failed, ``ObservationFailure`` is raised
    afterwards so the caller can log it without losing the other sinks.
    """

    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = (
            list(sinks) if sinks is not None else [LatencySink(), LogSink()]
        )

    @property
    def sinks(self) -> list[EventSink]:
        return list(self._sinks)

    async def emit(self, event: ObservationEvent) -> None:
        failures: list[str] = []
        for sink in self._sinks:
            try:
                await sink.write(event)
            except Exception as exc:
                failures.append(f"{type(sink).__name__}: {exc}")
        if failures:
            raise ObservationFailure(
                f"{len(failures)} observation sink(s) failed: " + "; ".join(failures)
            )
