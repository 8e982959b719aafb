"""JSONL request history fed by the observation advisor.

Each finished request becomes one line (its END event).  Stream START
markers are only written when ``record_starts`` is set, so by default the
file holds exactly one record per request and can be queried as history.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from pathlib import Path

from pydantic import ValidationError

from chatgate.events.schemas import EventKind
from chatgate.events.schemas import EventPhase
from chatgate.events.schemas import ObservationEvent
from chatgate.events.schemas import Outcome

logger = logging.getLogger(__name__)


class JsonlEventSink:
    """Append-only request history, one JSON object per line."""

    def __init__(self, file_path: str | Path, *, record_starts: bool = False) -> None:
        self.path = Path(file_path)
        self.record_starts = record_starts
        self._lock = asyncio.Lock()

    async def write(self, event: ObservationEvent) -> None:
        if event.phase is EventPhase.START and not self.record_starts:
            return
        line = event.model_dump_json(exclude_none=True)
        async with self._lock:
            await asyncio.to_thread(self._append_line, line)

    def _append_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    async def _load(self) -> list[ObservationEvent]:
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines)
        events: list[ObservationEvent] = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(ObservationEvent.model_validate_json(line))
            except ValidationError:
                logger.warning("Ignoring unreadable history line %d in %s", line_no, self.path)
        return events

    async def read_events(
        self,
        *,
        kind: EventKind | None = None,
        conversation_id: str | None = None,
        outcome: Outcome | None = None,
        since: float | None = None,
    ) -> list[ObservationEvent]:
        """Recorded events in write order, narrowed by any filter given."""
        wanted = {
            name: value
            for name, value in (
                ("kind", kind),
                ("conversation_id", conversation_id),
                ("outcome", outcome),
            )
            if value is not None
        }
        return [
            event
            for event in await self._load()
            if all(getattr(event, name) == value for name, value in wanted.items())
            and (since is None or event.timestamp >= since)
        ]

    async def outcome_counts(self, *, conversation_id: str | None = None) -> Counter[Outcome]:
        """Tally finished requests by outcome."""
        events = await self.read_events(conversation_id=conversation_id)
        return Counter(event.outcome for event in events if event.outcome is not None)
