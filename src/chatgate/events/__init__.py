"""Observation events: schemas and the append-only JSONL sink."""

from chatgate.events.schemas import EventKind
from chatgate.events.schemas import EventPhase
from chatgate.events.schemas import ObservationEvent
from chatgate.events.schemas import Outcome
from chatgate.events.store import JsonlEventSink

__all__ = [
    "EventKind",
    "EventPhase",
    "JsonlEventSink",
    "ObservationEvent",
    "Outcome",
]
