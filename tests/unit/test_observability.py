"""Unit tests for latency aggregates, event sinks and the observation advisor."""

from __future__ import annotations

from contextlib import aclosing

import pytest

from chatgate.advisors import Advisor
from chatgate.advisors import AdvisorChainBuilder
from chatgate.advisors import AdvisorContext
from chatgate.advisors import ObservationAdvisor
from chatgate.advisors import RetryAdvisor
from chatgate.advisors import RetryPolicy
from chatgate.chat.schemas import ChatRequest
from chatgate.chat.schemas import Message
from chatgate.errors import FatalUpstreamFailure
from chatgate.errors import ObservationFailure
from chatgate.errors import timeout_failure
from chatgate.events import EventKind
from chatgate.events import EventPhase
from chatgate.events import JsonlEventSink
from chatgate.events import ObservationEvent
from chatgate.events import Outcome
from chatgate.observability import LatencySink
from chatgate.observability import ObservationEmitter
from chatgate.observability import latency_metrics_snapshot
from chatgate.observability import record_latency
from chatgate.observability import reset_latency_metrics


class _CollectingSink:
    def __init__(self) -> None:
        self.events: list[ObservationEvent] = []

    async def write(self, event: ObservationEvent) -> None:
        self.events.append(event)


class _BrokenSink:
    async def write(self, event: ObservationEvent) -> None:
        raise OSError("disk full")


class _OddAttemptsAdvisor(Advisor):
    name = "OddAttemptsAdvisor"
    order = 200

    async def advise_call(self, request, context, next_call):
        context.attributes["retry.attempts"] = "several"
        return await next_call(request, context)


def _request() -> ChatRequest:
    return ChatRequest(conversation_id="c1", messages=[Message.user("hi")])


def _chain(terminal, *sinks, extra=()):
    builder = AdvisorChainBuilder().add(ObservationAdvisor(ObservationEmitter(list(sinks))))
    for advisor in extra:
        builder.add(advisor)
    return builder.build(terminal)


# ---------------------------------------------------------------------------
# Latency aggregates
# ---------------------------------------------------------------------------


class TestObservabilityLatency:
    def setup_method(self):
        reset_latency_metrics()

    def teardown_method(self):
        reset_latency_metrics()

    def test_records_latency_aggregates(self):
        record_latency(operation="mcp.chat", duration_ms=10.0, ok=True, tokens=7)
        record_latency(operation="mcp.chat", duration_ms=30.0, ok=False)

        metrics = latency_metrics_snapshot()["mcp.chat"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        assert metrics["total_ms"] == 40.0
        assert metrics["avg_ms"] == 20.0
        assert metrics["min_ms"] == 10.0
        assert metrics["max_ms"] == 30.0
        assert metrics["last_ms"] == 30.0
        assert metrics["total_tokens"] == 7

    def test_negative_durations_clamped(self):
        record_latency(operation="chat.call", duration_ms=-5.0)
        assert latency_metrics_snapshot()["chat.call"]["min_ms"] == 0.0

    def test_reset_clears_all_metrics(self):
        record_latency(operation="chat.stream", duration_ms=12.0, ok=True)
        assert "chat.stream" in latency_metrics_snapshot()
        reset_latency_metrics()
        assert latency_metrics_snapshot() == {}

    async def test_latency_sink_ignores_start_events(self):
        sink = LatencySink()
        await sink.write(
            ObservationEvent(request_id="r1", kind=EventKind.STREAM, phase=EventPhase.START)
        )
        assert latency_metrics_snapshot() == {}

        await sink.write(
            ObservationEvent(
                request_id="r1",
                kind=EventKind.STREAM,
                outcome=Outcome.ERROR,
                duration_ms=5.0,
            )
        )
        metrics = latency_metrics_snapshot()["chat.stream"]
        assert metrics["count"] == 1
        assert metrics["error_count"] == 1


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------


class TestObservationEmitter:
    async def test_default_sinks(self):
        emitter = ObservationEmitter()
        assert len(emitter.sinks) == 2

    async def test_broken_sink_does_not_starve_others(self):
        collector = _CollectingSink()
        emitter = ObservationEmitter([_BrokenSink(), collector])
        event = ObservationEvent(request_id="r1", kind=EventKind.CALL, outcome=Outcome.SUCCESS)

        with pytest.raises(ObservationFailure, match="disk full"):
            await emitter.emit(event)
        assert collector.events == [event]


# ---------------------------------------------------------------------------
# ObservationAdvisor
# ---------------------------------------------------------------------------


class TestObservationAdvisorCall:
    async def test_success_emits_single_end_event(self, make_terminal):
        sink = _CollectingSink()
        chain = _chain(make_terminal(["done"]), sink)
        context = AdvisorContext(conversation_id="c1")

        await chain.invoke(_request(), context)

        assert len(sink.events) == 1
        event = sink.events[0]
        assert event.kind is EventKind.CALL
        assert event.phase is EventPhase.END
        assert event.outcome is Outcome.SUCCESS
        assert event.request_id == context.request_id
        assert event.conversation_id == "c1"
        assert event.model_id == "fake-model"
        assert event.usage is not None and event.usage.total_tokens == 5
        assert event.duration_ms is not None and event.duration_ms >= 0

    async def test_error_emits_error_outcome(self, make_terminal):
        sink = _CollectingSink()
        chain = _chain(make_terminal([FatalUpstreamFailure("boom")]), sink)

        with pytest.raises(FatalUpstreamFailure):
            await chain.invoke(_request())

        assert [e.outcome for e in sink.events] == [Outcome.ERROR]
        assert sink.events[0].error_type == "FatalUpstreamFailure"

    async def test_records_retry_attempts(self, make_terminal, fake_sleep):
        sink = _CollectingSink()
        retry = RetryAdvisor(RetryPolicy(max_attempts=3), sleep=fake_sleep)
        chain = _chain(make_terminal([timeout_failure("t"), "done"]), sink, extra=[retry])

        await chain.invoke(_request())

        assert sink.events[0].attempts == 2

    async def test_sink_failure_never_fails_request(self, make_terminal, caplog):
        chain = _chain(make_terminal(["done"]), _BrokenSink())

        with caplog.at_level("WARNING", logger="chatgate.advisors.observation"):
            response = await chain.invoke(_request())

        assert response.text == "done"
        assert "Observation failed" in caplog.text

    async def test_odd_context_attribute_never_fails_request(self, make_terminal, caplog):
        sink = _CollectingSink()
        chain = _chain(make_terminal(["done"]), sink, extra=[_OddAttemptsAdvisor()])

        with caplog.at_level("WARNING", logger="chatgate.advisors.observation"):
            response = await chain.invoke(_request())

        assert response.text == "done"
        assert sink.events == []
        assert "Observation failed" in caplog.text


class TestObservationAdvisorStream:
    async def test_single_start_and_end_event(self, make_terminal):
        sink = _CollectingSink()
        chain = _chain(make_terminal(chunks=["a", "b", "c", "d"]), sink)

        async with aclosing(chain.invoke_streaming(_request())) as stream:
            _ = [chunk async for chunk in stream]

        assert [e.phase for e in sink.events] == [EventPhase.START, EventPhase.END]
        end = sink.events[1]
        assert end.kind is EventKind.STREAM
        assert end.outcome is Outcome.SUCCESS
        assert end.model_id == "fake-model"
        assert end.usage is not None and end.usage.total_tokens == 5

    async def test_cancelled_stream_emits_cancelled(self, make_terminal):
        sink = _CollectingSink()
        chain = _chain(make_terminal(chunks=["a", "b"]), sink)

        async with aclosing(chain.invoke_streaming(_request())) as stream:
            async for _chunk in stream:
                break

        assert [e.outcome for e in sink.events] == [None, Outcome.CANCELLED]

    async def test_failed_stream_emits_error(self, make_terminal):
        sink = _CollectingSink()
        chain = _chain(make_terminal(chunks=["a", FatalUpstreamFailure("cut")]), sink)

        with pytest.raises(FatalUpstreamFailure):
            async with aclosing(chain.invoke_streaming(_request())) as stream:
                async for _chunk in stream:
                    pass

        assert [e.outcome for e in sink.events] == [None, Outcome.ERROR]
        assert sink.events[1].error_type == "FatalUpstreamFailure"

    async def test_sink_failure_does_not_break_stream(self, make_terminal):
        chain = _chain(make_terminal(chunks=["a", "b"]), _BrokenSink())

        async with aclosing(chain.invoke_streaming(_request())) as stream:
            texts = [chunk.text async for chunk in stream]

        assert "".join(texts) == "ab"


# ---------------------------------------------------------------------------
# JSONL sink
# ---------------------------------------------------------------------------


class TestJsonlEventSink:
    async def test_write_and_read_back(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl")
        call = ObservationEvent(request_id="r1", kind=EventKind.CALL, outcome=Outcome.SUCCESS)
        stream = ObservationEvent(request_id="r2", kind=EventKind.STREAM, outcome=Outcome.ERROR)

        await sink.write(call)
        await sink.write(stream)

        events = await sink.read_events()
        assert [e.request_id for e in events] == ["r1", "r2"]
        assert await sink.read_events(kind=EventKind.STREAM) == [stream]

    async def test_stream_starts_skipped_by_default(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl")
        await sink.write(
            ObservationEvent(request_id="r1", kind=EventKind.STREAM, phase=EventPhase.START)
        )
        await sink.write(
            ObservationEvent(request_id="r1", kind=EventKind.STREAM, outcome=Outcome.SUCCESS)
        )

        events = await sink.read_events()

        assert [e.phase for e in events] == [EventPhase.END]

    async def test_stream_starts_recorded_when_enabled(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl", record_starts=True)
        await sink.write(
            ObservationEvent(request_id="r1", kind=EventKind.STREAM, phase=EventPhase.START)
        )
        assert len(await sink.read_events()) == 1

    async def test_filters_by_conversation_and_outcome(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl")
        for request_id, conv_id, outcome in [
            ("r1", "a", Outcome.SUCCESS),
            ("r2", "a", Outcome.ERROR),
            ("r3", "b", Outcome.SUCCESS),
        ]:
            await sink.write(
                ObservationEvent(
                    request_id=request_id,
                    conversation_id=conv_id,
                    kind=EventKind.CALL,
                    outcome=outcome,
                )
            )

        by_conv = await sink.read_events(conversation_id="a")
        failed = await sink.read_events(outcome=Outcome.ERROR)

        assert [e.request_id for e in by_conv] == ["r1", "r2"]
        assert [e.request_id for e in failed] == ["r2"]

    async def test_outcome_counts(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl")
        for outcome in (Outcome.SUCCESS, Outcome.SUCCESS, Outcome.CANCELLED):
            await sink.write(
                ObservationEvent(
                    request_id="r", conversation_id="a", kind=EventKind.CALL, outcome=outcome
                )
            )

        counts = await sink.outcome_counts(conversation_id="a")

        assert counts[Outcome.SUCCESS] == 2
        assert counts[Outcome.CANCELLED] == 1
        assert counts[Outcome.ERROR] == 0

    async def test_since_filter(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "events.jsonl")
        await sink.write(
            ObservationEvent(request_id="old", kind=EventKind.CALL, timestamp=100.0)
        )
        await sink.write(
            ObservationEvent(request_id="new", kind=EventKind.CALL, timestamp=200.0)
        )
        events = await sink.read_events(since=150.0)
        assert [e.request_id for e in events] == ["new"]

    async def test_missing_file_reads_empty(self, tmp_path):
        sink = JsonlEventSink(tmp_path / "absent.jsonl")
        assert await sink.read_events() == []

    async def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "logs" / "events.jsonl"
        await JsonlEventSink(path).write(ObservationEvent(request_id="r1", kind=EventKind.CALL))
        assert path.exists()

    async def test_unreadable_lines_skipped(self, tmp_path):
        path = tmp_path / "events.jsonl"
        sink = JsonlEventSink(path)
        await sink.write(ObservationEvent(request_id="r1", kind=EventKind.CALL))
        with open(path, "a") as fh:
            fh.write("{not json}\n")
        events = await sink.read_events()
        assert [e.request_id for e in events] == ["r1"]
