"""
Structured event emission and event store tests.
"""
import json
from datetime import datetime, timedelta, timezone

from observability.event_store import EventStore, StoredEvent, event_store
from observability.events import Component, EventEmitter, Severity


def _last_event(capsys):
    lines = [l for l in capsys.readouterr().out.splitlines() if l.strip()]
    return json.loads(lines[-1])


class TestEventFormat:
    def test_required_fields(self, capsys):
        EventEmitter(Component.TURN_CONTROLLER).emit(
            "turn.started",
            "room-1",
            severity=Severity.INFO,
        )

        event = _last_event(capsys)
        for key in ("ts", "session_id", "component", "event_type", "severity", "correlation_id", "pii"):
            assert key in event
        assert event["session_id"] == "room-1"
        assert event["component"] == "turn_controller"
        assert event["severity"] == "info"
        # Correlation falls back to the session id
        assert event["correlation_id"] == "room-1"
        assert event["pii"]["contains_pii"] is False

    def test_timestamp_is_iso8601_utc(self, capsys):
        EventEmitter(Component.CAPTURE).emit("segment.captured", "room-1")

        ts = datetime.fromisoformat(_last_event(capsys)["ts"])
        assert ts.tzinfo is not None

    def test_extra_fields_and_store(self, capsys):
        EventEmitter(Component.PLAYBACK).emit("playback.released", "room-1", result="ok")

        assert _last_event(capsys)["result"] == "ok"
        stored = event_store.query(session_id="room-1")
        assert stored[0]["result"] == "ok"


class TestEventHelpers:
    def test_segment_discarded_is_debug(self, capsys):
        EventEmitter(Component.CAPTURE).segment_discarded("room-1", "alice", 12000, "too_long")

        event = _last_event(capsys)
        assert event["event_type"] == "segment.discarded"
        assert event["severity"] == "debug"
        assert event["reason"] == "too_long"

    def test_turn_event_correlation(self, capsys):
        EventEmitter(Component.TURN_CONTROLLER).turn_event("turn.completed", "room-1", "turn_1", latency_ms=900)

        event = _last_event(capsys)
        assert event["correlation_id"] == "turn_1"
        assert event["latency_ms"] == 900

    def test_provider_error(self, capsys):
        EventEmitter(Component.TURN_CONTROLLER).provider_error(
            "room-1", "turn_1", "llm", "service.timeout", "TimeoutError"
        )

        event = _last_event(capsys)
        assert event["event_type"] == "provider.error"
        assert event["severity"] == "warn"
        assert event["service"] == "llm"


def _event(event_type, session_id="room-1", ts=None, **extra):
    return {
        "ts": (ts or datetime.now(timezone.utc)).isoformat(),
        "session_id": session_id,
        "component": "turn_controller",
        "event_type": event_type,
        "severity": "info",
        "correlation_id": extra.pop("correlation_id", session_id),
        **extra,
    }


class TestEventStore:
    def test_bounded_fifo(self):
        store = EventStore(max_events=3)
        for i in range(5):
            store.store(_event("turn.started", n=i))

        events = store.query()
        assert [e["n"] for e in events] == [2, 3, 4]
        assert store.get_stats()["total_events"] == 3

    def test_filters(self):
        store = EventStore()
        store.store(_event("turn.started", correlation_id="turn_1"))
        store.store(_event("turn.completed", correlation_id="turn_1"))
        store.store(_event("segment.captured"))
        store.store(_event("turn.started", session_id="room-2"))

        assert len(store.query(session_id="room-1")) == 3
        assert len(store.query(session_id="room-1", event_type="turn.*")) == 2
        assert len(store.query(event_type="turn.started")) == 2
        assert len(store.query(correlation_id="turn_1")) == 2
        assert len(store.query(session_id="room-1", limit=1)) == 1

    def test_time_window(self):
        store = EventStore()
        now = datetime.now(timezone.utc)
        store.store(_event("a", ts=now - timedelta(minutes=10)))
        store.store(_event("b", ts=now))

        recent = store.query(since=now - timedelta(minutes=1))
        assert [e["event_type"] for e in recent] == ["b"]
        old = store.query(until=now - timedelta(minutes=5))
        assert [e["event_type"] for e in old] == ["a"]

    def test_count_by_type(self):
        store = EventStore()
        store.store(_event("turn.started"))
        store.store(_event("turn.started"))
        store.store(_event("turn.dropped"))

        assert store.count_by_type("room-1") == {"turn.started": 2, "turn.dropped": 1}

    def test_stored_event_round_trip_keeps_extra_fields(self):
        raw = _event("turn.aborted", reason="stt_failed")

        restored = StoredEvent.from_dict(raw).to_dict()

        assert restored["reason"] == "stt_failed"
        assert restored["event_type"] == "turn.aborted"
