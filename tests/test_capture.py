"""
Tests for speech capture and segmentation.

Verifies:
- Segments inside [min, max] duration are returned with chunks in order
- Too-short / too-long segments are discarded with an event
- One speaker per channel; the bot's own voice is never recorded
"""
import json

import pytest

from observability.event_store import event_store
from voice_bot.capture import AudioSegmentBuffer, RecordingState, SpeakingSessionTracker
from voice_bot.errors import InvalidTransitionError


@pytest.fixture
def tracker(clock):
    return SpeakingSessionTracker("room-1", bot_identity="voice-bot", now=clock)


def test_buffer_finalize_concatenates_in_arrival_order():
    buf = AudioSegmentBuffer()
    buf.append(b"ab")
    buf.append(b"cd")
    buf.append(b"e")

    assert len(buf) == 3
    assert buf.size_bytes == 5
    assert buf.finalize() == b"abcde"
    assert len(buf) == 0
    assert buf.size_bytes == 0


def test_segment_within_bounds_is_returned(tracker, clock):
    assert tracker.on_speech_start("alice") is True
    assert tracker.is_recording

    for chunk in (b"\x01\x02", b"\x03\x04", b"\x05\x06"):
        tracker.on_audio("alice", chunk)
    clock.advance_ms(2000)

    segment = tracker.on_segment_complete()

    assert segment is not None
    assert segment.participant == "alice"
    assert segment.channel_id == "room-1"
    assert segment.duration_ms == 2000
    assert segment.samples == b"\x01\x02\x03\x04\x05\x06"
    assert tracker.state == RecordingState.IDLE
    assert tracker.participant is None


@pytest.mark.parametrize("duration_ms", [500, 10000])
def test_bounds_are_inclusive(tracker, clock, duration_ms):
    tracker.on_speech_start("alice")
    clock.advance_ms(duration_ms)

    assert tracker.on_segment_complete() is not None


@pytest.mark.parametrize(
    "duration_ms,reason",
    [(300, "too_short"), (12000, "too_long")],
)
def test_out_of_bounds_segment_is_discarded(tracker, clock, capsys, duration_ms, reason):
    tracker.on_speech_start("alice")
    tracker.on_audio("alice", b"\x00" * 64)
    clock.advance_ms(duration_ms)

    assert tracker.on_segment_complete() is None
    assert not tracker.is_recording
    assert tracker.buffer.size_bytes == 0

    out = capsys.readouterr().out
    assert "segment.discarded" in out
    events = event_store.query(session_id="room-1", event_type="segment.discarded")
    assert events[0]["reason"] == reason
    assert events[0]["duration_ms"] == duration_ms


def test_captured_event_has_size_but_no_audio(tracker, clock, capsys):
    tracker.on_speech_start("alice")
    tracker.on_audio("alice", b"\x00" * 100)
    clock.advance_ms(1000)
    tracker.on_segment_complete()

    lines = [json.loads(l) for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
    captured = [e for e in lines if e.get("event_type") == "segment.captured"]
    assert captured[0]["size_bytes"] == 100
    assert captured[0]["participant"] == "alice"


def test_second_speaker_is_ignored_while_recording(tracker, clock):
    tracker.on_speech_start("alice")
    assert tracker.on_speech_start("bob") is False

    tracker.on_audio("alice", b"a1")
    tracker.on_audio("bob", b"b1")
    tracker.on_audio("alice", b"a2")
    clock.advance_ms(1500)

    segment = tracker.on_segment_complete()
    assert segment.participant == "alice"
    assert segment.samples == b"a1a2"


def test_new_speaker_accepted_after_segment_completes(tracker, clock):
    tracker.on_speech_start("alice")
    clock.advance_ms(1000)
    tracker.on_segment_complete()

    assert tracker.on_speech_start("bob") is True
    assert tracker.participant == "bob"


def test_bot_identity_is_never_recorded(tracker):
    assert tracker.on_speech_start("voice-bot") is False
    tracker.on_audio("voice-bot", b"\x00" * 10)

    assert not tracker.is_recording
    assert tracker.buffer.size_bytes == 0


def test_audio_outside_recording_is_dropped(tracker):
    tracker.on_audio("alice", b"\x00" * 10)
    assert tracker.buffer.size_bytes == 0


def test_complete_without_recording_returns_none(tracker):
    assert tracker.on_segment_complete() is None


def test_new_recording_starts_with_empty_buffer(tracker, clock):
    tracker.on_speech_start("alice")
    tracker.on_audio("alice", b"old")
    clock.advance_ms(100)
    tracker.on_segment_complete()

    tracker.on_speech_start("alice")
    tracker.on_audio("alice", b"new")
    clock.advance_ms(1000)

    assert tracker.on_segment_complete().samples == b"new"


def test_abandon_drops_recording(tracker):
    tracker.on_speech_start("alice")
    tracker.on_audio("alice", b"\x00" * 10)

    tracker.abandon()

    assert tracker.state == RecordingState.IDLE
    assert tracker.participant is None
    assert tracker.buffer.size_bytes == 0


def test_invalid_transition_raises(tracker):
    with pytest.raises(InvalidTransitionError) as exc_info:
        tracker._transition(RecordingState.IDLE)

    assert exc_info.value.current == "idle"
    assert exc_info.value.target == "idle"
