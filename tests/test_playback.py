"""
Tests for transient audio files and playback completion.

Verifies:
- Temp files exist until released, release is idempotent
- Every synthesized resource is released exactly once, whether playback
  finishes, errors, reports completion twice or is refused by the sink
"""
import pytest

from observability.event_store import event_store
from voice_bot.playback import PlaybackCompletionNotifier, PlaybackHandle
from voice_bot.transient import TransientAudio

from conftest import FakeSink


class CountingAudio(TransientAudio):
    def __init__(self, path):
        super().__init__(path)
        self.release_calls = 0
        self.deletions = 0

    def release(self) -> bool:
        self.release_calls += 1
        released = super().release()
        if released:
            self.deletions += 1
        return released


def test_transient_create_and_release(tmp_path):
    audio = TransientAudio.create(b"abc", suffix=".wav", directory=str(tmp_path), sample_rate=24000)

    assert audio.path.exists()
    assert audio.path.suffix == ".wav"
    assert audio.read_bytes() == b"abc"
    assert audio.sample_rate == 24000

    assert audio.release() is True
    assert not audio.path.exists()
    assert audio.release() is False
    assert audio.released


def test_transient_context_manager_releases(tmp_path):
    with TransientAudio.create(b"abc", suffix=".wav", directory=str(tmp_path)) as audio:
        path = audio.path
        assert path.exists()

    assert not path.exists()


def test_transient_release_tolerates_missing_file(tmp_path):
    audio = TransientAudio.create(b"abc", suffix=".pcm", directory=str(tmp_path))
    audio.path.unlink()

    assert audio.release() is True


def test_handle_completes_once(tmp_path):
    audio = CountingAudio(TransientAudio.create(b"x", suffix=".pcm", directory=str(tmp_path)).path)
    calls = []
    handle = PlaybackHandle(audio, on_released=lambda h, err: calls.append(err))

    handle.complete()
    handle.complete(RuntimeError("late error"))

    assert handle.done
    assert audio.release_calls == 1
    assert calls == [None]


def test_notifier_releases_after_playback_finishes(tmp_path, capsys):
    sink = FakeSink()
    notifier = PlaybackCompletionNotifier(sink, "room-1")
    audio = TransientAudio.create(b"pcm", suffix=".pcm", directory=str(tmp_path))

    notifier.on_synthesized(audio)

    assert notifier.pending == 1
    assert audio.path.exists()

    _, on_complete = sink.played[0]
    on_complete(None)

    assert notifier.pending == 0
    assert not audio.path.exists()
    events = event_store.query(session_id="room-1", event_type="playback.released")
    assert events[0]["result"] == "ok"


def test_notifier_releases_once_on_error_then_idle(tmp_path):
    sink = FakeSink()
    notifier = PlaybackCompletionNotifier(sink, "room-1")
    audio = CountingAudio(TransientAudio.create(b"pcm", suffix=".pcm", directory=str(tmp_path)).path)

    notifier.on_synthesized(audio)
    _, on_complete = sink.played[0]
    on_complete(RuntimeError("decoder failed"))
    on_complete(None)

    assert audio.deletions == 1
    events = event_store.query(session_id="room-1", event_type="playback.released")
    assert len(events) == 1
    assert events[0]["result"] == "error"


def test_sink_refusal_releases_and_propagates(tmp_path):
    notifier = PlaybackCompletionNotifier(FakeSink(error=RuntimeError("not connected")), "room-1")
    audio = TransientAudio.create(b"pcm", suffix=".pcm", directory=str(tmp_path))

    with pytest.raises(RuntimeError):
        notifier.on_synthesized(audio)

    assert audio.released
    assert not audio.path.exists()
    assert notifier.pending == 0


def test_release_all_frees_pending_resources(tmp_path):
    sink = FakeSink()
    notifier = PlaybackCompletionNotifier(sink, "room-1")
    first = TransientAudio.create(b"1", suffix=".pcm", directory=str(tmp_path))
    second = TransientAudio.create(b"2", suffix=".pcm", directory=str(tmp_path))
    notifier.on_synthesized(first)
    notifier.on_synthesized(second)

    notifier.release_all()

    assert notifier.pending == 0
    assert first.released and second.released

    # Completion arriving after teardown is a no-op
    sink.played[0][1](None)
    assert len(event_store.query(session_id="room-1", event_type="playback.released")) == 2
