"""
Tests for the LiveKit room glue.

The rtc room and audio source are faked; the session registry, the speech
activity monitor and the playback notifier underneath are real.

Verifies:
- The session is torn down when only the bot is left in the room
- A platform disconnect tears the session down exactly once
- Active-speaker updates reach the session as speech start / end inputs
- A new reply replaces the one playing; both are completed and released once
"""
import asyncio
from types import SimpleNamespace

import pytest

from observability.event_store import event_store
from voice_bot.config import BotConfig
from voice_bot.livekit_transport import LiveKitPlaybackSink, RoomConnection
from voice_bot.playback import PlaybackCompletionNotifier
from voice_bot.session import SpeechEnded, SpeechStarted
from voice_bot.transient import TransientAudio

from conftest import FakeSink


class FakeLocalParticipant:
    def __init__(self):
        self.published = []

    async def publish_track(self, track, options):
        self.published.append((track, options))


class FakeRoom:
    def __init__(self, participants=()):
        self.handlers = {}
        self.remote_participants = {
            identity: SimpleNamespace(identity=identity, track_publications={})
            for identity in participants
        }
        self.local_participant = FakeLocalParticipant()
        self.disconnect_calls = 0

    def on(self, event, callback):
        self.handlers[event] = callback

    async def disconnect(self):
        self.disconnect_calls += 1


class RoomSink(FakeSink):
    """FakeSink that can be published into a room and closed."""

    def __init__(self):
        super().__init__()
        self.closed = False

    async def publish(self, room):
        await room.local_participant.publish_track("bot-voice", None)

    async def aclose(self):
        self.closed = True


class FakeAudioSource:
    """Blocks every captured frame until ``gate`` is set."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.played_out = asyncio.Event()
        self.frames = []
        self.queue_clears = 0

    async def capture_frame(self, frame):
        await self.gate.wait()
        self.frames.append(frame)

    async def wait_for_playout(self):
        self.played_out.set()

    def clear_queue(self):
        self.queue_clears += 1

    async def aclose(self):
        pass


@pytest.fixture
def config():
    return BotConfig(
        livekit_url="wss://test.livekit.cloud",
        livekit_api_key="devkey",
        livekit_api_secret="a-very-long-development-secret-value",
        openai_api_key="sk-test",
        end_of_segment_silence_ms=10,
    )


def make_connection(room, registry, config, closed=None):
    done = asyncio.Event()

    def on_closed(room_name):
        if closed is not None:
            closed.append(room_name)
        done.set()

    connection = RoomConnection(
        room, "room-1", registry, config, on_closed=on_closed, sink=RoomSink()
    )
    return connection, done


@pytest.mark.asyncio
async def test_start_publishes_and_creates_session(registry, config):
    room = FakeRoom(participants=["alice"])
    connection, _ = make_connection(room, registry, config)

    session = await connection.start()

    assert registry.get("room-1") is session
    assert room.local_participant.published == [("bot-voice", None)]
    assert {"track_subscribed", "active_speakers_changed", "disconnected"} <= set(room.handlers)
    await connection.close("test_done")


@pytest.mark.asyncio
async def test_empty_room_disconnects(registry, config):
    config.empty_room_check_seconds = 0.01
    room = FakeRoom()
    closed = []
    connection, done = make_connection(room, registry, config, closed)

    await connection.start()
    await asyncio.wait_for(done.wait(), timeout=1)

    assert "room-1" not in registry
    assert closed == ["room-1"]
    assert room.disconnect_calls == 1
    assert connection.sink.closed
    ended = event_store.query(session_id="room-1", event_type="session.ended")
    assert [e["reason"] for e in ended] == ["channel_empty"]


@pytest.mark.asyncio
async def test_room_disconnect_tears_down_once(registry, config):
    room = FakeRoom(participants=["alice"])
    closed = []
    connection, done = make_connection(room, registry, config, closed)
    session = await connection.start()

    room.handlers["disconnected"]("server_shutdown")
    room.handlers["disconnected"]("server_shutdown")
    await asyncio.wait_for(done.wait(), timeout=1)

    assert not session.is_active
    assert session.end_reason == "disconnected"
    assert closed == ["room-1"]
    assert len(event_store.query(session_id="room-1", event_type="session.ended")) == 1

    await connection.close("again")
    assert closed == ["room-1"]


@pytest.mark.asyncio
async def test_active_speakers_become_speech_inputs(registry, config):
    room = FakeRoom(participants=["alice"])
    connection, _ = make_connection(room, registry, config)
    session = await connection.start()

    inputs = []
    handle = session.handle

    def recording_handle(event):
        inputs.append(event)
        return handle(event)

    session.handle = recording_handle

    room.handlers["active_speakers_changed"]([
        SimpleNamespace(identity="alice"),
        SimpleNamespace(identity="voice-bot"),
    ])
    assert session.tracker.participant == "alice"

    room.handlers["active_speakers_changed"]([])
    await asyncio.sleep(0.05)

    assert inputs == [SpeechStarted("alice"), SpeechEnded("alice")]
    assert not session.is_recording
    await connection.close("test_done")


@pytest.mark.asyncio
async def test_new_reply_replaces_current_playback():
    source = FakeAudioSource()
    sink = LiveKitPlaybackSink(source=source)
    notifier = PlaybackCompletionNotifier(sink, "room-1")
    pcm = b"\x01\x00" * 480

    first = TransientAudio.create(pcm, suffix=".pcm", sample_rate=24000, num_channels=1)
    second = TransientAudio.create(pcm, suffix=".pcm", sample_rate=24000, num_channels=1)

    first_handle = notifier.on_synthesized(first)
    await asyncio.sleep(0)
    second_handle = notifier.on_synthesized(second)
    await asyncio.sleep(0)

    assert source.queue_clears == 1
    assert first_handle.done
    assert first.released
    assert not second_handle.done

    source.gate.set()
    await asyncio.wait_for(source.played_out.wait(), timeout=1)

    assert second_handle.done
    assert second.released
    assert notifier.pending == 0
    assert len(source.frames) == 1
    assert len(event_store.query(session_id="room-1", event_type="playback.released")) == 2
