"""
LiveKit room glue.

Bridges one connected ``rtc.Room`` to its ChannelSession:
- remote audio tracks are read as 48 kHz stereo PCM frames
- active-speaker updates become speech start / end inputs
- synthesized replies are played through a published local audio track
- the session is torn down when the room disconnects or only the bot is left
"""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, Iterator, Optional

from livekit import api, rtc

from logging_setup import get_logger, Component as LogComponent

from .activity import SpeechActivityMonitor
from .config import BotConfig
from .playback import CompletionCallback
from .session import AudioReceived, ChannelSession, SessionInput, SessionRegistry
from .transient import TransientAudio
from .wav import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE

logger = get_logger(LogComponent.LIVEKIT_TRANSPORT)

PLAYBACK_FRAME_MS = 20
PLAYBACK_SAMPLE_RATE = 24000
PLAYBACK_CHANNELS = 1


def build_join_token(config: BotConfig, room_name: str) -> str:
    return (
        api.AccessToken(config.livekit_api_key, config.livekit_api_secret)
        .with_identity(config.bot_identity)
        .with_name(config.bot_identity)
        .with_grants(api.VideoGrants(room_join=True, room=room_name))
        .to_jwt()
    )


def pcm_frames(pcm: bytes, sample_rate: int, num_channels: int, frame_ms: int = PLAYBACK_FRAME_MS) -> Iterator[rtc.AudioFrame]:
    """Split 16-bit PCM into fixed-size frames, zero-padding the last one."""
    samples_per_channel = sample_rate * frame_ms // 1000
    frame_bytes = samples_per_channel * num_channels * 2
    for offset in range(0, len(pcm), frame_bytes):
        chunk = pcm[offset:offset + frame_bytes]
        if len(chunk) < frame_bytes:
            chunk = chunk + b"\x00" * (frame_bytes - len(chunk))
        yield rtc.AudioFrame(
            data=chunk,
            sample_rate=sample_rate,
            num_channels=num_channels,
            samples_per_channel=samples_per_channel,
        )


class LiveKitPlaybackSink:
    """
    Plays synthesized PCM into the bot's microphone track.

    A new resource replaces the one currently playing; the replaced
    resource still gets its completion callback.
    """

    def __init__(
        self,
        sample_rate: int = PLAYBACK_SAMPLE_RATE,
        num_channels: int = PLAYBACK_CHANNELS,
        *,
        source: Optional[rtc.AudioSource] = None,
    ):
        self.sample_rate = sample_rate
        self.num_channels = num_channels
        self.source = source if source is not None else rtc.AudioSource(sample_rate, num_channels)
        self.track: Optional[rtc.LocalAudioTrack] = None
        self._current: Optional[asyncio.Task] = None

    async def publish(self, room: rtc.Room) -> None:
        self.track = rtc.LocalAudioTrack.create_audio_track("bot-voice", self.source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        await room.local_participant.publish_track(self.track, options)

    def play(self, resource: TransientAudio, on_complete: CompletionCallback) -> None:
        if self._current is not None and not self._current.done():
            self._current.cancel()
            # Frames of the replaced reply already queued must not play
            self.source.clear_queue()
        self._current = asyncio.get_running_loop().create_task(self._play(resource, on_complete))

    async def _play(self, resource: TransientAudio, on_complete: CompletionCallback) -> None:
        error: Optional[BaseException] = None
        try:
            pcm = resource.read_bytes()
            rate = resource.sample_rate or self.sample_rate
            channels = resource.num_channels or self.num_channels
            if channels != self.num_channels:
                raise ValueError(f"playback has {channels} channels, track expects {self.num_channels}")

            frames = pcm_frames(pcm, rate, channels)
            if rate == self.sample_rate:
                for frame in frames:
                    await self.source.capture_frame(frame)
            else:
                resampler = rtc.AudioResampler(rate, self.sample_rate, num_channels=channels)
                for frame in frames:
                    for out in resampler.push(frame):
                        await self.source.capture_frame(out)
                for out in resampler.flush():
                    await self.source.capture_frame(out)
            await self.source.wait_for_playout()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            on_complete(error)

    async def aclose(self) -> None:
        if self._current is not None and not self._current.done():
            self._current.cancel()
            try:
                await self._current
            except asyncio.CancelledError:
                pass
        await self.source.aclose()


class RoomConnection:
    """One joined room and the channel session it feeds."""

    def __init__(
        self,
        room: rtc.Room,
        room_name: str,
        registry: SessionRegistry,
        config: BotConfig,
        *,
        on_closed: Optional[Callable[[str], None]] = None,
        sink: Optional[LiveKitPlaybackSink] = None,
    ):
        self.room = room
        self.room_name = room_name
        self.registry = registry
        self.config = config
        self._on_closed = on_closed

        self.sink = sink if sink is not None else LiveKitPlaybackSink()
        self.session: Optional[ChannelSession] = None
        self.activity = SpeechActivityMonitor(self._dispatch, silence_ms=config.end_of_segment_silence_ms)

        self._streams: Dict[str, asyncio.Task] = {}
        self._watchdog: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closing = False
        self.logger = logger.with_session(room_name)

    async def start(self) -> ChannelSession:
        await self.sink.publish(self.room)
        self.session = self.registry.create(self.room_name, self.sink)

        self.room.on("track_subscribed", self._on_track_subscribed)
        self.room.on("track_unsubscribed", self._on_track_unsubscribed)
        self.room.on("active_speakers_changed", self._on_active_speakers_changed)
        self.room.on("participant_disconnected", self._on_participant_disconnected)
        self.room.on("disconnected", self._on_disconnected)

        # Tracks subscribed before the handlers were attached
        for participant in self.room.remote_participants.values():
            for publication in participant.track_publications.values():
                if publication.track is not None and publication.kind == rtc.TrackKind.KIND_AUDIO:
                    self._start_stream(publication.track, participant.identity)

        self._watchdog = asyncio.get_running_loop().create_task(self._empty_room_watchdog())
        self.logger.info("Receiving audio", participants=len(self.room.remote_participants))
        return self.session

    def _dispatch(self, event: SessionInput) -> None:
        if self.session is not None:
            self.session.handle(event)

    def _start_stream(self, track: rtc.Track, identity: str) -> None:
        if identity == self.config.bot_identity or identity in self._streams:
            return
        self._streams[identity] = asyncio.get_running_loop().create_task(self._read_audio(track, identity))

    async def _read_audio(self, track: rtc.Track, identity: str) -> None:
        stream = rtc.AudioStream(track, sample_rate=DEFAULT_SAMPLE_RATE, num_channels=DEFAULT_CHANNELS)
        try:
            async for event in stream:
                self._dispatch(AudioReceived(identity, bytes(event.frame.data)))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "Error in audio stream",
                participant=identity,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await stream.aclose()

    def _stop_stream(self, identity: str) -> None:
        task = self._streams.pop(identity, None)
        if task is not None and not task.done():
            task.cancel()

    def _on_track_subscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        if track.kind == rtc.TrackKind.KIND_AUDIO:
            self.logger.debug("Audio track subscribed", participant=participant.identity)
            self._start_stream(track, participant.identity)

    def _on_track_unsubscribed(
        self,
        track: rtc.Track,
        publication: rtc.RemoteTrackPublication,
        participant: rtc.RemoteParticipant,
    ) -> None:
        if track.kind == rtc.TrackKind.KIND_AUDIO:
            self._stop_stream(participant.identity)

    def _on_active_speakers_changed(self, speakers: list[rtc.Participant]) -> None:
        self.activity.update(
            p.identity for p in speakers
            if p.identity != self.config.bot_identity
        )

    def _on_participant_disconnected(self, participant: rtc.RemoteParticipant) -> None:
        self.logger.debug("Participant left", participant=participant.identity)
        self.activity.participant_left(participant.identity)
        self._stop_stream(participant.identity)

    def _on_disconnected(self, *args) -> None:
        if not self._closing and self._close_task is None:
            self._close_task = asyncio.get_running_loop().create_task(self.close("disconnected"))

    async def _empty_room_watchdog(self) -> None:
        interval = self.config.empty_room_check_seconds
        while not self._closing:
            await asyncio.sleep(interval)
            if not self.room.remote_participants:
                self.logger.info("Only the bot is left in the room, disconnecting")
                await self.close("channel_empty")
                return

    async def close(self, reason: str) -> None:
        if self._closing:
            return
        self._closing = True

        self.activity.close()
        self.registry.destroy(self.room_name, reason)
        for identity in list(self._streams):
            self._stop_stream(identity)
        if self._watchdog is not None and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()

        try:
            await self.sink.aclose()
            await self.room.disconnect()
        except Exception as e:
            self.logger.warning(
                "Error disconnecting from room",
                error=str(e),
                error_type=type(e).__name__,
            )

        self.logger.info("Stopped receiving audio", reason=reason)
        if self._on_closed is not None:
            self._on_closed(self.room_name)
