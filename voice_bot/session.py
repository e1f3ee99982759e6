"""
Channel sessions and the registry that owns them.

Each active room has exactly one ChannelSession holding its recording
state, turn controller and playback notifier. Platform callbacks are
translated into small input messages and consumed synchronously by
``ChannelSession.handle``; only the turn itself runs as a task.

Destroying a session drops its buffers, resets the turn state, releases
queued playback resources and clears the room's history. Service calls
already in flight are not cancelled; their results are ignored.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Union

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter

from .capture import SpeakingSessionTracker
from .errors import SessionExistsError, SessionNotFoundError
from .history import ConversationHistoryStore, DEFAULT_MAX_ENTRIES
from .personas import Persona
from .playback import PlaybackCompletionNotifier, PlaybackSink
from .services import VoiceServices
from .turn_controller import ConversationTurnController, TurnOutcome
from .wav import DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE, encode_clip


@dataclass(frozen=True)
class SpeechStarted:
    participant: str


@dataclass(frozen=True)
class AudioReceived:
    participant: str
    data: bytes


@dataclass(frozen=True)
class SpeechEnded:
    """The platform's silence-based end-of-segment condition fired."""

    participant: str


SessionInput = Union[SpeechStarted, AudioReceived, SpeechEnded]


class SessionState(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class ChannelSession:
    def __init__(
        self,
        channel_id: str,
        *,
        tracker: SpeakingSessionTracker,
        controller: ConversationTurnController,
        notifier: PlaybackCompletionNotifier,
        history: ConversationHistoryStore,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        num_channels: int = DEFAULT_CHANNELS,
    ):
        self.channel_id = channel_id
        self.tracker = tracker
        self.controller = controller
        self.notifier = notifier
        self.history = history
        self.sample_rate = sample_rate
        self.num_channels = num_channels

        self.state = SessionState.ACTIVE
        self.created_at = datetime.now(timezone.utc)
        self.ended_at: Optional[datetime] = None
        self.end_reason: Optional[str] = None

        self._tasks: Set[asyncio.Task] = set()
        self.logger = get_logger(LogComponent.SESSION_REGISTRY, session_id=channel_id)

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_recording(self) -> bool:
        return self.tracker.is_recording

    def handle(self, event: SessionInput) -> Optional[asyncio.Task]:
        """
        Consume one platform input.

        Returns the turn task when a completed segment was submitted.
        """
        if not self.is_active:
            return None

        if isinstance(event, AudioReceived):
            self.tracker.on_audio(event.participant, event.data)
        elif isinstance(event, SpeechStarted):
            self.tracker.on_speech_start(event.participant)
        elif isinstance(event, SpeechEnded):
            if event.participant != self.tracker.participant:
                return None
            segment = self.tracker.on_segment_complete()
            if segment is None:
                return None
            clip = encode_clip(segment.samples, self.sample_rate, self.num_channels)
            return self._spawn(self.controller.submit(clip))
        else:
            raise TypeError(f"Unsupported session input: {type(event).__name__}")
        return None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                "Turn task failed",
                error=str(error),
                error_type=type(error).__name__,
                exc_info=error,
            )

    async def wait_idle(self) -> List[TurnOutcome]:
        """Wait for every spawned turn to finish (shutdown and tests)."""
        if not self._tasks:
            return []
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return [r for r in results if isinstance(r, TurnOutcome)]

    def clear_history(self) -> None:
        self.history.clear(self.channel_id)

    def close(self, reason: str) -> None:
        if not self.is_active:
            return
        self.tracker.abandon()
        self.controller.close()
        self.notifier.release_all()
        self.history.clear(self.channel_id)
        self.state = SessionState.CLOSED
        self.ended_at = datetime.now(timezone.utc)
        self.end_reason = reason

    def status(self) -> dict:
        return {
            "session_id": self.channel_id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "end_reason": self.end_reason,
            "recording": self.tracker.is_recording,
            "recording_participant": self.tracker.participant,
            "turn_state": self.controller.state.value,
            "history_length": len(self.history.get(self.channel_id)),
            "pending_playback": self.notifier.pending,
        }


class SessionRegistry:
    """Creates, looks up and destroys channel sessions."""

    def __init__(
        self,
        services: VoiceServices,
        persona: Persona,
        *,
        bot_identity: str = "voice-bot",
        min_segment_ms: int = 500,
        max_segment_ms: int = 10000,
        history_max_entries: int = DEFAULT_MAX_ENTRIES,
        service_timeout: Optional[float] = None,
        now: Callable[[], float] = time.monotonic,
    ):
        self.services = services
        self.persona = persona
        self.bot_identity = bot_identity
        self.min_segment_ms = min_segment_ms
        self.max_segment_ms = max_segment_ms
        self.service_timeout = service_timeout
        self.history = ConversationHistoryStore(max_entries=history_max_entries)
        self._now = now
        self._sessions: Dict[str, ChannelSession] = {}

        self.logger = get_logger(LogComponent.SESSION_REGISTRY)
        self.emitter = EventEmitter(ObsComponent.SESSION_REGISTRY)

    def create(self, channel_id: str, sink: PlaybackSink) -> ChannelSession:
        if channel_id in self._sessions:
            raise SessionExistsError(channel_id)

        notifier = PlaybackCompletionNotifier(sink, channel_id)
        session = ChannelSession(
            channel_id,
            tracker=SpeakingSessionTracker(
                channel_id,
                bot_identity=self.bot_identity,
                min_duration_ms=self.min_segment_ms,
                max_duration_ms=self.max_segment_ms,
                now=self._now,
            ),
            controller=ConversationTurnController(
                channel_id,
                services=self.services,
                history=self.history,
                notifier=notifier,
                persona=self.persona,
                service_timeout=self.service_timeout,
            ),
            notifier=notifier,
            history=self.history,
        )
        self._sessions[channel_id] = session
        self.logger.info("Session started", session_id=channel_id)
        self.emitter.emit("session.started", channel_id, persona=self.persona.name)
        return session

    def get(self, channel_id: str) -> Optional[ChannelSession]:
        return self._sessions.get(channel_id)

    def require(self, channel_id: str) -> ChannelSession:
        session = self._sessions.get(channel_id)
        if session is None:
            raise SessionNotFoundError(channel_id)
        return session

    def list(self) -> List[ChannelSession]:
        return list(self._sessions.values())

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._sessions

    def destroy(self, channel_id: str, reason: str) -> bool:
        """Tear down a session. Returns False if none was active."""
        session = self._sessions.pop(channel_id, None)
        if session is None:
            return False
        session.close(reason)
        self.logger.info("Session ended", session_id=channel_id, reason=reason)
        self.emitter.emit("session.ended", channel_id, reason=reason)
        return True

    def destroy_all(self, reason: str) -> None:
        for channel_id in list(self._sessions):
            self.destroy(channel_id, reason)
