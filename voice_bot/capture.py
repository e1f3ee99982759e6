"""
Per-channel speech capture and segmentation.

One participant is recorded per channel at a time. A second speaker who
starts while a recording is active is ignored until that segment completes.
Completed segments outside the configured duration window are discarded
before any service call is made.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter

from .errors import InvalidTransitionError


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


_ALLOWED = {
    RecordingState.IDLE: {RecordingState.RECORDING},
    RecordingState.RECORDING: {RecordingState.IDLE},
}


@dataclass(frozen=True)
class AudioSegment:
    """One completed span of a single participant's speech."""

    channel_id: str
    participant: str
    samples: bytes
    duration_ms: int


class AudioSegmentBuffer:
    """Ordered chunks of the in-progress recording."""

    def __init__(self):
        self._chunks: List[bytes] = []
        self._size = 0

    def append(self, chunk: bytes) -> None:
        self._chunks.append(bytes(chunk))
        self._size += len(chunk)

    def finalize(self) -> bytes:
        """Concatenate all chunks in arrival order and empty the buffer."""
        data = b"".join(self._chunks)
        self.discard()
        return data

    def discard(self) -> None:
        self._chunks = []
        self._size = 0

    @property
    def size_bytes(self) -> int:
        return self._size

    def __len__(self) -> int:
        return len(self._chunks)


class SpeakingSessionTracker:
    """
    Recording state for one channel.

    Timestamps come from ``now`` (seconds, monotonic by default) so tests
    can drive segment durations directly.
    """

    def __init__(
        self,
        channel_id: str,
        *,
        bot_identity: str,
        min_duration_ms: int = 500,
        max_duration_ms: int = 10000,
        now: Callable[[], float] = time.monotonic,
    ):
        self.channel_id = channel_id
        self.bot_identity = bot_identity
        self.min_duration_ms = min_duration_ms
        self.max_duration_ms = max_duration_ms
        self._now = now

        self.state = RecordingState.IDLE
        self.participant: Optional[str] = None
        self.started_at: Optional[float] = None
        self.buffer = AudioSegmentBuffer()

        self.logger = get_logger(LogComponent.CAPTURE, session_id=channel_id)
        self.emitter = EventEmitter(ObsComponent.CAPTURE)

    @property
    def is_recording(self) -> bool:
        return self.state == RecordingState.RECORDING

    def _transition(self, target: RecordingState) -> None:
        if target not in _ALLOWED[self.state]:
            raise InvalidTransitionError("recording", self.state.value, target.value)
        self.state = target

    def on_speech_start(self, participant: str) -> bool:
        """Begin recording ``participant``. Returns False when ignored."""
        if participant == self.bot_identity:
            return False
        if self.is_recording:
            self.logger.debug(
                "Speech start ignored, channel already recording",
                participant=participant,
                recording=self.participant,
            )
            return False

        self._transition(RecordingState.RECORDING)
        self.buffer.discard()
        self.participant = participant
        self.started_at = self._now()
        self.logger.debug("Recording started", participant=participant)
        return True

    def on_audio(self, participant: str, chunk: bytes) -> None:
        if self.is_recording and participant == self.participant:
            self.buffer.append(chunk)

    def on_segment_complete(self) -> Optional[AudioSegment]:
        """
        Close the active recording.

        Returns the segment if its duration is within bounds, None otherwise.
        The channel is free for a new speaker either way.
        """
        if not self.is_recording:
            return None

        duration_ms = round((self._now() - self.started_at) * 1000)
        participant = self.participant
        samples = self.buffer.finalize()

        self._transition(RecordingState.IDLE)
        self.participant = None
        self.started_at = None

        if duration_ms < self.min_duration_ms or duration_ms > self.max_duration_ms:
            reason = "too_short" if duration_ms < self.min_duration_ms else "too_long"
            self.logger.info(
                "Skipping segment",
                participant=participant,
                duration_ms=duration_ms,
                reason=reason,
            )
            self.emitter.segment_discarded(self.channel_id, participant, duration_ms, reason)
            return None

        self.logger.info(
            "Segment captured",
            participant=participant,
            duration_ms=duration_ms,
            size_bytes=len(samples),
        )
        self.emitter.segment_captured(self.channel_id, participant, duration_ms, len(samples))
        return AudioSegment(
            channel_id=self.channel_id,
            participant=participant,
            samples=samples,
            duration_ms=duration_ms,
        )

    def abandon(self) -> None:
        """Drop any in-progress recording (session teardown)."""
        if self.is_recording:
            self.logger.debug("Recording abandoned", participant=self.participant)
        self.buffer.discard()
        self.state = RecordingState.IDLE
        self.participant = None
        self.started_at = None
