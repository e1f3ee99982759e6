"""
Turn Controller - one conversational turn per channel at a time.

State flow:
    IDLE -> TRANSCRIBING -> GENERATING -> SPEAKING -> IDLE
               |               |             |
               +-------> IDLE (empty transcript, no trigger, failure)

A clip submitted while the channel is not IDLE is dropped, never queued.
Service failures end the turn quietly: they are logged and emitted as
events, there is no retry and nothing is said in the channel. Once the
controller is closed (session destroyed), results of calls still in flight
are ignored.
"""
from __future__ import annotations

import asyncio
import itertools
import time
from enum import Enum
from typing import Any, Awaitable, Optional

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .errors import InvalidTransitionError, classify_service_error
from .history import ConversationHistoryStore, HistoryEntry
from .personas import Persona, match_trigger
from .playback import PlaybackCompletionNotifier
from .services import VoiceServices
from .transient import TransientAudio
from .wav import EncodedClip


class TurnState(str, Enum):
    IDLE = "idle"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SPEAKING = "speaking"


_ALLOWED = {
    TurnState.IDLE: {TurnState.TRANSCRIBING},
    TurnState.TRANSCRIBING: {TurnState.GENERATING, TurnState.IDLE},
    TurnState.GENERATING: {TurnState.SPEAKING, TurnState.IDLE},
    TurnState.SPEAKING: {TurnState.IDLE},
}


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    DROPPED = "dropped"
    EMPTY_TRANSCRIPT = "empty_transcript"
    NOT_TRIGGERED = "not_triggered"
    STT_FAILED = "stt_failed"
    LLM_FAILED = "llm_failed"
    TTS_FAILED = "tts_failed"
    PLAYBACK_FAILED = "playback_failed"
    ABANDONED = "abandoned"


_FAILURE_OUTCOMES = {
    "stt": TurnOutcome.STT_FAILED,
    "llm": TurnOutcome.LLM_FAILED,
    "tts": TurnOutcome.TTS_FAILED,
}

_turn_counter = itertools.count(1)


class _TurnAborted(Exception):
    def __init__(self, outcome: TurnOutcome):
        super().__init__(outcome.value)
        self.outcome = outcome


class ConversationTurnController:
    """Drives transcribe -> trigger check -> generate -> synthesize -> play."""

    def __init__(
        self,
        channel_id: str,
        *,
        services: VoiceServices,
        history: ConversationHistoryStore,
        notifier: PlaybackCompletionNotifier,
        persona: Persona,
        service_timeout: Optional[float] = None,
    ):
        self.channel_id = channel_id
        self.services = services
        self.history = history
        self.notifier = notifier
        self.persona = persona
        self.service_timeout = service_timeout

        self.state = TurnState.IDLE
        self.current_turn_id: Optional[str] = None
        self._closed = False

        self.logger = get_logger(LogComponent.TURN_CONTROLLER, session_id=channel_id)
        self.emitter = EventEmitter(ObsComponent.TURN_CONTROLLER)

    @property
    def closed(self) -> bool:
        return self._closed

    def _transition(self, target: TurnState) -> None:
        if target not in _ALLOWED[self.state]:
            raise InvalidTransitionError("turn", self.state.value, target.value)
        self.logger.debug("Turn state changed", from_state=self.state.value, to_state=target.value)
        self.state = target

    def close(self) -> None:
        """Stop accepting clips; in-flight results will be discarded."""
        self._closed = True
        self.state = TurnState.IDLE
        self.current_turn_id = None

    async def submit(self, clip: EncodedClip) -> TurnOutcome:
        if self._closed:
            return TurnOutcome.ABANDONED
        if self.state != TurnState.IDLE:
            self.logger.info(
                "Already processing a turn, dropping clip",
                state=self.state.value,
                turn_id=self.current_turn_id,
            )
            self.emitter.turn_event(
                "turn.dropped",
                self.channel_id,
                self.current_turn_id or "",
                severity=Severity.DEBUG,
                state=self.state.value,
            )
            return TurnOutcome.DROPPED

        turn_id = f"turn_{int(time.time() * 1000)}_{next(_turn_counter)}"
        self.current_turn_id = turn_id
        self._transition(TurnState.TRANSCRIBING)
        self.emitter.turn_event("turn.started", self.channel_id, turn_id, clip_bytes=len(clip.data))
        t_start = time.perf_counter()

        try:
            outcome = await self._run_turn(clip, turn_id)
        except _TurnAborted as aborted:
            outcome = aborted.outcome
        finally:
            if not self._closed:
                self.state = TurnState.IDLE
                self.current_turn_id = None

        latency_ms = int((time.perf_counter() - t_start) * 1000)
        if outcome == TurnOutcome.COMPLETED:
            self.emitter.turn_event("turn.completed", self.channel_id, turn_id, latency_ms=latency_ms)
        elif outcome == TurnOutcome.NOT_TRIGGERED:
            self.emitter.turn_event("turn.not_triggered", self.channel_id, turn_id, severity=Severity.DEBUG)
        else:
            self.emitter.turn_event(
                "turn.aborted",
                self.channel_id,
                turn_id,
                severity=Severity.INFO if outcome in (TurnOutcome.EMPTY_TRANSCRIPT, TurnOutcome.ABANDONED) else Severity.WARN,
                reason=outcome.value,
                latency_ms=latency_ms,
            )
        return outcome

    async def _run_turn(self, clip: EncodedClip, turn_id: str) -> TurnOutcome:
        with TransientAudio.create(clip.data, suffix=".wav") as wav_file:
            transcript = await self._call(
                "stt",
                turn_id,
                self.services.stt.transcribe(wav_file.path, language=self.persona.language),
            )
        if self._closed:
            return TurnOutcome.ABANDONED

        if not transcript or not transcript.strip():
            self.logger.info("No speech detected")
            return TurnOutcome.EMPTY_TRANSCRIPT

        self.logger.debug_pii("Transcribed", transcript=transcript)

        match = match_trigger(transcript, self.persona.trigger_phrases)
        if not match.triggered:
            self.logger.debug("No trigger phrase detected, not responding")
            return TurnOutcome.NOT_TRIGGERED

        # A bare greeting has no remainder; pass the greeting itself along
        message = match.message or transcript.strip()
        self.logger.info("Trigger detected", phrase=match.phrase, message_length=len(message))
        self.history.append(self.channel_id, HistoryEntry(role="user", content=message))

        self._transition(TurnState.GENERATING)
        messages = [
            {"role": "system", "content": self.persona.system_prompt},
            *self.history.messages(self.channel_id),
        ]
        reply = await self._call("llm", turn_id, self.services.llm.complete(messages))
        if self._closed:
            return TurnOutcome.ABANDONED
        self.history.append(self.channel_id, HistoryEntry(role="assistant", content=reply))
        self.logger.debug_pii("Reply generated", reply=reply)

        self._transition(TurnState.SPEAKING)
        audio = await self._call("tts", turn_id, self.services.tts.synthesize(reply))
        if self._closed:
            return TurnOutcome.ABANDONED

        resource = TransientAudio.create(
            audio.data,
            suffix=audio.suffix,
            sample_rate=audio.sample_rate,
            num_channels=audio.num_channels,
        )
        try:
            self.notifier.on_synthesized(resource)
        except Exception as e:
            self.logger.error(
                "Playback handoff failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return TurnOutcome.PLAYBACK_FAILED

        return TurnOutcome.COMPLETED

    async def _call(self, service: str, turn_id: str, call: Awaitable[Any]) -> Any:
        """Await one service call; any failure aborts the turn."""
        try:
            if self.service_timeout:
                return await asyncio.wait_for(call, timeout=self.service_timeout)
            return await call
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closed:
                raise _TurnAborted(TurnOutcome.ABANDONED) from e
            category = classify_service_error(e)
            self.logger.warning(
                "Service call failed, ending turn",
                service=service,
                category=category,
                error=str(e),
                error_type=type(e).__name__,
                turn_id=turn_id,
            )
            self.emitter.provider_error(self.channel_id, turn_id, service, category, type(e).__name__)
            raise _TurnAborted(_FAILURE_OUTCOMES[service]) from e
