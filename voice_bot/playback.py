"""
Playback handoff and one-shot cleanup of synthesized audio.

The sink receives each resource together with exactly one completion
callback. Sinks may report completion more than once (idle after a stop,
idle after an error); the handle makes the release run once regardless.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, Set

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity

from .transient import TransientAudio

CompletionCallback = Callable[[Optional[BaseException]], None]


class PlaybackSink(Protocol):
    def play(self, resource: TransientAudio, on_complete: CompletionCallback) -> None:
        """Start playing ``resource``; call ``on_complete`` when it ends."""


class PlaybackHandle:
    """Guarantees a single release of one synthesized resource."""

    def __init__(
        self,
        resource: TransientAudio,
        on_released: Optional[Callable[["PlaybackHandle", Optional[BaseException]], None]] = None,
    ):
        self.resource = resource
        self._on_released = on_released
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def complete(self, error: Optional[BaseException] = None) -> None:
        if self._done:
            return
        self._done = True
        self.resource.release()
        if self._on_released is not None:
            self._on_released(self, error)


class PlaybackCompletionNotifier:
    """Hands synthesized audio to a sink and owns its cleanup."""

    def __init__(self, sink: PlaybackSink, channel_id: str):
        self.sink = sink
        self.channel_id = channel_id
        self._pending: Set[PlaybackHandle] = set()
        self.logger = get_logger(LogComponent.PLAYBACK, session_id=channel_id)
        self.emitter = EventEmitter(ObsComponent.PLAYBACK)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def on_synthesized(self, resource: TransientAudio) -> PlaybackHandle:
        """
        Queue ``resource`` on the sink with one completion callback.

        If the sink refuses the resource, it is released immediately and
        the error propagates to the caller.
        """
        handle = PlaybackHandle(resource, on_released=self._released)
        self._pending.add(handle)
        try:
            self.sink.play(resource, handle.complete)
        except Exception as e:
            handle.complete(e)
            raise
        self.logger.debug("Playback started", resource=resource.path.name)
        return handle

    def _released(self, handle: PlaybackHandle, error: Optional[BaseException]) -> None:
        self._pending.discard(handle)
        if error is not None:
            self.logger.error(
                "Playback error",
                error=str(error),
                error_type=type(error).__name__,
            )
        self.emitter.emit(
            "playback.released",
            self.channel_id,
            severity=Severity.WARN if error is not None else Severity.DEBUG,
            result="error" if error is not None else "ok",
        )

    def release_all(self) -> None:
        """Release every resource still queued or playing (session teardown)."""
        for handle in list(self._pending):
            handle.complete()
