"""
Speech start / end detection from active-speaker updates.

The room reports the set of participants currently speaking. A participant
entering the set starts speech; leaving it arms a silence timer, and only
when the timer expires without them speaking again does the segment end.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, Iterable, Optional, Set

from .session import SessionInput, SpeechEnded, SpeechStarted


class SpeechActivityMonitor:
    def __init__(
        self,
        on_input: Callable[[SessionInput], None],
        *,
        silence_ms: int = 100,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._on_input = on_input
        self._silence_s = max(silence_ms, 0) / 1000
        self._loop = loop
        self._speaking: Set[str] = set()
        self._end_timers: Dict[str, asyncio.TimerHandle] = {}

    @property
    def speaking(self) -> Set[str]:
        return set(self._speaking)

    def update(self, identities: Iterable[str]) -> None:
        current = set(identities)

        for identity in current - self._speaking:
            pending = self._end_timers.pop(identity, None)
            if pending is not None:
                # Resumed within the silence window: same segment
                pending.cancel()
            else:
                self._on_input(SpeechStarted(identity))

        loop = self._loop or asyncio.get_running_loop()
        for identity in self._speaking - current:
            self._end_timers[identity] = loop.call_later(self._silence_s, self._end, identity)

        self._speaking = current

    def participant_left(self, identity: str) -> None:
        """End speech immediately for a participant who left the room."""
        was_active = identity in self._speaking or identity in self._end_timers
        self._speaking.discard(identity)
        pending = self._end_timers.pop(identity, None)
        if pending is not None:
            pending.cancel()
        if was_active:
            self._on_input(SpeechEnded(identity))

    def _end(self, identity: str) -> None:
        self._end_timers.pop(identity, None)
        self._on_input(SpeechEnded(identity))

    def close(self) -> None:
        for handle in self._end_timers.values():
            handle.cancel()
        self._end_timers.clear()
        self._speaking.clear()
