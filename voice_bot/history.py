"""Bounded per-channel conversation memory used as language-model context."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Literal

DEFAULT_MAX_ENTRIES = 10

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class HistoryEntry:
    role: Role
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationHistoryStore:
    """
    Ordered exchanges per channel, oldest first.

    Each channel keeps at most ``max_entries``; appending beyond that evicts
    from the front.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: Dict[str, Deque[HistoryEntry]] = {}

    def append(self, channel_id: str, entry: HistoryEntry) -> None:
        entries = self._entries.setdefault(channel_id, deque())
        entries.append(entry)
        while len(entries) > self.max_entries:
            entries.popleft()

    def get(self, channel_id: str) -> List[HistoryEntry]:
        return list(self._entries.get(channel_id, ()))

    def messages(self, channel_id: str) -> List[dict[str, str]]:
        return [entry.to_message() for entry in self.get(channel_id)]

    def clear(self, channel_id: str) -> None:
        self._entries.pop(channel_id, None)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())
