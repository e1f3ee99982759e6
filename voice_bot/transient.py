"""
Short-lived audio files handed to a service call or the playback sink.

A TransientAudio owns one temp file from creation until ``release()``.
Release is idempotent, and a failed delete is logged, never raised.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

from logging_setup import get_logger, Component as LogComponent

logger = get_logger(LogComponent.PLAYBACK)


class TransientAudio:
    def __init__(
        self,
        path: Path,
        *,
        sample_rate: Optional[int] = None,
        num_channels: Optional[int] = None,
    ):
        self.path = path
        self.sample_rate = sample_rate
        self.num_channels = num_channels
        self._released = False

    @classmethod
    def create(
        cls,
        data: bytes,
        *,
        suffix: str,
        prefix: str = "voicebot_",
        directory: Optional[str] = None,
        sample_rate: Optional[int] = None,
        num_channels: Optional[int] = None,
    ) -> "TransientAudio":
        fd, name = tempfile.mkstemp(suffix=suffix, prefix=prefix, dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except BaseException:
            Path(name).unlink(missing_ok=True)
            raise
        return cls(Path(name), sample_rate=sample_rate, num_channels=num_channels)

    @property
    def released(self) -> bool:
        return self._released

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def release(self) -> bool:
        """Delete the file. Returns True only for the call that released it."""
        if self._released:
            return False
        self._released = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(
                "Error cleaning up transient audio file",
                path=str(self.path),
                error=str(e),
                error_type=type(e).__name__,
            )
        return True

    def __enter__(self) -> "TransientAudio":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"TransientAudio({self.path.name!r}, released={self._released})"
