"""Shared fakes for the AI services, the playback sink and the clock."""
import asyncio
from pathlib import Path
from typing import List, Optional

import pytest

from observability.event_store import event_store
from voice_bot.personas import DEFAULT_SYSTEM_PROMPT, Persona
from voice_bot.services import SynthesizedAudio, VoiceServices
from voice_bot.session import SessionRegistry


class FakeClock:
    """Monotonic clock in seconds, advanced by hand."""

    def __init__(self, start: float = 100.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance_ms(self, ms: int) -> None:
        self.value += ms / 1000


class FakeSTT:
    def __init__(self, transcript: str = "", error: Optional[Exception] = None):
        self.transcript = transcript
        self.error = error
        self.calls: List[dict] = []

    async def transcribe(self, audio_path: Path, *, language: str) -> str:
        self.calls.append({
            "path": audio_path,
            "language": language,
            "data": audio_path.read_bytes(),
        })
        # Yield like a real network call so other turns can interleave
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeLLM:
    def __init__(self, reply: str = "Claro, posso ajudar.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[dict]] = []

    async def complete(self, messages):
        self.calls.append([dict(m) for m in messages])
        if self.error is not None:
            raise self.error
        return self.reply


class FakeTTS:
    def __init__(self, audio: bytes = b"\x01\x00" * 480, error: Optional[Exception] = None):
        self.audio = audio
        self.error = error
        self.calls: List[str] = []

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return SynthesizedAudio(data=self.audio, sample_rate=24000, num_channels=1)


class FakeSink:
    """Records every play request; never completes on its own."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.played = []

    def play(self, resource, on_complete) -> None:
        if self.error is not None:
            raise self.error
        self.played.append((resource, on_complete))


@pytest.fixture(autouse=True)
def clear_event_store():
    event_store.clear()
    yield
    event_store.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def persona():
    return Persona(name="test", system_prompt=DEFAULT_SYSTEM_PROMPT, language="pt")


@pytest.fixture
def stt():
    return FakeSTT("bom dia, preciso de ajuda")


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def tts():
    return FakeTTS()


@pytest.fixture
def services(stt, llm, tts):
    return VoiceServices(stt=stt, llm=llm, tts=tts)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def registry(services, persona, clock):
    return SessionRegistry(services, persona, bot_identity="voice-bot", now=clock)
