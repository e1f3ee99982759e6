"""
Speech-to-text, language model and text-to-speech clients.

The turn controller only sees the three protocols below; the OpenAI
implementations are the production defaults, and Google Cloud TTS can be
selected for speech with ``TTS_PROVIDER=google``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from openai import AsyncOpenAI

from logging_setup import get_logger, Component as LogComponent

from .config import BotConfig
from .errors import ServiceError, ServiceErrorCategory

# OpenAI "pcm" speech output: 24 kHz, mono, signed 16-bit little-endian
OPENAI_PCM_SAMPLE_RATE = 24000


@dataclass(frozen=True)
class SynthesizedAudio:
    """Raw 16-bit PCM produced by a TTS provider."""

    data: bytes
    sample_rate: int
    num_channels: int = 1
    suffix: str = ".pcm"


class SpeechToText(Protocol):
    async def transcribe(self, audio_path: Path, *, language: str) -> str: ...


class LanguageModel(Protocol):
    async def complete(self, messages: List[Dict[str, str]]) -> str: ...


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> SynthesizedAudio: ...


@dataclass
class VoiceServices:
    stt: SpeechToText
    llm: LanguageModel
    tts: SpeechSynthesizer

    async def aclose(self) -> None:
        for service in {id(s): s for s in (self.stt, self.llm, self.tts)}.values():
            close = getattr(service, "aclose", None)
            if close is not None:
                await close()


class OpenAITranscriber:
    """Speech-to-text through the OpenAI transcription endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini-transcribe"):
        self.client = client
        self.model = model
        self.logger = get_logger(LogComponent.STT)

    async def transcribe(self, audio_path: Path, *, language: str) -> str:
        t_start = time.perf_counter()
        result = await self.client.audio.transcriptions.create(
            file=audio_path,
            model=self.model,
            language=language,
            response_format="text",
        )
        # response_format="text" yields a plain string; older SDKs wrap it
        text = result if isinstance(result, str) else getattr(result, "text", "")
        self.logger.info(
            "STT call completed",
            model=self.model,
            transcript_length=len(text),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return text


class OpenAIChatModel:
    """Conversational replies through OpenAI chat completions."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini",
        *,
        max_tokens: int = 150,
        temperature: float = 0.7,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.logger = get_logger(LogComponent.LLM)

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        t_start = time.perf_counter()
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            raise ServiceError("llm", "empty completion", ServiceErrorCategory.EMPTY_RESPONSE)
        self.logger.info(
            "LLM call completed",
            model=self.model,
            message_count=len(messages),
            reply_length=len(content),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return content.strip()


class OpenAISpeechSynthesizer:
    """Text-to-speech through the OpenAI speech endpoint, raw PCM output."""

    def __init__(self, client: AsyncOpenAI, model: str = "tts-1", voice: str = "alloy"):
        self.client = client
        self.model = model
        self.voice = voice
        self.logger = get_logger(LogComponent.TTS)

    async def synthesize(self, text: str) -> SynthesizedAudio:
        t_start = time.perf_counter()
        response = await self.client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            response_format="pcm",
        )
        pcm = response.content
        if not pcm:
            raise ServiceError("tts", "no audio in response", ServiceErrorCategory.EMPTY_RESPONSE)
        self.logger.info(
            "TTS call completed",
            model=self.model,
            voice=self.voice,
            text_length=len(text),
            audio_bytes=len(pcm),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return SynthesizedAudio(data=pcm, sample_rate=OPENAI_PCM_SAMPLE_RATE, num_channels=1)


def build_services(config: BotConfig, client: Optional[AsyncOpenAI] = None) -> VoiceServices:
    """Create the production service clients for ``config``."""
    client = client or AsyncOpenAI(api_key=config.openai_api_key)

    stt = OpenAITranscriber(client, model=config.stt_model)
    llm = OpenAIChatModel(
        client,
        model=config.llm_model,
        max_tokens=config.llm_max_tokens,
        temperature=config.llm_temperature,
    )

    if config.tts_provider == "google":
        from .google_tts import GoogleCloudTTS

        if not config.google_tts_api_key:
            raise ValueError("Google TTS provider requires GOOGLE_TTS_API_KEY environment variable")
        tts: SpeechSynthesizer = GoogleCloudTTS(
            api_key=config.google_tts_api_key,
            voice=config.google_tts_voice,
        )
    elif config.tts_provider == "openai":
        tts = OpenAISpeechSynthesizer(client, model=config.tts_model, voice=config.tts_voice)
    else:
        raise ValueError(f"Unknown TTS_PROVIDER: {config.tts_provider}")

    return VoiceServices(stt=stt, llm=llm, tts=tts)
