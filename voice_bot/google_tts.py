"""
Google Cloud Text-to-Speech via REST API.

Uses API key authentication. Output: LINEAR16 PCM 16-bit mono at the
configured sample rate.
"""
import base64
import os
import time
from typing import Optional

import aiohttp

from logging_setup import get_logger, Component

from .errors import ServiceError, ServiceErrorCategory
from .services import SynthesizedAudio
from .wav import WAV_HEADER_SIZE

logger = get_logger(Component.TTS)

SYNTHESIZE_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


def language_code_for_voice(voice: str) -> str:
    """"pt-BR-Neural2-A" -> "pt-BR"."""
    parts = voice.split("-")
    if len(parts) >= 2:
        return f"{parts[0]}-{parts[1]}"
    return "pt-BR"


def strip_wav_header(audio: bytes) -> bytes:
    """LINEAR16 responses carry a WAV header; playback wants bare PCM."""
    if len(audio) >= WAV_HEADER_SIZE and audio[:4] == b"RIFF" and audio[8:12] == b"WAVE":
        data_marker = audio.find(b"data", 12)
        if data_marker != -1:
            return audio[data_marker + 8:]
        return audio[WAV_HEADER_SIZE:]
    return audio


class GoogleCloudTTS:
    """Google Cloud Text-to-Speech -> raw PCM 16-bit mono."""

    def __init__(self, *, api_key: str, voice: str = "pt-BR-Neural2-A", sample_rate: Optional[int] = None):
        if not api_key:
            raise ValueError("Google Cloud TTS requires a valid API key in GOOGLE_TTS_API_KEY")
        self._api_key = api_key
        self._voice = voice
        self._sample_rate = sample_rate or int(os.getenv("GOOGLE_TTS_SAMPLE_RATE", "24000"))
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """Shared HTTP session so TCP connections are reused between turns."""
        if self._http_session is None or self._http_session.closed:
            total_timeout = float(os.getenv("GOOGLE_TTS_CONNECTION_TOTAL_TIMEOUT", "10.0"))
            self._http_session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, ttl_dns_cache=300),
                timeout=aiohttp.ClientTimeout(total=total_timeout),
            )
            logger.info("TTS connection pool created", total_timeout_ms=int(total_timeout * 1000))
        return self._http_session

    async def synthesize(self, text: str) -> SynthesizedAudio:
        payload = {
            "input": {"text": text},
            "voice": {
                "languageCode": language_code_for_voice(self._voice),
                "name": self._voice,
            },
            "audioConfig": {
                "audioEncoding": "LINEAR16",
                "sampleRateHertz": self._sample_rate,
            },
        }

        t_start = time.perf_counter()
        session = self._get_or_create_session()
        async with session.post(SYNTHESIZE_URL, params={"key": self._api_key}, json=payload) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(
                    "Google Cloud TTS error",
                    status_code=response.status,
                    error_text=error_text[:200],
                )
                category = {
                    400: ServiceErrorCategory.BAD_REQUEST,
                    401: ServiceErrorCategory.AUTH_FAILED,
                    403: ServiceErrorCategory.AUTH_FAILED,
                    429: ServiceErrorCategory.RATE_LIMITED,
                }.get(response.status, ServiceErrorCategory.UNKNOWN_ERROR)
                raise ServiceError("tts", f"Google Cloud TTS API error: {response.status}", category)

            data = await response.json()

        audio_b64 = data.get("audioContent")
        if not audio_b64:
            raise ServiceError("tts", "no audioContent in response", ServiceErrorCategory.EMPTY_RESPONSE)

        pcm = strip_wav_header(base64.b64decode(audio_b64))
        logger.info(
            "TTS call completed",
            provider="google",
            voice=self._voice,
            text_length=len(text),
            audio_bytes=len(pcm),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return SynthesizedAudio(data=pcm, sample_rate=self._sample_rate, num_channels=1)

    async def aclose(self) -> None:
        """Close the pooled HTTP session. Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
            except Exception as e:
                logger.warning(
                    "Error closing TTS HTTP session",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None
