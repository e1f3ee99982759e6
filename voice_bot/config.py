"""
Voice bot configuration.

Loads credentials, provider selection and pipeline thresholds from
environment variables.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse an integer environment variable, stripping comments and whitespace.

    "500  # half a second" -> 500, missing or invalid -> default.
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]
    value = value.strip()

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: Optional[float]) -> Optional[float]:
    value = (os.environ.get(key) or "").split("#")[0].strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_env_files(root: Optional[Path] = None) -> None:
    """Load .env_local / .env.local / .env without overriding the real environment."""
    root = root or Path.cwd()
    for name in (".env_local", ".env.local", ".env"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


@dataclass
class BotConfig:
    """Voice bot configuration."""

    # LiveKit
    livekit_url: str
    livekit_api_key: str
    livekit_api_secret: str

    # OpenAI (STT + LLM, and TTS unless Google is selected)
    openai_api_key: str

    bot_identity: str = "voice-bot"
    persona: str = "default"

    stt_model: str = "gpt-4o-mini-transcribe"
    llm_model: str = "gpt-4o-mini"
    llm_max_tokens: int = 150
    llm_temperature: float = 0.7

    # TTS provider selection
    tts_provider: str = "openai"  # "openai" | "google"
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    google_tts_api_key: Optional[str] = None
    google_tts_voice: str = "pt-BR-Neural2-A"

    # Segmentation
    min_segment_ms: int = 500
    max_segment_ms: int = 10000
    end_of_segment_silence_ms: int = 100

    history_max_entries: int = 10

    join_timeout_seconds: int = 30
    empty_room_check_seconds: int = 30
    # None disables the timeout on STT / LLM / TTS calls
    service_timeout_seconds: Optional[float] = None

    # Control API
    control_host: str = "0.0.0.0"
    control_port: int = 8000

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        return cls(
            livekit_url=os.environ["LIVEKIT_URL"],
            livekit_api_key=os.environ["LIVEKIT_API_KEY"],
            livekit_api_secret=os.environ["LIVEKIT_API_SECRET"],
            openai_api_key=os.environ["OPENAI_API_KEY"],
            bot_identity=os.environ.get("BOT_IDENTITY", "voice-bot"),
            persona=os.environ.get("BOT_PERSONA", "default"),
            stt_model=os.environ.get("STT_MODEL", "gpt-4o-mini-transcribe"),
            llm_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            llm_max_tokens=_parse_int_env("LLM_MAX_TOKENS", default=150),
            llm_temperature=_parse_float_env("LLM_TEMPERATURE", default=0.7),
            tts_provider=os.environ.get("TTS_PROVIDER", "openai").lower(),
            tts_model=os.environ.get("TTS_MODEL", "tts-1"),
            tts_voice=os.environ.get("TTS_VOICE", "alloy"),
            google_tts_api_key=os.environ.get("GOOGLE_TTS_API_KEY") or os.environ.get("GOOGLE_API_KEY"),
            google_tts_voice=os.environ.get("GOOGLE_TTS_VOICE", "pt-BR-Neural2-A"),
            min_segment_ms=_parse_int_env("MIN_SEGMENT_MS", default=500),
            max_segment_ms=_parse_int_env("MAX_SEGMENT_MS", default=10000),
            end_of_segment_silence_ms=_parse_int_env("END_OF_SEGMENT_SILENCE_MS", default=100),
            history_max_entries=_parse_int_env("HISTORY_MAX_ENTRIES", default=10),
            join_timeout_seconds=_parse_int_env("JOIN_TIMEOUT_SECONDS", default=30),
            empty_room_check_seconds=_parse_int_env("EMPTY_ROOM_CHECK_SECONDS", default=30),
            service_timeout_seconds=_parse_float_env("SERVICE_TIMEOUT_SECONDS", default=None),
            control_host=os.environ.get("CONTROL_HOST", "0.0.0.0"),
            control_port=_parse_int_env("CONTROL_PORT", default=8000),
        )


def get_config() -> BotConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = BotConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[BotConfig] = None
