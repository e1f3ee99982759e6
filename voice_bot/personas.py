"""
Bot personas: system prompt, transcription language and trigger phrases.

Personas are YAML files under ``voice_bot/personas/``. PyYAML's safe_load
reads plain JSON too, so ``.json`` personas work unchanged.

Trigger phrases are greetings that must open an utterance for the bot to
answer. They are tried in file order; the first prefix that matches wins.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_SYSTEM_PROMPT = """
You are a helpful AI assistant in a voice channel.
Keep your responses concise and conversational.
You're speaking to users in a voice chat, so keep responses under 100 words when possible.
Be friendly, helpful, and engaging.
""".strip()

DEFAULT_TRIGGER_PHRASES = ("bom dia", "boa tarde", "boa noite")

# Separators Whisper-style transcripts put right after a greeting
_SEPARATORS = " \t\n,.;:!?-"


@dataclass(frozen=True)
class Persona:
    name: str
    system_prompt: str
    language: str = "pt"
    trigger_phrases: Tuple[str, ...] = DEFAULT_TRIGGER_PHRASES


@dataclass(frozen=True)
class TriggerMatch:
    triggered: bool
    phrase: Optional[str] = None
    message: str = ""


def match_trigger(transcript: str, phrases: Tuple[str, ...]) -> TriggerMatch:
    """
    Case-insensitive prefix match of ``transcript`` against ``phrases``.

    On a match, ``message`` is what follows the phrase with leading
    separators removed: "Bom Dia, como vai?" -> "como vai?".
    """
    text = transcript.strip()
    lowered = text.lower()

    for phrase in phrases:
        needle = phrase.strip().lower()
        if needle and lowered.startswith(needle):
            remainder = text[len(needle):].lstrip(_SEPARATORS).strip()
            return TriggerMatch(triggered=True, phrase=phrase, message=remainder)

    return TriggerMatch(triggered=False)


def _get_personas_dir() -> Path:
    return Path(__file__).parent / "personas"


def _load_file(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Persona file {path} must contain a mapping at top-level")
        return data


def _from_mapping(name: str, data: Dict[str, Any]) -> Persona:
    phrases = data.get("trigger_phrases") or DEFAULT_TRIGGER_PHRASES
    if isinstance(phrases, str):
        phrases = [phrases]
    return Persona(
        name=str(data.get("name", name)),
        system_prompt=str(data.get("system_prompt", DEFAULT_SYSTEM_PROMPT)).strip(),
        language=str(data.get("language", "pt")),
        trigger_phrases=tuple(str(p).strip().lower() for p in phrases if str(p).strip()),
    )


def load_persona(name: Optional[str] = None, personas_dir: Optional[Path] = None) -> Persona:
    """
    Load a persona by name.

    Resolution order:
    1) <name>.yaml / <name>.yml / <name>.json
    2) default.yaml / default.yml / default.json
    3) built-in default
    """
    name = name or os.getenv("BOT_PERSONA", "default")
    personas_dir = personas_dir or _get_personas_dir()

    for stem in (name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = personas_dir / f"{stem}{suffix}"
            if candidate.exists():
                return _from_mapping(stem, _load_file(candidate))

    return Persona(name="default", system_prompt=DEFAULT_SYSTEM_PROMPT)
