"""Typed settings with JSON persistence and change notification."""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from collections.abc import Callable

from voicemark.constants import (
    ACTION_HANDLING_MODES,
    DEFAULT_LANGUAGE,
    DEFAULT_LOCAL_API_URL,
    DEFAULT_MAX_PRELOAD,
    DEFAULT_SEGMENT_GAP,
    DEFAULT_SPEAKING_RATE,
    DEFAULT_VQSCORE,
    HYBRID_MODEL,
    MODELS,
)
from voicemark.errors import ConfigError
from voicemark.models import AudioVariant, Voice
from voicemark.voices import VoiceLibrary, decode_data_url, encode_data_url

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    enabled: bool = False
    api_key: str = ""
    model: str = HYBRID_MODEL
    language_iso_code: str = DEFAULT_LANGUAGE
    speaking_rate: float = DEFAULT_SPEAKING_RATE
    vqscore: float = DEFAULT_VQSCORE
    speaker_noised: bool = False
    disable_narrator: bool = False
    action_handling: str = "narrator"     # "narrator" or "silence"
    max_preload: int = DEFAULT_MAX_PRELOAD
    segment_gap: float = DEFAULT_SEGMENT_GAP
    auto_generation: bool = False
    force_neutral_narrator: bool = False
    use_local_api: bool = True
    local_api_url: str = DEFAULT_LOCAL_API_URL
    voices: VoiceLibrary = field(default_factory=VoiceLibrary)

    def __post_init__(self):
        self._listeners: list[Callable[[set[str]], None]] = []
        validate(self)

    def subscribe(self, listener: Callable[[set[str]], None]) -> None:
        """Call listener with the set of changed field names after each update()."""
        self._listeners.append(listener)

    def update(self, **changes) -> None:
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")

        previous = {name: getattr(self, name) for name in changes}
        for name, value in changes.items():
            setattr(self, name, value)
        try:
            validate(self)
        except ConfigError:
            for name, value in previous.items():
                setattr(self, name, value)
            raise

        changed = {name for name in changes if previous[name] != changes[name]}
        if changed:
            self.notify_changed(changed)

    def notify_changed(self, names: set[str]) -> None:
        """Tell listeners about changes made outside update(), e.g. to voices."""
        for listener in self._listeners:
            listener(set(names))


def validate(settings: Settings) -> None:
    if settings.action_handling not in ACTION_HANDLING_MODES:
        raise ConfigError(f"Invalid action_handling: {settings.action_handling}")
    if settings.model not in MODELS:
        raise ConfigError(f"Unknown model: {settings.model}")
    if settings.max_preload < 0:
        raise ConfigError("max_preload must be >= 0")
    if settings.segment_gap < 0:
        raise ConfigError("segment_gap must be >= 0")


def _voices_to_dict(library: VoiceLibrary) -> dict:
    result = {}
    for voice in library:
        variants = {}
        for name, audio in voice.variants.items():
            variants[name] = {
                "file": encode_data_url(audio.data, audio.file_name) if audio.data else None,
                "fileName": audio.file_name,
                "duration": audio.duration,
            }
        result[voice.id] = {"name": voice.name, "audioFiles": variants}
    return result


def _voices_from_dict(data: dict) -> VoiceLibrary:
    voices = []
    for voice_id, info in data.items():
        variants = {}
        for name, audio in (info.get("audioFiles") or {}).items():
            audio = audio or {}
            raw = audio.get("file")
            variants[name] = AudioVariant(
                data=decode_data_url(raw) if raw else None,
                file_name=audio.get("fileName"),
                duration=audio.get("duration"),
            )
        voices.append(Voice(id=voice_id, name=info.get("name", voice_id), variants=variants))
    return VoiceLibrary(voices)


def settings_to_dict(settings: Settings) -> dict:
    data = {f.name: getattr(settings, f.name) for f in fields(settings) if f.name != "voices"}
    data["voices"] = _voices_to_dict(settings.voices)
    return data


def settings_from_dict(data: dict) -> Settings:
    known = {f.name for f in fields(Settings)} - {"voices"}
    values = {k: v for k, v in data.items() if k in known}
    ignored = set(data) - known - {"voices"}
    if ignored:
        logger.debug("Ignoring unknown settings: %s", ", ".join(sorted(ignored)))
    values["voices"] = _voices_from_dict(data.get("voices") or {})
    return Settings(**values)


def load_settings(path: str) -> Settings:
    """Load settings from a JSON file.

    Returns defaults if the file does not exist or is malformed.
    """
    if not os.path.exists(path):
        return Settings()
    try:
        with open(path) as f:
            data = json.load(f)
        return settings_from_dict(data)
    except (json.JSONDecodeError, ConfigError, TypeError, ValueError) as e:
        logger.warning("Malformed settings file: %s (%s) — using defaults", path, e)
        return Settings()


def save_settings(settings: Settings, path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        json.dump(settings_to_dict(settings), f, indent=2)
