"""Voice samples, voice resolution and synthesis request building."""

import base64
import logging
import mimetypes
import os

from pydub import AudioSegment

from voicemark.constants import (
    ACTION,
    DEFAULT_CHARACTER,
    DEFAULT_VARIANT,
    DEFAULT_VOICE_FILE,
    EMOTION_CODES,
    HYBRID_MODEL,
    NARRATOR,
    NARRATOR_VOICE_ID,
    REQUEST_MIME_TYPE,
    TEXT_PAD,
    VOICE_FILE_SUFFIX,
)
from voicemark.errors import ConfigError, VoiceResolutionError
from voicemark.models import AudioVariant, Segment, Voice

logger = logging.getLogger(__name__)


class VoiceLibrary:
    """Stored voices keyed by id.

    The narrator voice and every voice's default variant always exist and can
    be neither deleted nor renamed.
    """

    def __init__(self, voices: list[Voice] | None = None):
        self._voices: dict[str, Voice] = {}
        for voice in voices or []:
            self._voices[voice.id] = voice
        if NARRATOR_VOICE_ID not in self._voices:
            self._voices[NARRATOR_VOICE_ID] = Voice(id=NARRATOR_VOICE_ID, name=DEFAULT_CHARACTER)
        for voice in self._voices.values():
            voice.variants.setdefault(DEFAULT_VARIANT, AudioVariant())

    def __iter__(self):
        return iter(self._voices.values())

    def __len__(self) -> int:
        return len(self._voices)

    def __contains__(self, voice_id: str) -> bool:
        return voice_id in self._voices

    def get(self, voice_id: str) -> Voice | None:
        return self._voices.get(voice_id)

    def find_by_name(self, name: str) -> Voice | None:
        for voice in self._voices.values():
            if voice.name == name:
                return voice
        return None

    def sample(self, voice_id: str, variant: str) -> AudioVariant | None:
        """Stored variant with audio data, or None."""
        voice = self._voices.get(voice_id)
        if voice is None:
            return None
        audio = voice.variants.get(variant)
        if audio is None or not audio.data:
            return None
        return audio

    def add_voice(self, name: str, voice_id: str | None = None) -> Voice:
        if voice_id is None:
            voice_id = _slugify(name)
        base, n = voice_id, 2
        while voice_id in self._voices:
            voice_id = f"{base}_{n}"
            n += 1
        voice = Voice(id=voice_id, name=name, variants={DEFAULT_VARIANT: AudioVariant()})
        self._voices[voice_id] = voice
        return voice

    def rename_voice(self, voice_id: str, name: str) -> None:
        if voice_id == NARRATOR_VOICE_ID:
            raise ConfigError("The narrator voice cannot be renamed")
        self._require(voice_id).name = name

    def delete_voice(self, voice_id: str) -> None:
        if voice_id == NARRATOR_VOICE_ID:
            raise ConfigError("The narrator voice cannot be deleted")
        self._require(voice_id)
        del self._voices[voice_id]

    def set_variant(self, voice_id: str, variant: str, audio: AudioVariant) -> None:
        self._require(voice_id).variants[variant] = audio

    def rename_variant(self, voice_id: str, old: str, new: str) -> None:
        voice = self._require(voice_id)
        if old == DEFAULT_VARIANT:
            raise ConfigError("The default variant cannot be renamed")
        if old not in voice.variants:
            raise ConfigError(f"Unknown variant: {old}")
        if new in voice.variants:
            raise ConfigError(f"Variant already exists: {new}")
        voice.variants[new] = voice.variants.pop(old)

    def delete_variant(self, voice_id: str, variant: str) -> None:
        voice = self._require(voice_id)
        if variant == DEFAULT_VARIANT:
            raise ConfigError("The default variant cannot be deleted")
        if variant not in voice.variants:
            raise ConfigError(f"Unknown variant: {variant}")
        del voice.variants[variant]

    def available_variants(self) -> list[tuple[Voice, list[str]]]:
        """Voices that have at least one stored sample, with those variant names."""
        result = []
        for voice in self._voices.values():
            names = [name for name, audio in voice.variants.items() if audio.data]
            if names:
                result.append((voice, names))
        return result

    def _require(self, voice_id: str) -> Voice:
        voice = self._voices.get(voice_id)
        if voice is None:
            raise ConfigError(f"Unknown voice: {voice_id}")
        return voice


def _slugify(name: str) -> str:
    slug = "".join(c if c.isalnum() else "_" for c in name.strip().lower()).strip("_")
    return slug or "voice"


def load_sample(path: str) -> AudioVariant:
    """Read an audio file into a variant, measuring its duration with pydub."""
    audio = AudioSegment.from_file(path)
    with open(path, "rb") as f:
        data = f.read()
    return AudioVariant(
        data=data,
        file_name=os.path.basename(path),
        duration=round(len(audio) / 1000, 2),
    )


def encode_data_url(data: bytes, file_name: str | None = None) -> str:
    mime = None
    if file_name:
        mime, _ = mimetypes.guess_type(file_name)
    mime = mime or "audio/mpeg"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(value: str) -> bytes:
    """Accept either a data URL or bare base64."""
    if value.startswith("data:"):
        value = value.split(",", 1)[1]
    return base64.b64decode(value)


def resolve_voice(segment: Segment, library: VoiceLibrary) -> tuple[str, str]:
    """Pick the (voice id, variant) whose sample will voice a segment.

    Falls back to the narrator default when the character or variant has no
    sample; raises VoiceResolutionError if that has none either.
    """
    voice_id = NARRATOR_VOICE_ID
    if segment.character != DEFAULT_CHARACTER:
        voice = library.find_by_name(segment.character)
        if voice is not None:
            voice_id = voice.id

    variant = DEFAULT_VARIANT
    if segment.voice_file and segment.voice_file != DEFAULT_VOICE_FILE:
        variant = segment.voice_file.replace(VOICE_FILE_SUFFIX, "")

    if library.sample(voice_id, variant) is None:
        logger.warning(
            "Voice not found: %s, variant: %s, falling back to narrator/default",
            segment.character, variant,
        )
        voice_id, variant = NARRATOR_VOICE_ID, DEFAULT_VARIANT
        if library.sample(voice_id, variant) is None:
            raise VoiceResolutionError(f"No voice sample for {segment.character}")

    return voice_id, variant


def map_emotions(emotions: dict[str, float]) -> dict[str, float]:
    """Translate e-codes to affect names, dropping unknown codes."""
    return {
        EMOTION_CODES[code]: float(value)
        for code, value in emotions.items()
        if code in EMOTION_CODES
    }


def pad_text(text: str) -> str:
    """Surround text with ellipses to steady the engine's prosody at the edges."""
    if not text:
        return text
    if not text.startswith(TEXT_PAD) and not text.startswith(" " + TEXT_PAD):
        text = f"{TEXT_PAD} {text}"
    if not text.endswith(TEXT_PAD) and not text.endswith(TEXT_PAD + " "):
        text = f"{text} {TEXT_PAD}"
    return text


def build_request(segment: Segment, settings, library: VoiceLibrary) -> dict:
    """Build the JSON payload for synthesizing one segment."""
    voice_id, variant = resolve_voice(segment, library)
    sample = library.sample(voice_id, variant)

    emotions = map_emotions(segment.emotions)
    if settings.force_neutral_narrator and segment.kind in (NARRATOR, ACTION):
        emotions = {"neutral": 1.0}

    payload = {
        "text": pad_text(segment.text),
        "speaking_rate": settings.speaking_rate,
        "model": settings.model,
        "language_iso_code": settings.language_iso_code,
        "mime_type": REQUEST_MIME_TYPE,
        "speaker_audio": base64.b64encode(sample.data).decode("ascii"),
    }
    if emotions:
        payload["emotion"] = emotions
    if settings.model == HYBRID_MODEL:
        payload["vqscore"] = settings.vqscore
        payload["speaker_noised"] = settings.speaker_noised

    logger.debug(
        "Request for %s using %s/%s: %s",
        segment.character, voice_id, variant, payload["text"][:50],
    )
    return payload
