"""Data models for marked narration."""

from dataclasses import dataclass, field
from collections.abc import Hashable
from typing import Any

from voicemark.constants import DEFAULT_CHARACTER, DEFAULT_VOICE_FILE


@dataclass(frozen=True)
class Marker:
    kind: str          # "n", "a" or "c"
    position: int      # offset of the opening delimiter
    length: int        # length of the whole matched marker
    character: str = DEFAULT_CHARACTER
    voice_file: str = DEFAULT_VOICE_FILE
    emotions: dict[str, float] = field(default_factory=dict)

    @property
    def end(self) -> int:
        return self.position + self.length


@dataclass
class Segment:
    kind: str
    text: str
    character: str = DEFAULT_CHARACTER
    voice_file: str = DEFAULT_VOICE_FILE
    emotions: dict[str, float] = field(default_factory=dict)
    conversation_id: Hashable | None = None


@dataclass
class AudioVariant:
    data: bytes | None = None
    file_name: str | None = None
    duration: float | None = None  # seconds


@dataclass
class Voice:
    id: str
    name: str
    variants: dict[str, AudioVariant] = field(default_factory=dict)


@dataclass
class PreloadedAudio:
    index: int
    segment: Segment
    handle: Any        # decoded audio, owned by the audio output
    source: str        # temporary file holding the fetched blob
