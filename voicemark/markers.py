"""Extract voice/emotion markers from generated text.

Marker grammar::

    §<kind>[:<character>][|<voice file>][|<code>:<value>,<code>:<value>...]§

``kind`` is ``n`` (narrator), ``a`` (action) or ``c`` (character). Every field
is optional. Text that does not form a complete marker is left alone.
"""

import logging
import re

from voicemark.constants import (
    ACTION,
    CHARACTER,
    DEFAULT_CHARACTER,
    DEFAULT_VOICE_FILE,
    EMOTION_CODES,
    MARKER_DELIMITER,
    MARKER_KINDS,
    NARRATOR,
)
from voicemark.models import Marker

logger = logging.getLogger(__name__)

# Regex form of the grammar. parse_markers() does not use it; hosts use it to
# hide markers from displayed messages.
MARKER_PATTERN = re.compile(r"§([nac])(:([^§|]*))?(\|([^§|]*))?(\|([^§]*))?§")

_FIELD_SEPARATOR = "|"
_NAME_PREFIX = ":"
_NUMBER_PREFIX_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _read_field(text: str, start: int, stops: str) -> tuple[str, int]:
    """Read from start up to (not including) the first stop char or end of text."""
    i = start
    while i < len(text) and text[i] not in stops:
        i += 1
    return text[start:i], i


def _parse_number(value: str) -> float | None:
    match = _NUMBER_PREFIX_RE.match(value.strip())
    if not match:
        return None
    return float(match.group(0))


def parse_emotions(field: str) -> dict[str, float]:
    """Parse ``e1:0.5,e8:0.5`` into a mapping.

    Codes are kept verbatim, known or not. Pairs missing a code or a numeric
    value are dropped.
    """
    emotions = {}
    for pair in field.split(","):
        parts = pair.split(":")
        if len(parts) < 2:
            continue
        code = parts[0].strip()
        value = _parse_number(parts[1])
        if not code or value is None:
            continue
        emotions[code] = value
    return emotions


def _scan_marker(text: str, start: int) -> Marker | None:
    """Try to read one marker whose opening delimiter sits at start."""
    end = len(text)
    i = start + 1
    if i >= end or text[i] not in MARKER_KINDS:
        return None
    kind = text[i]
    i += 1

    name = voice_file = emotion_field = ""
    stops = MARKER_DELIMITER + _FIELD_SEPARATOR
    if i < end and text[i] == _NAME_PREFIX:
        name, i = _read_field(text, i + 1, stops)
    if i < end and text[i] == _FIELD_SEPARATOR:
        voice_file, i = _read_field(text, i + 1, stops)
    if i < end and text[i] == _FIELD_SEPARATOR:
        emotion_field, i = _read_field(text, i + 1, MARKER_DELIMITER)
    if i >= end or text[i] != MARKER_DELIMITER:
        return None

    character = DEFAULT_CHARACTER
    if kind == CHARACTER and name:
        character = name
    if kind == ACTION or not voice_file:
        voice_file = DEFAULT_VOICE_FILE

    return Marker(
        kind=kind,
        position=start,
        length=i + 1 - start,
        character=character,
        voice_file=voice_file,
        emotions=parse_emotions(emotion_field) if emotion_field else {},
    )


def parse_markers(text: str) -> list[Marker]:
    """Return every marker in text, left to right, non-overlapping."""
    markers = []
    pos = 0
    while True:
        start = text.find(MARKER_DELIMITER, pos)
        if start < 0:
            break
        marker = _scan_marker(text, start)
        if marker is None:
            pos = start + 1
            continue
        markers.append(marker)
        pos = marker.end

    logger.debug("Found %d markers", len(markers))
    return markers


def strip_markers(text: str) -> str:
    """Remove all markers, leaving the surrounding prose."""
    return MARKER_PATTERN.sub("", text)


def format_emotions(emotions: dict[str, float]) -> str:
    """Render an emotion mapping as ``Happiness: 0.7, Surprise: 0.3``."""
    if not emotions:
        return "no emotions"
    parts = []
    for code, value in emotions.items():
        name = EMOTION_CODES.get(code, code)
        parts.append(f"{name.capitalize()}: {value}")
    return ", ".join(parts)


def describe_marker(marker: Marker) -> str:
    """One-line description of a marker for diagnostic logs."""
    if marker.kind == NARRATOR:
        message = f"Narrator speaking with voice {marker.voice_file}"
    elif marker.kind == ACTION:
        message = "Action description"
    else:
        message = f"Character {marker.character} speaking with voice {marker.voice_file}"
    if marker.emotions:
        message += f" with emotions: {format_emotions(marker.emotions)}"
    return message


def log_markers(markers: list[Marker]) -> None:
    for marker in markers:
        logger.info("Marker: %s", describe_marker(marker))
