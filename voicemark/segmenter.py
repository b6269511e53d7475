"""Split marked text into speakable segments."""

import logging
import re
from collections.abc import Hashable

from voicemark.constants import (
    ACTION,
    CHARACTER,
    DEFAULT_CHARACTER,
    DEFAULT_VOICE_FILE,
    EMOTION_CODES,
)
from voicemark.markers import format_emotions
from voicemark.models import Marker, Segment

logger = logging.getLogger(__name__)

# Character line: "dialogue" *action* "dialogue"
_DIALOGUE_ACTION_DIALOGUE_RE = re.compile(r'(.*?)"\s*\*([^*]*)\*\s*"(.*?)')

# Character line ending in an action: "dialogue" *action*
_DIALOGUE_ACTION_RE = re.compile(r'(.*?)"\s*\*([^*]*)\*')

# Action line with one quoted line of dialogue: action "dialogue" action
_ACTION_DIALOGUE_RE = re.compile(r'([^"]*)"([^"]*)"(.*)')

# Sanitization
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9\s.,!?'();\-–—]")
_WORD_HYPHEN_RE = re.compile(r"(?<=[A-Za-z0-9])-(?=[A-Za-z0-9])")
_HYPHEN_RUN_RE = re.compile(r"-+")
_EM_DASH_RUN_RE = re.compile(r"—+")
_EN_DASH_RUN_RE = re.compile(r"–+")
_SPACED_EM_DASH_RE = re.compile(r"\s*—\s*")
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize(text: str) -> str:
    """Reduce text to what the speech engine should read aloud.

    Drops asterisks, quotes and anything outside letters, digits, whitespace
    and ``.,!?'();`` plus dashes. Double hyphens become em dashes, hyphenated
    words are joined with an en dash, any other hyphen run becomes an em dash
    set off by single spaces. Applying it twice changes nothing.
    """
    text = _DISALLOWED_RE.sub("", text)
    text = text.replace("--", "—")
    text = _WORD_HYPHEN_RE.sub("–", text)
    text = _HYPHEN_RUN_RE.sub("—", text)
    text = _EM_DASH_RUN_RE.sub("—", text)
    text = _EN_DASH_RUN_RE.sub("–", text)
    text = _SPACED_EM_DASH_RE.sub(" — ", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def _strip_quotes(text: str) -> str:
    """Remove one leading and one trailing double quote."""
    if text.startswith('"'):
        text = text[1:]
    if text.endswith('"'):
        text = text[:-1]
    return text


def _strip_trailing_asterisk(text: str) -> str:
    return text[:-1] if text.endswith("*") else text


def _known_emotions(emotions: dict[str, float]) -> dict[str, float]:
    known = {code: value for code, value in emotions.items() if code in EMOTION_CODES}
    if len(known) != len(emotions):
        ignored = sorted(set(emotions) - set(known))
        logger.debug("Ignoring unknown emotion codes: %s", ", ".join(ignored))
    return known


class _SegmentBuilder:
    """Collects segments for one text block, dropping those that sanitize to nothing."""

    def __init__(self, conversation_id: Hashable | None):
        self.conversation_id = conversation_id
        self.segments: list[Segment] = []

    def action(self, text: str) -> None:
        self._add(ACTION, text, DEFAULT_CHARACTER, DEFAULT_VOICE_FILE, {})

    def voiced(self, marker: Marker, text: str) -> None:
        self._add(marker.kind, text, marker.character, marker.voice_file, marker.emotions)

    def dialogue(self, speaker: Marker, text: str) -> None:
        self._add(CHARACTER, text, speaker.character, speaker.voice_file, speaker.emotions)

    def _add(self, kind, text, character, voice_file, emotions) -> None:
        clean = sanitize(text)
        if not clean:
            return
        self.segments.append(Segment(
            kind=kind,
            text=clean,
            character=character,
            voice_file=voice_file,
            emotions=_known_emotions(emotions),
            conversation_id=self.conversation_id,
        ))


def _split_character_span(builder: _SegmentBuilder, marker: Marker, span: str) -> None:
    match = _DIALOGUE_ACTION_DIALOGUE_RE.fullmatch(span)
    if match:
        builder.dialogue(marker, _strip_quotes(match.group(1)).strip())
        builder.action(match.group(2).strip())
        builder.dialogue(marker, _strip_quotes(match.group(3)).strip())
        return

    match = _DIALOGUE_ACTION_RE.fullmatch(span)
    if match:
        builder.dialogue(marker, _strip_quotes(match.group(1)).strip())
        builder.action(match.group(2).strip())
        return

    builder.dialogue(marker, _strip_quotes(span).strip())


def _split_action_span(
    builder: _SegmentBuilder,
    span: str,
    last_character: Marker | None,
) -> None:
    match = _ACTION_DIALOGUE_RE.fullmatch(span)
    if match and last_character is not None:
        builder.action(_strip_trailing_asterisk(match.group(1)).strip())
        builder.dialogue(last_character, match.group(2).strip())
        builder.action(_strip_trailing_asterisk(match.group(3)).strip())
        return

    builder.action(_strip_trailing_asterisk(span).strip())


def segment_text(
    text: str,
    markers: list[Marker],
    conversation_id: Hashable | None = None,
) -> list[Segment]:
    """Turn a block of marked text into an ordered list of Segments.

    Each marker owns the text from its end up to the next marker (or the end
    of the block). Character spans may split into dialogue / action /
    dialogue; action spans may carry one quoted line, which is given to the
    most recent character marker. Text before the first marker is not read.
    Without any marker the whole block is read as one action segment.
    """
    builder = _SegmentBuilder(conversation_id)

    if not markers:
        if text.strip():
            builder.action(text)
        return builder.segments

    ordered = sorted(markers, key=lambda m: m.position)
    last_character = None

    for i, marker in enumerate(ordered):
        end = ordered[i + 1].position if i + 1 < len(ordered) else len(text)
        span = text[marker.end:end]

        if marker.kind == CHARACTER:
            last_character = marker
            _split_character_span(builder, marker, span)
        elif marker.kind == ACTION:
            _split_action_span(builder, span, last_character)
        else:
            builder.voiced(marker, span)

    for seg in builder.segments:
        logger.debug(
            "Segment [%s] %s (%s, %s): %s",
            seg.kind, seg.character, seg.voice_file, format_emotions(seg.emotions), seg.text,
        )
    return builder.segments
