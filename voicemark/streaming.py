"""Segment text while it is still being generated."""

import logging
import re
from collections.abc import Callable, Hashable

from voicemark.markers import log_markers, parse_markers
from voicemark.models import Segment
from voicemark.segmenter import segment_text

logger = logging.getLogger(__name__)

# A paragraph is closed once an asterisk or quote is followed by a line break.
_PARAGRAPH_END_RE = re.compile(r'[*"]\s*\n')


class StreamSegmenter:
    """Feeds closed paragraphs of a growing message to ``sink`` as Segments.

    ``feed`` receives the whole text generated so far each time. The final
    update flushes whatever is left and resets the segmenter for the next
    message.
    """

    def __init__(self, sink: Callable[[list[Segment]], None]):
        self.sink = sink
        self.reset()

    def reset(self) -> None:
        self.buffer = ""
        self.processed_length = 0
        self.committed = 0
        self.segments: list[Segment] = []

    def feed(
        self,
        text: str,
        is_final: bool = False,
        conversation_id: Hashable | None = None,
    ) -> list[Segment]:
        """Process one streaming update; return the segments it produced."""
        self.buffer = text

        if len(text) > self.processed_length:
            new_content = text[self.processed_length:]
            self.processed_length = len(text)
            logger.debug("New content (%d chars): %s", len(new_content), new_content[:50])
            log_markers(parse_markers(new_content))

        produced = []
        for match in _PARAGRAPH_END_RE.finditer(self.buffer, self.committed):
            paragraph = self.buffer[self.committed:match.end()]
            self.committed = match.end()
            produced.extend(self._emit(paragraph, conversation_id))

        if is_final:
            remaining = self.buffer[self.committed:]
            if remaining.strip():
                produced.extend(self._emit(remaining, conversation_id))
            self._log_summary()
            self.reset()

        return produced

    def _emit(self, paragraph: str, conversation_id: Hashable | None) -> list[Segment]:
        segments = segment_text(paragraph, parse_markers(paragraph), conversation_id)
        if segments:
            self.segments.extend(segments)
            self.sink(segments)
        return segments

    def _log_summary(self) -> None:
        if not self.segments:
            return
        logger.info("Complete message broken into %d TTS segments", len(self.segments))
        for i, seg in enumerate(self.segments):
            logger.info("[Segment %d] %s %s (%s): %s", i + 1, seg.kind, seg.character, seg.voice_file, seg.text)
