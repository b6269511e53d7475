"""Entry points a chat host calls as its events happen.

The host owns the event bus; it forwards the relevant events to one
NarrationSession, which owns the scheduler and the streaming state.
"""

import logging
from collections.abc import Callable, Hashable

from voicemark.audio import AudioOutput, SoundDeviceOutput
from voicemark.config import Settings
from voicemark.instructions import inject_instructions
from voicemark.markers import log_markers, parse_markers
from voicemark.models import Segment
from voicemark.scheduler import PlaybackScheduler, log_notice
from voicemark.segmenter import segment_text
from voicemark.streaming import StreamSegmenter
from voicemark.tts import Synthesizer

logger = logging.getLogger(__name__)


class NarrationSession:
    def __init__(
        self,
        settings: Settings,
        synthesizer: Synthesizer | None = None,
        output: AudioOutput | None = None,
        notify: Callable[[str, str], None] = log_notice,
        conversation_id: Hashable | None = None,
    ):
        self.settings = settings
        self.notify = notify
        self.conversation_id = conversation_id
        self.synthesizer = synthesizer or Synthesizer(settings)
        self.scheduler = PlaybackScheduler(
            settings,
            self.synthesizer,
            output or SoundDeviceOutput(),
            active_conversation=lambda: self.conversation_id,
            notify=notify,
        )
        self.stream = StreamSegmenter(self.scheduler.enqueue)
        self.stream_active = False
        self.instructions_injected = False
        settings.subscribe(self._on_settings_changed)

    def on_message_ready(self, text: str, conversation_id: Hashable | None = None) -> list[Segment]:
        """Narrate a complete message from the start, replacing any current playback."""
        if not self.settings.enabled:
            return []
        if conversation_id is None:
            conversation_id = self.conversation_id

        self.scheduler.reset(force=True)
        markers = parse_markers(text)
        if not markers:
            logger.info("No TTS markers found in message")
            self.notify("warning", "No TTS markers found in this message")
            return []

        logger.info("Found %d TTS markers in message", len(markers))
        log_markers(markers)
        segments = segment_text(text, markers, conversation_id)
        self.scheduler.enqueue(segments)
        return segments

    def on_stream_token(
        self,
        text: str,
        is_final: bool = False,
        conversation_id: Hashable | None = None,
    ) -> list[Segment]:
        """Feed the text generated so far; closed paragraphs start playing at once."""
        if not (self.settings.enabled and self.settings.auto_generation):
            return []
        if conversation_id is None:
            conversation_id = self.conversation_id
        if not self.stream_active:
            logger.info("Streaming narration started")
            self.stream_active = True

        segments = self.stream.feed(text, is_final, conversation_id)
        if is_final:
            self.stream_active = False
        return segments

    def on_conversation_changed(self, conversation_id: Hashable | None = None) -> None:
        self.conversation_id = conversation_id
        self.stream.reset()
        self.stream_active = False
        self.scheduler.reset(force=True)

    def on_message_changed(self) -> None:
        """A message was edited, deleted or swiped."""
        self.scheduler.reset(force=True)

    def on_prompt_ready(self, chat: list[dict]) -> None:
        if not self.settings.enabled:
            return
        logger.info("Injecting TTS instructions")
        inject_instructions(chat, self.settings.voices)
        self.instructions_injected = True

    def on_generation_started(self) -> None:
        self.instructions_injected = False
        self.stream_active = False
        self.stream.reset()

    def on_generation_stopped(self) -> None:
        self.instructions_injected = False

    def toggle_playback(self, message: dict | None) -> None:
        """Stop playback if running, otherwise narrate the given chat message."""
        if self.scheduler.playing:
            self.scheduler.reset(force=True)
            self.notify("info", "Playback stopped")
            return
        if not message or message.get("is_user") or not message.get("mes"):
            self.notify("warning", "Last message is not a character message")
            return
        self.notify("info", "Processing latest message")
        self.on_message_ready(message["mes"])

    async def wait_until_done(self) -> None:
        await self.scheduler.join()

    async def aclose(self) -> None:
        self.scheduler.reset(force=True)
        await self.synthesizer.aclose()

    def _on_settings_changed(self, names: set[str]) -> None:
        if "voices" in names:
            self.instructions_injected = False
        if "enabled" in names and not self.settings.enabled:
            self.scheduler.reset(force=True)
        if "max_preload" in names:
            self.scheduler.preload()
