"""In-order segment playback with a sliding preload window.

Everything here runs on one asyncio event loop. The runner task walks the
queue front to back; preload tasks fetch upcoming segments in the background
and park their audio in ``preloaded`` until the playhead reaches them. Fetch
completions may arrive in any order, but only the entry for the current
playhead index is ever played.
"""

import asyncio
import logging
from collections.abc import Callable, Hashable

from voicemark.constants import ACTION, NARRATOR, SKIP_DELAY
from voicemark.errors import (
    AudioPlaybackError,
    MissingApiKeyError,
    SynthesisError,
    VoiceResolutionError,
)
from voicemark.models import PreloadedAudio, Segment
from voicemark.voices import build_request

logger = logging.getLogger(__name__)

IDLE = "idle"
PLAYING = "playing"

# Per-segment states
QUEUED = "queued"
LOADING = "loading"
PRELOADED = "preloaded"
SEGMENT_PLAYING = "playing"
DONE = "done"
SKIPPED = "skipped"

_SEGMENT_ERRORS = (VoiceResolutionError, SynthesisError, AudioPlaybackError)


def log_notice(level: str, message: str) -> None:
    logger.log(logging.getLevelName(level.upper()), message)


class PlaybackScheduler:
    """Plays queued segments strictly in order, fetching up to ``max_preload`` ahead.

    ``active_conversation`` returns the conversation id segments must carry to
    be played; ``notify(level, message)`` receives user-facing notices.
    """

    def __init__(
        self,
        settings,
        synthesizer,
        output,
        active_conversation: Callable[[], Hashable | None] = lambda: None,
        notify: Callable[[str, str], None] = log_notice,
    ):
        self.settings = settings
        self.synthesizer = synthesizer
        self.output = output
        self.active_conversation = active_conversation
        self.notify = notify
        self.preserve_queue = False

        self.queue: list[Segment] = []
        self.states: list[str] = []
        self.index = -1
        self.playing = False
        self.preloaded: dict[int, PreloadedAudio] = {}
        self.loading: dict[int, asyncio.Task] = {}
        self.current: PreloadedAudio | None = None

        self._failed: set[int] = set()
        self._runner: asyncio.Task | None = None
        self._stale_tasks: set[asyncio.Task] = set()
        self._generation = 0

    @property
    def state(self) -> str:
        return PLAYING if self.playing else IDLE

    def enqueue(self, segments: list[Segment]) -> None:
        """Append segments; start playing from index 0 if idle.

        Must be called from within the running event loop.
        """
        if not segments:
            return
        self.queue.extend(segments)
        self.states.extend([QUEUED] * len(segments))

        if self.playing:
            self.preload()
            return

        self.playing = True
        self.index = 0
        loop = asyncio.get_running_loop()
        self._runner = loop.create_task(self._run(self._generation))

    async def join(self) -> None:
        """Wait until the queue has played out or was reset."""
        while self._runner is not None and not self._runner.done():
            await asyncio.wait({self._runner})

    def reset(self, force: bool = False) -> None:
        """Stop playback and drop the queue and every buffered resource.

        Without ``force`` this does nothing while ``preserve_queue`` is set.
        Fetches already in flight keep running; their results are discarded.
        """
        if not force and self.preserve_queue:
            logger.info("Not resetting TTS queue - allowing playback to continue")
            return

        logger.info("Resetting TTS queue and stopping playback")
        self._generation += 1

        current, self.current = self.current, None
        if current is not None:
            self.output.stop()
            self.output.release(current.handle, current.source)

        for item in self.preloaded.values():
            self.output.release(item.handle, item.source)
        self.preloaded.clear()

        for task in self.loading.values():
            self._stale_tasks.add(task)
            task.add_done_callback(self._stale_tasks.discard)
        self.loading.clear()
        self._failed.clear()

        self.queue = []
        self.states = []
        self.index = -1
        self.playing = False

        runner, self._runner = self._runner, None
        if runner is not None and not runner.done() and runner is not _current_task():
            runner.cancel()

    def skip_reason(self, segment: Segment) -> str | None:
        if segment.conversation_id != self.active_conversation():
            return "conversation changed"
        if self.settings.disable_narrator and segment.kind == NARRATOR:
            return "narrator disabled"
        if self.settings.action_handling == "silence" and segment.kind == ACTION:
            return "action silenced"
        return None

    async def _run(self, generation: int) -> None:
        try:
            await self._advance(generation)
        except Exception:
            logger.exception("TTS playback stopped by an unexpected error")
            if generation == self._generation:
                self.reset(force=True)

    async def _advance(self, generation: int) -> None:
        while self.index < len(self.queue):
            index = self.index
            try:
                delay = await self._play_index(index)
            except MissingApiKeyError as e:
                logger.error("%s", e)
                self.notify("error", "Please set your TTS API key in the settings")
                self.reset(force=True)
                return
            except Exception:
                logger.exception("Unexpected error with TTS segment %d/%d", index + 1, len(self.queue))
                self.notify("error", "Failed to play TTS audio")
                if generation == self._generation:
                    self.states[index] = SKIPPED
                delay = SKIP_DELAY
            if generation != self._generation:
                return

            self.index += 1
            self.preload()
            await asyncio.sleep(delay)
            if generation != self._generation:
                return

        logger.info("All TTS segments complete")
        self._finish()

    def _finish(self) -> None:
        for item in self.preloaded.values():
            self.output.release(item.handle, item.source)
        self.preloaded.clear()
        self.loading.clear()
        self._failed.clear()
        self.queue = []
        self.states = []
        self.index = -1
        self.playing = False
        self._runner = None

    async def _play_index(self, index: int) -> float:
        """Play one segment; return the pause to take before the next."""
        segment = self.queue[index]
        total = len(self.queue)

        reason = self.skip_reason(segment)
        if reason:
            logger.info("Skipping segment %d/%d (%s)", index + 1, total, reason)
            self._discard(index)
            self.states[index] = SKIPPED
            return SKIP_DELAY

        self.preload()
        try:
            item = await self._acquire(index, segment)
        except MissingApiKeyError:
            raise
        except _SEGMENT_ERRORS as e:
            logger.error("Error with TTS for segment %d/%d: %s", index + 1, total, e)
            self.notify("error", _notice_for(e, segment))
            self.states[index] = SKIPPED
            return SKIP_DELAY

        logger.info("Playing TTS segment %d/%d: %s - %s", index + 1, total, segment.character, segment.text[:30])
        self.current = item
        self.states[index] = SEGMENT_PLAYING
        try:
            await self.output.play(item.handle)
        except AudioPlaybackError as e:
            logger.error("Error playing audio for segment %d/%d: %s", index + 1, total, e)
            self.notify("error", "Error playing TTS audio")
            self.states[index] = SKIPPED
            return SKIP_DELAY
        finally:
            if self.current is item:
                self.current = None
                self.output.release(item.handle, item.source)

        logger.info("Finished playing TTS segment %d/%d", index + 1, total)
        self.states[index] = DONE
        return self.settings.segment_gap

    async def _acquire(self, index: int, segment: Segment) -> PreloadedAudio:
        """Preloaded audio for index, waiting on or replacing its fetch as needed."""
        task = self.loading.get(index)
        if index not in self.preloaded and task is not None:
            logger.info("Waiting for segment %d to finish preloading", index + 1)
            # asyncio.wait leaves the fetch running if we are cancelled
            await asyncio.wait({task})

        item = self.preloaded.pop(index, None)
        if item is not None:
            return item

        self.states[index] = LOADING
        data = await self._fetch(segment)
        handle, source = self.output.load(data)
        return PreloadedAudio(index=index, segment=segment, handle=handle, source=source)

    async def _fetch(self, segment: Segment) -> bytes:
        payload = build_request(segment, self.settings, self.settings.voices)
        return await self.synthesizer.synthesize(payload)

    def preload(self) -> None:
        """Start fetches for the window after the playhead."""
        if not self.playing:
            return
        current = self.index
        if current < 0 or current >= len(self.queue):
            return

        start = current + 1
        end = min(start + self.settings.max_preload, len(self.queue))
        logger.debug(
            "Preload status: playing segment %d/%d, preloaded: %d, loading: %d",
            current + 1, len(self.queue), len(self.preloaded), len(self.loading),
        )

        loop = asyncio.get_running_loop()
        for i in range(start, end):
            if i in self.preloaded or i in self.loading or i in self._failed:
                continue
            segment = self.queue[i]
            if self.skip_reason(segment):
                continue
            logger.debug("Starting preload for segment %d/%d", i + 1, len(self.queue))
            self.states[i] = LOADING
            self.loading[i] = loop.create_task(self._preload_one(i, segment, self._generation))

    async def _preload_one(self, index: int, segment: Segment, generation: int) -> None:
        try:
            data = await self._fetch(segment)
            handle, source = self.output.load(data)
        except Exception as e:
            logger.error("Error preloading TTS segment %d: %s", index + 1, e)
            if generation == self._generation:
                self.loading.pop(index, None)
                self._failed.add(index)
                self.states[index] = QUEUED
            return

        if generation != self._generation or index >= len(self.queue) or self.queue[index] is not segment:
            logger.debug("Discarding stale preload for segment %d", index + 1)
            self.output.release(handle, source)
            return

        self.loading.pop(index, None)
        self.preloaded[index] = PreloadedAudio(index=index, segment=segment, handle=handle, source=source)
        self.states[index] = PRELOADED
        logger.debug("Preloaded TTS segment %d/%d", index + 1, len(self.queue))
        self.preload()

    def _discard(self, index: int) -> None:
        item = self.preloaded.pop(index, None)
        if item is not None:
            self.output.release(item.handle, item.source)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _notice_for(error: Exception, segment: Segment) -> str:
    if isinstance(error, VoiceResolutionError):
        return f"No voice sample for {segment.character}"
    if isinstance(error, SynthesisError):
        return f"TTS API Error: {error}"
    return "Failed to play TTS audio"
