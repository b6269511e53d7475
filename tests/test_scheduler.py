"""Tests for in-order playback with preloading."""

import asyncio

from conftest import FakeOutput, FakeSynthesizer, make_segments
from voicemark.constants import CHARACTER, NARRATOR
from voicemark.errors import MissingApiKeyError, SynthesisError
from voicemark.models import Segment
from voicemark.scheduler import DONE, IDLE, PLAYING, SEGMENT_PLAYING, PlaybackScheduler
from voicemark.voices import VoiceLibrary, pad_text


def _key(i):
    return pad_text(f"Line {i}.")


class RecordingOutput(FakeOutput):
    """Calls on_play(handle) as each segment starts."""

    def __init__(self, on_play, play_time=0):
        super().__init__(play_time)
        self.on_play = on_play

    async def play(self, handle):
        self.on_play(handle)
        await super().play(handle)


class KeylessSynthesizer:
    async def synthesize(self, payload):
        raise MissingApiKeyError("No API key set for the cloud TTS backend")

    async def aclose(self):
        pass


async def _play(scheduler, segments):
    scheduler.enqueue(segments)
    await scheduler.join()


def test_plays_in_order_despite_preload_order(settings, output):
    """Fetches finishing out of order never reorder playback."""
    delays = {_key(0): 0.05, _key(1): 0.04, _key(2): 0.01, _key(3): 0.03, _key(4): 0, _key(5): 0.02}
    synth = FakeSynthesizer(delays=delays)
    scheduler = PlaybackScheduler(settings, synth, output)
    asyncio.run(_play(scheduler, make_segments(6)))
    assert output.played == [_key(i) for i in range(6)]
    assert scheduler.state == IDLE
    assert scheduler.queue == []


def test_preload_window(settings, synthesizer):
    """While segment 3 of 10 plays, exactly the next five are fetched or held."""
    settings.update(max_preload=5)
    seen = {}

    def on_play(handle):
        if handle == _key(2):
            seen["window"] = set(scheduler.preloaded) | set(scheduler.loading)
            seen["states"] = (scheduler.states[0], scheduler.states[2])
            seen["requested"] = list(synthesizer.requests)

    scheduler = PlaybackScheduler(settings, synthesizer, RecordingOutput(on_play))
    asyncio.run(_play(scheduler, make_segments(10)))
    assert seen["window"] == {3, 4, 5, 6, 7}
    assert seen["states"] == (DONE, SEGMENT_PLAYING)
    assert _key(8) not in seen["requested"]
    assert _key(9) not in seen["requested"]


def test_no_preload_when_window_is_zero(settings, synthesizer):
    """max_preload 0 fetches each segment only when it is due."""
    settings.update(max_preload=0)
    windows = []

    def on_play(handle):
        windows.append(set(scheduler.preloaded) | set(scheduler.loading))

    output = RecordingOutput(on_play)
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    asyncio.run(_play(scheduler, make_segments(4)))
    assert output.played == [_key(i) for i in range(4)]
    assert windows == [set()] * 4


def test_each_segment_fetched_once(settings, synthesizer, output):
    """Preloaded audio is used instead of fetching again."""
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    asyncio.run(_play(scheduler, make_segments(8)))
    assert sorted(synthesizer.requests) == sorted(_key(i) for i in range(8))


def test_resources_released_after_run(settings, synthesizer, output):
    """Every loaded clip is released once played."""
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    asyncio.run(_play(scheduler, make_segments(5)))
    assert sorted(output.released) == sorted(output.loaded)


def test_skips_other_conversation(settings, synthesizer, output):
    """Segments from a conversation that is no longer active are skipped unfetched."""
    segments = make_segments(2, conversation_id="old") + [
        Segment(kind=NARRATOR, text="Current.", conversation_id="new"),
    ]
    scheduler = PlaybackScheduler(settings, synthesizer, output, active_conversation=lambda: "new")
    asyncio.run(_play(scheduler, segments))
    assert output.played == [pad_text("Current.")]
    assert synthesizer.requests == [pad_text("Current.")]


def test_disable_narrator(settings, synthesizer, output):
    """Narrator segments are skipped when the narrator is disabled."""
    settings.update(disable_narrator=True)
    segments = [
        Segment(kind=NARRATOR, text="Dusk."),
        Segment(kind=CHARACTER, text="Hello.", character="Bob"),
    ]
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    asyncio.run(_play(scheduler, segments))
    assert output.played == [pad_text("Hello.")]
    assert synthesizer.requests == [pad_text("Hello.")]


def test_silenced_actions(settings, synthesizer, output, sample_segments):
    """Action segments are skipped when actions are silenced."""
    settings.update(action_handling="silence")
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    asyncio.run(_play(scheduler, sample_segments))
    assert output.played == [pad_text("It was dark."), pad_text("Who's there?")]


def test_force_reset_stops_everything(settings):
    """A forced reset stops playback, empties the queue and frees every clip."""
    synth = FakeSynthesizer(delays={_key(i): 0.05 for i in range(1, 7)})
    output = FakeOutput(play_time=5)
    scheduler = PlaybackScheduler(settings, synth, output)

    async def scenario():
        scheduler.enqueue(make_segments(7))
        await asyncio.sleep(0.02)
        assert scheduler.state == PLAYING
        assert scheduler.loading
        scheduler.reset(force=True)
        assert scheduler.state == IDLE
        assert scheduler.queue == []
        assert scheduler.preloaded == {}
        assert scheduler.loading == {}
        assert scheduler.current is None
        await scheduler.join()
        # in-flight fetches finish and are thrown away
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert output.played == [_key(0)]
    assert output.stops == 1
    assert scheduler.preloaded == {}
    assert sorted(output.released) == sorted(output.loaded)


def test_preserve_queue_blocks_plain_reset(settings, synthesizer):
    """reset() without force is ignored while the queue is preserved."""
    output = FakeOutput(play_time=0.01)
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    scheduler.preserve_queue = True

    async def scenario():
        scheduler.enqueue(make_segments(3))
        await asyncio.sleep(0)
        scheduler.reset()
        assert scheduler.state == PLAYING
        await scheduler.join()

    asyncio.run(scenario())
    assert output.played == [_key(i) for i in range(3)]


def test_enqueue_while_playing_appends(settings, synthesizer):
    """Segments added mid-run play after the current ones."""
    output = FakeOutput(play_time=0.02)
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    segments = make_segments(4)

    async def scenario():
        scheduler.enqueue(segments[:2])
        await asyncio.sleep(0.01)
        scheduler.enqueue(segments[2:])
        await scheduler.join()

    asyncio.run(scenario())
    assert output.played == [_key(i) for i in range(4)]


def test_new_run_after_completion(settings, synthesizer, output):
    """A finished queue is cleared; the next enqueue plays only the new segments."""
    scheduler = PlaybackScheduler(settings, synthesizer, output)

    async def scenario():
        await _play(scheduler, make_segments(2))
        await _play(scheduler, [Segment(kind=NARRATOR, text="Again.")])

    asyncio.run(scenario())
    assert output.played == [_key(0), _key(1), pad_text("Again.")]


def test_failed_segment_is_skipped(settings, output):
    """A synthesis error skips that segment with a notice and playback continues."""
    synth = FakeSynthesizer(fail={_key(1): SynthesisError("API request failed: 500 - boom", status=500)})
    notices = []
    scheduler = PlaybackScheduler(settings, synth, output, notify=lambda level, msg: notices.append((level, msg)))
    asyncio.run(_play(scheduler, make_segments(3)))
    assert output.played == [_key(0), _key(2)]
    assert notices == [("error", "TTS API Error: API request failed: 500 - boom")]
    # the failed preload is retried once when the playhead reaches it
    assert synth.requests.count(_key(1)) == 2


def test_missing_voice_sample_is_skipped(synthesizer, output, settings):
    """Without any sample nothing is synthesized; each segment gets a notice."""
    settings.voices = VoiceLibrary()
    notices = []
    scheduler = PlaybackScheduler(settings, synthesizer, output, notify=lambda level, msg: notices.append(msg))
    asyncio.run(_play(scheduler, make_segments(2)))
    assert output.played == []
    assert synthesizer.requests == []
    assert notices == ["No voice sample for Narrator"] * 2


def test_missing_api_key_aborts_queue(settings, output):
    """Missing credentials stop the whole queue with one notice."""
    notices = []
    scheduler = PlaybackScheduler(
        settings, KeylessSynthesizer(), output,
        notify=lambda level, msg: notices.append((level, msg)),
    )
    asyncio.run(_play(scheduler, make_segments(4)))
    assert output.played == []
    assert notices == [("error", "Please set your TTS API key in the settings")]
    assert scheduler.state == IDLE
    assert scheduler.queue == []


def test_enqueue_nothing_stays_idle(settings, synthesizer, output):
    """An empty batch does not start playback."""
    scheduler = PlaybackScheduler(settings, synthesizer, output)

    async def scenario():
        scheduler.enqueue([])
        assert scheduler.state == IDLE
        await scheduler.join()

    asyncio.run(scenario())
    assert output.played == []


class CrashingOutput(FakeOutput):
    """Raises an unexpected error on the first play only."""

    def __init__(self):
        super().__init__()
        self.crashed = False

    async def play(self, handle):
        if not self.crashed:
            self.crashed = True
            raise RuntimeError("device vanished")
        await super().play(handle)


def test_unexpected_play_error_skips_segment(settings, synthesizer):
    """An unexpected error skips the segment; the queue keeps going and later runs still play."""
    output = CrashingOutput()
    notices = []
    scheduler = PlaybackScheduler(settings, synthesizer, output, notify=lambda level, msg: notices.append(msg))

    async def scenario():
        await _play(scheduler, make_segments(3))
        assert scheduler.state == IDLE
        await _play(scheduler, [Segment(kind=NARRATOR, text="Later.")])

    asyncio.run(scenario())
    assert output.played == [_key(1), _key(2), pad_text("Later.")]
    assert notices == ["Failed to play TTS audio"]
    assert scheduler.state == IDLE
    assert sorted(output.released) == sorted(output.loaded)


def test_runner_failure_returns_to_idle(settings, synthesizer, output):
    """If the runner itself fails, the scheduler goes back to idle and can start again."""
    settings.update(max_preload=0)
    scheduler = PlaybackScheduler(settings, synthesizer, output)
    calls = 0
    original = scheduler.preload

    def failing_preload():
        nonlocal calls
        calls += 1
        if calls == 2:
            raise RuntimeError("bookkeeping broke")
        original()

    scheduler.preload = failing_preload

    async def scenario():
        await _play(scheduler, make_segments(3))
        assert scheduler.state == IDLE
        assert scheduler.queue == []
        scheduler.preload = original
        await _play(scheduler, [Segment(kind=NARRATOR, text="Again.")])

    asyncio.run(scenario())
    assert output.played == [_key(0), pad_text("Again.")]


def test_preloaded_segment_skipped_after_conversation_change(settings, synthesizer):
    """Audio already preloaded for a stale conversation is released, never played."""
    output = FakeOutput(play_time=0.05)
    active = {"id": "a"}
    scheduler = PlaybackScheduler(settings, synthesizer, output, active_conversation=lambda: active["id"])
    held = {}

    async def scenario():
        scheduler.enqueue(make_segments(3, conversation_id="a"))
        await asyncio.sleep(0.02)
        held.update({i: item.source for i, item in scheduler.preloaded.items()})
        active["id"] = "b"
        await scheduler.join()

    asyncio.run(scenario())
    assert 1 in held
    assert output.played == [_key(0)]
    assert held[1] in output.released
    assert sorted(output.released) == sorted(output.loaded)
