"""Shared fixtures for voicemark tests."""

import asyncio

import pytest
from pydub import AudioSegment

from voicemark.audio import AudioOutput
from voicemark.config import Settings
from voicemark.constants import ACTION, CHARACTER, NARRATOR, NARRATOR_VOICE_ID
from voicemark.models import AudioVariant, Segment
from voicemark.voices import VoiceLibrary


@pytest.fixture
def tiny_mp3(tmp_path):
    """Generate a 100ms silent MP3 for testing."""
    path = tmp_path / "test.mp3"
    silence = AudioSegment.silent(duration=100)
    silence.export(str(path), format="mp3")
    return path


@pytest.fixture
def library():
    """Narrator plus one character, each with a fake sample."""
    lib = VoiceLibrary()
    lib.set_variant(NARRATOR_VOICE_ID, "default", AudioVariant(data=b"narrator-wav", file_name="narrator.mp3"))
    bob = lib.add_voice("Bob")
    lib.set_variant(bob.id, "default", AudioVariant(data=b"bob-wav", file_name="bob.mp3"))
    lib.set_variant(bob.id, "angry", AudioVariant(data=b"bob-angry-wav", file_name="bob_angry.mp3"))
    return lib


@pytest.fixture
def settings(library):
    """Enabled settings using the local backend with no gaps between segments."""
    return Settings(enabled=True, segment_gap=0, voices=library)


@pytest.fixture
def sample_segments():
    """Pre-built segments for voice/scheduler/session tests."""
    return [
        Segment(kind=NARRATOR, text="It was dark."),
        Segment(kind=CHARACTER, text="Who's there?", character="Bob", voice_file="bob.mp3",
                emotions={"e4": 0.8}),
        Segment(kind=ACTION, text="He lifts the lantern."),
    ]


def make_segments(count, kind=NARRATOR, conversation_id=None):
    return [Segment(kind=kind, text=f"Line {i}.", conversation_id=conversation_id) for i in range(count)]


class FakeSynthesizer:
    """Answers each payload with its text as bytes, after an optional per-text delay."""

    def __init__(self, delays=None, fail=None):
        self.delays = delays or {}
        self.fail = fail or {}
        self.requests = []
        self.closed = False

    async def synthesize(self, payload):
        text = payload["text"]
        self.requests.append(text)
        await asyncio.sleep(self.delays.get(text, 0))
        if text in self.fail:
            raise self.fail[text]
        return text.encode()

    async def aclose(self):
        self.closed = True


class FakeOutput(AudioOutput):
    """Records what was played and what was released."""

    def __init__(self, play_time=0):
        self.play_time = play_time
        self.played = []
        self.loaded = []
        self.released = []
        self.stops = 0

    def load(self, data):
        source = f"tmp-{len(self.loaded)}"
        self.loaded.append(source)
        return data.decode(), source

    async def play(self, handle):
        self.played.append(handle)
        await asyncio.sleep(self.play_time)

    def stop(self):
        self.stops += 1

    def release(self, handle, source):
        self.released.append(source)


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def output():
    return FakeOutput()
