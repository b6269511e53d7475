"""Decode synthesized audio and play it on the local sound device."""

import asyncio
import logging
import os
import tempfile

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from voicemark.constants import AUDIO_FORMAT
from voicemark.errors import AudioPlaybackError

logger = logging.getLogger(__name__)


class AudioOutput:
    """What the scheduler needs from an audio backend.

    ``load`` turns fetched bytes into a playable handle plus the path of the
    resource backing it; ``release`` frees both. ``play`` returns once the
    audio has finished or ``stop`` was called.
    """

    def load(self, data: bytes) -> tuple[object, str]:
        raise NotImplementedError

    async def play(self, handle) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def release(self, handle, source: str) -> None:
        raise NotImplementedError


def to_samples(audio: AudioSegment) -> np.ndarray:
    """Frames x channels sample array for an AudioSegment."""
    samples = np.array(audio.get_array_of_samples())
    return samples.reshape((-1, audio.channels))


class SoundDeviceOutput(AudioOutput):
    """Plays through sounddevice; decoding goes through pydub (needs ffmpeg)."""

    def __init__(self, audio_format: str = AUDIO_FORMAT):
        self.audio_format = audio_format

    def load(self, data: bytes) -> tuple[AudioSegment, str]:
        with tempfile.NamedTemporaryFile(suffix=f".{self.audio_format}", delete=False) as f:
            f.write(data)
            path = f.name
        try:
            audio = AudioSegment.from_file(path, format=self.audio_format)
        except (CouldntDecodeError, IndexError, OSError) as e:
            _remove(path)
            raise AudioPlaybackError(f"Could not decode TTS audio: {e}") from e
        return audio, path

    async def play(self, handle: AudioSegment) -> None:
        import sounddevice as sd

        try:
            sd.play(to_samples(handle), handle.frame_rate)
        except sd.PortAudioError as e:
            raise AudioPlaybackError(f"Error playing audio: {e}") from e
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, sd.wait)

    def stop(self) -> None:
        import sounddevice as sd

        sd.stop()

    def release(self, handle, source: str) -> None:
        _remove(source)


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
