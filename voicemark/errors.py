"""Exceptions raised by voicemark."""


class VoicemarkError(Exception):
    pass


class ConfigError(VoicemarkError):
    pass


class VoiceResolutionError(VoicemarkError):
    """No stored sample for a segment's voice, nor for the narrator default."""


class SynthesisError(VoicemarkError):
    """The TTS service failed or answered with an error status."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MissingApiKeyError(SynthesisError):
    """Cloud backend selected without an API key; nothing can be synthesized."""


class AudioPlaybackError(VoicemarkError):
    pass
