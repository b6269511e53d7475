"""All magic numbers and configuration constants."""

# Marker kinds
NARRATOR = "n"
ACTION = "a"
CHARACTER = "c"
MARKER_KINDS = (NARRATOR, ACTION, CHARACTER)

MARKER_DELIMITER = "§"
DEFAULT_CHARACTER = "Narrator"
DEFAULT_VOICE_FILE = "default.mp3"
VOICE_FILE_SUFFIX = ".mp3"

# Emotion codes used in markers → affect names understood by the TTS service
EMOTION_CODES = {
    "e1": "happiness",
    "e2": "sadness",
    "e3": "disgust",
    "e4": "fear",
    "e5": "surprise",
    "e6": "anger",
    "e7": "other",
    "e8": "neutral",
}

NARRATOR_VOICE_ID = "narrator"
DEFAULT_VARIANT = "default"

# Synthesis service
HYBRID_MODEL = "zonos-v0.1-hybrid"
TRANSFORMER_MODEL = "zonos-v0.1-transformer"
MODELS = (TRANSFORMER_MODEL, HYBRID_MODEL)
CLOUD_API_URL = "http://api.zyphra.com/v1/audio/text-to-speech"
LOCAL_API_PATH = "/v1/audio/text-to-speech"
REQUEST_MIME_TYPE = "audio/webm"
AUDIO_FORMAT = "webm"
TEXT_PAD = "..."                     # prosody padding around request text
TTS_RETRY_COUNT = 2                  # attempts per request on transport errors
TTS_RETRY_BASE_DELAY = 0.5           # seconds — base delay for exponential backoff

# Playback
SKIP_DELAY = 0.1                     # seconds — pause after a skipped or failed segment
ACTION_HANDLING_MODES = ("narrator", "silence")

# Settings defaults
DEFAULT_SPEAKING_RATE = 15.0
DEFAULT_VQSCORE = 0.78
DEFAULT_LANGUAGE = "en-us"
DEFAULT_LOCAL_API_URL = "http://localhost:8181"
DEFAULT_MAX_PRELOAD = 5
DEFAULT_SEGMENT_GAP = 0.5            # seconds between played segments
SETTINGS_FILE = "voicemark.json"

VERSION = "0.1.0"
