"""Audio, model and token constants shared across the pipeline.

Values follow the multilingual Whisper checkpoints (tiny through medium),
which all use an 80-bin mel front-end and the same special token layout.
"""

# Audio front-end
SAMPLE_RATE = 16000
N_FFT = 400
HOP_LENGTH = 160
N_MELS = 80
CHUNK_LENGTH = 30  # seconds of context the encoder sees
MAX_SAMPLES = CHUNK_LENGTH * SAMPLE_RATE  # 480000
MIN_SAMPLES = SAMPLE_RATE  # pad anything shorter than 1 second
MAX_FRAMES = MAX_SAMPLES // HOP_LENGTH  # 3000
LOG_EPSILON = 1e-10
LOG_FLOOR = -8.0

# Special tokens
TOKEN_EOT = 50257
TOKEN_SOT = 50258
TOKEN_LANGUAGE_START = 50259
TOKEN_TRANSLATE = 50358
TOKEN_TRANSCRIBE = 50359
TOKEN_SOT_LM = 50360
TOKEN_SOT_PREV = 50361
TOKEN_NO_SPEECH = 50362
TOKEN_NO_TIMESTAMPS = 50363
TOKEN_TIMESTAMP_BEGIN = 50364

# Decoder context length; bounds the whole token sequence
MAX_TOKENS = 448

SEED_TOKENS = (TOKEN_SOT, TOKEN_NO_TIMESTAMPS)
TERMINAL_TOKENS = frozenset({TOKEN_EOT, TOKEN_NO_SPEECH})

# Language codes in token order: LANGUAGES[i] <-> TOKEN_LANGUAGE_START + i
LANGUAGES = (
    "en", "zh", "de", "es", "ru", "ko", "fr", "ja", "pt", "tr",
    "pl", "ca", "nl", "ar", "sv", "it", "id", "hi", "fi", "vi",
    "he", "uk", "el", "ms", "cs", "ro", "da", "hu", "ta", "no",
    "th", "ur", "hr", "bg", "lt", "la", "mi", "ml", "cy", "sk",
    "te", "fa", "lv", "bn", "sr", "az", "sl", "kn", "et", "mk",
    "br", "eu", "is", "hy", "ne", "mn", "bs", "kk", "sq", "sw",
    "gl", "mr", "pa", "si", "km", "sn", "yo", "so", "af", "oc",
    "ka", "be", "tg", "sd", "gu", "am", "yi", "lo", "uz", "fo",
    "ht", "ps", "tk", "nn", "mt", "sa", "lb", "my", "bo", "tl",
    "mg", "as", "tt", "haw", "ln", "ha", "ba", "jw", "su",
)

DEFAULT_LANGUAGE = "en"

# Returned instead of an empty string when no speech tokens were decoded
NO_SPEECH_TEXT = "[no speech detected]"

# Timeouts in seconds
INFERENCE_TIMEOUT = 300.0
DOWNLOAD_TIMEOUT = 3600.0


def is_special_token(token: int) -> bool:
    """Return True for control tokens (EOT and everything above it)."""
    return token >= TOKEN_EOT


def language_for_token(token: int):
    """Map a language token to its code, or None if it is not one."""
    index = token - TOKEN_LANGUAGE_START
    if 0 <= index < len(LANGUAGES):
        return LANGUAGES[index]
    return None
