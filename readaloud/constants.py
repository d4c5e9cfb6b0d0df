"""All magic numbers and configuration constants."""

MIN_SENTENCE_LENGTH = 8             # chars; shorter fragments ending in "." merge forward
MAX_UTTERANCE_LENGTH = 200          # chars; merging never grows a unit past this
BASELINE_CHARS_PER_SECOND = 14      # speaking speed at rate 1.0, for timeline estimates
RESUME_GRACE_SECONDS = 0.5          # watchdog delay before a stuck resume is repaired
MIN_RATE = 0.5
MAX_RATE = 3.0
MIN_PITCH = 0.5
MAX_PITCH = 2.0
DEFAULT_RATE = 1.0
DEFAULT_PITCH = 1.0
DEFAULT_LANG = "en"
ENHANCED_VOICE_MARKERS = ("google", "enhanced", "premium")
BENIGN_ERRORS = ("interrupted", "canceled", "cancelled")
PREFETCH_AHEAD = 2                  # upcoming sentences handed to backend.prefetch()
AUDIO_CACHE_SIZE = 8                # synthesized sentences kept by the edge backend
TTS_RETRY_COUNT = 3                 # max retries per sentence synthesis
TTS_RETRY_BASE_DELAY = 1.0          # seconds, base delay for exponential backoff
VOICE_CATALOG_TIMEOUT = 3.0         # seconds to wait for the voice catalog
RATE_STEP = 0.1                     # CLI +/- rate adjustment
WAKE_LOCK_KIND = "idle:sleep"       # systemd-inhibit --what= value
DEFAULT_CONFIG_FILE = "readaloud.json"
VERSION = "0.1.0"
