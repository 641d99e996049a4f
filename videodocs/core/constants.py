"""
Shared constants for VideoDocs.
States, error kinds, progress checkpoints and service endpoints live here.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "VideoDocs"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".videodocs"
APP_CACHE_DIR = APP_SUPPORT_DIR / "cache"
AUDIO_CACHE_DIR = APP_CACHE_DIR / "audio"
LOG_DIR = APP_SUPPORT_DIR / "logs"
DB_PATH = APP_SUPPORT_DIR / "jobs.db"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"

# ── Job states (ordered) ──────────────────────────────────────────────
class JobState:
    INITIALIZING = "initializing"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    ERROR = "error"

TERMINAL_STATES = {JobState.COMPLETED, JobState.ERROR}

# ── Error kinds ───────────────────────────────────────────────────────
class ErrorKind:
    ACQUISITION = "acquisition_error"
    TRANSCRIPTION_PROTOCOL = "transcription_protocol_error"
    TRANSCRIPTION_FAILED = "transcription_failed"
    EXTRACTION_PARSE = "extraction_parse_error"
    EXTRACTION_API = "extraction_api_error"
    VALIDATION = "validation_error"
    CANCELLED = "cancelled"
    INTERNAL = "internal_error"

# Network-class kinds; a JobError may still opt out explicitly
RETRYABLE_KINDS = {
    ErrorKind.ACQUISITION,
    ErrorKind.TRANSCRIPTION_PROTOCOL,
    ErrorKind.EXTRACTION_API,
}

# Extraction API sub-kinds
class ApiErrorType:
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    CONTENT_FILTER = "content_filter"
    TIMEOUT = "timeout"
    API = "api"

# ── Progress mapping ─────────────────────────────────────────────────
PROGRESS_INITIALIZING = 0
PROGRESS_DOWNLOADING = 10
PROGRESS_UPLOADING = 40
PROGRESS_TRANSCRIBING = 60
PROGRESS_EXTRACT_START = 70
PROGRESS_EXTRACT_END = 90
PROGRESS_VALIDATING = 90
PROGRESS_COMPLETED = 100

# ── Chunking ──────────────────────────────────────────────────────────
CHARS_PER_TOKEN = 4
DEFAULT_CHUNK_MAX_TOKENS = 4000

# ── Retry defaults ────────────────────────────────────────────────────
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY_SEC = 1.0

# ── AssemblyAI ────────────────────────────────────────────────────────
ASSEMBLYAI_API_BASE = "https://api.assemblyai.com/v2"
ASSEMBLYAI_API_KEY_ENV = "ASSEMBLY_AI_API_KEY"
POLL_INTERVAL_SEC = 3.0

class RemoteStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

KNOWN_REMOTE_STATUSES = {
    RemoteStatus.QUEUED,
    RemoteStatus.PROCESSING,
    RemoteStatus.COMPLETED,
    RemoteStatus.ERROR,
}

# ── OpenAI ────────────────────────────────────────────────────────────
OPENAI_API_KEY_ENV = "OPENAI_API_KEY"
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"
OPENAI_DEFAULT_MAX_TOKENS = 4000
OPENAI_DEFAULT_TEMPERATURE = 0.7
OPENAI_DEFAULT_TIMEOUT_SEC = 30

# ── Audio acquisition ────────────────────────────────────────────────
# Extra places yt-dlp tends to live when PATH is minimal (services, app bundles)
EXTRA_TOOL_DIRS = [
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    str(HOME / ".local" / "bin"),
]
ACQUIRE_TIMEOUT_SEC = 900

# ── Misc ──────────────────────────────────────────────────────────────
MAX_ERROR_MESSAGE_LEN = 2000
MAX_ERROR_BODY_LEN = 300
