"""Consultflow - Configuration constants.

Minimal configuration module. No external config libraries.
Paths are relative to the repository root by default; deployment-specific
values (secrets, URLs) are read from the environment at call time.
"""

import os
from pathlib import Path

# Repository root (parent of consultflow/)
REPO_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = REPO_ROOT / "data"

# Database path
DB_PATH = DATA_DIR / "consultflow.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Ephemeral working directories for downloaded chunks live under here
TEMP_DIR = Path(os.environ.get("CONSULTFLOW_TEMP_DIR", "/tmp/consultflow-pipeline"))

# Reserved object name for the merged audio, next to the chunks
MERGED_AUDIO_FILENAME = "full.wav"
MERGED_AUDIO_CONTENT_TYPE = "audio/wav"

# Fixed-size PCM WAV header
WAV_HEADER_SIZE = 44

# Signed URL lifetime; the provider may take a while to fetch the audio
SIGNED_URL_EXPIRY_SECONDS = 3600

# Language sent with every transcription request
TRANSCRIPTION_LANGUAGE = os.environ.get("CONSULTFLOW_TRANSCRIPTION_LANGUAGE", "pt")

# Output token ceiling for providers that require one
TEXTGEN_MAX_OUTPUT_TOKENS = 4096

# Session statuses visible to clients
SESSION_STATUS_SYNCED = "synced"
SESSION_STATUS_PROCESSING = "processing"
SESSION_STATUS_COMPLETED = "completed"

# Reason written by the startup recovery sweep
INTERRUPTED_JOB_REASON = "Process restarted while job was in progress"


def _get_positive_int(name: str, default: int) -> int:
    """Get a positive integer from the environment or use default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The parsed value.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


# Deadline for download + concatenate + publish + submit (full runs only)
# Override with CONSULTFLOW_PRE_SUBMIT_TIMEOUT_SEC for testing
PRE_SUBMISSION_TIMEOUT_SECONDS = _get_positive_int("CONSULTFLOW_PRE_SUBMIT_TIMEOUT_SEC", 600)

# Per-template bound on a single text generation call
DOC_GENERATION_TIMEOUT_SECONDS = _get_positive_int("CONSULTFLOW_DOC_TIMEOUT_SEC", 60)

# Bound on calls to the transcription provider
TRANSCRIPTION_HTTP_TIMEOUT_SECONDS = _get_positive_int("CONSULTFLOW_TRANSCRIPTION_TIMEOUT_SEC", 30)


# --- Runtime lookups (read per call so they can change without re-import) ---


def get_webhook_token() -> str | None:
    """Shared secret the transcription provider echoes back on the callback URL."""
    return os.environ.get("CONSULTFLOW_WEBHOOK_TOKEN") or None


def get_public_base_url() -> str | None:
    """Public base URL of the API, used to build the callback URL.

    A bare host name is accepted and promoted to https.
    """
    value = os.environ.get("CONSULTFLOW_PUBLIC_BASE_URL")
    if not value:
        return None
    value = value.rstrip("/")
    if not value.startswith("http"):
        value = f"https://{value}"
    return value


def get_assemblyai_api_key() -> str | None:
    return os.environ.get("ASSEMBLYAI_API_KEY") or None


def get_provider_api_key(provider: str) -> str | None:
    """API key for a text generation provider (OPENAI_API_KEY, GEMINI_API_KEY, ...)."""
    return os.environ.get(f"{provider.upper()}_API_KEY") or None


def get_storage_region() -> str | None:
    return os.environ.get("CONSULTFLOW_STORAGE_REGION") or None


def get_storage_endpoint_url() -> str | None:
    """Custom S3-compatible endpoint (MinIO, Supabase storage S3 gateway, ...)."""
    return os.environ.get("CONSULTFLOW_STORAGE_ENDPOINT_URL") or None


def is_fault_injection_enabled() -> bool:
    """Fault injection is test-only; the trigger ignores it unless this is set."""
    return os.environ.get("CONSULTFLOW_ENABLE_FAULT_INJECTION") == "1"
