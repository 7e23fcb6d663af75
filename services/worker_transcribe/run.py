"""Consultflow - Transcription Worker.

Two halves around the webhook suspension:

submit_transcription (stage: transcribing)
    Signs a short-lived download URL for the merged audio and submits it to
    the transcription provider together with the callback URL. Returns the
    provider's tracking id; the orchestrator persists it and suspends.

fetch_transcript_text (transcript resume, after the webhook)
    Fetches the finished transcript (or the error detail) by tracking id.

Error codes:
- TRANSCRIPTION_FAILED: provider reported an error for the transcript
- EMPTY_TRANSCRIPT: provider completed but returned no text
- PROVIDER_ERROR: callback URL cannot be built, or the provider call failed
"""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

from consultflow.config import (
    SIGNED_URL_EXPIRY_SECONDS,
    get_public_base_url,
    get_webhook_token,
)
from consultflow.errors import PipelineErrorCode, ProviderError, StageError

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/v1/webhooks/transcription"

PROVIDER_STATUS_COMPLETED = "completed"
PROVIDER_STATUS_ERROR = "error"

_TOKEN_RE = re.compile(r"token=[^&]+")


def build_webhook_url() -> str:
    """Callback URL with the shared secret in the query string.

    Raises:
        ProviderError: If the public base URL or the webhook token is unset.
    """
    base_url = get_public_base_url()
    if not base_url:
        raise ProviderError(
            "assemblyai", "CONSULTFLOW_PUBLIC_BASE_URL is not configured (needed for the webhook)"
        )
    token = get_webhook_token()
    if not token:
        raise ProviderError("assemblyai", "CONSULTFLOW_WEBHOOK_TOKEN is not configured")
    return f"{base_url}{WEBHOOK_PATH}?token={quote(token, safe='')}"


def mask_token(url: str) -> str:
    """Hide the shared secret in a callback URL for logging."""
    return _TOKEN_RE.sub("token=***", url)


def submit_transcription(
    storage,
    transcriber,
    bucket: str,
    full_audio_path: str,
    job_id: str,
) -> str:
    """Submit the merged audio for asynchronous transcription.

    Args:
        storage: Object storage client (create_signed_url).
        transcriber: Transcription client (submit).
        bucket: Bucket holding the merged audio.
        full_audio_path: Storage key of the merged audio.
        job_id: Job id, for logging.

    Returns:
        The provider's tracking id.

    Raises:
        StorageError: If the signed URL cannot be created.
        ProviderError: If the callback URL is not configured or submission fails.
    """
    webhook_url = build_webhook_url()

    logger.info(
        "Job %s: signing %s/%s for %ds", job_id, bucket, full_audio_path, SIGNED_URL_EXPIRY_SECONDS
    )
    audio_url = storage.create_signed_url(bucket, full_audio_path, SIGNED_URL_EXPIRY_SECONDS)

    logger.info("Job %s: submitting transcription, webhook=%s", job_id, mask_token(webhook_url))
    transcript_id = transcriber.submit(audio_url, webhook_url)

    logger.info("Job %s: transcription submitted, transcript_id=%s", job_id, transcript_id)
    return transcript_id


def fetch_transcript_text(transcriber, transcript_id: str, provider_status: str) -> str:
    """Resolve a provider notification into transcript text.

    Args:
        transcriber: Transcription client (get_transcript).
        transcript_id: Tracking id from the notification.
        provider_status: "completed" or "error" from the notification.

    Returns:
        Non-empty transcript text.

    Raises:
        StageError: Provider reported an error, or returned empty text.
        ProviderError: Fetch failed.
    """
    transcript = transcriber.get_transcript(transcript_id)

    if provider_status == PROVIDER_STATUS_ERROR:
        raise StageError(
            PipelineErrorCode.TRANSCRIPTION_FAILED,
            f"Transcription failed: {transcript.error or 'unknown error'}",
        )

    text = transcript.text or ""
    if not text.strip():
        raise StageError(
            PipelineErrorCode.EMPTY_TRANSCRIPT,
            "Transcription completed but returned empty text",
        )
    return text
