"""AssemblyAI HTTP client for asynchronous transcription.

Responsibilities:
- Submit a transcription job for a remote audio URL with a callback URL.
- Fetch a finished transcript (text or error detail) by id.
- Raise ProviderError for transport, HTTP and payload failures.

The provider's webhook only carries {transcript_id, status}; the text is
always fetched separately through `get_transcript`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from consultflow.config import (
    TRANSCRIPTION_HTTP_TIMEOUT_SECONDS,
    TRANSCRIPTION_LANGUAGE,
    get_assemblyai_api_key,
)
from consultflow.errors import ProviderError

logger = logging.getLogger(__name__)

ASSEMBLYAI_BASE_URL = "https://api.assemblyai.com/v2"
PROVIDER_NAME = "assemblyai"


@dataclass(frozen=True)
class TranscriptResult:
    """Provider-side state of one transcript."""

    transcript_id: str
    status: str
    text: str | None = None
    error: str | None = None


class AssemblyAIClient:
    """Thin synchronous client for the AssemblyAI transcript endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = ASSEMBLYAI_BASE_URL,
        timeout_seconds: float = TRANSCRIPTION_HTTP_TIMEOUT_SECONDS,
        language_code: str = TRANSCRIPTION_LANGUAGE,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.language_code = language_code
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        api_key = self.api_key or get_assemblyai_api_key()
        if not api_key:
            raise ProviderError(PROVIDER_NAME, "ASSEMBLYAI_API_KEY is not configured")
        return {"Authorization": api_key, "Content-Type": "application/json"}

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict:
        headers = self._headers()
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.request(method, path, headers=headers, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                PROVIDER_NAME,
                f"AssemblyAI request failed with HTTP {e.response.status_code}: "
                f"{e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(PROVIDER_NAME, f"AssemblyAI request error: {e}") from e
        except ValueError as e:
            raise ProviderError(PROVIDER_NAME, f"AssemblyAI returned invalid JSON: {e}") from e

    def submit(self, audio_url: str, webhook_url: str) -> str:
        """Submit audio for transcription.

        Returns:
            The provider's transcript id.

        Raises:
            ProviderError: If the request fails or no id comes back.
        """
        payload = {
            "audio_url": audio_url,
            "webhook_url": webhook_url,
            "language_code": self.language_code,
        }
        data = self._request("POST", "/transcript", payload)
        transcript_id = data.get("id")
        if not transcript_id:
            raise ProviderError(PROVIDER_NAME, "AssemblyAI returned no transcript id")
        logger.info(
            "Transcription submitted: transcript_id=%s, status=%s",
            transcript_id,
            data.get("status"),
        )
        return transcript_id

    def get_transcript(self, transcript_id: str) -> TranscriptResult:
        """Fetch a transcript's current state.

        Raises:
            ProviderError: If the request fails.
        """
        data = self._request("GET", f"/transcript/{transcript_id}")
        result = TranscriptResult(
            transcript_id=transcript_id,
            status=data.get("status") or "unknown",
            text=data.get("text"),
            error=data.get("error"),
        )
        logger.info(
            "Transcript fetched: transcript_id=%s, status=%s, text_length=%d",
            transcript_id,
            result.status,
            len(result.text or ""),
        )
        return result
