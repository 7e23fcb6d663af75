"""Text generation HTTP clients for document templates.

Responsibilities:
- Send one prompt + transcript to OpenAI, Anthropic, DeepSeek or Gemini.
- Normalize response text extraction per provider.
- Raise ProviderError for missing keys, HTTP failures and empty output.

Requests are async (httpx.AsyncClient) so the document stage can fan out
every template concurrently.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from consultflow.config import (
    DOC_GENERATION_TIMEOUT_SECONDS,
    TEXTGEN_MAX_OUTPUT_TOKENS,
    get_provider_api_key,
)
from consultflow.errors import ProviderError

logger = logging.getLogger(__name__)

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_DEEPSEEK = "deepseek"
PROVIDER_GEMINI = "gemini"

SUPPORTED_PROVIDERS = (PROVIDER_OPENAI, PROVIDER_ANTHROPIC, PROVIDER_DEEPSEEK, PROVIDER_GEMINI)


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    headers: dict[str, str]
    payload: dict[str, Any]


# --- Request builders ---


def _openai_request(api_key: str, model: str, prompt: str, transcript: str) -> ProviderRequest:
    return ProviderRequest(
        url="https://api.openai.com/v1/responses",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        payload={
            "model": model,
            "max_output_tokens": TEXTGEN_MAX_OUTPUT_TOKENS,
            "input": [
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        {"type": "input_text", "text": transcript},
                    ],
                }
            ],
        },
    )


def _anthropic_request(api_key: str, model: str, prompt: str, transcript: str) -> ProviderRequest:
    return ProviderRequest(
        url="https://api.anthropic.com/v1/messages",
        headers={
            "x-api-key": api_key,
            "anthropic-version": os.environ.get("ANTHROPIC_VERSION", "2023-06-01"),
            "Content-Type": "application/json",
        },
        payload={
            "model": model,
            "max_tokens": TEXTGEN_MAX_OUTPUT_TOKENS,
            "messages": [{"role": "user", "content": f"{prompt}\n\n{transcript}"}],
        },
    )


def _deepseek_request(api_key: str, model: str, prompt: str, transcript: str) -> ProviderRequest:
    return ProviderRequest(
        url="https://api.deepseek.com/chat/completions",
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        payload={
            "model": model,
            "messages": [
                {"role": "system", "content": "You are a helpful assistant."},
                {"role": "user", "content": f"{prompt}\n\n{transcript}"},
            ],
        },
    )


def _gemini_request(api_key: str, model: str, prompt: str, transcript: str) -> ProviderRequest:
    return ProviderRequest(
        url=f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
        payload={"contents": [{"role": "user", "parts": [{"text": f"{prompt}\n\n{transcript}"}]}]},
    )


# --- Response extractors ---


def _join_texts(parts: Any, key: str = "text") -> str:
    if not isinstance(parts, list):
        return ""
    return "\n".join(p[key] for p in parts if isinstance(p, dict) and p.get(key))


def _openai_text(data: dict) -> str:
    if data.get("output_text"):
        return data["output_text"]
    texts = [_join_texts(item.get("content")) for item in data.get("output") or []]
    return "\n".join(t for t in texts if t)


def _anthropic_text(data: dict) -> str:
    return _join_texts(data.get("content"))


def _deepseek_text(data: dict) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("message") or {}).get("content") or ""


def _gemini_text(data: dict) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    return _join_texts((candidates[0].get("content") or {}).get("parts"))


_PROVIDERS: dict[str, tuple[Callable[..., ProviderRequest], Callable[[dict], str]]] = {
    PROVIDER_OPENAI: (_openai_request, _openai_text),
    PROVIDER_ANTHROPIC: (_anthropic_request, _anthropic_text),
    PROVIDER_DEEPSEEK: (_deepseek_request, _deepseek_text),
    PROVIDER_GEMINI: (_gemini_request, _gemini_text),
}


class HttpTextGenerator:
    """Text generation over each provider's REST API."""

    def __init__(
        self,
        timeout_seconds: float = DOC_GENERATION_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def generate(self, provider: str, model: str, prompt: str, transcript: str) -> str:
        """Generate text for one template.

        Raises:
            ProviderError: Unknown provider, missing API key, HTTP failure or
                empty response.
        """
        if provider not in _PROVIDERS:
            raise ProviderError(provider, f"Unsupported provider: {provider}")
        build_request, extract_text = _PROVIDERS[provider]

        api_key = get_provider_api_key(provider)
        if not api_key:
            raise ProviderError(provider, f"{provider.upper()}_API_KEY is not configured")

        request = build_request(api_key, model, prompt, transcript)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    request.url, headers=request.headers, json=request.payload
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                provider,
                f"{provider} request failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                provider, f"{provider} request timed out after {self.timeout_seconds}s"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(provider, f"{provider} request error: {e}") from e
        except ValueError as e:
            raise ProviderError(provider, f"{provider} returned invalid JSON") from e

        text = extract_text(data) if isinstance(data, dict) else ""
        if not text:
            raise ProviderError(provider, f"{provider} returned an empty response")
        return text
