"""Tests for the provider and storage adapters.

HTTP is served by httpx.MockTransport; S3 by a mocked boto3 client.
"""

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from consultflow.adapters.storage import S3ObjectStorage, StorageError
from consultflow.adapters.textgen import HttpTextGenerator
from consultflow.adapters.transcription import AssemblyAIClient
from consultflow.errors import PipelineErrorCode, ProviderError


def _client_error(operation="GetObject"):
    return ClientError({"Error": {"Code": "NoSuchKey", "Message": "not found"}}, operation)


class TestAssemblyAIClient:
    """Tests for AssemblyAIClient."""

    def test_submit_sends_audio_callback_and_language(self):
        """Submission posts the signed URL, callback URL and language; returns the id."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "tr-42", "status": "queued"})

        client = AssemblyAIClient(
            api_key="aai-key", language_code="pt", transport=httpx.MockTransport(handler)
        )

        transcript_id = client.submit("https://storage.test/full.wav", "https://api.test/hook")

        assert transcript_id == "tr-42"
        [request] = seen
        assert request.method == "POST"
        assert request.url.path == "/v2/transcript"
        assert request.headers["Authorization"] == "aai-key"
        assert json.loads(request.content) == {
            "audio_url": "https://storage.test/full.wav",
            "webhook_url": "https://api.test/hook",
            "language_code": "pt",
        }

    def test_submit_without_id_is_provider_error(self):
        client = AssemblyAIClient(
            api_key="k",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"status": "queued"})),
        )

        with pytest.raises(ProviderError, match="no transcript id"):
            client.submit("https://a", "https://b")

    def test_http_error_carries_status_code(self):
        client = AssemblyAIClient(
            api_key="k",
            transport=httpx.MockTransport(lambda r: httpx.Response(401, text="Unauthorized")),
        )

        with pytest.raises(ProviderError) as exc_info:
            client.submit("https://a", "https://b")

        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == PipelineErrorCode.PROVIDER_ERROR
        assert "HTTP 401" in exc_info.value.message

    def test_missing_api_key(self, monkeypatch):
        """No key configured anywhere fails before any request."""
        monkeypatch.delenv("ASSEMBLYAI_API_KEY", raising=False)
        handler = MagicMock()
        client = AssemblyAIClient(transport=httpx.MockTransport(handler))

        with pytest.raises(ProviderError, match="ASSEMBLYAI_API_KEY"):
            client.submit("https://a", "https://b")
        handler.assert_not_called()

    def test_get_transcript(self):
        def handler(request):
            assert request.url.path == "/v2/transcript/tr-1"
            return httpx.Response(200, json={"status": "error", "error": "audio too short"})

        client = AssemblyAIClient(api_key="k", transport=httpx.MockTransport(handler))

        result = client.get_transcript("tr-1")

        assert result.status == "error"
        assert result.error == "audio too short"
        assert result.text is None


class TestHttpTextGenerator:
    """Tests for HttpTextGenerator."""

    @pytest.mark.parametrize(
        "provider,body,expected",
        [
            ("openai", {"output_text": "openai text"}, "openai text"),
            (
                "openai",
                {"output": [{"content": [{"type": "output_text", "text": "from output"}]}]},
                "from output",
            ),
            ("anthropic", {"content": [{"type": "text", "text": "claude text"}]}, "claude text"),
            ("deepseek", {"choices": [{"message": {"content": "ds text"}}]}, "ds text"),
            (
                "gemini",
                {"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]},
                "a\nb",
            ),
        ],
    )
    def test_extracts_text_per_provider(self, monkeypatch, provider, body, expected):
        monkeypatch.setenv(f"{provider.upper()}_API_KEY", "key")
        generator = HttpTextGenerator(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json=body))
        )

        text = asyncio.run(generator.generate(provider, "model-x", "Prompt.", "Transcript."))

        assert text == expected

    def test_prompt_and_transcript_are_sent(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]})

        generator = HttpTextGenerator(transport=httpx.MockTransport(handler))

        asyncio.run(generator.generate("anthropic", "claude-x", "Summarize.", "Hello."))

        [request] = seen
        assert request.headers["x-api-key"] == "sk-ant"
        payload = json.loads(request.content)
        assert payload["model"] == "claude-x"
        assert payload["messages"][0]["content"] == "Summarize.\n\nHello."

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
        generator = HttpTextGenerator(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )

        with pytest.raises(ProviderError, match="DEEPSEEK_API_KEY"):
            asyncio.run(generator.generate("deepseek", "m", "p", "t"))

    def test_http_failure(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "key")
        generator = HttpTextGenerator(
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom"))
        )

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(generator.generate("openai", "m", "p", "t"))

        assert exc_info.value.status_code == 500

    def test_empty_response(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        generator = HttpTextGenerator(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"candidates": []}))
        )

        with pytest.raises(ProviderError, match="empty response"):
            asyncio.run(generator.generate("gemini", "m", "p", "t"))

    def test_unsupported_provider(self):
        with pytest.raises(ProviderError, match="Unsupported provider"):
            asyncio.run(HttpTextGenerator().generate("mistral", "m", "p", "t"))


class TestS3ObjectStorage:
    """Tests for S3ObjectStorage over a mocked boto3 client."""

    def test_list_objects_is_sorted_and_relative(self):
        s3 = MagicMock()
        s3.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "sessions/s1/002.wav", "Size": 10}]},
            {
                "Contents": [
                    {"Key": "sessions/s1/000.wav", "Size": 10},
                    {"Key": "sessions/s1/", "Size": 0},
                ]
            },
        ]
        storage = S3ObjectStorage(client=s3)

        objects = storage.list_objects("audio", "sessions/s1")

        assert [o.name for o in objects] == ["000.wav", "002.wav"]
        s3.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket="audio", Prefix="sessions/s1/", Delimiter="/"
        )

    def test_download_error_is_storage_error(self, tmp_path):
        s3 = MagicMock()
        s3.download_file.side_effect = _client_error()
        storage = S3ObjectStorage(client=s3)

        with pytest.raises(StorageError) as exc_info:
            storage.download("audio", "sessions/s1/000.wav", tmp_path / "000.wav")

        assert exc_info.value.error_code == PipelineErrorCode.STORAGE_ERROR

    def test_upload_sets_content_type(self, tmp_path):
        s3 = MagicMock()
        source = tmp_path / "full.wav"
        source.write_bytes(b"RIFF")
        storage = S3ObjectStorage(client=s3)

        storage.upload("audio", "sessions/s1/full.wav", source, "audio/wav")

        s3.upload_file.assert_called_once_with(
            str(source), "audio", "sessions/s1/full.wav", ExtraArgs={"ContentType": "audio/wav"}
        )

    def test_delete_batches_and_reports_errors(self):
        s3 = MagicMock()
        s3.delete_objects.side_effect = [
            {},
            {"Errors": [{"Key": "k-1000", "Message": "AccessDenied"}]},
        ]
        storage = S3ObjectStorage(client=s3)
        keys = [f"k-{i}" for i in range(1001)]

        with pytest.raises(StorageError, match="k-1000: AccessDenied"):
            storage.delete("audio", keys)

        assert s3.delete_objects.call_count == 2

    def test_delete_nothing_makes_no_request(self):
        s3 = MagicMock()

        S3ObjectStorage(client=s3).delete("audio", [])

        s3.delete_objects.assert_not_called()

    def test_signed_url(self):
        s3 = MagicMock()
        s3.generate_presigned_url.return_value = "https://signed"

        url = S3ObjectStorage(client=s3).create_signed_url("audio", "k", 3600)

        assert url == "https://signed"
        s3.generate_presigned_url.assert_called_once_with(
            ClientMethod="get_object", Params={"Bucket": "audio", "Key": "k"}, ExpiresIn=3600
        )
