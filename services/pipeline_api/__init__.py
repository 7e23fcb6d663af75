"""Consultflow - Pipeline API service.

FastAPI service for triggering processing, reading job status and receiving
transcription provider webhooks.
"""

__all__: list[str] = []
