"""Consultflow - Pipeline error taxonomy.

Every exception raised inside a stage derives from PipelineError and carries
an error code. The orchestrator converts them into a failed job; they never
reach the caller that triggered the run.
"""

from __future__ import annotations

from enum import StrEnum


class PipelineErrorCode(StrEnum):
    """Error codes recorded on ProcessingJob.error_code."""

    NO_CHUNKS = "NO_CHUNKS"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_WAV = "INVALID_WAV"
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    EMPTY_TRANSCRIPT = "EMPTY_TRANSCRIPT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    DOCUMENT_GENERATION_FAILED = "DOCUMENT_GENERATION_FAILED"
    PIPELINE_TIMEOUT = "PIPELINE_TIMEOUT"
    FAULT_INJECTED = "FAULT_INJECTED"
    INTERRUPTED = "INTERRUPTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PipelineError(Exception):
    """Base exception for pipeline failures."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(message)


class StageError(PipelineError):
    """A stage could not produce its output."""


class ProviderError(PipelineError):
    """An external provider (transcription or text generation) call failed."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(PipelineErrorCode.PROVIDER_ERROR, message)


class PipelineTimeoutError(PipelineError):
    """The pre-submission deadline expired."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            PipelineErrorCode.PIPELINE_TIMEOUT,
            f"Pipeline timeout: pre-submission stages exceeded {timeout_seconds:g}s",
        )


class FaultInjectedError(PipelineError):
    """Synthetic failure raised by a FaultPlan."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(
            PipelineErrorCode.FAULT_INJECTED,
            f"[FAULT INJECTION] Simulated failure at stage: {stage}",
        )


class DocumentGenerationError(PipelineError):
    """Every configured document template failed."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.DOCUMENT_GENERATION_FAILED, message)


class InvalidTransitionError(Exception):
    """A job status change would move backwards or leave a terminal state."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id}: illegal status transition {current!r} -> {requested!r}"
        )
