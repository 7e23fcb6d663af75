"""Consultflow - Pipeline API service logic.

Business logic behind the HTTP endpoints:
- start_processing: create a job for a synced session and hand it to the queue
- get_job_status: read a job and, once completed, its documents

At most one logical processing per session is guaranteed here through status
checks, not locks: an active or completed job is returned instead of a new one.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.orm import Session

from consultflow.config import (
    SESSION_STATUS_PROCESSING,
    SESSION_STATUS_SYNCED,
    is_fault_injection_enabled,
)
from consultflow.db import fail_job, get_job, get_latest_job, get_recording_session
from consultflow.errors import PipelineErrorCode
from consultflow.models import (
    ACTIVE_JOB_STATUSES,
    GeneratedDocument,
    JobStatus,
    ProcessingJob,
)
from consultflow.utils.failpoints import FAULT_STAGES, normalize_stage

logger = logging.getLogger(__name__)


# --- Error Codes ---


class ProcessingErrorCode(StrEnum):
    """Error codes returned by the pipeline API."""

    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_NOT_READY = "SESSION_NOT_READY"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_FAULT_STAGE = "INVALID_FAULT_STAGE"
    ENQUEUE_FAILED = "ENQUEUE_FAILED"


class ProcessingError(Exception):
    """Base exception for pipeline API errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class SessionNotFoundError(ProcessingError):
    """Recording session does not exist."""

    def __init__(self, session_id: str):
        super().__init__(
            ProcessingErrorCode.SESSION_NOT_FOUND, f"Recording session not found: {session_id}"
        )


class SessionNotReadyError(ProcessingError):
    """Recording session is not in a state that allows processing."""

    def __init__(self, session_id: str, status: str):
        super().__init__(
            ProcessingErrorCode.SESSION_NOT_READY,
            f"Recording session {session_id} must be '{SESSION_STATUS_SYNCED}' "
            f"to process (current: '{status}')",
        )


class JobNotFoundError(ProcessingError):
    """Processing job does not exist."""

    def __init__(self, job_id: str):
        super().__init__(ProcessingErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


class InvalidFaultStageError(ProcessingError):
    """Unknown fault injection stage."""

    def __init__(self, stage: str):
        super().__init__(
            ProcessingErrorCode.INVALID_FAULT_STAGE,
            f"Invalid fail_at_stage {stage!r}; expected one of: {', '.join(FAULT_STAGES)}",
        )


class EnqueueFailedError(ProcessingError):
    """The job could not be handed to the queue."""

    def __init__(self, job_id: str):
        super().__init__(
            ProcessingErrorCode.ENQUEUE_FAILED, f"Failed to enqueue processing for job {job_id}"
        )


# --- Result Types ---


@dataclass
class ProcessingResult:
    """Result of a processing trigger."""

    job_id: str
    status: str
    is_existing: bool


@dataclass
class JobStatusResult:
    """A job plus its documents (only populated once completed)."""

    job: ProcessingJob
    documents: list[GeneratedDocument] | None = field(default=None)


# --- Service ---


def generate_job_id() -> str:
    """Generate a unique job ID.

    Uses UUID4 for uniqueness. Format: uuid4 hex (32 chars).
    """
    return uuid.uuid4().hex


def _resolve_fault_stage(fail_at_stage: str | None) -> str | None:
    if fail_at_stage is None:
        return None
    if not is_fault_injection_enabled():
        logger.warning(
            "fail_at_stage=%r ignored: fault injection is disabled", fail_at_stage
        )
        return None
    stage = normalize_stage(fail_at_stage)
    if stage is None:
        raise InvalidFaultStageError(fail_at_stage)
    return stage


def start_processing(
    session: Session,
    session_id: str,
    fail_at_stage: str | None = None,
) -> ProcessingResult:
    """Create a processing job for a recording session and enqueue it.

    1. Session must exist
    2. Latest job completed or still active -> return it, create nothing
    3. Session status must be "synced"
    4. Create a pending job, mark the session "processing", commit, enqueue

    Args:
        session: Active database session.
        session_id: Recording session to process.
        fail_at_stage: Optional fault injection stage (honored only when enabled).

    Returns:
        ProcessingResult with job_id, status and is_existing flag.

    Raises:
        SessionNotFoundError: If the session does not exist.
        SessionNotReadyError: If the session is not "synced".
        InvalidFaultStageError: If fault injection is enabled and the stage is unknown.
        EnqueueFailedError: If the queue rejected the job (the job is marked failed).

    Note:
        This function commits the session.
    """
    record = get_recording_session(session, session_id)
    if record is None:
        raise SessionNotFoundError(session_id)

    latest = get_latest_job(session, session_id)
    if latest is not None and (
        latest.status == JobStatus.COMPLETED or latest.status in ACTIVE_JOB_STATUSES
    ):
        logger.info(
            "Session %s already has job %s (%s); returning it", session_id, latest.job_id, latest.status
        )
        return ProcessingResult(job_id=latest.job_id, status=latest.status, is_existing=True)

    if record.status != SESSION_STATUS_SYNCED:
        raise SessionNotReadyError(session_id, record.status)

    fault_stage = _resolve_fault_stage(fail_at_stage)

    job = ProcessingJob(
        job_id=generate_job_id(),
        session_id=session_id,
        status=JobStatus.PENDING,
        fail_at_stage=fault_stage,
    )
    session.add(job)
    record.status = SESSION_STATUS_PROCESSING
    session.commit()
    logger.info(
        "Created job %s for session %s%s",
        job.job_id, session_id, f" (fault injection at {fault_stage})" if fault_stage else ""
    )

    from consultflow.huey_app import enqueue_pipeline_run

    try:
        enqueue_pipeline_run(job.job_id)
    except Exception as e:
        _fail_unqueued_job(session, job, f"Failed to enqueue pipeline run: {e}")
        raise EnqueueFailedError(job.job_id) from e

    return ProcessingResult(job_id=job.job_id, status=job.status, is_existing=False)


def enqueue_resume(
    session: Session,
    job: ProcessingJob,
    transcript_id: str,
    provider_status: str,
) -> None:
    """Durably hand a webhook notification to the resume task.

    Raises:
        EnqueueFailedError: If the queue rejected the task (the job is marked failed).
    """
    from consultflow.huey_app import enqueue_pipeline_resume

    try:
        enqueue_pipeline_resume(job.job_id, transcript_id, provider_status)
    except Exception as e:
        _fail_unqueued_job(session, job, f"Failed to enqueue transcription resume: {e}")
        raise EnqueueFailedError(job.job_id) from e


def _fail_unqueued_job(session: Session, job: ProcessingJob, message: str) -> None:
    """Mark a job failed when the queue refused it, and release its session."""
    logger.exception("Job %s: %s", job.job_id, message)
    session.rollback()
    fail_job(session, job, message, PipelineErrorCode.INTERNAL_ERROR)
    record = get_recording_session(session, job.session_id)
    if record is not None:
        record.status = SESSION_STATUS_SYNCED
    session.commit()


def get_job_status(session: Session, job_id: str) -> JobStatusResult:
    """Read a job; documents are attached only once it completed.

    Raises:
        JobNotFoundError: If the job does not exist.
    """
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    documents = None
    if job.status == JobStatus.COMPLETED:
        stmt = (
            select(GeneratedDocument)
            .where(GeneratedDocument.session_id == job.session_id)
            .order_by(GeneratedDocument.title)
        )
        documents = list(session.execute(stmt).scalars())
    return JobStatusResult(job=job, documents=documents)
