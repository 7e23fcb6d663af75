"""Consultflow - Pipeline API FastAPI application.

Endpoints:
- POST /v1/sessions/{session_id}/process   trigger processing (202, or 200 with an existing job)
- GET  /v1/jobs/{job_id}                   job status and, once completed, documents
- POST /v1/webhooks/transcription          transcription provider callback
- GET  /health

The webhook acknowledges only after the continuation is durably queued; the
document generation itself runs in the huey consumer.

Run with:
    uvicorn services.pipeline_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import hmac
import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from consultflow.config import get_webhook_token
from consultflow.db import get_job_by_transcript_id, init_db
from consultflow.models import JobStatus
from consultflow.schemas import (
    DocumentResponse,
    ErrorResponse,
    JobStatusResponse,
    ProcessSessionRequest,
    ProcessSessionResponse,
    TranscriptionWebhookPayload,
)
from services.pipeline_api.service import (
    EnqueueFailedError,
    ProcessingError,
    ProcessingErrorCode,
    enqueue_resume,
    get_job_status,
    start_processing,
)
from services.worker_transcribe.run import PROVIDER_STATUS_COMPLETED, PROVIDER_STATUS_ERROR

logger = logging.getLogger(__name__)

# --- Database Setup ---

# Module-level session factory (initialized on startup)
_session_factory = None


def get_session_factory():
    """Get the session factory.

    Raises:
        RuntimeError: If session factory not initialized (app lifespan not invoked).
    """
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. App lifespan not invoked?")
    return _session_factory


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Initializes the database on startup. The recovery sweep belongs to the
    queue consumer, not to the API process.
    """
    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db()

    yield
    # Shutdown: nothing special needed


# --- FastAPI App ---


app = FastAPI(
    title="Consultflow - Pipeline API",
    description="Audio-to-documents pipeline: trigger, status and transcription webhook.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - SESSION_NOT_FOUND, JOB_NOT_FOUND -> 404
    - SESSION_NOT_READY -> 409
    - INVALID_FAULT_STAGE -> 400
    - anything else -> 500
    """
    if error_code in (ProcessingErrorCode.SESSION_NOT_FOUND, ProcessingErrorCode.JOB_NOT_FOUND):
        return 404
    if error_code == ProcessingErrorCode.SESSION_NOT_READY:
        return 409
    if error_code == ProcessingErrorCode.INVALID_FAULT_STAGE:
        return 400
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


# --- Endpoints ---


@app.post(
    "/v1/sessions/{session_id}/process",
    response_model=ProcessSessionResponse,
    status_code=202,
    responses={
        200: {"model": ProcessSessionResponse, "description": "Existing job returned"},
        404: {"model": ErrorResponse, "description": "Session not found"},
        409: {"model": ErrorResponse, "description": "Session not ready"},
        500: {"model": ErrorResponse, "description": "Processing could not be started"},
    },
    summary="Start processing a recording session",
)
def process_session(
    session_id: str,
    session: Annotated[Session, Depends(get_db_session)],
    request: Annotated[ProcessSessionRequest | None, Body()] = None,
):
    """Create a job and queue it, or return the session's existing job.

    A completed or still-active job is returned as-is with 200; a new job is
    acknowledged with 202 once it has been durably queued.
    """
    fail_at_stage = request.fail_at_stage if request is not None else None
    try:
        result = start_processing(session, session_id, fail_at_stage=fail_at_stage)
    except ProcessingError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        logger.exception("Unexpected error starting processing for session %s", session_id)
        return make_error_response(
            ProcessingErrorCode.ENQUEUE_FAILED,
            "An unexpected error occurred while starting processing",
        )

    body = ProcessSessionResponse(
        job_id=result.job_id,
        status=result.status,
        is_existing=result.is_existing,
    )
    return JSONResponse(status_code=200 if result.is_existing else 202, content=body.model_dump())


@app.get(
    "/v1/jobs/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
    summary="Get job status",
)
def job_status(job_id: str, session: Annotated[Session, Depends(get_db_session)]):
    """Job status; documents are included only once the job is completed."""
    try:
        result = get_job_status(session, job_id)
    except ProcessingError as e:
        return make_error_response(e.error_code, e.message)

    job = result.job
    documents = None
    if result.documents is not None:
        documents = [
            DocumentResponse(
                document_id=d.document_id,
                template_id=d.template_id,
                title=d.title,
                text=d.text,
                created_at=d.created_at,
            )
            for d in result.documents
        ]
    return JobStatusResponse(
        job_id=job.job_id,
        session_id=job.session_id,
        status=job.status,
        error=job.error,
        error_code=job.error_code,
        created_at=job.created_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
        documents=documents,
    )


def _token_matches(token: str | None) -> bool:
    expected = get_webhook_token()
    if not token or not expected:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


@app.post("/v1/webhooks/transcription", summary="Transcription provider callback")
async def transcription_webhook(
    request: Request,
    session: Annotated[Session, Depends(get_db_session)],
    token: Annotated[str | None, Query()] = None,
):
    """Receive a transcription notification and queue the continuation.

    - 401 on a missing or wrong token, before any lookup
    - 400 on malformed JSON or a missing tracking id
    - 200 for non-terminal statuses, unknown tracking ids and duplicates
    - 200 once the continuation is durably queued
    """
    if not _token_matches(token):
        logger.warning("Webhook rejected: invalid or missing token")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    raw = await request.body()
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("payload is not an object")
        payload = TranscriptionWebhookPayload.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning("Webhook rejected: malformed payload (%s)", e)
        return JSONResponse(status_code=400, content={"error": "Invalid JSON payload"})

    transcript_id = payload.transcript_id
    provider_status = payload.status
    logger.info("Webhook received: transcript_id=%s, status=%s", transcript_id, provider_status)

    if not transcript_id:
        return JSONResponse(status_code=400, content={"error": "Missing transcript_id"})

    if provider_status not in (PROVIDER_STATUS_COMPLETED, PROVIDER_STATUS_ERROR):
        return {
            "received": True,
            "ignored": True,
            "reason": f"Status '{provider_status}' is not terminal",
        }

    job = get_job_by_transcript_id(session, transcript_id)
    if job is None:
        logger.warning("Webhook: no job for transcript_id=%s", transcript_id)
        return {"received": True, "matched": False}

    if job.status != JobStatus.TRANSCRIBING:
        logger.info("Webhook: job %s already %s, ignoring duplicate", job.job_id, job.status)
        return {"received": True, "already_processed": True}

    try:
        enqueue_resume(session, job, transcript_id, provider_status)
    except EnqueueFailedError as e:
        return make_error_response(e.error_code, e.message)

    return {"received": True}


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding session factory ---


def override_session_factory(factory):
    """Override the session factory for testing."""
    global _session_factory
    _session_factory = factory
