"""Consultflow - Pipeline orchestrator.

Drives one ProcessingJob through its stages, persists the job status before
each stage, suspends after transcription submission and resumes when the
provider's webhook arrives.

Stage progression:
    download -> concatenate -> publish -> submit   (suspend at "transcribing")
    resume_transcript -> generate -> finalize      (after the webhook)

Entry point selection (checkpoints on the RecordingSession):
    raw_transcript present   -> generate, finalize
    full_audio_path present  -> submit
    otherwise                -> full sequence, under the pre-submission deadline

Dispatch is a static table resolved at import time: each stage names the job
status persisted before it runs, its fault injection name and its handler.
Publication has no status of its own and runs while the job is still
"concatenating"; its fault name is "uploading".

Failure semantics:
    Any exception inside a run becomes a failed job (message + error code),
    the session returns to "synced" and the ephemeral directory is removed.
    Nothing propagates to the queue task.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from consultflow.config import SESSION_STATUS_COMPLETED, SESSION_STATUS_SYNCED
from consultflow.db import fail_job, get_job, get_recording_session, transition_job
from consultflow.errors import PipelineError, PipelineErrorCode, StageError
from consultflow.models import TERMINAL_JOB_STATUSES, JobStatus, ProcessingJob, utc_now
from consultflow.timeouts import PreSubmissionDeadline
from consultflow.utils.failpoints import (
    FAULT_STAGE_CONCATENATING,
    FAULT_STAGE_DOWNLOADING,
    FAULT_STAGE_GENERATING_DOCS,
    FAULT_STAGE_TRANSCRIBING,
    FAULT_STAGE_UPLOADING,
    FaultPlan,
    check_fault,
)
from consultflow.utils.paths import remove_work_dir
from services.worker_cleanup.run import delete_session_chunks
from services.worker_concatenate.run import concatenate_wav_chunks, merged_output_path
from services.worker_documents.run import DocumentGenerationSummary, generate_documents
from services.worker_download.run import download_chunks
from services.worker_publish.run import publish_merged_audio
from services.worker_transcribe.run import fetch_transcript_text, submit_transcription

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from consultflow.context import PipelineContext

logger = logging.getLogger(__name__)


# --- Stage Definitions ---


class PipelineStage(StrEnum):
    """Units of work the orchestrator dispatches."""

    DOWNLOAD = "download"
    CONCATENATE = "concatenate"
    PUBLISH = "publish"
    SUBMIT = "submit"
    RESUME_TRANSCRIPT = "resume_transcript"
    GENERATE = "generate"
    FINALIZE = "finalize"


class EntryPoint(StrEnum):
    """Where a fresh run starts, chosen from the session's checkpoints."""

    FULL = "full"
    FROM_MERGED_AUDIO = "from_merged_audio"
    FROM_TRANSCRIPT = "from_transcript"


@dataclass
class RunState:
    """Values handed from one stage to the next within a single invocation."""

    job_id: str
    session_id: str
    bucket: str
    prefix: str
    chunk_count: int
    fault_plan: FaultPlan | None = None
    deadline: PreSubmissionDeadline | None = None

    temp_dir: Path | None = None
    chunk_paths: list[Path] = field(default_factory=list)
    merged_path: Path | None = None
    full_audio_path: str | None = None

    transcript_id: str | None = None
    provider_status: str | None = None
    transcript: str | None = None

    documents: DocumentGenerationSummary | None = None
    suspended: bool = False


StageHandler = Callable[["PipelineContext", "Session", ProcessingJob, RunState], None]


@dataclass(frozen=True)
class StageEntry:
    """Static description of one stage."""

    status: JobStatus | None
    fault_stage: str | None
    handler: StageHandler


# --- Stage Handlers ---


def _stage_download(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    result = download_chunks(
        ctx.storage, state.bucket, state.prefix, state.chunk_count, base_dir=ctx.temp_dir
    )
    state.temp_dir = result.temp_dir
    state.chunk_paths = result.chunk_paths


def _stage_concatenate(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    result = concatenate_wav_chunks(state.chunk_paths, merged_output_path(state.temp_dir))
    state.merged_path = result.output_path


def _stage_publish(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    key = publish_merged_audio(ctx.storage, state.bucket, state.prefix, state.merged_path)

    # Checkpoint in its own commit, before anything else can fail
    record = get_recording_session(session, state.session_id)
    record.full_audio_path = key
    session.commit()
    state.full_audio_path = key
    logger.info("Job %s: checkpoint full_audio_path=%s", state.job_id, key)


def _stage_submit(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    if state.full_audio_path is None:
        record = get_recording_session(session, state.session_id)
        state.full_audio_path = record.full_audio_path

    transcript_id = submit_transcription(
        ctx.storage, ctx.transcriber, state.bucket, state.full_audio_path, state.job_id
    )

    if state.deadline is not None:
        state.deadline.cancel()
        state.deadline.check()

    session.refresh(job)
    if job.status in TERMINAL_JOB_STATUSES:
        raise StageError(
            PipelineErrorCode.INTERNAL_ERROR,
            f"Job became {job.status} while submitting; transcript {transcript_id} discarded",
        )

    job.transcript_id = transcript_id
    job.updated_at = utc_now()
    # A plan still armed must outlive the suspension
    plan = state.fault_plan
    job.fail_at_stage = plan.stage if plan is not None and plan.armed else None
    session.commit()

    state.transcript_id = transcript_id
    state.suspended = True
    logger.info("Job %s: suspended awaiting transcript %s", state.job_id, transcript_id)


def _stage_resume_transcript(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    text = fetch_transcript_text(ctx.transcriber, state.transcript_id, state.provider_status)

    record = get_recording_session(session, state.session_id)
    record.raw_transcript = text
    session.commit()
    state.transcript = text
    logger.info("Job %s: checkpoint raw_transcript (%d chars)", state.job_id, len(text))


def _stage_generate(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    if state.transcript is None:
        record = get_recording_session(session, state.session_id)
        state.transcript = record.raw_transcript

    state.documents = generate_documents(session, ctx.text_generator, job, state.transcript)
    session.commit()


def _stage_finalize(ctx: PipelineContext, session: Session, job: ProcessingJob, state: RunState) -> None:
    try:
        deleted = delete_session_chunks(ctx.storage, state.bucket, state.prefix)
        logger.info("Job %s: deleted %d chunks", state.job_id, deleted)
    except Exception as e:
        logger.warning("Job %s: chunk cleanup failed (non-fatal): %s", state.job_id, e)

    session.refresh(job)
    transition_job(session, job, JobStatus.COMPLETED, completed_at=utc_now())
    job.fail_at_stage = None

    record = get_recording_session(session, state.session_id)
    record.status = SESSION_STATUS_COMPLETED
    session.commit()


STAGE_TABLE: dict[PipelineStage, StageEntry] = {
    PipelineStage.DOWNLOAD: StageEntry(JobStatus.DOWNLOADING, FAULT_STAGE_DOWNLOADING, _stage_download),
    PipelineStage.CONCATENATE: StageEntry(
        JobStatus.CONCATENATING, FAULT_STAGE_CONCATENATING, _stage_concatenate
    ),
    PipelineStage.PUBLISH: StageEntry(JobStatus.CONCATENATING, FAULT_STAGE_UPLOADING, _stage_publish),
    PipelineStage.SUBMIT: StageEntry(JobStatus.TRANSCRIBING, FAULT_STAGE_TRANSCRIBING, _stage_submit),
    PipelineStage.RESUME_TRANSCRIPT: StageEntry(JobStatus.TRANSCRIBING, None, _stage_resume_transcript),
    PipelineStage.GENERATE: StageEntry(
        JobStatus.GENERATING_DOCS, FAULT_STAGE_GENERATING_DOCS, _stage_generate
    ),
    PipelineStage.FINALIZE: StageEntry(None, None, _stage_finalize),
}

ENTRY_SEQUENCES: dict[EntryPoint, tuple[PipelineStage, ...]] = {
    EntryPoint.FULL: (
        PipelineStage.DOWNLOAD,
        PipelineStage.CONCATENATE,
        PipelineStage.PUBLISH,
        PipelineStage.SUBMIT,
    ),
    EntryPoint.FROM_MERGED_AUDIO: (PipelineStage.SUBMIT,),
    EntryPoint.FROM_TRANSCRIPT: (PipelineStage.GENERATE, PipelineStage.FINALIZE),
}

RESUME_SEQUENCE: tuple[PipelineStage, ...] = (
    PipelineStage.RESUME_TRANSCRIPT,
    PipelineStage.GENERATE,
    PipelineStage.FINALIZE,
)


def select_entry_point(raw_transcript: str | None, full_audio_path: str | None) -> EntryPoint:
    """Pick the first stage from the session's checkpoints."""
    if raw_transcript:
        return EntryPoint.FROM_TRANSCRIPT
    if full_audio_path:
        return EntryPoint.FROM_MERGED_AUDIO
    return EntryPoint.FULL


# --- Stage Runner ---


def _advance(session: Session, job: ProcessingJob, status: JobStatus | None) -> None:
    """Persist the status for the next stage, re-reading the job first.

    The job is refreshed because the deadline timer writes from another thread.
    """
    session.refresh(job)
    if job.status in TERMINAL_JOB_STATUSES:
        raise StageError(
            PipelineErrorCode.INTERNAL_ERROR, f"Job {job.job_id} is already {job.status}"
        )
    if status is None or job.status == status:
        return
    transition_job(session, job, status)
    session.commit()


def _run_stages(
    ctx: PipelineContext,
    session: Session,
    job: ProcessingJob,
    state: RunState,
    sequence: tuple[PipelineStage, ...],
) -> None:
    for stage in sequence:
        entry = STAGE_TABLE[stage]
        if state.deadline is not None:
            state.deadline.check()
        _advance(session, job, entry.status)
        if entry.fault_stage is not None:
            check_fault(state.fault_plan, entry.fault_stage)
        logger.info("Job %s: running stage %s", state.job_id, stage)
        entry.handler(ctx, session, job, state)


def _new_state(job: ProcessingJob, record, fault_plan: FaultPlan | None) -> RunState:
    return RunState(
        job_id=job.job_id,
        session_id=record.session_id,
        bucket=record.storage_bucket,
        prefix=record.storage_prefix,
        chunk_count=record.chunk_count,
        fault_plan=fault_plan,
    )


def _handle_failure(ctx: PipelineContext, job_id: str, exc: Exception) -> None:
    """Record a failed run in a fresh session. Never raises."""
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, PipelineError):
        error_code = exc.error_code
    else:
        error_code = PipelineErrorCode.INTERNAL_ERROR

    session = ctx.session_factory()
    try:
        job = get_job(session, job_id)
        if job is None:
            logger.error("Job %s vanished before its failure could be recorded: %s", job_id, message)
            return
        if fail_job(session, job, message, error_code):
            logger.error("Job %s failed: %s", job_id, message)
        job.fail_at_stage = None

        record = get_recording_session(session, job.session_id)
        if record is not None and record.status != SESSION_STATUS_COMPLETED:
            record.status = SESSION_STATUS_SYNCED
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Job %s: could not record failure", job_id)
    finally:
        session.close()


# --- Entry Points ---


def run_pipeline(ctx: PipelineContext, job_id: str, fault_plan: FaultPlan | None = None) -> dict:
    """Run a pending job from the furthest checkpoint of its session.

    Ends in one of three ways: suspended at "transcribing", completed (when
    the transcript checkpoint already existed) or failed.

    Idempotent with respect to redelivery: a job that is no longer pending
    is left untouched.

    Args:
        ctx: Pipeline context.
        job_id: The ProcessingJob to run.
        fault_plan: Optional synthetic failure for this job.

    Returns:
        Dict describing what happened (for logging/debugging).
    """
    session = ctx.session_factory()
    state: RunState | None = None
    try:
        job = get_job(session, job_id)
        if job is None:
            logger.error("Job %s not found", job_id)
            return {"status": "error", "job_id": job_id, "reason": "job_not_found"}
        if job.status != JobStatus.PENDING:
            logger.info("Job %s is %s, not pending; skipping", job_id, job.status)
            return {
                "status": "skipped",
                "job_id": job_id,
                "reason": "not_pending",
                "job_status": job.status,
            }

        record = get_recording_session(session, job.session_id)
        if record is None:
            raise StageError(
                PipelineErrorCode.INTERNAL_ERROR, f"Recording session {job.session_id} not found"
            )

        state = _new_state(job, record, fault_plan)
        entry = select_entry_point(record.raw_transcript, record.full_audio_path)
        logger.info("Job %s: starting pipeline at entry point %s", job_id, entry)

        if entry == EntryPoint.FULL:
            state.deadline = PreSubmissionDeadline(
                ctx.session_factory, job_id, ctx.pre_submission_timeout
            ).start()

        _run_stages(ctx, session, job, state, ENTRY_SEQUENCES[entry])

        if state.suspended:
            return {
                "status": "suspended",
                "job_id": job_id,
                "entry_point": str(entry),
                "transcript_id": state.transcript_id,
            }
        return _completed_result(job_id, state, entry)

    except Exception as e:
        session.rollback()
        _handle_failure(ctx, job_id, e)
        return {"status": "failed", "job_id": job_id, "error": str(e)}

    finally:
        if state is not None:
            if state.deadline is not None:
                state.deadline.cancel()
            remove_work_dir(state.temp_dir)
        session.close()


def resume_from_transcription(
    ctx: PipelineContext,
    job_id: str,
    transcript_id: str,
    provider_status: str,
    fault_plan: FaultPlan | None = None,
) -> dict:
    """Continue a suspended job after the provider's notification.

    The job must still be "transcribing"; anything else means the
    notification was already handled and the call is a no-op.

    Args:
        ctx: Pipeline context.
        job_id: The suspended ProcessingJob.
        transcript_id: Tracking id from the notification.
        provider_status: "completed" or "error".
        fault_plan: Optional synthetic failure, rebuilt from fail_at_stage.

    Returns:
        Dict describing what happened (for logging/debugging).
    """
    session = ctx.session_factory()
    try:
        job = get_job(session, job_id)
        if job is None:
            logger.error("Job %s not found", job_id)
            return {"status": "error", "job_id": job_id, "reason": "job_not_found"}
        if job.status != JobStatus.TRANSCRIBING:
            logger.info("Job %s already %s; ignoring notification", job_id, job.status)
            return {
                "status": "skipped",
                "job_id": job_id,
                "reason": "already_processed",
                "job_status": job.status,
            }

        record = get_recording_session(session, job.session_id)
        if record is None:
            raise StageError(
                PipelineErrorCode.INTERNAL_ERROR, f"Recording session {job.session_id} not found"
            )

        state = _new_state(job, record, fault_plan)
        state.transcript_id = transcript_id
        state.provider_status = provider_status
        logger.info("Job %s: resuming (transcript %s, %s)", job_id, transcript_id, provider_status)

        _run_stages(ctx, session, job, state, RESUME_SEQUENCE)
        return _completed_result(job_id, state, None)

    except Exception as e:
        session.rollback()
        _handle_failure(ctx, job_id, e)
        return {"status": "failed", "job_id": job_id, "error": str(e)}

    finally:
        session.close()


def _completed_result(job_id: str, state: RunState, entry: EntryPoint | None) -> dict:
    summary = state.documents
    result = {
        "status": "completed",
        "job_id": job_id,
        "documents": len(summary.successes) if summary else 0,
        "warning": summary.warning if summary else None,
    }
    if entry is not None:
        result["entry_point"] = str(entry)
    logger.info("Job %s completed: %s", job_id, result)
    return result
