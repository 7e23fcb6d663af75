"""Consultflow - Huey task queue configuration.

Huey setup with SQLite backend. The queue is the durable handoff between the
HTTP ingress and the orchestrator: the trigger endpoint and the webhook both
acknowledge only after their task is persisted.

How to run:
1. Start the API:
   uvicorn services.pipeline_api.main:app --reload

2. Start the Huey consumer (single consumer; it runs the recovery sweep on start):
   huey_consumer.py consultflow.huey_app.huey -k thread -w 2

The consumer must use thread workers (``-k thread``, the default). The
recovery sweep runs once per process, so with ``-k process`` every worker
would sweep on its own and fail jobs that a sibling is already running.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from huey import SqliteHuey

from consultflow.config import HUEY_DB_PATH, QUEUE_DIR

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


# Ensure queue directory exists before creating Huey instance
_ensure_queue_dir()

huey = SqliteHuey(
    name="consultflow_pipeline",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)


# --- Startup Recovery ---

_recovery_lock = threading.Lock()
_recovery_done = False


@huey.on_startup()
def recover_on_startup() -> None:
    """Run the recovery sweep once per consumer process.

    on_startup hooks fire once per worker thread. The first one sweeps while
    holding the lock; the others wait for it so no worker dequeues a task
    before interrupted jobs are failed and their work dirs removed.
    """
    global _recovery_done
    from consultflow.context import get_context
    from consultflow.recovery import run_startup_recovery

    with _recovery_lock:
        if _recovery_done:
            return
        ctx = get_context()
        summary = run_startup_recovery(ctx.session_factory, ctx.temp_dir)
        _recovery_done = True
    logger.info("Startup recovery finished: %s", summary)


# --- Tasks ---


def _load_fault_plan(ctx, job_id: str):
    from consultflow.db import get_job
    from consultflow.utils.failpoints import FaultPlan

    session = ctx.session_factory()
    try:
        job = get_job(session, job_id)
        return FaultPlan.from_stage(job_id, job.fail_at_stage) if job is not None else None
    finally:
        session.close()


@huey.task()
def run_pipeline_task(job_id: str) -> dict:
    """Huey task to run a newly triggered job.

    Args:
        job_id: The ProcessingJob to run.

    Returns:
        Dict with the run result (for logging/debugging).
    """
    # Import here to avoid circular imports
    from consultflow.context import get_context
    from consultflow.orchestrator import run_pipeline

    ctx = get_context()
    logger.info("Pipeline task started for job_id=%s", job_id)
    result = run_pipeline(ctx, job_id, fault_plan=_load_fault_plan(ctx, job_id))
    logger.info("Pipeline task completed for job_id=%s: %s", job_id, result)
    return result


@huey.task()
def resume_pipeline_task(job_id: str, transcript_id: str, provider_status: str) -> dict:
    """Huey task to continue a suspended job after the transcription webhook.

    Args:
        job_id: The suspended ProcessingJob.
        transcript_id: Provider tracking id.
        provider_status: "completed" or "error".

    Returns:
        Dict with the resume result (for logging/debugging).
    """
    from consultflow.context import get_context
    from consultflow.orchestrator import resume_from_transcription

    ctx = get_context()
    logger.info(
        "Resume task started: job_id=%s, transcript_id=%s, status=%s",
        job_id, transcript_id, provider_status
    )
    result = resume_from_transcription(
        ctx, job_id, transcript_id, provider_status, fault_plan=_load_fault_plan(ctx, job_id)
    )
    logger.info("Resume task completed for job_id=%s: %s", job_id, result)
    return result


def enqueue_pipeline_run(job_id: str) -> None:
    """Durably enqueue a pipeline run for the given job.

    Returns once the task is persisted in SQLite, whether or not a consumer
    is running.

    Raises:
        Whatever the queue storage raises; callers fail the job on error.
    """
    logger.info("Enqueueing pipeline run for job_id=%s", job_id)
    run_pipeline_task(job_id)


def enqueue_pipeline_resume(job_id: str, transcript_id: str, provider_status: str) -> None:
    """Durably enqueue the post-webhook continuation for a suspended job."""
    logger.info(
        "Enqueueing pipeline resume: job_id=%s, transcript_id=%s, status=%s",
        job_id, transcript_id, provider_status
    )
    resume_pipeline_task(job_id, transcript_id, provider_status)
