"""Consultflow - Startup recovery sweep.

Runs once when a queue consumer starts. Any job left in a non-terminal status
belonged to a process that is gone, so it is marked failed; nothing is
restarted. Sessions touched by those jobs go back to "synced" (unless they
already completed) so the client can trigger a new job, which will resume
from whatever checkpoints survived.

Assumes a single consumer. Several consumers starting at once would fail
each other's live jobs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import select

from consultflow.config import INTERRUPTED_JOB_REASON, SESSION_STATUS_COMPLETED, SESSION_STATUS_SYNCED
from consultflow.db import fail_job
from consultflow.errors import PipelineErrorCode
from consultflow.models import ACTIVE_JOB_STATUSES, ProcessingJob, RecordingSession
from consultflow.utils.paths import cleanup_orphan_work_dirs

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def recover_interrupted_jobs(session: Session) -> dict:
    """Fail every job an earlier process left in flight.

    Note:
        This function does NOT commit the transaction.

    Args:
        session: Database session.

    Returns:
        Dict with the failed job ids and the reset session ids.
    """
    stmt = select(ProcessingJob).where(
        ProcessingJob.status.in_([str(s) for s in ACTIVE_JOB_STATUSES])
    )
    stuck_jobs = session.execute(stmt).scalars().all()

    if not stuck_jobs:
        logger.info("Startup recovery: no interrupted jobs")
        return {"failed_jobs": [], "reset_sessions": []}

    logger.warning("Startup recovery: found %d interrupted job(s)", len(stuck_jobs))

    failed_jobs = []
    session_ids = set()
    for job in stuck_jobs:
        logger.warning("  - job %s (session %s) was %s", job.job_id, job.session_id, job.status)
        if fail_job(session, job, INTERRUPTED_JOB_REASON, PipelineErrorCode.INTERRUPTED):
            failed_jobs.append(job.job_id)
        job.fail_at_stage = None
        session_ids.add(job.session_id)

    reset_sessions = []
    records = session.execute(
        select(RecordingSession).where(RecordingSession.session_id.in_(session_ids))
    ).scalars()
    for record in records:
        if record.status != SESSION_STATUS_COMPLETED:
            record.status = SESSION_STATUS_SYNCED
            reset_sessions.append(record.session_id)

    session.flush()
    logger.info(
        "Startup recovery: failed %d job(s), reset %d session(s) to %s",
        len(failed_jobs), len(reset_sessions), SESSION_STATUS_SYNCED
    )
    return {"failed_jobs": failed_jobs, "reset_sessions": sorted(reset_sessions)}


def run_startup_recovery(session_factory, temp_dir: str | Path | None = None) -> dict:
    """Recovery sweep plus orphan work dir cleanup, in its own session.

    Returns:
        Summary dict from recover_interrupted_jobs with "removed_work_dirs" added.
    """
    session = session_factory()
    try:
        summary = recover_interrupted_jobs(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    try:
        removed = cleanup_orphan_work_dirs(temp_dir)
    except OSError as e:
        logger.warning("Startup cleanup of work dirs failed (non-fatal): %s", e)
        removed = 0
    if removed:
        logger.info("Startup cleanup: removed %d orphan work dir(s)", removed)
    summary["removed_work_dirs"] = removed
    return summary
