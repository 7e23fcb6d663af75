"""Consultflow - Database engine, session management and job store primitives.

SQLAlchemy sync engine/session factory for SQLite.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Engine, create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from consultflow.config import DB_PATH
from consultflow.errors import InvalidTransitionError
from consultflow.models import (
    JOB_STATUS_ORDER,
    TERMINAL_JOB_STATUSES,
    Base,
    JobStatus,
    ProcessingJob,
    RecordingSession,
    utc_now,
)

logger = logging.getLogger(__name__)


def get_database_url(db_path: str | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else DB_PATH
    return f"sqlite:///{path}"


def create_db_engine(db_path: str | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    return create_engine(
        url,
        echo=echo,
        # The timeout supervisor writes from its own timer thread; every writer
        # opens its own session, sessions are never shared across threads.
        connect_args={"check_same_thread": False},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        Configured sessionmaker.
    """
    # - autoflush=False: explicit flush control
    # - expire_on_commit=False: objects remain usable post-commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_path: str | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Initialize the database: create engine, session factory, and all tables.

    This is idempotent - safe to call multiple times.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    engine = create_db_engine(db_path, echo=echo)
    SessionFactory = create_session_factory(engine)

    Base.metadata.create_all(engine)

    return engine, SessionFactory


# --- Lookups ---


def get_job(session: Session, job_id: str) -> ProcessingJob | None:
    stmt = select(ProcessingJob).where(ProcessingJob.job_id == job_id)
    return session.execute(stmt).scalar_one_or_none()


def get_job_by_transcript_id(session: Session, transcript_id: str) -> ProcessingJob | None:
    """Find the job that submitted the given provider tracking id."""
    stmt = select(ProcessingJob).where(ProcessingJob.transcript_id == transcript_id)
    return session.execute(stmt).scalar_one_or_none()


def get_recording_session(session: Session, session_id: str) -> RecordingSession | None:
    stmt = select(RecordingSession).where(RecordingSession.session_id == session_id)
    return session.execute(stmt).scalar_one_or_none()


def get_latest_job(session: Session, session_id: str) -> ProcessingJob | None:
    """Most recently created job for a recording session, if any."""
    stmt = (
        select(ProcessingJob)
        .where(ProcessingJob.session_id == session_id)
        .order_by(ProcessingJob.created_at.desc(), ProcessingJob.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


# --- Job Status Primitives ---


def is_valid_transition(current: str, requested: str) -> bool:
    """Check a job status change against the forward-only rule.

    - completed and failed are absorbing
    - failed is reachable from any non-terminal status
    - otherwise the status may stay put or move forward, skipping stages
    """
    if current in TERMINAL_JOB_STATUSES:
        return False
    if requested == JobStatus.FAILED:
        return True
    try:
        return JOB_STATUS_ORDER.index(JobStatus(requested)) >= JOB_STATUS_ORDER.index(
            JobStatus(current)
        )
    except ValueError:
        return False


def transition_job(
    session: Session,
    job: ProcessingJob,
    status: str,
    *,
    error: str | None = None,
    error_code: str | None = None,
    transcript_id: str | None = None,
    completed_at: datetime | None = None,
) -> ProcessingJob:
    """Move a job to a new status, enforcing the forward-only invariant.

    The write is a conditional UPDATE on the status the caller last read, so
    a concurrent writer (the deadline timer) that already moved the job is
    never overwritten.

    Note:
        This function does NOT commit the transaction. It flushes pending
        changes first and leaves commit responsibility to the caller.

    Args:
        session: Active database session.
        job: The job to update.
        status: Requested JobStatus value.
        error: Optional error text to record.
        error_code: Optional error code to record.
        transcript_id: Optional provider tracking id to record.
        completed_at: Optional completion timestamp.

    Returns:
        The updated job.

    Raises:
        InvalidTransitionError: If the change would move backwards, leave a
            terminal status, or the stored status no longer matches the job.
    """
    current = job.status
    if not is_valid_transition(current, status):
        raise InvalidTransitionError(job.job_id, current, status)

    values = {"status": status, "updated_at": utc_now()}
    if error is not None:
        values["error"] = error
    if error_code is not None:
        values["error_code"] = error_code
    if transcript_id is not None:
        values["transcript_id"] = transcript_id
    if completed_at is not None:
        values["completed_at"] = completed_at

    session.flush()
    stmt = (
        update(ProcessingJob)
        .where(ProcessingJob.id == job.id, ProcessingJob.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        session.refresh(job)
        logger.warning(
            "Job %s: status changed concurrently (expected %s, found %s)",
            job.job_id, current, job.status
        )
        raise InvalidTransitionError(job.job_id, job.status, status)

    logger.info("Job %s: %s -> %s", job.job_id, current, status)
    for key, value in values.items():
        set_committed_value(job, key, value)
    return job


def fail_job(
    session: Session,
    job: ProcessingJob,
    message: str,
    error_code: str | None = None,
) -> bool:
    """Mark a job failed unless it already reached a terminal status.

    Note:
        Does NOT commit; see transition_job.

    Returns:
        True if the job was marked failed, False if it was already terminal.
    """
    if job.status in TERMINAL_JOB_STATUSES:
        logger.warning(
            "Job %s already %s, not recording failure: %s", job.job_id, job.status, message
        )
        return False
    transition_job(session, job, JobStatus.FAILED, error=message, error_code=error_code)
    return True
