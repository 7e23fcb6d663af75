"""Consultflow - Pre-submission deadline supervisor.

A full run (no checkpoints yet) must reach a successful transcription
submission within PRE_SUBMISSION_TIMEOUT_SECONDS. When the timer fires the
job is marked failed from the timer thread; the orchestrator notices the
expired deadline at its next stage boundary and stops before submitting.

The timer never cancels an in-flight storage or provider call. A checkpoint
written by a call that lands after expiry (e.g. a finished upload) is kept,
since it is true, and makes the next attempt cheaper.
"""

from __future__ import annotations

import logging
import threading

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from consultflow.errors import PipelineErrorCode, PipelineTimeoutError
from consultflow.models import ACTIVE_JOB_STATUSES, JobStatus, ProcessingJob, utc_now

logger = logging.getLogger(__name__)


class PreSubmissionDeadline:
    """Deadline timer covering download, concatenation, publication and submission."""

    def __init__(self, session_factory: sessionmaker, job_id: str, timeout_seconds: float):
        self.session_factory = session_factory
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        self._expired = threading.Event()
        self._timer: threading.Timer | None = None

    def start(self) -> PreSubmissionDeadline:
        """Arm the timer. Returns self for chaining."""
        self._timer = threading.Timer(self.timeout_seconds, self._on_expire)
        self._timer.daemon = True
        self._timer.start()
        logger.info("Job %s: pre-submission deadline armed (%ss)", self.job_id, self.timeout_seconds)
        return self

    def cancel(self) -> None:
        """Disarm the timer. Safe to call more than once."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def expired(self) -> bool:
        return self._expired.is_set()

    def check(self) -> None:
        """Raise if the deadline has passed.

        Raises:
            PipelineTimeoutError: If the timer already fired.
        """
        if self.expired:
            raise PipelineTimeoutError(self.timeout_seconds)

    def _on_expire(self) -> None:
        self._expired.set()
        message = PipelineTimeoutError(self.timeout_seconds).message
        logger.error("Job %s: %s", self.job_id, message)

        session = self.session_factory()
        try:
            # Conditional update: only a job still short of a successful
            # submission is failed; a terminal or suspended job is left alone.
            stmt = (
                update(ProcessingJob)
                .where(
                    ProcessingJob.job_id == self.job_id,
                    ProcessingJob.status.in_([str(s) for s in ACTIVE_JOB_STATUSES]),
                    ProcessingJob.transcript_id.is_(None),
                )
                .values(
                    status=JobStatus.FAILED,
                    error=message,
                    error_code=PipelineErrorCode.PIPELINE_TIMEOUT,
                    updated_at=utc_now(),
                )
            )
            result = session.execute(stmt)
            session.commit()
            if result.rowcount:
                logger.info("Job %s: marked failed by deadline", self.job_id)
        except Exception:
            session.rollback()
            logger.exception("Job %s: failed to record timeout", self.job_id)
        finally:
            session.close()
