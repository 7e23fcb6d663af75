"""Tests for the pre-submission deadline supervisor."""

import time

import pytest

from factories import seed_chunks, seed_job, seed_session

from consultflow import orchestrator
from consultflow.db import get_job, get_recording_session
from consultflow.errors import PipelineErrorCode, PipelineTimeoutError
from consultflow.models import JobStatus
from consultflow.orchestrator import run_pipeline
from consultflow.timeouts import PreSubmissionDeadline


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _job(SessionFactory, job_id="job-1"):
    session = SessionFactory()
    try:
        return get_job(session, job_id)
    finally:
        session.close()


class TestPreSubmissionDeadline:
    """Tests for PreSubmissionDeadline in isolation."""

    def test_expiry_fails_active_job(self, session_factory):
        """When the timer fires, a job with no tracking id is marked failed."""
        seed_session(session_factory)
        seed_job(session_factory, status=JobStatus.CONCATENATING)

        deadline = PreSubmissionDeadline(session_factory, "job-1", 0.05).start()
        assert _wait_for(lambda: deadline.expired)
        assert _wait_for(lambda: _job(session_factory).status == JobStatus.FAILED)

        job = _job(session_factory)
        assert job.error == "Pipeline timeout: pre-submission stages exceeded 0.05s"
        assert job.error_code == PipelineErrorCode.PIPELINE_TIMEOUT

    @pytest.mark.parametrize("seconds,text", [(600, "600s"), (0.25, "0.25s"), (1.5, "1.5s")])
    def test_message_keeps_fractional_seconds(self, seconds, text):
        """Sub-second and fractional deadlines are reported as configured."""
        assert PipelineTimeoutError(seconds).message.endswith(f"exceeded {text}")

    def test_expiry_leaves_submitted_job_alone(self, session_factory):
        """A job that already has a tracking id is not touched."""
        seed_session(session_factory)
        seed_job(session_factory, status=JobStatus.TRANSCRIBING, transcript_id="tr-1")

        deadline = PreSubmissionDeadline(session_factory, "job-1", 0.05).start()
        assert _wait_for(lambda: deadline.expired)
        time.sleep(0.1)

        assert _job(session_factory).status == JobStatus.TRANSCRIBING

    def test_expiry_leaves_terminal_job_alone(self, session_factory):
        """A completed job stays completed."""
        seed_session(session_factory)
        seed_job(session_factory, status=JobStatus.COMPLETED)

        deadline = PreSubmissionDeadline(session_factory, "job-1", 0.05).start()
        assert _wait_for(lambda: deadline.expired)
        time.sleep(0.1)

        assert _job(session_factory).status == JobStatus.COMPLETED

    def test_cancel_prevents_expiry(self, session_factory):
        """A cancelled deadline never fires."""
        seed_session(session_factory)
        seed_job(session_factory, status=JobStatus.DOWNLOADING)

        deadline = PreSubmissionDeadline(session_factory, "job-1", 0.1).start()
        deadline.cancel()
        deadline.cancel()
        time.sleep(0.2)

        assert not deadline.expired
        assert _job(session_factory).status == JobStatus.DOWNLOADING


class TestDeadlineInPipeline:
    """The orchestrator stops at the next stage boundary after expiry."""

    def test_slow_download_times_out_before_submission(
        self, ctx, session_factory, storage, transcriber, webhook_env
    ):
        """A run that overruns the deadline never submits and ends failed."""
        ctx.pre_submission_timeout = 0.1
        seed_session(session_factory, status="processing")
        seed_chunks(storage)
        seed_job(session_factory)
        storage.download_hook = lambda key: time.sleep(0.1)

        result = run_pipeline(ctx, "job-1")

        assert result["status"] == "failed"
        assert transcriber.submissions == []
        job = _job(session_factory)
        assert job.status == JobStatus.FAILED
        assert job.error_code == PipelineErrorCode.PIPELINE_TIMEOUT
        assert job.error.startswith("Pipeline timeout: pre-submission stages exceeded")

        session = session_factory()
        try:
            assert get_recording_session(session, "sess-1").status == "synced"
        finally:
            session.close()

    def test_checkpoint_resume_is_not_supervised(
        self, ctx, session_factory, storage, transcriber, webhook_env
    ):
        """Only full runs arm the deadline."""
        ctx.pre_submission_timeout = 0.01
        seed_session(
            session_factory, status="processing", full_audio_path="sessions/sess-1/full.wav"
        )
        seed_job(session_factory)
        time.sleep(0.05)

        result = run_pipeline(ctx, "job-1")

        assert result["status"] == "suspended"
        assert len(transcriber.submissions) == 1

    def test_expiry_between_read_and_write_is_not_overwritten(
        self, ctx, session_factory, storage, transcriber, webhook_env, monkeypatch
    ):
        """A timeout committed while a stage transition is in flight stays failed."""
        seed_session(session_factory, status="processing")
        seed_chunks(storage)
        seed_job(session_factory)
        real_transition = orchestrator.transition_job
        persisted = []

        def transition_with_expiry(session, job, status, **kwargs):
            if status == JobStatus.CONCATENATING:
                PreSubmissionDeadline(session_factory, job.job_id, 30)._on_expire()
            try:
                return real_transition(session, job, status, **kwargs)
            finally:
                persisted.append(_job(session_factory).status)

        monkeypatch.setattr(orchestrator, "transition_job", transition_with_expiry)

        result = run_pipeline(ctx, "job-1")

        assert result["status"] == "failed"
        assert persisted[-1] == JobStatus.FAILED
        assert transcriber.submissions == []
        job = _job(session_factory)
        assert job.status == JobStatus.FAILED
        assert job.error_code == PipelineErrorCode.PIPELINE_TIMEOUT
        assert job.error == "Pipeline timeout: pre-submission stages exceeded 30s"
