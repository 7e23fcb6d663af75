"""Tests for fault injection.

A FaultPlan forces one named stage of one job to fail so every failure path
can be exercised. Plans are passed explicitly; nothing is process-wide.
"""

import pytest
from factories import seed_chunks, seed_job, seed_session, seed_templates

from consultflow.db import get_job, get_recording_session
from consultflow.errors import FaultInjectedError, PipelineErrorCode
from consultflow.models import JobStatus
from consultflow.orchestrator import resume_from_transcription, run_pipeline
from consultflow.utils.failpoints import FAULT_STAGES, FaultPlan, check_fault, normalize_stage


def _load(SessionFactory):
    session = SessionFactory()
    try:
        return get_job(session, "job-1"), get_recording_session(session, "sess-1")
    finally:
        session.close()


class TestFaultPlan:
    """Tests for the FaultPlan object."""

    def test_fires_once_for_matching_stage(self):
        """The plan should raise for its stage exactly once."""
        plan = FaultPlan("job-1", "concatenating")

        plan.check("downloading")
        with pytest.raises(FaultInjectedError) as exc_info:
            plan.check("concatenating")
        plan.check("concatenating")

        assert exc_info.value.message == "[FAULT INJECTION] Simulated failure at stage: concatenating"
        assert exc_info.value.error_code == PipelineErrorCode.FAULT_INJECTED
        assert plan.fired
        assert not plan.armed

    def test_check_fault_without_plan_is_noop(self):
        """No plan means no failure."""
        check_fault(None, "downloading")

    @pytest.mark.parametrize("raw,expected", [(" Uploading ", "uploading"), ("nope", None), (None, None)])
    def test_normalize_stage(self, raw, expected):
        """Stage names are trimmed and lower-cased; unknown names map to None."""
        assert normalize_stage(raw) == expected

    def test_from_stage(self):
        """A persisted stage rebuilds an armed plan; nothing persisted rebuilds None."""
        assert FaultPlan.from_stage("job-1", "generating_docs").armed
        assert FaultPlan.from_stage("job-1", None) is None


class TestPipelineFaults:
    """Injected failures at each pre-suspension stage."""

    @pytest.mark.parametrize("stage", ["downloading", "concatenating", "uploading", "transcribing"])
    def test_stage_fault_fails_job(self, ctx, session_factory, storage, transcriber, webhook_env, stage):
        """Each stage's fault should fail the job with the fault message."""
        seed_session(session_factory, status="processing")
        seed_chunks(storage)
        seed_job(session_factory, fail_at_stage=stage)

        result = run_pipeline(ctx, "job-1", fault_plan=FaultPlan("job-1", stage))

        assert result["status"] == "failed"
        job, record = _load(session_factory)
        assert job.status == JobStatus.FAILED
        assert job.error == f"[FAULT INJECTION] Simulated failure at stage: {stage}"
        assert job.error_code == PipelineErrorCode.FAULT_INJECTED
        assert job.fail_at_stage is None
        assert record.status == "synced"
        assert transcriber.submissions == []

    def test_upload_fault_leaves_no_checkpoint(self, ctx, session_factory, storage, webhook_env):
        """A fault at uploading fires before publication, under concatenating status."""
        seed_session(session_factory, status="processing")
        seed_chunks(storage)
        seed_job(session_factory)

        run_pipeline(ctx, "job-1", fault_plan=FaultPlan("job-1", "uploading"))

        _, record = _load(session_factory)
        assert record.full_audio_path is None
        assert "upload" not in storage.call_names()

    def test_generating_docs_plan_survives_suspension(
        self, ctx, session_factory, storage, transcriber, webhook_env
    ):
        """A generating_docs plan is persisted at suspension and fires after resume."""
        seed_session(session_factory, status="processing")
        seed_chunks(storage)
        seed_templates(session_factory, [("Summary", "openai", "m", "Summarize.")])
        seed_job(session_factory, fail_at_stage="generating_docs")

        plan = FaultPlan("job-1", "generating_docs")
        run_pipeline(ctx, "job-1", fault_plan=plan)

        job, _ = _load(session_factory)
        assert job.status == JobStatus.TRANSCRIBING
        assert job.fail_at_stage == "generating_docs"

        transcriber.set_transcript(job.transcript_id, text="Texto.")
        rebuilt = FaultPlan.from_stage("job-1", job.fail_at_stage)
        resume_from_transcription(ctx, "job-1", job.transcript_id, "completed", fault_plan=rebuilt)

        job, record = _load(session_factory)
        assert job.status == JobStatus.FAILED
        assert job.error == "[FAULT INJECTION] Simulated failure at stage: generating_docs"
        assert job.fail_at_stage is None
        # The transcript checkpoint was written before the fault fired
        assert record.raw_transcript == "Texto."

    def test_all_stage_names_covered(self):
        """Every documented stage name is accepted."""
        assert FAULT_STAGES == (
            "downloading",
            "concatenating",
            "uploading",
            "transcribing",
            "generating_docs",
        )
