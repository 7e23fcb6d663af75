"""Consultflow - Fault injection for failure-path testing.

Forces a named pipeline stage to fail for one specific job, so every
failure and cleanup path can be exercised deterministically.

There is no process-wide registry: a FaultPlan is built per invocation and
passed explicitly into run_pipeline / resume_from_transcription. A plan that
targets a stage after the webhook suspension is persisted on
ProcessingJob.fail_at_stage and rebuilt by the queue task.

Safety gate: the trigger API only accepts a fault stage when
CONSULTFLOW_ENABLE_FAULT_INJECTION=1. The default is a complete no-op.

Usage:
    plan = FaultPlan(job_id, "concatenating")
    run_pipeline(ctx, job_id, fault_plan=plan)

Stage names:
    downloading, concatenating, uploading, transcribing, generating_docs
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from consultflow.errors import FaultInjectedError

logger = logging.getLogger(__name__)

FAULT_STAGE_DOWNLOADING = "downloading"
FAULT_STAGE_CONCATENATING = "concatenating"
FAULT_STAGE_UPLOADING = "uploading"
FAULT_STAGE_TRANSCRIBING = "transcribing"
FAULT_STAGE_GENERATING_DOCS = "generating_docs"

FAULT_STAGES = (
    FAULT_STAGE_DOWNLOADING,
    FAULT_STAGE_CONCATENATING,
    FAULT_STAGE_UPLOADING,
    FAULT_STAGE_TRANSCRIBING,
    FAULT_STAGE_GENERATING_DOCS,
)


def normalize_stage(stage: str | None) -> str | None:
    """Normalize a stage name, returning None for unknown or empty values."""
    if not stage:
        return None
    normalized = stage.strip().lower()
    if normalized not in FAULT_STAGES:
        return None
    return normalized


@dataclass
class FaultPlan:
    """A one-shot synthetic failure for a single job at a single stage."""

    job_id: str
    stage: str | None
    fired: bool = False

    @classmethod
    def from_stage(cls, job_id: str, stage: str | None) -> FaultPlan | None:
        """Build a plan from a persisted stage name, or None when nothing is armed."""
        normalized = normalize_stage(stage)
        if normalized is None:
            return None
        return cls(job_id=job_id, stage=normalized)

    @property
    def armed(self) -> bool:
        return self.stage is not None and not self.fired

    def check(self, stage: str) -> None:
        """Raise instead of running `stage` if this plan targets it.

        The plan disarms itself before raising, so it fires at most once.

        Raises:
            FaultInjectedError: If the plan is armed for this stage.
        """
        if not self.armed or self.stage != stage:
            return
        self.fired = True
        logger.warning("Job %s: fault injection firing at stage %s", self.job_id, stage)
        raise FaultInjectedError(stage)


def check_fault(plan: FaultPlan | None, stage: str) -> None:
    """No-op unless `plan` is armed for `stage`."""
    if plan is not None:
        plan.check(stage)
