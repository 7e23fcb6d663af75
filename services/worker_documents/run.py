"""Consultflow - Document Generation Worker.

Fans the transcript out to every configured DocumentTemplate concurrently
and persists one GeneratedDocument per successful call.

Stage: generating_docs
Input: transcript text + all DocumentTemplate rows
Output: documents rows for the session

Partial-failure policy:
- every template fails   -> DocumentGenerationError (job fails)
- some templates fail    -> successes persisted, summary written to
                            ProcessingJob.error, job still completes
- every template succeeds -> no error recorded

Calls run under asyncio.gather with a join-all barrier; no ordering among
them is guaranteed. Documents a previous attempt left for the session are
deleted before the new ones are written, so a retry never duplicates them.
Each call is validated before it goes out (supported provider, non-empty
prompt) and after it returns (non-empty text).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from consultflow.adapters.textgen import SUPPORTED_PROVIDERS
from consultflow.config import DOC_GENERATION_TIMEOUT_SECONDS
from consultflow.errors import DocumentGenerationError, PipelineErrorCode, StageError
from consultflow.models import DocumentTemplate, GeneratedDocument, ProcessingJob

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# --- Result Types ---


@dataclass
class TemplateOutcome:
    """Outcome of one template's generation call."""

    template_id: str
    title: str
    success: bool
    error: str | None = None
    text: str | None = None
    duration_ms: int = 0


@dataclass
class DocumentGenerationSummary:
    """Joined outcome of the whole fan-out."""

    outcomes: list[TemplateOutcome] = field(default_factory=list)
    warning: str | None = None

    @property
    def successes(self) -> list[TemplateOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failures(self) -> list[TemplateOutcome]:
        return [o for o in self.outcomes if not o.success]


def _describe_failures(failures: list[TemplateOutcome]) -> str:
    return "; ".join(f'"{f.title}": {f.error}' for f in failures)


# --- Fan-out ---


async def _generate_one(
    text_generator,
    template: DocumentTemplate,
    transcript: str,
    timeout_seconds: float,
) -> TemplateOutcome:
    """Run one template; never raises."""
    outcome = TemplateOutcome(template_id=template.template_id, title=template.title, success=False)

    if template.provider not in SUPPORTED_PROVIDERS:
        outcome.error = f"Invalid provider: {template.provider}"
        logger.error("[%s] %s, skipping", template.title, outcome.error)
        return outcome

    if not template.prompt or not template.prompt.strip():
        outcome.error = "Empty prompt configured"
        logger.error("[%s] %s, skipping", template.title, outcome.error)
        return outcome

    logger.info("[%s] Calling %s/%s", template.title, template.provider, template.model)
    started = time.monotonic()
    try:
        text = await asyncio.wait_for(
            text_generator.generate(
                template.provider, template.model, template.prompt, transcript
            ),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        outcome.error = f"Generation timed out after {timeout_seconds}s"
    except Exception as e:
        outcome.error = str(e) or e.__class__.__name__
    else:
        if not text or not text.strip():
            outcome.error = "AI returned empty text"
        else:
            outcome.success = True
            outcome.text = text
    outcome.duration_ms = int((time.monotonic() - started) * 1000)

    if outcome.success:
        logger.info("[%s] Response received: %d chars, %dms", template.title, len(outcome.text), outcome.duration_ms)
    else:
        logger.error("[%s] FAILED: %s (%dms)", template.title, outcome.error, outcome.duration_ms)
    return outcome


async def _generate_all(
    text_generator,
    templates: list[DocumentTemplate],
    transcript: str,
    timeout_seconds: float,
) -> list[TemplateOutcome]:
    return list(
        await asyncio.gather(
            *(_generate_one(text_generator, t, transcript, timeout_seconds) for t in templates)
        )
    )


# --- Stage Entry Point ---


def generate_documents(
    session: Session,
    text_generator,
    job: ProcessingJob,
    transcript: str,
    timeout_seconds: float = DOC_GENERATION_TIMEOUT_SECONDS,
) -> DocumentGenerationSummary:
    """Generate and persist one document per configured template.

    Note:
        Each document is committed as soon as it is persisted. A partial
        failure summary is flushed onto `job.error`; the caller commits it.

    Args:
        session: Database session.
        text_generator: Async client exposing generate(provider, model, prompt, transcript).
        job: The job being processed (its session_id owns the documents).
        transcript: Raw transcript text.
        timeout_seconds: Bound on each generation call.

    Returns:
        DocumentGenerationSummary of every template's outcome.

    Raises:
        StageError: If no templates are configured.
        DocumentGenerationError: If every template failed.
    """
    templates = list(
        session.execute(select(DocumentTemplate).order_by(DocumentTemplate.id)).scalars()
    )
    if not templates:
        raise StageError(
            PipelineErrorCode.DOCUMENT_GENERATION_FAILED, "No document templates configured"
        )

    logger.info("Job %s: generating %d documents in parallel", job.job_id, len(templates))
    for t in templates:
        logger.info("  - %r -> %s/%s", t.title, t.provider, t.model)

    started = time.monotonic()
    outcomes = asyncio.run(_generate_all(text_generator, templates, transcript, timeout_seconds))
    summary = DocumentGenerationSummary(outcomes=outcomes)

    session_id = job.session_id
    job_id = job.job_id

    # A retried run replaces whatever an interrupted attempt left behind
    replaced = session.execute(
        delete(GeneratedDocument).where(GeneratedDocument.session_id == session_id)
    ).rowcount
    session.commit()
    if replaced:
        logger.info("Job %s: replaced %d documents from an earlier attempt", job_id, replaced)

    # Persist successes; a failed insert counts as that template's failure
    for outcome in summary.successes:
        try:
            session.add(
                GeneratedDocument(
                    document_id=uuid.uuid4().hex,
                    session_id=session_id,
                    template_id=outcome.template_id,
                    title=outcome.title,
                    text=outcome.text,
                )
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            outcome.success = False
            outcome.error = f"DB insert failed: {e}"
            logger.error("[%s] %s", outcome.title, outcome.error)

    successes = summary.successes
    failures = summary.failures
    logger.info(
        "Job %s: generation finished in %dms, %d/%d succeeded",
        job_id, int((time.monotonic() - started) * 1000), len(successes), len(outcomes)
    )

    if failures and not successes:
        raise DocumentGenerationError(
            f"All {len(failures)} documents failed: {_describe_failures(failures)}"
        )

    if failures:
        summary.warning = (
            f"Partial: {len(failures)}/{len(outcomes)} failed. {_describe_failures(failures)}"
        )
        logger.warning("Job %s: %s", job_id, summary.warning)
        job.error = summary.warning
        session.flush()

    return summary
