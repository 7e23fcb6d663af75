"""Consultflow - Collaborators shared by one orchestrator process.

The orchestrator and the stage workers receive everything external through a
PipelineContext, so tests can swap storage and providers for in-memory fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy.orm import sessionmaker

from consultflow.config import PRE_SUBMISSION_TIMEOUT_SECONDS, TEMP_DIR
from consultflow.db import init_db

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Database access plus storage, transcription and text generation clients."""

    session_factory: sessionmaker
    storage: Any
    transcriber: Any
    text_generator: Any
    temp_dir: Path = TEMP_DIR
    pre_submission_timeout: float = PRE_SUBMISSION_TIMEOUT_SECONDS


_default_context: PipelineContext | None = None


def build_default_context() -> PipelineContext:
    """Build the production context (SQLite + S3 + AssemblyAI + HTTP providers)."""
    # Local imports keep boto3/httpx out of the import path of db-only callers.
    from consultflow.adapters.storage import S3ObjectStorage
    from consultflow.adapters.textgen import HttpTextGenerator
    from consultflow.adapters.transcription import AssemblyAIClient

    _, SessionFactory = init_db()
    return PipelineContext(
        session_factory=SessionFactory,
        storage=S3ObjectStorage(),
        transcriber=AssemblyAIClient(),
        text_generator=HttpTextGenerator(),
    )


def get_context() -> PipelineContext:
    """Return the process-wide context, building it on first use."""
    global _default_context
    if _default_context is None:
        _default_context = build_default_context()
        logger.info("Pipeline context initialized")
    return _default_context


def override_context(context: PipelineContext | None) -> None:
    """Override the process-wide context (for testing)."""
    global _default_context
    _default_context = context
