"""Consultflow - SQLAlchemy ORM models.

Database tables:
1. recording_sessions
2. processing_jobs
3. document_templates
4. documents
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class JobStatus(StrEnum):
    """Processing job status, in pipeline order."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    CONCATENATING = "concatenating"
    TRANSCRIBING = "transcribing"
    GENERATING_DOCS = "generating_docs"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward order of the non-failed statuses; failed is reachable from any non-terminal one
JOB_STATUS_ORDER = (
    JobStatus.PENDING,
    JobStatus.DOWNLOADING,
    JobStatus.CONCATENATING,
    JobStatus.TRANSCRIBING,
    JobStatus.GENERATING_DOCS,
    JobStatus.COMPLETED,
)

TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ACTIVE_JOB_STATUSES = frozenset(s for s in JobStatus if s not in TERMINAL_JOB_STATUSES)


class RecordingSession(Base):
    """One recording session and its durable checkpoints.

    full_audio_path and raw_transcript are the resume checkpoints: each is set
    once its producing stage has succeeded and is never cleared by the pipeline.
    """

    __tablename__ = "recording_sessions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # External session identifier
    session_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Where the chunks live in object storage
    storage_bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Checkpoints
    full_audio_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_transcript: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Client-visible status ("synced", "processing", "completed")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="synced", index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class ProcessingJob(Base):
    """One processing attempt for a recording session."""

    __tablename__ = "processing_jobs"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Unique job identifier
    job_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Reference to the recording session
    session_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("recording_sessions.session_id"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=JobStatus.PENDING, index=True
    )

    # Failure message, or the partial-failure summary of a completed job
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Tracking id returned by the transcription provider
    transcript_id: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True, index=True
    )

    # Test-only fault plan that must survive the webhook suspension
    fail_at_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_jobs_session_created", "session_id", "created_at"),)


class DocumentTemplate(Base):
    """Configuration for one generated document. Read-only to the pipeline."""

    __tablename__ = "document_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Text generation provider ("openai", "anthropic", "deepseek", "gemini") and model
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    model: Mapped[str] = mapped_column(String(128), nullable=False)


class GeneratedDocument(Base):
    """A document produced from a template and a session transcript."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    session_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("recording_sessions.session_id"), nullable=False, index=True
    )
    template_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("document_templates.template_id"), nullable=False
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
