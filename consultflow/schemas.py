"""Consultflow - Pydantic models for API validation.

Request/response models for the pipeline API. Used by FastAPI for runtime
validation and by the webhook handler to parse provider notifications.
"""

from datetime import datetime  # noqa: I001

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# --- Request Models ---


class ProcessSessionRequest(BaseModel):
    """Request payload for triggering processing of a recording session."""

    model_config = ConfigDict(extra="forbid")

    fail_at_stage: str | None = Field(
        default=None,
        description=(
            "Test-only fault injection stage (downloading, concatenating, uploading, "
            "transcribing, generating_docs). Ignored unless fault injection is enabled."
        ),
    )


class TranscriptionWebhookPayload(BaseModel):
    """Notification sent by the transcription provider.

    The provider names the tracking id either transcript_id or tracking_id.
    Unknown fields are tolerated.
    """

    model_config = ConfigDict(extra="ignore")

    transcript_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("transcript_id", "tracking_id"),
        description="Provider tracking id",
    )
    status: str | None = Field(default=None, description="completed or error")


# --- Response Models ---


class ProcessSessionResponse(BaseModel):
    """Response for a processing trigger."""

    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(..., description="Job identifier")
    status: str = Field(..., description="Current job status")
    is_existing: bool = Field(
        default=False,
        description="True if an existing completed or active job was returned",
    )


class DocumentResponse(BaseModel):
    """A generated document."""

    document_id: str
    template_id: str
    title: str
    text: str
    created_at: datetime


class JobStatusResponse(BaseModel):
    """Processing job status."""

    job_id: str
    session_id: str
    status: str
    error: str | None = None
    error_code: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    documents: list[DocumentResponse] | None = Field(
        default=None, description="Present only once the job is completed"
    )


class ErrorResponse(BaseModel):
    """Response for failed API operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error code")
    error_message: str = Field(..., description="Human-readable error message")
