"""Batch job data models.

A job holds the uploaded source documents and one result per invoice segment.
Jobs are stored as JSON; source bytes are base64-encoded in that form.
"""

import base64
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_serializer, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL_SUCCESS = "partial_success"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PARTIAL_SUCCESS)


class SegmentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class SourceDocument(BaseModel):
    """One uploaded document (PDF or image) awaiting segmentation."""

    filename: str
    mime_type: str
    content: bytes = Field(repr=False)

    @field_serializer("content", when_used="json")
    def _encode_content(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: object) -> object:
        if isinstance(value, str):
            return base64.b64decode(value)
        return value


class SegmentPlan(BaseModel):
    """Where one invoice segment is cut from.

    ``pages`` is None when the whole source document is a single invoice.
    """

    source_index: int
    filename: str
    mime_type: str
    pages: list[int] | None = None


class BatchResult(BaseModel):
    """Outcome of one invoice segment.

    Attributes:
        filename: Source file name, suffixed with the segment label for split PDFs
        status: pending, success or failed
        extraction_id: Draft id returned by the draft sink
        confidence_score: Extraction confidence (0..1)
        invoice_number: Extracted invoice number
        validation_status: Result of validating the draft for the job's target format
        validation_errors: Blocking rule ids for the target format
        error: Failure reason
    """

    filename: str
    status: SegmentStatus = SegmentStatus.PENDING
    extraction_id: str | None = None
    confidence_score: float | None = None
    invoice_number: str | None = None
    validation_status: str | None = None
    validation_errors: list[str] = Field(default_factory=list)
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class BatchJob(BaseModel):
    """Batch job record.

    Lifecycle: pending -> processing -> completed | failed | partial_success.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    status: JobStatus = JobStatus.PENDING
    output_format: str | None = None
    sources: list[SourceDocument] = Field(default_factory=list)
    segments: list[SegmentPlan] = Field(default_factory=list)
    results: list[BatchResult] = Field(default_factory=list)
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    credits_deducted: bool = False
    recovery_attempts: int = 0
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None

    def recount(self) -> None:
        """Refresh counters from the per-segment results."""
        self.total_files = len(self.results)
        self.completed_files = sum(1 for r in self.results if r.status == SegmentStatus.SUCCESS)
        self.failed_files = sum(1 for r in self.results if r.status == SegmentStatus.FAILED)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def public_view(self) -> dict[str, object]:
        """JSON-ready representation without source document bytes."""
        return self.model_dump(mode="json", exclude={"sources"})
