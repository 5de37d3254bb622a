"""Async job models shared by document processing and bulk export."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    DOCUMENT_PROCESSING = "document_processing"
    BULK_EXPORT = "bulk_export"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class ProgressMode(str, Enum):
    """How progress_pct is derived: step durations or record counts."""

    STEPS = "steps"
    RECORDS = "records"


class StepSpec(BaseModel):
    """Declaration of one named step and its estimated share of the work."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    estimated_duration_ms: int = Field(..., gt=0)


class JobStep(BaseModel):
    """Runtime state of one step."""

    id: str
    label: str
    estimated_duration_ms: int = Field(..., gt=0)
    status: StepStatus = StepStatus.PENDING
    confidence: float | None = Field(None, ge=0, le=1)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class AsyncJob(BaseModel):
    """Snapshot of a progress-tracked, cancellable unit of work."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: JobKind
    status: JobStatus = JobStatus.PENDING
    steps: list[JobStep] = Field(default_factory=list)
    progress_mode: ProgressMode = ProgressMode.STEPS
    progress_pct: int = Field(0, ge=0, le=100)
    processed_records: int = Field(0, ge=0)
    total_records: int = Field(0, ge=0)
    error: str | None = None
    result: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def current_step(self) -> str | None:
        for step in self.steps:
            if step.status == StepStatus.IN_PROGRESS:
                return step.id
        return None

    def step(self, step_id: str) -> JobStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


INVOICE_PROCESSING_STEPS = [
    StepSpec(id="upload", label="Invoice Upload", estimated_duration_ms=2000),
    StepSpec(id="field_extraction", label="Field Extraction", estimated_duration_ms=14000),
    StepSpec(id="reconciliation", label="Contract Reconciliation", estimated_duration_ms=10000),
    StepSpec(id="report", label="Discrepancy Report", estimated_duration_ms=5000),
]

CONTRACT_PROCESSING_STEPS = [
    StepSpec(id="upload", label="Document Upload", estimated_duration_ms=2000),
    StepSpec(id="analysis", label="AI Document Analysis", estimated_duration_ms=20000),
    StepSpec(id="validation", label="Quality Validation", estimated_duration_ms=4000),
]

EXPORT_STEPS = [
    StepSpec(id="validate", label="Validate Filters", estimated_duration_ms=1000),
    StepSpec(id="chunk", label="Select Records", estimated_duration_ms=2000),
    StepSpec(id="write", label="Write Rows", estimated_duration_ms=10000),
    StepSpec(id="finalize", label="Finalize File", estimated_duration_ms=1000),
]
