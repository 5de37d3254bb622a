"""Reconciliation report models.

Reports are immutable. Re-analysis creates a new report linked through
supersedes_report_id; reviewer decisions live in FindingReview records
beside the report, never inside it.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from invoice_recon.comparison.schema import ChecklistItem, Discrepancy, Severity


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    DISCREPANCY = "discrepancy"
    NEEDS_REVIEW = "needs_review"


class ReportMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    ai_model: str
    provider: str
    processing_time_seconds: float = Field(0.0, ge=0)
    extraction_confidence: float = Field(..., ge=0, le=1)


class ReconciliationReport(BaseModel):
    """Structured comparison of one invoice against one contract term set."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    invoice_id: str
    contract_term_set_id: str
    has_discrepancies: bool
    total_discrepancy_amount: Decimal = Field(..., ge=0)
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    checklist: list[ChecklistItem] = Field(default_factory=list)
    rationale_text: str
    metadata: ReportMetadata
    compliance_status: ComplianceStatus
    highest_severity: Severity | None = None
    supersedes_report_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Relevance(str, Enum):
    """Reviewer-assigned relevance of a finding; independent of severity."""

    RELEVANT = "relevant"
    NOT_RELEVANT = "not_relevant"
    PENDING = "pending"


class FindingReview(BaseModel):
    """Reviewer classification of one discrepancy on a report."""

    report_id: str
    discrepancy_index: int = Field(..., ge=0)
    relevance: Relevance = Relevance.PENDING
    read: bool = False
    updated_at: datetime = Field(default_factory=utcnow)
