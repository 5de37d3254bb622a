"""Assembly of reconciliation reports from comparator output.

Pure construction: the builder returns the report and never persists it.
"""

import uuid
from collections.abc import Callable
from datetime import datetime

from invoice_recon.comparison.schema import ComparisonResult
from invoice_recon.extraction.schema import ContractTermSet, ExtractedInvoice, ExtractionMetadata
from invoice_recon.reports.schema import (
    ComplianceStatus,
    ReconciliationReport,
    ReportMetadata,
    utcnow,
)
from invoice_recon.shared.config import Settings


def render_rationale(
    invoice: ExtractedInvoice, terms: ContractTermSet, comparison: ComparisonResult
) -> str:
    """Template narrative used when the model did not supply one (mock mode)."""
    header = f"Analysis of invoice {invoice.invoice_number} from {invoice.vendor_name}"
    passed = sum(1 for item in comparison.checklist if item.passed)

    if not comparison.has_discrepancies:
        return (
            f"{header} found no discrepancies against the contracted terms "
            f"(term set version {terms.version}). All {passed} compliance checks passed.\n\n"
            f"**Overall Assessment**: Invoice is consistent with the contract and can proceed "
            f"to payment approval."
        )

    count = len(comparison.discrepancies)
    noun = "discrepancy" if count == 1 else "discrepancies"
    lines = [f"{header} reveals {count} {noun} against the contracted terms:", ""]
    for number, discrepancy in enumerate(comparison.discrepancies, start=1):
        lines.append(
            f"{number}. **{discrepancy.type.value.title()}** ({discrepancy.severity.value}): "
            f"{discrepancy.description}"
        )
    lines.append("")
    lines.append(
        f"{passed} of {len(comparison.checklist)} compliance checks passed. "
        f"Total overcharge exposure: {comparison.total_discrepancy_amount:.2f} {invoice.currency}."
    )
    lines.append("")
    if comparison.highest_severity is not None and comparison.highest_severity.value == "high":
        lines.append(
            "**Overall Assessment**: Significant discrepancies require vendor follow-up "
            "before payment approval."
        )
    else:
        lines.append(
            "**Overall Assessment**: Minor discrepancies requiring vendor discussion but not "
            "blocking payment approval."
        )
    return "\n".join(lines)


class ReportBuilder:
    """Builds immutable ReconciliationReport records."""

    def __init__(
        self,
        review_confidence_threshold: float = 0.7,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.review_confidence_threshold = review_confidence_threshold
        self._clock = clock
        self._id_factory = id_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReportBuilder":
        return cls(review_confidence_threshold=settings.review_confidence_threshold)

    def compliance_status(
        self, invoice: ExtractedInvoice, comparison: ComparisonResult
    ) -> ComplianceStatus:
        """Low-confidence reads need a human first; otherwise findings decide."""
        lowest = min(
            [invoice.extraction_confidence] + [item.confidence for item in comparison.checklist]
        )
        if lowest < self.review_confidence_threshold:
            return ComplianceStatus.NEEDS_REVIEW
        if comparison.has_discrepancies:
            return ComplianceStatus.DISCREPANCY
        return ComplianceStatus.COMPLIANT

    def build(
        self,
        invoice: ExtractedInvoice,
        terms: ContractTermSet,
        comparison: ComparisonResult,
        extraction_metadata: ExtractionMetadata,
        invoice_id: str,
        supersedes_report_id: str | None = None,
    ) -> ReconciliationReport:
        """Assemble a report.

        Args:
            invoice: Extracted invoice
            terms: Term set the invoice was compared against
            comparison: Comparator output for invoice and terms
            extraction_metadata: Model, timing and (live mode) rationale of the extraction
            invoice_id: Id of the invoice record the report belongs to
            supersedes_report_id: Earlier report this one replaces, if any

        Returns:
            Immutable ReconciliationReport
        """
        rationale = extraction_metadata.rationale or render_rationale(invoice, terms, comparison)
        return ReconciliationReport(
            id=self._id_factory(),
            invoice_id=invoice_id,
            contract_term_set_id=terms.id,
            has_discrepancies=comparison.has_discrepancies,
            total_discrepancy_amount=comparison.total_discrepancy_amount,
            discrepancies=list(comparison.discrepancies),
            checklist=list(comparison.checklist),
            rationale_text=rationale,
            metadata=ReportMetadata(
                ai_model=extraction_metadata.ai_model,
                provider=extraction_metadata.provider,
                processing_time_seconds=extraction_metadata.processing_time_seconds,
                extraction_confidence=invoice.extraction_confidence,
            ),
            compliance_status=self.compliance_status(invoice, comparison),
            highest_severity=comparison.highest_severity,
            supersedes_report_id=supersedes_report_id,
            created_at=self._clock(),
        )
