"""Unit tests for reconciliation report assembly."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from invoice_recon.comparison.comparator import compare
from invoice_recon.comparison.schema import ComparisonResult, Severity
from invoice_recon.extraction.mock_provider import SAMPLE_INVOICE, SAMPLE_TERMS
from invoice_recon.extraction.schema import ExtractionMetadata
from invoice_recon.reports.builder import ReportBuilder, render_rationale
from invoice_recon.reports.schema import ComplianceStatus
from invoice_recon.shared.config import Settings

FIXED_NOW = datetime(2024, 11, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def builder() -> ReportBuilder:
    return ReportBuilder(clock=lambda: FIXED_NOW, id_factory=lambda: "report-1")


@pytest.fixture
def metadata() -> ExtractionMetadata:
    return ExtractionMetadata(
        ai_model="mock-vision-v1", provider="mock", processing_time_seconds=0.2
    )


class TestReportBuilder:
    """Test report construction."""

    def test_build_from_sample(
        self, builder: ReportBuilder, metadata: ExtractionMetadata
    ) -> None:
        """Should copy comparison results and link invoice and terms."""
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)

        report = builder.build(SAMPLE_INVOICE, SAMPLE_TERMS, comparison, metadata, "invoice-1")

        assert report.id == "report-1"
        assert report.invoice_id == "invoice-1"
        assert report.contract_term_set_id == SAMPLE_TERMS.id
        assert report.has_discrepancies is True
        assert report.total_discrepancy_amount == Decimal("52.50")
        assert report.highest_severity == Severity.MEDIUM
        assert report.compliance_status == ComplianceStatus.DISCREPANCY
        assert report.created_at == FIXED_NOW
        assert report.metadata.extraction_confidence == 0.95
        assert report.supersedes_report_id is None

    def test_template_rationale_in_mock_mode(
        self, builder: ReportBuilder, metadata: ExtractionMetadata
    ) -> None:
        """Without a model rationale the template narrative should be used."""
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)

        report = builder.build(SAMPLE_INVOICE, SAMPLE_TERMS, comparison, metadata, "invoice-1")

        assert report.rationale_text == render_rationale(SAMPLE_INVOICE, SAMPLE_TERMS, comparison)
        assert "INV-2024-001234" in report.rationale_text
        assert "2 discrepancies" in report.rationale_text
        assert "52.50" in report.rationale_text

    def test_model_rationale_preferred(self, builder: ReportBuilder) -> None:
        """A rationale produced by the model should be used as-is."""
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)
        live = ExtractionMetadata(ai_model="gpt-4o", provider="openai", rationale="Model says so.")

        report = builder.build(SAMPLE_INVOICE, SAMPLE_TERMS, comparison, live, "invoice-1")

        assert report.rationale_text == "Model says so."

    def test_supersedes_link(
        self, builder: ReportBuilder, metadata: ExtractionMetadata
    ) -> None:
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)

        report = builder.build(
            SAMPLE_INVOICE, SAMPLE_TERMS, comparison, metadata, "invoice-1", "report-0"
        )

        assert report.supersedes_report_id == "report-0"

    def test_report_is_immutable(
        self, builder: ReportBuilder, metadata: ExtractionMetadata
    ) -> None:
        """Reports should reject mutation."""
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)
        report = builder.build(SAMPLE_INVOICE, SAMPLE_TERMS, comparison, metadata, "invoice-1")

        with pytest.raises(ValueError):
            report.rationale_text = "changed"  # type: ignore[misc]


class TestComplianceStatus:
    """Test compliance status selection."""

    def test_compliant_without_findings(self, builder: ReportBuilder) -> None:
        """A confident read with no findings should be compliant."""
        status = builder.compliance_status(SAMPLE_INVOICE, ComparisonResult())

        assert status == ComplianceStatus.COMPLIANT

    def test_clean_rationale(self) -> None:
        """The template should say so when nothing was found."""
        text = render_rationale(SAMPLE_INVOICE, SAMPLE_TERMS, ComparisonResult())

        assert "no discrepancies" in text

    def test_low_confidence_needs_review(self) -> None:
        """A read below the threshold should need review regardless of findings."""
        builder = ReportBuilder(review_confidence_threshold=0.9)
        comparison = compare(SAMPLE_INVOICE, SAMPLE_TERMS)

        status = builder.compliance_status(SAMPLE_INVOICE, comparison)

        assert status == ComplianceStatus.NEEDS_REVIEW

    def test_threshold_from_settings(self) -> None:
        settings = Settings(_env_file=None, review_confidence_threshold=0.5)

        assert ReportBuilder.from_settings(settings).review_confidence_threshold == 0.5
