"""Integration test for the full reconciliation flow.

Contract upload -> invoice reconciliation -> reviewer triage -> exports,
driven through JobService with in-process execution and the mock provider.
"""

import csv
import io

import pytest

from invoice_recon.exports.filters import ExportFilters, ExportType
from invoice_recon.exports.pipeline import ExportProcessor
from invoice_recon.extraction.mock_provider import MockExtractionProvider
from invoice_recon.extraction.schema import DocumentImage
from invoice_recon.jobs.dispatch import InlineDispatcher
from invoice_recon.jobs.schema import JobKind, JobStatus
from invoice_recon.jobs.service import JobService
from invoice_recon.jobs.store import InMemoryJobStore
from invoice_recon.persistence.repository import InMemoryRepository
from invoice_recon.processing.document_pipeline import DocumentProcessor
from invoice_recon.reports.schema import FindingReview, Relevance
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import ValidationError


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(repository: InMemoryRepository) -> JobService:
    settings = Settings(_env_file=None)
    store = InMemoryJobStore()
    documents = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))
    exports = ExportProcessor(settings, store, repository)
    dispatcher = InlineDispatcher(
        {JobKind.DOCUMENT_PROCESSING: documents.run, JobKind.BULK_EXPORT: exports.run},
        wait=True,
    )
    return JobService(settings, store, repository, dispatcher)


def scan(name: str) -> DocumentImage:
    return DocumentImage(content=b"\x89PNG scan", filename=name, content_type="image/png")


@pytest.mark.asyncio
async def test_contract_invoice_export_flow(
    service: JobService, repository: InMemoryRepository
) -> None:
    """Test the path from a signed contract to a dispute export."""
    contract_job = await service.get_job_status(
        await service.start_document_processing_job(
            scan("contract.png"), vendor_id="sysco", document_type="contract"
        )
    )
    assert contract_job.status == JobStatus.COMPLETED
    assert contract_job.result is not None
    term_set_id = contract_job.result["contract_term_set_id"]

    invoice_job = await service.get_job_status(
        await service.start_document_processing_job(
            scan("invoice.png"), vendor_id="sysco", contract_term_set_id=term_set_id
        )
    )
    assert invoice_job.status == JobStatus.COMPLETED
    assert invoice_job.result is not None
    assert invoice_job.result["contract_term_set_id"] == term_set_id
    report = await repository.get_report(invoice_job.result["report_id"])
    assert report is not None
    assert report.has_discrepancies
    assert report.total_discrepancy_amount > 0

    # Reviewer dismisses every finding: the findings export then has nothing to write.
    for index in range(len(report.discrepancies)):
        await repository.save_finding_review(
            FindingReview(
                report_id=report.id, discrepancy_index=index, relevance=Relevance.NOT_RELEVANT
            )
        )
    with pytest.raises(ValidationError):
        await service.start_export_job(ExportType.FINDINGS, ExportFilters())
    stored = await repository.get_report(report.id)
    assert stored == report

    invoice_export = await service.start_export_job(ExportType.INVOICES, ExportFilters())
    filename, data = await service.get_export_artifact(invoice_export)
    rows = list(csv.reader(io.StringIO(data.decode("utf-8"))))
    assert filename.startswith("invoices_export_")
    assert rows[1][1] == "INV-2024-001234"
    assert rows[1][6] == "flagged"

    everything = ExportFilters(include_not_relevant=True)
    findings_export = await service.start_export_job(ExportType.FINDINGS, everything)
    _, findings = await service.get_export_artifact(findings_export)
    finding_rows = list(csv.reader(io.StringIO(findings.decode("utf-8"))))
    assert len(finding_rows) == len(report.discrepancies) + 1
    assert {row[11] for row in finding_rows[1:]} == {"not_relevant"}
