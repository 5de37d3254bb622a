"""Unit tests for document processing jobs.

Runs the invoice and contract flows end to end against the mock provider
and in-memory stores.
"""

import time

import pytest

from invoice_recon.comparison.schema import DiscrepancyType
from invoice_recon.extraction.mock_provider import SAMPLE_TERMS, MockExtractionProvider
from invoice_recon.extraction.schema import ContractTermSet, DocumentImage, InvoiceAnalysis
from invoice_recon.jobs.engine import JobStateMachine
from invoice_recon.jobs.schema import (
    CONTRACT_PROCESSING_STEPS,
    INVOICE_PROCESSING_STEPS,
    JobKind,
    JobStatus,
    StepStatus,
)
from invoice_recon.jobs.store import InMemoryJobStore
from invoice_recon.persistence.repository import InMemoryRepository
from invoice_recon.processing.document_pipeline import DocumentJobRequest, DocumentProcessor
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import ExtractionParseError


class SlowProvider(MockExtractionProvider):
    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        time.sleep(0.3)
        return super().analyze_invoice(image, contract_terms)


class BrokenProvider(MockExtractionProvider):
    def analyze_invoice(
        self, image: DocumentImage, contract_terms: ContractTermSet | None = None
    ) -> InvoiceAnalysis:
        raise ExtractionParseError("Response is not valid JSON", self.provider_name)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


def png(content: bytes = b"\x89PNG fake", content_type: str = "image/png") -> DocumentImage:
    return DocumentImage(content=content, filename="scan.png", content_type=content_type)


async def create_job(
    store: InMemoryJobStore,
    document_type: str = "invoice",
    image: DocumentImage | None = None,
    **request_fields,
) -> str:
    steps = INVOICE_PROCESSING_STEPS if document_type == "invoice" else CONTRACT_PROCESSING_STEPS
    job = JobStateMachine().create(JobKind.DOCUMENT_PROCESSING, steps)
    await store.save(job)
    request = DocumentJobRequest.from_image(
        image or png(),
        vendor_id=request_fields.pop("vendor_id", "sysco"),
        document_type=document_type,
        **request_fields,
    )
    await store.save_payload(job.id, request.model_dump(mode="json"))
    return job.id


async def store_sample_terms(repository: InMemoryRepository) -> ContractTermSet:
    return await repository.save_contract_term_set(
        SAMPLE_TERMS.model_copy(update={"vendor_id": "sysco"})
    )


class TestDocumentJobRequest:
    """Test the stored request payload."""

    def test_image_round_trip(self) -> None:
        image = png(b"\x00\x01binary")

        request = DocumentJobRequest.from_image(image, vendor_id="sysco")

        assert request.to_image() == image
        assert request.document_type == "invoice"


class TestInvoiceFlow:
    """Test invoice reconciliation jobs."""

    @pytest.mark.asyncio
    async def test_reconcile_invoice(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """The sample invoice should be reconciled against the vendor's latest terms."""
        terms = await store_sample_terms(repository)
        job_id = await create_job(store)
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress_pct == 100
        assert job.result is not None
        assert job.result["contract_term_set_id"] == terms.id
        assert job.result["has_discrepancies"] is True
        assert job.result["supersedes_report_id"] is None
        assert job.step("field_extraction").confidence == 0.95

        report = await repository.get_report(job.result["report_id"])
        assert report is not None
        types = {d.type for d in report.discrepancies}
        assert DiscrepancyType.PRICE in types
        assert DiscrepancyType.QUANTITY in types
        assert DiscrepancyType.TAX not in types

        invoice = await repository.get_invoice(job.result["invoice_id"])
        assert invoice is not None
        assert invoice.status == "flagged"
        assert invoice.report_id == report.id
        assert invoice.invoice_number == "INV-2024-001234"
        assert invoice.discrepancy_count == len(report.discrepancies)

    @pytest.mark.asyncio
    async def test_reanalysis_supersedes(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """Re-analyzing an invoice should create a new report linked to the old one."""
        await store_sample_terms(repository)
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))
        first = await processor.run(await create_job(store))
        assert first.result is not None

        second = await processor.run(
            await create_job(store, invoice_id=first.result["invoice_id"])
        )

        assert second.result is not None
        assert second.result["invoice_id"] == first.result["invoice_id"]
        assert second.result["supersedes_report_id"] == first.result["report_id"]
        assert second.result["report_id"] != first.result["report_id"]
        assert await repository.get_report(first.result["report_id"]) is not None
        latest = await repository.latest_report_for_invoice(first.result["invoice_id"])
        assert latest is not None
        assert latest.id == second.result["report_id"]

    @pytest.mark.asyncio
    async def test_redelivered_job_runs_again(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """A job a crashed worker left after extraction should still reconcile."""
        await store_sample_terms(repository)
        job_id = await create_job(store)
        machine = JobStateMachine()
        job = await store.get(job_id)
        machine.start(job)
        machine.complete_step(job, "upload")
        machine.complete_step(job, "field_extraction", 0.95)
        await store.save(job)
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.result is not None
        assert await repository.get_report(job.result["report_id"]) is not None
        assert all(step.status == StepStatus.COMPLETED for step in job.steps)

    @pytest.mark.asyncio
    async def test_no_terms_on_file(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """Without terms the job should fail at reconciliation."""
        job_id = await create_job(store)
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error == "No contract terms on file for this vendor"
        assert job.step("reconciliation").status == StepStatus.ERROR
        assert await repository.list_reports() == []

    @pytest.mark.asyncio
    async def test_unknown_term_set(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        job_id = await create_job(store, contract_term_set_id="missing")
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error == "Contract term set not found: missing"
        assert job.step("upload").status == StepStatus.ERROR

    @pytest.mark.asyncio
    async def test_rejects_non_image(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        job_id = await create_job(store, image=png(content_type="application/pdf"))
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error == "Unsupported content type: application/pdf"

    @pytest.mark.asyncio
    async def test_rejects_oversized_upload(
        self, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        settings = Settings(_env_file=None, max_upload_bytes=4)
        job_id = await create_job(store)
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error is not None
        assert job.error.startswith("File too large")

    @pytest.mark.asyncio
    async def test_analysis_timeout(
        self, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """A provider call exceeding the timeout should fail the extraction step."""
        settings = Settings(_env_file=None, extraction_timeout_seconds=0.05)
        await store_sample_terms(repository)
        job_id = await create_job(store)
        processor = DocumentProcessor(settings, store, repository, SlowProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error == "Analysis timed out after 0.05s"
        assert job.step("field_extraction").status == StepStatus.ERROR
        assert job.step("reconciliation").status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_parse_error(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        await store_sample_terms(repository)
        job_id = await create_job(store)
        processor = DocumentProcessor(settings, store, repository, BrokenProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.FAILED
        assert job.error == "Response is not valid JSON"


class TestContractFlow:
    """Test contract analysis jobs."""

    @pytest.mark.asyncio
    async def test_store_contract(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """Contract analysis should store the vendor and a term set for it."""
        job_id = await create_job(store, document_type="contract")
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))

        job = await processor.run(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.result is not None
        assert job.result["vendor_name"] == "Sysco Food Services"
        assert job.result["version"] == 1
        vendor = await repository.get_vendor("sysco")
        assert vendor is not None
        terms = await repository.load_contract_term_set("sysco")
        assert terms is not None
        assert terms.id == job.result["contract_term_set_id"]
        assert terms.vendor_id == "sysco"

    @pytest.mark.asyncio
    async def test_new_contract_is_new_version(
        self, settings: Settings, store: InMemoryJobStore, repository: InMemoryRepository
    ) -> None:
        """A second contract should add a version, keeping the first term set intact."""
        processor = DocumentProcessor(settings, store, repository, MockExtractionProvider(settings))
        first = await processor.run(await create_job(store, document_type="contract"))
        second = await processor.run(await create_job(store, document_type="contract"))

        assert first.result is not None
        assert second.result is not None
        assert second.result["version"] == 2
        assert second.result["contract_term_set_id"] != first.result["contract_term_set_id"]
        assert await repository.get_contract_term_set(first.result["contract_term_set_id"])
        latest = await repository.load_contract_term_set("sysco")
        assert latest is not None
        assert latest.version == 2
