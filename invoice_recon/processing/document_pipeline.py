"""Document processing jobs: invoice reconciliation and contract analysis.

Invoice: upload -> field_extraction -> reconciliation -> report
Contract: upload -> analysis -> validation

Provider calls are synchronous and run in a worker thread under a timeout;
a timed out call surfaces as ExtractionServiceError. The thread itself is
not interrupted, its result is simply ignored.
"""

import asyncio
import base64
import logging
import time
import uuid
from collections.abc import Callable
from typing import Literal, TypeVar

from pydantic import BaseModel, Field

from invoice_recon.comparison.comparator import ComparatorConfig, TermComparator
from invoice_recon.comparison.schema import ComparisonResult
from invoice_recon.extraction.base import ExtractionProvider
from invoice_recon.extraction.schema import (
    ContractAnalysis,
    ContractTermSet,
    DocumentImage,
    InvoiceAnalysis,
)
from invoice_recon.jobs.runner import JobRunner, StepContext, StepHandler, StepOutcome
from invoice_recon.jobs.schema import AsyncJob
from invoice_recon.jobs.store import JobStore
from invoice_recon.persistence.repository import InvoiceRecord, ReconciliationRepository
from invoice_recon.reports.builder import ReportBuilder
from invoice_recon.shared import metrics
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import (
    ExtractionError,
    ExtractionServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DocumentType = Literal["invoice", "contract"]


class DocumentJobRequest(BaseModel):
    """Stored request of a document processing job.

    The image travels base64-encoded so the payload stays JSON.
    """

    filename: str
    content_type: str
    content_b64: str
    vendor_id: str
    document_type: DocumentType = "invoice"
    contract_term_set_id: str | None = None
    invoice_id: str | None = Field(
        None, description="Existing invoice being re-analyzed; its latest report is superseded"
    )

    @classmethod
    def from_image(
        cls,
        image: DocumentImage,
        vendor_id: str,
        document_type: DocumentType = "invoice",
        contract_term_set_id: str | None = None,
        invoice_id: str | None = None,
    ) -> "DocumentJobRequest":
        return cls(
            filename=image.filename,
            content_type=image.content_type,
            content_b64=image.to_base64(),
            vendor_id=vendor_id,
            document_type=document_type,
            contract_term_set_id=contract_term_set_id,
            invoice_id=invoice_id,
        )

    def to_image(self) -> DocumentImage:
        return DocumentImage(
            content=base64.b64decode(self.content_b64),
            filename=self.filename,
            content_type=self.content_type,
        )


class DocumentProcessor:
    """Executes document processing jobs."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        repository: ReconciliationRepository,
        provider: ExtractionProvider,
        comparator: TermComparator | None = None,
        builder: ReportBuilder | None = None,
        runner: JobRunner | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.repository = repository
        self.provider = provider
        self.comparator = comparator or TermComparator(ComparatorConfig.from_settings(settings))
        self.builder = builder or ReportBuilder.from_settings(settings)
        self.runner = runner or JobRunner(store)

    async def run(self, job_id: str) -> AsyncJob:
        """Execute a document processing job; retried and redelivered jobs rerun every step."""
        payload = await self.store.get_payload(job_id)
        if payload is None:
            raise ValueError(f"No request stored for job {job_id}")
        request = DocumentJobRequest.model_validate(payload)

        handlers: dict[str, StepHandler]
        if request.document_type == "invoice":
            handlers = {
                "upload": lambda ctx: self._upload(ctx, request),
                "field_extraction": self._extract_invoice,
                "reconciliation": self._reconcile,
                "report": lambda ctx: self._report(ctx, request),
            }
        else:
            handlers = {
                "upload": lambda ctx: self._upload(ctx, request),
                "analysis": self._analyze_contract,
                "validation": lambda ctx: self._store_contract(ctx, request),
            }
        logger.info(f"Processing {request.document_type} job {job_id} ({request.filename})")
        return await self.runner.run(job_id, handlers)

    async def _upload(self, ctx: StepContext, request: DocumentJobRequest) -> StepOutcome:
        image = request.to_image()
        errors = []
        if not image.content:
            errors.append("Empty file")
        if len(image.content) > self.settings.max_upload_bytes:
            errors.append(
                f"File too large: {len(image.content)} bytes "
                f"(limit {self.settings.max_upload_bytes})"
            )
        if not image.content_type.startswith("image/"):
            errors.append(f"Unsupported content type: {image.content_type}")
        if errors:
            raise ValidationError("; ".join(errors), errors)

        metrics.document_upload_size_bytes.observe(len(image.content))
        ctx.data["image"] = image

        if request.document_type == "invoice":
            ctx.data["terms"] = await self._resolve_terms(request)
        return StepOutcome(confidence=1.0)

    async def _resolve_terms(self, request: DocumentJobRequest) -> ContractTermSet | None:
        if request.contract_term_set_id is not None:
            terms = await self.repository.get_contract_term_set(request.contract_term_set_id)
            if terms is None:
                raise ValidationError(
                    f"Contract term set not found: {request.contract_term_set_id}"
                )
            return terms
        return await self.repository.load_contract_term_set(request.vendor_id)

    async def _extract_invoice(self, ctx: StepContext) -> StepOutcome:
        analysis: InvoiceAnalysis = await self._call_provider(
            self.provider.analyze_invoice, ctx.data["image"], ctx.data.get("terms")
        )
        ctx.data["analysis"] = analysis
        return StepOutcome(confidence=analysis.confidence)

    async def _reconcile(self, ctx: StepContext) -> StepOutcome:
        terms: ContractTermSet | None = ctx.data.get("terms")
        if terms is None:
            raise ValidationError("No contract terms on file for this vendor")
        analysis: InvoiceAnalysis = ctx.data["analysis"]
        comparison = self.comparator.compare(analysis.invoice, terms)
        for discrepancy in comparison.discrepancies:
            metrics.discrepancies_detected_total.labels(
                type=discrepancy.type.value, severity=discrepancy.severity.value
            ).inc()
        ctx.data["comparison"] = comparison
        return StepOutcome(confidence=min(item.confidence for item in comparison.checklist))

    async def _report(self, ctx: StepContext, request: DocumentJobRequest) -> StepOutcome:
        analysis: InvoiceAnalysis = ctx.data["analysis"]
        terms: ContractTermSet = ctx.data["terms"]
        comparison: ComparisonResult = ctx.data["comparison"]

        invoice_id = request.invoice_id or str(uuid.uuid4())
        previous = None
        if request.invoice_id is not None:
            previous = await self.repository.latest_report_for_invoice(request.invoice_id)

        report = self.builder.build(
            analysis.invoice,
            terms,
            comparison,
            analysis.metadata,
            invoice_id=invoice_id,
            supersedes_report_id=previous.id if previous is not None else None,
        )

        await ctx.ensure_active()
        await self.repository.save_report(report)
        await self.repository.save_invoice(
            InvoiceRecord(
                id=invoice_id,
                vendor_id=request.vendor_id,
                vendor_name=analysis.invoice.vendor_name,
                invoice_number=analysis.invoice.invoice_number,
                invoice_date=analysis.invoice.issued_on(),
                total_amount=analysis.invoice.total_amount,
                currency=analysis.invoice.currency,
                status="flagged" if report.has_discrepancies else "reconciled",
                discrepancy_count=len(report.discrepancies),
                total_discrepancy_amount=report.total_discrepancy_amount,
                report_id=report.id,
            )
        )
        ctx.result = {
            "invoice_id": invoice_id,
            "report_id": report.id,
            "contract_term_set_id": terms.id,
            "has_discrepancies": report.has_discrepancies,
            "total_discrepancy_amount": str(report.total_discrepancy_amount),
            "compliance_status": report.compliance_status.value,
            "supersedes_report_id": report.supersedes_report_id,
        }
        logger.info(
            f"Report {report.id} for invoice {invoice_id}: "
            f"{len(report.discrepancies)} discrepancies, {report.compliance_status.value}"
        )
        return StepOutcome(confidence=report.metadata.extraction_confidence)

    async def _analyze_contract(self, ctx: StepContext) -> StepOutcome:
        analysis: ContractAnalysis = await self._call_provider(
            self.provider.analyze_contract, ctx.data["image"]
        )
        ctx.data["contract"] = analysis
        return StepOutcome(confidence=analysis.confidence)

    async def _store_contract(self, ctx: StepContext, request: DocumentJobRequest) -> StepOutcome:
        analysis: ContractAnalysis = ctx.data["contract"]
        if analysis.confidence < self.settings.review_confidence_threshold:
            logger.warning(
                f"Contract for vendor {request.vendor_id} extracted with low confidence "
                f"{analysis.confidence:.2f}"
            )

        await ctx.ensure_active()
        await self.repository.save_vendor(request.vendor_id, analysis.vendor)
        stored = await self.repository.save_contract_term_set(
            analysis.terms.model_copy(update={"vendor_id": request.vendor_id})
        )
        ctx.result = {
            "vendor_id": request.vendor_id,
            "vendor_name": analysis.vendor.name,
            "contract_term_set_id": stored.id,
            "version": stored.version,
            "confidence": analysis.confidence,
        }
        return StepOutcome(confidence=analysis.confidence)

    async def _call_provider(self, func: Callable[..., T], *args: object) -> T:
        provider = self.provider.provider_name
        timeout = self.settings.extraction_timeout_seconds
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except asyncio.TimeoutError as e:
            metrics.extraction_requests_total.labels(provider=provider, status="failed").inc()
            raise ExtractionServiceError(
                f"Analysis timed out after {timeout:g}s", provider
            ) from e
        except ExtractionError:
            metrics.extraction_requests_total.labels(provider=provider, status="failed").inc()
            raise
        metrics.extraction_requests_total.labels(provider=provider, status="success").inc()
        metrics.extraction_duration_seconds.observe(time.perf_counter() - start)
        return result
