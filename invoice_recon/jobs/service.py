"""Inbound interface for async jobs.

The API and tests talk to JobService; it creates jobs, stores their request
payloads, hands them to a dispatcher and applies caller-driven transitions
(cancel, retry). Step execution lives in the processing and export
pipelines.
"""

import logging
from datetime import datetime, timezone

from invoice_recon.exports.filters import ExportFilters, ExportType, ExportValidation
from invoice_recon.exports.filters import validate_export as check_export
from invoice_recon.exports.pipeline import ExportJobRequest
from invoice_recon.extraction.schema import DocumentImage
from invoice_recon.jobs.dispatch import JobDispatcher
from invoice_recon.jobs.engine import JobStateMachine
from invoice_recon.jobs.schema import (
    CONTRACT_PROCESSING_STEPS,
    EXPORT_STEPS,
    INVOICE_PROCESSING_STEPS,
    AsyncJob,
    JobKind,
    JobStatus,
    ProgressMode,
)
from invoice_recon.jobs.store import JobStore
from invoice_recon.persistence.repository import ReconciliationRepository
from invoice_recon.processing.document_pipeline import DocumentJobRequest, DocumentType
from invoice_recon.shared import metrics
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import JobStateError, ValidationError

logger = logging.getLogger(__name__)


class JobService:
    """Creates, inspects, cancels and retries async jobs."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        repository: ReconciliationRepository,
        dispatcher: JobDispatcher,
        machine: JobStateMachine | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.repository = repository
        self.dispatcher = dispatcher
        self.machine = machine or JobStateMachine()

    async def start_document_processing_job(
        self,
        file: DocumentImage,
        vendor_id: str,
        contract_term_set_id: str | None = None,
        document_type: DocumentType = "invoice",
        invoice_id: str | None = None,
    ) -> str:
        """Create and dispatch a document processing job.

        Args:
            file: Uploaded document image
            vendor_id: Vendor the document belongs to
            contract_term_set_id: Term set to reconcile against; latest for the vendor if omitted
            document_type: "invoice" (reconcile) or "contract" (extract terms)
            invoice_id: Existing invoice to re-analyze

        Returns:
            Id of the pending job
        """
        request = DocumentJobRequest.from_image(
            file,
            vendor_id=vendor_id,
            document_type=document_type,
            contract_term_set_id=contract_term_set_id,
            invoice_id=invoice_id,
        )
        steps = (
            INVOICE_PROCESSING_STEPS if document_type == "invoice" else CONTRACT_PROCESSING_STEPS
        )
        job = self.machine.create(JobKind.DOCUMENT_PROCESSING, steps)
        await self.store.save(job)
        await self.store.save_payload(job.id, request.model_dump(mode="json"))
        metrics.jobs_started_total.labels(kind=job.kind.value).inc()
        logger.info(f"Created {document_type} job {job.id} for vendor {vendor_id}")
        await self.dispatcher.dispatch(job.kind, job.id)
        return job.id

    async def get_job_status(self, job_id: str) -> AsyncJob:
        """Snapshot of a job. Polling never changes state."""
        return await self.store.get(job_id)

    async def cancel_job(self, job_id: str) -> AsyncJob:
        """Cancel a processing job.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Job is not processing
        """
        job = await self.store.get(job_id)
        self.machine.cancel(job)
        await self._save_transition(job, JobStatus.PROCESSING)
        metrics.jobs_finished_total.labels(kind=job.kind.value, status="cancelled").inc()
        return job

    async def retry_job(self, job_id: str) -> AsyncJob:
        """Restart a failed job from its first step.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Job is not failed
        """
        job = await self.store.get(job_id)
        self.machine.retry(job)
        await self._save_transition(job, JobStatus.FAILED)
        await self.dispatcher.dispatch(job.kind, job.id)
        return job

    async def _save_transition(self, job: AsyncJob, expected: JobStatus) -> None:
        if not await self.store.save_if_status(job, expected):
            current = await self.store.get(job.id)
            raise JobStateError(
                f"Job {job.id} changed to {current.status.value} concurrently",
                job_id=job.id,
                current=current.status.value,
            )

    async def validate_export(
        self, export_type: ExportType, filters: ExportFilters
    ) -> ExportValidation:
        return await check_export(self.repository, self.settings, export_type, filters)

    async def start_export_job(self, export_type: ExportType, filters: ExportFilters) -> str:
        """Validate and dispatch an export job.

        Raises:
            ValidationError: Filters are invalid or select zero or too many records;
                no job is created
        """
        validation = await self.validate_export(export_type, filters)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors), validation.errors)

        job = self.machine.create(
            JobKind.BULK_EXPORT,
            EXPORT_STEPS,
            progress_mode=ProgressMode.RECORDS,
            total_records=validation.estimated_records,
        )
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        request = ExportJobRequest(
            export_type=export_type,
            filters=filters,
            filename=f"{export_type.value}_export_{stamp}.csv",
        )
        await self.store.save(job)
        await self.store.save_payload(job.id, request.model_dump(mode="json"))
        metrics.jobs_started_total.labels(kind=job.kind.value).inc()
        logger.info(
            f"Created {export_type.value} export job {job.id} "
            f"({validation.estimated_records} records)"
        )
        await self.dispatcher.dispatch(job.kind, job.id)
        return job.id

    async def get_export_artifact(self, job_id: str) -> tuple[str, bytes]:
        """Filename and content of a completed export.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Job is not a completed export
        """
        job = await self.store.get(job_id)
        if job.kind != JobKind.BULK_EXPORT:
            raise JobStateError(f"Job {job_id} is not an export", job_id, job.status.value)
        if job.status != JobStatus.COMPLETED:
            raise JobStateError(
                f"Export {job_id} is {job.status.value}, not completed", job_id, job.status.value
            )
        data = await self.store.get_artifact(job_id)
        if data is None or job.result is None:
            raise JobStateError(f"Export {job_id} has no file", job_id, job.status.value)
        return str(job.result["filename"]), data
