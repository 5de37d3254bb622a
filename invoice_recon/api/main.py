"""FastAPI application for invoice reconciliation.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Document processing jobs (invoice reconciliation, contract analysis)
- Job polling, cancellation and retry
- Bulk CSV exports with pre-start validation
- Prometheus metrics for monitoring

Jobs run in-process unless APP_QUEUE_ENABLED is set, in which case they are
enqueued for arq workers and tracked in Redis.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from fastapi import FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from invoice_recon.exports.filters import ExportFilters, ExportType, ExportValidation
from invoice_recon.exports.pipeline import ExportProcessor
from invoice_recon.extraction.factory import create_extraction_provider
from invoice_recon.extraction.schema import DocumentImage
from invoice_recon.jobs.dispatch import ArqDispatcher, InlineDispatcher, JobDispatcher
from invoice_recon.jobs.schema import AsyncJob, JobKind, JobStatus
from invoice_recon.jobs.service import JobService
from invoice_recon.jobs.store import InMemoryJobStore, JobStore, RedisJobStore
from invoice_recon.persistence.repository import (
    InMemoryRepository,
    ReconciliationRepository,
    RedisRepository,
)
from invoice_recon.processing.document_pipeline import DocumentProcessor, DocumentType
from invoice_recon.shared import metrics
from invoice_recon.shared.config import get_settings
from invoice_recon.shared.errors import JobNotFoundError, JobStateError, ValidationError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Reconciliation Platform",
    description="Reconciles vendor invoices against contract terms",
    version=settings.service_version,
)

extraction_provider = create_extraction_provider(settings)

_arq_pool: ArqRedis | None = None
_job_service: JobService | None = None


async def get_arq_pool() -> ArqRedis:
    """Get or create the arq Redis pool (lazy initialization)."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    return _arq_pool


async def get_job_service() -> JobService:
    """Get or create the job service for the configured execution mode."""
    global _job_service
    if _job_service is None:
        store: JobStore
        repository: ReconciliationRepository
        dispatcher: JobDispatcher
        if settings.queue_enabled:
            pool = await get_arq_pool()
            store = RedisJobStore(pool, ttl_seconds=settings.job_ttl_seconds)
            repository = RedisRepository(pool)
            dispatcher = ArqDispatcher(pool)
        else:
            store = InMemoryJobStore()
            repository = InMemoryRepository()
            documents = DocumentProcessor(settings, store, repository, extraction_provider)
            exports = ExportProcessor(settings, store, repository)
            dispatcher = InlineDispatcher(
                {JobKind.DOCUMENT_PROCESSING: documents.run, JobKind.BULK_EXPORT: exports.run}
            )
        _job_service = JobService(settings, store, repository, dispatcher)
    return _job_service


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    # Route template keeps job ids out of the label set
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc), "errors": exc.errors},
    )


@app.exception_handler(JobStateError)
async def job_state_error_handler(request: Request, exc: JobStateError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "job_id": exc.job_id, "status": exc.current},
    )


@app.exception_handler(JobNotFoundError)
async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class JobAcceptedResponse(BaseModel):
    """Response for a newly created job."""

    job_id: str
    status: JobStatus
    poll_interval_seconds: float


class ExtractionStatusResponse(BaseModel):
    """Analysis provider configuration."""

    mode: str
    provider: str
    model: str
    available: bool


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get(
    "/api/v1/extraction/status", response_model=ExtractionStatusResponse, tags=["Extraction"]
)
def extraction_status() -> ExtractionStatusResponse:
    """Report which analysis provider is configured and whether it is reachable."""
    return ExtractionStatusResponse(
        mode=settings.extraction_mode,
        provider=extraction_provider.provider_name,
        model=extraction_provider.model_name,
        available=extraction_provider.is_available(),
    )


@app.post(
    "/api/v1/jobs/documents",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Jobs"],
)
async def start_document_job(
    file: UploadFile = File(..., description="Invoice or contract page image"),  # noqa: B008
    vendor_id: str = Form(..., description="Vendor the document belongs to"),
    document_type: DocumentType = Form("invoice", description="invoice or contract"),
    contract_term_set_id: str | None = Form(None, description="Term set to reconcile against"),
    invoice_id: str | None = Form(None, description="Existing invoice to re-analyze"),
) -> JobAcceptedResponse:
    """Start an async document processing job.

    Invoices are extracted, reconciled against the vendor's contract terms and
    reported on. Contracts are analyzed and stored as a new term set version.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/jobs/documents" \\
      -F "file=@invoice.png" -F "vendor_id=sysco"
    ```

    Poll `GET /api/v1/jobs/{job_id}` for progress and result.

    ## Error Handling

    - Returns 400 if the file is missing, empty or too large
    - Content type and contract term problems fail the job and are reported on it
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {settings.max_upload_bytes} bytes",
        )

    service = await get_job_service()
    job_id = await service.start_document_processing_job(
        DocumentImage(
            content=content,
            filename=file.filename,
            content_type=file.content_type or "application/octet-stream",
        ),
        vendor_id=vendor_id,
        contract_term_set_id=contract_term_set_id,
        document_type=document_type,
        invoice_id=invoice_id,
    )
    return JobAcceptedResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        poll_interval_seconds=settings.poll_interval_seconds,
    )


@app.get("/api/v1/jobs/{job_id}", response_model=AsyncJob, tags=["Jobs"])
async def get_job(job_id: str) -> AsyncJob:
    """Current snapshot of a job: status, steps, progress, error and result."""
    service = await get_job_service()
    return await service.get_job_status(job_id)


@app.post("/api/v1/jobs/{job_id}/cancel", response_model=AsyncJob, tags=["Jobs"])
async def cancel_job(job_id: str) -> AsyncJob:
    """Cancel a processing job. Returns 409 for any other status."""
    service = await get_job_service()
    return await service.cancel_job(job_id)


@app.post("/api/v1/jobs/{job_id}/retry", response_model=AsyncJob, tags=["Jobs"])
async def retry_job(job_id: str) -> AsyncJob:
    """Restart a failed job from its first step. Returns 409 for any other status."""
    service = await get_job_service()
    return await service.retry_job(job_id)


@app.post(
    "/api/v1/exports/{export_type}/validate", response_model=ExportValidation, tags=["Exports"]
)
async def validate_export(export_type: ExportType, filters: ExportFilters) -> ExportValidation:
    """Check export filters and estimate the record count without starting a job."""
    service = await get_job_service()
    return await service.validate_export(export_type, filters)


@app.post(
    "/api/v1/exports/{export_type}",
    response_model=JobAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Exports"],
)
async def start_export(export_type: ExportType, filters: ExportFilters) -> JobAcceptedResponse:
    """Start a bulk CSV export.

    Returns 400 with the validation errors when the filters select no
    records or more than the configured maximum; no job is created then.
    """
    service = await get_job_service()
    job_id = await service.start_export_job(export_type, filters)
    return JobAcceptedResponse(
        job_id=job_id,
        status=JobStatus.PENDING,
        poll_interval_seconds=settings.poll_interval_seconds,
    )


@app.get("/api/v1/exports/{job_id}/download", tags=["Exports"])
async def download_export(job_id: str) -> Response:
    """Download the CSV produced by a completed export job."""
    service = await get_job_service()
    filename, data = await service.get_export_artifact(job_id)
    return Response(
        content=data,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
