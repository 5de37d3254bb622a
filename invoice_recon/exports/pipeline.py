"""Bulk export jobs: validate -> chunk -> write -> finalize.

Progress is driven by record counts. Cancellation is checked between chunks;
a cancelled export never stores its file.
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from invoice_recon.exports.csv_writer import render_rows
from invoice_recon.exports.filters import (
    ExportFilters,
    ExportRecord,
    ExportType,
    select_records,
    validate_export,
)
from invoice_recon.jobs.runner import JobRunner, StepContext, StepOutcome
from invoice_recon.jobs.schema import AsyncJob
from invoice_recon.jobs.store import JobStore
from invoice_recon.persistence.repository import ReconciliationRepository
from invoice_recon.shared import metrics
from invoice_recon.shared.config import Settings
from invoice_recon.shared.errors import ValidationError

logger = logging.getLogger(__name__)


class ExportJobRequest(BaseModel):
    export_type: ExportType
    filters: ExportFilters = Field(default_factory=ExportFilters)
    filename: str


class ExportProcessor:
    """Executes bulk export jobs."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        repository: ReconciliationRepository,
        runner: JobRunner | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.repository = repository
        self.runner = runner or JobRunner(store)

    async def run(self, job_id: str) -> AsyncJob:
        """Execute an export job; retried and redelivered jobs rerun every step."""
        payload = await self.store.get_payload(job_id)
        if payload is None:
            raise ValueError(f"No request stored for job {job_id}")
        request = ExportJobRequest.model_validate(payload)
        logger.info(f"Exporting {request.export_type.value} for job {job_id}")
        return await self.runner.run(
            job_id,
            {
                "validate": lambda ctx: self._validate(ctx, request),
                "chunk": lambda ctx: self._chunk(ctx, request),
                "write": lambda ctx: self._write(ctx, request),
                "finalize": lambda ctx: self._finalize(ctx, request),
            },
        )

    async def _validate(self, ctx: StepContext, request: ExportJobRequest) -> StepOutcome:
        # Records may have changed since the job was accepted.
        validation = await validate_export(
            self.repository, self.settings, request.export_type, request.filters
        )
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors), validation.errors)
        return StepOutcome(confidence=1.0)

    async def _chunk(self, ctx: StepContext, request: ExportJobRequest) -> StepOutcome:
        records = await select_records(self.repository, request.export_type, request.filters)
        size = request.filters.chunk_size or self.settings.export_default_chunk_size
        chunks: list[list[ExportRecord]] = [
            records[i : i + size] for i in range(0, len(records), size)
        ]
        ctx.data["chunks"] = chunks
        await ctx.report_records(0, total=len(records))
        logger.info(f"Job {ctx.job_id}: {len(records)} records in {len(chunks)} chunks")
        return StepOutcome(confidence=1.0)

    async def _write(self, ctx: StepContext, request: ExportJobRequest) -> StepOutcome:
        chunks: list[list[ExportRecord]] = ctx.data["chunks"]
        parts = []
        processed = 0
        for index, chunk in enumerate(chunks):
            parts.append(render_rows(request.export_type, chunk, include_header=index == 0))
            processed += len(chunk)
            await ctx.report_records(processed)
            # Let polls and cancellation in between chunks.
            await asyncio.sleep(0)
        ctx.data["content"] = "".join(parts)
        ctx.data["row_count"] = processed
        return StepOutcome(confidence=1.0)

    async def _finalize(self, ctx: StepContext, request: ExportJobRequest) -> StepOutcome:
        data = ctx.data["content"].encode("utf-8")
        await ctx.ensure_active()
        await self.store.save_artifact(ctx.job_id, data)
        metrics.export_rows_written_total.labels(export_type=request.export_type.value).inc(
            ctx.data["row_count"]
        )
        ctx.result = {
            "export_type": request.export_type.value,
            "filename": request.filename,
            "row_count": ctx.data["row_count"],
            "size_bytes": len(data),
        }
        return StepOutcome(confidence=1.0)
