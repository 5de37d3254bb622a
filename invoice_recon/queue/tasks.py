"""Async task definitions for document processing and bulk export.

Uses arq (async Redis queue) for background task processing. The API stores
the job and its request in Redis and enqueues only the job id; tasks load
both through RedisJobStore and run the job's steps. Term sets, invoices and
reports go through RedisRepository on the same connection, so the API and
every worker see one set of records.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any

from arq.connections import RedisSettings

from invoice_recon.exports.pipeline import ExportProcessor
from invoice_recon.extraction.factory import create_extraction_provider
from invoice_recon.jobs.store import RedisJobStore
from invoice_recon.persistence.repository import RedisRepository
from invoice_recon.processing.document_pipeline import DocumentProcessor
from invoice_recon.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


async def run_document_job(ctx: dict[str, Any], job_id: str) -> dict[str, Any]:
    """Run a document processing job.

    Args:
        ctx: arq context (contains redis connection)
        job_id: Job created by the API

    Returns:
        Final job snapshot as dict
    """
    logger.info(f"Worker picked up document job {job_id}")
    processor: DocumentProcessor = ctx.get("document_processor") or _document_processor(ctx)
    job = await processor.run(job_id)
    return job.model_dump(mode="json")


async def run_export_job(ctx: dict[str, Any], job_id: str) -> dict[str, Any]:
    """Run a bulk export job.

    Args:
        ctx: arq context (contains redis connection)
        job_id: Job created by the API

    Returns:
        Final job snapshot as dict
    """
    logger.info(f"Worker picked up export job {job_id}")
    processor: ExportProcessor = ctx.get("export_processor") or _export_processor(ctx)
    job = await processor.run(job_id)
    return job.model_dump(mode="json")


def _document_processor(ctx: dict[str, Any]) -> DocumentProcessor:
    settings: Settings = ctx.get("settings") or get_settings()
    return DocumentProcessor(
        settings,
        RedisJobStore(ctx["redis"], ttl_seconds=settings.job_ttl_seconds),
        ctx.get("repository") or RedisRepository(ctx["redis"]),
        ctx.get("extraction_provider") or create_extraction_provider(settings),
    )


def _export_processor(ctx: dict[str, Any]) -> ExportProcessor:
    settings: Settings = ctx.get("settings") or get_settings()
    return ExportProcessor(
        settings,
        RedisJobStore(ctx["redis"], ttl_seconds=settings.job_ttl_seconds),
        ctx.get("repository") or RedisRepository(ctx["redis"]),
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services."""
    logger.info("Worker starting up...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["repository"] = RedisRepository(ctx["redis"])
    ctx["extraction_provider"] = create_extraction_provider(settings)
    ctx["document_processor"] = _document_processor(ctx)
    ctx["export_processor"] = _export_processor(ctx)
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")


class WorkerSettings:
    """arq worker settings.

    Run with: arq invoice_recon.queue.tasks.WorkerSettings
    """

    functions = [run_document_job, run_export_job]
    on_startup = startup
    on_shutdown = shutdown

    # Default values, overridden from configuration by the worker runner
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Get Redis settings from configuration."""
        return RedisSettings.from_dsn(get_settings().redis_url)
