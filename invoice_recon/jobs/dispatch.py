"""Hand-off of created jobs to whatever executes them.

InlineDispatcher runs jobs as tasks in the current event loop (development,
tests). ArqDispatcher enqueues them on the arq queue for worker processes.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from arq.connections import ArqRedis

from invoice_recon.jobs.schema import JobKind

logger = logging.getLogger(__name__)

# arq function names registered in invoice_recon.queue.tasks.WorkerSettings
TASK_NAMES = {
    JobKind.DOCUMENT_PROCESSING: "run_document_job",
    JobKind.BULK_EXPORT: "run_export_job",
}

JobExecutor = Callable[[str], Awaitable[Any]]


class JobDispatcher(ABC):
    @abstractmethod
    async def dispatch(self, kind: JobKind, job_id: str) -> None:
        """Schedule execution of a stored job."""


class InlineDispatcher(JobDispatcher):
    """Runs jobs in-process.

    Args:
        executors: Job kind to coroutine function taking the job id
        wait: Await the job before returning instead of running it in the background
    """

    def __init__(self, executors: dict[JobKind, JobExecutor], wait: bool = False) -> None:
        self._executors = executors
        self._wait = wait
        self._tasks: set[asyncio.Task[Any]] = set()

    async def dispatch(self, kind: JobKind, job_id: str) -> None:
        executor = self._executors.get(kind)
        if executor is None:
            raise ValueError(f"No executor registered for job kind {kind.value}")
        if self._wait:
            await executor(job_id)
            return
        task = asyncio.create_task(executor(job_id), name=f"job-{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        logger.info(f"Dispatched {kind.value} job {job_id} in-process")

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"In-process {task.get_name()} crashed: {error!r}", exc_info=error)


class ArqDispatcher(JobDispatcher):
    """Enqueues jobs for arq workers."""

    def __init__(self, pool: ArqRedis) -> None:
        self._pool = pool

    async def dispatch(self, kind: JobKind, job_id: str) -> None:
        await self._pool.enqueue_job(TASK_NAMES[kind], job_id)
        logger.info(f"Enqueued {kind.value} job {job_id}")
