"""Sequential step execution for async jobs.

The runner drives one job through its steps. Before and after every step it
reloads the snapshot from the store: cancellation is cooperative, so a step
that finishes after its job was cancelled has its result discarded and the
job stays cancelled. Writes go through JobStore.save_if_status, so a cancel
landing between that reload and the write still wins.

Step data lives only in the runner's memory. A job found processing past its
first step (a redelivered queue job) is therefore rewound and run from the
start.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from invoice_recon.jobs.engine import JobStateMachine
from invoice_recon.jobs.schema import AsyncJob, JobStatus, StepStatus
from invoice_recon.jobs.store import JobStore
from invoice_recon.shared import metrics
from invoice_recon.shared.errors import ReconciliationError

logger = logging.getLogger(__name__)


class JobInterrupted(Exception):
    """Raised inside a step when its job is no longer processing."""


@dataclass
class StepOutcome:
    confidence: float | None = None


@dataclass
class StepContext:
    """State shared by the steps of one run.

    Attributes:
        job_id: Job being executed
        data: Values handed from one step to the next
        result: Summary stored on the job when it completes
    """

    job_id: str
    store: JobStore
    machine: JobStateMachine
    data: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None

    async def ensure_active(self) -> AsyncJob:
        """Reload the job and stop the step if it was cancelled meanwhile."""
        job = await self.store.get(self.job_id)
        if job.status != JobStatus.PROCESSING:
            raise JobInterrupted(f"Job {self.job_id} is {job.status.value}")
        return job

    async def report_records(self, processed: int, total: int | None = None) -> None:
        """Record how many records have been handled so far."""
        job = await self.ensure_active()
        self.machine.record_progress(job, processed, total)
        if not await self.store.save_if_status(job, JobStatus.PROCESSING):
            raise JobInterrupted(f"Job {self.job_id} changed while recording progress")


StepHandler = Callable[[StepContext], Awaitable[StepOutcome | None]]


class JobRunner:
    """Executes a job's steps in order against a JobStore."""

    def __init__(self, store: JobStore, machine: JobStateMachine | None = None) -> None:
        self.store = store
        self.machine = machine or JobStateMachine()

    async def run(self, job_id: str, handlers: dict[str, StepHandler]) -> AsyncJob:
        """Run every remaining step of a job.

        A pending job is started first. A job already processing continues
        from its first step: after retry that is where it stands, and after
        an interrupted run it is rewound there. Terminal jobs are left alone.

        Args:
            job_id: Job to execute
            handlers: Step id to coroutine performing that step

        Returns:
            Final job snapshot
        """
        job = await self.store.get(job_id)
        missing = [step.id for step in job.steps if step.id not in handlers]
        if missing:
            raise ValueError(f"No handler for steps: {', '.join(missing)}")

        expected: JobStatus | None = None
        if job.status == JobStatus.PENDING:
            self.machine.start(job)
            expected = JobStatus.PENDING
        elif job.status == JobStatus.PROCESSING and not self._at_first_step(job):
            logger.warning(f"Job {job_id} was left mid-run, restarting it")
            self.machine.restart(job)
            expected = JobStatus.PROCESSING
        elif job.status != JobStatus.PROCESSING:
            logger.info(f"Job {job_id} is {job.status.value}, nothing to run")
            return job
        if expected is not None and not await self.store.save_if_status(job, expected):
            return self._stopped(await self.store.get(job_id))

        context = StepContext(job_id=job_id, store=self.store, machine=self.machine)
        for step_id in [step.id for step in job.steps]:
            job = await self.store.get(job_id)
            if job.status != JobStatus.PROCESSING:
                return self._stopped(job)
            step = job.step(step_id)
            if step is None or step.status == StepStatus.COMPLETED:
                continue

            logger.info(f"Job {job_id}: running step '{step_id}'")
            try:
                outcome = await handlers[step_id](context)
            except JobInterrupted:
                return self._stopped(await self.store.get(job_id))
            except ReconciliationError as e:
                logger.warning(f"Job {job_id}: step '{step_id}' failed: {e}")
                return await self._fail(job_id, step_id, str(e))
            except Exception as e:
                logger.exception(f"Job {job_id}: step '{step_id}' raised an unexpected error")
                return await self._fail(job_id, step_id, f"Internal error: {e}")

            job = await self.store.get(job_id)
            if job.status != JobStatus.PROCESSING:
                logger.info(f"Job {job_id}: discarding result of step '{step_id}'")
                return self._stopped(job)

            if context.result is not None:
                job.result = dict(context.result)
            self.machine.complete_step(
                job, step_id, outcome.confidence if outcome is not None else None
            )
            if not await self.store.save_if_status(job, JobStatus.PROCESSING):
                logger.info(f"Job {job_id}: discarding result of step '{step_id}'")
                return self._stopped(await self.store.get(job_id))

        job = await self.store.get(job_id)
        if job.status == JobStatus.COMPLETED:
            metrics.jobs_finished_total.labels(kind=job.kind.value, status="completed").inc()
        return job

    async def _fail(self, job_id: str, step_id: str, error: str) -> AsyncJob:
        job = await self.store.get(job_id)
        if job.status != JobStatus.PROCESSING:
            return self._stopped(job)
        self.machine.fail_step(job, step_id, error)
        if not await self.store.save_if_status(job, JobStatus.PROCESSING):
            return self._stopped(await self.store.get(job_id))
        metrics.jobs_finished_total.labels(kind=job.kind.value, status="failed").inc()
        return job

    @staticmethod
    def _at_first_step(job: AsyncJob) -> bool:
        first, *rest = job.steps
        return first.status == StepStatus.IN_PROGRESS and all(
            step.status == StepStatus.PENDING for step in rest
        )

    def _stopped(self, job: AsyncJob) -> AsyncJob:
        logger.info(f"Job {job.id} stopped while {job.status.value}")
        return job
