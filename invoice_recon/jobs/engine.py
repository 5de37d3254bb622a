"""State machine for async jobs.

Job:  pending -> processing -> completed | failed | cancelled
Step: pending -> in_progress -> completed | error

Every transition validates the current state before touching anything, so
a rejected transition raises JobStateError and leaves the job unchanged.
Once a job is terminal no step moves again; retry is the only way out of
failed, and cancelled is final.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from invoice_recon.jobs.schema import (
    AsyncJob,
    JobKind,
    JobStatus,
    JobStep,
    ProgressMode,
    StepSpec,
    StepStatus,
    utcnow,
)
from invoice_recon.shared.errors import JobStateError

logger = logging.getLogger(__name__)


class JobStateMachine:
    """Validated transitions over AsyncJob snapshots (single writer per job)."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def create(
        self,
        kind: JobKind,
        steps: list[StepSpec],
        progress_mode: ProgressMode = ProgressMode.STEPS,
        total_records: int = 0,
    ) -> AsyncJob:
        """Create a pending job for an ordered list of steps."""
        if not steps:
            raise ValueError("A job needs at least one step")
        if len({spec.id for spec in steps}) != len(steps):
            raise ValueError("Step ids must be unique")
        now = self._clock()
        return AsyncJob(
            kind=kind,
            steps=[
                JobStep(
                    id=spec.id, label=spec.label, estimated_duration_ms=spec.estimated_duration_ms
                )
                for spec in steps
            ],
            progress_mode=progress_mode,
            total_records=total_records,
            created_at=now,
            updated_at=now,
        )

    def start(self, job: AsyncJob) -> AsyncJob:
        """pending -> processing, first step in_progress."""
        self._require_status(job, JobStatus.PENDING, "start")
        now = self._clock()
        job.status = JobStatus.PROCESSING
        self._activate(job.steps[0], now)
        job.updated_at = now
        logger.info(f"Job {job.id} started ({job.kind.value})")
        return job

    def complete_step(
        self, job: AsyncJob, step_id: str, confidence: float | None = None
    ) -> AsyncJob:
        """Complete the in-progress step and activate the next one.

        Completing the last step completes the job.
        """
        self._require_status(job, JobStatus.PROCESSING, f"complete step '{step_id}'")
        index, step = self._require_active_step(job, step_id)
        if confidence is not None and not 0 <= confidence <= 1:
            raise ValueError("confidence must be within [0, 1]")

        now = self._clock()
        step.status = StepStatus.COMPLETED
        step.confidence = confidence
        step.completed_at = now
        job.updated_at = now

        if index + 1 < len(job.steps):
            self._activate(job.steps[index + 1], now)
            if job.progress_mode == ProgressMode.STEPS:
                job.progress_pct = max(job.progress_pct, self._step_progress(job))
        else:
            job.status = JobStatus.COMPLETED
            job.progress_pct = 100
            logger.info(f"Job {job.id} completed")
        return job

    def fail_step(self, job: AsyncJob, step_id: str, error: str) -> AsyncJob:
        """Mark the in-progress step as errored and fail the job.

        Later steps stay pending.
        """
        self._require_status(job, JobStatus.PROCESSING, f"fail step '{step_id}'")
        _, step = self._require_active_step(job, step_id)
        now = self._clock()
        step.status = StepStatus.ERROR
        step.completed_at = now
        job.status = JobStatus.FAILED
        job.error = error
        job.updated_at = now
        logger.info(f"Job {job.id} failed at step '{step_id}': {error}")
        return job

    def cancel(self, job: AsyncJob) -> AsyncJob:
        """processing -> cancelled. Irreversible.

        The in-progress step returns to pending; with the job terminal it
        never moves again.
        """
        self._require_status(job, JobStatus.PROCESSING, "cancel")
        now = self._clock()
        for step in job.steps:
            if step.status == StepStatus.IN_PROGRESS:
                step.status = StepStatus.PENDING
                step.started_at = None
        job.status = JobStatus.CANCELLED
        job.updated_at = now
        logger.info(f"Job {job.id} cancelled")
        return job

    def retry(self, job: AsyncJob) -> AsyncJob:
        """failed -> processing, restarting the whole step sequence."""
        self._require_status(job, JobStatus.FAILED, "retry")
        self._reset_steps(job)
        job.status = JobStatus.PROCESSING
        job.progress_pct = 0
        logger.info(f"Job {job.id} retried")
        return job

    def restart(self, job: AsyncJob) -> AsyncJob:
        """Rewind a processing job to its first step.

        Used when a worker picks up a job another worker left mid-run.
        progress_pct is kept and only moves again once the rerun passes it.
        """
        self._require_status(job, JobStatus.PROCESSING, "restart")
        self._reset_steps(job)
        logger.info(f"Job {job.id} restarted from step '{job.steps[0].id}'")
        return job

    def _reset_steps(self, job: AsyncJob) -> None:
        now = self._clock()
        for step in job.steps:
            step.status = StepStatus.PENDING
            step.confidence = None
            step.started_at = None
            step.completed_at = None
        job.processed_records = 0
        job.error = None
        job.result = None
        self._activate(job.steps[0], now)
        job.updated_at = now

    def record_progress(
        self, job: AsyncJob, processed_records: int, total_records: int | None = None
    ) -> AsyncJob:
        """Update record counters; record-mode jobs derive progress_pct from them.

        Progress stays below 100 until the last step completes.
        """
        self._require_status(job, JobStatus.PROCESSING, "record progress")
        total = job.total_records if total_records is None else total_records
        if total < 0 or processed_records < 0:
            raise ValueError("Record counts must not be negative")
        if processed_records > total:
            raise ValueError(
                f"processed_records ({processed_records}) exceeds total_records ({total})"
            )
        if processed_records < job.processed_records:
            raise JobStateError(
                f"Job {job.id} processed record count cannot decrease "
                f"({job.processed_records} -> {processed_records})",
                job_id=job.id,
                current=job.status.value,
            )

        job.total_records = total
        job.processed_records = processed_records
        if job.progress_mode == ProgressMode.RECORDS and total > 0:
            pct = min(99, processed_records * 100 // total)
            job.progress_pct = max(job.progress_pct, pct)
        job.updated_at = self._clock()
        return job

    def _activate(self, step: JobStep, now: datetime) -> None:
        step.status = StepStatus.IN_PROGRESS
        step.started_at = now

    def _step_progress(self, job: AsyncJob) -> int:
        total = sum(step.estimated_duration_ms for step in job.steps)
        done = sum(
            step.estimated_duration_ms for step in job.steps if step.status == StepStatus.COMPLETED
        )
        return min(99, round(done * 100 / total))

    def _require_status(self, job: AsyncJob, expected: JobStatus, action: str) -> None:
        if job.status != expected:
            raise JobStateError(
                f"Cannot {action} job {job.id}: status is {job.status.value}, "
                f"expected {expected.value}",
                job_id=job.id,
                current=job.status.value,
            )

    def _require_active_step(self, job: AsyncJob, step_id: str) -> tuple[int, JobStep]:
        for index, step in enumerate(job.steps):
            if step.id != step_id:
                continue
            if step.status != StepStatus.IN_PROGRESS:
                raise JobStateError(
                    f"Step '{step_id}' of job {job.id} is {step.status.value}, "
                    f"expected in_progress",
                    job_id=job.id,
                    current=step.status.value,
                )
            return index, step
        raise JobStateError(f"Job {job.id} has no step '{step_id}'", job_id=job.id)
