"""Job snapshot storage.

InMemoryJobStore serves a single process (API with in-process dispatch and
tests). RedisJobStore shares jobs between the API and arq workers using the
key layout job:{id}.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import WatchError

from invoice_recon.jobs.schema import AsyncJob, JobStatus
from invoice_recon.shared.errors import JobNotFoundError

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Persists job snapshots, the request payload that created them, and
    any artifact they produce.

    get() always returns a copy; callers mutate it through the state machine
    and save() it back.
    """

    @abstractmethod
    async def get(self, job_id: str) -> AsyncJob:
        """Load a job snapshot.

        Raises:
            JobNotFoundError: If no job exists with this id
        """

    @abstractmethod
    async def save(self, job: AsyncJob) -> None:
        """Store a job snapshot, replacing any earlier one."""

    @abstractmethod
    async def save_if_status(self, job: AsyncJob, expected: JobStatus) -> bool:
        """Store a job snapshot only if the stored one still has status expected.

        Check and write happen atomically, so a concurrent cancel is never
        overwritten by a stale snapshot.

        Returns:
            False if the stored job is missing or moved to another status
        """

    @abstractmethod
    async def save_payload(self, job_id: str, payload: dict[str, Any]) -> None:
        """Store the request a job was created from, for execution and retry."""

    @abstractmethod
    async def get_payload(self, job_id: str) -> dict[str, Any] | None:
        """Load the request a job was created from."""

    @abstractmethod
    async def save_artifact(self, job_id: str, data: bytes) -> None:
        """Store a file produced by a job."""

    @abstractmethod
    async def get_artifact(self, job_id: str) -> bytes | None:
        """Load a file produced by a job."""


class InMemoryJobStore(JobStore):
    """Process-local job store."""

    def __init__(self) -> None:
        self._jobs: dict[str, AsyncJob] = {}
        self._payloads: dict[str, dict[str, Any]] = {}
        self._artifacts: dict[str, bytes] = {}

    async def get(self, job_id: str) -> AsyncJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job.model_copy(deep=True)

    async def save(self, job: AsyncJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def save_if_status(self, job: AsyncJob, expected: JobStatus) -> bool:
        current = self._jobs.get(job.id)
        if current is None or current.status != expected:
            return False
        self._jobs[job.id] = job.model_copy(deep=True)
        return True

    async def save_payload(self, job_id: str, payload: dict[str, Any]) -> None:
        self._payloads[job_id] = dict(payload)

    async def get_payload(self, job_id: str) -> dict[str, Any] | None:
        payload = self._payloads.get(job_id)
        return dict(payload) if payload is not None else None

    async def save_artifact(self, job_id: str, data: bytes) -> None:
        self._artifacts[job_id] = data

    async def get_artifact(self, job_id: str) -> bytes | None:
        return self._artifacts.get(job_id)


class RedisJobStore(JobStore):
    """Redis-backed job store shared by the API and queue workers.

    Keys expire after ttl_seconds (24h by default).
    """

    def __init__(self, redis: Redis, ttl_seconds: int = 86400) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def _job_key(job_id: str) -> str:
        return f"job:{job_id}"

    async def get(self, job_id: str) -> AsyncJob:
        raw = await self._redis.get(self._job_key(job_id))
        if raw is None:
            raise JobNotFoundError(job_id)
        return AsyncJob.model_validate_json(raw)

    async def save(self, job: AsyncJob) -> None:
        await self._redis.set(self._job_key(job.id), job.model_dump_json(), ex=self._ttl)

    async def save_if_status(self, job: AsyncJob, expected: JobStatus) -> bool:
        key = self._job_key(job.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None or AsyncJob.model_validate_json(raw).status != expected:
                    return False
                pipe.multi()
                pipe.set(key, job.model_dump_json(), ex=self._ttl)
                await pipe.execute()
            except WatchError:
                logger.info(f"Job {job.id} changed while saving, write dropped")
                return False
        return True

    async def save_payload(self, job_id: str, payload: dict[str, Any]) -> None:
        await self._redis.set(
            f"{self._job_key(job_id)}:payload", json.dumps(payload), ex=self._ttl
        )

    async def get_payload(self, job_id: str) -> dict[str, Any] | None:
        raw = await self._redis.get(f"{self._job_key(job_id)}:payload")
        if raw is None:
            return None
        payload: dict[str, Any] = json.loads(raw)
        return payload

    async def save_artifact(self, job_id: str, data: bytes) -> None:
        await self._redis.set(f"{self._job_key(job_id)}:artifact", data, ex=self._ttl)

    async def get_artifact(self, job_id: str) -> bytes | None:
        raw = await self._redis.get(f"{self._job_key(job_id)}:artifact")
        if raw is None:
            return None
        return raw if isinstance(raw, bytes) else str(raw).encode("utf-8")
