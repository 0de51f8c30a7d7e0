"""Batch job persistence.

Jobs are serialized as JSON with last-write-wins semantics per job. The Redis
implementation keeps an index of non-terminal jobs so that the recovery task can find
stale ones without scanning the keyspace.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from services.batch.models import BatchJob, JobStatus, utc_now

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "batch_job:"
ACTIVE_JOBS_KEY = "batch_jobs:active"


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


def is_stale(job: BatchJob, pending_seconds: float, processing_seconds: float) -> bool:
    """Pending beyond pending_seconds, or processing beyond processing_seconds."""
    age = utc_now() - job.updated_at
    if job.status == JobStatus.PENDING:
        return age > timedelta(seconds=pending_seconds)
    if job.status == JobStatus.PROCESSING:
        return age > timedelta(seconds=processing_seconds)
    return False


class JobStore(ABC):
    """Abstract batch job store."""

    @abstractmethod
    async def create(self, job: BatchJob) -> None:
        pass

    @abstractmethod
    async def update(self, job: BatchJob) -> None:
        pass

    @abstractmethod
    async def get(self, job_id: str) -> BatchJob | None:
        pass

    @abstractmethod
    async def list_stale(self, pending_seconds: float, processing_seconds: float) -> list[BatchJob]:
        """Jobs that the recovery task should re-run."""
        pass


class InMemoryJobStore(JobStore):
    """Process-local store. Jobs are kept as JSON so callers never share instances."""

    def __init__(self) -> None:
        self._jobs: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: BatchJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_dump_json()

    async def update(self, job: BatchJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_dump_json()

    async def get(self, job_id: str) -> BatchJob | None:
        raw = self._jobs.get(job_id)
        return BatchJob.model_validate_json(raw) if raw else None

    async def list_stale(self, pending_seconds: float, processing_seconds: float) -> list[BatchJob]:
        jobs = [BatchJob.model_validate_json(raw) for raw in list(self._jobs.values())]
        return [job for job in jobs if is_stale(job, pending_seconds, processing_seconds)]


class RedisJobStore(JobStore):
    """Redis-backed store keyed ``batch_job:{id}`` with a TTL.

    Works with any redis.asyncio-compatible client, including the arq pool.
    """

    def __init__(self, redis: Any, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def create(self, job: BatchJob) -> None:
        await self._redis.set(job_key(job.id), job.model_dump_json(), ex=self._ttl)
        await self._redis.sadd(ACTIVE_JOBS_KEY, job.id)

    async def update(self, job: BatchJob) -> None:
        await self._redis.set(job_key(job.id), job.model_dump_json(), ex=self._ttl)
        if job.status.is_terminal:
            await self._redis.srem(ACTIVE_JOBS_KEY, job.id)
        else:
            await self._redis.sadd(ACTIVE_JOBS_KEY, job.id)

    async def get(self, job_id: str) -> BatchJob | None:
        raw = await self._redis.get(job_key(job_id))
        if raw is None:
            return None
        return BatchJob.model_validate_json(raw)

    async def list_stale(self, pending_seconds: float, processing_seconds: float) -> list[BatchJob]:
        stale: list[BatchJob] = []
        for member in await self._redis.smembers(ACTIVE_JOBS_KEY):
            job_id = member.decode() if isinstance(member, bytes) else str(member)
            job = await self.get(job_id)
            if job is None:
                # Expired record
                await self._redis.srem(ACTIVE_JOBS_KEY, job_id)
                continue
            if is_stale(job, pending_seconds, processing_seconds):
                stale.append(job)
        return stale
