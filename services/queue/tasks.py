"""Async task definitions for batch processing.

Uses arq (async Redis queue) for background task processing.
Runs batch jobs through the BatchOrchestrator and periodically re-enqueues jobs
that were never picked up or whose worker died mid-run.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import logging
from typing import Any

import httpx
from arq import cron

from services.batch.boundary import BoundaryDetector
from services.batch.credits import CreditLedger, InMemoryCreditLedger, RedisCreditLedger
from services.batch.drafts import RedisDraftSink
from services.batch.extraction import HttpInvoiceExtractor, HttpPageClassifier
from services.batch.models import JobStatus
from services.batch.orchestrator import BatchOrchestrator
from services.batch.splitter import PdfSplitter
from services.batch.store import JobStore, RedisJobStore
from services.format.registry import build_default_registry
from services.shared.config import Settings, get_settings
from services.shared.errors import CreditInsufficient, JobNotFoundError

logger = logging.getLogger(__name__)

PROCESS_BATCH_JOB = "process_batch_job"


def queue_job_id(job_id: str, attempt: int = 0) -> str:
    """arq job id for one run of a batch job.

    arq refuses a second enqueue while a job with the same id is queued, running or
    has a kept result, so each recovery of a stuck job runs under a new attempt id.
    """
    if attempt == 0:
        return f"process-batch:{job_id}"
    return f"process-batch:{job_id}:retry-{attempt}"


async def enqueue_batch_job(redis: Any, job_id: str, attempt: int = 0) -> bool:
    """Enqueue a batch job for processing.

    Args:
        redis: arq pool
        job_id: Batch job identifier
        attempt: Recovery attempt, 0 for the first run

    Returns:
        True if enqueued, False if a run for this job is already queued
    """
    job = await redis.enqueue_job(PROCESS_BATCH_JOB, job_id, _job_id=queue_job_id(job_id, attempt))
    if job is None:
        logger.info(f"Batch job {job_id} already queued")
        return False
    logger.info(f"Enqueued batch job {job_id}")
    return True


def create_credit_ledger(settings: Settings, redis: Any) -> CreditLedger:
    if settings.credit_backend == "memory":
        logger.warning("Using in-memory credit ledger; balances are not shared between workers")
        return InMemoryCreditLedger()
    return RedisCreditLedger(redis, settings.credit_key_ttl_seconds)


async def process_batch_job(ctx: dict[str, Any], job_id: str) -> dict[str, Any]:
    """Process one batch job.

    Args:
        ctx: arq context (contains redis connection and the orchestrator)
        job_id: Batch job identifier

    Returns:
        Summary dict with job_id, status and segment counts
    """
    logger.info(f"Processing batch job {job_id}")
    orchestrator: BatchOrchestrator = ctx["orchestrator"]

    try:
        job = await orchestrator.process_job(job_id)
    except JobNotFoundError as e:
        logger.error(f"Batch job {job_id} dropped: {e}")
        return {"job_id": job_id, "status": "not_found", "error": str(e)}
    except CreditInsufficient as e:
        return {"job_id": job_id, "status": JobStatus.FAILED.value, "error": str(e)}

    return {
        "job_id": job.id,
        "status": job.status.value,
        "total_files": job.total_files,
        "completed_files": job.completed_files,
        "failed_files": job.failed_files,
    }


async def recover_stale_jobs(ctx: dict[str, Any]) -> int:
    """Re-enqueue stale pending jobs and reset stuck processing jobs.

    Returns:
        Number of jobs re-enqueued
    """
    settings: Settings = ctx["settings"]
    store: JobStore = ctx["job_store"]

    stale = await store.list_stale(settings.stale_pending_seconds, settings.stuck_processing_seconds)
    recovered = 0
    for job in stale:
        if job.status == JobStatus.PROCESSING:
            job.recovery_attempts += 1
            logger.warning(
                f"Batch job {job.id} stuck in processing, resetting to pending "
                f"(recovery attempt {job.recovery_attempts})"
            )
            job.status = JobStatus.PENDING
            job.touch()
            await store.update(job)
        if await enqueue_batch_job(ctx["redis"], job.id, job.recovery_attempts):
            recovered += 1

    if recovered:
        logger.info(f"Recovered {recovered} stale batch job(s)")
    return recovered


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize services.

    Called once when worker starts. Initializes shared services
    to avoid re-creating them for each job.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    redis = ctx["redis"]
    client = httpx.AsyncClient(timeout=settings.extraction_timeout)
    splitter = PdfSplitter()
    registry = build_default_registry(settings)

    ctx["settings"] = settings
    ctx["http_client"] = client
    ctx["registry"] = registry
    ctx["job_store"] = RedisJobStore(redis, settings.job_ttl_seconds)
    ctx["credit_ledger"] = create_credit_ledger(settings, redis)
    ctx["orchestrator"] = BatchOrchestrator(
        settings=settings,
        store=ctx["job_store"],
        ledger=ctx["credit_ledger"],
        extractor=HttpInvoiceExtractor(settings, client),
        detector=BoundaryDetector(settings, HttpPageClassifier(settings, client), splitter),
        sink=RedisDraftSink(redis, settings.job_ttl_seconds),
        splitter=splitter,
        registry=registry,
    )
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")
    client: httpx.AsyncClient | None = ctx.get("http_client")
    if client is not None:
        await client.aclose()


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions and the recovery cron job
    - Redis connection settings
    - Job timeout and concurrency
    """

    functions = [process_batch_job]
    cron_jobs = [cron(recover_stale_jobs, second={0, 15, 30, 45}, run_at_startup=True)]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> Any:
        """Get Redis settings from configuration."""
        from arq.connections import RedisSettings as ArqRedisSettings

        settings = get_settings()
        return ArqRedisSettings.from_dsn(settings.redis_url)
