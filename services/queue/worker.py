"""arq worker runner for batch jobs.

Run with: python -m services.queue.worker
Or: arq services.queue.tasks.WorkerSettings

Queue limits come from settings; the stale-job recovery cron is registered on
WorkerSettings itself.
"""

import logging

from arq import run_worker

from services.queue.tasks import WorkerSettings
from services.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_worker(settings: Settings) -> type[WorkerSettings]:
    """Apply Redis connection and queue limits from settings.

    Args:
        settings: Application settings

    Returns:
        The configured WorkerSettings class
    """
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout
    return WorkerSettings


def main() -> None:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(
        f"Starting batch worker: redis={settings.redis_url} max_jobs={settings.queue_max_jobs} "
        f"job_timeout={settings.queue_job_timeout}s"
    )
    logger.info(
        f"Segments per job: {settings.batch_concurrency}, extraction attempts: "
        f"{settings.extraction_max_retries}, credit ledger: {settings.credit_backend}"
    )
    if settings.credit_backend == "memory":
        logger.warning("In-memory credit ledger configured; run a single worker only")

    run_worker(configure_worker(settings))  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
