"""Unit tests for async queue functionality.

Tests task definitions, stale-job recovery and queue configuration.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.batch.credits import InMemoryCreditLedger, RedisCreditLedger
from services.batch.models import BatchJob, JobStatus, SourceDocument, utc_now
from services.batch.orchestrator import BatchOrchestrator
from services.batch.store import InMemoryJobStore, RedisJobStore
from services.queue.tasks import (
    PROCESS_BATCH_JOB,
    WorkerSettings,
    create_credit_ledger,
    enqueue_batch_job,
    process_batch_job,
    queue_job_id,
    recover_stale_jobs,
    shutdown,
    startup,
)
from services.queue.worker import configure_worker
from services.shared.config import Settings
from services.shared.errors import CreditInsufficient, JobNotFoundError


@pytest.fixture
def queue_settings() -> Settings:
    """Create test settings with queue enabled."""
    return Settings(
        queue_enabled=True,
        redis_url="redis://localhost:6379/0",
        queue_max_jobs=5,
        queue_job_timeout=60,
    )


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create mock arq pool."""
    mock = AsyncMock()
    mock.enqueue_job.return_value = MagicMock()
    return mock


def _job(status: JobStatus, age_seconds: int) -> BatchJob:
    return BatchJob(
        owner_id="owner-1",
        status=status,
        sources=[SourceDocument(filename="a.pdf", mime_type="application/pdf", content=b"%PDF")],
        updated_at=utc_now() - timedelta(seconds=age_seconds),
    )


class TestEnqueue:
    """Test job submission."""

    @pytest.mark.asyncio
    async def test_enqueue_uses_stable_job_id(self, mock_redis: AsyncMock) -> None:
        """Should deduplicate runs through the arq job id."""
        assert await enqueue_batch_job(mock_redis, "job-1") is True

        mock_redis.enqueue_job.assert_awaited_once_with(
            PROCESS_BATCH_JOB, "job-1", _job_id="process-batch:job-1"
        )
        assert queue_job_id("job-1") == "process-batch:job-1"
        assert queue_job_id("job-1", attempt=2) == "process-batch:job-1:retry-2"

    @pytest.mark.asyncio
    async def test_enqueue_already_queued(self, mock_redis: AsyncMock) -> None:
        mock_redis.enqueue_job.return_value = None

        assert await enqueue_batch_job(mock_redis, "job-1") is False


class TestProcessBatchJob:
    """Test the arq task wrapper."""

    @pytest.mark.asyncio
    async def test_returns_summary(self) -> None:
        job = BatchJob(
            owner_id="owner-1",
            status=JobStatus.PARTIAL_SUCCESS,
            total_files=3,
            completed_files=2,
            failed_files=1,
        )
        orchestrator = AsyncMock(spec=BatchOrchestrator)
        orchestrator.process_job.return_value = job

        result = await process_batch_job({"orchestrator": orchestrator}, job.id)

        assert result == {
            "job_id": job.id,
            "status": "partial_success",
            "total_files": 3,
            "completed_files": 2,
            "failed_files": 1,
        }

    @pytest.mark.asyncio
    async def test_missing_job_is_dropped(self) -> None:
        orchestrator = AsyncMock(spec=BatchOrchestrator)
        orchestrator.process_job.side_effect = JobNotFoundError("Batch job x not found")

        result = await process_batch_job({"orchestrator": orchestrator}, "x")

        assert result["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_insufficient_credits_is_terminal(self) -> None:
        orchestrator = AsyncMock(spec=BatchOrchestrator)
        orchestrator.process_job.side_effect = CreditInsufficient("owner-1", 3)

        result = await process_batch_job({"orchestrator": orchestrator}, "x")

        assert result["status"] == "failed"
        assert "Insufficient credits" in result["error"]

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        """Should let arq record the failure."""
        orchestrator = AsyncMock(spec=BatchOrchestrator)
        orchestrator.process_job.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await process_batch_job({"orchestrator": orchestrator}, "x")


class TestRecoverStaleJobs:
    """Test the recovery cron task."""

    @pytest.mark.asyncio
    async def test_reenqueues_stale_and_resets_stuck(self, settings: Settings, mock_redis: AsyncMock) -> None:
        store = InMemoryJobStore()
        pending = _job(JobStatus.PENDING, age_seconds=60)
        stuck = _job(JobStatus.PROCESSING, age_seconds=3600)
        running = _job(JobStatus.PROCESSING, age_seconds=30)
        done = _job(JobStatus.COMPLETED, age_seconds=3600)
        for job in (pending, stuck, running, done):
            await store.create(job)

        recovered = await recover_stale_jobs({"settings": settings, "job_store": store, "redis": mock_redis})

        assert recovered == 2
        enqueued = {call.args[1] for call in mock_redis.enqueue_job.await_args_list}
        assert enqueued == {pending.id, stuck.id}
        assert (await store.get(stuck.id)).status == JobStatus.PENDING
        assert (await store.get(running.id)).status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stuck_job_gets_new_queue_id(self, settings: Settings, mock_redis: AsyncMock) -> None:
        """Should re-enqueue a reset job even if its timed-out run left a kept result."""
        store = InMemoryJobStore()
        stuck = _job(JobStatus.PROCESSING, age_seconds=3600)
        await store.create(stuck)

        async def enqueue(function: str, job_id: str, _job_id: str) -> MagicMock | None:
            # result of the first run is still kept under the original id
            return None if _job_id == queue_job_id(job_id) else MagicMock()

        mock_redis.enqueue_job.side_effect = enqueue

        recovered = await recover_stale_jobs({"settings": settings, "job_store": store, "redis": mock_redis})

        assert recovered == 1
        mock_redis.enqueue_job.assert_awaited_once_with(
            PROCESS_BATCH_JOB, stuck.id, _job_id=f"process-batch:{stuck.id}:retry-1"
        )
        assert (await store.get(stuck.id)).recovery_attempts == 1

    @pytest.mark.asyncio
    async def test_already_queued_jobs_are_not_counted(self, settings: Settings, mock_redis: AsyncMock) -> None:
        store = InMemoryJobStore()
        await store.create(_job(JobStatus.PENDING, age_seconds=60))
        mock_redis.enqueue_job.return_value = None

        assert await recover_stale_jobs({"settings": settings, "job_store": store, "redis": mock_redis}) == 0


class TestWorkerLifecycle:
    """Test worker startup and shutdown hooks."""

    @pytest.mark.asyncio
    async def test_startup_builds_services(self, queue_settings: Settings, mock_redis: AsyncMock) -> None:
        ctx: dict[str, object] = {"redis": mock_redis}

        with patch("services.queue.tasks.get_settings", return_value=queue_settings):
            await startup(ctx)

        assert isinstance(ctx["orchestrator"], BatchOrchestrator)
        assert isinstance(ctx["job_store"], RedisJobStore)
        assert isinstance(ctx["credit_ledger"], RedisCreditLedger)
        assert len(ctx["registry"].list_formats()) == 9

        await shutdown(ctx)
        assert ctx["http_client"].is_closed

    def test_memory_ledger_backend(self) -> None:
        ledger = create_credit_ledger(Settings(credit_backend="memory"), AsyncMock())

        assert isinstance(ledger, InMemoryCreditLedger)

    def test_redis_ledger_gets_key_ttl(self) -> None:
        ledger = create_credit_ledger(Settings(credit_key_ttl_seconds=120), AsyncMock())

        assert isinstance(ledger, RedisCreditLedger)
        assert ledger._key_ttl_seconds == 120


class TestWorkerSettings:
    """Test WorkerSettings configuration."""

    def test_worker_functions_registered(self) -> None:
        """Should have process_batch_job task and the recovery cron registered."""
        assert process_batch_job in WorkerSettings.functions
        assert [job.coroutine for job in WorkerSettings.cron_jobs] == [recover_stale_jobs]

    def test_get_redis_settings(self, queue_settings: Settings) -> None:
        """Should parse Redis URL correctly."""
        with patch("services.queue.tasks.get_settings", return_value=queue_settings):
            redis_settings = WorkerSettings.get_redis_settings()
            assert redis_settings.host == "localhost"
            assert redis_settings.port == 6379
            assert redis_settings.database == 0

    def test_configure_worker_applies_limits(self, queue_settings: Settings) -> None:
        """Should copy queue limits onto WorkerSettings."""
        with patch("services.queue.tasks.get_settings", return_value=queue_settings):
            worker_settings = configure_worker(queue_settings)

        assert worker_settings is WorkerSettings
        assert worker_settings.max_jobs == 5
        assert worker_settings.job_timeout == 60
        assert worker_settings.redis_settings.host == "localhost"


class TestQueueSettings:
    """Test queue configuration via Settings."""

    def test_default_queue_disabled(self) -> None:
        """Queue should be disabled by default."""
        settings = Settings(_env_file=None)
        assert settings.queue_enabled is False

    def test_queue_settings_from_env(self) -> None:
        """Should read queue settings from environment."""
        import os

        os.environ["APP_QUEUE_ENABLED"] = "true"
        os.environ["APP_REDIS_URL"] = "redis://redis-server:6380/1"
        os.environ["APP_QUEUE_MAX_JOBS"] = "20"

        try:
            settings = Settings(_env_file=None)
            assert settings.queue_enabled is True
            assert settings.redis_url == "redis://redis-server:6380/1"
            assert settings.queue_max_jobs == 20
        finally:
            del os.environ["APP_QUEUE_ENABLED"]
            del os.environ["APP_REDIS_URL"]
            del os.environ["APP_QUEUE_MAX_JOBS"]
