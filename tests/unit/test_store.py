"""Unit tests for batch job models and stores."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from services.batch.models import BatchJob, BatchResult, JobStatus, SegmentStatus, SourceDocument, utc_now
from services.batch.store import ACTIVE_JOBS_KEY, InMemoryJobStore, RedisJobStore, is_stale, job_key


def _job(**overrides: object) -> BatchJob:
    data: dict[str, object] = {
        "owner_id": "owner-1",
        "output_format": "peppol-bis",
        "sources": [SourceDocument(filename="a.pdf", mime_type="application/pdf", content=b"%PDF-1.4")],
    }
    data.update(overrides)
    return BatchJob.model_validate(data)


class TestBatchModels:
    """Test job serialization and counters."""

    def test_json_round_trip_keeps_source_bytes(self) -> None:
        job = _job()

        restored = BatchJob.model_validate_json(job.model_dump_json())

        assert restored.sources[0].content == b"%PDF-1.4"
        assert restored.status == JobStatus.PENDING

    def test_public_view_omits_sources(self) -> None:
        view = _job().public_view()

        assert "sources" not in view
        assert view["status"] == "pending"

    def test_recount(self) -> None:
        job = _job(
            results=[
                BatchResult(filename="a", status=SegmentStatus.SUCCESS),
                BatchResult(filename="b", status=SegmentStatus.FAILED),
                BatchResult(filename="c"),
            ]
        )

        job.recount()

        assert (job.total_files, job.completed_files, job.failed_files) == (3, 1, 1)

    def test_terminal_statuses(self) -> None:
        assert JobStatus.PARTIAL_SUCCESS.is_terminal
        assert not JobStatus.PROCESSING.is_terminal


class TestStaleness:
    """Test the recovery thresholds."""

    def test_pending_and_processing_thresholds(self) -> None:
        old = utc_now() - timedelta(seconds=30)

        assert is_stale(_job(updated_at=old), 10, 600)
        assert not is_stale(_job(status=JobStatus.PROCESSING, updated_at=old), 10, 600)
        assert is_stale(_job(status=JobStatus.PROCESSING, updated_at=old), 10, 20)
        assert not is_stale(_job(status=JobStatus.COMPLETED, updated_at=old), 0, 0)


class TestInMemoryJobStore:
    """Test the process-local store."""

    @pytest.mark.asyncio
    async def test_create_and_get_returns_copies(self) -> None:
        store = InMemoryJobStore()
        job = _job()
        await store.create(job)

        loaded = await store.get(job.id)
        loaded.status = JobStatus.FAILED

        assert (await store.get(job.id)).status == JobStatus.PENDING
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_list_stale(self) -> None:
        store = InMemoryJobStore()
        stale = _job(updated_at=utc_now() - timedelta(seconds=60))
        fresh = _job()
        await store.create(stale)
        await store.create(fresh)

        assert [job.id for job in await store.list_stale(10, 600)] == [stale.id]


class TestRedisJobStore:
    """Test the Redis store against a mocked client."""

    @pytest.mark.asyncio
    async def test_create_indexes_active_job(self) -> None:
        redis = AsyncMock()
        job = _job()

        await RedisJobStore(redis, ttl_seconds=3600).create(job)

        redis.set.assert_awaited_once()
        assert redis.set.call_args.args[0] == job_key(job.id)
        assert redis.set.call_args.kwargs == {"ex": 3600}
        redis.sadd.assert_awaited_once_with(ACTIVE_JOBS_KEY, job.id)

    @pytest.mark.asyncio
    async def test_terminal_update_leaves_index(self) -> None:
        redis = AsyncMock()
        job = _job(status=JobStatus.COMPLETED)

        await RedisJobStore(redis, ttl_seconds=3600).update(job)

        redis.srem.assert_awaited_once_with(ACTIVE_JOBS_KEY, job.id)
        redis.sadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_parses_json(self) -> None:
        job = _job()
        redis = AsyncMock()
        redis.get.return_value = job.model_dump_json().encode()

        loaded = await RedisJobStore(redis, ttl_seconds=60).get(job.id)

        assert loaded.id == job.id
        assert loaded.sources[0].content == b"%PDF-1.4"

    @pytest.mark.asyncio
    async def test_list_stale_prunes_expired(self) -> None:
        stale = _job(updated_at=utc_now() - timedelta(seconds=60))
        records = {job_key(stale.id): stale.model_dump_json()}
        redis = AsyncMock()
        redis.smembers.return_value = {stale.id.encode(), b"expired-job"}
        redis.get.side_effect = lambda key: records.get(key)

        jobs = await RedisJobStore(redis, ttl_seconds=60).list_stale(10, 600)

        assert [job.id for job in jobs] == [stale.id]
        redis.srem.assert_awaited_once_with(ACTIVE_JOBS_KEY, "expired-job")
