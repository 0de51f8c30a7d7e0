"""Unit tests for batch processing API endpoints.

Tests batch upload and status endpoints.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from services.api.main import app
from services.batch.models import BatchJob, BatchResult, JobStatus, SegmentStatus
from services.batch.store import InMemoryJobStore
from services.shared.config import Settings


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def queue_settings() -> Settings:
    return Settings(queue_enabled=True)


@pytest.fixture
def mock_arq_pool() -> AsyncMock:
    """Create mock arq pool."""
    mock = AsyncMock()
    mock.enqueue_job.return_value = MagicMock()
    return mock


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create minimal valid image bytes (1x1 PNG)."""
    return (
        b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01"
        b"\x00\x00\x00\x01\x08\x02\x00\x00\x00\x90wS\xde\x00\x00"
        b"\x00\x0cIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18"
        b"\xd8N\x00\x00\x00\x00IEND\xaeB`\x82"
    )


class TestBatchUploadEndpoint:
    """Test batch upload endpoint."""

    def test_batch_upload_requires_queue_enabled(self, client: TestClient) -> None:
        """Should return 503 when queue is disabled."""
        with patch("services.api.main.settings") as mock_settings:
            mock_settings.queue_enabled = False

            response = client.post(
                "/api/v1/batches",
                data={"owner_id": "owner-1"},
                files=[("files", ("test.png", b"fake", "image/png"))],
            )

            assert response.status_code == 503
            assert "not enabled" in response.json()["detail"]

    def test_batch_upload_without_files(self, client: TestClient, queue_settings: Settings) -> None:
        """Should return 422 when no files are provided."""
        with patch("services.api.main.settings", queue_settings):
            response = client.post("/api/v1/batches", data={"owner_id": "owner-1"})

            assert response.status_code == 422

    def test_batch_upload_success(
        self,
        client: TestClient,
        queue_settings: Settings,
        mock_arq_pool: AsyncMock,
        job_store: InMemoryJobStore,
        sample_image_bytes: bytes,
    ) -> None:
        """Should store one pending job and enqueue it once."""
        with (
            patch("services.api.main.settings", queue_settings),
            patch("services.api.main.get_arq_pool", return_value=mock_arq_pool),
            patch("services.api.main.get_job_store", return_value=job_store),
        ):
            files = [
                ("files", ("invoice1.png", sample_image_bytes, "image/png")),
                ("files", ("invoice2.png", sample_image_bytes, "image/png")),
                ("files", ("invoice3.pdf", b"%PDF-1.4 minimal", "application/pdf")),
            ]

            response = client.post(
                "/api/v1/batches",
                data={"owner_id": "owner-1", "output_format": "peppol-bis"},
                files=files,
            )

            assert response.status_code == 200
            data = response.json()
            assert data["total_documents"] == 3
            assert data["status"] == "pending"

            mock_arq_pool.enqueue_job.assert_awaited_once_with(
                "process_batch_job", data["job_id"], _job_id=f"process-batch:{data['job_id']}"
            )

    @pytest.mark.asyncio
    async def test_stored_job_keeps_sources(
        self,
        client: TestClient,
        queue_settings: Settings,
        mock_arq_pool: AsyncMock,
        job_store: InMemoryJobStore,
        sample_image_bytes: bytes,
    ) -> None:
        with (
            patch("services.api.main.settings", queue_settings),
            patch("services.api.main.get_arq_pool", return_value=mock_arq_pool),
            patch("services.api.main.get_job_store", return_value=job_store),
        ):
            response = client.post(
                "/api/v1/batches",
                data={"owner_id": "owner-1"},
                files=[("files", ("scan.png", sample_image_bytes, "image/png"))],
            )

        job = await job_store.get(response.json()["job_id"])
        assert job.owner_id == "owner-1"
        assert job.sources[0].content == sample_image_bytes
        assert job.output_format is None

    def test_batch_upload_rejects_unsupported_files(
        self, client: TestClient, queue_settings: Settings, mock_arq_pool: AsyncMock
    ) -> None:
        """Should return 400 for files that are not PDF, PNG, JPEG or ZIP."""
        with (
            patch("services.api.main.settings", queue_settings),
            patch("services.api.main.get_arq_pool", return_value=mock_arq_pool),
        ):
            response = client.post(
                "/api/v1/batches",
                data={"owner_id": "owner-1"},
                files=[("files", ("notes.txt", b"hello", "text/plain"))],
            )

            assert response.status_code == 400
            assert "unsupported file type" in response.json()["detail"]
            mock_arq_pool.enqueue_job.assert_not_called()

    def test_batch_upload_unknown_format(
        self, client: TestClient, queue_settings: Settings, sample_image_bytes: bytes
    ) -> None:
        with patch("services.api.main.settings", queue_settings):
            response = client.post(
                "/api/v1/batches",
                data={"owner_id": "owner-1", "output_format": "edifact"},
                files=[("files", ("scan.png", sample_image_bytes, "image/png"))],
            )

            assert response.status_code == 400
            assert "Unsupported format" in response.json()["detail"]


class TestBatchStatusEndpoint:
    """Test batch status endpoint."""

    def test_get_batch_status(
        self,
        client: TestClient,
        queue_settings: Settings,
        mock_arq_pool: AsyncMock,
        job_store: InMemoryJobStore,
    ) -> None:
        """Should return counts and per-segment results without source bytes."""
        job = BatchJob(
            owner_id="owner-1",
            status=JobStatus.PARTIAL_SUCCESS,
            results=[
                BatchResult(filename="a.pdf", status=SegmentStatus.SUCCESS, extraction_id="d-1"),
                BatchResult(filename="b.pdf", status=SegmentStatus.FAILED, error="unreadable"),
            ],
        )
        job.recount()
        asyncio.run(job_store.create(job))

        with (
            patch("services.api.main.settings", queue_settings),
            patch("services.api.main.get_arq_pool", return_value=mock_arq_pool),
            patch("services.api.main.get_job_store", return_value=job_store),
        ):
            response = client.get(f"/api/v1/batches/{job.id}")

            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "partial_success"
            assert data["completed_files"] == 1
            assert data["failed_files"] == 1
            assert data["results"][1]["error"] == "unreadable"
            assert "sources" not in data

    def test_get_batch_status_not_found(
        self,
        client: TestClient,
        queue_settings: Settings,
        mock_arq_pool: AsyncMock,
        job_store: InMemoryJobStore,
    ) -> None:
        """Should return 404 for unknown batch."""
        with (
            patch("services.api.main.settings", queue_settings),
            patch("services.api.main.get_arq_pool", return_value=mock_arq_pool),
            patch("services.api.main.get_job_store", return_value=job_store),
        ):
            response = client.get("/api/v1/batches/nonexistent-id")

            assert response.status_code == 404
            assert "not found" in response.json()["detail"]

    def test_get_batch_status_requires_queue(self, client: TestClient) -> None:
        with patch("services.api.main.settings") as mock_settings:
            mock_settings.queue_enabled = False

            response = client.get("/api/v1/batches/any")

            assert response.status_code == 503
