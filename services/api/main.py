"""FastAPI application for invoice generation, validation and batch intake.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Format discovery, validation and generation for all registered formats
- Batch upload intake backed by the arq queue
- Structured error responses
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import base64
import logging
import time
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from fastapi import FastAPI, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from pydantic import BaseModel

from services.api import metrics
from services.batch.intake import IntakeError, prepare_sources
from services.batch.models import BatchJob
from services.batch.store import JobStore, RedisJobStore
from services.format.registry import build_default_registry
from services.invoice.model import CanonicalInvoice
from services.queue.tasks import enqueue_batch_job
from services.shared.config import get_settings
from services.shared.errors import InvoiceValidationError, SchemaError, UnsupportedFormatError
from services.validation.result import ValidationIssue, ValidationStatus

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Transcoding Engine",
    description="Generate and validate EU e-invoices from a canonical invoice model",
    version=settings.service_version,
)

registry = build_default_registry(settings)

_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Return the shared arq pool, connecting on first use."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
    return _arq_pool


def get_job_store(pool: Any) -> JobStore:
    return RedisJobStore(pool, settings.job_ttl_seconds)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    formats: int


class ValidateResponse(BaseModel):
    """Validation outcome without a rendered document."""

    format_id: str
    validation_status: ValidationStatus
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]


class GenerateResponse(BaseModel):
    """Rendered document with its validation outcome."""

    format_id: str
    file_name: str
    file_size: int
    xml_content: str
    pdf_content: str | None = None
    pdf_file_name: str | None = None
    validation_status: ValidationStatus
    validation_warnings: list[ValidationIssue]


class BatchCreatedResponse(BaseModel):
    """Accepted batch job."""

    job_id: str
    status: str
    total_documents: int


def _unsupported(e: UnsupportedFormatError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    formats = len(registry.list_formats())
    return ReadinessResponse(ready=formats > 0, formats=formats)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/api/v1/formats", tags=["Formats"])
def list_formats() -> list[dict[str, object]]:
    """List registered output formats with metadata and engine versions."""
    return registry.describe()


@app.post("/api/v1/invoices/validate", response_model=ValidateResponse, tags=["Invoices"])
def validate_invoice(
    invoice: CanonicalInvoice,
    format_id: str = Query(..., alias="format", description="Target format id"),
) -> ValidateResponse:
    """Validate a canonical invoice against one target format.

    Validation findings are returned with status 200 even when blocking.

    Raises:
        HTTPException: 400 for an unknown format
    """
    try:
        generator = registry.create(format_id)
    except UnsupportedFormatError as e:
        raise _unsupported(e) from e

    report = generator.validate(invoice)
    metrics.record_validation_issues(format_id, len(report.errors), len(report.warnings))
    return ValidateResponse(
        format_id=format_id,
        validation_status=report.status,
        errors=report.errors,
        warnings=report.warnings,
    )


@app.post("/api/v1/invoices/generate", response_model=GenerateResponse, tags=["Invoices"])
def generate_invoice(
    invoice: CanonicalInvoice,
    format_id: str = Query(..., alias="format", description="Target format id"),
) -> GenerateResponse:
    """Generate a document in the target format.

    ## Error Handling

    - Returns 400 for an unknown format
    - Returns 422 with the validation report if validation has blocking errors
    - Returns 422 with the offending field for input no renderer can map
    - PDF containers (Factur-X) are returned base64-encoded in `pdf_content`

    Raises:
        HTTPException: If the format is unknown or the invoice is not valid for it
    """
    try:
        generator = registry.create(format_id)
    except UnsupportedFormatError as e:
        raise _unsupported(e) from e

    start_time = time.time()
    try:
        result = generator.generate(invoice)
    except InvoiceValidationError as e:
        metrics.invoices_generated_total.labels(format=format_id, status="rejected").inc()
        metrics.record_validation_issues(format_id, len(e.report.errors), len(e.report.warnings))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "report": e.report.model_dump(mode="json")},
        ) from e
    except SchemaError as e:
        metrics.invoices_generated_total.labels(format=format_id, status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "field": e.field},
        ) from e
    metrics.generation_duration_seconds.labels(format=format_id).observe(time.time() - start_time)
    metrics.invoices_generated_total.labels(format=format_id, status="success").inc()
    metrics.record_validation_issues(format_id, 0, len(result.validation_warnings))

    pdf_content = base64.b64encode(result.pdf_content).decode("ascii") if result.pdf_content else None
    return GenerateResponse(
        format_id=result.format_id,
        file_name=result.file_name,
        file_size=result.file_size,
        xml_content=result.xml_content,
        pdf_content=pdf_content,
        pdf_file_name=result.pdf_file_name,
        validation_status=result.validation_status,
        validation_warnings=result.validation_warnings,
    )


@app.post("/api/v1/batches", response_model=BatchCreatedResponse, tags=["Batches"])
async def create_batch(
    owner_id: str = Form(..., description="Account charged one credit per invoice"),
    files: list[UploadFile] = File(..., description="PDF, PNG, JPEG or ZIP files"),  # noqa: B008
    output_format: str | None = Form(None, description="Validate drafts for this format"),
) -> BatchCreatedResponse:
    """Accept a batch upload and enqueue it for processing.

    ## Error Handling

    - Returns 503 if the queue is disabled
    - Returns 400 for unsupported or oversized uploads and unknown formats

    Raises:
        HTTPException: If the batch cannot be accepted
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Batch processing not enabled. Set APP_QUEUE_ENABLED=true",
        )

    if output_format:
        try:
            registry.create(output_format)
        except UnsupportedFormatError as e:
            raise _unsupported(e) from e

    uploads = [(upload.filename or "upload", await upload.read()) for upload in files]
    try:
        sources = prepare_sources(uploads, settings)
    except IntakeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    pool = await get_arq_pool()
    store = get_job_store(pool)
    job = BatchJob(owner_id=owner_id, sources=sources, output_format=output_format)
    await store.create(job)
    await enqueue_batch_job(pool, job.id)

    return BatchCreatedResponse(
        job_id=job.id, status=job.status.value, total_documents=len(sources)
    )


@app.get("/api/v1/batches/{job_id}", tags=["Batches"])
async def get_batch(job_id: str) -> dict[str, object]:
    """Get batch job status and per-segment results.

    Raises:
        HTTPException: 503 if the queue is disabled, 404 if the job is unknown
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Batch processing not enabled",
        )

    pool = await get_arq_pool()
    job = await get_job_store(pool).get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Batch {job_id} not found")
    return job.public_view()
