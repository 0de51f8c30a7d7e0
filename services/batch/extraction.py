"""Extraction collaborators: invoice extraction and page classification over HTTP.

The extraction service is an opaque collaborator that turns a document into a
CanonicalInvoice. Failures are classified as retryable (rate limits, overload,
timeouts) or terminal; only retryable failures are retried, with capped exponential
backoff and jitter.

Based on:
- httpx async client: https://www.python-httpx.org/async/
- tenacity: https://tenacity.readthedocs.io/
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.batch.boundary import BOUNDARY_PROMPT, PageClassifier
from services.invoice.model import CanonicalInvoice
from services.shared.config import Settings
from services.shared.errors import ExtractionFailure

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})
RETRYABLE_MARKERS = (
    "429",
    "rate limit",
    "rate_limit",
    "too many requests",
    "quota",
    "503",
    "overloaded",
    "timeout",
    "timed out",
)


class ExtractionOutcome(BaseModel):
    """Extracted invoice with extraction metadata."""

    invoice: CanonicalInvoice
    confidence: float
    processing_time_ms: int


class InvoiceExtractor(ABC):
    """Abstract base class for invoice extractors."""

    @abstractmethod
    async def extract_from_file(
        self, content: bytes, filename: str, mime_type: str
    ) -> ExtractionOutcome:
        """Extract a canonical invoice from a document.

        Args:
            content: Document bytes (PDF or image)
            filename: Name used for logging and by the extraction service
            mime_type: MIME type of content

        Returns:
            ExtractionOutcome

        Raises:
            ExtractionFailure: With retryable=True for transient failures
        """
        pass

    async def aclose(self) -> None:
        pass


def is_retryable_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RETRYABLE_MARKERS)


def classify_http_error(status_code: int, body: str) -> ExtractionFailure:
    """Map an error response to an ExtractionFailure."""
    retryable = status_code in RETRYABLE_STATUS_CODES or is_retryable_message(body)
    return ExtractionFailure(
        f"Extraction service returned {status_code}: {body[:200]}", retryable=retryable
    )


def is_retryable_failure(error: BaseException) -> bool:
    return isinstance(error, ExtractionFailure) and error.retryable


async def extract_with_retry(
    extractor: InvoiceExtractor,
    settings: Settings,
    content: bytes,
    filename: str,
    mime_type: str,
) -> ExtractionOutcome:
    """Run extraction, retrying retryable failures with exponential backoff.

    Args:
        extractor: Invoice extractor
        settings: Settings with extraction_max_retries and backoff bounds
        content: Document bytes
        filename: Segment name
        mime_type: MIME type of content

    Returns:
        ExtractionOutcome of the first successful attempt

    Raises:
        ExtractionFailure: Terminal failure, or the last retryable one once attempts run out
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable_failure),
        wait=wait_exponential_jitter(
            initial=settings.extraction_backoff_initial, max=settings.extraction_backoff_max
        ),
        stop=stop_after_attempt(settings.extraction_max_retries),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    outcome: ExtractionOutcome = await retrying(
        extractor.extract_from_file, content, filename, mime_type
    )
    return outcome


class _HttpServiceClient:
    """Shared httpx plumbing for calls to the extraction service."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.extraction_service_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.extraction_timeout)

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.post(f"{self._base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise ExtractionFailure(f"Extraction service timeout: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise ExtractionFailure(f"Extraction service unreachable: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text)
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpInvoiceExtractor(_HttpServiceClient, InvoiceExtractor):
    """Extractor backed by the HTTP extraction service.

    POST {extraction_service_url}/v1/extract with the document as multipart file.
    The response is a JSON object with ``invoice`` (CanonicalInvoice fields) and
    optional ``confidence``.
    """

    async def extract_from_file(
        self, content: bytes, filename: str, mime_type: str
    ) -> ExtractionOutcome:
        start = time.monotonic()
        response = await self._post("/v1/extract", files={"file": (filename, content, mime_type)})

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            invoice = CanonicalInvoice.model_validate(payload.get("invoice", payload))
        except (ValueError, ValidationError) as e:
            raise ExtractionFailure(f"Malformed extraction response for {filename}: {e}") from e

        processing_time_ms = int((time.monotonic() - start) * 1000)
        confidence = float(payload.get("confidence", invoice.confidence or 0.0))
        invoice.confidence = confidence
        invoice.processing_time_ms = processing_time_ms
        logger.info(
            f"Extracted {invoice.invoice_number or '(no number)'} from {filename} "
            f"in {processing_time_ms}ms (confidence {confidence:.2f})"
        )
        return ExtractionOutcome(
            invoice=invoice, confidence=confidence, processing_time_ms=processing_time_ms
        )


class HttpPageClassifier(_HttpServiceClient, PageClassifier):
    """Boundary detector backed by the HTTP extraction service."""

    @property
    def provider_name(self) -> str:
        return "http"

    async def classify(self, pdf_bytes: bytes, page_count: int) -> str:
        response = await self._post(
            "/v1/classify-pages",
            files={"file": ("document.pdf", pdf_bytes, "application/pdf")},
            data={"page_count": str(page_count), "prompt": BOUNDARY_PROMPT},
        )
        return response.text
