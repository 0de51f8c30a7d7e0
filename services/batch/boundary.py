"""Invoice boundary detection for multi-invoice PDFs.

A pluggable PageClassifier returns a JSON page layout. The layout is accepted only if
every page 1..N is assigned exactly once, each invoice's pages are contiguous and the
confidence reaches the configured minimum; otherwise the whole document is treated as
a single invoice.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from services.batch.splitter import PdfSplitter
from services.shared.config import Settings

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

BOUNDARY_PROMPT = """You are given a multi-page PDF that may contain one or more separate invoices.
Identify how many distinct invoices it contains and which pages belong to each one.

A page starts a NEW invoice when it has its own invoice number, its own total, a complete
invoice header, or a different buyer, date or seller than the previous page.
Pages belong to the SAME invoice on explicit continuation ("Page 2 of 3", "continued"),
the same invoice number, or a page with line items but no invoice header.
When in doubt, split rather than merge.

Return ONLY a JSON object:
{"totalInvoices": <n>, "totalPages": <n>,
 "invoices": [{"invoiceIndex": 1, "pages": [1], "label": "<invoice number or seller>"}],
 "confidence": <0..1>}

Every page must be assigned to exactly one invoice and pages of one invoice must be contiguous."""


class InvoiceBoundary(BaseModel):
    invoice_index: int
    pages: list[int]
    label: str


class BoundaryDetectionResult(BaseModel):
    """Page layout of one source document.

    Attributes:
        total_invoices: Number of invoices found
        total_pages: Pages covered by the layout
        invoices: Page groups in document order
        confidence: Detector confidence (1.0 for fallbacks)
        pdf_page_count: Page count read from the PDF
        provider: Detector name, or the fallback reason
    """

    total_invoices: int
    total_pages: int
    invoices: list[InvoiceBoundary]
    confidence: float
    pdf_page_count: int
    provider: str


class BoundaryLayoutError(ValueError):
    """Detector response is not a usable page layout."""


class PageClassifier(ABC):
    """Abstract detector that groups PDF pages into invoices."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def classify(self, pdf_bytes: bytes, page_count: int) -> str:
        """Ask the detector for a page layout.

        Args:
            pdf_bytes: Source PDF
            page_count: Number of pages in the PDF

        Returns:
            Raw response text expected to contain the layout JSON
        """
        pass


def strip_json_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    stripped = text.strip()
    fenced = re.match(r"^```(?:json)?\s*([\s\S]*?)\s*```$", stripped)
    return fenced.group(1) if fenced else stripped


def parse_layout(raw_text: str) -> tuple[list[InvoiceBoundary], float]:
    """Parse a detector response into page groups and confidence.

    Raises:
        BoundaryLayoutError: If no JSON object or invoices array is present
        json.JSONDecodeError: If the JSON is malformed
    """
    match = re.search(r"\{[\s\S]*\}", strip_json_fences(raw_text))
    if not match:
        raise BoundaryLayoutError("No JSON found in boundary detection response")
    data: dict[str, Any] = json.loads(match.group(0))

    invoices = data.get("invoices")
    if not isinstance(invoices, list):
        raise BoundaryLayoutError("Missing invoices array in boundary detection response")

    boundaries = []
    for position, entry in enumerate(invoices, start=1):
        pages = entry.get("pages") if isinstance(entry, dict) else None
        if not isinstance(pages, list):
            raise BoundaryLayoutError(f"Invoice {position} has no pages list")
        boundaries.append(
            InvoiceBoundary(
                invoice_index=int(entry.get("invoiceIndex") or position),
                pages=[int(page) for page in pages],
                label=str(entry.get("label") or f"Invoice {position}"),
            )
        )

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    return boundaries, confidence


def validate_layout(invoices: list[InvoiceBoundary], page_count: int) -> None:
    """Check that pages 1..page_count are each assigned once and groups are contiguous.

    Raises:
        BoundaryLayoutError: On duplicate, out-of-range, missing or non-contiguous pages
    """
    seen: set[int] = set()
    for invoice in invoices:
        if not invoice.pages:
            raise BoundaryLayoutError(f"Invoice {invoice.invoice_index} has no pages")
        for page in invoice.pages:
            if page in seen:
                raise BoundaryLayoutError(f"Duplicate page {page} in boundary detection")
            if page < 1 or page > page_count:
                raise BoundaryLayoutError(f"Page {page} out of range (1-{page_count})")
            seen.add(page)
        for previous, current in zip(invoice.pages, invoice.pages[1:]):
            if current != previous + 1:
                raise BoundaryLayoutError(
                    f"Non-contiguous pages in invoice {invoice.invoice_index}: {invoice.pages}"
                )
    if len(seen) != page_count:
        raise BoundaryLayoutError(
            f"Pages covered ({len(seen)}) does not match actual page count ({page_count})"
        )


def single_invoice(page_count: int, reason: str) -> BoundaryDetectionResult:
    """Layout treating the whole document as one invoice."""
    pages = list(range(1, page_count + 1)) or [1]
    return BoundaryDetectionResult(
        total_invoices=1,
        total_pages=page_count,
        invoices=[InvoiceBoundary(invoice_index=1, pages=pages, label="Single document")],
        confidence=1.0,
        pdf_page_count=page_count,
        provider=reason,
    )


class BoundaryDetector:
    """Detects invoice boundaries and falls back to a single invoice when unsure."""

    def __init__(
        self,
        settings: Settings,
        classifier: PageClassifier | None = None,
        splitter: PdfSplitter | None = None,
    ) -> None:
        self.settings = settings
        self.classifier = classifier
        self.splitter = splitter or PdfSplitter()

    async def detect(self, content: bytes, mime_type: str) -> BoundaryDetectionResult:
        """Detect invoice boundaries in a document.

        Args:
            content: Document bytes
            mime_type: MIME type of the document

        Returns:
            BoundaryDetectionResult; never raises for detector problems
        """
        if mime_type != PDF_MIME_TYPE:
            return single_invoice(1, "skip-non-pdf")

        try:
            page_count = self.splitter.page_count(content)
        except ValueError as e:
            logger.error(f"Failed to count PDF pages: {e}")
            return single_invoice(1, "page-count-error")

        if page_count <= 1:
            return single_invoice(page_count, "single-page")

        max_pages = self.settings.max_pages_for_boundary_detection
        if page_count > max_pages:
            logger.warning(f"PDF has {page_count} pages (max {max_pages}), skipping boundary detection")
            return single_invoice(page_count, "too-many-pages")

        if self.classifier is None:
            return single_invoice(page_count, "no-detector")

        try:
            raw_text = await self.classifier.classify(content, page_count)
        except Exception as e:
            logger.error(f"Boundary detection failed, using fallback: {e}")
            return single_invoice(page_count, "error")

        try:
            invoices, confidence = parse_layout(raw_text)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unparsable boundary detection response, using fallback: {e}")
            return single_invoice(page_count, "unparsable")

        try:
            validate_layout(invoices, page_count)
        except BoundaryLayoutError as e:
            logger.warning(f"Invalid boundary layout, using fallback: {e}")
            return single_invoice(page_count, "invalid-layout")

        if confidence < self.settings.boundary_min_confidence:
            logger.warning(
                f"Low confidence boundary detection ({confidence}), using fallback for {page_count} pages"
            )
            return single_invoice(page_count, "low-confidence")

        logger.info(
            f"Boundary detection found {len(invoices)} invoice(s) in {page_count} pages "
            f"(confidence {confidence})"
        )
        return BoundaryDetectionResult(
            total_invoices=len(invoices),
            total_pages=page_count,
            invoices=invoices,
            confidence=confidence,
            pdf_page_count=page_count,
            provider=self.classifier.provider_name,
        )
