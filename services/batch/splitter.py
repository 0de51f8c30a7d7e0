"""PDF page counting and splitting with PyPDF2.

Based on PyPDF2 documentation:
https://pypdf2.readthedocs.io/en/3.0.0/user/merging-pdfs.html
"""

import io
import logging

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError

logger = logging.getLogger(__name__)


class PdfSplitter:
    """Splits a multi-invoice PDF into one document per page range."""

    def page_count(self, content: bytes) -> int:
        """Count pages of a PDF.

        Raises:
            ValueError: If the content is not a readable PDF
        """
        try:
            return len(PdfReader(io.BytesIO(content)).pages)
        except PdfReadError as e:
            raise ValueError(f"Unreadable PDF: {e}") from e

    def split(self, content: bytes, page_groups: list[list[int]]) -> list[bytes]:
        """Emit one PDF per page group.

        Args:
            content: Source PDF bytes
            page_groups: 1-based page numbers per output document

        Returns:
            PDF bytes per group, in input order

        Raises:
            ValueError: If the PDF is unreadable or a group is empty or out of range
        """
        try:
            reader = PdfReader(io.BytesIO(content))
        except PdfReadError as e:
            raise ValueError(f"Unreadable PDF: {e}") from e

        total = len(reader.pages)
        documents: list[bytes] = []
        for group in page_groups:
            if not group:
                raise ValueError("Page group must not be empty")
            writer = PdfWriter()
            for page_number in group:
                if page_number < 1 or page_number > total:
                    raise ValueError(f"Page {page_number} out of range (1-{total})")
                writer.add_page(reader.pages[page_number - 1])
            buffer = io.BytesIO()
            writer.write(buffer)
            documents.append(buffer.getvalue())

        logger.debug(f"Split {total}-page PDF into {len(documents)} document(s)")
        return documents
