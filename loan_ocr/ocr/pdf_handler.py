"""PDF page counting, splitting and rasterization.

Page-level operations run on raw bytes so that chunks never touch the
filesystem: ``pypdf`` reads and re-writes page ranges, ``pdf2image``
renders pages to images for the local OCR provider.
"""

import io

import numpy as np
from pdf2image import convert_from_bytes
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from loan_ocr.errors import DocumentCorrupt
from loan_ocr.utils.logger import get_logger

logger = get_logger(__name__)


class PDFHandler:
    """Reads, splits and renders PDF documents held in memory.

    Args:
        dpi: Resolution for page rendering. Higher values produce
            better OCR results but use more memory.
    """

    def __init__(self, dpi: int = 300) -> None:
        self.dpi = dpi

    def _reader(self, pdf_bytes: bytes) -> PdfReader:
        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            # Touch the page tree so truncated files fail here, not mid-split.
            len(reader.pages)
            return reader
        except PdfReadError as exc:
            raise DocumentCorrupt() from exc
        except Exception as exc:
            logger.warning("Unreadable PDF: %s", type(exc).__name__)
            raise DocumentCorrupt() from exc

    def get_page_count(self, pdf_bytes: bytes) -> int:
        """Count the pages of a PDF.

        Raises:
            DocumentCorrupt: If the bytes are not a readable PDF or hold
                no pages.
        """
        count = len(self._reader(pdf_bytes).pages)
        if count < 1:
            raise DocumentCorrupt()
        logger.debug("PDF has %d pages", count)
        return count

    def extract_pages(self, pdf_bytes: bytes, ranges: list[tuple[int, int]]) -> list[bytes]:
        """Write each inclusive 1-based page range out as its own PDF.

        Args:
            pdf_bytes: Source document.
            ranges: ``(first, last)`` page pairs, 1-based and inclusive.

        Returns:
            One PDF byte string per range, in the given order.

        Raises:
            DocumentCorrupt: If the source cannot be read or re-written.
        """
        reader = self._reader(pdf_bytes)
        parts: list[bytes] = []
        try:
            for first, last in ranges:
                writer = PdfWriter()
                for page in reader.pages[first - 1 : last]:
                    writer.add_page(page)
                buffer = io.BytesIO()
                writer.write(buffer)
                parts.append(buffer.getvalue())
        except Exception as exc:
            raise DocumentCorrupt() from exc
        return parts

    def pdf_to_images(self, pdf_bytes: bytes) -> list[np.ndarray]:
        """Render every page of a PDF to an RGB image.

        Raises:
            RuntimeError: If rendering fails.
        """
        try:
            pil_images = convert_from_bytes(pdf_bytes, dpi=self.dpi)
        except Exception as exc:
            raise RuntimeError(f"PDF conversion failed: {exc}") from exc

        images = [np.array(img) for img in pil_images]
        logger.info("Converted PDF to %d images at %d DPI", len(images), self.dpi)
        return images
