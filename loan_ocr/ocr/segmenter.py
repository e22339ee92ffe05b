"""Document ingestion and page-bounded segmentation.

A ``Document`` is built once from uploaded bytes and never mutated. The
segmenter partitions its pages ``1..total_pages`` into sequential,
non-overlapping windows of at most ``pages_per_chunk`` pages and emits
one ``Chunk`` per window.
"""

import uuid
from dataclasses import dataclass, field

from loan_ocr.errors import DocumentCorrupt, UnsupportedMediaType
from loan_ocr.utils.logger import get_logger

from .pdf_handler import PDFHandler

logger = get_logger(__name__)

PDF = "application/pdf"
JPEG = "image/jpeg"
PNG = "image/png"

SUPPORTED_MEDIA_TYPES = (PDF, JPEG, PNG)
_GENERIC_MEDIA_TYPES = {"", "application/octet-stream", "binary/octet-stream"}


def sniff_media_type(data: bytes) -> str | None:
    """Detect PDF, JPEG or PNG content from its magic bytes."""
    if data[:4] == b"%PDF":
        return PDF
    if data[:3] == b"\xff\xd8\xff":
        return JPEG
    if data[:4] == b"\x89PNG":
        return PNG
    return None


def resolve_media_type(data: bytes, declared: str | None) -> str:
    """Choose the media type to process the upload as.

    Generic declarations are resolved by sniffing the content.

    Raises:
        UnsupportedMediaType: If the type is not PDF, JPEG or PNG.
    """
    declared = (declared or "").split(";")[0].strip().lower()
    if declared in _GENERIC_MEDIA_TYPES:
        sniffed = sniff_media_type(data)
        if sniffed is None:
            raise UnsupportedMediaType()
        return sniffed
    if declared not in SUPPORTED_MEDIA_TYPES:
        raise UnsupportedMediaType()
    return declared


def new_document_id() -> str:
    """Generate a stable identifier for an ingested document."""
    return f"fein_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class Document:
    """An uploaded document with its page count."""

    data: bytes = field(repr=False)
    media_type: str
    total_pages: int
    document_id: str = field(default_factory=new_document_id)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Chunk:
    """A page-bounded sub-document sent to the backend as one unit.

    ``first_page`` and ``last_page`` are 1-based and inclusive.
    """

    index: int
    first_page: int
    last_page: int
    data: bytes = field(repr=False)
    media_type: str = PDF

    @property
    def page_count(self) -> int:
        return self.last_page - self.first_page + 1


def plan_page_ranges(total_pages: int, pages_per_chunk: int) -> list[tuple[int, int]]:
    """Partition ``1..total_pages`` into windows of ``pages_per_chunk``.

    The last window may be shorter. ``plan_page_ranges(40, 15)`` gives
    ``[(1, 15), (16, 30), (31, 40)]``.

    Raises:
        ValueError: If either argument is not positive.
    """
    if pages_per_chunk < 1:
        raise ValueError("pages_per_chunk must be positive")
    if total_pages < 1:
        raise ValueError("total_pages must be positive")
    return [
        (start, min(start + pages_per_chunk - 1, total_pages))
        for start in range(1, total_pages + 1, pages_per_chunk)
    ]


class DocumentSegmenter:
    """Loads documents and splits them into chunks.

    Args:
        pages_per_chunk: Maximum pages per chunk.
        pdf_handler: PDF reader/writer; a default one is created if omitted.
    """

    def __init__(self, pages_per_chunk: int = 15, pdf_handler: PDFHandler | None = None) -> None:
        if pages_per_chunk < 1:
            raise ValueError("pages_per_chunk must be positive")
        self.pages_per_chunk = pages_per_chunk
        self.pdf_handler = pdf_handler or PDFHandler()

    def load(self, data: bytes, declared_media_type: str | None = None) -> Document:
        """Build a ``Document`` from uploaded bytes.

        Images count as single-page documents.

        Raises:
            UnsupportedMediaType: For anything other than PDF, JPEG or PNG.
            DocumentCorrupt: If a PDF cannot be parsed or is empty.
        """
        if not data:
            raise DocumentCorrupt("Fichero vacío o no recibido")
        media_type = resolve_media_type(data, declared_media_type)
        if media_type == PDF:
            total_pages = self.pdf_handler.get_page_count(data)
        else:
            total_pages = 1
        document = Document(data=data, media_type=media_type, total_pages=total_pages)
        logger.info(
            "Loaded document %s: %s, %d pages, %d KB",
            document.document_id,
            media_type,
            total_pages,
            document.size_bytes // 1024,
        )
        return document

    def chunk_count(self, total_pages: int) -> int:
        """Number of chunks a document of ``total_pages`` will produce."""
        return len(plan_page_ranges(total_pages, self.pages_per_chunk))

    def segment(self, document: Document) -> list[Chunk]:
        """Split a document into ordered chunks covering every page once.

        Raises:
            DocumentCorrupt: If the PDF cannot be split.
        """
        if document.media_type != PDF:
            return [Chunk(0, 1, 1, document.data, document.media_type)]

        ranges = plan_page_ranges(document.total_pages, self.pages_per_chunk)
        if len(ranges) == 1:
            parts = [document.data]
        else:
            parts = self.pdf_handler.extract_pages(document.data, ranges)

        chunks = [
            Chunk(index=i, first_page=first, last_page=last, data=part)
            for i, ((first, last), part) in enumerate(zip(ranges, parts, strict=True))
        ]
        logger.info(
            "Split document %s into %d chunks of up to %d pages",
            document.document_id,
            len(chunks),
            self.pages_per_chunk,
        )
        return chunks
