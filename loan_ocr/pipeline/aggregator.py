"""Merging per-chunk recognition results into one document result."""

from collections.abc import Sequence
from dataclasses import dataclass, replace

from loan_ocr.errors import BackendUnavailable, ChunkRecognitionFailed
from loan_ocr.ocr.entities import Entity
from loan_ocr.ocr.recognition import FailureKind, RecognitionResult
from loan_ocr.ocr.segmenter import Chunk
from loan_ocr.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AggregatedDocument:
    """Document-level entities and text, with document page numbers."""

    text: str
    entities: tuple[Entity, ...]
    total_pages: int
    chunk_count: int


def aggregate(
    results: Sequence[RecognitionResult],
    chunks: Sequence[Chunk],
    pages_per_chunk: int,
) -> AggregatedDocument:
    """Combine ordered chunk results into an ``AggregatedDocument``.

    Entity page ``r`` of chunk ``i`` becomes ``r + i * pages_per_chunk``.
    References outside the chunk's own pages are dropped.
    Chunk texts are joined with a newline and the result trimmed.

    Args:
        results: One result per chunk, in chunk order.
        chunks: The chunks the results belong to.
        pages_per_chunk: Chunk size used by the segmenter.

    Returns:
        The aggregated document.

    Raises:
        BackendUnavailable: If the first failed chunk could not reach
            the backend.
        ChunkRecognitionFailed: If the first failed chunk was rejected or
            unreadable. Carries its 1-based number.
    """
    if len(results) != len(chunks):
        raise ValueError(f"{len(results)} results for {len(chunks)} chunks")

    for i, result in enumerate(results):
        if result.success:
            continue
        if result.failure_kind == FailureKind.UNAVAILABLE:
            raise BackendUnavailable(result.error, chunk_number=i + 1)
        raise ChunkRecognitionFailed(i + 1, result.error)

    entities: list[Entity] = []
    for i, (result, chunk) in enumerate(zip(results, chunks)):
        offset = i * pages_per_chunk
        entities.extend(
            _within_chunk(entity, chunk).shifted(offset) for entity in result.entities
        )

    text = "\n".join(result.text for result in results).strip()
    total_pages = chunks[-1].last_page if chunks else 0
    return AggregatedDocument(
        text=text,
        entities=tuple(entities),
        total_pages=total_pages,
        chunk_count=len(chunks),
    )


def _within_chunk(entity: Entity, chunk: Chunk) -> Entity:
    """Drop page references that fall outside ``chunk``'s own pages."""
    kept = tuple(p for p in entity.page_refs if 1 <= p <= chunk.page_count)
    if kept == entity.page_refs:
        return entity
    logger.debug(
        "Dropped page refs %s of %s entity outside chunk %d",
        sorted(set(entity.page_refs) - set(kept)),
        entity.type,
        chunk.index + 1,
    )
    return replace(entity, page_refs=kept)
