"""Bounded-concurrency chunk recognition.

Chunks are sent in sequential batches of ``max_concurrency``: every call
in a batch is dispatched at once and the whole batch is awaited before
the next one starts. Results come back in chunk order whatever order the
calls finish in.
"""

import asyncio
import time
from collections.abc import Callable, Sequence

from loan_ocr.ocr.recognition import RecognitionClient, RecognitionResult
from loan_ocr.ocr.segmenter import Chunk
from loan_ocr.utils.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int], None]


class ChunkScheduler:
    """Runs chunks through a recognition client, ``C`` at a time.

    Args:
        client: Recognition client shared by every call.
        max_concurrency: Batch size, i.e. the most calls in flight.
    """

    def __init__(self, client: RecognitionClient, max_concurrency: int = 2) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be positive")
        self.client = client
        self.max_concurrency = max_concurrency

    async def run(
        self,
        chunks: Sequence[Chunk],
        on_progress: ProgressCallback | None = None,
    ) -> list[RecognitionResult]:
        """Recognize every chunk and return one result per chunk, in order.

        A failed chunk does not stop later batches; the caller decides
        what to do with failures.

        Args:
            chunks: Chunks in index order.
            on_progress: Called after each batch with the number of pages
                recognized so far.

        Returns:
            Results aligned with ``chunks``.
        """
        results: list[RecognitionResult] = []
        pages_done = 0
        start = time.perf_counter()

        for offset in range(0, len(chunks), self.max_concurrency):
            batch = chunks[offset : offset + self.max_concurrency]
            batch_results = await asyncio.gather(
                *(self.client.recognize(chunk) for chunk in batch)
            )
            results.extend(batch_results)

            pages_done += sum(chunk.page_count for chunk in batch)
            failures = sum(1 for r in batch_results if not r.success)
            logger.info(
                "Batch %d/%d done: chunks %d-%d, %d failed",
                offset // self.max_concurrency + 1,
                -(-len(chunks) // self.max_concurrency),
                batch[0].index + 1,
                batch[-1].index + 1,
                failures,
            )
            if on_progress is not None:
                on_progress(pages_done)

        logger.info(
            "Recognized %d chunks in %.0f ms",
            len(results),
            (time.perf_counter() - start) * 1000,
        )
        return results
