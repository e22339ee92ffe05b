"""Tests for bounded-concurrency chunk scheduling."""

import asyncio
import random

import pytest

from loan_ocr.ocr.recognition import RecognitionResult
from loan_ocr.ocr.segmenter import Chunk
from loan_ocr.pipeline.scheduler import ChunkScheduler


class _DelayedClient:
    """Answers each chunk after its own delay and tracks concurrency."""

    provider = "delayed"

    def __init__(self, delays: dict[int, float], fail: tuple[int, ...] = ()) -> None:
        self.delays = delays
        self.fail = fail
        self.in_flight = 0
        self.max_in_flight = 0

    async def recognize(self, chunk: Chunk) -> RecognitionResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(self.delays.get(chunk.index, 0.0))
        self.in_flight -= 1
        if chunk.index in self.fail:
            return RecognitionResult.failed(f"chunk {chunk.index} failed")
        return RecognitionResult(success=True, text=f"chunk-{chunk.index}")


def _chunks(count: int, size: int = 15) -> list[Chunk]:
    return [
        Chunk(index=i, first_page=i * size + 1, last_page=(i + 1) * size, data=b"x")
        for i in range(count)
    ]


class TestChunkScheduler:
    """Tests for the ChunkScheduler class."""

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_order_preserved_whatever_completes_first(self, seed: int) -> None:
        rng = random.Random(seed)
        delays = {i: rng.uniform(0.0, 0.02) for i in range(6)}
        scheduler = ChunkScheduler(_DelayedClient(delays), max_concurrency=3)

        results = asyncio.run(scheduler.run(_chunks(6)))

        assert [r.text for r in results] == [f"chunk-{i}" for i in range(6)]

    @pytest.mark.parametrize("concurrency", [1, 2, 4])
    def test_concurrency_is_bounded(self, concurrency: int) -> None:
        client = _DelayedClient({i: 0.01 for i in range(5)})
        asyncio.run(ChunkScheduler(client, concurrency).run(_chunks(5)))
        assert client.max_in_flight == min(concurrency, 5)

    def test_progress_reported_per_batch(self) -> None:
        seen: list[int] = []
        scheduler = ChunkScheduler(_DelayedClient({}), max_concurrency=2)
        asyncio.run(scheduler.run(_chunks(3), seen.append))
        assert seen == [30, 45]

    def test_failures_do_not_stop_later_batches(self) -> None:
        scheduler = ChunkScheduler(_DelayedClient({}, fail=(0,)), max_concurrency=1)
        results = asyncio.run(scheduler.run(_chunks(3)))
        assert [r.success for r in results] == [False, True, True]

    def test_empty(self) -> None:
        assert asyncio.run(ChunkScheduler(_DelayedClient({})).run([])) == []

    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError):
            ChunkScheduler(_DelayedClient({}), max_concurrency=0)
