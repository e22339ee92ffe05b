"""Deadline and fallback control for document extraction.

A submission is checked for size and page count, then either run
synchronously against a wall-clock deadline or handed to a background
job. When the deadline passes first, the run is not stopped: it keeps
going and completes the job the caller was told to poll.
"""

import asyncio
import time
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loan_ocr.errors import ExtractionError, PageCountExceeded, SizeExceeded
from loan_ocr.extraction.fusion import FieldNormalizer, NormalizationResult
from loan_ocr.ocr.recognition import DocumentAIClient, RecognitionClient
from loan_ocr.ocr.segmenter import Document, DocumentSegmenter
from loan_ocr.ocr.tesseract_engine import TesseractRecognitionClient
from loan_ocr.utils.config import AppConfig, RecognitionConfig
from loan_ocr.utils.logger import get_logger, log_stage
from loan_ocr.validation.rules_engine import RulesEngine

from .aggregator import aggregate
from .jobs import Job, JobProgress, JobTracker, build_job_store, progress_view
from .scheduler import ChunkScheduler, ProgressCallback

logger = get_logger(__name__)

BACKGROUND_MESSAGE = "Documento grande. Procesando en segundo plano..."


@dataclass(frozen=True)
class ExtractionOutcome:
    """A synchronous run that finished in time."""

    document_id: str
    provider: str
    result: NormalizationResult
    page_count: int
    processing_time_ms: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "provider": self.provider,
            **self.result.to_payload(),
            "page_count": self.page_count,
            "processing_time_ms": round(self.processing_time_ms, 1),
        }


@dataclass(frozen=True)
class JobAccepted:
    """The run continues in the background; poll ``job_id``."""

    job_id: str
    status: str = "processing"
    message: str = BACKGROUND_MESSAGE


@dataclass
class _RunState:
    """Progress of one pipeline run, visible to the job once it exists."""

    started: float = field(default_factory=time.perf_counter)
    pages_done: int = 0
    job_id: str | None = None

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class DocumentPipeline:
    """Segmenter, scheduler, aggregator and normalizer run in sequence.

    Args:
        segmenter: Splits documents into chunks.
        scheduler: Recognizes chunks with bounded concurrency.
        normalizer: Turns the aggregated document into fields.
    """

    def __init__(
        self,
        segmenter: DocumentSegmenter,
        scheduler: ChunkScheduler,
        normalizer: FieldNormalizer,
    ) -> None:
        self.segmenter = segmenter
        self.scheduler = scheduler
        self.normalizer = normalizer

    @property
    def provider(self) -> str:
        return self.scheduler.client.provider

    async def run(
        self, document: Document, on_progress: ProgressCallback | None = None
    ) -> NormalizationResult:
        """Extract fields from a loaded document.

        Raises:
            DocumentCorrupt: If the document cannot be split.
            ChunkRecognitionFailed: If any chunk failed.
            BackendUnavailable: If the backend could not be reached.
        """
        with log_stage(logger, "segmentation"):
            chunks = self.segmenter.segment(document)
        with log_stage(logger, "recognition"):
            results = await self.scheduler.run(chunks, on_progress)
        aggregated = aggregate(results, chunks, self.segmenter.pages_per_chunk)
        with log_stage(logger, "normalization"):
            return self.normalizer.normalize(aggregated)


class ExtractionController:
    """Entry point for document submissions and job polling.

    Args:
        config: Application configuration (limits and deadline).
        pipeline: The extraction pipeline.
        tracker: Job tracker for background runs.
    """

    def __init__(
        self,
        config: AppConfig,
        pipeline: DocumentPipeline,
        tracker: JobTracker,
    ) -> None:
        self.limits = config.limits
        self.deadline_s = config.deadline.sync_deadline_s
        self.pipeline = pipeline
        self.tracker = tracker
        self._background: set[asyncio.Task] = set()

    @property
    def provider(self) -> str:
        return self.pipeline.provider

    def load(self, data: bytes, media_type: str | None) -> Document:
        """Apply the size ceiling and page cap, in that order.

        Raises:
            SizeExceeded: If the upload is over the byte ceiling.
            DocumentCorrupt: If the document cannot be parsed.
            UnsupportedMediaType: For anything but PDF, JPEG or PNG.
            PageCountExceeded: If the document is over the page cap.
        """
        if len(data) > self.limits.max_bytes:
            raise SizeExceeded(len(data), self.limits.max_bytes)
        document = self.pipeline.segmenter.load(data, media_type)
        if document.total_pages > self.limits.max_pages:
            raise PageCountExceeded(document.total_pages, self.limits.max_pages)
        return document

    def needs_background(self, document: Document) -> bool:
        return (
            document.total_pages > self.limits.background_pages
            or document.size_bytes > self.limits.background_bytes
        )

    async def _run(self, document: Document, state: _RunState) -> ExtractionOutcome:
        def on_progress(pages_done: int) -> None:
            state.pages_done = pages_done
            if state.job_id is not None:
                self.tracker.update_progress(state.job_id, pages_done)

        result = await self.pipeline.run(document, on_progress)
        return ExtractionOutcome(
            document_id=document.document_id,
            provider=self.provider,
            result=result,
            page_count=document.total_pages,
            processing_time_ms=state.elapsed_ms(),
        )

    async def submit(
        self,
        data: bytes,
        media_type: str | None = None,
        file_name: str | None = None,
    ) -> ExtractionOutcome | JobAccepted:
        """Process a document, or accept it for background processing.

        Returns:
            ``ExtractionOutcome`` when the synchronous run beats the
            deadline, otherwise ``JobAccepted``.

        Raises:
            ExtractionError: For rejected uploads and for synchronous
                runs that failed before the deadline.
        """
        document = self.load(data, media_type)

        if self.needs_background(document):
            job = self.tracker.create(document.document_id, file_name, document.total_pages)
            state = _RunState(job_id=job.job_id)
            self.tracker.start(
                job.job_id,
                document.total_pages,
                self.pipeline.segmenter.chunk_count(document.total_pages),
            )
            self._spawn(self._finish_job(self._run(document, state), state))
            logger.info(
                "Document %s (%d pages) sent to background job %s",
                document.document_id,
                document.total_pages,
                job.job_id,
            )
            return JobAccepted(job.job_id)

        state = _RunState()
        task = asyncio.create_task(self._run(document, state))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.deadline_s)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        job = self.tracker.create(document.document_id, file_name, document.total_pages)
        self.tracker.start(
            job.job_id,
            document.total_pages,
            self.pipeline.segmenter.chunk_count(document.total_pages),
            state.pages_done,
        )
        state.job_id = job.job_id
        self._spawn(self._finish_job(task, state))
        logger.info(
            "Deadline of %.1fs passed for %s; continuing as job %s",
            self.deadline_s,
            document.document_id,
            job.job_id,
        )
        return JobAccepted(job.job_id)

    async def _finish_job(
        self, run: Awaitable[ExtractionOutcome], state: _RunState
    ) -> None:
        """Await a run and record its outcome in the job."""
        job_id = state.job_id
        try:
            outcome = await run
        except ExtractionError as exc:
            self.tracker.fail(job_id, exc.user_message, exc.code, state.elapsed_ms())
            return
        except Exception:
            logger.exception("Background job %s crashed", job_id)
            self.tracker.fail(
                job_id, ExtractionError.default_message, ExtractionError.code, state.elapsed_ms()
            )
            return
        self.tracker.complete(job_id, outcome.to_payload(), state.elapsed_ms())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for every background job to finish."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def run_to_completion(
        self, data: bytes, media_type: str | None = None
    ) -> ExtractionOutcome:
        """Run the full pipeline with no deadline and no job."""
        document = self.load(data, media_type)
        return await self._run(document, _RunState())

    def get_job(self, job_id: str) -> Job | None:
        return self.tracker.get(job_id)

    def job_status(self, job_id: str) -> JobProgress | None:
        """Polling view of a job, or ``None`` for an unknown id."""
        job = self.tracker.get(job_id)
        return progress_view(job) if job else None


def build_recognition_client(config: RecognitionConfig) -> RecognitionClient:
    """Create the recognition client named by ``config.provider``."""
    if config.provider == "docai":
        return DocumentAIClient(config)
    if config.provider == "tesseract":
        return TesseractRecognitionClient(config)
    raise ValueError(f"Unknown recognition provider: {config.provider}")


def build_controller(
    config: AppConfig, client: RecognitionClient | None = None
) -> ExtractionController:
    """Wire a controller from configuration."""
    segmenter = DocumentSegmenter(config.segmentation.pages_per_chunk)
    scheduler = ChunkScheduler(
        client or build_recognition_client(config.recognition),
        config.scheduler.max_concurrency,
    )
    rules_engine = RulesEngine(Path(config.validation.rules_path))
    normalizer = FieldNormalizer(config.normalization, rules_engine)
    tracker = JobTracker(build_job_store(config.jobs.backend, config.jobs.directory))
    return ExtractionController(config, DocumentPipeline(segmenter, scheduler, normalizer), tracker)
