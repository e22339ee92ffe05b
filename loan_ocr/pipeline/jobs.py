"""Asynchronous job tracking.

A job follows ``pending -> processing -> completed | failed`` and never
moves backwards. The tracker is the only writer; pollers read through the
same store and so always see a state at least as advanced as the last
one they saw.
"""

import os
import re
import tempfile
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from loan_ocr.errors import InvalidJobTransition
from loan_ocr.utils.logger import get_logger

logger = get_logger(__name__)

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


class JobState(StrEnum):
    """Lifecycle states of an asynchronous job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED: dict[JobState, set[JobState]] = {
    JobState.PENDING: {JobState.PROCESSING, JobState.FAILED},
    JobState.PROCESSING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


def _now() -> datetime:
    return datetime.now(UTC)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


class JobMetadata(BaseModel):
    """Facts about the run a job tracks."""

    document_id: str | None = None
    file_name: str | None = None
    total_pages: int | None = None
    chunk_count: int | None = None
    processed_pages: int = 0
    elapsed_ms: float | None = None


class Job(BaseModel):
    """One asynchronous extraction run."""

    job_id: str
    state: JobState = JobState.PENDING
    created_at: datetime = Field(default_factory=_now)
    started_at: datetime | None = None
    updated_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None


class JobStore(Protocol):
    """Key-value storage for jobs. Last write wins per job id."""

    def get(self, job_id: str) -> Job | None: ...

    def set(self, job_id: str, job: Job) -> None: ...


class InMemoryJobStore:
    """Process-local job store.

    Jobs are copied on the way in and out so callers never share a
    mutable instance with the store.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def set(self, job_id: str, job: Job) -> None:
        with self._lock:
            self._jobs[job_id] = job.model_copy(deep=True)


class JsonFileJobStore:
    """Job store keeping one JSON file per job in a directory.

    Writes go to a temporary file that then replaces the job file, so a
    reader never sees a half-written job.

    Args:
        directory: Folder for job files; created if missing.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        if not _JOB_ID_RE.match(job_id):
            raise ValueError(f"invalid job id: {job_id!r}")
        return self.directory / f"{job_id}.json"

    def get(self, job_id: str) -> Job | None:
        if not _JOB_ID_RE.match(job_id):
            return None
        path = self._path(job_id)
        if not path.exists():
            return None
        try:
            return Job.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError:
            logger.warning("Discarding unreadable job file %s", path.name)
            return None

    def set(self, job_id: str, job: Job) -> None:
        path = self._path(job_id)
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(job.model_dump_json(indent=2))
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class JobTracker:
    """Drives jobs through their lifecycle in a ``JobStore``.

    Args:
        store: Where jobs are persisted.
    """

    def __init__(self, store: JobStore) -> None:
        self.store = store

    def get(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def _load(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise KeyError(job_id)
        return job

    def _transition(self, job: Job, target: JobState) -> None:
        if target not in _ALLOWED[job.state]:
            raise InvalidJobTransition(f"{job.job_id}: {job.state} -> {target}")
        job.state = target
        job.updated_at = _now()

    def create(
        self,
        document_id: str | None = None,
        file_name: str | None = None,
        total_pages: int | None = None,
    ) -> Job:
        """Register a new pending job."""
        job = Job(
            job_id=new_job_id(),
            metadata=JobMetadata(
                document_id=document_id, file_name=file_name, total_pages=total_pages
            ),
        )
        self.store.set(job.job_id, job)
        logger.info("Created job %s (%s pages)", job.job_id, total_pages)
        return job

    def start(
        self,
        job_id: str,
        total_pages: int,
        chunk_count: int,
        processed_pages: int = 0,
    ) -> Job:
        """Move a pending job to processing with its page and chunk counts."""
        job = self._load(job_id)
        self._transition(job, JobState.PROCESSING)
        job.started_at = job.updated_at
        job.metadata.total_pages = total_pages
        job.metadata.chunk_count = chunk_count
        job.metadata.processed_pages = min(processed_pages, total_pages)
        self.store.set(job_id, job)
        return job

    def update_progress(self, job_id: str, processed_pages: int) -> Job:
        """Record recognized pages. Progress never goes down."""
        job = self._load(job_id)
        if job.state != JobState.PROCESSING:
            raise InvalidJobTransition(f"{job_id}: progress update while {job.state}")
        total = job.metadata.total_pages or processed_pages
        pages = min(max(job.metadata.processed_pages, processed_pages), total)
        if pages != job.metadata.processed_pages:
            job.metadata.processed_pages = pages
            job.updated_at = _now()
            self.store.set(job_id, job)
        return job

    def complete(self, job_id: str, result: dict[str, Any], elapsed_ms: float) -> Job:
        """Attach the final field set and mark the job completed."""
        job = self._load(job_id)
        self._transition(job, JobState.COMPLETED)
        job.completed_at = job.updated_at
        job.result = result
        job.metadata.elapsed_ms = elapsed_ms
        if job.metadata.total_pages:
            job.metadata.processed_pages = job.metadata.total_pages
        self.store.set(job_id, job)
        logger.info("Job %s completed in %.0f ms", job_id, elapsed_ms)
        return job

    def fail(
        self,
        job_id: str,
        error: str,
        code: str | None = None,
        elapsed_ms: float | None = None,
    ) -> Job:
        """Attach an error message and mark the job failed."""
        job = self._load(job_id)
        self._transition(job, JobState.FAILED)
        job.completed_at = job.updated_at
        job.error = error
        job.error_code = code
        job.metadata.elapsed_ms = elapsed_ms
        self.store.set(job_id, job)
        logger.warning("Job %s failed: %s", job_id, code or error)
        return job


@dataclass(frozen=True)
class JobProgress:
    """What a poller is shown for a job."""

    job_id: str
    status: JobState
    progress: int
    current_page: int
    total_pages: int | None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None


def progress_view(job: Job) -> JobProgress:
    """Summarize a job for polling.

    Progress is bucketed by state: 0 while pending, 10 to 80 while
    processing (by recognized pages), 100 once terminal. The result is
    only exposed once completed and the error only once failed.
    """
    meta = job.metadata
    if job.state == JobState.PENDING:
        progress = 0
    elif job.state == JobState.PROCESSING:
        ratio = meta.processed_pages / meta.total_pages if meta.total_pages else 0.0
        progress = 10 + int(70 * min(ratio, 1.0))
    else:
        progress = 100

    return JobProgress(
        job_id=job.job_id,
        status=job.state,
        progress=progress,
        current_page=meta.processed_pages,
        total_pages=meta.total_pages,
        result=job.result if job.state == JobState.COMPLETED else None,
        error=job.error if job.state == JobState.FAILED else None,
        error_code=job.error_code if job.state == JobState.FAILED else None,
    )


def build_job_store(backend: str, directory: str) -> JobStore:
    """Create the job store named by configuration."""
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "file":
        return JsonFileJobStore(Path(directory))
    raise ValueError(f"Unknown job store backend: {backend}")
