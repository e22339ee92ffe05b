"""FastAPI application for the loan disclosure recognition API.

Provides REST endpoints for document submission, background job
polling, the field catalogue, and health checks.
"""

import shutil
from functools import lru_cache
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from loan_ocr import __version__
from loan_ocr.errors import ExtractionError
from loan_ocr.extraction.fields import catalogue
from loan_ocr.pipeline.controller import ExtractionController, JobAccepted, build_controller
from loan_ocr.utils.config import load_config
from loan_ocr.utils.logger import get_logger

from .schemas import (
    ErrorDetail,
    ExtractionResponse,
    FieldInfo,
    FieldsResponse,
    HealthResponse,
    JobAcceptedResponse,
    JobStatusResponse,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Loan Disclosure OCR API",
    description="Extract confidence-scored financial fields from loan disclosure documents",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def _get_controller() -> ExtractionController:
    """Build the shared controller once per process."""
    return build_controller(load_config())


def _error(status: int, code: str, message: str) -> HTTPException:
    detail = ErrorDetail(code=code, message=message)
    return HTTPException(status_code=status, detail=detail.model_dump())


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        provider=_get_controller().provider,
        tesseract_available=shutil.which("tesseract") is not None,
    )


@app.post(
    "/extract",
    response_model=ExtractionResponse | JobAcceptedResponse,
    responses={202: {"model": JobAcceptedResponse}},
)
async def extract_document(
    file: Annotated[UploadFile, File(...)],
    response: Response,
) -> ExtractionResponse | JobAcceptedResponse:
    """Extract loan fields from an uploaded document.

    Small documents are processed within the synchronous deadline and
    answered with 200. Large documents, and runs that miss the deadline,
    are answered with 202 and a job id to poll.

    Args:
        file: Uploaded document (PDF, JPEG, or PNG).
        response: Outgoing response, used to set the 202 status.

    Returns:
        The extracted fields, or the accepted background job.
    """
    controller = _get_controller()
    content = await file.read()
    try:
        outcome = await controller.submit(content, file.content_type, file.filename)
    except ExtractionError as exc:
        logger.warning("Extraction rejected: %s", exc.code)
        raise _error(exc.status, exc.code, exc.user_message) from exc
    except Exception as exc:
        logger.exception("Extraction failed")
        raise _error(
            ExtractionError.status, ExtractionError.code, ExtractionError.default_message
        ) from exc

    if isinstance(outcome, JobAccepted):
        response.status_code = 202
        return JobAcceptedResponse(
            job_id=outcome.job_id, status=outcome.status, message=outcome.message
        )
    return ExtractionResponse(**outcome.to_payload())


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str) -> JobStatusResponse:
    """Poll a background job.

    Args:
        job_id: Identifier returned by ``POST /extract`` with 202.

    Returns:
        Job state, progress, and the result or error once terminal.
    """
    progress = _get_controller().job_status(job_id)
    if progress is None:
        raise _error(404, "JOB_NOT_FOUND", "Trabajo no encontrado")
    return JobStatusResponse(
        job_id=progress.job_id,
        status=progress.status.value,
        progress=progress.progress,
        current_page=progress.current_page,
        total_pages=progress.total_pages,
        result=progress.result,
        error=progress.error,
        error_code=progress.error_code,
    )


@app.get("/fields", response_model=FieldsResponse)
async def list_fields() -> FieldsResponse:
    """List the extractable loan fields."""
    return FieldsResponse(fields=[FieldInfo(**entry) for entry in catalogue()])
