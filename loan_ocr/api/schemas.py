"""Pydantic request/response schemas for the FastAPI endpoints."""

from typing import Any

from pydantic import BaseModel


class FieldEvidence(BaseModel):
    """Confidence and origin of one extracted field."""

    confidence: float
    source: str


class ExtractionResponse(BaseModel):
    """Response schema for a document processed within the deadline."""

    success: bool = True
    document_id: str
    provider: str
    fields: dict[str, str]
    by_field: dict[str, FieldEvidence]
    confidence_global: float
    pending: list[str]
    warnings: list[str]
    page_count: int
    processing_time_ms: float


class JobAcceptedResponse(BaseModel):
    """Response schema for a document handed to a background job."""

    success: bool = True
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    """Response schema for polling a background job."""

    job_id: str
    status: str
    progress: int
    current_page: int
    total_pages: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None


class ErrorDetail(BaseModel):
    """Machine code and user-facing message of a rejected request."""

    code: str
    message: str


class FieldInfo(BaseModel):
    """Description of one extractable field."""

    key: str
    label: str
    type: str
    critical: bool


class FieldsResponse(BaseModel):
    """Response schema listing extractable fields."""

    fields: list[FieldInfo]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    provider: str
    tesseract_available: bool
