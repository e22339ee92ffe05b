"""Tests for the FastAPI REST endpoints."""

from collections.abc import Callable, Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from loan_ocr.api.app import app
from loan_ocr.errors import ChunkRecognitionFailed
from loan_ocr.pipeline.controller import ExtractionController, JobAccepted, build_controller
from loan_ocr.utils.config import AppConfig


@pytest.fixture
def controller(fake_client: Callable, sample_text: str) -> ExtractionController:
    """Controller backed by a fake recognition client."""
    return build_controller(AppConfig(), fake_client(text=sample_text))


@pytest.fixture
def client(controller: ExtractionController) -> Iterator[TestClient]:
    """Create a FastAPI test client wired to the fake controller."""
    with patch("loan_ocr.api.app._get_controller", return_value=controller):
        yield TestClient(app)


def _mock_controller(**submit_kwargs: object) -> MagicMock:
    mock = MagicMock()
    mock.submit = AsyncMock(**submit_kwargs)
    return mock


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["provider"] == "fake"
        assert isinstance(data["tesseract_available"], bool)


class TestFieldsEndpoint:
    """Tests for the /fields endpoint."""

    def test_lists_catalogue(self, client: TestClient) -> None:
        response = client.get("/fields")
        assert response.status_code == 200
        fields = {f["key"]: f for f in response.json()["fields"]}
        assert fields["principal_amount"]["critical"] is True
        assert fields["principal_amount"]["label"] == "Importe"
        assert fields["fees.apertura"]["type"] == "percent"
        assert fields["linked_products.nomina"]["critical"] is False


class TestExtractEndpoint:
    """Tests for the /extract endpoint."""

    def test_extract_pdf(self, client: TestClient, make_pdf: Callable) -> None:
        response = client.post(
            "/extract", files={"file": ("fein.pdf", make_pdf(3), "application/pdf")}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["provider"] == "fake"
        assert data["page_count"] == 3
        assert data["fields"]["apr"] == "3,85 %"
        assert data["fields"]["debit_account"] == "ES91 2100 0418 4502 0005 1332"
        assert data["by_field"]["apr"] == {"confidence": 0.75, "source": "pattern:tae"}
        assert data["confidence_global"] == 0.75
        assert data["pending"] == []

    def test_extract_image_sniffed(self, client: TestClient, png_bytes: bytes) -> None:
        response = client.post(
            "/extract", files={"file": ("scan", png_bytes, "application/octet-stream")}
        )
        assert response.status_code == 200
        assert response.json()["page_count"] == 1

    def test_unsupported_file_type(self, client: TestClient) -> None:
        response = client.post("/extract", files={"file": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_MIME_TYPE"

    def test_corrupt_pdf(self, client: TestClient) -> None:
        response = client.post(
            "/extract", files={"file": ("bad.pdf", b"%PDF-1.4 broken", "application/pdf")}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == {
            "code": "INVALID_PDF",
            "message": "PDF corrupto o no válido",
        }

    def test_too_many_pages(self, client: TestClient, make_pdf: Callable) -> None:
        response = client.post(
            "/extract", files={"file": ("long.pdf", make_pdf(61), "application/pdf")}
        )
        assert response.status_code == 413
        assert response.json()["detail"]["code"] == "DOC_TOO_LONG"

    def test_missing_file(self, client: TestClient) -> None:
        assert client.post("/extract").status_code == 422

    def test_background_job_accepted(self, make_pdf: Callable) -> None:
        mock = _mock_controller(return_value=JobAccepted("job_abc"))
        with patch("loan_ocr.api.app._get_controller", return_value=mock):
            response = TestClient(app).post(
                "/extract", files={"file": ("big.pdf", make_pdf(1), "application/pdf")}
            )

        assert response.status_code == 202
        data = response.json()
        assert data["job_id"] == "job_abc"
        assert data["status"] == "processing"
        assert "segundo plano" in data["message"]
        mock.submit.assert_awaited_once()
        assert mock.submit.call_args.args[1:] == ("application/pdf", "big.pdf")

    def test_chunk_failure(self, make_pdf: Callable) -> None:
        mock = _mock_controller(side_effect=ChunkRecognitionFailed(2, "timeout"))
        with patch("loan_ocr.api.app._get_controller", return_value=mock):
            response = TestClient(app).post(
                "/extract", files={"file": ("fein.pdf", make_pdf(1), "application/pdf")}
            )
        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "CHUNK_FAILED"

    def test_unexpected_error_is_generic(self, make_pdf: Callable) -> None:
        mock = _mock_controller(side_effect=RuntimeError("secret internals"))
        with patch("loan_ocr.api.app._get_controller", return_value=mock):
            response = TestClient(app).post(
                "/extract", files={"file": ("fein.pdf", make_pdf(1), "application/pdf")}
            )
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["code"] == "INTERNAL_ERROR"
        assert "secret" not in detail["message"]


class TestJobsEndpoint:
    """Tests for the /jobs/{job_id} endpoint."""

    def test_completed_job(self, client: TestClient, controller: ExtractionController) -> None:
        tracker = controller.tracker
        job_id = tracker.create(file_name="big.pdf", total_pages=20).job_id
        tracker.start(job_id, total_pages=20, chunk_count=2)
        tracker.complete(job_id, {"fields": {"apr": "3,85 %"}}, elapsed_ms=900.0)

        response = client.get(f"/jobs/{job_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["progress"] == 100
        assert data["current_page"] == 20
        assert data["result"] == {"fields": {"apr": "3,85 %"}}
        assert data["error"] is None

    def test_processing_job(self, client: TestClient, controller: ExtractionController) -> None:
        tracker = controller.tracker
        job_id = tracker.create(total_pages=30).job_id
        tracker.start(job_id, total_pages=30, chunk_count=2, processed_pages=15)

        data = client.get(f"/jobs/{job_id}").json()
        assert data["status"] == "processing"
        assert data["progress"] == 45
        assert data["total_pages"] == 30
        assert data["result"] is None

    def test_failed_job(self, client: TestClient, controller: ExtractionController) -> None:
        job_id = controller.tracker.create().job_id
        controller.tracker.fail(job_id, "Servicio OCR no disponible", "OCR_UNAVAILABLE")

        data = client.get(f"/jobs/{job_id}").json()
        assert data["status"] == "failed"
        assert data["error_code"] == "OCR_UNAVAILABLE"

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.get("/jobs/job_missing")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "JOB_NOT_FOUND"
