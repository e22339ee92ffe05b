"""Shared test fixtures for the loan disclosure OCR test suite."""

import asyncio
import io
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from pypdf import PdfWriter

from loan_ocr.ocr.entities import Entity
from loan_ocr.ocr.recognition import FailureKind, RecognitionResult
from loan_ocr.ocr.segmenter import Chunk
from loan_ocr.utils.config import AppConfig, DeadlineConfig

SAMPLE_TEXT = """FICHA EUROPEA DE INFORMACIÓN NORMALIZADA (FEIN)
Fecha de emisión: 15/03/2024
Válida hasta el 15/04/2024

Capital solicitado: 250.000,00 €
Valor de tasación: 310.000,00 €
Plazo: 25 años
Tipo de interés: Variable
Índice de referencia: Euríbor 12 meses + 0,99 %
TIN: 3,50 %
TAE: 3,85 %
Cuota mensual: 1.251,56 €
Sistema de amortización: francés

Comisión de apertura: 0,50 %
Gastos de notaría: 850,00 €
Gastos de registro: 400,00 €

Bonificaciones
Nómina: -0,50 %
Seguro de hogar: -0,25 %

Cuenta de cargo: ES91 2100 0418 4502 0005 1332
"""


class FakeRecognitionClient:
    """Recognition client returning canned results after a delay.

    Text and entities are returned for the first chunk only, as if the
    key figures sat on the first pages of the document.
    """

    provider = "fake"

    def __init__(
        self,
        text: str = "",
        entities: tuple[Entity, ...] = (),
        delay: float = 0.0,
        fail_chunks: tuple[int, ...] = (),
        failure_kind: FailureKind = FailureKind.CHUNK,
    ) -> None:
        self.text = text
        self.entities = entities
        self.delay = delay
        self.fail_chunks = fail_chunks
        self.failure_kind = failure_kind
        self.calls: list[int] = []

    async def recognize(self, chunk: Chunk) -> RecognitionResult:
        self.calls.append(chunk.index)
        if self.delay:
            await asyncio.sleep(self.delay)
        if chunk.index in self.fail_chunks:
            return RecognitionResult.failed("backend said no", self.failure_kind)
        if chunk.index == 0:
            return RecognitionResult(success=True, entities=self.entities, text=self.text)
        return RecognitionResult(success=True)


def build_pdf(pages: int) -> bytes:
    """Create an in-memory PDF with ``pages`` blank pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def sample_text() -> str:
    """Return the text of a typical loan disclosure document."""
    return SAMPLE_TEXT


@pytest.fixture
def make_pdf() -> Callable[[int], bytes]:
    """Return a builder for blank PDFs of a given page count."""
    return build_pdf


@pytest.fixture
def png_bytes() -> bytes:
    """Create a minimal PNG image as bytes."""
    img = Image.fromarray(np.zeros((100, 200, 3), dtype=np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def fake_client() -> Callable[..., FakeRecognitionClient]:
    """Return a factory for fake recognition clients."""
    return FakeRecognitionClient


@pytest.fixture
def app_config() -> AppConfig:
    """Default configuration with a short synchronous deadline."""
    return AppConfig(deadline=DeadlineConfig(sync_deadline_s=2.0))


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"
