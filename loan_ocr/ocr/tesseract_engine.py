"""Local Tesseract OCR provider.

Used when no remote recognition backend is configured or reachable. It
returns page text only (no entities), so every field it yields comes
from the deterministic pattern pass and carries the lower confidence
band of that pass.
"""

import asyncio
import io
import time
from dataclasses import dataclass

import numpy as np
import pytesseract
from PIL import Image

from loan_ocr.utils.config import RecognitionConfig
from loan_ocr.utils.logger import get_logger

from .pdf_handler import PDFHandler
from .recognition import FailureKind, RecognitionResult
from .segmenter import PDF, Chunk

logger = get_logger(__name__)


@dataclass
class PageText:
    """OCR text for one rendered page."""

    text: str
    confidence: float


class TesseractEngine:
    """Wrapper around Tesseract OCR for page text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "spa",
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang

    def extract_text(self, image: np.ndarray, psm: int = 3) -> PageText:
        """Extract text from a page image.

        Args:
            image: Page image as a numpy array.
            psm: Tesseract page segmentation mode.

        Returns:
            Page text with the mean word confidence in ``[0, 1]``.
        """
        config = f"--psm {psm}"
        pil_image = Image.fromarray(image)
        text = pytesseract.image_to_string(pil_image, lang=self.default_lang, config=config)
        data = pytesseract.image_to_data(
            pil_image,
            lang=self.default_lang,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"], strict=False)
            if float(conf) > 0 and str(word).strip()
        ]
        avg_conf = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0
        return PageText(text=text, confidence=avg_conf)


class TesseractRecognitionClient:
    """Recognition client that OCRs chunks locally.

    Rendering and OCR are blocking, so they run in a worker thread. A
    call that outlives ``timeout_s`` is reported as a failure; the worker
    thread is left to finish on its own.

    Args:
        config: Recognition configuration (timeout, language, DPI).
        engine: OCR engine; built from ``config`` when omitted.
        pdf_handler: PDF renderer; built from ``config`` when omitted.
    """

    provider = "tesseract"

    def __init__(
        self,
        config: RecognitionConfig,
        engine: TesseractEngine | None = None,
        pdf_handler: PDFHandler | None = None,
    ) -> None:
        self.timeout_s = config.timeout_s
        self.engine = engine or TesseractEngine(config.tesseract_cmd, config.default_lang)
        self.pdf_handler = pdf_handler or PDFHandler(dpi=config.pdf_dpi)

    def _load_images(self, chunk: Chunk) -> list[np.ndarray]:
        if chunk.media_type == PDF:
            return self.pdf_handler.pdf_to_images(chunk.data)
        img = Image.open(io.BytesIO(chunk.data)).convert("RGB")
        return [np.array(img)]

    def _recognize_sync(self, chunk: Chunk) -> str:
        pages = [self.engine.extract_text(image) for image in self._load_images(chunk)]
        logger.info(
            "Tesseract read %d pages of chunk %d (mean confidence %.2f)",
            len(pages),
            chunk.index + 1,
            sum(p.confidence for p in pages) / len(pages) if pages else 0.0,
        )
        return "\n".join(p.text.strip() for p in pages).strip()

    async def recognize(self, chunk: Chunk) -> RecognitionResult:
        """OCR one chunk; never raises."""
        start = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._recognize_sync, chunk), timeout=self.timeout_s
            )
        except TimeoutError:
            return RecognitionResult.failed("local OCR timed out")
        except pytesseract.TesseractNotFoundError:
            return RecognitionResult.failed("tesseract not installed", FailureKind.UNAVAILABLE)
        except (pytesseract.TesseractError, RuntimeError, OSError) as exc:
            logger.warning("Local OCR failed for chunk %d: %s", chunk.index + 1, exc)
            return RecognitionResult.failed(f"local OCR failed: {exc}")

        return RecognitionResult(
            success=True,
            text=text,
            elapsed_ms=(time.perf_counter() - start) * 1000,
        )
