"""Error taxonomy for the recognition pipeline.

Each error carries a stable machine code, an HTTP-equivalent status, and
a Spanish message safe to show to the person who uploaded the document.
A synchronous timeout is not an error: it becomes a ``JobAccepted``
outcome in the controller.
"""


class ExtractionError(Exception):
    """Base class for failures surfaced to callers."""

    code = "INTERNAL_ERROR"
    status = 500
    default_message = "Error interno procesando el documento"

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class DocumentCorrupt(ExtractionError):
    """The input cannot be parsed as a paginated document."""

    code = "INVALID_PDF"
    status = 400
    default_message = "PDF corrupto o no válido"


class UnsupportedMediaType(ExtractionError):
    """The declared or sniffed media type is not a PDF, JPEG, or PNG."""

    code = "INVALID_MIME_TYPE"
    status = 400
    default_message = "Tipo de archivo no soportado. Tipos válidos: PDF, JPEG, PNG"


class SizeExceeded(ExtractionError):
    """The upload is larger than the byte ceiling."""

    code = "FILE_TOO_LARGE"
    status = 413

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        max_mb = max_bytes // (1024 * 1024)
        super().__init__(f"Archivo demasiado grande (máx. {max_mb} MB)")


class PageCountExceeded(ExtractionError):
    """The document has more pages than the hard cap."""

    code = "DOC_TOO_LONG"
    status = 413

    def __init__(self, total_pages: int, max_pages: int) -> None:
        self.total_pages = total_pages
        self.max_pages = max_pages
        super().__init__(
            f"PDF demasiado largo ({total_pages} págs). "
            f"Máximo permitido: {max_pages} páginas"
        )


class ChunkRecognitionFailed(ExtractionError):
    """One chunk's recognition call failed, aborting the whole document."""

    code = "CHUNK_FAILED"
    status = 502

    def __init__(self, chunk_number: int, detail: str | None = None) -> None:
        self.chunk_number = chunk_number
        self.detail = detail
        super().__init__(f"Error procesando el documento (chunk {chunk_number})")


class BackendUnavailable(ExtractionError):
    """The recognition backend could not be reached or is misconfigured."""

    code = "OCR_UNAVAILABLE"
    status = 503

    def __init__(self, detail: str | None = None, chunk_number: int | None = None) -> None:
        self.detail = detail
        self.chunk_number = chunk_number
        super().__init__("Servicio OCR no disponible. Inténtalo de nuevo más tarde")


class InvalidJobTransition(Exception):
    """A job was moved backwards or out of a terminal state."""
