"""Recognition backend client.

Sends one chunk's bytes to the remote recognition service and returns a
``RecognitionResult``. The client never raises and never retries: any
non-success response, network failure, malformed body, or call exceeding
the per-call timeout becomes ``success=False`` with an error message.
"""

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import httpx

from loan_ocr.utils.config import RecognitionConfig
from loan_ocr.utils.logger import get_logger

from .entities import Entity
from .segmenter import Chunk

logger = get_logger(__name__)

# Statuses meaning the service itself is unreachable or misconfigured,
# rather than unable to read this particular chunk.
_UNAVAILABLE_STATUSES = {401, 403, 404}


class FailureKind(StrEnum):
    """Why a recognition call did not succeed."""

    CHUNK = "chunk"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RecognitionResult:
    """Outcome of recognizing one chunk."""

    success: bool
    entities: tuple[Entity, ...] = ()
    text: str = ""
    error: str | None = None
    failure_kind: FailureKind | None = None
    elapsed_ms: float = field(default=0.0, compare=False)

    @classmethod
    def failed(
        cls,
        error: str,
        kind: FailureKind = FailureKind.CHUNK,
        elapsed_ms: float = 0.0,
    ) -> "RecognitionResult":
        return cls(success=False, error=error, failure_kind=kind, elapsed_ms=elapsed_ms)


class RecognitionClient(Protocol):
    """Anything that can recognize a chunk."""

    provider: str

    async def recognize(self, chunk: Chunk) -> RecognitionResult: ...


def parse_response_body(body: Any) -> RecognitionResult:
    """Convert a backend JSON body into a ``RecognitionResult``.

    Accepts the flat ``{success, entities, text, error}`` shape and the
    ``{success, results: [...]}`` envelope, whose first result is used.

    Raises:
        ValueError: If the body is not shaped like either form.
    """
    if not isinstance(body, dict):
        raise ValueError("response body is not an object")

    payload = body
    results = body.get("results")
    if isinstance(results, list):
        if not results or not isinstance(results[0], dict):
            raise ValueError("empty results envelope")
        payload = results[0]

    success = body.get("success")
    if not isinstance(success, bool):
        raise ValueError("missing success flag")
    if payload.get("status") == "error":
        success = False
    if not success:
        error = payload.get("error") or body.get("message") or body.get("error")
        return RecognitionResult.failed(str(error or "recognition failed"))

    raw_entities = payload.get("entities") or []
    if not isinstance(raw_entities, list):
        raise ValueError("entities is not a list")
    entities = tuple(Entity.from_payload(e) for e in raw_entities if isinstance(e, dict))

    text = payload.get("text") or ""
    if not isinstance(text, str):
        raise ValueError("text is not a string")
    return RecognitionResult(success=True, entities=entities, text=text)


class DocumentAIClient:
    """HTTP client for the remote document recognition endpoint.

    Args:
        config: Recognition configuration (endpoint, token, timeout).
        http_client: Optional shared ``httpx.AsyncClient``; one is created
            per call when omitted.
    """

    provider = "docai"

    def __init__(
        self,
        config: RecognitionConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint_url = config.endpoint_url
        self.api_token = config.api_token
        self.timeout_s = config.timeout_s
        self._http_client = http_client

    def _headers(self, chunk: Chunk) -> dict[str, str]:
        headers = {"Content-Type": chunk.media_type, "Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _post(self, chunk: Chunk) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(
                self.endpoint_url,
                content=chunk.data,
                headers=self._headers(chunk),
                timeout=self.timeout_s,
            )
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.post(
                self.endpoint_url, content=chunk.data, headers=self._headers(chunk)
            )

    async def recognize(self, chunk: Chunk) -> RecognitionResult:
        """Recognize one chunk.

        Args:
            chunk: The chunk to send.

        Returns:
            A successful result with entities and text, or a failure whose
            ``failure_kind`` separates an unreachable service from a chunk
            the service could not process.
        """
        if not self.endpoint_url:
            return RecognitionResult.failed(
                "CONFIG: recognition endpoint not configured", FailureKind.UNAVAILABLE
            )

        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            response = await self._post(chunk)
        except httpx.TimeoutException:
            logger.warning("Chunk %d timed out after %.0f ms", chunk.index + 1, elapsed())
            return RecognitionResult.failed("recognition call timed out", elapsed_ms=elapsed())
        except httpx.HTTPError as exc:
            logger.warning(
                "Chunk %d could not reach backend: %s", chunk.index + 1, type(exc).__name__
            )
            return RecognitionResult.failed(
                f"backend unreachable: {type(exc).__name__}",
                FailureKind.UNAVAILABLE,
                elapsed(),
            )

        if response.status_code in _UNAVAILABLE_STATUSES:
            return RecognitionResult.failed(
                f"HTTP {response.status_code}", FailureKind.UNAVAILABLE, elapsed()
            )
        if not response.is_success:
            return RecognitionResult.failed(
                f"HTTP {response.status_code}: {response.text[:200]}", elapsed_ms=elapsed()
            )

        try:
            result = parse_response_body(response.json())
        except ValueError as exc:
            logger.warning("Chunk %d returned a malformed body: %s", chunk.index + 1, exc)
            return RecognitionResult.failed(f"malformed response: {exc}", elapsed_ms=elapsed())

        logger.info(
            "Chunk %d (pages %d-%d) recognized in %.0f ms: %d entities",
            chunk.index + 1,
            chunk.first_page,
            chunk.last_page,
            elapsed(),
            len(result.entities),
        )
        return RecognitionResult(
            success=result.success,
            entities=result.entities,
            text=result.text,
            error=result.error,
            failure_kind=result.failure_kind,
            elapsed_ms=elapsed(),
        )
