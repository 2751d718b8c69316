"""Client for a server-side identification endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import httpx

from .config import (
    DEFAULT_REMOTE_TIMEOUT,
    REMOTE_PREDICTION_PATH,
    REMOTE_UPLOAD_CHUNK_SIZE,
    REMOTE_UPLOAD_FIELD,
)
from .exceptions import CorruptAudioError, TransportError
from .logging_utils import get_logger
from .models import AudioSource, PredictData

logger = get_logger(__name__)

# Called with (bytes_sent, bytes_total)
UploadProgressCallback = Callable[[int, int], None]


def _error_detail(response: httpx.Response) -> str:
    """Best-effort human-readable message from an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


class RemoteIdentificationClient:
    """Uploads a recording to the identify endpoint and parses the result."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        chunk_size: int = REMOTE_UPLOAD_CHUNK_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: API root, e.g. "https://birds.example.org/api/"
            timeout: Request timeout in seconds
            chunk_size: Upload chunk size; one progress update per chunk
            transport: Optional httpx transport (used by tests)
        """
        if not base_url.endswith("/"):
            base_url += "/"
        self.base_url = base_url
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def identify(
        self,
        source: AudioSource,
        on_upload_progress: UploadProgressCallback | None = None,
    ) -> PredictData:
        """
        Upload a recording and return the service's result.

        Args:
            source: Validated recording
            on_upload_progress: Optional callback for transfer progress

        Returns:
            PredictData parsed from the response; the confidence gate is not
            applied here

        Raises:
            CorruptAudioError: If the recording can no longer be read
            TransportError: On network failure, an error status, or an
                unparseable response body
        """
        loop = asyncio.get_running_loop()
        try:
            audio = await loop.run_in_executor(None, source.read_bytes)
        except OSError as e:
            raise CorruptAudioError(f"Cannot read '{source.filename}': {e}") from e

        # Let httpx encode the multipart body, then stream it in chunks
        encoded = httpx.Request(
            "POST",
            self.base_url + REMOTE_PREDICTION_PATH,
            files={
                REMOTE_UPLOAD_FIELD: (
                    source.filename,
                    audio,
                    source.content_type or "application/octet-stream",
                )
            },
        )
        body = encoded.read()
        total = len(body)
        headers = {
            "Content-Type": encoded.headers["Content-Type"],
            "Content-Length": str(total),
        }

        async def stream() -> AsyncIterator[bytes]:
            sent = 0
            for offset in range(0, total, self.chunk_size):
                piece = body[offset : offset + self.chunk_size]
                yield piece
                sent += len(piece)
                if on_upload_progress is not None:
                    on_upload_progress(sent, total)

        logger.debug(f"Uploading {source.filename} ({total} bytes) to {self.base_url}")
        try:
            response = await self._client.post(
                REMOTE_PREDICTION_PATH, content=stream(), headers=headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Upload failed: {e}") from e

        if response.is_error:
            raise TransportError(
                f"Identification service returned {response.status_code}: "
                f"{_error_detail(response)}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError("Identification service returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise TransportError("Identification service returned an unexpected body")

        try:
            return PredictData.from_payload(payload)
        except (ValueError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed identification response: {e}") from e

    async def probe(self) -> None:
        """
        Open a connection to the service.

        Raises:
            TransportError: If the service is unreachable
        """
        try:
            response = await self._client.get("")
        except httpx.HTTPError as e:
            raise TransportError(f"Identification service unreachable: {e}") from e
        logger.debug(f"Identification service probe returned {response.status_code}")

    async def aclose(self) -> None:
        await self._client.aclose()
