"""Message protocol between the worker context and the orchestrator.

Every message carries the generation id of the job that produced it. The
orchestrator compares it with the current generation and drops stale ones.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Union

from .logging_utils import get_logger
from .models import ErrorKind, PredictData, PredictionResult, ProgressInfo

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressMessage:
    """Processing progress (decode, extraction, inference)."""

    generation: int
    progress: ProgressInfo


@dataclass(frozen=True)
class UploadProgressMessage:
    """Network transfer progress, reported separately from processing."""

    generation: int
    bytes_sent: int
    bytes_total: int

    @property
    def percent(self) -> float:
        if self.bytes_total <= 0:
            return 0.0
        return min(100.0, 100.0 * self.bytes_sent / self.bytes_total)


@dataclass(frozen=True)
class PredictionMessage:
    """Worker's successful output, before resolution against the catalog."""

    generation: int
    prediction: PredictionResult


@dataclass(frozen=True)
class ErrorMessage:
    """Terminal failure of a job."""

    generation: int
    kind: ErrorKind
    detail: str


@dataclass(frozen=True)
class CompleteMessage:
    """Terminal success of a job."""

    generation: int
    data: PredictData


ChannelMessage = Union[
    ProgressMessage,
    UploadProgressMessage,
    PredictionMessage,
    ErrorMessage,
    CompleteMessage,
]

# Variants delivered to subscribers
SubscriberMessage = Union[
    ProgressMessage, UploadProgressMessage, ErrorMessage, CompleteMessage
]


class GenerationCounter:
    """Monotonic job generation id shared by the caller and worker threads."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        with self._lock:
            return self._value

    def advance(self) -> int:
        """Start a new generation and return its id."""
        with self._lock:
            self._value += 1
            return self._value

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._value


class ProgressChannel:
    """
    Queue carrying ChannelMessages onto the orchestrator's event loop.

    `post()` may be called from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[ChannelMessage | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: ChannelMessage) -> None:
        """Enqueue a message; dropped silently once the channel is closed."""
        if self._closed:
            logger.trace(f"Channel closed, dropping {type(message).__name__}")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._queue.put_nowait(message)
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            # Event loop already closed
            logger.debug(f"Event loop closed, dropping {type(message).__name__}")

    async def get(self) -> ChannelMessage | None:
        """Next message, or None once the channel has been closed."""
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
        except RuntimeError:
            logger.debug("Event loop closed before channel shutdown")
