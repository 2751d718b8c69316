"""Data models for bird call identification."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from ..catalog.models import SpeciesRecord
from .config import (
    DEFAULT_HOP_LENGTH,
    DEFAULT_MAX_LENGTH,
    DEFAULT_N_FFT,
    DEFAULT_N_MELS,
    DEFAULT_N_MFCC,
    DEFAULT_NUM_CHROMA_BINS,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_WINDOW,
    SPECTRAL_ROLLOFF_PERCENT,
    STAGE_PROGRESS_BANDS,
)


class ProgressStage(str, Enum):
    """Stages a job moves through, in order."""

    IDLE = "idle"
    LOADING = "loading"
    PREPROCESSING = "preprocessing"
    EXTRACTING = "extracting"
    PREDICTING = "predicting"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def order(self) -> int:
        """Position in the job state machine (error sorts after complete)."""
        return _STAGE_ORDER[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStage.COMPLETE, ProgressStage.ERROR)


_STAGE_ORDER = {stage: index for index, stage in enumerate(ProgressStage)}


class ErrorKind(str, Enum):
    """Stable error kinds carried by terminal error messages."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    FILE_TOO_LARGE = "file_too_large"
    CORRUPT_AUDIO = "corrupt_audio"
    EXTRACTION = "extraction"
    INFERENCE = "inference"
    CATALOG = "catalog"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class MatchStatus(str, Enum):
    """Outcome of a completed identification."""

    MATCHED = "matched"
    NO_CONFIDENT_MATCH = "no_confident_match"
    NOT_IN_CATALOG = "not_in_catalog"


@dataclass(frozen=True)
class AudioProcessorConfig:
    """Immutable feature extraction settings, fixed for an orchestrator's lifetime."""

    sample_rate: int = DEFAULT_SAMPLE_RATE
    n_mels: int = DEFAULT_N_MELS
    n_mfcc: int = DEFAULT_N_MFCC
    n_fft: int = DEFAULT_N_FFT
    hop_length: int = DEFAULT_HOP_LENGTH
    max_length: int = DEFAULT_MAX_LENGTH
    num_chroma_bins: int = DEFAULT_NUM_CHROMA_BINS
    window: str = DEFAULT_WINDOW
    rolloff_percent: float = SPECTRAL_ROLLOFF_PERCENT

    def __post_init__(self) -> None:
        """Reject settings that cannot produce a consistent feature shape."""
        for name in (
            "sample_rate",
            "n_mels",
            "n_mfcc",
            "n_fft",
            "hop_length",
            "max_length",
            "num_chroma_bins",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.n_mfcc > self.n_mels:
            raise ValueError(
                f"n_mfcc ({self.n_mfcc}) cannot exceed n_mels ({self.n_mels})"
            )
        if self.hop_length > self.n_fft:
            raise ValueError(
                f"hop_length ({self.hop_length}) cannot exceed n_fft ({self.n_fft})"
            )
        if not 0.0 < self.rolloff_percent <= 1.0:
            raise ValueError(
                f"rolloff_percent must be in (0, 1], got {self.rolloff_percent}"
            )

    @property
    def n_frames(self) -> int:
        """Frame count produced for a `max_length` signal centred by n_fft // 2."""
        return 1 + self.max_length // self.hop_length

    @property
    def n_bins(self) -> int:
        """Number of non-negative frequency bins per FFT."""
        return self.n_fft // 2 + 1

    @property
    def feature_width(self) -> int:
        """Columns of the per-frame model input matrix."""
        return self.n_mfcc + 4 + self.num_chroma_bins


@dataclass
class AudioSource:
    """A submitted recording: either a path on disk or in-memory bytes."""

    filename: str
    path: Path | None = None
    data: bytes | None = None
    content_type: str | None = None

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> AudioSource:
        path = Path(path)
        return cls(filename=path.name, path=path, content_type=content_type)

    @classmethod
    def from_bytes(
        cls, data: bytes, filename: str, content_type: str | None = None
    ) -> AudioSource:
        return cls(filename=filename, data=data, content_type=content_type)

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower().lstrip(".")

    @property
    def size(self) -> int:
        """Size in bytes, without reading the file."""
        if self.data is not None:
            return len(self.data)
        if self.path is not None:
            return self.path.stat().st_size
        return 0

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is not None:
            return self.path.read_bytes()
        return b""


@dataclass
class AudioBuffer:
    """Decoded mono PCM samples."""

    samples: np.ndarray
    sample_rate: int
    duration: float


@dataclass
class AudioFeatures:
    """Per-frame acoustic features; every sequence shares one frame count."""

    mfccs: np.ndarray  # (n_frames, n_mfcc)
    spectral_centroid: np.ndarray  # (n_frames,)
    zero_crossing_rate: np.ndarray  # (n_frames,)
    spectral_rolloff: np.ndarray  # (n_frames,)
    spectral_bandwidth: np.ndarray  # (n_frames,)
    chroma: np.ndarray  # (n_frames, num_chroma_bins)

    @property
    def n_frames(self) -> int:
        return int(self.mfccs.shape[0])

    def to_matrix(self) -> np.ndarray:
        """
        Stack all features into one float32 matrix, one row per frame.

        Columns are MFCCs, centroid, zero-crossing rate, rolloff, bandwidth,
        then chroma.

        Returns:
            Array of shape (n_frames, n_mfcc + 4 + num_chroma_bins)
        """
        scalars = np.stack(
            [
                self.spectral_centroid,
                self.zero_crossing_rate,
                self.spectral_rolloff,
                self.spectral_bandwidth,
            ],
            axis=1,
        )
        return np.hstack([self.mfccs, scalars, self.chroma]).astype(np.float32)


@dataclass
class PredictionResult:
    """Top class of a probability mapping."""

    class_name: str
    confidence: float
    probabilities: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressInfo:
    """A progress update; `percent` is job-level and non-decreasing."""

    stage: ProgressStage
    percent: float
    message: str

    @classmethod
    def for_stage(
        cls, stage: ProgressStage, fraction: float, message: str
    ) -> ProgressInfo:
        """
        Map a stage-local completion fraction onto the job-level percent band.

        Args:
            stage: Stage reporting progress
            fraction: Completion of that stage, clamped to [0, 1]
            message: Human-readable status

        Returns:
            ProgressInfo with percent inside the stage's band
        """
        start, end = STAGE_PROGRESS_BANDS.get(stage.value, (0.0, 0.0))
        fraction = min(max(fraction, 0.0), 1.0)
        percent = start + (end - start) * fraction
        # Only the complete stage may report 100
        if stage is not ProgressStage.COMPLETE:
            percent = min(percent, 99.0)
        return cls(stage=stage, percent=round(percent, 2), message=message)


@dataclass
class PredictData:
    """Pipeline output consumed by the caller."""

    bird_data: SpeciesRecord | None = None
    confidence: float | None = None
    scientific_nm: str | None = None
    class_name: str | None = None
    status: MatchStatus | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def is_empty(self) -> bool:
        return self.confidence is None and self.error is None

    @property
    def is_match(self) -> bool:
        return self.status is MatchStatus.MATCHED and self.bird_data is not None

    def headline(self) -> str:
        """Caller-facing summary of the outcome."""
        if self.error:
            return f"Identification failed: {self.error}"
        if self.confidence is None:
            return "No identification yet"
        percent = round(self.confidence * 100)
        if self.status is MatchStatus.NO_CONFIDENT_MATCH:
            return f"No identification found ({percent}% best guess)"
        if self.status is MatchStatus.NOT_IN_CATALOG:
            return f"{self.scientific_nm} ({percent}%): species not found in catalog"
        name = self.bird_data.bird_nm if self.bird_data else self.scientific_nm
        return f"{name} ({self.scientific_nm}) {percent}%"

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the identify endpoint's response shape."""
        payload: dict[str, Any] = {"confidence": self.confidence}
        if self.bird_data is not None:
            payload["bird_data"] = self.bird_data.to_dict()
        if self.scientific_nm is not None:
            payload["scientific_nm"] = self.scientific_nm
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PredictData:
        """
        Parse an identify endpoint response.

        Args:
            payload: Decoded JSON body

        Returns:
            PredictData without a match status; the caller applies the gate

        Raises:
            ValueError: If confidence is missing or not a number, or bird_data
                is not an object
        """
        bird = payload.get("bird_data")
        confidence = payload.get("confidence")
        if payload.get("error"):
            return cls(
                confidence=float(confidence) if confidence is not None else None,
                scientific_nm=payload.get("scientific_nm"),
                error=str(payload["error"]),
                error_kind=ErrorKind.INFERENCE,
            )
        if confidence is None:
            raise ValueError("Response payload has no confidence")
        if bird and not isinstance(bird, dict):
            raise ValueError(f"bird_data must be an object, got {type(bird).__name__}")
        return cls(
            bird_data=SpeciesRecord.from_dict(bird) if bird else None,
            confidence=float(confidence),
            scientific_nm=payload.get("scientific_nm"),
            class_name=payload.get("scientific_nm"),
        )


@dataclass
class Job:
    """One submitted identification, tagged with its generation id."""

    generation: int
    source: AudioSource
    submitted_at: float = field(default_factory=time.monotonic)
    finished: bool = False
    last_stage: ProgressStage = ProgressStage.IDLE
    last_percent: float = 0.0
