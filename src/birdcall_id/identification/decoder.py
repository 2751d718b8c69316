"""Audio file validation and decoding."""

from __future__ import annotations

import mimetypes
import os
import tempfile
from pathlib import Path

import librosa
import numpy as np

from .config import (
    ALLOWED_AUDIO_EXTENSIONS,
    ALLOWED_AUDIO_MIME_TYPES,
    DEFAULT_SAMPLE_RATE,
    MAX_AUDIO_FILE_SIZE,
)
from .exceptions import CorruptAudioError, FileTooLargeError, UnsupportedFormatError
from .logging_utils import get_logger
from .models import AudioBuffer, AudioSource

logger = get_logger(__name__)


class AudioDecoder:
    """Validates submitted recordings and decodes them to mono PCM."""

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        max_file_size: int = MAX_AUDIO_FILE_SIZE,
        allowed_extensions: tuple[str, ...] = ALLOWED_AUDIO_EXTENSIONS,
        allowed_mime_types: tuple[str, ...] = ALLOWED_AUDIO_MIME_TYPES,
    ) -> None:
        """
        Initialize the decoder.

        Args:
            sample_rate: Rate every recording is resampled to
            max_file_size: Largest accepted file in bytes
            allowed_extensions: Accepted file extensions, without the dot
            allowed_mime_types: Accepted MIME types
        """
        self.sample_rate = sample_rate
        self.max_file_size = max_file_size
        self.allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)
        self.allowed_mime_types = tuple(mime.lower() for mime in allowed_mime_types)

    def _content_type(self, source: AudioSource) -> str | None:
        if source.content_type:
            return source.content_type.split(";")[0].strip().lower()
        guessed, _ = mimetypes.guess_type(source.filename)
        return guessed.lower() if guessed else None

    def validate(self, source: AudioSource) -> None:
        """
        Reject a submission before any decoding work.

        A file passes the format check when either its MIME type or its
        extension is on the allow-list. A path that cannot be stat'ed is
        let through so that the job reports it as corrupt audio.

        Args:
            source: Submitted recording

        Raises:
            UnsupportedFormatError: If neither MIME type nor extension is allowed
            FileTooLargeError: If the file exceeds the size limit
        """
        content_type = self._content_type(source)
        if (
            content_type not in self.allowed_mime_types
            and source.extension not in self.allowed_extensions
        ):
            allowed = ", ".join(ext.upper() for ext in self.allowed_extensions)
            raise UnsupportedFormatError(
                f"Unsupported audio format for '{source.filename}' "
                f"(expected {allowed})"
            )

        try:
            size = source.size
        except OSError as e:
            logger.debug(f"Cannot stat '{source.filename}', skipping size check: {e}")
            return

        if size > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            raise FileTooLargeError(
                f"File size must be less than {limit_mb:.0f}MB "
                f"('{source.filename}' is {size / (1024 * 1024):.1f}MB)"
            )

    def decode(self, source: AudioSource) -> AudioBuffer:
        """
        Validate and decode a recording.

        Args:
            source: Submitted recording

        Returns:
            AudioBuffer with mono float32 samples at the configured rate

        Raises:
            UnsupportedFormatError: If the format is not allowed
            FileTooLargeError: If the file is too large
            CorruptAudioError: If decoding yields no usable samples
        """
        self.validate(source)

        if source.path is not None:
            samples = self._load(source.path, source.filename)
        else:
            temp_path = self._write_temp_file(source)
            try:
                samples = self._load(temp_path, source.filename)
            finally:
                self._cleanup_temp_file(temp_path)

        if samples.size == 0:
            raise CorruptAudioError(f"No audio samples decoded from '{source.filename}'")
        if not np.all(np.isfinite(samples)):
            raise CorruptAudioError(f"Decoded audio from '{source.filename}' is not finite")

        duration = samples.size / float(self.sample_rate)
        logger.debug(
            f"Decoded '{source.filename}': {samples.size} samples, "
            f"{duration:.2f}s at {self.sample_rate}Hz"
        )
        return AudioBuffer(
            samples=samples.astype(np.float32, copy=False),
            sample_rate=self.sample_rate,
            duration=duration,
        )

    def _load(self, path: Path, filename: str) -> np.ndarray:
        try:
            samples, _ = librosa.load(str(path), sr=self.sample_rate, mono=True)
        except Exception as e:
            raise CorruptAudioError(f"Failed to decode '{filename}': {e}") from e
        return np.asarray(samples)

    def _write_temp_file(self, source: AudioSource) -> Path:
        """Spill in-memory audio to disk; some codecs only decode from a path."""
        suffix = f".{source.extension}" if source.extension else ""
        with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as temp_file:
            temp_file.write(source.read_bytes())
            return Path(temp_file.name)

    def _cleanup_temp_file(self, path: Path) -> None:
        try:
            os.unlink(path)
        except OSError as e:
            logger.warning(f"Failed to remove temporary audio file {path}: {e}")
