"""Custom exceptions for bird call identification."""

from .models import ErrorKind


class IdentificationError(Exception):
    """Base exception for identification errors."""

    kind = ErrorKind.INTERNAL


class InputValidationError(IdentificationError):
    """Exception raised when a submission is rejected before decoding."""

    pass


class UnsupportedFormatError(InputValidationError):
    """Exception raised for files outside the audio allow-list."""

    kind = ErrorKind.UNSUPPORTED_FORMAT


class FileTooLargeError(InputValidationError):
    """Exception raised for files above the size limit."""

    kind = ErrorKind.FILE_TOO_LARGE


class CorruptAudioError(IdentificationError):
    """Exception raised when audio cannot be decoded into usable samples."""

    kind = ErrorKind.CORRUPT_AUDIO


class ExtractionError(IdentificationError):
    """Exception raised when feature extraction hits a malformed spectrum."""

    kind = ErrorKind.EXTRACTION


class InferenceError(IdentificationError):
    """Exception raised for model loading or malformed model output."""

    kind = ErrorKind.INFERENCE


class CatalogLookupError(IdentificationError):
    """Exception raised when the species catalog cannot be consulted."""

    kind = ErrorKind.CATALOG


class TransportError(IdentificationError):
    """Exception raised for network failures talking to the remote endpoint."""

    kind = ErrorKind.TRANSPORT


class JobTimeoutError(IdentificationError):
    """Exception raised when a job does not finish within its time bound."""

    kind = ErrorKind.TIMEOUT


class JobSupersededError(IdentificationError):
    """Exception raised when an awaited job was replaced by a newer submission."""

    pass
