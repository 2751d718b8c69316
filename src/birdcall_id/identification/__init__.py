"""Bird call identification pipeline."""

from .channel import (
    CompleteMessage,
    ErrorMessage,
    ProgressMessage,
    UploadProgressMessage,
)
from .decoder import AudioDecoder
from .exceptions import (
    IdentificationError,
    InputValidationError,
    JobSupersededError,
    JobTimeoutError,
)
from .features import FeatureExtractor
from .inference import (
    JoblibInferenceEngine,
    OnnxInferenceEngine,
    create_inference_engine,
    load_labels,
)
from .interfaces import InferenceEngine
from .models import (
    AudioFeatures,
    AudioProcessorConfig,
    AudioSource,
    ErrorKind,
    MatchStatus,
    PredictData,
    PredictionResult,
    ProgressInfo,
    ProgressStage,
)
from .orchestrator import PipelineOrchestrator
from .remote import RemoteIdentificationClient
from .resolver import ResultResolver

__all__ = [
    "AudioDecoder",
    "AudioFeatures",
    "AudioProcessorConfig",
    "AudioSource",
    "CompleteMessage",
    "ErrorKind",
    "ErrorMessage",
    "FeatureExtractor",
    "IdentificationError",
    "InferenceEngine",
    "InputValidationError",
    "JobSupersededError",
    "JobTimeoutError",
    "JoblibInferenceEngine",
    "MatchStatus",
    "OnnxInferenceEngine",
    "PipelineOrchestrator",
    "PredictData",
    "PredictionResult",
    "ProgressInfo",
    "ProgressMessage",
    "RemoteIdentificationClient",
    "ResultResolver",
    "UploadProgressMessage",
    "create_inference_engine",
    "load_labels",
]
