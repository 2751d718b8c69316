"""Inference backends for the pre-trained bird call classifier."""

from __future__ import annotations

import threading
from abc import abstractmethod
from pathlib import Path
from typing import Any

import joblib
import numpy as np

from .config import ONNX_EXECUTION_PROVIDERS, PROBABILITY_SUM_TOLERANCE
from .exceptions import InferenceError
from .interfaces import InferenceEngine
from .logging_utils import get_logger
from .models import AudioFeatures

# Import onnxruntime at module level for proper mocking in tests
try:
    import onnxruntime  # type: ignore[import-untyped]
except ImportError:
    onnxruntime = None

logger = get_logger(__name__)


def load_labels(path: str | Path) -> list[str]:
    """
    Read a label file, one label per line.

    Blank lines and lines starting with '#' are ignored.

    Raises:
        InferenceError: If the file cannot be read or holds no labels
    """
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise InferenceError(f"Failed to read labels file {path}: {e}") from e

    labels = [line.strip() for line in lines if line.strip() and not line.startswith("#")]
    if not labels:
        raise InferenceError(f"Labels file {path} is empty")
    return labels


def softmax(values: np.ndarray) -> np.ndarray:
    shifted = values - np.max(values)
    exp = np.exp(shifted)
    return exp / exp.sum()


def validate_probabilities(labels: list[str], values: Any) -> dict[str, float]:
    """
    Check raw model output and map it onto the label set.

    Args:
        labels: Label set, in output order
        values: Model output for a single recording

    Returns:
        Label to probability mapping

    Raises:
        InferenceError: If the label count differs, a value is not finite or
            negative, or the values do not sum to 1 within tolerance
    """
    try:
        probabilities = np.asarray(values, dtype=np.float64).ravel()
    except (TypeError, ValueError) as e:
        raise InferenceError(f"Model output is not numeric: {e}") from e

    if probabilities.size != len(labels):
        raise InferenceError(
            f"Model produced {probabilities.size} outputs for {len(labels)} labels"
        )
    if not np.all(np.isfinite(probabilities)):
        raise InferenceError("Model produced non-finite probabilities")
    if np.any(probabilities < 0.0):
        raise InferenceError("Model produced negative probabilities")
    total = float(probabilities.sum())
    if abs(total - 1.0) > PROBABILITY_SUM_TOLERANCE:
        raise InferenceError(f"Model probabilities sum to {total:.4f}, expected 1")

    return {label: float(p) for label, p in zip(labels, probabilities)}


class BaseInferenceEngine(InferenceEngine):
    """Shared loading, locking and output validation for file-backed models."""

    def __init__(
        self,
        model_path: str | Path,
        labels: list[str] | None = None,
        apply_softmax: bool = False,
    ) -> None:
        """
        Initialize the engine.

        Args:
            model_path: Path to the model artifact
            labels: Label set in output order (backends may infer it)
            apply_softmax: Treat raw outputs as logits
        """
        self.model_path = Path(model_path)
        self.apply_softmax = apply_softmax
        self._labels: list[str] = list(labels) if labels else []
        self._model: Any | None = None
        self._loaded = False
        # Warm-up and the first job may both try to load
        self._load_lock = threading.Lock()

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        with self._load_lock:
            if self._loaded:
                return
            if not self.model_path.exists():
                raise InferenceError(f"Model artifact not found: {self.model_path}")
            try:
                self._model = self._load_model()
            except InferenceError:
                raise
            except Exception as e:
                raise InferenceError(
                    f"Failed to load model {self.model_path}: {e}"
                ) from e
            if not self._labels:
                raise InferenceError(f"No labels available for model {self.model_path}")
            self._loaded = True
            logger.info(
                f"Loaded {type(self).__name__} from {self.model_path} "
                f"({len(self._labels)} labels)"
            )

    def predict(self, features: AudioFeatures) -> dict[str, float]:
        self.load()
        matrix = features.to_matrix()
        try:
            raw = self._run(matrix)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Model execution failed: {e}") from e

        raw = np.asarray(raw, dtype=np.float64).ravel()
        if self.apply_softmax:
            if not np.all(np.isfinite(raw)):
                raise InferenceError("Model produced non-finite logits")
            raw = softmax(raw)
        return validate_probabilities(self._labels, raw)

    @abstractmethod
    def _load_model(self) -> Any:
        """Load and return the backend model object."""
        pass

    @abstractmethod
    def _run(self, matrix: np.ndarray) -> Any:
        """Run the model on a (n_frames, feature_width) matrix."""
        pass


class OnnxInferenceEngine(BaseInferenceEngine):
    """Runs an ONNX classifier with onnxruntime."""

    def __init__(
        self,
        model_path: str | Path,
        labels: list[str] | None = None,
        apply_softmax: bool = False,
        providers: list[str] | None = None,
    ) -> None:
        super().__init__(model_path, labels=labels, apply_softmax=apply_softmax)
        self.providers = providers or list(ONNX_EXECUTION_PROVIDERS)
        self._input_name = ""
        self._input_rank = 3

    def _load_model(self) -> Any:
        if onnxruntime is None:
            raise InferenceError("onnxruntime library not available")

        session = onnxruntime.InferenceSession(
            str(self.model_path), providers=self.providers
        )
        model_input = session.get_inputs()[0]
        self._input_name = model_input.name
        self._input_rank = len(model_input.shape) if model_input.shape else 3
        logger.debug(
            f"ONNX input '{self._input_name}' shape={model_input.shape} "
            f"providers={self.providers}"
        )
        return session

    def _run(self, matrix: np.ndarray) -> Any:
        # Rank-2 models take one flattened row; otherwise (batch, frames, width)
        if self._input_rank == 2:
            batch = matrix.reshape(1, -1)
        else:
            batch = matrix[np.newaxis, ...]
        outputs = self._model.run(None, {self._input_name: batch})
        return np.asarray(outputs[0])[0]


class JoblibInferenceEngine(BaseInferenceEngine):
    """Runs a pickled scikit-learn style classifier exposing `predict_proba`."""

    def _load_model(self) -> Any:
        model = joblib.load(self.model_path)
        if not hasattr(model, "predict_proba"):
            raise InferenceError(
                f"Model {self.model_path} does not provide predict_proba"
            )
        if not self._labels and hasattr(model, "classes_"):
            self._labels = [str(label) for label in model.classes_]
        return model

    def _run(self, matrix: np.ndarray) -> Any:
        return self._model.predict_proba(matrix.reshape(1, -1))[0]


def create_inference_engine(
    backend: str,
    model_path: str | Path,
    labels_path: str | Path | None = None,
    apply_softmax: bool = False,
) -> InferenceEngine:
    """
    Create an inference engine for a model artifact.

    Args:
        backend: "onnx" or "joblib"
        model_path: Path to the model artifact
        labels_path: Optional labels file (required for ONNX models)
        apply_softmax: Treat raw outputs as logits

    Returns:
        Unloaded InferenceEngine

    Raises:
        ValueError: If the backend is unknown
        InferenceError: If the labels file cannot be read
    """
    labels = load_labels(labels_path) if labels_path else None

    if backend == "onnx":
        return OnnxInferenceEngine(model_path, labels=labels, apply_softmax=apply_softmax)
    if backend == "joblib":
        return JoblibInferenceEngine(model_path, labels=labels, apply_softmax=apply_softmax)
    raise ValueError(f"Unknown inference backend: {backend}")
