"""Abstract interfaces for pluggable pipeline components."""

from abc import ABC, abstractmethod

from .models import AudioFeatures


class InferenceEngine(ABC):
    """
    Contract for a pre-trained classifier.

    The model is opaque: any backend that maps the feature set produced by
    FeatureExtractor to a probability per known label can be used.
    """

    @property
    @abstractmethod
    def labels(self) -> list[str]:
        """Return the fixed label set, in model output order."""
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """Return True once the model artifact is in memory."""
        pass

    @abstractmethod
    def load(self) -> None:
        """
        Load the model artifact.

        Safe to call repeatedly; only the first call does work.

        Raises:
            InferenceError: If the artifact cannot be loaded
        """
        pass

    @abstractmethod
    def predict(self, features: AudioFeatures) -> dict[str, float]:
        """
        Classify a feature set.

        Args:
            features: Features for one recording

        Returns:
            Mapping of every label to a finite, non-negative probability,
            summing to 1 within tolerance

        Raises:
            InferenceError: If the model cannot be loaded or its output is malformed
        """
        pass
