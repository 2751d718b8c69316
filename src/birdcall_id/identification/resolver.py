"""Confidence-gated resolution of classifier output to a species record."""

from collections.abc import Callable, Mapping
from dataclasses import replace

from ..catalog.models import SpeciesRecord
from .config import CONFIDENCE_THRESHOLD
from .exceptions import InferenceError
from .models import MatchStatus, PredictData, PredictionResult

SpeciesLookup = Callable[[str], SpeciesRecord | None]


class ResultResolver:
    """
    Turns class probabilities into caller-facing PredictData.

    Results below the confidence threshold keep their class and confidence
    but are never paired with a species record.
    """

    def __init__(self, threshold: float = CONFIDENCE_THRESHOLD) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be in [0, 1], got {threshold}")
        self.threshold = threshold

    def select(self, probabilities: Mapping[str, float]) -> PredictionResult:
        """
        Pick the most probable class.

        Ties go to the label that comes first in the mapping.

        Raises:
            InferenceError: If the mapping is empty
        """
        if not probabilities:
            raise InferenceError("Cannot resolve an empty probability mapping")

        class_name = max(probabilities, key=probabilities.__getitem__)
        return PredictionResult(
            class_name=class_name,
            confidence=float(probabilities[class_name]),
            probabilities=dict(probabilities),
        )

    def resolve(
        self, probabilities: Mapping[str, float], species_lookup: SpeciesLookup
    ) -> PredictData:
        """
        Resolve probabilities into PredictData.

        Args:
            probabilities: Label to probability mapping
            species_lookup: Returns the catalog record for a label, or None

        Returns:
            PredictData with status MATCHED, NO_CONFIDENT_MATCH or NOT_IN_CATALOG
        """
        prediction = self.select(probabilities)

        if prediction.confidence < self.threshold:
            return PredictData(
                confidence=prediction.confidence,
                scientific_nm=prediction.class_name,
                class_name=prediction.class_name,
                status=MatchStatus.NO_CONFIDENT_MATCH,
            )

        record = species_lookup(prediction.class_name)
        if record is None:
            return PredictData(
                confidence=prediction.confidence,
                scientific_nm=prediction.class_name,
                class_name=prediction.class_name,
                status=MatchStatus.NOT_IN_CATALOG,
            )

        return PredictData(
            bird_data=record,
            confidence=prediction.confidence,
            scientific_nm=record.scientific_nm,
            class_name=prediction.class_name,
            status=MatchStatus.MATCHED,
        )

    def gate(self, data: PredictData) -> PredictData:
        """
        Apply the confidence policy to an already-resolved result.

        Used for results produced server-side, which arrive with a record
        attached regardless of confidence.
        """
        if data.error or data.confidence is None:
            return data
        if data.confidence < self.threshold:
            return replace(data, bird_data=None, status=MatchStatus.NO_CONFIDENT_MATCH)
        if data.bird_data is None:
            return replace(data, status=MatchStatus.NOT_IN_CATALOG)
        return replace(data, status=MatchStatus.MATCHED)
