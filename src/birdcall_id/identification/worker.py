"""Job body executed on a worker thread."""

from __future__ import annotations

import time
from dataclasses import dataclass

from .channel import (
    ErrorMessage,
    GenerationCounter,
    PredictionMessage,
    ProgressChannel,
    ProgressMessage,
)
from .decoder import AudioDecoder
from .exceptions import IdentificationError
from .features import FeatureExtractor
from .interfaces import InferenceEngine
from .logging_utils import get_logger
from .models import AudioSource, ErrorKind, ProgressInfo, ProgressStage
from .resolver import ResultResolver

logger = get_logger(__name__)


@dataclass
class PipelineStages:
    """The components a job runs, shared read-only across jobs."""

    decoder: AudioDecoder
    extractor: FeatureExtractor
    engine: InferenceEngine | None
    resolver: ResultResolver


class JobWorker:
    """
    Runs decode, extraction and inference for one job.

    Communicates only by posting messages; the generation counter is read to
    stop early at stage boundaries once the job has been superseded.
    """

    def __init__(
        self,
        generation: int,
        source: AudioSource,
        stages: PipelineStages,
        channel: ProgressChannel,
        counter: GenerationCounter,
    ) -> None:
        self.generation = generation
        self.source = source
        self.stages = stages
        self.channel = channel
        self.counter = counter

    def _report(self, stage: ProgressStage, fraction: float, message: str) -> None:
        info = ProgressInfo.for_stage(stage, fraction, message)
        self.channel.post(ProgressMessage(self.generation, info))

    def _superseded(self) -> bool:
        if self.counter.is_current(self.generation):
            return False
        logger.debug(f"Job {self.generation} superseded, abandoning remaining stages")
        return True

    def run(self) -> None:
        """Execute the job, posting exactly one terminal message unless superseded."""
        start_time = time.time()
        try:
            self._report(ProgressStage.LOADING, 0.0, f"Loading {self.source.filename}")
            buffer = self.stages.decoder.decode(self.source)
            self._report(
                ProgressStage.LOADING, 1.0, f"Decoded {buffer.duration:.1f}s of audio"
            )
            if self._superseded():
                return

            features = self.stages.extractor.extract(buffer, report=self._report)
            # The buffer is not needed past extraction
            del buffer
            if self._superseded():
                return

            self._report(ProgressStage.PREDICTING, 0.0, "Running classifier")
            probabilities = self.stages.engine.predict(features)
            prediction = self.stages.resolver.select(probabilities)
            self._report(ProgressStage.PREDICTING, 1.0, "Classification finished")

            logger.debug(
                f"Job {self.generation}: top class '{prediction.class_name}' "
                f"({prediction.confidence:.3f}) in {time.time() - start_time:.2f}s"
            )
            self.channel.post(PredictionMessage(self.generation, prediction))

        except IdentificationError as e:
            logger.warning(f"Job {self.generation} failed ({e.kind.value}): {e}")
            self.channel.post(ErrorMessage(self.generation, e.kind, str(e)))
        except Exception as e:
            logger.error(f"Job {self.generation} crashed: {e}", exc_info=True)
            self.channel.post(
                ErrorMessage(self.generation, ErrorKind.INTERNAL, f"Unexpected error: {e}")
            )
