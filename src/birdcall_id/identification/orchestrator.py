"""Pipeline orchestrator: job control, progress fan-out and warm-up."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np

from ..catalog.catalog import SpeciesCatalog
from ..catalog.exceptions import CatalogError
from .channel import (
    ChannelMessage,
    CompleteMessage,
    ErrorMessage,
    GenerationCounter,
    PredictionMessage,
    ProgressChannel,
    ProgressMessage,
    SubscriberMessage,
    UploadProgressMessage,
)
from .config import CONFIDENCE_THRESHOLD, DEFAULT_JOB_TIMEOUT, DEFAULT_WORKER_THREADS
from .decoder import AudioDecoder
from .exceptions import (
    CatalogLookupError,
    CorruptAudioError,
    ExtractionError,
    FileTooLargeError,
    IdentificationError,
    InferenceError,
    JobSupersededError,
    JobTimeoutError,
    TransportError,
    UnsupportedFormatError,
)
from .features import FeatureExtractor
from .interfaces import InferenceEngine
from .logging_utils import get_logger
from .models import (
    AudioBuffer,
    AudioProcessorConfig,
    AudioSource,
    ErrorKind,
    Job,
    PredictData,
    ProgressInfo,
    ProgressStage,
)
from .remote import RemoteIdentificationClient
from .resolver import ResultResolver
from .worker import JobWorker, PipelineStages

logger = get_logger(__name__)

Subscriber = Callable[[SubscriberMessage], None]

_EXCEPTION_BY_KIND = {
    ErrorKind.UNSUPPORTED_FORMAT: UnsupportedFormatError,
    ErrorKind.FILE_TOO_LARGE: FileTooLargeError,
    ErrorKind.CORRUPT_AUDIO: CorruptAudioError,
    ErrorKind.EXTRACTION: ExtractionError,
    ErrorKind.INFERENCE: InferenceError,
    ErrorKind.CATALOG: CatalogLookupError,
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.TIMEOUT: JobTimeoutError,
}


class PipelineOrchestrator:
    """
    Owns identification state and sequences the pipeline for one job at a time.

    `submit()` supersedes any active job by advancing the generation id;
    messages from older generations are discarded when they reach the
    dispatcher. Decode, extraction and inference run on a worker thread,
    or the whole job is delegated to a remote endpoint when a
    RemoteIdentificationClient is given.
    """

    def __init__(
        self,
        engine: InferenceEngine | None,
        catalog: SpeciesCatalog,
        config: AudioProcessorConfig | None = None,
        decoder: AudioDecoder | None = None,
        extractor: FeatureExtractor | None = None,
        resolver: ResultResolver | None = None,
        remote_client: RemoteIdentificationClient | None = None,
        job_timeout: float | None = DEFAULT_JOB_TIMEOUT,
        worker_threads: int = DEFAULT_WORKER_THREADS,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            engine: Classifier backend (may be None with a remote_client)
            catalog: Species record store used to resolve class labels
            config: Feature extraction settings, immutable for this lifetime
            decoder: Optional decoder (defaults to one at config.sample_rate)
            extractor: Optional feature extractor (defaults from config)
            resolver: Optional result resolver (defaults from confidence_threshold)
            remote_client: Run jobs on a remote endpoint instead of locally
            job_timeout: Seconds before an unfinished job fails (None disables)
            worker_threads: Worker threads for local jobs
            confidence_threshold: Minimum confidence shown as a match
        """
        if engine is None and remote_client is None:
            raise ValueError("An inference engine is required without a remote client")
        self.config = config or AudioProcessorConfig()
        self._stages = PipelineStages(
            decoder=decoder or AudioDecoder(sample_rate=self.config.sample_rate),
            extractor=extractor or FeatureExtractor(self.config),
            engine=engine,
            resolver=resolver or ResultResolver(confidence_threshold),
        )
        self._catalog = catalog
        self._remote_client = remote_client
        self._job_timeout = job_timeout

        self._executor = ThreadPoolExecutor(
            max_workers=worker_threads, thread_name_prefix="birdcall-worker"
        )
        self._generation = GenerationCounter()
        self._channel: ProgressChannel | None = None
        self._dispatcher_task: asyncio.Task | None = None
        self._remote_task: asyncio.Task | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None

        self._state = ProgressStage.IDLE
        self._active_job: Job | None = None
        self._predict_data = PredictData()
        self._subscribers: list[Subscriber] = []
        self._waiters: dict[int, asyncio.Future[PredictData]] = {}

        self._warmup_task: asyncio.Task | None = None
        self._warmed_up = False
        self._closed = False

    # ------------------------------------------------------------------
    # Observable state

    @property
    def state(self) -> ProgressStage:
        return self._state

    @property
    def predict_data(self) -> PredictData:
        return self._predict_data

    @property
    def active_job(self) -> Job | None:
        return self._active_job

    @property
    def generation(self) -> int:
        return self._generation.current

    @property
    def is_warmed_up(self) -> bool:
        return self._warmed_up

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for progress, error and completion messages.

        Args:
            callback: Called on the event loop with each delivered message

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, message: SubscriberMessage) -> None:
        for callback in list(self._subscribers):
            try:
                callback(message)
            except Exception as e:
                logger.error(f"Error in identification subscriber: {e}")

    # ------------------------------------------------------------------
    # Job control

    def _ensure_dispatcher(self) -> ProgressChannel:
        loop = asyncio.get_running_loop()
        if self._channel is None or self._dispatcher_task is None or self._dispatcher_task.done():
            self._channel = ProgressChannel(loop)
            self._dispatcher_task = loop.create_task(
                self._dispatch(self._channel), name="birdcall-dispatcher"
            )
        return self._channel

    def submit(self, source: AudioSource | str | Path) -> Job:
        """
        Start identifying a recording, superseding any active job.

        Returns immediately; progress and the result arrive via subscribers.
        Must be called from within the running event loop.

        Args:
            source: Recording to identify

        Returns:
            The new Job

        Raises:
            UnsupportedFormatError: If the file type is not allowed
            FileTooLargeError: If the file exceeds the size limit
            RuntimeError: If the orchestrator has been closed
        """
        if self._closed:
            raise RuntimeError("Orchestrator is closed")
        if not isinstance(source, AudioSource):
            source = AudioSource.from_path(source)

        # Cheap rejection before any job exists
        self._stages.decoder.validate(source)

        channel = self._ensure_dispatcher()
        loop = asyncio.get_running_loop()

        previous = self._active_job
        generation = self._generation.advance()
        if previous is not None and not previous.finished:
            logger.info(f"Job {previous.generation} superseded by job {generation}")
            self._fail_waiter(
                previous.generation,
                JobSupersededError(f"Job {previous.generation} was superseded"),
            )
        self._cancel_timeout()
        if self._remote_task is not None and not self._remote_task.done():
            self._remote_task.cancel()

        job = Job(generation=generation, source=source)
        self._active_job = job
        self._predict_data = PredictData()
        self._state = ProgressStage.LOADING

        if self._job_timeout is not None:
            self._timeout_handle = loop.call_later(
                self._job_timeout, self._on_timeout, generation
            )

        if self._remote_client is not None:
            self._remote_task = loop.create_task(
                self._run_remote_job(job, channel), name=f"birdcall-remote-{generation}"
            )
        else:
            worker = JobWorker(generation, source, self._stages, channel, self._generation)
            loop.run_in_executor(self._executor, worker.run)

        logger.debug(f"Submitted job {generation} for {source.filename}")
        return job

    async def identify(self, source: AudioSource | str | Path) -> PredictData:
        """
        Submit a recording and wait for its result.

        Returns:
            PredictData of the completed job

        Raises:
            InputValidationError: If the submission is rejected
            IdentificationError: If the job fails (the subclass matches its kind)
            JobSupersededError: If another submission replaces this job first
        """
        job = self.submit(source)
        future: asyncio.Future[PredictData] = asyncio.get_running_loop().create_future()
        self._waiters[job.generation] = future
        return await future

    def clear(self) -> None:
        """
        Discard the stored result and return to idle.

        An in-flight job is not cancelled; its progress and result will still
        be delivered.
        """
        self._predict_data = PredictData()
        self._state = ProgressStage.IDLE

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_timeout(self, generation: int) -> None:
        self._timeout_handle = None
        job = self._active_job
        if job is None or job.generation != generation or job.finished:
            return
        logger.warning(f"Job {generation} timed out after {self._job_timeout}s")
        if self._channel is not None:
            self._channel.post(
                ErrorMessage(
                    generation,
                    ErrorKind.TIMEOUT,
                    f"Identification did not finish within {self._job_timeout:g}s",
                )
            )
        if self._remote_task is not None and not self._remote_task.done():
            self._remote_task.cancel()

    # ------------------------------------------------------------------
    # Dispatcher

    async def _dispatch(self, channel: ProgressChannel) -> None:
        """Consume channel messages until the channel closes."""
        while True:
            message = await channel.get()
            if message is None:
                break
            try:
                await self._handle(message)
            except Exception as e:
                logger.error(f"Error dispatching {type(message).__name__}: {e}", exc_info=True)

    def _is_deliverable(self, message: ChannelMessage) -> bool:
        job = self._active_job
        if not self._generation.is_current(message.generation) or job is None:
            logger.trace(
                f"Discarding {type(message).__name__} from stale job {message.generation}"
            )
            return False
        if job.finished:
            logger.trace(f"Discarding {type(message).__name__} after job finished")
            return False
        return True

    async def _handle(self, message: ChannelMessage) -> None:
        if not self._is_deliverable(message):
            return
        job = self._active_job

        if isinstance(message, ProgressMessage):
            info = message.progress
            # Stage order and percent never go backwards within a job
            if info.stage.order < job.last_stage.order or (
                info.stage is job.last_stage and info.percent < job.last_percent
            ):
                logger.trace(f"Dropping out-of-order progress {info}")
                return
            job.last_stage = info.stage
            job.last_percent = info.percent
            self._state = info.stage
            self._publish(message)

        elif isinstance(message, UploadProgressMessage):
            self._publish(message)

        elif isinstance(message, PredictionMessage):
            await self._complete_local(message)

        elif isinstance(message, CompleteMessage):
            self._finish(job, message.data)

        elif isinstance(message, ErrorMessage):
            self._fail(job, message.kind, message.detail)

    async def _complete_local(self, message: PredictionMessage) -> None:
        try:
            await self._catalog.ensure_loaded()
        except CatalogError as e:
            if self._is_deliverable(message):
                self._fail(self._active_job, ErrorKind.CATALOG, f"Species catalog unavailable: {e}")
            return

        # A newer job may have been submitted while the catalog loaded
        if not self._is_deliverable(message):
            return

        try:
            data = self._stages.resolver.resolve(
                message.prediction.probabilities, self._catalog.get_by_id
            )
        except IdentificationError as e:
            self._fail(self._active_job, e.kind, str(e))
            return
        except CatalogError as e:
            self._fail(self._active_job, ErrorKind.CATALOG, str(e))
            return
        self._finish(self._active_job, data)

    def _finish(self, job: Job, data: PredictData) -> None:
        job.finished = True
        self._cancel_timeout()
        self._predict_data = data
        self._state = ProgressStage.COMPLETE
        logger.info(f"Job {job.generation} complete: {data.headline()}")

        self._publish(
            ProgressMessage(
                job.generation,
                ProgressInfo.for_stage(ProgressStage.COMPLETE, 1.0, "Identification complete"),
            )
        )
        self._publish(CompleteMessage(job.generation, data))

        waiter = self._waiters.pop(job.generation, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(data)

    def _fail(self, job: Job, kind: ErrorKind, detail: str) -> None:
        job.finished = True
        self._cancel_timeout()
        self._predict_data = PredictData(error=detail, error_kind=kind)
        self._state = ProgressStage.ERROR
        logger.info(f"Job {job.generation} failed ({kind.value}): {detail}")

        self._publish(ErrorMessage(job.generation, kind, detail))

        exception_class = _EXCEPTION_BY_KIND.get(kind, IdentificationError)
        self._fail_waiter(job.generation, exception_class(detail))

    def _fail_waiter(self, generation: int, error: Exception) -> None:
        waiter = self._waiters.pop(generation, None)
        if waiter is not None and not waiter.done():
            waiter.set_exception(error)

    # ------------------------------------------------------------------
    # Remote placement

    async def _run_remote_job(self, job: Job, channel: ProgressChannel) -> None:
        generation = job.generation

        def on_upload(sent: int, total: int) -> None:
            channel.post(UploadProgressMessage(generation, sent, total))

        channel.post(
            ProgressMessage(
                generation,
                ProgressInfo.for_stage(ProgressStage.LOADING, 0.0, f"Uploading {job.source.filename}"),
            )
        )
        try:
            data = await self._remote_client.identify(job.source, on_upload_progress=on_upload)
        except asyncio.CancelledError:
            logger.debug(f"Remote job {generation} cancelled")
            raise
        except IdentificationError as e:
            channel.post(ErrorMessage(generation, e.kind, str(e)))
            return
        except Exception as e:
            logger.error(f"Remote job {generation} crashed: {e}", exc_info=True)
            channel.post(ErrorMessage(generation, ErrorKind.INTERNAL, f"Unexpected error: {e}"))
            return

        if data.error:
            channel.post(ErrorMessage(generation, data.error_kind or ErrorKind.INFERENCE, data.error))
            return

        channel.post(
            ProgressMessage(
                generation,
                ProgressInfo.for_stage(ProgressStage.PREDICTING, 1.0, "Result received"),
            )
        )
        channel.post(CompleteMessage(generation, self._stages.resolver.gate(data)))

    # ------------------------------------------------------------------
    # Warm-up

    def warm_up(self) -> asyncio.Task | None:
        """
        Start the one-time warm-up in the background.

        Loads the model, runs one silent clip through extraction and
        inference, and probes the species catalog (or the remote endpoint).
        Calls while warm-up is running or after it succeeded are no-ops; a
        failed warm-up is logged and may be retried by calling again.

        Returns:
            The warm-up task, or None when there is nothing to do
        """
        if self._closed or self._warmed_up:
            return None
        if self._warmup_task is not None and not self._warmup_task.done():
            return None
        loop = asyncio.get_running_loop()
        self._warmup_task = loop.create_task(self._warm_up(), name="birdcall-warm-up")
        return self._warmup_task

    async def _warm_up(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            if self._remote_client is not None:
                await self._remote_client.probe()
            else:
                await loop.run_in_executor(self._executor, self._warm_local_pipeline)
                await self._catalog.probe()
                await self._catalog.ensure_loaded()
            self._warmed_up = True
            logger.info("Identification pipeline warmed up")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Warm-up failed (ignored): {e}")

    def _warm_local_pipeline(self) -> None:
        silence = AudioBuffer(
            samples=np.zeros(self.config.hop_length * 4, dtype=np.float32),
            sample_rate=self.config.sample_rate,
            duration=self.config.hop_length * 4 / self.config.sample_rate,
        )
        self._stages.engine.load()
        features = self._stages.extractor.extract(silence)
        self._stages.engine.predict(features)

    # ------------------------------------------------------------------
    # Lifecycle

    async def close(self) -> None:
        """Stop the dispatcher, pending warm-up and worker threads."""
        if self._closed:
            return
        self._closed = True
        self._generation.advance()
        self._cancel_timeout()

        for task in (self._warmup_task, self._remote_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if self._channel is not None:
            self._channel.close()
        if self._dispatcher_task is not None:
            await self._dispatcher_task

        for generation in list(self._waiters):
            self._fail_waiter(generation, JobSupersededError("Orchestrator closed"))

        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._remote_client is not None:
            await self._remote_client.aclose()
        logger.debug("Pipeline orchestrator closed")

    async def __aenter__(self) -> PipelineOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
