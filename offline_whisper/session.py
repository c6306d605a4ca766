"""Transcription session controller.

A TranscriptionSession owns one loaded model and one background worker
thread. Requests are queued FIFO and executed strictly one at a time,
because the inference backend is not safe for concurrent calls on the
same model. Every request resolves to exactly one TranscriptionResult;
pipeline failures never escape as exceptions.
"""

import functools
import itertools
import logging
import os
import threading
import time
from collections import deque
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Deque, Optional, Union

from .audio import AudioNormalizer, load_audio_file
from .backend import InferenceBackend, load_onnx_backend
from .constants import DEFAULT_LANGUAGE, INFERENCE_TIMEOUT, LANGUAGES, MAX_TOKENS, NO_SPEECH_TEXT
from .data_models import AudioBuffer, TranscriptionResult
from .decoder import GreedyDecoder
from .encoder import EncoderRunner
from .events import EventEmitter, EventKind
from .exceptions import (
    DecodeFailedError,
    ErrorKind,
    InvalidAudioInputError,
    ModelLoadFailedError,
    OperationCancelledError,
    WhisperError,
)
from .mel import MelSpectrogramExtractor
from .models import ModelHandle
from .profiler import PerformanceProfiler
from .tokenizer import Detokenizer

logger = logging.getLogger(__name__)

AudioSource = Union[AudioBuffer, str, os.PathLike]


class JobState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


class TranscriptionJob:
    """Handle for one submitted transcription request.

    Attributes:
        job_id: Sequential id, unique per session
        future: Resolves to the TranscriptionResult
        state: Current JobState
    """

    def __init__(
        self,
        job_id: int,
        audio: AudioSource,
        session: "TranscriptionSession",
        on_complete: Optional[Callable[[TranscriptionResult], None]] = None,
    ):
        self.job_id = job_id
        self.audio = audio
        self.future: "Future[TranscriptionResult]" = Future()
        self.state = JobState.PENDING
        self._session = session
        self._on_complete = on_complete
        self._cancel_event = threading.Event()

    def cancel(self) -> bool:
        """Cancel the request.

        A pending request is removed from the queue and resolved as
        cancelled. A running request stops at the next decode step.

        Returns:
            False if the request had already finished
        """
        return self._session._cancel(self)

    def result(self, timeout: Optional[float] = None) -> TranscriptionResult:
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()

    @property
    def cancelled(self) -> bool:
        return self.state == JobState.CANCELLED

    def __repr__(self) -> str:
        return f"TranscriptionJob(id={self.job_id}, state={self.state.value})"


class TranscriptionSession:
    """Runs the audio-to-text pipeline for queued requests.

    Attributes:
        normalizer: Audio normalizer
        extractor: Mel spectrogram extractor
        events: Listener registry for progress/status/result events
        timeout: Per-request wall-clock budget in seconds (None disables)
        reject_when_busy: Reject instead of queueing when work is in progress
        max_pending: Maximum queued requests (0 = unbounded)
    """

    def __init__(
        self,
        backend_loader: Optional[Callable[[ModelHandle], InferenceBackend]] = None,
        normalizer: Optional[AudioNormalizer] = None,
        extractor: Optional[MelSpectrogramExtractor] = None,
        events: Optional[EventEmitter] = None,
        language: str = DEFAULT_LANGUAGE,
        device: str = "cpu",
        timeout: Optional[float] = INFERENCE_TIMEOUT,
        reject_when_busy: bool = False,
        max_pending: int = 0,
        max_tokens: int = MAX_TOKENS,
    ):
        if timeout is not None:
            if not isinstance(timeout, (int, float)):
                raise TypeError(f"timeout must be numeric, got {type(timeout).__name__}")
            if timeout <= 0:
                raise ValueError(f"timeout must be positive, got {timeout}")
        if not isinstance(max_pending, int):
            raise TypeError(f"max_pending must be int, got {type(max_pending).__name__}")
        if max_pending < 0:
            raise ValueError(f"max_pending must be non-negative, got {max_pending}")

        self._backend_loader = backend_loader or functools.partial(load_onnx_backend, device=device)
        self.normalizer = normalizer or AudioNormalizer()
        self.extractor = extractor or MelSpectrogramExtractor(device=device)
        self.events = events or EventEmitter()
        self.device = device
        self.timeout = timeout
        self.reject_when_busy = reject_when_busy
        self.max_pending = max_pending
        self.max_tokens = max_tokens
        self._language = DEFAULT_LANGUAGE
        self.language = language

        self._handle: Optional[ModelHandle] = None
        self._backend: Optional[InferenceBackend] = None
        self._encoder: Optional[EncoderRunner] = None
        self._decoder: Optional[GreedyDecoder] = None
        self._detokenizer: Optional[Detokenizer] = None

        self._lifecycle_lock = threading.Lock()
        self._cond = threading.Condition()
        self._queue: Deque[TranscriptionJob] = deque()
        self._current: Optional[TranscriptionJob] = None
        self._ids = itertools.count(1)
        self._worker: Optional[threading.Thread] = None
        self._worker_exited = False
        self._stopping = False
        self._close_on_exit = False
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, handle: ModelHandle) -> None:
        """Load the backend and vocabulary for a model and start the worker.

        Calling again with the same handle is a no-op.

        Raises:
            ModelNotDownloadedError: If model files are missing
            ModelLoadFailedError: If the backend or vocabulary fails to load
            ValueError: If already initialized with a different model
            RuntimeError: If the session has been disposed
        """
        with self._lifecycle_lock:
            if self._disposed:
                raise RuntimeError("session has been disposed; create a new one")
            if self._handle is not None:
                if self._handle == handle:
                    return
                raise ValueError(
                    f"session already initialized with '{self._handle.variant}', "
                    f"cannot switch to '{handle.variant}'"
                )

            logger.info(f"Initializing session with model '{handle.variant}'")
            try:
                backend = self._backend_loader(handle)
            except WhisperError:
                raise
            except Exception as e:
                raise ModelLoadFailedError(
                    f"Failed to load model '{handle.variant}'. {str(e)}"
                ) from e

            try:
                detokenizer = Detokenizer.from_file(handle.vocab_path)
            except ModelLoadFailedError:
                backend.close()
                raise

            self._backend = backend
            self._encoder = EncoderRunner(backend)
            self._decoder = GreedyDecoder(backend, max_tokens=self.max_tokens)
            self._detokenizer = detokenizer
            self._handle = handle

            self._worker = threading.Thread(
                target=self._run, name="TranscriptionWorker", daemon=True
            )
            self._worker.start()
            self._emit_status(f"Model '{handle.variant}' ready")

    def dispose(self, timeout: float = 5.0) -> None:
        """Stop the worker and release the backend. Safe to call repeatedly.

        Pending requests resolve as cancelled; the running request is
        asked to stop at its next decode step.
        """
        with self._lifecycle_lock:
            if self._disposed:
                return
            self._disposed = True

        with self._cond:
            self._stopping = True
            pending = list(self._queue)
            self._queue.clear()
            if self._current is not None:
                self._current._cancel_event.set()
            self._cond.notify_all()

        for job in pending:
            self._finish(job, self._cancelled_result(job, "session disposed"))

        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

        with self._cond:
            if worker is not None and not self._worker_exited:
                logger.warning(
                    f"Transcription worker did not stop within {timeout}s; "
                    f"backend will be released when it exits"
                )
                self._close_on_exit = True
                return
        self._close_backend()

    def _close_backend(self) -> None:
        backend, self._backend = self._backend, None
        self._encoder = None
        self._decoder = None
        if backend is not None:
            try:
                backend.close()
            except Exception:
                logger.exception("Error closing inference backend")
            logger.info("Inference backend released")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._handle is not None and not self._disposed

    @property
    def is_busy(self) -> bool:
        with self._cond:
            return self._current is not None or bool(self._queue)

    @property
    def queue_depth(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    @property
    def language(self) -> str:
        return self._language

    @language.setter
    def language(self, code: str) -> None:
        if not isinstance(code, str):
            raise TypeError(f"language must be str, got {type(code).__name__}")
        if code not in LANGUAGES:
            raise ValueError(f"Unsupported language '{code}'")
        self._language = code

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def transcribe(
        self,
        audio: AudioSource,
        on_complete: Optional[Callable[[TranscriptionResult], None]] = None,
    ) -> TranscriptionJob:
        """Queue audio for transcription without blocking.

        Args:
            audio: AudioBuffer or path to an audio file (loaded on the worker)
            on_complete: Called with the result unless the request is
                cancelled; runs on the worker thread, or on the caller's
                thread when the request is rejected at submission

        Returns:
            TranscriptionJob whose future resolves to exactly one result
        """
        if not isinstance(audio, (AudioBuffer, str, os.PathLike)):
            raise TypeError(
                f"audio must be AudioBuffer or file path, got {type(audio).__name__}"
            )

        job = TranscriptionJob(next(self._ids), audio, self, on_complete)
        rejection = None
        with self._cond:
            if not self.is_initialized or self._stopping:
                rejection = (ErrorKind.MODEL_LOAD_FAILED, "session is not initialized")
            elif self.reject_when_busy and (self._current is not None or self._queue):
                rejection = (ErrorKind.ALREADY_BUSY, "a transcription is already in progress")
            elif self.max_pending and len(self._queue) >= self.max_pending:
                rejection = (
                    ErrorKind.ALREADY_BUSY,
                    f"transcription queue is full ({self.max_pending} pending)",
                )
            else:
                self._queue.append(job)
                self._cond.notify()

        if rejection is not None:
            kind, message = rejection
            self._finish(job, TranscriptionResult.failure(message, kind, self.language))
        else:
            logger.debug(f"Queued job {job.job_id} (depth {self.queue_depth})")
        return job

    def _cancel(self, job: TranscriptionJob) -> bool:
        with self._cond:
            if job.state == JobState.PENDING and job in self._queue:
                self._queue.remove(job)
                job.state = JobState.CANCELLED
            elif job.state == JobState.RUNNING:
                job._cancel_event.set()
                return True
            else:
                return False

        self._finish(job, self._cancelled_result(job, "cancelled before start"))
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        logger.info("Transcription worker started")
        while True:
            with self._cond:
                while not self._queue and not self._stopping:
                    self._cond.wait()
                if self._stopping:
                    break
                job = self._queue.popleft()
                job.state = JobState.RUNNING
                self._current = job

            result = self._process(job)
            self._finish(job, result)

            with self._cond:
                self._current = None
                self._cond.notify_all()

        with self._cond:
            self._worker_exited = True
            close = self._close_on_exit
        if close:
            self._close_backend()
        logger.info("Transcription worker stopped")

    def _process(self, job: TranscriptionJob) -> TranscriptionResult:
        start = time.perf_counter()
        deadline = time.monotonic() + self.timeout if self.timeout else None
        language = self.language
        self._emit_progress(0.0)

        try:
            audio = job.audio
            if not isinstance(audio, AudioBuffer):
                self._emit_status(f"Loading '{os.fspath(audio)}'")
                audio = load_audio_file(audio)

            self._emit_status("Normalizing audio")
            buffer = self.normalizer.normalize(audio)
            self._emit_progress(0.2)

            mel = self.extractor.extract(buffer)
            self._check_interrupted(job, deadline)

            if mel.is_empty:
                text, confidence, num_tokens = NO_SPEECH_TEXT, 0.0, 0
            else:
                self._emit_status("Encoding")
                encoded = self._encoder.run(mel)
                self._emit_progress(0.4)

                self._emit_status("Decoding")
                decoded = self._decoder.decode(
                    encoded, cancel_event=job._cancel_event, deadline=deadline
                )
                text = self._detokenizer.detokenize(decoded.tokens)
                confidence = decoded.confidence
                num_tokens = len(decoded.tokens) - 2
                language = decoded.language or language
        except FileNotFoundError as e:
            return self._failed(job, InvalidAudioInputError(str(e)), language, start)
        except WhisperError as e:
            return self._failed(job, e, language, start)
        except Exception as e:
            logger.exception(f"Unexpected error in job {job.job_id}")
            return self._failed(job, e, language, start)

        elapsed = time.perf_counter() - start
        self._emit_progress(1.0)
        stats = PerformanceProfiler.calculate_stats(
            audio_duration=buffer.duration,
            processing_time=elapsed,
            num_tokens=num_tokens,
            device=self.device,
        )
        logger.info(f"Job {job.job_id}: {stats}")
        return TranscriptionResult.success(text, language, confidence, elapsed)

    @staticmethod
    def _check_interrupted(job: TranscriptionJob, deadline: Optional[float]) -> None:
        if job._cancel_event.is_set():
            raise OperationCancelledError("transcription cancelled")
        if deadline is not None and time.monotonic() > deadline:
            raise DecodeFailedError("transcription timed out before decoding")

    def _failed(self, job, error: Exception, language: str, start: float) -> TranscriptionResult:
        kind = error.kind if isinstance(error, WhisperError) else ErrorKind.INTERNAL
        if kind != ErrorKind.CANCELLED:
            logger.error(f"Job {job.job_id} failed ({kind.value}): {error}")
        return TranscriptionResult.failure(
            str(error), kind, language, time.perf_counter() - start
        )

    def _cancelled_result(self, job: TranscriptionJob, reason: str) -> TranscriptionResult:
        return TranscriptionResult.failure(
            f"job {job.job_id} {reason}", ErrorKind.CANCELLED, self.language
        )

    def _finish(self, job: TranscriptionJob, result: TranscriptionResult) -> None:
        """Deliver a result: per-job callback and events, then the future."""
        if result.error_kind == ErrorKind.CANCELLED:
            job.state = JobState.CANCELLED
            self.events.emit(EventKind.CANCELLED, job.job_id)
        else:
            job.state = JobState.DONE
            if job._on_complete is not None:
                try:
                    job._on_complete(result)
                except Exception:
                    logger.exception(f"Error in completion callback of job {job.job_id}")
            if result.succeeded:
                self.events.emit(EventKind.COMPLETE, result)
            else:
                self.events.emit(EventKind.ERROR, result.error_message)
        job.future.set_result(result)

    def _emit_progress(self, value: float) -> None:
        self.events.emit(EventKind.PROGRESS, value)

    def _emit_status(self, message: str) -> None:
        self.events.emit(EventKind.STATUS, message)
