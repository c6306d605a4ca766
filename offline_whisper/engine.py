"""Main API class for offline-whisper.

This module provides WhisperEngine, the public entry point. It owns the
model cache, the downloader, the optional microphone capture and one
TranscriptionSession, and forwards requests to them.
"""

import dataclasses
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, Set, Union

import numpy as np
import torch

from .backend import InferenceBackend
from .capture import MicrophoneCapture
from .constants import DEFAULT_LANGUAGE, INFERENCE_TIMEOUT, SAMPLE_RATE
from .data_models import AudioBuffer
from .downloader import DownloadProgress, ModelDownloader
from .events import EventEmitter, EventKind
from .exceptions import AlreadyBusyError
from .models import ModelHandle, ModelManager
from .session import TranscriptionJob, TranscriptionSession

logger = logging.getLogger(__name__)


class WhisperEngine:
    """Offline speech-to-text with Whisper ONNX models.

    Example:
        >>> engine = WhisperEngine("tiny", language="en")
        >>> if not engine.is_model_downloaded():
        ...     engine.download_model().result()
        >>> engine.initialize()
        >>> result = engine.transcribe_file("speech.wav").result()
        >>> print(result.text)
        >>> engine.dispose()

    Attributes:
        model_size: Active model size name
        device: Device used for feature extraction and inference
        model_manager: Local model cache
        downloader: Model downloader
        events: Listener registry shared by every session of this engine
    """

    def __init__(
        self,
        model_size: str = "tiny",
        language: str = DEFAULT_LANGUAGE,
        device: str = "cpu",
        download_root: Optional[str] = None,
        vocab_path: Optional[str] = None,
        timeout: Optional[float] = INFERENCE_TIMEOUT,
        reject_when_busy: bool = False,
        max_pending: int = 0,
        backend_loader: Optional[Callable[[ModelHandle], InferenceBackend]] = None,
        downloader: Optional[ModelDownloader] = None,
        capture: Optional[MicrophoneCapture] = None,
    ):
        """Initialize the engine. No model is loaded until initialize().

        Args:
            model_size: Whisper model size ("tiny", "base", "small", "medium")
            language: Language code reported when the model emits none
            device: Device to run on ("cpu" or "cuda")
            download_root: Optional model cache directory
            vocab_path: Optional vocab.json path overriding the cached one
            timeout: Per-request timeout in seconds (None disables)
            reject_when_busy: Fail new requests instead of queueing them
            max_pending: Maximum queued requests (0 = unbounded)
            backend_loader: Builds an InferenceBackend from a ModelHandle
            downloader: Model downloader (default: ModelDownloader())
            capture: Microphone capture (created on first use by default)

        Raises:
            TypeError: If parameters have invalid types
            ValueError: If parameters are invalid
            RuntimeError: If CUDA is requested but not available
        """
        if not isinstance(device, str):
            raise TypeError(
                f"device must be str, got {type(device).__name__}"
            )
        if device not in ["cuda", "cpu"]:
            raise ValueError(
                f"device must be 'cuda' or 'cpu', got '{device}'"
            )
        if device == "cuda" and not torch.cuda.is_available():
            raise RuntimeError(
                "CUDA device requested but not available. "
                "Install CUDA toolkit or use device='cpu'"
            )
        if vocab_path is not None and not isinstance(vocab_path, (str, os.PathLike)):
            raise TypeError(
                f"vocab_path must be str, got {type(vocab_path).__name__}"
            )

        self.model_manager = ModelManager(download_root)
        self.model_manager.get_variant(model_size)

        self.model_size = model_size
        self.device = device
        self.vocab_path = os.fspath(vocab_path) if vocab_path is not None else None
        self.timeout = timeout
        self.reject_when_busy = reject_when_busy
        self.max_pending = max_pending
        self.events = EventEmitter()
        self.downloader = downloader or ModelDownloader()
        self._backend_loader = backend_loader
        self._capture = capture

        self._lock = threading.Lock()
        self._download_cancels: Set[threading.Event] = set()
        self._download_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ModelDownload"
        )
        self._disposed = False
        self._session = self._new_session(language)

    def _new_session(self, language: str) -> TranscriptionSession:
        return TranscriptionSession(
            backend_loader=self._backend_loader,
            events=self.events,
            language=language,
            device=self.device,
            timeout=self.timeout,
            reject_when_busy=self.reject_when_busy,
            max_pending=self.max_pending,
        )

    def _model_handle(self) -> ModelHandle:
        handle = self.model_manager.get_handle(self.model_size)
        if self.vocab_path is not None:
            handle = dataclasses.replace(handle, vocab_path=self.vocab_path)
        return handle

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the active model.

        Raises:
            ModelNotDownloadedError: If the model is not in the cache
            ModelLoadFailedError: If the model or vocabulary fails to load
        """
        if self._disposed:
            raise RuntimeError("engine has been disposed")
        self._session.initialize(self._model_handle())

    def set_model(self, model_size: str) -> None:
        """Switch to another model size.

        The current session is disposed. If it was initialized, the new
        model is loaded immediately and load errors propagate.
        """
        self.model_manager.get_variant(model_size)
        if model_size == self.model_size:
            return

        with self._lock:
            old = self._session
            was_initialized = old.is_initialized
            self.model_size = model_size
            self._session = self._new_session(old.language)
        old.dispose()
        logger.info(f"Switched model to '{model_size}'")

        if was_initialized:
            self.initialize()

    def dispose(self) -> None:
        """Release the model, stop capture and cancel downloads. Idempotent."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True

        if self._capture is not None:
            self._capture.cancel()
        self.cancel_download()
        self._session.dispose()
        self._download_executor.shutdown(wait=False)
        logger.info("Engine disposed")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._session.is_initialized

    @property
    def is_busy(self) -> bool:
        return self._session.is_busy

    @property
    def queue_depth(self) -> int:
        return self._session.queue_depth

    @property
    def language(self) -> str:
        return self._session.language

    def set_language(self, language: str) -> None:
        self._session.language = language

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    def transcribe_buffer(
        self,
        samples: np.ndarray,
        sample_rate: int = SAMPLE_RATE,
        channels: int = 1,
    ) -> TranscriptionJob:
        """Queue in-memory PCM audio.

        Args:
            samples: float samples, interleaved when channels > 1
            sample_rate: Sample rate in Hz
            channels: Channel count

        Returns:
            TranscriptionJob resolving to a TranscriptionResult
        """
        if not isinstance(samples, np.ndarray):
            raise TypeError(
                f"samples must be numpy.ndarray, got {type(samples).__name__}"
            )
        if not isinstance(sample_rate, int):
            raise TypeError(
                f"sample_rate must be int, got {type(sample_rate).__name__}"
            )
        if not isinstance(channels, int):
            raise TypeError(
                f"channels must be int, got {type(channels).__name__}"
            )
        if channels < 1:
            raise ValueError(f"channels must be positive, got {channels}")

        buffer = AudioBuffer(
            samples=np.asarray(samples, dtype=np.float32),
            sample_rate=sample_rate,
            channels=channels,
        )
        return self._session.transcribe(buffer)

    def transcribe_file(self, path: Union[str, os.PathLike]) -> TranscriptionJob:
        """Queue an audio file; it is decoded on the worker thread.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        if not isinstance(path, (str, os.PathLike)):
            raise TypeError(
                f"path must be str, got {type(path).__name__}"
            )
        if not os.path.isfile(path):
            raise FileNotFoundError(
                f"Audio file '{os.fspath(path)}' not found. Check file path"
            )
        return self._session.transcribe(path)

    # ------------------------------------------------------------------
    # Microphone
    # ------------------------------------------------------------------

    @property
    def capture(self) -> MicrophoneCapture:
        if self._capture is None:
            self._capture = MicrophoneCapture()
        return self._capture

    def start_capture(self) -> None:
        self.capture.start()
        self.events.emit(EventKind.STATUS, "Recording")

    def stop_capture_and_transcribe(self) -> TranscriptionJob:
        buffer = self.capture.stop()
        return self._session.transcribe(buffer)

    def cancel_capture(self) -> None:
        if self._capture is not None:
            self._capture.cancel()

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def is_model_downloaded(self, model_size: Optional[str] = None) -> bool:
        return self.model_manager.is_downloaded(model_size or self.model_size)

    def download_model(
        self,
        model_size: Optional[str] = None,
        progress_sink: Optional[Callable[[DownloadProgress], None]] = None,
    ) -> "Future[ModelHandle]":
        """Download a model in the background.

        Only one download runs at a time. Each download gets its own
        cancel flag, so cancel_download() only stops the download that is
        running when it is called.

        Returns:
            Future resolving to the ModelHandle, or raising
            DownloadFailedError / OperationCancelledError

        Raises:
            AlreadyBusyError: If a download is already running
            RuntimeError: If the engine has been disposed
        """
        model_size = model_size or self.model_size
        self.model_manager.get_variant(model_size)

        cancel = threading.Event()
        with self._lock:
            if self._disposed:
                raise RuntimeError("engine has been disposed")
            if self._download_cancels:
                raise AlreadyBusyError("a model download is already in progress")
            self._download_cancels.add(cancel)

        try:
            future = self._download_executor.submit(
                self._run_download, model_size, progress_sink, cancel
            )
        except RuntimeError:
            with self._lock:
                self._download_cancels.discard(cancel)
            raise
        future.add_done_callback(self._on_download_done)
        return future

    def cancel_download(self) -> None:
        """Cancel the running download, if any."""
        with self._lock:
            for cancel in self._download_cancels:
                cancel.set()

    def _run_download(
        self,
        model_size: str,
        progress_sink: Optional[Callable[[DownloadProgress], None]],
        cancel: threading.Event,
    ) -> ModelHandle:
        try:
            return self.downloader.download(
                model_size, self.model_manager, progress_sink, cancel
            )
        finally:
            with self._lock:
                self._download_cancels.discard(cancel)

    def _on_download_done(self, future: "Future[ModelHandle]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Model download failed: {error}")
            self.events.emit(EventKind.ERROR, str(error))
        else:
            self.events.emit(EventKind.STATUS, f"Model '{future.result().variant}' downloaded")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, kind: Union[EventKind, str], callback: Callable[[Any], None]) -> None:
        self.events.subscribe(kind, callback)

    def unsubscribe(self, kind: Union[EventKind, str], callback: Callable[[Any], None]) -> bool:
        return self.events.unsubscribe(kind, callback)
