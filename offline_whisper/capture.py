"""Microphone capture into an AudioBuffer."""

import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .constants import CHUNK_LENGTH, SAMPLE_RATE
from .data_models import AudioBuffer
from .exceptions import CaptureError

logger = logging.getLogger(__name__)


def _sounddevice():
    # sounddevice loads PortAudio at import time, which fails on headless hosts
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise CaptureError(f"Audio input is unavailable: {str(e)}") from e
    return sd


def _default_stream_factory(**kwargs):
    return _sounddevice().InputStream(**kwargs)


class MicrophoneCapture:
    """Records from an input device until stopped or the duration cap.

    Audio past ``max_duration`` is dropped. The stream callback runs on
    the audio driver's thread and only appends copies of the incoming
    blocks.

    Attributes:
        sample_rate: Capture sample rate in Hz
        channels: Number of input channels
        max_duration: Maximum recording length in seconds
        device: Input device index or name (None = system default)
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        channels: int = 1,
        max_duration: float = CHUNK_LENGTH,
        device: Optional[Any] = None,
        stream_factory: Optional[Callable[..., Any]] = None,
    ):
        if not isinstance(sample_rate, int):
            raise TypeError(f"sample_rate must be int, got {type(sample_rate).__name__}")
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        if not isinstance(channels, int):
            raise TypeError(f"channels must be int, got {type(channels).__name__}")
        if channels <= 0:
            raise ValueError(f"channels must be positive, got {channels}")
        if max_duration <= 0:
            raise ValueError(f"max_duration must be positive, got {max_duration}")

        self.sample_rate = sample_rate
        self.channels = channels
        self.max_duration = max_duration
        self.device = device
        self._stream_factory = stream_factory or _default_stream_factory

        self._lock = threading.Lock()
        self._chunks: List[np.ndarray] = []
        self._frames = 0
        self._stream = None

    @property
    def max_frames(self) -> int:
        return int(self.max_duration * self.sample_rate)

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    @property
    def recording_duration(self) -> float:
        """Seconds of audio captured so far."""
        with self._lock:
            return self._frames / self.sample_rate

    def start(self) -> None:
        """Open the input stream and begin recording.

        Raises:
            CaptureError: If already recording or the device cannot be opened
        """
        if self.is_recording:
            raise CaptureError("capture is already recording")

        with self._lock:
            self._chunks = []
            self._frames = 0

        try:
            stream = self._stream_factory(
                samplerate=self.sample_rate,
                channels=self.channels,
                device=self.device,
                dtype="float32",
                callback=self._callback,
            )
            stream.start()
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError(f"Failed to open audio input: {str(e)}") from e

        self._stream = stream
        logger.info(f"Capture started ({self.sample_rate} Hz, {self.channels} ch)")

    def stop(self) -> AudioBuffer:
        """Stop recording and return everything captured.

        Raises:
            CaptureError: If not recording
        """
        if not self.is_recording:
            raise CaptureError("capture is not recording")
        self._close_stream()

        with self._lock:
            chunks, self._chunks = self._chunks, []
            frames = self._frames

        if chunks:
            samples = np.concatenate(chunks, axis=0).astype(np.float32)
        else:
            samples = np.zeros((0, self.channels), dtype=np.float32)
        if self.channels == 1:
            samples = samples.reshape(-1)

        logger.info(f"Capture stopped: {frames / self.sample_rate:.2f}s recorded")
        return AudioBuffer(samples=samples, sample_rate=self.sample_rate, channels=self.channels)

    def cancel(self) -> None:
        """Stop recording and discard the audio. No-op when idle."""
        if not self.is_recording:
            return
        self._close_stream()
        with self._lock:
            self._chunks = []
            self._frames = 0
        logger.info("Capture cancelled")

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        except Exception:
            logger.exception("Error closing audio input stream")

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning(f"Audio stream status: {status}")

        with self._lock:
            remaining = self.max_frames - self._frames
            if remaining <= 0:
                return
            block = np.asarray(indata)[: min(frames, remaining)]
            self._chunks.append(block.copy())
            self._frames += block.shape[0]

    @staticmethod
    def list_devices() -> List[Tuple[int, str]]:
        """Input devices as (index, name) pairs."""
        sd = _sounddevice()
        return [
            (idx, device["name"])
            for idx, device in enumerate(sd.query_devices())
            if device["max_input_channels"] > 0
        ]
