"""Audio normalization and loading.

This module converts arbitrary PCM audio into the canonical buffer the
mel front-end expects: mono, 16 kHz, between 1 and 30 seconds long and
peak-normalized to [-1, 1].
"""

import logging
import os
from typing import Optional, Union

import numpy as np
import soundfile as sf

from .constants import CHUNK_LENGTH, SAMPLE_RATE
from .data_models import AudioBuffer
from .exceptions import InvalidAudioInputError

logger = logging.getLogger(__name__)


class AudioNormalizer:
    """Produces canonical mono 16 kHz float32 buffers.

    Attributes:
        target_sample_rate: Output sample rate in Hz
        max_duration: Longer audio is truncated to this many seconds
        min_duration: Shorter audio is zero-padded to this many seconds
    """

    def __init__(
        self,
        target_sample_rate: int = SAMPLE_RATE,
        max_duration: float = CHUNK_LENGTH,
        min_duration: float = 1.0,
    ):
        """Initialize audio normalizer.

        Args:
            target_sample_rate: Output sample rate in Hz (default: 16000)
            max_duration: Maximum duration in seconds (default: 30)
            min_duration: Minimum duration in seconds (default: 1.0)

        Raises:
            TypeError: If parameters have invalid types
            ValueError: If parameters are non-positive or inconsistent
        """
        if not isinstance(target_sample_rate, int):
            raise TypeError(
                f"target_sample_rate must be int, got {type(target_sample_rate).__name__}"
            )
        if target_sample_rate <= 0:
            raise ValueError(
                f"target_sample_rate must be positive, got {target_sample_rate}"
            )
        if not isinstance(max_duration, (int, float)):
            raise TypeError(
                f"max_duration must be numeric, got {type(max_duration).__name__}"
            )
        if max_duration <= 0:
            raise ValueError(
                f"max_duration must be positive, got {max_duration}"
            )
        if not isinstance(min_duration, (int, float)):
            raise TypeError(
                f"min_duration must be numeric, got {type(min_duration).__name__}"
            )
        if min_duration < 0:
            raise ValueError(
                f"min_duration must be non-negative, got {min_duration}"
            )
        if min_duration > max_duration:
            raise ValueError(
                f"min_duration ({min_duration}s) must not exceed "
                f"max_duration ({max_duration}s)"
            )

        self.target_sample_rate = target_sample_rate
        self.max_duration = max_duration
        self.min_duration = min_duration
        self.max_samples = int(max_duration * target_sample_rate)
        self.min_samples = int(min_duration * target_sample_rate)

    def normalize(self, audio: Optional[AudioBuffer]) -> AudioBuffer:
        """Convert audio into a canonical buffer.

        Steps run in order: down-mix, resample, truncate or pad, then
        peak-normalize. Already canonical input comes back unchanged.

        Args:
            audio: Source audio at any sample rate and channel count

        Returns:
            Mono float32 AudioBuffer at target_sample_rate

        Raises:
            InvalidAudioInputError: If audio is None, empty or malformed
        """
        if audio is None or audio.samples is None:
            raise InvalidAudioInputError("audio buffer is missing")

        samples = np.asarray(audio.samples, dtype=np.float32)
        if samples.size == 0:
            raise InvalidAudioInputError("audio buffer is empty")
        if audio.sample_rate <= 0:
            raise InvalidAudioInputError(
                f"sample_rate must be positive, got {audio.sample_rate}"
            )

        mono = self._downmix(samples, audio.channels)
        if len(mono) == 0:
            raise InvalidAudioInputError("audio buffer has no complete frames")

        resampled = self._resample(mono, audio.sample_rate, self.target_sample_rate)

        if len(resampled) > self.max_samples:
            logger.warning(
                f"Audio is longer than {self.max_duration}s "
                f"({len(resampled) / self.target_sample_rate:.2f}s), truncating"
            )
            resampled = resampled[:self.max_samples]
        elif len(resampled) < self.min_samples:
            resampled = np.pad(resampled, (0, self.min_samples - len(resampled)))

        return AudioBuffer(
            samples=self._peak_normalize(resampled),
            sample_rate=self.target_sample_rate,
            channels=1,
        )

    @staticmethod
    def _downmix(samples: np.ndarray, channels: int) -> np.ndarray:
        """Average channels per frame; accepts 2D or interleaved 1D input."""
        if samples.ndim == 2:
            if samples.shape[1] == 1:
                return samples[:, 0]
            return samples.mean(axis=1, dtype=np.float32)

        if samples.ndim != 1:
            raise InvalidAudioInputError(
                f"audio samples must be 1D or 2D, got shape {samples.shape}"
            )
        if channels < 1:
            raise InvalidAudioInputError(
                f"channels must be positive, got {channels}"
            )
        if channels == 1:
            return samples

        num_frames = len(samples) // channels
        if num_frames * channels != len(samples):
            logger.warning(
                f"Dropping {len(samples) - num_frames * channels} trailing samples "
                f"that do not form a complete {channels}-channel frame"
            )
        frames = samples[:num_frames * channels].reshape(num_frames, channels)
        return frames.mean(axis=1, dtype=np.float32)

    @staticmethod
    def _resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
        """Linear-interpolation resampling."""
        if source_rate == target_rate:
            return samples

        ratio = source_rate / target_rate
        target_length = int(len(samples) / ratio)
        if target_length == 0:
            return np.zeros(0, dtype=np.float32)

        positions = np.arange(target_length, dtype=np.float64) * ratio
        lower = np.floor(positions).astype(np.int64)
        upper = np.minimum(lower + 1, len(samples) - 1)
        fraction = positions - lower

        source = samples.astype(np.float64)
        resampled = source[lower] * (1.0 - fraction) + source[upper] * fraction
        return resampled.astype(np.float32)

    @staticmethod
    def _peak_normalize(samples: np.ndarray) -> np.ndarray:
        peak = np.max(np.abs(samples))
        if peak == 0:
            return samples
        return samples / peak


def load_audio_file(path: Union[str, os.PathLike]) -> AudioBuffer:
    """Read an audio file into an AudioBuffer without normalizing it.

    Args:
        path: Path to a WAV, FLAC or OGG file

    Returns:
        AudioBuffer with samples shaped [frames, channels]

    Raises:
        FileNotFoundError: If the file does not exist
        InvalidAudioInputError: If the file cannot be decoded
    """
    path = os.fspath(path)
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Audio file '{path}' not found. Check file path and permissions"
        )

    try:
        samples, sample_rate = sf.read(path, dtype="float32", always_2d=True)
    except RuntimeError as e:
        raise InvalidAudioInputError(
            f"Failed to load audio file '{path}'. "
            f"Check that the file is a valid audio format. Error: {str(e)}"
        ) from e

    return AudioBuffer(
        samples=samples,
        sample_rate=int(sample_rate),
        channels=samples.shape[1],
    )


def compute_rms(samples: np.ndarray) -> float:
    """Root-mean-square level of a buffer (0.0 for empty input)."""
    if len(samples) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def trim_silence(samples: np.ndarray, threshold: float = 0.01) -> np.ndarray:
    """Drop leading and trailing samples whose magnitude is <= threshold.

    Returns an empty array when nothing exceeds the threshold.
    """
    loud = np.flatnonzero(np.abs(samples) > threshold)
    if len(loud) == 0:
        return samples[:0]
    return samples[loud[0]:loud[-1] + 1]
