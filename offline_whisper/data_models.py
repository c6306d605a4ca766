"""Core data models for offline-whisper.

This module defines the value types passed between pipeline stages:
audio buffers, mel spectrograms, encoder outputs, decoded token
sequences and the terminal transcription result.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .constants import NO_SPEECH_TEXT, SAMPLE_RATE
from .exceptions import ErrorKind


@dataclass
class AudioBuffer:
    """Raw or normalized PCM audio.

    Attributes:
        samples: float32 samples, 1D (interleaved when channels > 1)
            or 2D with shape [frames, channels]
        sample_rate: Sample rate in Hz
        channels: Number of interleaved channels
    """
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE
    channels: int = 1

    @property
    def num_frames(self) -> int:
        """Number of sample frames (samples per channel)."""
        if self.samples.ndim == 2:
            return self.samples.shape[0]
        return len(self.samples) // max(self.channels, 1)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return self.num_frames / self.sample_rate


@dataclass
class MelSpectrogram:
    """Log-mel spectrogram with shape [n_mels, frames].

    Attributes:
        features: float32 array of log10 mel energies floored at LOG_FLOOR
    """
    features: np.ndarray

    @property
    def num_frames(self) -> int:
        return self.features.shape[1]

    @property
    def n_mels(self) -> int:
        return self.features.shape[0]

    @property
    def is_empty(self) -> bool:
        return self.num_frames == 0

    def as_batch(self) -> np.ndarray:
        """Return the [1, n_mels, frames] view consumed by the encoder."""
        return self.features[np.newaxis, :, :]


@dataclass(frozen=True)
class EncoderOutput:
    """Encoder hidden states shared read-only by every decoder step.

    Attributes:
        hidden_states: Array with shape [1, sequence, hidden_dim]
    """
    hidden_states: np.ndarray

    def __post_init__(self):
        self.hidden_states.setflags(write=False)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.hidden_states.shape


@dataclass(frozen=True)
class DecodeResult:
    """Finalized token sequence produced by the decoder.

    Attributes:
        tokens: Token ids including the seed tokens and the terminal token
        confidence: Geometric mean probability of the chosen tokens (0-1)
        truncated: True if decoding stopped at the token limit
        language: Language code emitted by the model, if any
    """
    tokens: Tuple[int, ...]
    confidence: float
    truncated: bool = False
    language: Optional[str] = None


@dataclass(frozen=True)
class TranscriptionResult:
    """Terminal artifact of one transcription request.

    Attributes:
        text: Transcribed text, or NO_SPEECH_TEXT for silence
        detected_language: Language code (ISO 639-1 style)
        confidence: Confidence score (0-1)
        processing_duration: Wall-clock processing time in seconds
        succeeded: Whether the transcription completed
        error_message: Human-readable failure reason
        error_kind: Failure category
    """
    text: str
    detected_language: str
    confidence: float
    processing_duration: float
    succeeded: bool
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def success(
        cls,
        text: str,
        language: str,
        confidence: float,
        processing_duration: float,
    ) -> "TranscriptionResult":
        return cls(
            text=text,
            detected_language=language,
            confidence=min(max(confidence, 0.0), 1.0),
            processing_duration=processing_duration,
            succeeded=True,
        )

    @classmethod
    def failure(
        cls,
        message: str,
        kind: ErrorKind,
        language: str,
        processing_duration: float = 0.0,
    ) -> "TranscriptionResult":
        return cls(
            text="",
            detected_language=language,
            confidence=0.0,
            processing_duration=processing_duration,
            succeeded=False,
            error_message=message,
            error_kind=kind,
        )

    @property
    def no_speech(self) -> bool:
        """True if the request succeeded but contained no speech."""
        return self.succeeded and self.text == NO_SPEECH_TEXT

    def __str__(self) -> str:
        if self.succeeded:
            return (
                f"[{self.detected_language}] {self.text} "
                f"(confidence: {self.confidence:.2f}, time: {self.processing_duration:.2f}s)"
            )
        return f"Error: {self.error_message}"
