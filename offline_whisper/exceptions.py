"""Exception hierarchy for offline-whisper.

Every pipeline failure is a WhisperError carrying an ErrorKind, so the
session controller can turn it into a failed TranscriptionResult without
inspecting messages.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failed operation."""

    INVALID_AUDIO_INPUT = "invalid_audio_input"
    MODEL_NOT_DOWNLOADED = "model_not_downloaded"
    MODEL_LOAD_FAILED = "model_load_failed"
    ENCODE_FAILED = "encode_failed"
    DECODE_FAILED = "decode_failed"
    CANCELLED = "cancelled"
    DOWNLOAD_FAILED = "download_failed"
    ALREADY_BUSY = "already_busy"
    CAPTURE_FAILED = "capture_failed"
    INTERNAL = "internal"


class WhisperError(Exception):
    """Base exception for all offline-whisper errors."""

    kind = ErrorKind.INTERNAL


class InvalidAudioInputError(WhisperError):
    """Audio buffer is empty, missing or undecodable."""

    kind = ErrorKind.INVALID_AUDIO_INPUT


class ModelNotDownloadedError(WhisperError):
    """Model artifacts are not present in the local cache."""

    kind = ErrorKind.MODEL_NOT_DOWNLOADED


class ModelLoadFailedError(WhisperError):
    """Inference backend or vocabulary failed to load."""

    kind = ErrorKind.MODEL_LOAD_FAILED


class EncodeFailedError(WhisperError):
    """Encoder execution failed or received a malformed spectrogram."""

    kind = ErrorKind.ENCODE_FAILED


class DecodeFailedError(WhisperError):
    """Decoder execution failed or exceeded its time budget."""

    kind = ErrorKind.DECODE_FAILED


class OperationCancelledError(WhisperError):
    """Operation was cancelled by the caller."""

    kind = ErrorKind.CANCELLED


class DownloadFailedError(WhisperError):
    """Model download failed; no partial file is left behind."""

    kind = ErrorKind.DOWNLOAD_FAILED


class AlreadyBusyError(WhisperError):
    """Operation rejected because another one is in progress."""

    kind = ErrorKind.ALREADY_BUSY


class CaptureError(WhisperError):
    """Microphone capture could not be started or read."""

    kind = ErrorKind.CAPTURE_FAILED
