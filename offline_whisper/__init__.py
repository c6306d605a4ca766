"""offline-whisper: Offline speech-to-text with Whisper ONNX models.

This module provides a single-utterance transcription pipeline (audio
normalization, log-mel features, encoder, greedy decoder, detokenizer)
behind a queued, cancellable engine API.

Example:
    >>> from offline_whisper import WhisperEngine
    >>> engine = WhisperEngine("tiny", language="en")
    >>> engine.initialize()
    >>> result = engine.transcribe_file("speech.wav").result()
    >>> print(result.text)
"""

from .audio import AudioNormalizer, compute_rms, load_audio_file, trim_silence
from .backend import InferenceBackend, OnnxWhisperBackend, load_onnx_backend
from .capture import MicrophoneCapture
from .data_models import (
    AudioBuffer,
    DecodeResult,
    EncoderOutput,
    MelSpectrogram,
    TranscriptionResult,
)
from .decoder import GreedyDecoder, GreedySelector, TokenSelector
from .downloader import DownloadProgress, ModelDownloader
from .encoder import EncoderRunner
from .engine import WhisperEngine
from .events import EventEmitter, EventKind
from .exceptions import (
    AlreadyBusyError,
    CaptureError,
    DecodeFailedError,
    DownloadFailedError,
    EncodeFailedError,
    ErrorKind,
    InvalidAudioInputError,
    ModelLoadFailedError,
    ModelNotDownloadedError,
    OperationCancelledError,
    WhisperError,
)
from .mel import MelSpectrogramExtractor
from .models import MODEL_VARIANTS, ModelHandle, ModelManager, ModelVariant
from .profiler import PerformanceProfiler, PerformanceStats, cuda_memory_manager
from .session import TranscriptionJob, TranscriptionSession
from .tokenizer import Detokenizer

__version__ = "0.1.0"

__all__ = [
    "AlreadyBusyError",
    "AudioBuffer",
    "AudioNormalizer",
    "CaptureError",
    "DecodeFailedError",
    "DecodeResult",
    "Detokenizer",
    "DownloadFailedError",
    "DownloadProgress",
    "EncodeFailedError",
    "EncoderOutput",
    "EncoderRunner",
    "ErrorKind",
    "EventEmitter",
    "EventKind",
    "GreedyDecoder",
    "GreedySelector",
    "InferenceBackend",
    "InvalidAudioInputError",
    "MODEL_VARIANTS",
    "MelSpectrogram",
    "MelSpectrogramExtractor",
    "MicrophoneCapture",
    "ModelDownloader",
    "ModelHandle",
    "ModelLoadFailedError",
    "ModelManager",
    "ModelNotDownloadedError",
    "ModelVariant",
    "OnnxWhisperBackend",
    "OperationCancelledError",
    "PerformanceProfiler",
    "PerformanceStats",
    "TokenSelector",
    "TranscriptionJob",
    "TranscriptionResult",
    "TranscriptionSession",
    "WhisperEngine",
    "WhisperError",
    "compute_rms",
    "cuda_memory_manager",
    "load_audio_file",
    "load_onnx_backend",
    "trim_silence",
]
