"""Inference backends for the Whisper encoder and decoder.

The pipeline talks to models only through the InferenceBackend protocol.
OnnxWhisperBackend implements it with onnxruntime over the exported
encoder_model.onnx / decoder_model.onnx pair; tests substitute scripted
backends.
"""

import logging
import os
from typing import List, Optional, Protocol

import numpy as np
import onnxruntime as ort

from .constants import LOG_FLOOR
from .exceptions import ModelLoadFailedError, ModelNotDownloadedError
from .models import ModelHandle

logger = logging.getLogger(__name__)


class InferenceBackend(Protocol):
    """Protocol for encoder/decoder execution engines.

    Implementations must tolerate being called from a single worker
    thread; they are never called concurrently.
    """

    def encode(self, input_features: np.ndarray) -> np.ndarray:
        """Run the encoder.

        Args:
            input_features: float32 log-mel batch with shape [1, n_mels, frames]

        Returns:
            Hidden states with shape [1, sequence, hidden_dim]
        """
        ...

    def decode(self, input_ids: np.ndarray, encoder_hidden_states: np.ndarray) -> np.ndarray:
        """Run one decoder step over the full token prefix.

        Args:
            input_ids: int64 token ids with shape [1, seq]
            encoder_hidden_states: Output of encode()

        Returns:
            Logits with shape [1, seq, vocab_size]
        """
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


def _providers_for(device: str) -> List[str]:
    if device == "cuda":
        available = ort.get_available_providers()
        if "CUDAExecutionProvider" in available:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        logger.warning("CUDAExecutionProvider not available, running ONNX models on CPU")
    return ["CPUExecutionProvider"]


class OnnxWhisperBackend:
    """Runs Whisper encoder and decoder ONNX graphs with onnxruntime.

    Attributes:
        encoder_path: Path to encoder_model.onnx
        decoder_path: Path to decoder_model.onnx (without KV-cache inputs)
        device: "cpu" or "cuda"
    """

    def __init__(
        self,
        encoder_path: str,
        decoder_path: str,
        device: str = "cpu",
        num_threads: Optional[int] = None,
    ):
        self.encoder_path = encoder_path
        self.decoder_path = decoder_path
        self.device = device

        options = ort.SessionOptions()
        if num_threads is not None:
            options.intra_op_num_threads = num_threads
        providers = _providers_for(device)

        logger.info(f"Loading encoder from '{encoder_path}'")
        self._encoder = ort.InferenceSession(encoder_path, sess_options=options, providers=providers)
        logger.info(f"Loading decoder from '{decoder_path}'")
        self._decoder = ort.InferenceSession(decoder_path, sess_options=options, providers=providers)

        encoder_input = self._encoder.get_inputs()[0]
        self._features_name = encoder_input.name
        # Exported Whisper encoders usually fix the frame axis at 3000
        frames_dim = encoder_input.shape[2] if len(encoder_input.shape) == 3 else None
        self._static_frames = frames_dim if isinstance(frames_dim, int) else None

        decoder_inputs = {i.name for i in self._decoder.get_inputs()}
        extra = decoder_inputs - {"input_ids", "encoder_hidden_states"}
        if "input_ids" not in decoder_inputs or "encoder_hidden_states" not in decoder_inputs or extra:
            raise ValueError(
                f"decoder must take exactly 'input_ids' and 'encoder_hidden_states', "
                f"got {sorted(decoder_inputs)}. Use decoder_model.onnx, not the "
                f"merged KV-cache export"
            )
        outputs = [o.name for o in self._decoder.get_outputs()]
        self._logits_name = "logits" if "logits" in outputs else outputs[0]

    def encode(self, input_features: np.ndarray) -> np.ndarray:
        if self._encoder is None:
            raise RuntimeError("encoder session is closed")

        features = np.asarray(input_features, dtype=np.float32)
        if self._static_frames is not None and features.shape[2] < self._static_frames:
            pad = self._static_frames - features.shape[2]
            features = np.pad(
                features, ((0, 0), (0, 0), (0, pad)), constant_values=LOG_FLOOR
            )
        return self._encoder.run(None, {self._features_name: features})[0]

    def decode(self, input_ids: np.ndarray, encoder_hidden_states: np.ndarray) -> np.ndarray:
        if self._decoder is None:
            raise RuntimeError("decoder session is closed")

        feeds = {
            "input_ids": np.asarray(input_ids, dtype=np.int64),
            "encoder_hidden_states": encoder_hidden_states,
        }
        return self._decoder.run([self._logits_name], feeds)[0]

    def close(self) -> None:
        self._encoder = None
        self._decoder = None


def load_onnx_backend(handle: ModelHandle, device: str = "cpu") -> OnnxWhisperBackend:
    """Load the ONNX backend for a model handle.

    Raises:
        ModelNotDownloadedError: If either model file is missing
        ModelLoadFailedError: If onnxruntime cannot load the graphs
    """
    for path in (handle.encoder_path, handle.decoder_path):
        if not os.path.exists(path):
            raise ModelNotDownloadedError(
                f"Model file '{path}' not found for '{handle.variant}'. "
                f"Download the model first"
            )

    try:
        return OnnxWhisperBackend(handle.encoder_path, handle.decoder_path, device=device)
    except Exception as e:
        raise ModelLoadFailedError(
            f"Failed to load model '{handle.variant}'. {str(e)}"
        ) from e
