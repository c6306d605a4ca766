"""Encoder stage: mel spectrogram to hidden states."""

import logging
from typing import Optional

import numpy as np

from .backend import InferenceBackend
from .constants import MAX_FRAMES, N_MELS
from .data_models import EncoderOutput, MelSpectrogram
from .exceptions import EncodeFailedError

logger = logging.getLogger(__name__)


class EncoderRunner:
    """Validates spectrograms and runs them through the backend encoder.

    Backend failures surface as EncodeFailedError instead of whatever the
    backend raised.
    """

    def __init__(
        self,
        backend: Optional[InferenceBackend],
        n_mels: int = N_MELS,
        max_frames: int = MAX_FRAMES,
    ):
        self.backend = backend
        self.n_mels = n_mels
        self.max_frames = max_frames

    def run(self, mel: MelSpectrogram) -> EncoderOutput:
        """Encode one spectrogram.

        Args:
            mel: Spectrogram with shape [n_mels, frames], 1 <= frames <= max_frames

        Returns:
            EncoderOutput wrapping [1, sequence, hidden_dim] hidden states

        Raises:
            EncodeFailedError: On shape mismatch, missing backend, out of
                memory or backend execution error
        """
        if self.backend is None:
            raise EncodeFailedError("encoder backend is not loaded")

        features = mel.as_batch()
        if features.ndim != 3 or features.shape[1] != self.n_mels:
            raise EncodeFailedError(
                f"mel spectrogram must have shape [1, {self.n_mels}, frames], "
                f"got {list(features.shape)}"
            )
        num_frames = features.shape[2]
        if not 1 <= num_frames <= self.max_frames:
            raise EncodeFailedError(
                f"mel spectrogram must have 1 to {self.max_frames} frames, got {num_frames}"
            )

        try:
            hidden_states = self.backend.encode(np.ascontiguousarray(features, dtype=np.float32))
        except MemoryError as e:
            raise EncodeFailedError(
                f"Out of memory while encoding {num_frames} frames"
            ) from e
        except Exception as e:
            raise EncodeFailedError(f"Encoder execution failed: {str(e)}") from e

        hidden_states = np.asarray(hidden_states)
        if hidden_states.ndim != 3 or hidden_states.shape[0] != 1:
            raise EncodeFailedError(
                f"encoder output must have shape [1, sequence, hidden], "
                f"got {list(hidden_states.shape)}"
            )

        logger.debug(f"Encoded {num_frames} frames into {list(hidden_states.shape)}")
        return EncoderOutput(hidden_states=hidden_states)
