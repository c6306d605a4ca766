"""Log-mel spectrogram front-end.

Frames the canonical 16 kHz buffer with a 400-sample symmetric Hann
window and a 160-sample hop, takes the FFT magnitude, projects it onto
an 80-band triangular mel filter bank and converts to floored log10.
"""

from functools import lru_cache
from typing import Union

import numpy as np
import torch

from .constants import (
    HOP_LENGTH,
    LOG_EPSILON,
    LOG_FLOOR,
    MAX_FRAMES,
    N_FFT,
    N_MELS,
    SAMPLE_RATE,
)
from .data_models import AudioBuffer, MelSpectrogram
from .profiler import cuda_memory_manager


def hz_to_mel(hz):
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def mel_to_hz(mel):
    return 700.0 * (10.0 ** (np.asarray(mel, dtype=np.float64) / 2595.0) - 1.0)


@lru_cache(maxsize=None)
def mel_filter_bank(
    n_mels: int = N_MELS,
    n_fft: int = N_FFT,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Build triangular mel filters spanning 0 Hz to Nyquist.

    n_mels + 2 points are spaced evenly on the mel scale; filter m rises
    from point m to a peak of 1.0 at point m + 1 and falls back to zero
    at point m + 2.

    Returns:
        Read-only float32 array with shape [n_mels, n_fft // 2 + 1]
    """
    n_freqs = n_fft // 2 + 1
    fft_freqs = np.linspace(0.0, sample_rate / 2.0, n_freqs)
    mel_points = np.linspace(hz_to_mel(0.0), hz_to_mel(sample_rate / 2.0), n_mels + 2)
    hz_points = mel_to_hz(mel_points)

    filters = np.zeros((n_mels, n_freqs), dtype=np.float64)
    for m in range(n_mels):
        lower, center, upper = hz_points[m], hz_points[m + 1], hz_points[m + 2]
        rising = (fft_freqs - lower) / (center - lower)
        falling = (upper - fft_freqs) / (upper - center)
        filters[m] = np.maximum(0.0, np.minimum(rising, falling))

    filters = filters.astype(np.float32)
    filters.setflags(write=False)
    return filters


def num_frames_for(num_samples: int, n_fft: int = N_FFT, hop_length: int = HOP_LENGTH,
                   max_frames: int = MAX_FRAMES) -> int:
    """Frame count for a buffer: floor((n - n_fft) / hop) + 1, capped."""
    if num_samples < n_fft:
        return 0
    return min((num_samples - n_fft) // hop_length + 1, max_frames)


class MelSpectrogramExtractor:
    """Computes Whisper-style log-mel spectrograms.

    Attributes:
        n_mels: Number of mel bands
        n_fft: FFT window size in samples
        hop_length: Hop between frames in samples
        max_frames: Frames beyond this are never computed
        device: Torch device the transform runs on
    """

    def __init__(
        self,
        n_mels: int = N_MELS,
        n_fft: int = N_FFT,
        hop_length: int = HOP_LENGTH,
        sample_rate: int = SAMPLE_RATE,
        max_frames: int = MAX_FRAMES,
        device: str = "cpu",
    ):
        for name, value in (
            ("n_mels", n_mels),
            ("n_fft", n_fft),
            ("hop_length", hop_length),
            ("sample_rate", sample_rate),
            ("max_frames", max_frames),
        ):
            if not isinstance(value, int):
                raise TypeError(f"{name} must be int, got {type(value).__name__}")
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        self.n_mels = n_mels
        self.n_fft = n_fft
        self.hop_length = hop_length
        self.sample_rate = sample_rate
        self.max_frames = max_frames
        self.device = torch.device(device)

        # periodic=False gives 0.5 * (1 - cos(2*pi*j / (N - 1)))
        self._window = torch.hann_window(n_fft, periodic=False, device=self.device)
        self._filters = torch.from_numpy(
            np.array(mel_filter_bank(n_mels, n_fft, sample_rate))
        ).to(self.device)

    @torch.inference_mode()
    def extract(self, audio: Union[AudioBuffer, np.ndarray]) -> MelSpectrogram:
        """Compute the log-mel spectrogram of a mono buffer.

        Args:
            audio: Canonical AudioBuffer or 1D float array at sample_rate

        Returns:
            MelSpectrogram with shape [n_mels, frames]; zero frames when
            the buffer is shorter than one FFT window
        """
        samples = audio.samples if isinstance(audio, AudioBuffer) else audio
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)

        num_frames = num_frames_for(len(samples), self.n_fft, self.hop_length, self.max_frames)
        if num_frames == 0:
            return MelSpectrogram(features=np.zeros((self.n_mels, 0), dtype=np.float32))

        # Only the samples covered by the first num_frames frames
        needed = (num_frames - 1) * self.hop_length + self.n_fft
        with cuda_memory_manager(self.device):
            waveform = torch.tensor(samples[:needed], device=self.device)
            stft = torch.stft(
                waveform,
                n_fft=self.n_fft,
                hop_length=self.hop_length,
                window=self._window,
                center=False,
                return_complex=True,
            )
            magnitudes = stft.abs()  # [n_freqs, num_frames]
            mel = self._filters @ magnitudes
            log_mel = torch.clamp(torch.log10(mel + LOG_EPSILON), min=LOG_FLOOR)
            features = log_mel.cpu().numpy()

        return MelSpectrogram(features=features.astype(np.float32, copy=False))
