"""Performance statistics and device memory helpers.

This module provides tools for measuring how fast the transcription
pipeline runs relative to the audio it processes, and for releasing
cached CUDA memory after front-end work on the GPU.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, Union

import torch


@dataclass
class PerformanceStats:
    """Performance statistics for one transcription.

    Attributes:
        audio_duration: Normalized audio duration in seconds
        processing_time: Wall-clock processing time in seconds
        rtf: Real-time factor (processing_time / audio_duration)
        throughput: Audio seconds processed per wall-clock second
        num_tokens: Tokens appended by the decoder
        device: Device used for the mel front-end
    """
    audio_duration: float
    processing_time: float
    rtf: float
    throughput: float
    num_tokens: int
    device: str

    def __str__(self) -> str:
        return (
            f"Performance: {self.audio_duration:.1f}s audio in {self.processing_time:.2f}s "
            f"(RTF: {self.rtf:.3f}, throughput: {self.throughput:.1f}x, "
            f"tokens: {self.num_tokens}, device: {self.device})"
        )


class PerformanceProfiler:
    """Computes real-time factor and throughput for transcriptions."""

    @staticmethod
    def calculate_stats(
        audio_duration: float,
        processing_time: float,
        num_tokens: int,
        device: str,
    ) -> PerformanceStats:
        """Calculate performance statistics.

        Args:
            audio_duration: Audio duration in seconds
            processing_time: Wall-clock processing time in seconds
            num_tokens: Tokens produced by the decoder
            device: Device used for processing

        Returns:
            PerformanceStats object with calculated metrics
        """
        rtf = processing_time / audio_duration if audio_duration > 0 else 0.0
        throughput = audio_duration / processing_time if processing_time > 0 else 0.0

        return PerformanceStats(
            audio_duration=audio_duration,
            processing_time=processing_time,
            rtf=rtf,
            throughput=throughput,
            num_tokens=num_tokens,
            device=device,
        )


@contextmanager
def cuda_memory_manager(device: Optional[Union[str, torch.device]] = None):
    """Context manager for CUDA memory management.

    Releases cached GPU memory after the block when it ran on a CUDA
    device. A no-op on CPU.

    Example:
        >>> with cuda_memory_manager("cuda"):
        ...     features = extractor.extract(buffer)
    """
    device = torch.device(device) if device is not None else None
    try:
        yield
    finally:
        if device is not None and device.type == "cuda" and torch.cuda.is_available():
            torch.cuda.empty_cache()
