"""Tests for the log-mel spectrogram front-end."""

import numpy as np
import pytest

from offline_whisper.constants import LOG_FLOOR
from offline_whisper.data_models import AudioBuffer
from offline_whisper.mel import (
    MelSpectrogramExtractor,
    hz_to_mel,
    mel_filter_bank,
    mel_to_hz,
    num_frames_for,
)


class TestMelFilterBank:
    """Test the triangular mel filter bank."""

    def test_shape_and_range(self):
        """Test 80 filters over 201 FFT bins with non-negative weights."""
        filters = mel_filter_bank(80, 400, 16000)

        assert filters.shape == (80, 201)
        assert filters.dtype == np.float32
        assert np.all(filters >= 0.0)
        assert np.all(filters.max(axis=1) > 0.0)

    def test_read_only(self):
        """Test that the cached bank cannot be modified."""
        filters = mel_filter_bank(80, 400, 16000)

        with pytest.raises(ValueError):
            filters[0, 0] = 1.0

    def test_mel_scale_round_trip(self):
        """Test that mel_to_hz inverts hz_to_mel."""
        hz = np.array([0.0, 440.0, 8000.0])

        np.testing.assert_allclose(mel_to_hz(hz_to_mel(hz)), hz, atol=1e-6)


class TestNumFrames:
    """Test frame count arithmetic."""

    def test_one_second(self):
        assert num_frames_for(16000) == 98

    def test_shorter_than_window(self):
        assert num_frames_for(399) == 0
        assert num_frames_for(400) == 1

    def test_capped(self):
        assert num_frames_for(10 * 480000) == 3000


class TestMelSpectrogramExtractor:
    """Test MelSpectrogramExtractor output."""

    def setup_method(self):
        self.extractor = MelSpectrogramExtractor()

    def test_silence_is_floor(self):
        """Test that one second of zeros gives 98 frames at the log floor."""
        mel = self.extractor.extract(AudioBuffer(np.zeros(16000, dtype=np.float32)))

        assert mel.features.shape == (80, 98)
        assert np.all(mel.features == LOG_FLOOR)

    def test_values_bounded_below(self, one_second_tone):
        """Test that every value is at or above the floor and finite."""
        mel = self.extractor.extract(one_second_tone)

        assert np.all(np.isfinite(mel.features))
        assert np.all(mel.features >= LOG_FLOOR)
        assert mel.features.max() > LOG_FLOOR

    def test_deterministic(self, one_second_tone):
        """Test that identical input gives identical output."""
        first = self.extractor.extract(one_second_tone)
        second = self.extractor.extract(one_second_tone)

        np.testing.assert_array_equal(first.features, second.features)

    def test_short_buffer_has_no_frames(self):
        """Test that fewer than 400 samples yields an empty spectrogram."""
        mel = self.extractor.extract(np.zeros(399, dtype=np.float32))

        assert mel.features.shape == (80, 0)
        assert mel.is_empty

    def test_frame_cap(self):
        """Test that long buffers produce at most 3000 frames."""
        mel = self.extractor.extract(np.zeros(500000, dtype=np.float32))

        assert mel.num_frames == 3000

    def test_tone_energy_in_low_bands(self, one_second_tone):
        """Test that a 440 Hz tone peaks in the lower mel bands."""
        mel = self.extractor.extract(one_second_tone)
        band_energy = mel.features.mean(axis=1)

        assert int(np.argmax(band_energy)) < 40

    def test_invalid_params(self):
        """Test constructor validation."""
        with pytest.raises(TypeError, match="n_mels must be int"):
            MelSpectrogramExtractor(n_mels=80.0)
        with pytest.raises(ValueError, match="hop_length must be positive"):
            MelSpectrogramExtractor(hop_length=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
