"""Tests for frame extraction."""

import numpy as np
import pytest

from sentinel.config import FrameConfig
from sentinel.data import FrameExtractor, normalize_amplitude, scale_frame, spectral_centroid
from sentinel.exceptions import InputTooShortError, InsufficientFramesError

from conftest import SR, make_hum


class TestScaleFrame:
    """Test per-bin scaling."""

    def test_output_range(self):
        rng = np.random.default_rng(0)
        for scale in (0.0, 0.01, 1.0, 100.0, 1e6):
            v = rng.random(128) * scale
            out = scale_frame(v)
            assert out.shape == (128,)
            assert out.min() >= 0.0
            assert out.max() <= 255.0

    def test_monotonic_per_bin(self):
        rng = np.random.default_rng(1)
        base = rng.random(128) * 2.0
        for i in rng.choice(128, size=16, replace=False):
            prev = scale_frame(base)[i]
            for step in np.linspace(0.0, 5.0, 20):
                v = base.copy()
                v[i] += step
                current = scale_frame(v)[i]
                assert current >= prev - 1e-4
                prev = current

    def test_noise_floor_zeroes_small_values(self):
        out = scale_frame(np.full(128, 0.01))
        assert np.all(out[:10] == 0.0)

    def test_high_bins_boosted(self):
        out = scale_frame(np.full(128, 0.5))
        assert out[-1] > out[0]

    def test_stack_matches_single(self):
        rng = np.random.default_rng(2)
        stack = rng.random((4, 128))
        scaled = scale_frame(stack)
        assert scaled.shape == (4, 128)
        np.testing.assert_allclose(scaled[2], scale_frame(stack[2]))


class TestFrameExtractor:
    """Test FrameExtractor class."""

    @pytest.fixture
    def extractor(self):
        return FrameExtractor()

    def test_hop_length(self, extractor):
        assert extractor.hop_length(44100) == 661
        assert extractor.hop_length(16000) == 240
        assert extractor.hop_length(10) == 1

    def test_extract_shape_and_range(self, extractor):
        frames = extractor.extract(make_hum(2.0), SR)
        expected = 1 + (2 * SR - 256) // 240
        assert frames.shape == (expected, 128)
        assert frames.min() >= 0.0
        assert frames.max() <= 255.0

    def test_gain_invariance(self, extractor):
        y = make_hum(1.0, gain=0.5)
        loud = extractor.extract(y, SR)
        quiet = extractor.extract(y * 0.05, SR)
        np.testing.assert_allclose(loud, quiet, atol=1e-2)

    def test_too_short(self, extractor):
        with pytest.raises(InputTooShortError):
            extractor.extract(np.ones(511, dtype=np.float32) * 0.1, SR)

    def test_insufficient_frames(self, extractor):
        with pytest.raises(InsufficientFramesError):
            extractor.extract(make_hum(1.0)[:600], SR)

    def test_silence_skip(self, extractor):
        frames = extractor.extract(np.zeros(SR, dtype=np.float32), SR)
        assert frames.shape == (0, 128)

    def test_silence_zeros(self):
        extractor = FrameExtractor(FrameConfig(silence_policy="zeros"))
        frames = extractor.extract(np.zeros(SR, dtype=np.float32), SR)
        assert frames.shape == (1 + (SR - 256) // 240, 128)
        assert np.all(frames == 0.0)

    def test_frame_from_block(self, extractor):
        frame = extractor.frame_from_block(make_hum(0.1)[:256])
        assert frame.shape == (128,)
        assert frame.max() > 0.0

    def test_frame_from_silent_block(self, extractor):
        frame = extractor.frame_from_block(np.zeros(256, dtype=np.float32))
        assert np.all(frame == 0.0)


class TestHelpers:
    """Test normalization and centroid helpers."""

    def test_normalize_amplitude_targets_rms(self):
        y = make_hum(1.0, gain=0.9)
        out = normalize_amplitude(y)
        rms = float(np.sqrt(np.mean(out.astype(np.float64) ** 2)))
        assert rms == pytest.approx(0.063, rel=0.05)
        assert np.abs(out).max() <= 0.95

    def test_normalize_amplitude_silence(self):
        assert normalize_amplitude(np.full(1000, 1e-6, dtype=np.float32)) is None

    def test_spectral_centroid_single_bin(self):
        mags = np.zeros(128)
        mags[32] = 1.0
        assert spectral_centroid(mags, 16000) == pytest.approx(32 * (8000 / 128))

    def test_spectral_centroid_silent(self):
        assert spectral_centroid(np.zeros(128), 16000) == 0.0
