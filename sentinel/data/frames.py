"""Frame extraction: raw samples -> bounded, log-compressed spectral frames.

Pipeline:
    1. RMS gain normalization (silence short-circuits)
    2. STFT magnitude, 256-sample window, ~15 ms hop, first 128 bins
    3. scale_frame: high-frequency boost, noise floor, log compression to [0, 255]
"""

import logging
import math
from typing import Optional

import librosa
import numpy as np

from ..config import FrameConfig
from ..exceptions import InputTooShortError, InsufficientFramesError

logger = logging.getLogger(__name__)


def rms(samples: np.ndarray) -> float:
    """Root mean square of a sample buffer."""
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def normalize_amplitude(
    samples: np.ndarray,
    config: Optional[FrameConfig] = None,
) -> Optional[np.ndarray]:
    """Scale a buffer to the target RMS and clip it.

    Returns None when the buffer is silent so the caller can short-circuit.
    """
    config = config or FrameConfig()
    level = rms(samples)
    if level < config.silence_rms:
        return None
    scaled = samples.astype(np.float32) * (config.target_rms / level)
    return np.clip(scaled, -config.clip_level, config.clip_level)


def scale_frame(frame: np.ndarray, config: Optional[FrameConfig] = None) -> np.ndarray:
    """Boost high bins, subtract the noise floor and log-compress to [0, 255].

    Works on a single (n_bins,) vector or a (T, n_bins) stack.
    """
    config = config or FrameConfig()
    frame = np.asarray(frame, dtype=np.float64)
    n = frame.shape[-1]
    boost = 1.0 + (np.arange(n) / n) * config.boost_slope
    cleaned = np.maximum(0.0, frame * boost - config.noise_floor)
    compressed = np.log10(1.0 + cleaned * 10.0) / math.log10(101.0)
    return np.clip(compressed * 255.0, 0.0, 255.0).astype(np.float32)


def spectral_centroid(magnitudes: np.ndarray, sample_rate: int) -> float:
    """Magnitude-weighted mean frequency (Hz) of one spectral vector."""
    magnitudes = np.asarray(magnitudes, dtype=np.float64)
    bin_hz = (sample_rate / 2) / len(magnitudes)
    denominator = magnitudes.sum()
    if denominator < 1e-4:
        return 0.0
    freqs = np.arange(len(magnitudes)) * bin_hz
    return float((freqs * magnitudes).sum() / denominator)


class FrameExtractor:
    """Turn decoded sample buffers into AudioFrames."""

    def __init__(self, config: Optional[FrameConfig] = None, window_size: int = 12):
        self.config = config or FrameConfig()
        self.window_size = window_size

    def hop_length(self, sample_rate: int) -> int:
        """Hop in samples for a given sample rate."""
        return max(1, int(math.floor(sample_rate * self.config.hop_seconds)))

    def frame_duration(self, sample_rate: int) -> float:
        """Duration of one hop in seconds."""
        return self.hop_length(sample_rate) / sample_rate

    def _stft_magnitude(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        spec = librosa.stft(
            samples.astype(np.float32),
            n_fft=self.config.n_fft,
            hop_length=self.hop_length(sample_rate),
            window="hann",
            center=False,
        )
        # (n_fft // 2 + 1, T) -> (T, n_bins)
        return np.abs(spec[: self.config.n_bins]).T

    def _n_hops(self, n_samples: int, sample_rate: int) -> int:
        return 1 + (n_samples - self.config.n_fft) // self.hop_length(sample_rate)

    def raw_spectrogram(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """Normalized magnitude frames before scaling, shape (T, n_bins).

        Silent input yields an empty array under the "skip" policy and
        zero-valued frames under the "zeros" policy.
        """
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if len(samples) < self.config.min_samples:
            raise InputTooShortError(len(samples), self.config.min_samples)

        normalized = normalize_amplitude(samples, self.config)
        if normalized is None:
            if self.config.silence_policy == "zeros":
                n_hops = self._n_hops(len(samples), sample_rate)
                return np.zeros((n_hops, self.config.n_bins), dtype=np.float32)
            logger.debug("Silent buffer (rms < %g), no frames produced", self.config.silence_rms)
            return np.zeros((0, self.config.n_bins), dtype=np.float32)

        return self._stft_magnitude(normalized, sample_rate).astype(np.float32)

    def extract(self, samples: np.ndarray, sample_rate: int) -> np.ndarray:
        """Extract scaled AudioFrames, shape (T, n_bins), values in [0, 255]."""
        return self.extract_with_raw(samples, sample_rate)[0]

    def extract_with_raw(self, samples: np.ndarray, sample_rate: int):
        """Extract scaled frames together with the raw magnitudes they came from."""
        raw = self.raw_spectrogram(samples, sample_rate)
        if len(raw) == 0:
            return raw, raw
        if len(raw) < self.window_size:
            raise InsufficientFramesError(len(raw), self.window_size)
        return scale_frame(raw, self.config), raw

    def frame_from_block(self, block: np.ndarray) -> np.ndarray:
        """Raw magnitude vector for one n_fft-sample capture block."""
        block = np.asarray(block, dtype=np.float32).reshape(-1)
        if len(block) < self.config.n_fft:
            block = np.pad(block, (0, self.config.n_fft - len(block)))
        normalized = normalize_amplitude(block[: self.config.n_fft], self.config)
        if normalized is None:
            return np.zeros(self.config.n_bins, dtype=np.float32)
        spec = librosa.stft(
            normalized,
            n_fft=self.config.n_fft,
            hop_length=self.config.n_fft,
            window="hann",
            center=False,
        )
        return np.abs(spec[: self.config.n_bins, 0]).astype(np.float32)
