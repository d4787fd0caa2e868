"""Shared fixtures: synthetic machine recordings and engine configs."""

import numpy as np
import pytest

from sentinel.config import EngineConfig, TrainConfig
from sentinel.data import AudioBuffer, save_audio

SR = 16000


def make_hum(seconds: float = 2.0, sr: int = SR, seed: int = 0, gain: float = 0.3) -> np.ndarray:
    """Steady machine-like hum: a few harmonics plus a little noise."""
    rng = np.random.default_rng(seed)
    t = np.arange(int(seconds * sr)) / sr
    y = (
        np.sin(2 * np.pi * 120 * t)
        + 0.5 * np.sin(2 * np.pi * 240 * t)
        + 0.25 * np.sin(2 * np.pi * 1000 * t)
    )
    y = y + 0.02 * rng.standard_normal(len(t))
    return (gain * y / np.abs(y).max()).astype(np.float32)


def make_faulty(seconds: float = 3.0, sr: int = SR, start: float = 1.2, length: float = 0.6, seed: int = 1):
    """Hum with a loud broadband burst (e.g. grinding) in the middle."""
    rng = np.random.default_rng(seed)
    y = make_hum(seconds, sr, seed=seed)
    a, b = int(start * sr), int((start + length) * sr)
    y[a:b] += 0.8 * rng.standard_normal(b - a).astype(np.float32)
    return np.clip(y, -1.0, 1.0)


@pytest.fixture
def hum_buffer():
    return AudioBuffer(samples=make_hum(), sample_rate=SR, name="hum.wav")


@pytest.fixture
def normal_buffers():
    return [
        AudioBuffer(samples=make_hum(seed=i), sample_rate=SR, name=f"normal_{i}.wav")
        for i in range(3)
    ]


@pytest.fixture
def wav_files(tmp_path):
    """Normal recordings written to disk as 16-bit WAV files."""
    paths = []
    for i in range(2):
        path = tmp_path / "audio" / f"normal_{i}.wav"
        save_audio(make_hum(seed=i), path, SR)
        paths.append(path)
    return paths


@pytest.fixture
def engine_config(tmp_path):
    config = EngineConfig(
        state_dir=str(tmp_path / "state"),
        log_dir=str(tmp_path / "logs"),
        show_progress=False,
        yield_every=50,
        poll_interval=0.001,
    )
    config.train = TrainConfig(seed=0)
    return config
