"""Configuration dataclasses for the anomaly detection engine.

All tunables live here; components receive their own sub-config.
"""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class Label(Enum):
    """Training label attached to a file. Only NORMAL updates weights."""
    NORMAL = "Normal"
    ANOMALY = "Anomaly"

    @classmethod
    def from_name(cls, name: str) -> 'Label':
        """Convert "normal"/"Anomaly"/... to a Label."""
        return cls[name.upper()]


@dataclass
class FrameConfig:
    """Spectral framing and per-bin scaling."""

    n_fft: int = 256
    n_bins: int = 128
    hop_seconds: float = 0.015  # ~15 ms hop
    min_samples: int = 512

    # Amplitude normalization
    silence_rms: float = 1e-4
    target_rms: float = 0.063
    clip_level: float = 0.95
    silence_policy: str = "skip"  # "skip" or "zeros"

    # scale_frame
    boost_slope: float = 1.5
    noise_floor: float = 0.08


@dataclass
class ModelConfig:
    """Static layer configuration for the sequence autoencoder."""

    n_features: int = 128
    window_size: int = 12
    hidden_dim: int = 64
    latent_dim: int = 24

    def __post_init__(self):
        for name in ("n_features", "window_size", "hidden_dim", "latent_dim"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"ModelConfig.{name} must be a positive int, got {value!r}")
        if self.latent_dim > self.hidden_dim:
            raise ValueError(
                f"latent_dim ({self.latent_dim}) must not exceed hidden_dim ({self.hidden_dim})"
            )


@dataclass
class TrainConfig:
    """Incremental training config."""

    learning_rate: float = 1e-3
    batch_size: int = 8
    epochs: int = 1
    train_stride: int = 4
    history_stride: int = 2  # every other window error goes to history
    score_scale: float = 1000.0
    seed: Optional[int] = None


@dataclass
class CalibrationConfig:
    """Robust threshold calibration."""

    history_capacity: int = 1000
    min_scores: int = 10
    min_history: int = 20
    default_threshold: float = 3.5
    threshold_floor: float = 0.5
    baseline_percentile: float = 0.65
    mad_scale: float = 1.4826
    base_multiplier: float = 6.0
    sensitivity_slope: float = 0.4
    default_sensitivity: float = 5.0
    min_sensitivity: float = 1.0
    max_sensitivity: float = 10.0
    local_weight: float = 0.6  # share of the per-file threshold when blending


@dataclass
class AggregatorConfig:
    """Score smoothing and segment merging."""

    smoothing_window: int = 10
    feature_window: int = 5
    merge_gap: float = 0.6
    initial_duration: float = 0.09  # six 15 ms hops
    min_duration: float = 0.2
    high_severity_factor: float = 2.2
    timestamp_resolution: float = 1e-6


@dataclass
class EngineConfig:
    """Top-level engine configuration."""

    frames: FrameConfig = field(default_factory=FrameConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    train: TrainConfig = field(default_factory=TrainConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)

    state_dir: str = "./sentinel_state"
    device: str = "cpu"
    yield_every: int = 600
    poll_interval: float = 0.005
    display_stride: int = 2
    live_history: int = 100
    show_progress: bool = True

    # Logging
    log_dir: str = "./logs"
    use_tensorboard: bool = False
    max_log_entries: int = 50

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        data = dict(data)
        sections = {
            "frames": FrameConfig,
            "model": ModelConfig,
            "train": TrainConfig,
            "calibration": CalibrationConfig,
            "aggregator": AggregatorConfig,
        }
        for key, section_cls in sections.items():
            if key in data and isinstance(data[key], dict):
                data[key] = section_cls(**data[key])
        return cls(**data)

    @classmethod
    def from_file(cls, config_path) -> "EngineConfig":
        """
        Load configuration from a JSON file.

        Args:
            config_path: Path to the configuration file.

        Returns:
            EngineConfig instance with loaded settings.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls.from_dict(data)

    def to_file(self, config_path) -> None:
        """Save configuration to a JSON file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


def get_default_config() -> EngineConfig:
    """Get default engine configuration."""
    return EngineConfig()
