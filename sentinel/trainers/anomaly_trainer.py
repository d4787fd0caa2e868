"""Incremental trainer for the sequence autoencoder.

Key rule: weights are only ever fitted on NORMAL audio. Anomaly-labeled
files are scored but never shape the learned baseline, so deviation from
normal is exactly what raises reconstruction error.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import torch
import torch.nn.functional as F
from torch.utils.data import DataLoader, TensorDataset

from ..calibration import ThresholdCalibrator
from ..config import Label, ModelConfig, TrainConfig
from ..models import SequenceAutoencoder

logger = logging.getLogger(__name__)

FRAME_SCALE = 255.0


def set_seed(seed: int) -> None:
    """Set random seed for reproducibility."""
    np.random.seed(seed)
    torch.manual_seed(seed)


def build_windows(frames: np.ndarray, window_size: int, stride: int = 1) -> np.ndarray:
    """Stack overlapping windows of frames.

    Args:
        frames: (T, F) frame matrix
        window_size: Frames per window
        stride: Step between window starts

    Returns:
        (N, window_size, F) array, N = 0 when T < window_size
    """
    frames = np.asarray(frames, dtype=np.float32)
    n_features = frames.shape[-1] if frames.ndim == 2 else 0
    if frames.ndim != 2 or len(frames) < window_size:
        return np.zeros((0, window_size, n_features), dtype=np.float32)
    starts = range(0, len(frames) - window_size + 1, stride)
    return np.stack([frames[s:s + window_size] for s in starts])


@dataclass
class TrainResult:
    """Outcome of training on one file."""
    error: float
    n_windows: int
    label: Label
    fitted: bool


class AnomalyTrainer:
    """Owns the autoencoder and its optimizer; trains and scores windows."""

    def __init__(
        self,
        model_config: Optional[ModelConfig] = None,
        train_config: Optional[TrainConfig] = None,
        calibrator: Optional[ThresholdCalibrator] = None,
        device: str = 'cpu',
    ):
        self.model_config = model_config or ModelConfig()
        self.config = train_config or TrainConfig()
        self.calibrator = calibrator or ThresholdCalibrator()
        self.device = torch.device(device)

        self.model: Optional[SequenceAutoencoder] = None
        self.optimizer: Optional[torch.optim.Optimizer] = None
        self.total_processed_files = 0

    @property
    def window_size(self) -> int:
        return self.model_config.window_size

    @property
    def is_initialized(self) -> bool:
        return self.model is not None

    def initialize(self) -> None:
        """Create a fresh, randomly initialized model."""
        if self.config.seed is not None:
            set_seed(self.config.seed)
        self.set_model(SequenceAutoencoder(self.model_config))
        n_params = sum(p.numel() for p in self.model.parameters())
        logger.info(f"Initialized new autoencoder ({n_params:,} parameters)")

    def set_model(self, model: SequenceAutoencoder) -> None:
        """Install a model (fresh or loaded) and a new optimizer for it."""
        self.model_config = model.config
        self.model = model.to(self.device).eval()
        self.optimizer = torch.optim.Adam(self.model.parameters(), lr=self.config.learning_rate)

    def reset(self) -> None:
        """Forget everything: new model, empty history, zero counter."""
        self.total_processed_files = 0
        self.calibrator.reset()
        self.initialize()

    def _to_tensor(self, windows: np.ndarray) -> torch.Tensor:
        return torch.from_numpy(np.asarray(windows, dtype=np.float32) / FRAME_SCALE).to(self.device)

    def _fit(self, x: torch.Tensor) -> float:
        loader = DataLoader(
            TensorDataset(x),
            batch_size=self.config.batch_size,
            shuffle=True,
        )
        self.model.train()
        total_loss = 0.0
        n_batches = 0
        try:
            for _ in range(self.config.epochs):
                for (batch,) in loader:
                    self.optimizer.zero_grad()
                    out = self.model(batch)
                    loss = F.mse_loss(out['reconstruction'], batch)
                    loss.backward()
                    self.optimizer.step()
                    total_loss += loss.item()
                    n_batches += 1
        finally:
            self.model.eval()
        return total_loss / max(1, n_batches)

    def _window_errors(self, x: torch.Tensor) -> np.ndarray:
        errors = self.model.reconstruction_error(x)
        return errors.cpu().numpy().astype(np.float64) * self.config.score_scale

    def train(self, frames: np.ndarray, label: Label) -> TrainResult:
        """Train on (or, for ANOMALY, just score) one file's frames.

        Returns the batch-average scaled reconstruction error.
        """
        windows = build_windows(frames, self.window_size, self.config.train_stride)
        if len(windows) == 0 or self.model is None:
            return TrainResult(error=0.0, n_windows=0, label=label, fitted=False)

        x = self._to_tensor(windows)
        fitted = label is Label.NORMAL
        if fitted:
            loss = self._fit(x)
            logger.debug(f"Fitted {len(windows)} windows, loss={loss:.6f}")

        errors = self._window_errors(x)
        avg_error = float(errors.mean())

        if fitted:
            self.total_processed_files += 1
            self.calibrator.add_scores(errors[::self.config.history_stride])

        return TrainResult(error=avg_error, n_windows=len(windows), label=label, fitted=fitted)

    def predict(self, sequence: np.ndarray) -> float:
        """Scaled reconstruction error of exactly one (W, F) sequence."""
        if self.model is None:
            return 0.0
        sequence = np.asarray(sequence, dtype=np.float32)
        expected = (self.window_size, self.model_config.n_features)
        if sequence.shape != expected:
            raise ValueError(f"Sequence must have shape {expected}, got {sequence.shape}")
        return float(self._window_errors(self._to_tensor(sequence[np.newaxis]))[0])

    def predict_batch(self, windows: np.ndarray) -> np.ndarray:
        """Scaled reconstruction errors of an (N, W, F) stack, no side effects."""
        windows = np.asarray(windows, dtype=np.float32)
        if self.model is None or len(windows) == 0:
            return np.zeros(len(windows), dtype=np.float64)
        return self._window_errors(self._to_tensor(windows))
