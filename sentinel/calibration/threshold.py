"""Robust threshold calibration from reconstruction-error history.

The threshold is anchored at the 65th percentile of the observed errors and
widened by a MAD-based sigma estimate; sensitivity narrows the margin.
"""

import logging
import math
from collections import deque
from typing import Iterable, List, Optional, Sequence

import numpy as np

from ..config import CalibrationConfig

logger = logging.getLogger(__name__)


def calculate_robust_threshold(
    scores: Sequence[float],
    sensitivity: float,
    config: Optional[CalibrationConfig] = None,
) -> float:
    """Decision threshold for a set of reconstruction scores.

    Args:
        scores: Reconstruction scores observed on normal data
        sensitivity: User sensitivity in [1, 10], higher = lower threshold
        config: Calibration constants

    Returns:
        Threshold, never below the configured floor
    """
    config = config or CalibrationConfig()
    values = np.sort(np.asarray(scores, dtype=np.float64).reshape(-1))
    n = len(values)
    if n < config.min_scores:
        return config.default_threshold

    baseline = values[int(math.floor(n * config.baseline_percentile))]
    mad = np.sort(np.abs(values - baseline))[n // 2]
    sigma = mad * config.mad_scale
    multiplier = config.base_multiplier - sensitivity * config.sensitivity_slope
    return float(max(config.threshold_floor, baseline + multiplier * sigma))


class ErrorHistory:
    """Bounded ring buffer of scores seen on normal training data."""

    def __init__(self, capacity: int = 1000, values: Optional[Iterable[float]] = None):
        self.capacity = capacity
        self._values = deque(maxlen=capacity)
        if values is not None:
            self.extend(values)

    def extend(self, values: Iterable[float]) -> None:
        self._values.extend(float(v) for v in values)

    def clear(self) -> None:
        self._values.clear()

    def snapshot(self) -> List[float]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self):
        return iter(self.snapshot())


class ThresholdCalibrator:
    """Owns ErrorHistory, Sensitivity and the persisted Threshold."""

    def __init__(self, config: Optional[CalibrationConfig] = None):
        self.config = config or CalibrationConfig()
        self.history = ErrorHistory(self.config.history_capacity)
        self.sensitivity = self.config.default_sensitivity
        self.threshold = self.config.default_threshold

    def compute(self, scores: Sequence[float]) -> float:
        return calculate_robust_threshold(scores, self.sensitivity, self.config)

    def recalibrate(self) -> float:
        """Recompute the threshold from the full history once it is large enough."""
        if len(self.history) >= self.config.min_history:
            self.threshold = self.compute(self.history.snapshot())
            logger.debug(f"Threshold recalibrated to {self.threshold:.3f} ({len(self.history)} scores)")
        return self.threshold

    def add_scores(self, scores: Iterable[float]) -> float:
        self.history.extend(scores)
        return self.recalibrate()

    def _check_sensitivity(self, value: float) -> float:
        value = float(value)
        if not self.config.min_sensitivity <= value <= self.config.max_sensitivity:
            raise ValueError(
                f"Sensitivity must be in [{self.config.min_sensitivity}, "
                f"{self.config.max_sensitivity}], got {value}"
            )
        return value

    def set_sensitivity(self, value: float) -> float:
        self.sensitivity = self._check_sensitivity(value)
        return self.recalibrate()

    def local_threshold(self, scores: Sequence[float]) -> float:
        """Threshold from a single file's own score distribution."""
        return self.compute(scores)

    def blend(self, local: float, has_prior_training: bool) -> float:
        """Combine a per-file threshold with the persisted one.

        Without prior training the local threshold is used as is; otherwise a
        fixed weighted average keeps the learned history in play.
        """
        if not has_prior_training:
            return local
        w = self.config.local_weight
        return max(self.config.threshold_floor, w * local + (1.0 - w) * self.threshold)

    def reset(self) -> None:
        self.history.clear()
        self.threshold = self.config.default_threshold

    def state_dict(self) -> dict:
        return {
            'errorStats': self.history.snapshot(),
            'threshold': self.threshold,
            'sensitivity': self.sensitivity,
        }

    def load_state_dict(self, state: dict) -> None:
        """Replace history, threshold and sensitivity; nothing changes if a value is invalid."""
        history = ErrorHistory(self.config.history_capacity, state.get('errorStats') or [])
        threshold = float(state.get('threshold') or self.config.default_threshold)
        sensitivity = self._check_sensitivity(state.get('sensitivity') or self.config.default_sensitivity)
        if not math.isfinite(threshold) or threshold <= 0:
            raise ValueError(f"Threshold must be positive, got {threshold}")

        self.history = history
        self.threshold = threshold
        self.sensitivity = sensitivity
