"""Segment aggregation - turn a per-window score stream into anomaly events.

Scores are smoothed with a trailing moving average so single-frame spikes
from transient noise are rejected while sustained deviations survive.
Threshold-exceeding points close to each other merge into one segment;
segments shorter than the minimum duration are dropped at the end.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional

from ..config import AggregatorConfig

logger = logging.getLogger(__name__)


class Severity(Enum):
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class AnomalySegment:
    """One reported anomaly event."""
    offset_seconds: float
    duration_seconds: float
    intensity: float  # peak smoothed score / threshold
    severity: Severity
    peak_score: float

    @property
    def end_seconds(self) -> float:
        return self.offset_seconds + self.duration_seconds

    def to_dict(self) -> dict:
        return {
            'offsetSeconds': self.offset_seconds,
            'durationSeconds': self.duration_seconds,
            'intensity': self.intensity,
            'severity': self.severity.value,
        }


@dataclass(frozen=True)
class ScorePoint:
    """One entry of the score stream."""
    timestamp: float
    score: float
    smoothed_score: float
    feature: float = 0.0
    smoothed_feature: float = 0.0


class MovingAverage:
    """Trailing arithmetic mean over a fixed number of points."""

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"Window size must be >= 1, got {size}")
        self._buffer = deque(maxlen=size)

    def push(self, value: float) -> float:
        self._buffer.append(float(value))
        return self.mean

    @property
    def mean(self) -> float:
        if not self._buffer:
            return 0.0
        return sum(self._buffer) / len(self._buffer)

    def snapshot(self) -> List[float]:
        return list(self._buffer)

    def restore(self, values: List[float]) -> None:
        self._buffer.clear()
        self._buffer.extend(values)

    def __len__(self) -> int:
        return len(self._buffer)


class SegmentAggregator:
    """Smooths scores and groups threshold-exceeding points into segments."""

    def __init__(self, threshold: float, config: Optional[AggregatorConfig] = None):
        if threshold <= 0:
            raise ValueError(f"Threshold must be positive, got {threshold}")
        self.threshold = float(threshold)
        self.config = config or AggregatorConfig()

        self._scores = MovingAverage(self.config.smoothing_window)
        self._features = MovingAverage(self.config.feature_window)
        self._segments: List[AnomalySegment] = []
        self.series: List[ScorePoint] = []

        self._last_bucket: Optional[int] = None
        self._undo = None

    @property
    def segments(self) -> List[AnomalySegment]:
        """Segments seen so far, before the minimum-duration filter."""
        return list(self._segments)

    def _bucket(self, timestamp: float) -> int:
        return int(round(timestamp / self.config.timestamp_resolution))

    def _severity(self, peak_score: float) -> Severity:
        if peak_score > self.threshold * self.config.high_severity_factor:
            return Severity.HIGH
        return Severity.MEDIUM

    def update(self, timestamp: float, score: float, feature: float = 0.0) -> ScorePoint:
        """Feed one point of the stream; returns its smoothed values."""
        bucket = self._bucket(timestamp)
        if bucket == self._last_bucket and self._undo is not None:
            # Same bucket as the previous point: the later point replaces it
            scores, features, segments = self._undo
            self._scores.restore(scores)
            self._features.restore(features)
            self._segments = segments
            self.series.pop()
        self._undo = (self._scores.snapshot(), self._features.snapshot(), list(self._segments))
        self._last_bucket = bucket

        smoothed = self._scores.push(score)
        smoothed_feature = self._features.push(feature)
        if smoothed > self.threshold:
            self._mark(timestamp, smoothed)

        point = ScorePoint(
            timestamp=timestamp,
            score=float(score),
            smoothed_score=smoothed,
            feature=float(feature),
            smoothed_feature=smoothed_feature,
        )
        self.series.append(point)
        return point

    def _mark(self, timestamp: float, smoothed: float) -> None:
        intensity = smoothed / self.threshold
        last = self._segments[-1] if self._segments else None

        if last is None or timestamp - last.end_seconds > self.config.merge_gap:
            self._segments.append(AnomalySegment(
                offset_seconds=timestamp,
                duration_seconds=self.config.initial_duration,
                intensity=intensity,
                severity=self._severity(smoothed),
                peak_score=smoothed,
            ))
            return

        peak = max(last.peak_score, smoothed)
        self._segments[-1] = replace(
            last,
            duration_seconds=max(last.duration_seconds, timestamp - last.offset_seconds),
            intensity=max(last.intensity, intensity),
            severity=self._severity(peak),
            peak_score=peak,
        )

    def finalize(self) -> List[AnomalySegment]:
        """Segments that last at least the minimum duration."""
        kept = [s for s in self._segments if s.duration_seconds >= self.config.min_duration]
        dropped = len(self._segments) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} segments shorter than {self.config.min_duration}s")
        return kept
