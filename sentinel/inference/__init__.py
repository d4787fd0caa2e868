"""Score aggregation."""

from .aggregator import AnomalySegment, MovingAverage, ScorePoint, SegmentAggregator, Severity

__all__ = ['AnomalySegment', 'MovingAverage', 'ScorePoint', 'SegmentAggregator', 'Severity']
