"""Tests for segment aggregation."""

import pytest

from sentinel.config import AggregatorConfig
from sentinel.inference import MovingAverage, SegmentAggregator, Severity


class TestMovingAverage:

    def test_trailing_mean(self):
        avg = MovingAverage(3)
        assert avg.push(3.0) == 3.0
        assert avg.push(6.0) == 4.5
        assert avg.push(9.0) == 6.0
        assert avg.push(12.0) == 9.0

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            MovingAverage(0)


class TestSegmentAggregator:
    """Test SegmentAggregator class."""

    @pytest.fixture
    def config(self):
        return AggregatorConfig(merge_gap=0.5)

    def test_merge_and_split(self, config):
        agg = SegmentAggregator(threshold=1.0, config=config)
        for t in (1.0, 1.3, 2.5):
            agg.update(t, 5.0)

        segments = agg.segments
        assert len(segments) == 2
        assert segments[0].offset_seconds == pytest.approx(1.0)
        assert segments[0].end_seconds == pytest.approx(1.3)
        assert segments[1].offset_seconds == pytest.approx(2.5)

    def test_short_segments_dropped(self, config):
        agg = SegmentAggregator(threshold=1.0, config=config)
        for t in (1.0, 1.3, 2.5):
            agg.update(t, 5.0)

        final = agg.finalize()
        assert len(final) == 1
        assert final[0].offset_seconds == pytest.approx(1.0)

    def test_isolated_point_excluded(self):
        agg = SegmentAggregator(threshold=1.0)
        agg.update(0.5, 10.0)
        assert len(agg.segments) == 1
        assert agg.finalize() == []

    def test_below_threshold_no_segment(self):
        agg = SegmentAggregator(threshold=2.0)
        for i in range(50):
            agg.update(i * 0.015, 1.0)
        assert agg.segments == []

    def test_equal_to_threshold_not_flagged(self):
        agg = SegmentAggregator(threshold=2.0)
        for i in range(20):
            agg.update(i * 0.015, 2.0)
        assert agg.segments == []

    def test_single_spike_rejected(self):
        agg = SegmentAggregator(threshold=1.5)
        scores = [1.0] * 9 + [5.0] + [1.0] * 20
        for i, s in enumerate(scores):
            agg.update(i * 0.015, s)
        assert agg.segments == []

    def test_sustained_deviation_detected(self):
        agg = SegmentAggregator(threshold=1.5)
        scores = [1.0] * 20 + [4.0] * 40 + [1.0] * 20
        for i, s in enumerate(scores):
            agg.update(i * 0.015, s)
        final = agg.finalize()
        assert len(final) == 1
        assert final[0].duration_seconds >= 0.2
        assert final[0].intensity == pytest.approx(4.0 / 1.5)

    def test_severity(self):
        high = SegmentAggregator(threshold=1.0)
        medium = SegmentAggregator(threshold=1.0)
        for i in range(30):
            high.update(i * 0.015, 10.0)
            medium.update(i * 0.015, 1.5)
        assert high.finalize()[0].severity is Severity.HIGH
        assert medium.finalize()[0].severity is Severity.MEDIUM

    def test_severity_follows_peak(self):
        agg = SegmentAggregator(threshold=1.0, config=AggregatorConfig(smoothing_window=1))
        for i in range(20):
            agg.update(i * 0.015, 1.5)
        assert agg.segments[0].severity is Severity.MEDIUM
        agg.update(20 * 0.015, 3.0)
        assert agg.segments[0].severity is Severity.HIGH
        assert agg.segments[0].intensity == pytest.approx(3.0)

    def test_same_timestamp_later_point_wins(self):
        agg = SegmentAggregator(threshold=1.0)
        agg.update(1.0, 10.0)
        point = agg.update(1.0, 0.0)
        assert point.smoothed_score == 0.0
        assert len(agg.series) == 1
        assert agg.segments == []

        agg = SegmentAggregator(threshold=1.0)
        agg.update(1.0, 0.0)
        agg.update(1.0, 10.0)
        assert len(agg.segments) == 1
        assert agg.series[-1].score == 10.0

    def test_feature_smoothing(self):
        agg = SegmentAggregator(threshold=1.0, config=AggregatorConfig(feature_window=2))
        agg.update(0.0, 0.0, feature=100.0)
        point = agg.update(0.1, 0.0, feature=300.0)
        assert point.smoothed_feature == pytest.approx(200.0)
        point = agg.update(0.2, 0.0, feature=500.0)
        assert point.smoothed_feature == pytest.approx(400.0)

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            SegmentAggregator(threshold=0.0)

    def test_to_dict(self):
        agg = SegmentAggregator(threshold=1.0)
        for i in range(30):
            agg.update(i * 0.015, 10.0)
        data = agg.finalize()[0].to_dict()
        assert set(data) == {'offsetSeconds', 'durationSeconds', 'intensity', 'severity'}
        assert data['severity'] == 'High'
