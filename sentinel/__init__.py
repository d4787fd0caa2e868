"""Sentinel - incremental acoustic anomaly detection.

Learns the normal acoustic signature of a monitored source:
- FrameExtractor turns samples into log-compressed spectral frames
- SequenceAutoencoder is trained on normal windows only
- Reconstruction error, calibrated by a robust MAD threshold, flags deviations
- SegmentAggregator groups flagged windows into anomaly segments
"""

from .config import (
    AggregatorConfig,
    CalibrationConfig,
    EngineConfig,
    FrameConfig,
    Label,
    ModelConfig,
    TrainConfig,
)
from .data import AudioBuffer, FrameExtractor, scale_frame
from .calibration import ThresholdCalibrator, calculate_robust_threshold
from .models import SequenceAutoencoder
from .trainers import AnomalyTrainer
from .inference import AnomalySegment, SegmentAggregator, Severity
from .engine import EngineController, EngineState

__all__ = [
    'AggregatorConfig',
    'CalibrationConfig',
    'EngineConfig',
    'FrameConfig',
    'Label',
    'ModelConfig',
    'TrainConfig',
    'AudioBuffer',
    'FrameExtractor',
    'scale_frame',
    'ThresholdCalibrator',
    'calculate_robust_threshold',
    'SequenceAutoencoder',
    'AnomalyTrainer',
    'AnomalySegment',
    'SegmentAggregator',
    'Severity',
    'EngineController',
    'EngineState',
]
