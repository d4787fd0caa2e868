"""Threshold calibration."""

from .threshold import ErrorHistory, ThresholdCalibrator, calculate_robust_threshold

__all__ = ['ErrorHistory', 'ThresholdCalibrator', 'calculate_robust_threshold']
