"""Trainers for the anomaly detector."""

from .anomaly_trainer import AnomalyTrainer, TrainResult, build_windows

__all__ = ['AnomalyTrainer', 'TrainResult', 'build_windows']
