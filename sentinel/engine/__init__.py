"""Engine controller, persistence and capture sources."""

from .capture import BufferCapture, CaptureSource, SoundDeviceCapture
from .controller import (
    EngineController,
    EngineState,
    EngineStatus,
    FileAnalysisResult,
    QueueItem,
    TrainingReport,
)
from .state_store import StateStore, read_bundle, write_bundle

__all__ = [
    'BufferCapture',
    'CaptureSource',
    'SoundDeviceCapture',
    'EngineController',
    'EngineState',
    'EngineStatus',
    'FileAnalysisResult',
    'QueueItem',
    'TrainingReport',
    'StateStore',
    'read_bundle',
    'write_bundle',
]
