"""Audio decoding and frame extraction."""

from .audio_io import AudioBuffer, decode, is_audio_file, load_audio, save_audio
from .frames import FrameExtractor, normalize_amplitude, scale_frame, spectral_centroid

__all__ = [
    'AudioBuffer',
    'decode',
    'is_audio_file',
    'load_audio',
    'save_audio',
    'FrameExtractor',
    'normalize_amplitude',
    'scale_frame',
    'spectral_centroid',
]
