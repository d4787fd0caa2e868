"""Audio decoding collaborator.

The engine itself only consumes decoded sample arrays; this module is the
default decoder used by the controller and the CLI.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import librosa
import numpy as np
import soundfile as sf

from ..exceptions import DecodeError

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {".wav", ".flac", ".ogg", ".mp3", ".m4a", ".aac", ".aiff", ".aif", ".opus"}


@dataclass
class AudioBuffer:
    """Decoded mono audio."""
    samples: np.ndarray
    sample_rate: int
    name: str = "<buffer>"

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


AudioSource = Union[str, Path, AudioBuffer]


def is_audio_file(path: Union[str, Path]) -> bool:
    """Whether a path looks like an audio file."""
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def load_audio(
    filepath: Union[str, Path],
    sr: Optional[int] = None,
    mono: bool = True,
) -> Tuple[np.ndarray, int]:
    """Load an audio file.

    Args:
        filepath: Path to audio file
        sr: Target sample rate (None keeps the native rate)
        mono: Convert to mono if True

    Returns:
        Tuple of (audio array, sample rate)
    """
    try:
        y, sr_loaded = librosa.load(str(filepath), sr=sr, mono=mono)
    except Exception as e:
        logger.error(f"Failed to load audio from {filepath}: {e}")
        raise DecodeError(f"Cannot decode {filepath}: {e}") from e
    logger.debug(f"Loaded audio from {filepath}: shape={y.shape}, sr={sr_loaded}")
    return y, int(sr_loaded)


def save_audio(audio: np.ndarray, filepath: Union[str, Path], sr: int, subtype: str = "PCM_16") -> None:
    """Save audio to a file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(filepath), audio, sr, subtype=subtype)


def decode(source: AudioSource) -> AudioBuffer:
    """Resolve a path or an already-decoded buffer into an AudioBuffer."""
    if isinstance(source, AudioBuffer):
        return source
    samples, sample_rate = load_audio(source)
    return AudioBuffer(samples=samples, sample_rate=sample_rate, name=Path(source).name)
