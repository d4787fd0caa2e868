"""Live capture sources for monitoring sessions.

A capture source yields raw magnitude vectors (one per poll) and owns the
underlying device handle, which is released by close().
"""

import logging
from typing import Optional

import numpy as np

from ..data.audio_io import AudioBuffer
from ..data.frames import FrameExtractor

logger = logging.getLogger(__name__)


class CaptureSource:
    """Base class for frame sources polled by the monitoring loop."""

    sample_rate: int = 44100
    frame_duration: float = 256 / 44100

    def open(self) -> None:
        pass

    def read_frame(self) -> Optional[np.ndarray]:
        """Next raw magnitude vector, or None if nothing is available yet."""
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class BufferCapture(CaptureSource):
    """Replays a decoded buffer frame by frame (headless monitoring)."""

    def __init__(self, buffer: AudioBuffer, extractor: Optional[FrameExtractor] = None):
        self.extractor = extractor or FrameExtractor()
        self.sample_rate = buffer.sample_rate
        self.frame_duration = self.extractor.frame_duration(buffer.sample_rate)
        self._frames = self.extractor.raw_spectrogram(buffer.samples, buffer.sample_rate)
        self._pos = 0
        self.closed = False

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._frames)

    def read_frame(self) -> Optional[np.ndarray]:
        if self.closed or self.exhausted:
            return None
        frame = self._frames[self._pos]
        self._pos += 1
        return frame

    def close(self) -> None:
        self.closed = True


class SoundDeviceCapture(CaptureSource):
    """Microphone capture through sounddevice, one n_fft-sample block per frame."""

    def __init__(
        self,
        device: Optional[int] = None,
        sample_rate: int = 44100,
        extractor: Optional[FrameExtractor] = None,
    ):
        self.device = device
        self.sample_rate = sample_rate
        self.extractor = extractor or FrameExtractor()
        self.block_size = self.extractor.config.n_fft
        self.frame_duration = self.block_size / sample_rate
        self._stream = None

    def open(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd

        self._stream = sd.InputStream(
            device=self.device,
            samplerate=self.sample_rate,
            channels=1,
            blocksize=self.block_size,
            dtype='float32',
        )
        self._stream.start()
        logger.info(f"Capture started (device={self.device}, sr={self.sample_rate})")

    def read_frame(self) -> Optional[np.ndarray]:
        if self._stream is None:
            self.open()
        data, overflowed = self._stream.read(self.block_size)
        if overflowed:
            logger.debug("Input overflow, capture block dropped samples")
        return self.extractor.frame_from_block(data[:, 0])

    def close(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
        finally:
            self._stream.close()
            self._stream = None
            logger.info("Capture stopped")
