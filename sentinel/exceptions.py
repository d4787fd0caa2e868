"""Exception hierarchy for the anomaly detection engine."""


class SentinelError(Exception):
    """Base class for all engine errors."""


class InputError(SentinelError):
    """Input audio cannot be processed. The operation is aborted."""


class InputTooShortError(InputError):
    def __init__(self, n_samples: int, min_samples: int):
        super().__init__(f"Audio too short: {n_samples} samples (need at least {min_samples})")
        self.n_samples = n_samples
        self.min_samples = min_samples


class InsufficientFramesError(InputError):
    def __init__(self, n_frames: int, window_size: int):
        super().__init__(
            f"Insufficient frames for one analysis window: {n_frames} < {window_size}"
        )
        self.n_frames = n_frames
        self.window_size = window_size


class DecodeError(InputError):
    """Source could not be decoded (unsupported or corrupt)."""


class EngineBusyError(SentinelError):
    """A session was requested while another one is active."""


class PersistenceError(SentinelError):
    """Saving or loading model state failed."""


class ModelFormatError(PersistenceError):
    """A model bundle is missing files or has an incompatible architecture."""
