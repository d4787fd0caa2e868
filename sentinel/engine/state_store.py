"""Model state persistence: export/import bundles and the persistent store.

Bundle layout (one directory):
    model.json    architecture descriptor (ModelConfig fields)
    weights.pt    state dict of the autoencoder
    stats.json    {errorStats, totalProcessedFiles, threshold, sensitivity} (optional)

The persistent store keeps the statistics document under a fixed key and the
model under a separate key; both are written together.
"""

import json
import logging
import math
import os
import shutil
from pathlib import Path
from typing import Optional, Tuple, Union

import torch

from ..config import ModelConfig
from ..exceptions import ModelFormatError, PersistenceError
from ..models import SequenceAutoencoder

logger = logging.getLogger(__name__)

MODEL_FORMAT = "sentinel-sequence-autoencoder"
MODEL_FORMAT_VERSION = 1

ARCHITECTURE_FILE = "model.json"
WEIGHTS_FILE = "weights.pt"
STATS_FILE = "stats.json"

STATS_KEY = "sentinel_stats"
MODEL_KEY = "sentinel-model-v1"


def _atomic_write_json(path: Path, data: dict) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, path)


def _atomic_torch_save(path: Path, obj) -> None:
    tmp = path.with_name(path.name + ".tmp")
    torch.save(obj, tmp)
    os.replace(tmp, path)


def make_stats(error_stats, total_processed_files: int, threshold: float, sensitivity: float) -> dict:
    """Build the side-car statistics document."""
    return {
        'errorStats': [float(v) for v in error_stats],
        'totalProcessedFiles': int(total_processed_files),
        'threshold': float(threshold),
        'sensitivity': float(sensitivity),
    }


def write_bundle(
    directory: Union[str, Path],
    model: SequenceAutoencoder,
    stats: Optional[dict] = None,
) -> Path:
    """Write architecture, weights and (optionally) statistics to a directory."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    architecture = {
        'format': MODEL_FORMAT,
        'version': MODEL_FORMAT_VERSION,
        'config': dict(model.config.__dict__),
    }
    state_dict = {k: v.detach().cpu() for k, v in model.state_dict().items()}
    _atomic_torch_save(directory / WEIGHTS_FILE, state_dict)
    _atomic_write_json(directory / ARCHITECTURE_FILE, architecture)
    if stats is not None:
        _atomic_write_json(directory / STATS_FILE, stats)
    return directory


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_stats(data) -> dict:
    """Check a statistics document and return it with typed values.

    Absent or null fields are left out so callers fall back to defaults.

    Raises:
        ModelFormatError: a present field has the wrong type or range
    """
    if not isinstance(data, dict):
        raise ModelFormatError(f"Statistics must be a JSON object, got {type(data).__name__}")

    stats = {}
    history = data.get('errorStats')
    if history is not None:
        if not isinstance(history, list) or not all(_is_number(v) for v in history):
            raise ModelFormatError("errorStats must be a list of finite numbers")
        stats['errorStats'] = [float(v) for v in history]

    count = data.get('totalProcessedFiles')
    if count is not None:
        if not _is_number(count) or count < 0 or int(count) != count:
            raise ModelFormatError(f"totalProcessedFiles must be a non-negative integer, got {count!r}")
        stats['totalProcessedFiles'] = int(count)

    for key in ('threshold', 'sensitivity'):
        value = data.get(key)
        if value is not None:
            if not _is_number(value) or value <= 0:
                raise ModelFormatError(f"{key} must be a positive number, got {value!r}")
            stats[key] = float(value)
    return stats


def read_stats(path: Union[str, Path]) -> Optional[dict]:
    """Read and validate a statistics document, or None if it does not exist.

    Raises:
        ModelFormatError: unreadable JSON or invalid field values
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ModelFormatError(f"Cannot read statistics from {path}: {e}") from e
    return validate_stats(data)


def read_bundle(directory: Union[str, Path]) -> Tuple[SequenceAutoencoder, Optional[dict]]:
    """Load a model bundle.

    Raises:
        ModelFormatError: architecture or weights missing or unreadable, or
            an invalid statistics document
    """
    directory = Path(directory)
    arch_path = directory / ARCHITECTURE_FILE
    weights_path = directory / WEIGHTS_FILE
    if not arch_path.exists() or not weights_path.exists():
        raise ModelFormatError(
            f"Model bundle in {directory} needs both {ARCHITECTURE_FILE} and {WEIGHTS_FILE}"
        )

    try:
        with open(arch_path, "r") as f:
            architecture = json.load(f)
        if architecture.get('format') != MODEL_FORMAT:
            raise ModelFormatError(f"Unknown model format: {architecture.get('format')!r}")
        config = ModelConfig(**architecture['config'])
        model = SequenceAutoencoder(config)
        state_dict = torch.load(weights_path, map_location='cpu')
        model.load_state_dict(state_dict)
    except ModelFormatError:
        raise
    except (OSError, ValueError, KeyError, TypeError, RuntimeError) as e:
        raise ModelFormatError(f"Cannot load model bundle from {directory}: {e}") from e

    return model, read_stats(directory / STATS_FILE)


class StateStore:
    """Keyed on-disk store for the engine's ModelState."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    @property
    def stats_path(self) -> Path:
        return self.root / f"{STATS_KEY}.json"

    @property
    def model_dir(self) -> Path:
        return self.root / MODEL_KEY

    def exists(self) -> bool:
        return (self.model_dir / ARCHITECTURE_FILE).exists()

    def save(self, model: SequenceAutoencoder, stats: dict) -> None:
        """Write model and statistics together."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            write_bundle(self.model_dir, model)
            _atomic_write_json(self.stats_path, stats)
        except OSError as e:
            raise PersistenceError(f"Failed to save model state to {self.root}: {e}") from e

    def load(self) -> Optional[Tuple[SequenceAutoencoder, Optional[dict]]]:
        """Load model and statistics, or None if nothing is stored."""
        if not self.exists():
            return None
        model, _ = read_bundle(self.model_dir)
        return model, read_stats(self.stats_path)

    def clear(self) -> None:
        """Remove the stored model and statistics."""
        if self.stats_path.exists():
            self.stats_path.unlink()
        if self.model_dir.exists():
            shutil.rmtree(self.model_dir)
