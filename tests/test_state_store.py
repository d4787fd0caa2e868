"""Tests for model bundles and the persistent state store."""

import json

import pytest
import torch

from sentinel.config import ModelConfig
from sentinel.engine import StateStore, read_bundle, write_bundle
from sentinel.engine.state_store import ARCHITECTURE_FILE, STATS_FILE, WEIGHTS_FILE, make_stats, validate_stats
from sentinel.exceptions import ModelFormatError, PersistenceError
from sentinel.models import SequenceAutoencoder


@pytest.fixture
def model():
    torch.manual_seed(0)
    return SequenceAutoencoder(ModelConfig())


@pytest.fixture
def stats():
    return make_stats([1.0, 2.5, 3.0], total_processed_files=4, threshold=7.25, sensitivity=6.0)


class TestBundle:
    """Test write_bundle / read_bundle."""

    def test_roundtrip(self, model, stats, tmp_path):
        write_bundle(tmp_path / "bundle", model, stats)
        loaded, loaded_stats = read_bundle(tmp_path / "bundle")

        assert loaded_stats == stats
        assert loaded.config == model.config
        x = torch.rand(2, 12, 128)
        torch.testing.assert_close(model.reconstruction_error(x), loaded.reconstruction_error(x))

    def test_stats_optional(self, model, tmp_path):
        write_bundle(tmp_path / "bundle", model)
        assert not (tmp_path / "bundle" / STATS_FILE).exists()
        _, loaded_stats = read_bundle(tmp_path / "bundle")
        assert loaded_stats is None

    def test_stats_keys(self, stats):
        assert set(stats) == {'errorStats', 'totalProcessedFiles', 'threshold', 'sensitivity'}

    def test_missing_weights(self, model, tmp_path):
        write_bundle(tmp_path / "bundle", model)
        (tmp_path / "bundle" / WEIGHTS_FILE).unlink()
        with pytest.raises(ModelFormatError):
            read_bundle(tmp_path / "bundle")

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ModelFormatError):
            read_bundle(tmp_path / "nothing")

    def test_unknown_format(self, model, tmp_path):
        write_bundle(tmp_path / "bundle", model)
        with open(tmp_path / "bundle" / ARCHITECTURE_FILE, "w") as f:
            json.dump({'format': 'something-else', 'config': {}}, f)
        with pytest.raises(ModelFormatError):
            read_bundle(tmp_path / "bundle")

    def test_model_format_is_persistence_error(self):
        assert issubclass(ModelFormatError, PersistenceError)


class TestStateStore:
    """Test StateStore class."""

    def test_empty(self, tmp_path):
        store = StateStore(tmp_path / "state")
        assert not store.exists()
        assert store.load() is None

    def test_save_load(self, model, stats, tmp_path):
        store = StateStore(tmp_path / "state")
        store.save(model, stats)

        assert store.exists()
        loaded, loaded_stats = store.load()
        assert loaded_stats == stats
        assert loaded.config == model.config

    def test_clear(self, model, stats, tmp_path):
        store = StateStore(tmp_path / "state")
        store.save(model, stats)
        store.clear()
        assert not store.exists()
        assert not store.stats_path.exists()
        assert store.load() is None

    def test_save_failure(self, model, stats, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = StateStore(blocker / "state")
        with pytest.raises(PersistenceError):
            store.save(model, stats)


class TestValidateStats:
    """Test statistics document checks."""

    def test_typed_values(self):
        stats = validate_stats({'errorStats': [1, 2.5], 'totalProcessedFiles': 3.0, 'threshold': 4, 'sensitivity': 6})
        assert stats == {'errorStats': [1.0, 2.5], 'totalProcessedFiles': 3, 'threshold': 4.0, 'sensitivity': 6.0}
        assert isinstance(stats['totalProcessedFiles'], int)

    def test_missing_and_null_fields_dropped(self):
        assert validate_stats({'threshold': None}) == {}

    @pytest.mark.parametrize("data", [
        [1, 2, 3],
        {'totalProcessedFiles': "many"},
        {'totalProcessedFiles': -1},
        {'totalProcessedFiles': 2.5},
        {'totalProcessedFiles': True},
        {'errorStats': "1,2,3"},
        {'errorStats': [1.0, "x"]},
        {'errorStats': [1.0, float('nan')]},
        {'threshold': -3.0},
        {'sensitivity': "high"},
    ])
    def test_invalid(self, data):
        with pytest.raises(ModelFormatError):
            validate_stats(data)

    def test_bundle_with_corrupt_json(self, model, tmp_path):
        write_bundle(tmp_path / "bundle", model)
        (tmp_path / "bundle" / STATS_FILE).write_text("{not json")
        with pytest.raises(ModelFormatError):
            read_bundle(tmp_path / "bundle")

    def test_bundle_with_wrong_types(self, model, tmp_path):
        write_bundle(tmp_path / "bundle", model, {'errorStats': [1.0] * 30, 'totalProcessedFiles': "many"})
        with pytest.raises(ModelFormatError):
            read_bundle(tmp_path / "bundle")

    def test_store_with_corrupt_stats(self, model, stats, tmp_path):
        store = StateStore(tmp_path / "state")
        store.save(model, stats)
        store.stats_path.write_text("[")
        with pytest.raises(PersistenceError):
            store.load()
