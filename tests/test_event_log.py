"""Tests for the engine event log."""

import logging

import pytest

from sentinel.logging_utils import EventLog, LogLevel


class TestEventLog:
    """Test EventLog class."""

    @pytest.fixture
    def events(self, tmp_path):
        log = EventLog(max_entries=3, log_dir=str(tmp_path))
        yield log
        log.close()

    def test_levels(self, events):
        events.info("a")
        events.success("b")
        events.warning("c")
        assert [e.level for e in events.entries] == [LogLevel.INFO, LogLevel.SUCCESS, LogLevel.WARNING]

    def test_bounded(self, events):
        for i in range(5):
            events.info(f"message {i}")
        assert [e.message for e in events.entries] == ["message 2", "message 3", "message 4"]

    def test_format(self, events):
        entry = events.error("Saving failed")
        assert entry.format().endswith("ERROR: Saving failed")

    def test_mirrored_to_logging(self, events, caplog):
        with caplog.at_level(logging.INFO, logger="sentinel.logging_utils"):
            events.warning("Knowledge reset")
        assert "Knowledge reset" in caplog.text

    def test_scalars_without_tensorboard(self, events):
        events.log_scalar("train/error", 1.0)
        events.increment_step()
        assert events.step == 1
        assert events.tb_writer is None
