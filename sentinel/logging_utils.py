"""Engine event log with optional TensorBoard scalars.

Every entry carries a severity tag (info/success/warning/error) so callers
can display it; entries are mirrored to the standard logging module.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    time: datetime
    message: str
    level: LogLevel

    def format(self) -> str:
        return f"[{self.time.strftime('%M:%S')}] {self.level.value.upper()}: {self.message}"


class EventLog:
    """Bounded list of discrete engine events."""

    def __init__(
        self,
        max_entries: int = 50,
        log_dir: str = "./logs",
        use_tensorboard: bool = False,
        experiment_name: str = "sentinel",
    ):
        """Initialize event log.

        Args:
            max_entries: Number of recent entries kept for display
            log_dir: Directory for TensorBoard runs
            use_tensorboard: Whether to write scalar metrics to TensorBoard
            experiment_name: Name of the TensorBoard run
        """
        self._entries = deque(maxlen=max_entries)
        self.step = 0

        self.tb_writer = None
        if use_tensorboard:
            from torch.utils.tensorboard import SummaryWriter

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            run_dir = Path(log_dir) / f"{experiment_name}_{timestamp}"
            run_dir.mkdir(parents=True, exist_ok=True)
            self.tb_writer = SummaryWriter(log_dir=str(run_dir / "tensorboard"))
            logger.info(f"TensorBoard logging to {run_dir / 'tensorboard'}")

    def add(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        entry = LogEntry(time=datetime.now(), message=message, level=level)
        self._entries.append(entry)
        logger.log(_PY_LEVELS[level], message)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.INFO)

    def success(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.add(message, LogLevel.ERROR)

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def log_scalar(self, tag: str, value: float, step: Optional[int] = None) -> None:
        """Log a scalar value (no-op without TensorBoard)."""
        if step is None:
            step = self.step
        if self.tb_writer:
            self.tb_writer.add_scalar(tag, value, step)

    def increment_step(self) -> None:
        self.step += 1

    def close(self) -> None:
        if self.tb_writer:
            self.tb_writer.close()
            self.tb_writer = None
