"""Engine controller - owns ModelState and runs one session at a time.

States:
    IDLE -> TRAINING -> IDLE          (automatic on completion or error)
    IDLE -> FILE_ANALYSIS -> IDLE     (automatic on completion or error)
    IDLE -> MONITORING -> IDLE        (only via stop_monitoring)

Only the controller mutates weights, error history, threshold, sensitivity
and the trained-file counter; the state machine guarantees a single active
session, so scoring never races a weight update.
"""

import copy
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import numpy as np
from tqdm import tqdm

from ..calibration import ThresholdCalibrator
from ..config import EngineConfig, Label
from ..data.audio_io import AudioBuffer, AudioSource, decode, is_audio_file
from ..data.frames import FrameExtractor, scale_frame, spectral_centroid
from ..exceptions import EngineBusyError, InputError, ModelFormatError, PersistenceError, SentinelError
from ..inference import AnomalySegment, ScorePoint, SegmentAggregator
from ..logging_utils import EventLog
from ..trainers import AnomalyTrainer, TrainResult, build_windows
from .capture import CaptureSource
from .state_store import StateStore, make_stats, read_bundle, write_bundle

logger = logging.getLogger(__name__)


class EngineState(Enum):
    IDLE = "IDLE"
    TRAINING = "TRAINING"
    MONITORING = "MONITORING"
    FILE_ANALYSIS = "FILE_ANALYSIS"


@dataclass
class QueueItem:
    source: AudioSource
    label: Label
    status: str = "pending"

    @property
    def name(self) -> str:
        if isinstance(self.source, AudioBuffer):
            return self.source.name
        return Path(self.source).name


@dataclass
class TrainingReport:
    results: List[tuple] = field(default_factory=list)  # (name, TrainResult)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def n_trained(self) -> int:
        return sum(1 for _, r in self.results if r.fitted)


@dataclass
class FileAnalysisResult:
    name: str
    threshold: float
    local_threshold: float
    global_threshold: float
    segments: List[AnomalySegment]
    series: List[ScorePoint]  # display series (every n-th point)
    scores: np.ndarray  # raw pass-1 scores, one per window
    frame_duration: float
    duration: float


@dataclass
class EngineStatus:
    state: EngineState
    trained_files: int
    durable_trained_files: int
    threshold: float
    sensitivity: float
    history_size: int
    model_loaded: bool
    device: str
    queue_size: int


class EngineController:
    """Coordinates training, file analysis and live monitoring sessions."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[StateStore] = None,
        events: Optional[EventLog] = None,
        decoder: Callable[[AudioSource], AudioBuffer] = decode,
        checkpoint: Optional[Callable[[], None]] = None,
        persist: bool = True,
    ):
        self.config = config or EngineConfig()
        self.extractor = FrameExtractor(self.config.frames, self.config.model.window_size)
        self.calibrator = ThresholdCalibrator(self.config.calibration)
        self.trainer = AnomalyTrainer(
            self.config.model,
            self.config.train,
            self.calibrator,
            device=self.config.device,
        )
        self.store = (store or StateStore(self.config.state_dir)) if persist else None
        self.events = events or EventLog(
            max_entries=self.config.max_log_entries,
            log_dir=self.config.log_dir,
            use_tensorboard=self.config.use_tensorboard,
        )
        self._decode = decoder
        self._checkpoint = checkpoint or (lambda: time.sleep(0))

        self._state = EngineState.IDLE
        self._lock = threading.Lock()
        self._queue: List[QueueItem] = []

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sentinel-persist")
        self._pending_save: Optional[Future] = None
        self.durable_trained_files = 0

        self._stop = threading.Event()
        self._monitor_thread: Optional[threading.Thread] = None
        self.monitor_error: Optional[BaseException] = None
        self.monitor_aggregator: Optional[SegmentAggregator] = None
        self.monitor_segments: List[AnomalySegment] = []
        self.live_series = deque(maxlen=self.config.live_history)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    def _enter(self, state: EngineState) -> None:
        with self._lock:
            if self._state is not EngineState.IDLE:
                raise EngineBusyError(f"Cannot start {state.value}: engine is {self._state.value}")
            self._state = state
        logger.debug(f"Engine state -> {state.value}")

    def _leave(self) -> None:
        with self._lock:
            self._state = EngineState.IDLE
        logger.debug("Engine state -> IDLE")

    @contextmanager
    def _session(self, state: EngineState):
        self._enter(state)
        try:
            yield
        finally:
            self._leave()

    @contextmanager
    def _exclusive(self, action: str):
        """Hold the state lock for a short IDLE-only mutation so no session can start meanwhile."""
        with self._lock:
            if self._state is not EngineState.IDLE:
                raise EngineBusyError(f"Cannot {action}: engine is {self._state.value}")
            yield

    # ------------------------------------------------------------------
    # Lifecycle and persistence
    # ------------------------------------------------------------------

    def load_or_initialize(self) -> bool:
        """Load persisted ModelState, or create a fresh one.

        Returns:
            True if state was loaded from the store
        """
        with self._exclusive("load state"):
            loaded = False
            if self.store is not None:
                try:
                    stored = self.store.load()
                    if stored is not None:
                        self._commit(*stored)
                        loaded = True
                except PersistenceError as e:
                    self.events.warning(f"Stored model unusable, starting fresh ({e})")

            if not loaded:
                self.trainer.initialize()
                self.events.info("No stored model, initialized a new one")
                return False
            self.durable_trained_files = self.trainer.total_processed_files

        self.events.success(
            f"Model loaded ({self.trainer.total_processed_files} files, "
            f"threshold {self.calibrator.threshold:.2f})"
        )
        return True

    def _install_model(self, model) -> None:
        self.trainer.set_model(model)
        self.extractor.window_size = model.config.window_size

    def _commit(self, model, stats: Optional[dict]) -> None:
        """Install a loaded model and its statistics as one unit.

        Statistics are checked before anything is replaced; without them the
        prior history, threshold, sensitivity and counter are kept.
        """
        if stats is not None:
            try:
                count = int(stats.get('totalProcessedFiles') or 0)
                self.calibrator.load_state_dict(stats)
            except (TypeError, ValueError) as e:
                raise ModelFormatError(f"Invalid statistics: {e}") from e
            self.trainer.total_processed_files = count
        self._install_model(model)

    def stats(self) -> dict:
        """Current statistics document."""
        return make_stats(
            self.calibrator.history.snapshot(),
            self.trainer.total_processed_files,
            self.calibrator.threshold,
            self.calibrator.sensitivity,
        )

    def persist(self) -> Optional[Future]:
        """Schedule an asynchronous save of the current ModelState."""
        if self.store is None or not self.trainer.is_initialized:
            return None
        model = copy.deepcopy(self.trainer.model).cpu()
        stats = self.stats()
        future = self._executor.submit(self._save, model, stats)
        self._pending_save = future
        return future

    def _save(self, model, stats: dict) -> None:
        # Runs on the persistence worker; the durable counter only moves on success
        try:
            self.store.save(model, stats)
        except PersistenceError as e:
            self.events.error(f"Saving model state failed: {e}")
            raise
        except Exception as e:
            self.events.error(f"Saving model state failed unexpectedly: {e!r}")
            raise
        self.durable_trained_files = stats['totalProcessedFiles']

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for pending saves. Returns False if the last save failed."""
        future = self._pending_save
        if future is None:
            return True
        wait([future], timeout=timeout)
        return future.done() and future.exception() is None

    def close(self) -> None:
        if self._state is EngineState.MONITORING:
            self.stop_monitoring()
        self.flush()
        self._executor.shutdown(wait=True)
        self.events.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Knowledge management
    # ------------------------------------------------------------------

    def set_sensitivity(self, value: float) -> float:
        """Change sensitivity and recompute the threshold from stored history."""
        with self._lock:
            if self._state in (EngineState.TRAINING, EngineState.FILE_ANALYSIS):
                raise EngineBusyError(f"Cannot change sensitivity: engine is {self._state.value}")
            threshold = self.calibrator.set_sensitivity(value)
        self.events.info(f"Sensitivity {value:g} -> threshold {threshold:.2f}")
        self.persist()
        return threshold

    def reset(self) -> None:
        """Forget all learned knowledge."""
        with self._exclusive("reset"):
            self.flush()
            self.trainer.reset()
            self.durable_trained_files = 0
            if self.store is not None:
                try:
                    self.store.clear()
                except OSError as e:
                    self.events.error(f"Could not clear stored state: {e}")
        self.events.warning("Knowledge reset")
        self.persist()

    def export_model(self, directory: Union[str, Path]) -> Path:
        """Write architecture, weights and statistics to a directory."""
        if not self.trainer.is_initialized:
            raise SentinelError("No model to export")
        path = write_bundle(directory, self.trainer.model, self.stats())
        self.events.success(f"Model exported to {path}")
        return path

    def import_model(self, directory: Union[str, Path]) -> None:
        """Replace ModelState with a bundle; statistics are optional."""
        with self._exclusive("import a model"):
            try:
                self._commit(*read_bundle(directory))
            except PersistenceError as e:
                self.events.error(f"Import failed: {e}")
                raise
        self.events.success(f"Model imported from {directory}")
        self.persist()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    @property
    def queue(self) -> List[QueueItem]:
        return list(self._queue)

    def add_to_queue(self, sources: Iterable[AudioSource], label: Label) -> int:
        """Queue files for training. Non-audio paths are ignored."""
        items = [
            QueueItem(source=s, label=label)
            for s in sources
            if isinstance(s, AudioBuffer) or is_audio_file(s)
        ]
        self._queue.extend(items)
        self.events.info(f"Queued {len(items)} files ({label.value})")
        return len(items)

    def run_training(self) -> TrainingReport:
        """Train on every queued item; failures are logged and skipped."""
        report = TrainingReport()
        if not self._queue:
            return report
        with self._session(EngineState.TRAINING):
            if not self.trainer.is_initialized:
                self.trainer.initialize()
            items = list(self._queue)
            for item in tqdm(items, desc="Training", disable=not self.config.show_progress):
                result = self._train_item(item, report)
                if result is not None and result.fitted:
                    self.persist()
                self._checkpoint()
            self._queue.clear()

        self.events.success(
            f"Training finished: {report.n_trained} trained, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped (threshold {self.calibrator.threshold:.2f})"
        )
        return report

    def _train_item(self, item: QueueItem, report: TrainingReport) -> Optional[TrainResult]:
        try:
            buffer = self._decode(item.source)
            frames = self.extractor.extract(buffer.samples, buffer.sample_rate)
            if len(frames) == 0:
                item.status = "skipped"
                report.skipped.append(item.name)
                self.events.warning(f"Skipped silent file: {item.name}")
                return None
            result = self.trainer.train(frames, item.label)
        except Exception as e:
            item.status = "error"
            report.failed.append(item.name)
            self.events.error(f"File error: {item.name} ({e})")
            return None

        item.status = "done"
        report.results.append((item.name, result))
        self.events.info(f"Trained: {item.name} (E: {result.error:.2f})")
        self.events.log_scalar("train/error", result.error)
        self.events.log_scalar("calibration/threshold", self.calibrator.threshold)
        self.events.increment_step()
        return result

    # ------------------------------------------------------------------
    # File analysis
    # ------------------------------------------------------------------

    def analyze_file(self, source: AudioSource) -> FileAnalysisResult:
        """Two-pass analysis: score every window, then calibrate and aggregate."""
        with self._session(EngineState.FILE_ANALYSIS):
            try:
                return self._analyze(source)
            except InputError as e:
                self.events.error(f"Analysis failed: {e}")
                raise

    def _analyze(self, source: AudioSource) -> FileAnalysisResult:
        buffer = self._decode(source)
        scaled, raw = self.extractor.extract_with_raw(buffer.samples, buffer.sample_rate)
        frame_duration = self.extractor.frame_duration(buffer.sample_rate)
        global_threshold = self.calibrator.threshold

        if len(scaled) == 0:
            self.events.warning(f"{buffer.name} is silent, nothing to analyze")
            return FileAnalysisResult(
                name=buffer.name,
                threshold=global_threshold,
                local_threshold=global_threshold,
                global_threshold=global_threshold,
                segments=[],
                series=[],
                scores=np.zeros(0),
                frame_duration=frame_duration,
                duration=buffer.duration,
            )

        # Pass 1: raw score for every stride-1 window
        W = self.extractor.window_size
        n_windows = len(scaled) - W + 1
        chunk = max(1, self.config.yield_every)
        scores = np.zeros(n_windows, dtype=np.float64)
        for start in tqdm(
            range(0, n_windows, chunk),
            desc="Scoring",
            disable=not self.config.show_progress,
        ):
            stop = min(n_windows, start + chunk)
            windows = build_windows(scaled[start:stop + W - 1], W, 1)
            scores[start:stop] = self.trainer.predict_batch(windows)
            self._checkpoint()

        features = [spectral_centroid(raw[i + W - 1], buffer.sample_rate) for i in range(n_windows)]

        # Pass 2: calibrate on this file and aggregate
        local = self.calibrator.local_threshold(scores)
        threshold = self.calibrator.blend(local, self.trainer.total_processed_files > 0)
        self.events.success(f"Auto-calibration done (threshold {threshold:.2f}, local {local:.2f})")

        aggregator = SegmentAggregator(threshold, self.config.aggregator)
        for i in range(n_windows):
            aggregator.update((i + W) * frame_duration, scores[i], features[i])
        segments = aggregator.finalize()

        message = f"Detected {len(segments)} anomalies above background in {buffer.name}"
        if segments:
            self.events.warning(message)
        else:
            self.events.success(message)

        return FileAnalysisResult(
            name=buffer.name,
            threshold=threshold,
            local_threshold=local,
            global_threshold=global_threshold,
            segments=segments,
            series=aggregator.series[::self.config.display_stride],
            scores=scores,
            frame_duration=frame_duration,
            duration=buffer.duration,
        )

    # ------------------------------------------------------------------
    # Live monitoring
    # ------------------------------------------------------------------

    def start_monitoring(
        self,
        source: CaptureSource,
        on_point: Optional[Callable[[ScorePoint], None]] = None,
    ) -> threading.Thread:
        """Run the monitoring loop on a background thread until stop_monitoring()."""
        self._enter(EngineState.MONITORING)
        self._stop.clear()
        self.monitor_error = None
        thread = threading.Thread(
            target=self._monitor_thread_main,
            args=(source, on_point),
            name="sentinel-monitor",
            daemon=True,
        )
        self._monitor_thread = thread
        thread.start()
        return thread

    def _monitor_thread_main(self, source: CaptureSource, on_point) -> None:
        try:
            self._monitor_loop(source, None, on_point)
        except Exception as e:
            self.monitor_error = e

    def run_monitoring(
        self,
        source: CaptureSource,
        max_frames: Optional[int] = None,
        on_point: Optional[Callable[[ScorePoint], None]] = None,
    ) -> List[AnomalySegment]:
        """Blocking monitoring loop; reaching max_frames acts as the stop signal."""
        self._enter(EngineState.MONITORING)
        self._stop.clear()
        return self._monitor_loop(source, max_frames, on_point)

    def stop_monitoring(self, timeout: Optional[float] = None) -> List[AnomalySegment]:
        """Signal the loop to stop and wait for it to release the capture source."""
        self._stop.set()
        thread = self._monitor_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            self._monitor_thread = None
        return self.monitor_segments

    def _monitor_loop(self, source: CaptureSource, max_frames: Optional[int], on_point) -> List[AnomalySegment]:
        W = self.extractor.window_size
        window = deque(maxlen=W)
        aggregator = SegmentAggregator(self.calibrator.threshold, self.config.aggregator)
        self.monitor_aggregator = aggregator
        self.live_series.clear()
        n_frames = 0

        try:
            source.open()
            self.events.info("Monitoring started")
            while not self._stop.is_set():
                raw = source.read_frame()
                if raw is None:
                    time.sleep(self.config.poll_interval)
                    continue

                n_frames += 1
                window.append(scale_frame(raw, self.config.frames))
                if len(window) == W:
                    score = self.trainer.predict(np.stack(window))
                    point = aggregator.update(
                        n_frames * source.frame_duration,
                        score,
                        spectral_centroid(raw, source.sample_rate),
                    )
                    self.live_series.append(point)
                    if on_point is not None:
                        on_point(point)

                if max_frames is not None and n_frames >= max_frames:
                    self._stop.set()
        except Exception as e:
            self.events.error(f"Monitoring failed: {e}")
            raise
        finally:
            source.close()
            self.monitor_segments = aggregator.finalize()
            self._leave()

        self.events.info(f"Monitoring stopped after {n_frames} frames")
        return self.monitor_segments

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        return self.calibrator.threshold

    def predict(self, sequence: np.ndarray) -> float:
        """Score one (W, F) sequence with the current model."""
        return self.trainer.predict(sequence)

    def status(self) -> EngineStatus:
        return EngineStatus(
            state=self._state,
            trained_files=self.trainer.total_processed_files,
            durable_trained_files=self.durable_trained_files,
            threshold=self.calibrator.threshold,
            sensitivity=self.calibrator.sensitivity,
            history_size=len(self.calibrator.history),
            model_loaded=self.trainer.is_initialized,
            device=str(self.trainer.device),
            queue_size=len(self._queue),
        )
