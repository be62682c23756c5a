"""Run orchestration: sequences measurement phases and persists one record per run."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from ..errors import MeasurementCancelled, MeasurementError, StorageError
from ..log_store import LogStore
from ..providers import LocationProvider, NetworkTypeProvider
from .engine import MeasurementEngine
from .models import (
    Coordinate,
    LocationStatus,
    LogRecord,
    MeasurementSample,
    NetworkType,
    TestSize,
    format_coordinate,
    format_timestamp,
    reconcile_location_status,
)

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled"


class RunPhase(Enum):
    IDLE = "idle"
    PINGING = "pinging"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    SAVING = "saving"
    DONE = "done"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    RunPhase.IDLE: "Idle",
    RunPhase.PINGING: "Pinging…",
    RunPhase.DOWNLOADING: "Downloading…",
    RunPhase.UPLOADING: "Uploading…",
    RunPhase.SAVING: "Saving…",
    RunPhase.DONE: "Done",
    RunPhase.FAILED: "Failed",
}


@dataclass(frozen=True)
class RunSnapshot:
    phase: RunPhase = RunPhase.IDLE
    progress: float = 0.0
    is_running: bool = False
    test_size: Optional[TestSize] = None
    ping_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    network_type: NetworkType = NetworkType.UNKNOWN
    start_coordinate: Optional[Coordinate] = None
    end_coordinate: Optional[Coordinate] = None
    location_status: LocationStatus = LocationStatus.UNAVAILABLE
    error_message: str = ""

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "phase_label": self.phase.label,
            "progress": self.progress,
            "is_running": self.is_running,
            "test_size_mb": int(self.test_size) if self.test_size is not None else None,
            "ping_ms": self.ping_ms,
            "jitter_ms": self.jitter_ms,
            "download_mbps": self.download_mbps,
            "upload_mbps": self.upload_mbps,
            "network_type": self.network_type.value,
            "start_coordinate": _coordinate_dict(self.start_coordinate),
            "end_coordinate": _coordinate_dict(self.end_coordinate),
            "location_status": self.location_status.value,
            "error_message": self.error_message,
        }


def _coordinate_dict(coordinate: Optional[Coordinate]) -> Optional[dict]:
    if coordinate is None:
        return None
    return {"latitude": coordinate.latitude, "longitude": coordinate.longitude}


@dataclass
class _RunContext:
    size: TestSize
    started_at: datetime
    network_type: NetworkType
    start_future: Future
    sample: MeasurementSample = field(default_factory=MeasurementSample)
    start_coordinate: Optional[Coordinate] = None
    end_coordinate: Optional[Coordinate] = None
    end_attempted: bool = False


Listener = Callable[[RunSnapshot], None]


class RunOrchestrator:
    """
    State machine driving a single speed test run at a time.

    Each state change is published to registered listeners as an immutable
    ``RunSnapshot``. Every run, whether it completes, fails or is cancelled,
    appends exactly one record to the log store.
    """

    def __init__(
        self,
        engine: MeasurementEngine,
        log_store: LogStore,
        network_provider: NetworkTypeProvider,
        location_provider: LocationProvider,
        server_base_url: str,
        location_timeout: float = 5.0,
        now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ):
        self.engine = engine
        self.log_store = log_store
        self.network_provider = network_provider
        self.location_provider = location_provider
        self.server_base_url = server_base_url
        self.location_timeout = location_timeout
        self._now = now
        self._lock = threading.RLock()
        self._running = False
        self._cancel_requested = False
        self._context: Optional[_RunContext] = None
        self._snapshot = RunSnapshot()
        self._listeners: List[Listener] = []
        self._thread: Optional[threading.Thread] = None
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="location")

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def snapshot(self) -> RunSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, final: bool = False, **changes) -> None:
        with self._lock:
            # After a cancel only the closing snapshot of the run is published.
            if self._cancel_requested and not final:
                return
            self._snapshot = replace(self._snapshot, **changes)
            snapshot = self._snapshot
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Run listener %r failed", listener)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------
    def start(self, size: TestSize) -> bool:
        """Start a run on a worker thread; ignored while another run is active."""
        with self._lock:
            if not self._begin(size):
                return False
            self._thread = threading.Thread(target=self._execute, name="speed-test-run", daemon=True)
            self._thread.start()
        return True

    def run(self, size: TestSize) -> Optional[RunSnapshot]:
        """Run on the calling thread and return the final snapshot, or ``None`` if busy."""
        with self._lock:
            if not self._begin(size):
                return None
        self._execute()
        return self.snapshot

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def cancel(self) -> None:
        with self._lock:
            if not self._running or self._cancel_requested:
                return
            LOGGER.info("Cancelling speed test run")
            self._cancel_requested = True
            self.engine.cancel()
            self._snapshot = replace(self._snapshot, phase=RunPhase.IDLE, progress=0.0)
            snapshot = self._snapshot
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Run listener %r failed", listener)

    def shutdown(self) -> None:
        self.cancel()
        self.join(timeout=5.0)
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Run pipeline
    # ------------------------------------------------------------------
    def _begin(self, size: TestSize) -> bool:
        if self._running:
            LOGGER.warning("Speed test already running, ignoring start request")
            return False

        size = TestSize(size)
        self._running = True
        self._cancel_requested = False
        self.engine.reset()

        try:
            network_type = self.network_provider.current_type()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Network type provider failed: %s", exc)
            network_type = NetworkType.UNKNOWN

        self._context = _RunContext(
            size=size,
            started_at=self._now(),
            network_type=network_type,
            start_future=self._executor.submit(self.location_provider.current_coordinate),
        )
        LOGGER.info("Starting %s speed test on %s network", size.display_title, network_type.value)
        self._publish(
            phase=RunPhase.PINGING,
            progress=0.0,
            is_running=True,
            test_size=size,
            ping_ms=None,
            jitter_ms=None,
            download_mbps=None,
            upload_mbps=None,
            network_type=network_type,
            start_coordinate=None,
            end_coordinate=None,
            location_status=LocationStatus.UNAVAILABLE,
            error_message="",
        )
        return True

    def _execute(self) -> None:
        context = self._context
        try:
            self._measure(context)
        except MeasurementCancelled:
            self._finish_cancelled(context)
        except MeasurementError as exc:
            LOGGER.warning("Speed test failed: %s", exc)
            self._finish_failed(context, str(exc))
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Speed test crashed: %s", exc)
            self._finish_failed(context, str(exc) or exc.__class__.__name__)
        finally:
            with self._lock:
                self._running = False

    def _measure(self, context: _RunContext) -> None:
        engine = self.engine
        sample = context.sample

        self._publish(phase=RunPhase.PINGING, progress=0.10)
        engine.raise_if_cancelled()
        ping_ms, jitter_ms = engine.measure_ping_and_jitter()
        sample.record_ping(ping_ms, jitter_ms)
        self._publish(ping_ms=ping_ms, jitter_ms=jitter_ms, progress=0.35)

        engine.raise_if_cancelled()
        self._publish(phase=RunPhase.DOWNLOADING, progress=0.40)
        download = engine.measure_download_mbps(context.size)
        sample.record_download(download)
        self._publish(download_mbps=download, progress=0.70)

        engine.raise_if_cancelled()
        self._publish(phase=RunPhase.UPLOADING, progress=0.75)
        upload = engine.measure_upload_mbps(context.size)
        engine.raise_if_cancelled()
        sample.record_upload(upload)
        self._publish(upload_mbps=upload, progress=0.90)

        self._resolve_start_coordinate(context)
        self._acquire_end_coordinate(context)
        engine.raise_if_cancelled()
        status = reconcile_location_status(context.start_coordinate, context.end_coordinate, context.end_attempted)
        self._publish(
            phase=RunPhase.SAVING,
            progress=0.95,
            start_coordinate=context.start_coordinate,
            end_coordinate=context.end_coordinate,
            location_status=status,
        )

        record = self._build_record(context, status, "")
        try:
            self.log_store.append(record)
        except StorageError as exc:
            LOGGER.error("Failed to save run record: %s", exc)
            self._publish(final=True, phase=RunPhase.FAILED, is_running=False, error_message=str(exc))
            return

        LOGGER.info(
            "Speed test done: ping %.2f ms / down %.2f Mbps / up %.2f Mbps",
            ping_ms,
            download,
            upload,
        )
        self._publish(final=True, phase=RunPhase.DONE, progress=1.0, is_running=False)

    def _finish_cancelled(self, context: _RunContext) -> None:
        LOGGER.info("Speed test cancelled")
        self._resolve_start_coordinate(context)
        status = reconcile_location_status(context.start_coordinate, None, end_attempted=False)
        message = self._save_failure_record(context, status, CANCELLED_MESSAGE)
        self._publish(
            final=True,
            phase=RunPhase.IDLE,
            progress=0.0,
            is_running=False,
            start_coordinate=context.start_coordinate,
            location_status=status,
            error_message=message,
        )

    def _finish_failed(self, context: _RunContext, message: str) -> None:
        self._resolve_start_coordinate(context)
        self._acquire_end_coordinate(context)
        status = reconcile_location_status(context.start_coordinate, context.end_coordinate, context.end_attempted)
        message = self._save_failure_record(context, status, message)
        self._publish(
            final=True,
            phase=RunPhase.FAILED,
            is_running=False,
            start_coordinate=context.start_coordinate,
            end_coordinate=context.end_coordinate,
            location_status=status,
            error_message=message,
        )

    def _save_failure_record(self, context: _RunContext, status: LocationStatus, message: str) -> str:
        record = self._build_record(context, status, message)
        try:
            self.log_store.append(record)
        except StorageError as exc:
            LOGGER.error("Failed to save failure record: %s", exc)
            return f"{message}\nLog save failed: {exc}"
        return message

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _await_coordinate(self, future: Future) -> Optional[Coordinate]:
        try:
            return future.result(timeout=self.location_timeout)
        except FutureTimeoutError:
            LOGGER.info("Location not available within %.1fs", self.location_timeout)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Location provider failed: %s", exc)
        return None

    def _resolve_start_coordinate(self, context: _RunContext) -> None:
        if context.start_coordinate is None:
            context.start_coordinate = self._await_coordinate(context.start_future)

    def _acquire_end_coordinate(self, context: _RunContext) -> None:
        context.end_attempted = True
        future = self._executor.submit(self.location_provider.current_coordinate)
        context.end_coordinate = self._await_coordinate(future)

    def _build_record(self, context: _RunContext, status: LocationStatus, message: str) -> LogRecord:
        sample = context.sample
        start_lat, start_lon = format_coordinate(context.start_coordinate)
        end_lat, end_lon = format_coordinate(context.end_coordinate)
        return LogRecord(
            timestamp=format_timestamp(context.started_at),
            download_mbps=sample.value_or_zero("download_mbps"),
            upload_mbps=sample.value_or_zero("upload_mbps"),
            ping_ms=sample.value_or_zero("ping_ms"),
            jitter_ms=sample.value_or_zero("jitter_ms"),
            network_type=context.network_type.value,
            location_start_lat=start_lat,
            location_start_lon=start_lon,
            location_end_lat=end_lat,
            location_end_lon=end_lon,
            location_status=status.value,
            test_size_mb=int(context.size),
            server_base_url=self.server_base_url,
            error_message=message,
        )
