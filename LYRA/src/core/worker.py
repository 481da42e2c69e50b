"""Background worker thread for frame capture and focus analysis."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Optional

from PyQt5 import QtCore

from LYRA.config import Config
from LYRA.src.core.algorithms import FocusPipeline, ScanRecorder
from LYRA.src.core.errors import FrameCancelled, LyraError
from LYRA.src.core.processing import PixelBuffer, frame_digest
from LYRA.src.core.types import Calibration, FocusResult
from LYRA.src.drivers.capture import FrameSource

logger = logging.getLogger(__name__)


class WorkerState:
    LIVE = "LIVE"
    ANALYZING = "ANALYZING"
    STOPPING = "STOPPING"
    ERROR = "ERROR"


class FocusWorker(QtCore.QThread):
    lines_update = QtCore.pyqtSignal(object)
    focus_update = QtCore.pyqtSignal(object)
    frame_failed = QtCore.pyqtSignal(str)
    status_msg = QtCore.pyqtSignal(str)
    state_changed = QtCore.pyqtSignal(str)

    def __init__(self, source: FrameSource, config: Config):
        super().__init__()
        self.source = source
        self.config = config
        self.running = True
        self.state = WorkerState.LIVE

        self.command_queue: queue.Queue[tuple[str, Any]] = queue.Queue()
        self.cancel_event = threading.Event()
        self.calibration: Calibration = config.calibration()
        self.last_digest: Optional[bytes] = None
        self.last_result: Optional[FocusResult] = None

        self.pipeline = FocusPipeline(config)
        self.recorder = ScanRecorder(config)
        self.state_changed.emit(self.state)

    def _set_state(self, state: str) -> None:
        if self.state != state:
            self.state = state
            self.state_changed.emit(state)

    def _clear_queue(self) -> None:
        with self.command_queue.mutex:
            self.command_queue.queue.clear()

    def analyze_once(self) -> None:
        self.command_queue.put(("ANALYZE_ONCE", None))

    def set_calibration(self, calibration: Calibration) -> None:
        self.command_queue.put(("CALIBRATE", calibration))

    def save_snapshot(self) -> None:
        self.command_queue.put(("SNAPSHOT", None))

    def request_stop(self) -> None:
        """Abandon the frame in flight and any queued commands."""
        self.cancel_event.set()
        self._set_state(WorkerState.STOPPING)
        self._clear_queue()
        self.status_msg.emit("Stopping...")

    def stop(self) -> None:
        self.request_stop()
        self.running = False
        self.wait()
        self.pipeline.close()

    def run(self) -> None:
        while self.running:
            try:
                self._drain_commands()
                self._live_tick()
            except Exception:
                self._set_state(WorkerState.ERROR)
                self.status_msg.emit("Worker error. Check logs for details.")
                logger.exception("Worker thread crashed")
                if self.running:
                    self._set_state(WorkerState.LIVE)

            time.sleep(self.config.CAPTURE_INTERVAL_MS / 1000.0)

    def _drain_commands(self) -> None:
        while not self.command_queue.empty():
            cmd, val = self.command_queue.get_nowait()
            if cmd == "ANALYZE_ONCE":
                self.last_digest = None
                self._live_tick()
            elif cmd == "CALIBRATE":
                self.calibration = val
                self.last_digest = None
                self.status_msg.emit(
                    f"Calibration: D={val.aperture_mm:.0f}mm f={val.focal_length_mm:.0f}mm "
                    f"px={val.pixel_size_um:.2f}um"
                )
            elif cmd == "SNAPSHOT":
                self._handle_snapshot()

    def _handle_snapshot(self) -> None:
        result = self.last_result
        if result is None or result.profile is None:
            self.status_msg.emit("Nothing to save yet.")
            return
        path = self.recorder.save(result.profile, result)
        self.status_msg.emit(f"Scan saved to {path.name}")

    def _live_tick(self) -> None:
        buffer = self.source.get_frame()
        if buffer is None:
            return

        digest = frame_digest(buffer)
        if digest == self.last_digest:
            return
        self.last_digest = digest
        self.process_frame(buffer)

    def process_frame(self, buffer: PixelBuffer) -> Optional[FocusResult]:
        """Analyze one frame and emit its result; per-frame failures are reported, not raised."""
        self.cancel_event.clear()
        self._set_state(WorkerState.ANALYZING)
        try:
            result = self.pipeline.analyze(buffer, self.cancel_event, self.calibration)
        except FrameCancelled:
            self._set_state(WorkerState.LIVE)
            return None
        except LyraError as exc:
            logger.info("Frame rejected: %s", exc)
            self.last_result = None
            self.frame_failed.emit(exc.message)
            self._set_state(WorkerState.LIVE)
            return None

        self.last_result = result
        self.lines_update.emit(result.line_set)
        self.focus_update.emit(list(result.assessments))
        primary = result.primary
        if primary is not None:
            self.status_msg.emit(
                f"Focus error: {primary.signed_error_px:+.1f} px ({primary.error_um:.1f} um)"
            )
        self._set_state(WorkerState.LIVE)
        return result
