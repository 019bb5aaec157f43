from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .ambient_features import extract_ambient_features
from .audio_capture import ChirpMeasurement
from .models import AmbientCaptureResult, AmbientFeatureVector

logger = logging.getLogger(__name__)

CaptureCallback = Callable[[AmbientFeatureVector, AmbientCaptureResult, int], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class BackgroundRecorderConfig:
    interval_seconds: float = 30.0
    duration_seconds: float = 3.0
    include_orientation: bool = True
    max_samples_per_session: int = 100
    error_backoff_seconds: float = 5.0


@dataclass
class BackgroundRecorderStatus:
    is_running: bool
    capture_count: int
    last_capture_time: float | None
    error: str | None


class BackgroundRecorder:
    """Periodic passive captures with ambient feature extraction on a worker thread."""

    def __init__(
        self,
        measurement: ChirpMeasurement,
        on_capture: CaptureCallback,
        on_error: Optional[ErrorCallback] = None,
        config: BackgroundRecorderConfig | None = None,
        on_status_change: Optional[Callable[[BackgroundRecorderStatus], None]] = None,
    ) -> None:
        self.measurement = measurement
        self.config = config or BackgroundRecorderConfig()
        self._on_capture = on_capture
        self._on_error = on_error
        self._on_status_change = on_status_change
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.capture_count = 0
        self.last_capture_time: float | None = None
        self.error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Background recorder already running")
                return
            self.capture_count = 0
            self.error = None
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="background-recorder", daemon=True)
            self._thread.start()
        logger.info(
            "Background recorder started (interval=%.1fs, duration=%.1fs, max=%s)",
            self.config.interval_seconds,
            self.config.duration_seconds,
            self.config.max_samples_per_session,
        )
        self._report_status()

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                logger.debug("BackgroundRecorder.stop called but no thread running")
                return
            self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        with self._lock:
            self._thread = None
        logger.info("Background recorder stopped after %s captures", self.capture_count)
        self._report_status()

    def status(self) -> BackgroundRecorderStatus:
        return BackgroundRecorderStatus(
            is_running=self.is_running,
            capture_count=self.capture_count,
            last_capture_time=self.last_capture_time,
            error=self.error,
        )

    def _run(self) -> None:
        while not self._stop_event.is_set():
            if self.capture_count >= self.config.max_samples_per_session:
                logger.info("Maximum of %s samples reached, stopping", self.config.max_samples_per_session)
                self._stop_event.set()
                break
            try:
                capture = self.measurement.capture_passive(self.config.duration_seconds)
                if not self.config.include_orientation:
                    capture = AmbientCaptureResult(
                        audio=capture.audio,
                        sample_rate=capture.sample_rate,
                        duration_seconds=capture.duration_seconds,
                        timestamp=capture.timestamp,
                    )
                features = extract_ambient_features(capture.audio, capture.sample_rate)
                self.capture_count += 1
                self.last_capture_time = time.time()
                self._on_capture(features, capture, self.capture_count)
                self._report_status()
            except Exception as exc:
                logger.exception("Background capture failed: %s", exc)
                self.error = str(exc)
                if self._on_error is not None:
                    self._on_error(exc)
                self._stop_event.wait(self.config.error_backoff_seconds)
                continue

            self._stop_event.wait(self.config.interval_seconds)
        logger.debug("Background recorder thread exiting")

    def _report_status(self) -> None:
        if self._on_status_change is not None:
            self._on_status_change(self.status())
