from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional, Protocol

import numpy as np

from .chirp import DEFAULT_SAMPLE_RATE, generate_chirp, get_chirp_config
from .models import AmbientCaptureResult, CaptureResult, ChirpMode, DeviceOrientation

try:
    import soundcard as sc
except ImportError:  # pragma: no cover - optional dependency for live capture
    sc = None


logger = logging.getLogger(__name__)


class PermissionDeniedError(RuntimeError):
    """The platform refused access to the microphone."""


class DeviceUnavailableError(RuntimeError):
    """No usable audio device, or the audio backend is not installed."""


class AudioSource(Protocol):
    def capture(self, duration_seconds: float, sample_rate: int) -> np.ndarray:
        """Record mono audio; at least ``ceil(duration * sample_rate)`` samples."""
        ...


class AudioSink(Protocol):
    def play(self, signal: np.ndarray, volume: float, sample_rate: int) -> np.ndarray:
        """Play ``signal`` and return the exact samples rendered."""
        ...


class OrientationSource(Protocol):
    def snapshot(self) -> Optional[DeviceOrientation]:
        ...


@dataclass
class CaptureConfig:
    sample_rate: int = DEFAULT_SAMPLE_RATE
    pre_delay: float = 0.1
    reverb_tail: float = 1.5
    volume: float = 0.8
    ambient_duration: float = 3.0
    include_orientation: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CaptureConfig":
        """Build from a settings mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def _require_soundcard() -> Any:
    if sc is None:
        raise DeviceUnavailableError(
            "soundcard package is required for live capture. Install it with 'pip install soundcard' or run with --mock."
        )
    return sc


class MicrophoneSource:
    """Records from the default (or a named) microphone."""

    def __init__(self, device_name: str | None = None) -> None:
        self.device_name = device_name

    def _microphone(self) -> Any:
        backend = _require_soundcard()
        microphone = backend.get_microphone(self.device_name) if self.device_name else backend.default_microphone()
        if microphone is None:
            raise DeviceUnavailableError("No microphone found for capture.")
        return microphone

    def capture(self, duration_seconds: float, sample_rate: int) -> np.ndarray:
        microphone = self._microphone()
        num_frames = int(math.ceil(duration_seconds * sample_rate))
        logger.debug("Recording %s frames from '%s'", num_frames, microphone.name)
        try:
            data = microphone.record(numframes=num_frames, samplerate=sample_rate, channels=1)
        except PermissionError as exc:
            raise PermissionDeniedError(f"Microphone access denied: {exc}") from exc
        except RuntimeError as exc:
            raise DeviceUnavailableError(f"Microphone '{microphone.name}' failed: {exc}") from exc
        data = np.asarray(data, dtype=np.float32)
        if data.ndim > 1:
            data = data[:, 0]
        return data


class SpeakerSink:
    """Plays through the default (or a named) speaker."""

    def __init__(self, device_name: str | None = None) -> None:
        self.device_name = device_name

    def play(self, signal: np.ndarray, volume: float, sample_rate: int) -> np.ndarray:
        backend = _require_soundcard()
        speaker = backend.get_speaker(self.device_name) if self.device_name else backend.default_speaker()
        if speaker is None:
            raise DeviceUnavailableError("No speaker found for playback.")
        rendered = (np.asarray(signal, dtype=np.float32) * volume).astype(np.float32)
        logger.debug("Playing %s samples on '%s' at volume %.2f", rendered.size, speaker.name, volume)
        try:
            speaker.play(rendered, samplerate=sample_rate, channels=1)
        except RuntimeError as exc:
            raise DeviceUnavailableError(f"Speaker '{speaker.name}' failed: {exc}") from exc
        return rendered


class ChirpMeasurement:
    """
    Active and passive room captures over an audio source/sink pair.

    For an active capture, recording starts on a worker thread before the
    chirp is played so the whole response, including the decay tail, lands
    in the buffer.
    """

    def __init__(
        self,
        source: AudioSource,
        sink: AudioSink,
        orientation: OrientationSource | None = None,
        config: CaptureConfig | None = None,
    ) -> None:
        self.source = source
        self.sink = sink
        self.orientation = orientation
        self.config = config or CaptureConfig()

    def _orientation_snapshot(self) -> DeviceOrientation | None:
        if not self.config.include_orientation or self.orientation is None:
            return None
        reading = self.orientation.snapshot()
        logger.debug("Orientation captured: %s", reading)
        return reading

    def capture_room_response(self, mode: ChirpMode | str = ChirpMode.AUDIBLE) -> CaptureResult:
        config = self.config
        chirp_config = get_chirp_config(mode, config.sample_rate)
        chirp = generate_chirp(chirp_config)
        total_duration = config.pre_delay + chirp_config.duration_seconds + config.reverb_tail
        logger.info(
            "Starting %s chirp capture (%.2f s recording, volume=%.2f)",
            chirp_config.mode.value,
            total_duration,
            config.volume,
        )

        recorded: list[np.ndarray] = []
        errors: list[Exception] = []

        def _record() -> None:
            try:
                recorded.append(self.source.capture(total_duration, config.sample_rate))
            except Exception as exc:  # re-raised on the calling thread
                errors.append(exc)

        timestamp = time.time()
        recorder = threading.Thread(target=_record, name="chirp-recorder", daemon=True)
        recorder.start()
        try:
            time.sleep(config.pre_delay)
            rendered = self.sink.play(chirp, config.volume, config.sample_rate)
        finally:
            recorder.join()
        if errors:
            raise errors[0]

        captured = recorded[0]
        logger.info("Captured %s samples", len(captured))
        return CaptureResult(
            captured=captured,
            chirp_reference=rendered,
            sample_rate=config.sample_rate,
            config=chirp_config,
            timestamp=timestamp,
            orientation=self._orientation_snapshot(),
        )

    def capture_passive(self, duration_seconds: float | None = None) -> AmbientCaptureResult:
        duration = self.config.ambient_duration if duration_seconds is None else duration_seconds
        logger.info("Starting passive capture (%.2f s)", duration)
        timestamp = time.time()
        audio = self.source.capture(duration, self.config.sample_rate)
        return AmbientCaptureResult(
            audio=audio,
            sample_rate=self.config.sample_rate,
            duration_seconds=duration,
            timestamp=timestamp,
            orientation=self._orientation_snapshot(),
        )
