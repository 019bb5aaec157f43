import threading
import time

import numpy as np
import pytest

from roomprint import audio_capture
from roomprint.audio_capture import (
    CaptureConfig,
    ChirpMeasurement,
    DeviceUnavailableError,
    MicrophoneSource,
    PermissionDeniedError,
    SpeakerSink,
)
from roomprint.models import ChirpMode, DeviceOrientation
from roomprint.simulation import StaticOrientationSource

SAMPLE_RATE = 48_000


class FakeSource:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    def capture(self, duration_seconds, sample_rate):
        self.requests.append((duration_seconds, sample_rate))
        if self.error is not None:
            raise self.error
        return np.zeros(int(np.ceil(duration_seconds * sample_rate)), dtype=np.float32)


class FakeSink:
    def __init__(self):
        self.played = []

    def play(self, signal, volume, sample_rate):
        rendered = (np.asarray(signal, dtype=np.float32) * volume).astype(np.float32)
        self.played.append(rendered)
        return rendered


def make_measurement(source=None, **overrides):
    config = CaptureConfig(sample_rate=SAMPLE_RATE, pre_delay=0.0, **overrides)
    orientation = StaticOrientationSource(DeviceOrientation(alpha=1.0, beta=2.0, gamma=3.0, timestamp=0.0))
    return ChirpMeasurement(source or FakeSource(), FakeSink(), orientation, config)


class TestChirpMeasurement:
    def test_room_response_records_whole_window(self):
        measurement = make_measurement()
        capture = measurement.capture_room_response(ChirpMode.AUDIBLE)

        duration, rate = measurement.source.requests[0]
        assert duration == pytest.approx(0.0 + 0.5 + 1.5)
        assert rate == SAMPLE_RATE
        assert capture.captured.size == 2 * SAMPLE_RATE
        assert capture.config.sample_rate == SAMPLE_RATE
        assert np.array_equal(capture.chirp_reference, measurement.sink.played[0])
        assert capture.orientation.gamma == 3.0

    def test_recorder_errors_reach_caller(self):
        measurement = make_measurement(FakeSource(PermissionDeniedError("denied")))
        with pytest.raises(PermissionDeniedError):
            measurement.capture_room_response("ultrasonic")

    def test_playback_failure_waits_for_recorder(self):
        class SlowSource(FakeSource):
            def capture(self, duration_seconds, sample_rate):
                time.sleep(0.3)
                return super().capture(duration_seconds, sample_rate)

        class BrokenSink:
            def play(self, signal, volume, sample_rate):
                raise DeviceUnavailableError("speaker unplugged")

        source = SlowSource()
        config = CaptureConfig(sample_rate=SAMPLE_RATE, pre_delay=0.0)
        measurement = ChirpMeasurement(source, BrokenSink(), None, config)
        with pytest.raises(DeviceUnavailableError):
            measurement.capture_room_response(ChirpMode.AUDIBLE)

        assert len(source.requests) == 1
        assert not any(t.name == "chirp-recorder" and t.is_alive() for t in threading.enumerate())

    def test_orientation_can_be_disabled(self):
        measurement = make_measurement(include_orientation=False)
        assert measurement.capture_passive(0.1).orientation is None

    def test_passive_capture_uses_configured_duration(self):
        measurement = make_measurement(ambient_duration=0.25)
        capture = measurement.capture_passive()
        assert capture.duration_seconds == 0.25
        assert capture.audio.size == 12_000
        assert capture.sample_rate == SAMPLE_RATE


def test_capture_config_from_mapping_ignores_unknown_keys():
    config = CaptureConfig.from_mapping({"volume": 0.5, "sample_rate": 44_100, "chirp_mode": "audible"})
    assert config.volume == 0.5
    assert config.sample_rate == 44_100
    assert config.reverb_tail == 1.5


def test_live_devices_require_soundcard(monkeypatch):
    monkeypatch.setattr(audio_capture, "sc", None)
    with pytest.raises(DeviceUnavailableError):
        MicrophoneSource().capture(0.1, SAMPLE_RATE)
    with pytest.raises(DeviceUnavailableError):
        SpeakerSink().play(np.zeros(10), 0.5, SAMPLE_RATE)
