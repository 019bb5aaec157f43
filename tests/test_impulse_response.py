import time

import numpy as np
import pytest
from scipy.signal import fftconvolve

from roomprint.chirp import generate_chirp_preset, get_chirp_config
from roomprint.impulse_response import (
    deconvolve,
    estimate_edt,
    estimate_rt60,
    extract_impulse_response,
    find_decay_time,
    schroeder_integration,
    schroeder_to_db,
    trim_impulse_response,
)
from roomprint.models import CaptureResult, ChirpMode

SAMPLE_RATE = 48_000


def exponential_decay(rt60: float, seconds: float, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    # Energy h^2 falls 60 dB after tau * ln(1000) seconds.
    tau = rt60 / np.log(1000.0)
    n = np.arange(int(seconds * sample_rate))
    return np.exp(-n / (sample_rate * tau)).astype(np.float32)


class TestDeconvolution:
    def test_chirp_against_itself_gives_impulse_at_zero(self):
        chirp = generate_chirp_preset(ChirpMode.AUDIBLE, SAMPLE_RATE)
        ir = deconvolve(chirp, chirp, epsilon=0.001).astype(np.float64)

        peak = int(np.argmax(np.abs(ir)))
        assert peak <= 1 or peak == ir.size - 1

        energy = ir**2
        near_zero = energy[:21].sum() + energy[-20:].sum()
        assert (energy.sum() - near_zero) / energy.sum() < 0.05

    def test_recovers_delayed_copy(self):
        chirp = generate_chirp_preset(ChirpMode.AUDIBLE, SAMPLE_RATE)
        delay = 2_400
        recorded = np.concatenate([np.zeros(delay, dtype=np.float32), 0.5 * chirp, np.zeros(4_800, dtype=np.float32)])
        ir = deconvolve(recorded, chirp)
        assert abs(int(np.argmax(np.abs(ir))) - delay) <= 1
        assert np.max(np.abs(ir)) == pytest.approx(1.0)

    def test_empty_input_rejected(self):
        with pytest.raises(ValueError):
            deconvolve(np.zeros(0), np.ones(8))


class TestTrim:
    def test_cuts_from_just_before_peak_to_silence(self):
        ir = np.zeros(SAMPLE_RATE, dtype=np.float32)
        ir[1000] = 1.0
        trimmed = trim_impulse_response(ir, SAMPLE_RATE)
        assert trimmed[48] == 1.0
        assert trimmed.size == int(0.1 * SAMPLE_RATE)

    def test_keeps_decay_until_sixty_db_down(self):
        decay = exponential_decay(0.5, 2.0)
        trimmed = trim_impulse_response(decay, SAMPLE_RATE)
        assert 0.3 * SAMPLE_RATE < trimmed.size < 0.6 * SAMPLE_RATE

    def test_caps_length(self):
        decay = exponential_decay(4.0, 4.0)
        assert trim_impulse_response(decay, SAMPLE_RATE).size <= int(2.5 * SAMPLE_RATE)


def test_extract_impulse_response_from_capture():
    config = get_chirp_config(ChirpMode.AUDIBLE, SAMPLE_RATE)
    chirp = generate_chirp_preset(ChirpMode.AUDIBLE, SAMPLE_RATE)
    rng = np.random.default_rng(7)
    room = exponential_decay(0.4, 0.6) * rng.standard_normal(int(0.6 * SAMPLE_RATE))
    captured = fftconvolve(chirp, room)
    capture = CaptureResult(
        captured=captured,
        chirp_reference=chirp,
        sample_rate=SAMPLE_RATE,
        config=config,
        timestamp=time.time(),
    )
    ir = extract_impulse_response(capture)
    assert ir.sample_rate == SAMPLE_RATE
    assert ir.duration_seconds == pytest.approx(ir.data.size / SAMPLE_RATE)
    assert not ir.data.flags.writeable
    assert estimate_rt60(ir.data, SAMPLE_RATE) == pytest.approx(0.4, rel=0.25)


class TestDecayEstimates:
    def test_rt60_of_exponential_decay(self):
        decay = exponential_decay(1.0, 2.0)
        assert estimate_rt60(decay, SAMPLE_RATE) == pytest.approx(1.0, rel=0.2)

    def test_edt_of_exponential_decay(self):
        decay = exponential_decay(1.0, 2.0)
        assert estimate_edt(decay, SAMPLE_RATE) == pytest.approx(1.0, rel=0.2)

    def test_rt60_clamped_for_single_impulse(self):
        ir = np.zeros(1000, dtype=np.float32)
        ir[0] = 1.0
        assert estimate_rt60(ir, SAMPLE_RATE) == 0.1
        assert estimate_edt(ir, SAMPLE_RATE) == 0.05

    def test_schroeder_curve_starts_at_zero_db(self):
        curve = schroeder_integration(exponential_decay(0.5, 1.0))
        assert curve[0] == pytest.approx(1.0)
        assert np.all(np.diff(curve) <= 0)
        assert schroeder_to_db(curve)[0] == pytest.approx(0.0)

    def test_silent_response_does_not_produce_nan(self):
        curve_db = schroeder_to_db(schroeder_integration(np.zeros(100)))
        assert np.all(np.isfinite(curve_db))
        assert estimate_rt60(np.zeros(100), SAMPLE_RATE) == 0.1

    def test_decay_time_without_crossing_is_curve_length(self):
        assert find_decay_time(np.zeros(480), SAMPLE_RATE, -5.0) == pytest.approx(0.01)
