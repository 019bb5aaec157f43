import numpy as np
import pytest

from roomprint.models import ORIENTATION_AWARE_FEATURE_LENGTH, ImpulseResponse
from roomprint.orientation_aware import (
    DEFAULT_LATE_DECAY_RATES,
    DecompositionConfig,
    compute_late_reverb_confidence,
    compute_low_frequency_fraction,
    detect_mixing_time,
    estimate_late_rt60,
    extract_late_reverb_features,
    extract_orientation_aware_features,
)
from roomprint.simulation import synthesize_room_impulse_response

SAMPLE_RATE = 48_000


def diffuse_decay(rt60: float, seconds: float, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    n = np.arange(int(seconds * SAMPLE_RATE))
    envelope = np.exp(-np.log(1000.0) * n / (SAMPLE_RATE * rt60))
    return (rng.standard_normal(n.size) * envelope).astype(np.float32)


def sparse_impulses(seconds: float, spacing_ms: float = 20.0) -> np.ndarray:
    ir = np.zeros(int(seconds * SAMPLE_RATE), dtype=np.float32)
    ir[:: int(spacing_ms / 1000 * SAMPLE_RATE)] = 1.0
    return ir


class TestMixingTime:
    def test_short_response_uses_half_its_length(self):
        assert detect_mixing_time(np.ones(int(0.1 * SAMPLE_RATE)), SAMPLE_RATE) == pytest.approx(50.0)

    def test_diffuse_decay_mixes_immediately(self):
        assert detect_mixing_time(diffuse_decay(1.0, 0.5), SAMPLE_RATE) == pytest.approx(25.0)

    def test_sparse_reflections_never_mix(self):
        assert detect_mixing_time(sparse_impulses(0.5), SAMPLE_RATE) == pytest.approx(150.0)

    def test_result_clamped_to_configured_range(self):
        config = DecompositionConfig(cov_threshold=0.0, max_mixing_time_ms=100.0)
        assert detect_mixing_time(diffuse_decay(1.0, 0.5), SAMPLE_RATE, config) == pytest.approx(100.0)

    def test_synthetic_room_within_bounds(self):
        ir = synthesize_room_impulse_response(0.6, SAMPLE_RATE, seed=5)
        assert 20.0 <= detect_mixing_time(ir, SAMPLE_RATE) <= 150.0


class TestLateReverb:
    def test_late_rt60_of_exponential_decay(self):
        n = np.arange(SAMPLE_RATE)
        decay = np.exp(-np.log(1000.0) * n / SAMPLE_RATE)
        assert estimate_late_rt60(decay, SAMPLE_RATE) == pytest.approx(1.0, rel=0.2)

    def test_late_rt60_falls_back_without_decay(self):
        assert estimate_late_rt60(np.ones(10), SAMPLE_RATE, fallback=0.7) == 0.7
        assert estimate_late_rt60(np.zeros(100), SAMPLE_RATE) == 0.5

    def test_short_late_segment_gives_defaults(self):
        late = extract_late_reverb_features(np.ones(4_320), SAMPLE_RATE, 2_160)
        assert late.late_rt60 == 0.5
        assert late.late_decay_rates == list(DEFAULT_LATE_DECAY_RATES)
        assert late.late_spectral_envelope == [-6.0] * 7
        assert late.mixing_time_ms == pytest.approx(45.0)

    def test_short_late_segment_uses_configured_fallback(self):
        config = DecompositionConfig(late_rt60_fallback=0.8)
        late = extract_late_reverb_features(np.ones(4_320), SAMPLE_RATE, 2_160, config)
        assert late.late_rt60 == 0.8
        assert late.values()[0] == 0.8

    def test_late_features_of_diffuse_tail(self):
        ir = diffuse_decay(0.8, 1.0, seed=2)
        late = extract_late_reverb_features(ir, SAMPLE_RATE, int(0.02 * SAMPLE_RATE))
        assert late.late_rt60 == pytest.approx(0.8, rel=0.25)
        assert len(late.late_decay_rates) == 7
        assert 0.0 < late.late_energy <= 1.0
        assert 0.0 <= late.late_spectral_centroid <= 1.0
        assert 0.0 <= late.low_freq_mode_energy <= 1.0

    def test_low_frequency_fraction(self):
        t = np.arange(8192) / 8192
        assert compute_low_frequency_fraction(np.sin(2 * np.pi * 100 * t), 8192, 300) == pytest.approx(1.0)
        assert compute_low_frequency_fraction(np.sin(2 * np.pi * 1000 * t), 8192, 300) < 0.01
        assert compute_low_frequency_fraction(np.zeros(64), 8192, 300) == 0.0


class TestConfidence:
    def test_confidence_in_unit_range(self):
        ir = diffuse_decay(0.6, 0.8, seed=3)
        confidence = compute_late_reverb_confidence(ir, SAMPLE_RATE, int(0.025 * SAMPLE_RATE))
        assert 0.0 <= confidence <= 1.0
        assert confidence > 0.5

    def test_too_few_windows_halves_length_score(self):
        ir = np.ones(4_320)
        assert compute_late_reverb_confidence(ir, SAMPLE_RATE, 2_160) == pytest.approx(0.45 * 0.5)


class TestExtractOrientationAwareFeatures:
    def test_vector_layout(self):
        ir = ImpulseResponse.from_signal(synthesize_room_impulse_response(0.5, SAMPLE_RATE, seed=4), SAMPLE_RATE)
        features = extract_orientation_aware_features(ir)
        metadata = features.feature_metadata

        assert len(features.raw) == ORIENTATION_AWARE_FEATURE_LENGTH
        assert (metadata.late_feature_count, metadata.early_feature_count) == (20, 48)
        assert metadata.late_slice == slice(0, 20)
        assert metadata.early_slice == slice(20, 68)
        assert features.raw[metadata.late_slice] == features.late_reverb_features.values()
        assert features.raw[metadata.early_slice] == features.early_reflection_features.values()
        assert features.raw[19] == pytest.approx(metadata.detected_mixing_time_ms / 1000, abs=1e-4)
        assert 0.0 <= metadata.late_reverb_confidence <= 1.0

    def test_short_response_still_produces_vector(self):
        ir = ImpulseResponse.from_signal(diffuse_decay(0.3, 0.09), SAMPLE_RATE)
        features = extract_orientation_aware_features(ir)
        assert len(features.raw) == ORIENTATION_AWARE_FEATURE_LENGTH
        assert features.late_reverb_features.late_rt60 == 0.5
        assert features.feature_metadata.detected_mixing_time_ms == pytest.approx(45.0)

    def test_empty_response_rejected(self):
        with pytest.raises(ValueError):
            extract_orientation_aware_features(ImpulseResponse.from_signal(np.zeros(0), SAMPLE_RATE))
