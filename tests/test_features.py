import numpy as np
import pytest

from roomprint.features import (
    OCTAVE_BANDS,
    compute_clarity_ratio,
    compute_early_reflection_energy,
    compute_mfcc_matrix,
    extract_features,
    fit_to_length,
)
from roomprint.models import FEATURE_VECTOR_LENGTH, FeatureVector, ImpulseResponse
from roomprint.simulation import synthesize_room_impulse_response

SAMPLE_RATE = 48_000


@pytest.fixture(scope="module")
def room_ir():
    data = synthesize_room_impulse_response(0.5, SAMPLE_RATE, seed=3)
    return ImpulseResponse.from_signal(data, SAMPLE_RATE)


class TestExtractFeatures:
    def test_vector_length(self, room_ir):
        features = extract_features(room_ir)
        assert len(features.raw) == FEATURE_VECTOR_LENGTH
        assert len(features.mfcc_mean) == 13
        assert len(features.mfcc_variance) == 13
        assert len(features.early_reflections) == 8
        assert len(features.octave_bands) == len(OCTAVE_BANDS) == 7
        assert all(np.isfinite(features.raw))

    def test_raw_layout(self, room_ir):
        features = extract_features(room_ir)
        raw = features.raw
        assert raw[0] == features.rt60
        assert raw[1] == features.edt
        assert raw[2:4] == [features.c50, features.c80]
        assert raw[4] == pytest.approx(features.spectral_centroid / 10000)
        assert raw[5] == pytest.approx(features.spectral_rolloff / 20000)
        assert raw[8:21] == features.mfcc_mean
        assert raw[21:34] == features.mfcc_variance
        assert raw[34:42] == features.early_reflections
        assert raw[-7:] == features.octave_bands

    def test_reverberation_tracks_room(self, room_ir):
        features = extract_features(room_ir)
        assert features.rt60 == pytest.approx(0.5, rel=0.25)
        assert 0.1 <= features.rt60 <= 5.0
        assert 0.05 <= features.edt <= 3.0

    def test_first_early_reflection_bin_is_reference(self, room_ir):
        assert extract_features(room_ir).early_reflections[0] == pytest.approx(0.0)

    def test_short_response_has_zero_mfccs(self):
        ir = ImpulseResponse.from_signal(np.linspace(1.0, 0.0, 100), SAMPLE_RATE)
        features = extract_features(ir)
        assert len(features.raw) == FEATURE_VECTOR_LENGTH
        assert features.mfcc_mean == [0.0] * 13
        assert features.mfcc_variance == [0.0] * 13

    def test_silent_tail_uses_clarity_sentinel(self):
        data = np.zeros(9_600, dtype=np.float32)
        data[:2_000] = np.random.default_rng(0).standard_normal(2_000)
        features = extract_features(ImpulseResponse.from_signal(data, SAMPLE_RATE))
        assert features.c50 == 20.0
        assert features.c80 == 20.0

    def test_empty_response_rejected(self):
        with pytest.raises(ValueError):
            extract_features(ImpulseResponse.from_signal(np.zeros(0), SAMPLE_RATE))


class TestHelpers:
    def test_clarity_ratio(self):
        ir = np.zeros(9_600)
        ir[0] = 1.0
        ir[4_800] = 0.1
        assert compute_clarity_ratio(ir, SAMPLE_RATE, 0.05) == pytest.approx(20.0)
        ir[4_800] = 1.0
        assert compute_clarity_ratio(ir, SAMPLE_RATE, 0.05) == pytest.approx(0.0)

    def test_early_reflection_levels(self):
        ir = np.zeros(4_800)
        ir[0] = 1.0
        ir[480] = 0.1
        levels = compute_early_reflection_energy(ir, SAMPLE_RATE)
        assert levels[0] == pytest.approx(0.0)
        assert levels[1] == pytest.approx(-20.0)
        assert levels[2] < -100

    def test_mfcc_matrix_shape(self):
        frames = np.random.default_rng(1).standard_normal((4, 1200))
        assert compute_mfcc_matrix(frames, SAMPLE_RATE).shape == (4, 13)
        assert compute_mfcc_matrix(np.zeros((0, 1200)), SAMPLE_RATE).shape == (0, 13)

    def test_fit_to_length(self):
        assert fit_to_length([1, 2], 4) == [1.0, 2.0, 0.0, 0.0]
        assert fit_to_length([1, 2, 3], 2) == [1.0, 2.0]


def test_feature_vector_checks_raw_length():
    with pytest.raises(ValueError):
        FeatureVector(
            rt60=0.5,
            edt=0.4,
            c50=0.0,
            c80=0.0,
            spectral_centroid=0.0,
            spectral_rolloff=0.0,
            spectral_flux=0.0,
            spectral_flatness=0.0,
            mfcc_mean=[],
            mfcc_variance=[],
            early_reflections=[],
            octave_bands=[],
            raw=[0.0] * 59,
        )
