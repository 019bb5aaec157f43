"""
Split of an impulse response into a late, diffuse part and an early part.

The late reverberation of a room is largely independent of where the phone
sits or how it is held, while the direct sound and first reflections change
with every placement. Features of the two parts are kept in separate blocks
of the output vector (late first) so a classifier can weight them
differently.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .features import (
    OCTAVE_BANDS,
    OCTAVE_CENTERS,
    compute_clarity_ratio,
    compute_early_reflection_energy,
    compute_mfcc_statistics,
    compute_octave_band_energy,
    compute_spectral_shape,
)
from .impulse_response import RT60_RANGE, estimate_edt, schroeder_integration, schroeder_to_db
from .models import (
    EARLY_REFLECTION_FEATURE_LENGTH,
    LATE_REVERB_FEATURE_LENGTH,
    EarlyReflectionFeatures,
    FeatureMetadata,
    ImpulseResponse,
    LateReverbFeatures,
    OrientationAwareFeatures,
)
from .signal_processing import (
    EPSILON,
    bandpass_filter,
    power_spectrum,
    rfft,
    spectral_centroid,
    spectral_flatness,
    spectrum_frequencies,
)

logger = logging.getLogger(__name__)


@dataclass
class DecompositionConfig:
    # Mixing time detection
    default_mixing_time_ms: float = 80.0
    short_ir_factor: float = 1.5
    envelope_window_ms: float = 5.0
    neighbourhood_windows: int = 5
    min_envelope_windows: int = 10
    cov_threshold: float = 0.5
    confirm_windows: int = 3
    min_mixing_time_ms: float = 20.0
    max_mixing_time_ms: float = 150.0

    # Late reverb features
    min_late_ms: float = 50.0
    low_freq_cutoff_hz: float = 300.0
    late_rt60_fallback: float = 0.5

    # Late reverb confidence
    confidence_min_late_ms: float = 100.0
    expected_late_energy_ratio: float = 0.2
    confidence_window_ms: float = 10.0
    confidence_min_windows: int = 5
    decay_tolerance: float = 1.1
    length_weight: float = 0.3
    energy_weight: float = 0.3
    smoothness_weight: float = 0.4


DEFAULT_DECOMPOSITION = DecompositionConfig()

DEFAULT_LATE_DECAY_RATES = (0.5, 0.5, 0.5, 0.4, 0.4, 0.3, 0.3)
DEFAULT_LATE_ENVELOPE_DB = -6.0


def _window_energies(signal: np.ndarray, window_samples: int) -> np.ndarray:
    """Energy of consecutive non-overlapping windows; a trailing partial window is dropped."""
    signal = np.asarray(signal, dtype=np.float64)
    if window_samples <= 0:
        return np.zeros(0)
    count = signal.size // window_samples
    return (signal[: count * window_samples] ** 2).reshape(count, window_samples).sum(axis=1)


def _neighbourhood_cov(envelope: np.ndarray, half: int) -> np.ndarray:
    """CoV of the ``2*half+1`` windows centred on each of ``envelope[half:-half]``."""
    if envelope.size < 2 * half + 1:
        return np.zeros(0)
    segments = sliding_window_view(envelope, 2 * half + 1)
    seg_mean = segments.mean(axis=1)
    seg_std = segments.std(axis=1)
    return np.where(seg_mean > EPSILON, seg_std / np.where(seg_mean > EPSILON, seg_mean, 1.0), 0.0)


def detect_mixing_time(
    ir: np.ndarray,
    sample_rate: int,
    config: DecompositionConfig = DEFAULT_DECOMPOSITION,
) -> float:
    """
    Time in ms after which the energy envelope looks statistically uniform.

    The coefficient of variation of 5 ms window energies is taken over a
    +-5 window neighbourhood. Discrete reflections give a spiky envelope and
    a high CoV; the diffuse tail gives a low one. The mixing time is the
    first point where the CoV drops below the threshold and stays there for
    the confirming windows, clamped to the configured range.
    """
    duration_ms = len(ir) / sample_rate * 1000
    if duration_ms < config.default_mixing_time_ms * config.short_ir_factor:
        return min(config.default_mixing_time_ms, duration_ms * 0.5)

    window_ms = config.envelope_window_ms
    envelope = _window_energies(ir, int(math.floor(window_ms / 1000 * sample_rate)))
    if envelope.size < config.min_envelope_windows:
        return config.default_mixing_time_ms

    half = config.neighbourhood_windows
    cov = _neighbourhood_cov(envelope, half)

    low = cov < config.cov_threshold
    mixing_idx = cov.size
    for i in np.flatnonzero(low):
        if low[i : i + config.confirm_windows].all():
            mixing_idx = int(i) + half
            break

    detected = mixing_idx * window_ms
    return float(min(config.max_mixing_time_ms, max(config.min_mixing_time_ms, detected)))


def estimate_late_rt60(late_ir: np.ndarray, sample_rate: int, fallback: float = 0.5) -> float:
    """
    T20 estimate from the -5 dB and -25 dB points of the late-only decay
    curve, extrapolated to 60 dB. ``fallback`` when either point is missing.
    """
    schroeder_db = schroeder_to_db(schroeder_integration(late_ir))
    below_5 = np.flatnonzero(schroeder_db <= -5.0)
    below_25 = np.flatnonzero(schroeder_db <= -25.0)
    if below_5.size == 0 or below_25.size == 0 or below_5[0] == 0 or below_25[0] <= below_5[0]:
        return fallback
    t5 = below_5[0] / sample_rate
    t25 = below_25[0] / sample_rate
    decay_rate = 20.0 / (t25 - t5)  # dB/s
    return float(np.clip(60.0 / decay_rate, *RT60_RANGE))


def compute_late_decay_rates(late_ir: np.ndarray, sample_rate: int, fallback: float = 0.5) -> list[float]:
    nyquist_cap = sample_rate / 2 - 1
    rates = []
    for band in OCTAVE_BANDS:
        filtered = bandpass_filter(late_ir, sample_rate, band.low_hz, min(band.high_hz, nyquist_cap))
        rates.append(estimate_late_rt60(filtered, sample_rate, fallback))
    return rates


def compute_low_frequency_fraction(signal: np.ndarray, sample_rate: int, cutoff_hz: float) -> float:
    """Share of spectral power at or below ``cutoff_hz``."""
    spectrum = rfft(signal)
    power = power_spectrum(spectrum)
    total = float(power.sum())
    if total <= 0:
        return 0.0
    resolution = sample_rate / spectrum.size
    max_bin = min(int(math.ceil(cutoff_hz / resolution)), power.size - 1)
    return float(power[: max_bin + 1].sum()) / total


def default_late_reverb_features(mixing_time_ms: float, late_rt60: float = 0.5) -> LateReverbFeatures:
    return LateReverbFeatures(
        late_rt60=late_rt60,
        late_decay_rates=list(DEFAULT_LATE_DECAY_RATES),
        late_spectral_envelope=[DEFAULT_LATE_ENVELOPE_DB] * len(OCTAVE_CENTERS),
        late_energy=0.3,
        late_spectral_centroid=0.2,
        late_spectral_flatness=0.5,
        low_freq_mode_energy=0.2,
        mixing_time_ms=mixing_time_ms,
    )


def extract_late_reverb_features(
    ir: np.ndarray,
    sample_rate: int,
    mixing_sample: int,
    config: DecompositionConfig = DEFAULT_DECOMPOSITION,
) -> LateReverbFeatures:
    ir = np.asarray(ir, dtype=np.float64)
    late = ir[mixing_sample:]
    mixing_time_ms = mixing_sample / sample_rate * 1000
    if late.size < sample_rate * config.min_late_ms / 1000:
        logger.debug("Late segment only %s samples, using default late features", late.size)
        return default_late_reverb_features(mixing_time_ms, config.late_rt60_fallback)

    spectrum = rfft(late)
    power = power_spectrum(spectrum)
    freqs = spectrum_frequencies(spectrum.size, sample_rate)
    total_energy = float((ir**2).sum())

    return LateReverbFeatures(
        late_rt60=estimate_late_rt60(late, sample_rate, config.late_rt60_fallback),
        late_decay_rates=compute_late_decay_rates(late, sample_rate, config.late_rt60_fallback),
        late_spectral_envelope=compute_octave_band_energy(late, sample_rate),
        late_energy=float((late**2).sum()) / max(total_energy, EPSILON),
        late_spectral_centroid=min(spectral_centroid(power, freqs) / 10000.0, 1.0),
        late_spectral_flatness=spectral_flatness(power),
        low_freq_mode_energy=compute_low_frequency_fraction(late, sample_rate, config.low_freq_cutoff_hz),
        mixing_time_ms=mixing_time_ms,
    )


def extract_early_reflection_features(ir: np.ndarray, sample_rate: int) -> EarlyReflectionFeatures:
    """Placement-sensitive descriptors, computed over the whole impulse response."""
    shape = compute_spectral_shape(ir, sample_rate)
    mfcc_mean, mfcc_variance = compute_mfcc_statistics(ir, sample_rate)
    return EarlyReflectionFeatures(
        edt=estimate_edt(ir, sample_rate),
        c50=compute_clarity_ratio(ir, sample_rate, 0.05),
        c80=compute_clarity_ratio(ir, sample_rate, 0.08),
        early_reflections=compute_early_reflection_energy(ir, sample_rate),
        spectral_centroid=shape.centroid,
        spectral_rolloff=shape.rolloff,
        spectral_flux=shape.flux,
        spectral_flatness=shape.flatness,
        mfcc_mean=mfcc_mean,
        mfcc_variance=mfcc_variance,
        octave_bands=compute_octave_band_energy(ir, sample_rate),
    )


def compute_late_reverb_confidence(
    ir: np.ndarray,
    sample_rate: int,
    mixing_sample: int,
    config: DecompositionConfig = DEFAULT_DECOMPOSITION,
) -> float:
    """Score in [0, 1] of how trustworthy the late-reverb block is."""
    ir = np.asarray(ir, dtype=np.float64)
    late = ir[mixing_sample:]

    late_ms = late.size / sample_rate * 1000
    length_score = min(late_ms / config.confidence_min_late_ms, 1.0)

    total_energy = float((ir**2).sum())
    energy_ratio = float((late**2).sum()) / total_energy if total_energy > 0 else 0.0
    energy_score = min(energy_ratio / config.expected_late_energy_ratio, 1.0)

    envelope = _window_energies(late, int(math.floor(config.confidence_window_ms / 1000 * sample_rate)))
    if envelope.size < config.confidence_min_windows:
        return length_score * 0.5

    decreasing = envelope[1:] <= envelope[:-1] * config.decay_tolerance
    smoothness_score = float(decreasing.mean())

    return (
        config.length_weight * length_score
        + config.energy_weight * energy_score
        + config.smoothness_weight * smoothness_score
    )


def extract_orientation_aware_features(
    ir: ImpulseResponse,
    config: DecompositionConfig | None = None,
) -> OrientationAwareFeatures:
    config = config or DEFAULT_DECOMPOSITION
    data, sample_rate = ir.data, ir.sample_rate
    if data.size == 0:
        raise ValueError("impulse response is empty")

    mixing_time_ms = detect_mixing_time(data, sample_rate, config)
    mixing_sample = int(math.floor(mixing_time_ms / 1000 * sample_rate))

    late = extract_late_reverb_features(data, sample_rate, mixing_sample, config)
    early = extract_early_reflection_features(data, sample_rate)
    confidence = compute_late_reverb_confidence(data, sample_rate, mixing_sample, config)

    metadata = FeatureMetadata(
        late_feature_count=LATE_REVERB_FEATURE_LENGTH,
        early_feature_count=EARLY_REFLECTION_FEATURE_LENGTH,
        late_feature_start_idx=0,
        late_feature_end_idx=LATE_REVERB_FEATURE_LENGTH,
        early_feature_start_idx=LATE_REVERB_FEATURE_LENGTH,
        early_feature_end_idx=LATE_REVERB_FEATURE_LENGTH + EARLY_REFLECTION_FEATURE_LENGTH,
        detected_mixing_time_ms=mixing_time_ms,
        late_reverb_confidence=confidence,
    )
    logger.debug("Mixing time %.1f ms, late reverb confidence %.2f", mixing_time_ms, confidence)
    return OrientationAwareFeatures(
        late_reverb_features=late,
        early_reflection_features=early,
        raw=late.values() + early.values(),
        feature_metadata=metadata,
    )
