"""
Acoustic fingerprint of a room impulse response.

The 60-slot vector, in order:
- RT60, EDT (reverberation)
- C50, C80 (clarity)
- centroid/10000, rolloff/20000, flux, flatness (spectral shape)
- 13 MFCC means, 13 MFCC variances
- 8 early-reflection bins (0-80 ms in 10 ms steps, dB re first bin)
- 7 octave-band energies (125 Hz - 8 kHz, dB re total)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import NamedTuple, Sequence

import numpy as np

from .impulse_response import estimate_edt, estimate_rt60
from .models import FEATURE_VECTOR_LENGTH, FeatureVector, ImpulseResponse
from .signal_processing import (
    EPSILON,
    apply_window,
    dct,
    frame_signal,
    hann_window,
    linear_to_db,
    mel_filterbank,
    next_power_of_2,
    octave_band_energies,
    power_spectrum,
    rfft,
    spectral_centroid,
    spectral_flatness,
    spectral_rolloff,
    spectrum_frequencies,
)

logger = logging.getLogger(__name__)

NUM_MFCC = 13
NUM_MEL_FILTERS = 26
FRAME_SIZE_MS = 25
FRAME_HOP_MS = 10

EARLY_REFLECTION_BINS = 8
EARLY_REFLECTION_STEP_MS = 10

CLARITY_SENTINEL_DB = 20.0


@dataclass(frozen=True)
class OctaveBand:
    center_hz: float
    name: str

    @property
    def low_hz(self) -> float:
        return self.center_hz / math.sqrt(2)

    @property
    def high_hz(self) -> float:
        return self.center_hz * math.sqrt(2)


OCTAVE_BANDS: tuple[OctaveBand, ...] = (
    OctaveBand(125, "125Hz"),
    OctaveBand(250, "250Hz"),
    OctaveBand(500, "500Hz"),
    OctaveBand(1000, "1kHz"),
    OctaveBand(2000, "2kHz"),
    OctaveBand(4000, "4kHz"),
    OctaveBand(8000, "8kHz"),
)
OCTAVE_CENTERS: tuple[float, ...] = tuple(band.center_hz for band in OCTAVE_BANDS)


class SpectralShape(NamedTuple):
    centroid: float
    rolloff: float
    flux: float
    flatness: float


def fit_to_length(values: Sequence[float], length: int) -> list[float]:
    """Zero-pad or truncate to exactly ``length`` values."""
    vector = [float(v) for v in values[:length]]
    vector.extend([0.0] * (length - len(vector)))
    return vector


def compute_clarity_ratio(ir: np.ndarray, sample_rate: int, split_seconds: float) -> float:
    """``10*log10(early/late)`` around ``split_seconds``; +20 dB when the tail is silent."""
    squared = np.asarray(ir, dtype=np.float64) ** 2
    split = int(math.floor(split_seconds * sample_rate))
    early = float(squared[:split].sum())
    late = float(squared[split:].sum())
    if late < EPSILON:
        return CLARITY_SENTINEL_DB
    return float(10.0 * math.log10(max(early, EPSILON) / late))


def compute_spectral_shape(signal: np.ndarray, sample_rate: int) -> SpectralShape:
    """Single-frame spectral descriptors; flux is the L2 norm of the power spectrum."""
    spectrum = rfft(signal)
    power = power_spectrum(spectrum)
    freqs = spectrum_frequencies(spectrum.size, sample_rate)
    return SpectralShape(
        centroid=spectral_centroid(power, freqs),
        rolloff=spectral_rolloff(power, freqs),
        flux=float(np.sqrt(power.sum())),
        flatness=spectral_flatness(power),
    )


def compute_mfcc_matrix(frames: np.ndarray, sample_rate: int) -> np.ndarray:
    """
    MFCCs for a ``(n_frames, frame_size)`` stack.

    Hann window, power spectrum zero-padded to a power of two, 26-band mel
    filterbank on that same FFT grid, natural log floored at 1e-10, DCT-II.
    """
    frames = np.asarray(frames, dtype=np.float32)
    if frames.ndim != 2 or frames.shape[0] == 0:
        return np.zeros((0, NUM_MFCC))
    frame_size = frames.shape[1]
    fft_size = next_power_of_2(frame_size)
    windowed = apply_window(frames, hann_window(frame_size))
    power = power_spectrum(rfft(windowed))
    filterbank = mel_filterbank(NUM_MEL_FILTERS, fft_size, sample_rate, 0.0, sample_rate / 2)
    mel_energies = np.log(np.maximum(power @ filterbank.T, EPSILON))
    return dct(mel_energies, NUM_MFCC)


def compute_mfcc_statistics(
    signal: np.ndarray,
    sample_rate: int,
    frame_ms: float = FRAME_SIZE_MS,
    hop_ms: float = FRAME_HOP_MS,
) -> tuple[list[float], list[float]]:
    frame_size = max(1, int(math.floor(frame_ms / 1000 * sample_rate)))
    hop_size = max(1, int(math.floor(hop_ms / 1000 * sample_rate)))
    frames = frame_signal(signal, frame_size, hop_size)
    if len(frames) == 0:
        return [0.0] * NUM_MFCC, [0.0] * NUM_MFCC
    mfccs = compute_mfcc_matrix(frames.as_array(), sample_rate)
    return mfccs.mean(axis=0).tolist(), mfccs.var(axis=0).tolist()


def compute_early_reflection_energy(ir: np.ndarray, sample_rate: int) -> list[float]:
    """Energy in 10 ms bins over the first 80 ms, in dB relative to the first bin."""
    squared = np.asarray(ir, dtype=np.float64) ** 2
    bin_samples = int(math.floor(EARLY_REFLECTION_STEP_MS / 1000 * sample_rate))
    energies = [
        float(squared[b * bin_samples : (b + 1) * bin_samples].sum())
        for b in range(EARLY_REFLECTION_BINS)
    ]
    reference = max(energies[0], EPSILON)
    return [linear_to_db(math.sqrt(e / reference)) for e in energies]


def compute_octave_band_energy(
    signal: np.ndarray,
    sample_rate: int,
    centers: Sequence[float] = OCTAVE_CENTERS,
) -> list[float]:
    spectrum = rfft(signal)
    return octave_band_energies(power_spectrum(spectrum), sample_rate, centers, spectrum.size)


def compile_feature_vector(
    rt60: float,
    edt: float,
    c50: float,
    c80: float,
    shape: SpectralShape,
    mfcc_mean: Sequence[float],
    mfcc_variance: Sequence[float],
    early_reflections: Sequence[float],
    octave_bands: Sequence[float],
) -> list[float]:
    vector = [
        rt60,
        edt,
        c50,
        c80,
        shape.centroid / 10000.0,
        shape.rolloff / 20000.0,
        shape.flux,
        shape.flatness,
    ]
    vector.extend(mfcc_mean)
    vector.extend(mfcc_variance)
    vector.extend(early_reflections)
    vector.extend(octave_bands)
    return fit_to_length(vector, FEATURE_VECTOR_LENGTH)


def extract_features(ir: ImpulseResponse) -> FeatureVector:
    data, sample_rate = ir.data, ir.sample_rate
    if data.size == 0:
        raise ValueError("impulse response is empty")

    rt60 = estimate_rt60(data, sample_rate)
    edt = estimate_edt(data, sample_rate)
    c50 = compute_clarity_ratio(data, sample_rate, 0.05)
    c80 = compute_clarity_ratio(data, sample_rate, 0.08)
    shape = compute_spectral_shape(data, sample_rate)
    mfcc_mean, mfcc_variance = compute_mfcc_statistics(data, sample_rate)
    early_reflections = compute_early_reflection_energy(data, sample_rate)
    octave_bands = compute_octave_band_energy(data, sample_rate)

    raw = compile_feature_vector(
        rt60, edt, c50, c80, shape, mfcc_mean, mfcc_variance, early_reflections, octave_bands
    )
    logger.debug(
        "Extracted chirp features: rt60=%.3f edt=%.3f c50=%.1f c80=%.1f centroid=%.0f",
        rt60,
        edt,
        c50,
        c80,
        shape.centroid,
    )
    return FeatureVector(
        rt60=rt60,
        edt=edt,
        c50=c50,
        c80=c80,
        spectral_centroid=shape.centroid,
        spectral_rolloff=shape.rolloff,
        spectral_flux=shape.flux,
        spectral_flatness=shape.flatness,
        mfcc_mean=list(mfcc_mean),
        mfcc_variance=list(mfcc_variance),
        early_reflections=early_reflections,
        octave_bands=octave_bands,
        raw=raw,
    )
