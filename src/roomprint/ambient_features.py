"""
Passive (ambient) room fingerprint.

Without a probe signal there is no impulse response, so the recording is
described statistically over 50 ms frames: spectral shape over time, MFCCs
with their first difference, the noise floor, mains hum and periodicity.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .features import NUM_MFCC, compute_mfcc_matrix, fit_to_length
from .models import AMBIENT_FEATURE_LENGTH, AmbientFeatureVector
from .signal_processing import (
    apply_window,
    autocorrelation_peaks,
    detect_peaks_at_frequencies,
    frame_signal,
    hann_window,
    linear_to_db,
    octave_band_energies,
    percentile,
    power_spectrum,
    rfft,
    spectral_centroid,
    spectral_flatness,
    spectral_rolloff,
    spectrum_frequencies,
)

logger = logging.getLogger(__name__)

FRAME_SIZE_MS = 50
FRAME_HOP_MS = 25

# Mains frequencies and their low harmonics (50 Hz and 60 Hz grids).
HVAC_FREQUENCIES = (50.0, 60.0, 100.0, 120.0, 150.0, 180.0)
AMBIENT_OCTAVE_CENTERS = (31.5, 63.0, 125.0, 250.0, 500.0, 1000.0, 2000.0, 4000.0, 8000.0, 16000.0)

AUTOCORRELATION_MAX_LAG_SECONDS = 0.5
AUTOCORRELATION_PEAKS = 5

SILENCE_DB = -60.0
DB_SCALE = 60.0


def _frame_power_spectra(frames: np.ndarray, sample_rate: int) -> tuple[np.ndarray, np.ndarray]:
    windowed = apply_window(frames, hann_window(frames.shape[1]))
    spectrum = rfft(windowed)
    return power_spectrum(spectrum), spectrum_frequencies(spectrum.shape[-1], sample_rate)


def compute_spectral_statistics(frames: np.ndarray, sample_rate: int) -> dict[str, float]:
    """Mean and standard deviation over frames of centroid, rolloff, flux and flatness."""
    names = ("centroid", "rolloff", "flux", "flatness")
    if frames.shape[0] == 0:
        return {f"{name}_{stat}": 0.0 for name in names for stat in ("mean", "std")}

    power, freqs = _frame_power_spectra(frames, sample_rate)
    tracks = {
        "centroid": np.atleast_1d(spectral_centroid(power, freqs)),
        "rolloff": np.atleast_1d(spectral_rolloff(power, freqs)),
        # Flux of the first frame is zero.
        "flux": np.concatenate(([0.0], np.sqrt((np.diff(power, axis=0) ** 2).sum(axis=1)))),
        "flatness": np.atleast_1d(spectral_flatness(power)),
    }
    stats = {}
    for name in names:
        stats[f"{name}_mean"] = float(tracks[name].mean())
        stats[f"{name}_std"] = float(tracks[name].std())
    return stats


def compute_mfcc_with_delta(
    frames: np.ndarray,
    sample_rate: int,
) -> tuple[list[float], list[float], list[float]]:
    if frames.shape[0] == 0:
        zeros = [0.0] * NUM_MFCC
        return zeros, list(zeros), list(zeros)
    mfccs = compute_mfcc_matrix(frames, sample_rate)
    if mfccs.shape[0] > 1:
        delta = np.diff(mfccs, axis=0).mean(axis=0).tolist()
    else:
        delta = [0.0] * NUM_MFCC
    return mfccs.mean(axis=0).tolist(), mfccs.var(axis=0).tolist(), delta


def compute_noise_floor(frames: np.ndarray) -> tuple[float, float, float, float]:
    """Mean frame RMS and its 10th/50th/90th percentiles, in dB."""
    if frames.shape[0] == 0:
        return SILENCE_DB, SILENCE_DB, SILENCE_DB, SILENCE_DB
    frame_rms = np.sqrt(np.mean(np.asarray(frames, dtype=np.float64) ** 2, axis=1))
    return (
        linear_to_db(float(frame_rms.mean())),
        linear_to_db(percentile(frame_rms, 10)),
        linear_to_db(percentile(frame_rms, 50)),
        linear_to_db(percentile(frame_rms, 90)),
    )


def compute_power_variance(frames: np.ndarray) -> float:
    if frames.shape[0] == 0:
        return 0.0
    frame_power = np.mean(np.asarray(frames, dtype=np.float64) ** 2, axis=1)
    return float(frame_power.var())


def extract_ambient_features(audio: np.ndarray, sample_rate: int) -> AmbientFeatureVector:
    audio = np.asarray(audio, dtype=np.float32).reshape(-1)
    if audio.size == 0:
        raise ValueError("ambient recording is empty")

    frame_size = max(1, int(math.floor(FRAME_SIZE_MS / 1000 * sample_rate)))
    hop_size = max(1, int(math.floor(FRAME_HOP_MS / 1000 * sample_rate)))
    frames = frame_signal(audio, frame_size, hop_size).as_array()
    logger.debug("Ambient analysis: %s samples at %s Hz, %s frames", audio.size, sample_rate, frames.shape[0])

    spectral = compute_spectral_statistics(frames, sample_rate)
    mfcc_mean, mfcc_variance, mfcc_delta = compute_mfcc_with_delta(frames, sample_rate)
    rms_level, p10, p50, p90 = compute_noise_floor(frames)

    spectrum = rfft(audio)
    full_power = power_spectrum(spectrum)
    octave_bands = octave_band_energies(full_power, sample_rate, AMBIENT_OCTAVE_CENTERS, spectrum.size)
    power_variance = compute_power_variance(frames)
    hvac_peaks = detect_peaks_at_frequencies(full_power, sample_rate, HVAC_FREQUENCIES, fft_size=spectrum.size)
    autocorrelation = autocorrelation_peaks(
        audio,
        int(math.floor(AUTOCORRELATION_MAX_LAG_SECONDS * sample_rate)),
        AUTOCORRELATION_PEAKS,
    )

    vector = [
        spectral["centroid_mean"] / 10000.0,
        spectral["centroid_std"] / 10000.0,
        spectral["rolloff_mean"] / 20000.0,
        spectral["rolloff_std"] / 20000.0,
        spectral["flux_mean"],
        spectral["flux_std"],
        spectral["flatness_mean"],
        spectral["flatness_std"],
    ]
    vector.extend(mfcc_mean)
    vector.extend(mfcc_variance)
    vector.extend(mfcc_delta)
    vector.extend(level / DB_SCALE for level in (rms_level, p10, p50, p90))
    vector.extend(level / DB_SCALE for level in octave_bands)
    vector.append(power_variance)
    vector.extend(level / DB_SCALE for level in hvac_peaks)
    vector.extend(autocorrelation)

    logger.debug("Ambient noise floor %.1f dB, hum levels %s", rms_level, [round(p, 1) for p in hvac_peaks])
    return AmbientFeatureVector(
        spectral_centroid_mean=spectral["centroid_mean"],
        spectral_centroid_std=spectral["centroid_std"],
        spectral_rolloff_mean=spectral["rolloff_mean"],
        spectral_rolloff_std=spectral["rolloff_std"],
        spectral_flux_mean=spectral["flux_mean"],
        spectral_flux_std=spectral["flux_std"],
        spectral_flatness_mean=spectral["flatness_mean"],
        spectral_flatness_std=spectral["flatness_std"],
        mfcc_mean=mfcc_mean,
        mfcc_variance=mfcc_variance,
        mfcc_delta=mfcc_delta,
        rms_level=rms_level,
        rms_percentile_10=p10,
        rms_percentile_50=p50,
        rms_percentile_90=p90,
        octave_bands=octave_bands,
        power_variance=power_variance,
        hvac_peaks=hvac_peaks,
        autocorrelation=autocorrelation,
        raw=fit_to_length(vector, AMBIENT_FEATURE_LENGTH),
    )
