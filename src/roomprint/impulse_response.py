"""
Room impulse response extraction and decay-time estimation.

The recorded chirp response is deconvolved against the emitted chirp in
the frequency domain:

    H(f) = Y(f) * conj(X(f)) / (|X(f)|^2 + eps)

where Y is the recording, X the chirp and eps keeps bins near spectral
nulls of the chirp from blowing up.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .models import CaptureResult, ImpulseResponse
from .signal_processing import EPSILON, fft, ifft, next_power_of_2, normalize, zero_pad

logger = logging.getLogger(__name__)

REGULARIZATION_EPSILON = 1e-3

MAX_IR_SECONDS = 2.5
MIN_IR_SECONDS = 0.1
PRE_PEAK_SECONDS = 0.001
TRIM_WINDOW_SECONDS = 0.05
TRIM_THRESHOLD_RATIO = 0.001  # -60 dB below the direct sound

RT60_RANGE = (0.1, 5.0)
EDT_RANGE = (0.05, 3.0)


def deconvolve(
    recorded: np.ndarray,
    chirp: np.ndarray,
    epsilon: float = REGULARIZATION_EPSILON,
) -> np.ndarray:
    """Regularised spectral division of ``recorded`` by ``chirp``, peak-normalised."""
    recorded = np.asarray(recorded, dtype=np.float64)
    chirp = np.asarray(chirp, dtype=np.float64)
    if recorded.size == 0 or chirp.size == 0:
        raise ValueError("recorded signal and chirp must be non-empty")

    # Linear (not circular) convolution length.
    fft_size = next_power_of_2(recorded.size + chirp.size - 1)
    Y = fft(zero_pad(recorded, fft_size))
    X = fft(zero_pad(chirp, fft_size))

    half = fft_size // 2 + 1
    Xh = X[:half]
    H_half = Y[:half] * np.conj(Xh) / (Xh.real**2 + Xh.imag**2 + epsilon)

    full = np.empty(fft_size, dtype=np.complex128)
    full[:half] = H_half
    if fft_size > 2:
        full[half:] = np.conj(H_half[1 : fft_size - half + 1][::-1])

    ir = np.real(ifft(full)).astype(np.float32)
    logger.debug("Deconvolved %s recorded samples with fft_size=%s", recorded.size, fft_size)
    return normalize(ir)


def trim_impulse_response(ir: np.ndarray, sample_rate: int) -> np.ndarray:
    """
    Cut the impulse response from just before the direct sound to where
    the 50 ms sliding RMS first drops 60 dB below the peak.

    The result is capped at 2.5 s and never shorter than 100 ms (unless the
    input itself is shorter).
    """
    ir = np.asarray(ir, dtype=np.float32)
    if ir.size == 0:
        return ir.copy()
    max_length = int(math.floor(MAX_IR_SECONDS * sample_rate))

    peak_idx = int(np.argmax(np.abs(ir)))
    peak_val = float(abs(ir[peak_idx]))
    start_idx = max(0, peak_idx - int(math.floor(PRE_PEAK_SECONDS * sample_rate)))

    threshold = peak_val * TRIM_THRESHOLD_RATIO
    end_idx = min(ir.size, start_idx + max_length)

    window = int(math.floor(TRIM_WINDOW_SECONDS * sample_rate))
    first, last = start_idx + window, end_idx - window
    if window > 0 and last > first:
        squared = np.concatenate(([0.0], np.cumsum(ir.astype(np.float64) ** 2)))
        starts = np.arange(first, last)
        window_rms = np.sqrt((squared[starts + window] - squared[starts]) / window)
        below = np.flatnonzero(window_rms < threshold)
        if below.size:
            end_idx = int(starts[below[0]]) + window

    min_length = int(math.floor(MIN_IR_SECONDS * sample_rate))
    if end_idx - start_idx < min_length:
        end_idx = min(ir.size, start_idx + min_length)

    return ir[start_idx:end_idx].copy()


def extract_impulse_response(
    capture: CaptureResult,
    epsilon: float = REGULARIZATION_EPSILON,
) -> ImpulseResponse:
    ir = deconvolve(capture.captured, capture.chirp_reference, epsilon)
    trimmed = trim_impulse_response(ir, capture.sample_rate)
    logger.debug(
        "Extracted impulse response: %s samples (%.3f s)",
        trimmed.size,
        trimmed.size / capture.sample_rate,
    )
    return ImpulseResponse.from_signal(trimmed, capture.sample_rate)


def schroeder_integration(ir: np.ndarray) -> np.ndarray:
    """Backward cumulative energy normalised by the total energy."""
    squared = np.asarray(ir, dtype=np.float64) ** 2
    schroeder = np.cumsum(squared[::-1])[::-1].copy()
    if schroeder.size and schroeder[0] > 0:
        schroeder /= schroeder[0]
    return schroeder


def schroeder_to_db(schroeder: np.ndarray) -> np.ndarray:
    return 10.0 * np.log10(np.maximum(np.asarray(schroeder, dtype=np.float64), EPSILON))


def find_decay_time(schroeder_db: np.ndarray, sample_rate: int, threshold_db: float) -> float:
    """Seconds until the decay curve first falls below ``threshold_db``."""
    schroeder_db = np.asarray(schroeder_db)
    below = np.flatnonzero(schroeder_db < threshold_db)
    if below.size:
        return float(below[0]) / sample_rate
    return schroeder_db.size / sample_rate


def estimate_rt60(ir: np.ndarray, sample_rate: int) -> float:
    """T30 estimate: ``2 * (t(-35 dB) - t(-5 dB))`` clamped to [0.1, 5] s."""
    schroeder_db = schroeder_to_db(schroeder_integration(ir))
    t5 = find_decay_time(schroeder_db, sample_rate, -5.0)
    t35 = find_decay_time(schroeder_db, sample_rate, -35.0)
    return float(np.clip(2.0 * (t35 - t5), *RT60_RANGE))


def estimate_edt(ir: np.ndarray, sample_rate: int) -> float:
    """Early decay time: ``6 * t(-10 dB)`` clamped to [0.05, 3] s."""
    schroeder_db = schroeder_to_db(schroeder_integration(ir))
    t10 = find_decay_time(schroeder_db, sample_rate, -10.0)
    return float(np.clip(6.0 * t10, *EDT_RANGE))
