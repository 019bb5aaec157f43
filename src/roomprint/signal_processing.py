"""
DSP kernel shared by the impulse-response, chirp and ambient extractors.

Conventions:
- Signals are 1-D float arrays, spectra are complex128 arrays
- Transforms act on the last axis so stacks of frames go through one call
- Bin ``i`` of an ``N``-point transform sits at ``i * sample_rate / N`` Hz
- Degenerate inputs resolve to 1e-10 floors instead of NaN or infinity
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import numpy as np
import scipy.fft
from numpy.lib.stride_tricks import sliding_window_view
from scipy.signal import find_peaks

EPSILON = 1e-10
ROLLOFF_FRACTION = 0.85


class InvalidLengthError(ValueError):
    """Raised when a transform length is not a power of two."""


def next_power_of_2(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def zero_pad(signal: np.ndarray, length: int) -> np.ndarray:
    """Pad with zeros up to ``length``, or truncate when longer."""
    signal = np.asarray(signal)
    if signal.shape[-1] >= length:
        return signal[..., :length].copy()
    pad = [(0, 0)] * (signal.ndim - 1) + [(0, length - signal.shape[-1])]
    return np.pad(signal, pad)


def _bit_reversed_indices(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    source = np.arange(n)
    reversed_idx = np.zeros(n, dtype=np.int64)
    for _ in range(bits):
        reversed_idx = (reversed_idx << 1) | (source & 1)
        source = source >> 1
    return reversed_idx


def fft(spectrum: np.ndarray) -> np.ndarray:
    """
    Iterative radix-2 Cooley-Tukey transform along the last axis.

    Bit-reversal permutation followed by log2(N) butterfly stages with
    twiddle factors ``exp(-2j*pi*j/size)``.
    """
    data = np.asarray(spectrum, dtype=np.complex128)
    n = data.shape[-1] if data.ndim else 0
    if n <= 1:
        return data.copy()
    if n & (n - 1):
        raise InvalidLengthError(f"FFT input length must be a power of 2, got {n}")

    out = data[..., _bit_reversed_indices(n)]
    lead = out.shape[:-1]
    size = 2
    while size <= n:
        half = size // 2
        twiddle = np.exp(-2j * np.pi * np.arange(half) / size)
        blocks = out.reshape(*lead, n // size, size)
        even = blocks[..., :half].copy()
        odd = blocks[..., half:] * twiddle
        blocks[..., :half] = even + odd
        blocks[..., half:] = even - odd
        size *= 2
    return out


def ifft(spectrum: np.ndarray) -> np.ndarray:
    data = np.asarray(spectrum, dtype=np.complex128)
    n = data.shape[-1] if data.ndim else 0
    if n == 0:
        return data.copy()
    return np.conj(fft(np.conj(data))) / n


def rfft(signal: np.ndarray) -> np.ndarray:
    """Full complex spectrum of a real signal zero-padded to a power of two."""
    signal = np.asarray(signal, dtype=np.float64)
    padded = zero_pad(signal, next_power_of_2(signal.shape[-1]))
    return fft(padded)


def irfft(spectrum: np.ndarray) -> np.ndarray:
    return np.real(ifft(spectrum)).astype(np.float32)


def power_spectrum(fft_result: np.ndarray) -> np.ndarray:
    """First N/2+1 bins of ``|X|^2 / N``."""
    fft_result = np.asarray(fft_result)
    n = fft_result.shape[-1]
    half = fft_result[..., : n // 2 + 1]
    return (half.real**2 + half.imag**2) / n


def spectrum_frequencies(fft_size: int, sample_rate: float) -> np.ndarray:
    return np.arange(fft_size // 2 + 1) * (sample_rate / fft_size)


def hann_window(length: int) -> np.ndarray:
    if length <= 1:
        return np.ones(max(length, 0), dtype=np.float32)
    i = np.arange(length)
    return (0.5 * (1 - np.cos(2 * np.pi * i / (length - 1)))).astype(np.float32)


def hamming_window(length: int) -> np.ndarray:
    if length <= 1:
        return np.ones(max(length, 0), dtype=np.float32)
    i = np.arange(length)
    return (0.54 - 0.46 * np.cos(2 * np.pi * i / (length - 1))).astype(np.float32)


def apply_window(signal: np.ndarray, window: np.ndarray) -> np.ndarray:
    """Elementwise product; samples beyond the window length become zero."""
    signal = np.asarray(signal, dtype=np.float32)
    window = np.asarray(window, dtype=np.float32)
    result = np.zeros_like(signal)
    overlap = min(signal.shape[-1], window.shape[-1])
    result[..., :overlap] = signal[..., :overlap] * window[:overlap]
    return result


class FrameSequence(Sequence):
    """Restartable view of equal-length frames; a trailing partial frame is dropped."""

    def __init__(self, signal: np.ndarray, frame_size: int, hop_size: int) -> None:
        if frame_size <= 0 or hop_size <= 0:
            raise ValueError("frame_size and hop_size must be positive")
        data = np.array(signal, dtype=np.float32).reshape(-1)
        data.setflags(write=False)
        self._signal = data
        self.frame_size = int(frame_size)
        self.hop_size = int(hop_size)

    def __len__(self) -> int:
        if self._signal.size < self.frame_size:
            return 0
        return 1 + (self._signal.size - self.frame_size) // self.hop_size

    def __getitem__(self, index: int) -> np.ndarray:  # type: ignore[override]
        count = len(self)
        if index < 0:
            index += count
        if not 0 <= index < count:
            raise IndexError("frame index out of range")
        start = index * self.hop_size
        return self._signal[start : start + self.frame_size]

    def __iter__(self) -> Iterator[np.ndarray]:
        for index in range(len(self)):
            yield self[index]

    def as_array(self) -> np.ndarray:
        """Frames stacked as a read-only ``(n_frames, frame_size)`` matrix."""
        if len(self) == 0:
            return np.zeros((0, self.frame_size), dtype=np.float32)
        return sliding_window_view(self._signal, self.frame_size)[:: self.hop_size][: len(self)]


def frame_signal(signal: np.ndarray, frame_size: int, hop_size: int) -> FrameSequence:
    return FrameSequence(signal, frame_size, hop_size)


def hz_to_mel(hz: np.ndarray | float) -> np.ndarray | float:
    return 2595.0 * np.log10(1.0 + np.asarray(hz) / 700.0)


def mel_to_hz(mel: np.ndarray | float) -> np.ndarray | float:
    return 700.0 * (10.0 ** (np.asarray(mel) / 2595.0) - 1.0)


def mel_filterbank(
    num_filters: int,
    fft_size: int,
    sample_rate: float,
    low_freq: float = 0.0,
    high_freq: float | None = None,
) -> np.ndarray:
    """Triangular filters on mel-spaced FFT bins, shape ``(num_filters, fft_size//2+1)``."""
    high_freq = sample_rate / 2 if high_freq is None else high_freq
    mel_points = np.linspace(hz_to_mel(low_freq), hz_to_mel(high_freq), num_filters + 2)
    bin_points = np.floor((fft_size + 1) * mel_to_hz(mel_points) / sample_rate).astype(int)

    num_bins = fft_size // 2 + 1
    filterbank = np.zeros((num_filters, num_bins), dtype=np.float64)
    for i in range(num_filters):
        start, center, end = bin_points[i], bin_points[i + 1], bin_points[i + 2]
        for j in range(start, min(center, num_bins)):
            filterbank[i, j] = (j - start) / (center - start)
        for j in range(center, min(end, num_bins)):
            filterbank[i, j] = (end - j) / (end - center)
    return filterbank


def dct(values: np.ndarray, num_coeffs: int | None = None) -> np.ndarray:
    """Orthonormal-scaled type-II DCT along the last axis."""
    values = np.asarray(values, dtype=np.float64)
    n = values.shape[-1]
    num_coeffs = n if num_coeffs is None else num_coeffs
    if n == 0:
        return np.zeros(values.shape[:-1] + (num_coeffs,))
    return scipy.fft.dct(values, type=2, norm="ortho", axis=-1)[..., :num_coeffs]


def mean(values: Sequence[float] | np.ndarray) -> float:
    values = np.asarray(values, dtype=np.float64)
    return float(values.mean()) if values.size else 0.0


def variance(values: Sequence[float] | np.ndarray) -> float:
    values = np.asarray(values, dtype=np.float64)
    return float(values.var()) if values.size else 0.0


def std(values: Sequence[float] | np.ndarray) -> float:
    return float(np.sqrt(variance(values)))


def percentile(values: Sequence[float] | np.ndarray, pct: float) -> float:
    """Linear interpolation between order statistics; 0 for an empty input."""
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(np.percentile(values, pct))


def rms(signal: np.ndarray) -> float:
    signal = np.asarray(signal, dtype=np.float64)
    if signal.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(signal**2)))


def linear_to_db(value, reference: float = 1.0):
    db = 20.0 * np.log10(np.maximum(np.asarray(value, dtype=np.float64), EPSILON) / reference)
    return float(db) if np.ndim(db) == 0 else db


def db_to_linear(db):
    linear = 10.0 ** (np.asarray(db, dtype=np.float64) / 20.0)
    return float(linear) if np.ndim(linear) == 0 else linear


def normalize(signal: np.ndarray) -> np.ndarray:
    """Scale to unit peak; a silent signal is returned unchanged."""
    data = np.asarray(signal)
    peak = float(np.max(np.abs(data))) if data.size else 0.0
    if peak == 0.0:
        return signal
    return (data / peak).astype(np.float32)


# --- spectral shape -------------------------------------------------------


def spectral_centroid(power: np.ndarray, freqs: np.ndarray) -> np.ndarray | float:
    power = np.asarray(power, dtype=np.float64)
    total = power.sum(axis=-1)
    weighted = (power * freqs).sum(axis=-1)
    centroid = np.where(total > 0, weighted / np.where(total > 0, total, 1.0), 0.0)
    return float(centroid) if np.ndim(centroid) == 0 else centroid


def spectral_rolloff(
    power: np.ndarray,
    freqs: np.ndarray,
    fraction: float = ROLLOFF_FRACTION,
) -> np.ndarray | float:
    """Lowest frequency whose cumulative power reaches ``fraction`` of the total."""
    power = np.asarray(power, dtype=np.float64)
    cumulative = np.cumsum(power, axis=-1)
    threshold = fraction * cumulative[..., -1:]
    idx = np.argmax(cumulative >= threshold, axis=-1)
    rolloff = np.asarray(freqs)[idx]
    return float(rolloff) if np.ndim(rolloff) == 0 else rolloff


def spectral_flatness(power: np.ndarray) -> np.ndarray | float:
    """Geometric over arithmetic mean of the non-DC bins above 1e-10."""
    power = np.asarray(power, dtype=np.float64)[..., 1:]
    valid = power > EPSILON
    count = valid.sum(axis=-1)
    safe_count = np.maximum(count, 1)
    log_mean = np.where(valid, np.log(np.where(valid, power, 1.0)), 0.0).sum(axis=-1) / safe_count
    arith_mean = np.where(valid, power, 0.0).sum(axis=-1) / safe_count
    flatness = np.where(
        (count > 0) & (arith_mean > 0),
        np.exp(log_mean) / np.where(arith_mean > 0, arith_mean, 1.0),
        0.0,
    )
    return float(flatness) if np.ndim(flatness) == 0 else flatness


def band_bin_range(
    low_hz: float,
    high_hz: float,
    fft_size: int,
    sample_rate: float,
) -> tuple[int, int]:
    """Inclusive bin range covering ``low_hz .. high_hz`` in the half spectrum."""
    resolution = sample_rate / fft_size
    low_bin = int(np.floor(low_hz / resolution))
    high_bin = min(int(np.ceil(high_hz / resolution)), fft_size // 2)
    return low_bin, high_bin


def octave_band_energies(
    power: np.ndarray,
    sample_rate: float,
    center_frequencies: Sequence[float],
    fft_size: int | None = None,
) -> list[float]:
    """
    Energy per octave band (``c/sqrt2 .. c*sqrt2``) relative to the summed
    energy of all listed bands, in dB. Returns -60 dB everywhere for silence.
    """
    power = np.asarray(power, dtype=np.float64)
    fft_size = fft_size or 2 * (power.size - 1)
    nyquist_cap = sample_rate / 2 - 1
    energies = []
    for center in center_frequencies:
        low_bin, high_bin = band_bin_range(
            center / np.sqrt(2), min(center * np.sqrt(2), nyquist_cap), fft_size, sample_rate
        )
        energies.append(float(power[low_bin : high_bin + 1].sum()) if low_bin <= high_bin else 0.0)

    total = sum(energies)
    if total <= 0:
        return [-60.0] * len(energies)
    return [linear_to_db(np.sqrt(e / total)) for e in energies]


def detect_peaks_at_frequencies(
    power: np.ndarray,
    sample_rate: float,
    target_frequencies: Sequence[float],
    tolerance_hz: float = 5.0,
    fft_size: int | None = None,
) -> list[float]:
    """Strongest power (dB) within ``tolerance_hz`` of each target frequency."""
    power = np.asarray(power, dtype=np.float64)
    fft_size = fft_size or 2 * (power.size - 1)
    freqs = spectrum_frequencies(fft_size, sample_rate)
    peaks = []
    for target in target_frequencies:
        mask = np.abs(freqs - target) <= tolerance_hz
        if mask.any():
            level = float(power[mask].max())
        else:
            level = float(power[int(np.argmin(np.abs(freqs - target)))])
        peaks.append(float(10.0 * np.log10(max(level, EPSILON))))
    return peaks


def autocorrelation_peaks(
    signal: np.ndarray,
    max_lag: int,
    num_peaks: int = 5,
    min_lag: int | None = None,
) -> list[float]:
    """
    Largest local maxima of the normalised autocorrelation between
    ``min_lag`` (default 1% of the signal length) and ``max_lag``.
    Missing peaks are reported as zero.
    """
    signal = np.asarray(signal, dtype=np.float64)
    n = signal.size
    result = [0.0] * num_peaks
    if n < 3:
        return result
    centered = signal - signal.mean()
    spectrum = rfft(zero_pad(centered, next_power_of_2(2 * n)))
    acf = np.real(ifft(spectrum.real**2 + spectrum.imag**2))[:n]
    if acf[0] <= EPSILON:
        return result
    acf = acf / acf[0]

    min_lag = max(1, int(0.01 * n)) if min_lag is None else max(1, min_lag)
    max_lag = min(max_lag, n - 1)
    if max_lag <= min_lag:
        return result
    window = acf[min_lag : max_lag + 1]
    peak_idx, _ = find_peaks(window)
    values = sorted((float(window[i]) for i in peak_idx), reverse=True)[:num_peaks]
    result[: len(values)] = values
    return result


def bandpass_filter(
    signal: np.ndarray,
    sample_rate: float,
    low_hz: float,
    high_hz: float,
) -> np.ndarray:
    """Zero every FFT bin (both halves) outside ``low_hz .. high_hz``."""
    signal = np.asarray(signal, dtype=np.float64)
    n = signal.size
    if n == 0:
        return signal.astype(np.float32)
    spectrum = rfft(signal)
    size = spectrum.size
    bins = np.arange(size)
    freqs = np.minimum(bins, size - bins) * (sample_rate / size)
    mask = (freqs >= low_hz) & (freqs <= high_hz)
    return irfft(spectrum * mask)[:n]
