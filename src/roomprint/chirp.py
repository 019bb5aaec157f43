"""
Logarithmic sine sweeps used as the acoustic probe.

Two presets:
- Audible: 200 Hz - 18 kHz, higher accuracy, clearly audible
- Ultrasonic: 15 kHz - 20 kHz, barely audible, narrower band
"""

from __future__ import annotations

import math

import numpy as np

from .impulse_response import MAX_IR_SECONDS
from .models import ChirpConfig, ChirpMode

DEFAULT_SAMPLE_RATE = 48_000

# Preset parameters without the sample rate, which comes from the device.
CHIRP_PRESETS: dict[ChirpMode, dict[str, float]] = {
    ChirpMode.AUDIBLE: {
        "start_frequency": 200.0,
        "end_frequency": 18_000.0,
        "duration_seconds": 0.5,
        "fade_seconds": 0.01,
    },
    ChirpMode.ULTRASONIC: {
        "start_frequency": 15_000.0,
        "end_frequency": 20_000.0,
        "duration_seconds": 0.3,
        "fade_seconds": 0.005,
    },
}


def get_chirp_config(mode: ChirpMode | str, sample_rate: int = DEFAULT_SAMPLE_RATE) -> ChirpConfig:
    mode = ChirpMode(mode)
    return ChirpConfig(mode=mode, sample_rate=sample_rate, **CHIRP_PRESETS[mode])


def generate_chirp(config: ChirpConfig) -> np.ndarray:
    """
    Exponential sweep with phase ``2*pi*f1*T/k * (exp(k*t/T) - 1)``, ``k = ln(f2/f1)``.

    The instantaneous frequency ``f1 * exp(k*t/T)`` spends equal time per
    octave, so every octave receives the same probe energy.
    """
    num_samples = int(math.floor(config.duration_seconds * config.sample_rate))
    k = math.log(config.end_frequency / config.start_frequency)
    t_norm = np.arange(num_samples, dtype=np.float64) / config.sample_rate / config.duration_seconds
    phase = (2 * math.pi * config.start_frequency * config.duration_seconds / k) * np.expm1(k * t_norm)
    signal = np.sin(phase)
    _apply_fade_envelope(signal, config.sample_rate, config.fade_seconds)
    return signal.astype(np.float32)


def _apply_fade_envelope(signal: np.ndarray, sample_rate: int, fade_seconds: float) -> None:
    """Raised-cosine fade-in and fade-out applied in place."""
    fade_samples = min(int(math.floor(fade_seconds * sample_rate)), signal.size)
    if fade_samples <= 0:
        return
    envelope = 0.5 * (1 - np.cos(np.pi * np.arange(fade_samples) / fade_samples))
    signal[:fade_samples] *= envelope
    signal[signal.size - fade_samples :] *= envelope[::-1]


def generate_chirp_preset(mode: ChirpMode | str, sample_rate: int = DEFAULT_SAMPLE_RATE) -> np.ndarray:
    return generate_chirp(get_chirp_config(mode, sample_rate))


def generate_inverse_filter(chirp: np.ndarray, config: ChirpConfig) -> np.ndarray:
    """Time-reversed chirp with a ``1/sqrt(f(t)/f1)`` amplitude correction."""
    inverse = np.asarray(chirp, dtype=np.float64)[::-1].copy()
    k = math.log(config.end_frequency / config.start_frequency)
    t_norm = np.arange(inverse.size) / config.sample_rate / config.duration_seconds
    freq_ratio = np.exp(k * (1 - t_norm))
    inverse *= 1 / np.sqrt(freq_ratio)
    return inverse.astype(np.float32)


def estimate_ir_duration(sample_rate: int) -> int:
    """Samples to keep for an impulse response; most rooms have RT60 under 2 s."""
    return int(math.floor(MAX_IR_SECONDS * sample_rate))
