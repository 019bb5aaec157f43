"""Synthetic rooms and devices for offline runs and tests."""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from typing import Optional

import numpy as np
from scipy.signal import fftconvolve

from .models import DeviceOrientation

logger = logging.getLogger(__name__)

DECAY_60_DB = math.log(1000.0)  # ln(10**3): amplitude factor for a 60 dB drop


def synthesize_room_impulse_response(
    rt60: float,
    sample_rate: int,
    num_reflections: int = 6,
    seed: int | None = None,
) -> np.ndarray:
    """
    Direct sound at sample 0, a handful of discrete reflections in the first
    25 ms, and an exponentially decaying noise tail reaching -60 dB at ``rt60``.
    """
    rng = np.random.default_rng(seed)
    length = int(min(1.5 * rt60, 2.5) * sample_rate)
    t = np.arange(length) / sample_rate
    envelope = np.exp(-DECAY_60_DB * t / rt60)

    ir = np.zeros(length, dtype=np.float64)
    tail_start = int(0.005 * sample_rate)
    ir[tail_start:] = 0.3 * rng.standard_normal(length - tail_start) * envelope[tail_start:]
    for _ in range(num_reflections):
        delay = int(rng.uniform(0.003, 0.025) * sample_rate)
        if delay < length:
            ir[delay] += rng.uniform(0.3, 0.7) * envelope[delay] * rng.choice((-1.0, 1.0))
    ir[0] = 1.0
    return ir.astype(np.float32)


def synthetic_ambient_noise(
    duration_seconds: float,
    sample_rate: int,
    noise_level: float = 0.01,
    hum_frequency: float = 50.0,
    hum_level: float = 0.005,
    seed: int | None = None,
) -> np.ndarray:
    """Broadband noise plus mains hum with its second and third harmonics."""
    rng = np.random.default_rng(seed)
    n = int(math.ceil(duration_seconds * sample_rate))
    t = np.arange(n) / sample_rate
    hum = sum(
        (hum_level / harmonic) * np.sin(2 * np.pi * hum_frequency * harmonic * t)
        for harmonic in (1, 2, 3)
    )
    return (noise_level * rng.standard_normal(n) + hum).astype(np.float32)


class SimulatedRoom:
    """
    Audio source and sink sharing a virtual room.

    Whatever is played while a capture is in progress shows up in that
    capture convolved with the room's impulse response, at the offset at
    which it was played. A capture with no playback returns ambient noise.
    """

    def __init__(
        self,
        rt60: float = 0.6,
        sample_rate: int = 48_000,
        noise_level: float = 1e-4,
        hum_level: float = 0.0,
        playback_wait: float = 0.5,
        seed: int | None = None,
    ) -> None:
        self.rt60 = rt60
        self.noise_level = noise_level
        self.hum_level = hum_level
        self.playback_wait = playback_wait
        self._rng = np.random.default_rng(seed)
        self.impulse_response = synthesize_room_impulse_response(rt60, sample_rate, seed=seed)
        self._ir_sample_rate = sample_rate
        self._lock = threading.Lock()
        self._played = threading.Event()
        self._playback: Optional[tuple[np.ndarray, float]] = None

    def play(self, signal: np.ndarray, volume: float, sample_rate: int) -> np.ndarray:
        rendered = (np.asarray(signal, dtype=np.float32) * volume).astype(np.float32)
        with self._lock:
            self._playback = (rendered, time.monotonic())
        self._played.set()
        logger.debug("Simulated playback of %s samples", rendered.size)
        return rendered

    def capture(self, duration_seconds: float, sample_rate: int) -> np.ndarray:
        if sample_rate != self._ir_sample_rate:
            self.impulse_response = synthesize_room_impulse_response(self.rt60, sample_rate)
            self._ir_sample_rate = sample_rate
        start = time.monotonic()
        n = int(math.ceil(duration_seconds * sample_rate))
        seed = int(self._rng.integers(0, 2**31))
        recording = synthetic_ambient_noise(
            duration_seconds,
            sample_rate,
            noise_level=self.noise_level,
            hum_level=self.hum_level,
            seed=seed,
        )[:n].astype(np.float64)

        if self._played.wait(timeout=min(self.playback_wait, duration_seconds)):
            with self._lock:
                played, played_at = self._playback  # type: ignore[misc]
                self._playback = None
                self._played.clear()
            offset = max(0, int(round((played_at - start) * sample_rate)))
            response = fftconvolve(played.astype(np.float64), self.impulse_response.astype(np.float64))
            end = min(n, offset + response.size)
            if end > offset:
                recording[offset:end] += response[: end - offset]
            logger.debug("Simulated capture: response placed at sample %s", offset)
        return recording.astype(np.float32)


class StaticOrientationSource:
    def __init__(self, orientation: DeviceOrientation | None) -> None:
        self.orientation = orientation

    def snapshot(self) -> DeviceOrientation | None:
        return self.orientation


class RandomOrientationSource:
    """Uniformly random readings, as if the phone were picked up differently each time."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def snapshot(self) -> DeviceOrientation:
        return DeviceOrientation(
            alpha=self._rng.uniform(0.0, 360.0),
            beta=self._rng.uniform(-180.0, 180.0),
            gamma=self._rng.uniform(-90.0, 90.0),
            timestamp=time.time(),
            absolute=False,
        )
