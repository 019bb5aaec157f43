from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

import numpy as np

FEATURE_VECTOR_LENGTH = 60
AMBIENT_FEATURE_LENGTH = 73
LATE_REVERB_FEATURE_LENGTH = 20
EARLY_REFLECTION_FEATURE_LENGTH = 48
ORIENTATION_AWARE_FEATURE_LENGTH = LATE_REVERB_FEATURE_LENGTH + EARLY_REFLECTION_FEATURE_LENGTH

Quaternion = tuple[float, float, float, float]
Vector3 = tuple[float, float, float]


def as_signal(values: np.ndarray) -> np.ndarray:
    """Return a read-only float32 copy of ``values``."""
    signal = np.array(values, dtype=np.float32).reshape(-1)
    signal.setflags(write=False)
    return signal


def _check_length(name: str, values: list[float], expected: int) -> None:
    if len(values) != expected:
        raise ValueError(f"{name} must have {expected} values, got {len(values)}")


class ChirpMode(str, Enum):
    AUDIBLE = "audible"
    ULTRASONIC = "ultrasonic"


@dataclass(frozen=True)
class ChirpConfig:
    mode: ChirpMode
    start_frequency: float
    end_frequency: float
    duration_seconds: float
    sample_rate: int
    fade_seconds: float

    def __post_init__(self) -> None:
        if self.start_frequency <= 0:
            raise ValueError("start_frequency must be positive")
        if self.start_frequency >= self.end_frequency:
            raise ValueError("start_frequency must be below end_frequency")
        if self.duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.fade_seconds < 0 or self.fade_seconds > self.duration_seconds / 2:
            raise ValueError("fade_seconds must lie within [0, duration_seconds / 2]")


@dataclass(frozen=True)
class DeviceOrientation:
    """Single orientation reading in degrees. Any angle may be missing."""

    alpha: float | None
    beta: float | None
    gamma: float | None
    timestamp: float
    absolute: bool = False


@dataclass(frozen=True)
class CaptureResult:
    captured: np.ndarray
    chirp_reference: np.ndarray
    sample_rate: int
    config: ChirpConfig
    timestamp: float
    orientation: DeviceOrientation | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "captured", as_signal(self.captured))
        object.__setattr__(self, "chirp_reference", as_signal(self.chirp_reference))


@dataclass(frozen=True)
class AmbientCaptureResult:
    audio: np.ndarray
    sample_rate: int
    duration_seconds: float
    timestamp: float
    orientation: DeviceOrientation | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "audio", as_signal(self.audio))


@dataclass(frozen=True)
class ImpulseResponse:
    data: np.ndarray
    sample_rate: int
    duration_seconds: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", as_signal(self.data))

    @classmethod
    def from_signal(cls, data: np.ndarray, sample_rate: int) -> "ImpulseResponse":
        return cls(data=data, sample_rate=sample_rate, duration_seconds=len(data) / sample_rate)


@dataclass
class FeatureVector:
    rt60: float
    edt: float
    c50: float
    c80: float
    spectral_centroid: float
    spectral_rolloff: float
    spectral_flux: float
    spectral_flatness: float
    mfcc_mean: list[float]
    mfcc_variance: list[float]
    early_reflections: list[float]
    octave_bands: list[float]
    raw: list[float]

    def __post_init__(self) -> None:
        _check_length("raw", self.raw, FEATURE_VECTOR_LENGTH)


@dataclass
class AmbientFeatureVector:
    spectral_centroid_mean: float
    spectral_centroid_std: float
    spectral_rolloff_mean: float
    spectral_rolloff_std: float
    spectral_flux_mean: float
    spectral_flux_std: float
    spectral_flatness_mean: float
    spectral_flatness_std: float
    mfcc_mean: list[float]
    mfcc_variance: list[float]
    mfcc_delta: list[float]
    rms_level: float
    rms_percentile_10: float
    rms_percentile_50: float
    rms_percentile_90: float
    octave_bands: list[float]
    power_variance: float
    hvac_peaks: list[float]
    autocorrelation: list[float]
    raw: list[float]

    def __post_init__(self) -> None:
        _check_length("raw", self.raw, AMBIENT_FEATURE_LENGTH)


@dataclass
class LateReverbFeatures:
    """Features of the diffuse tail; largely independent of device placement."""

    late_rt60: float
    late_decay_rates: list[float]
    late_spectral_envelope: list[float]
    late_energy: float
    late_spectral_centroid: float
    late_spectral_flatness: float
    low_freq_mode_energy: float
    mixing_time_ms: float

    def values(self) -> list[float]:
        vector = [self.late_rt60]
        vector.extend(self.late_decay_rates)
        vector.extend(self.late_spectral_envelope)
        vector.extend(
            [
                self.late_energy,
                self.late_spectral_centroid,
                self.late_spectral_flatness,
                self.low_freq_mode_energy,
                self.mixing_time_ms / 1000.0,
            ]
        )
        _check_length("late reverb features", vector, LATE_REVERB_FEATURE_LENGTH)
        return vector


@dataclass
class EarlyReflectionFeatures:
    """Features dominated by discrete reflections; sensitive to device placement."""

    edt: float
    c50: float
    c80: float
    early_reflections: list[float]
    spectral_centroid: float
    spectral_rolloff: float
    spectral_flux: float
    spectral_flatness: float
    mfcc_mean: list[float]
    mfcc_variance: list[float]
    octave_bands: list[float]

    def values(self) -> list[float]:
        vector = [self.edt, self.c50, self.c80]
        vector.extend(self.early_reflections)
        vector.extend(
            [
                self.spectral_centroid / 10000.0,
                self.spectral_rolloff / 20000.0,
                self.spectral_flux,
                self.spectral_flatness,
            ]
        )
        vector.extend(self.mfcc_mean)
        vector.extend(self.mfcc_variance)
        vector.extend(self.octave_bands)
        _check_length("early reflection features", vector, EARLY_REFLECTION_FEATURE_LENGTH)
        return vector


@dataclass(frozen=True)
class FeatureMetadata:
    late_feature_count: int
    early_feature_count: int
    late_feature_start_idx: int
    late_feature_end_idx: int
    early_feature_start_idx: int
    early_feature_end_idx: int
    detected_mixing_time_ms: float
    late_reverb_confidence: float

    @property
    def late_slice(self) -> slice:
        return slice(self.late_feature_start_idx, self.late_feature_end_idx)

    @property
    def early_slice(self) -> slice:
        return slice(self.early_feature_start_idx, self.early_feature_end_idx)


@dataclass
class OrientationAwareFeatures:
    late_reverb_features: LateReverbFeatures
    early_reflection_features: EarlyReflectionFeatures
    raw: list[float]
    feature_metadata: FeatureMetadata

    def __post_init__(self) -> None:
        _check_length("raw", self.raw, ORIENTATION_AWARE_FEATURE_LENGTH)


class Octant(str, Enum):
    UPPER_N = "upperN"
    UPPER_E = "upperE"
    UPPER_S = "upperS"
    UPPER_W = "upperW"
    LOWER_N = "lowerN"
    LOWER_E = "lowerE"
    LOWER_S = "lowerS"
    LOWER_W = "lowerW"

    @property
    def is_upper(self) -> bool:
        return self.value.startswith("upper")

    @property
    def direction(self) -> str:
        return self.value[-1]

    @property
    def display_name(self) -> str:
        hemisphere = "Upper" if self.is_upper else "Lower"
        heading = {"N": "North", "E": "East", "S": "South", "W": "West"}[self.direction]
        return f"{hemisphere} {heading}"


@dataclass
class OrientationStats:
    samples_with_orientation: int
    total_samples: int
    octant_coverage: float
    overall_coverage: float
    octant_counts: dict[Octant, int]
    quadrant_counts: dict[str, int]
    diversity_score: float
    octants_covered: int
    warnings: list[str] = field(default_factory=list)


@dataclass
class ChirpSample:
    features: FeatureVector
    orientation_features: OrientationAwareFeatures
    orientation: DeviceOrientation | None = None
    kind: Literal["chirp"] = "chirp"


@dataclass
class AmbientSample:
    features: AmbientFeatureVector
    orientation: DeviceOrientation | None = None
    kind: Literal["ambient"] = "ambient"


FeatureSample = Union[ChirpSample, AmbientSample]
