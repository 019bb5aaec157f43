from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np
from scipy.io import wavfile

from .ambient_features import extract_ambient_features
from .audio_capture import (
    CaptureConfig,
    ChirpMeasurement,
    DeviceUnavailableError,
    MicrophoneSource,
    OrientationSource,
    PermissionDeniedError,
    SpeakerSink,
)
from .chirp import get_chirp_config
from .config import CONFIG_FILE, ConfigManager
from .features import extract_features
from .impulse_response import REGULARIZATION_EPSILON, extract_impulse_response
from .models import (
    AmbientCaptureResult,
    AmbientSample,
    CaptureResult,
    ChirpMode,
    ChirpSample,
    FeatureSample,
    FeatureVector,
    OrientationAwareFeatures,
)
from .orientation import analyze_orientation_diversity, format_orientation_stats, recommended_orientation
from .orientation_aware import DecompositionConfig, extract_orientation_aware_features
from .simulation import RandomOrientationSource, SimulatedRoom

logger = logging.getLogger(__name__)

AMBIENT_MODE = "ambient"
MODES = (ChirpMode.AUDIBLE.value, ChirpMode.ULTRASONIC.value, AMBIENT_MODE)


def extract_features_from_capture(
    capture: CaptureResult,
    epsilon: float = REGULARIZATION_EPSILON,
) -> FeatureVector:
    return extract_features(extract_impulse_response(capture, epsilon))


def extract_orientation_aware_from_capture(
    capture: CaptureResult,
    epsilon: float = REGULARIZATION_EPSILON,
    config: DecompositionConfig | None = None,
) -> OrientationAwareFeatures:
    return extract_orientation_aware_features(extract_impulse_response(capture, epsilon), config)


def extract_chirp_sample(
    capture: CaptureResult,
    epsilon: float = REGULARIZATION_EPSILON,
    config: DecompositionConfig | None = None,
) -> ChirpSample:
    ir = extract_impulse_response(capture, epsilon)
    return ChirpSample(
        features=extract_features(ir),
        orientation_features=extract_orientation_aware_features(ir, config),
        orientation=capture.orientation,
    )


def extract_ambient_sample(capture: AmbientCaptureResult) -> AmbientSample:
    return AmbientSample(
        features=extract_ambient_features(capture.audio, capture.sample_rate),
        orientation=capture.orientation,
    )


@dataclass
class PipelineConfig:
    mode: str = ChirpMode.AUDIBLE.value
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    regularization_epsilon: float = REGULARIZATION_EPSILON

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {', '.join(MODES)}, got {self.mode!r}")

    @classmethod
    def from_settings(cls, settings: dict, mode: str | None = None) -> "PipelineConfig":
        return cls(
            mode=mode or settings.get("chirp_mode", ChirpMode.AUDIBLE.value),
            capture=CaptureConfig.from_mapping(settings),
            regularization_epsilon=float(settings.get("regularization_epsilon", REGULARIZATION_EPSILON)),
        )


class MeasurementPipeline:
    """Capture, then feature extraction, one sample at a time."""

    def __init__(self, measurement: ChirpMeasurement, config: PipelineConfig) -> None:
        self.measurement = measurement
        self.config = config
        self.samples: list[FeatureSample] = []

    def measure(self) -> FeatureSample:
        if self.config.mode == AMBIENT_MODE:
            sample: FeatureSample = extract_ambient_sample(self.measurement.capture_passive())
        else:
            capture = self.measurement.capture_room_response(self.config.mode)
            sample = extract_chirp_sample(capture, self.config.regularization_epsilon)
        self.samples.append(sample)
        return sample

    def run(self, count: int) -> list[FeatureSample]:
        logger.info("Measuring %s %s sample(s)", count, self.config.mode)
        return [self.measure() for _ in range(count)]

    def orientation_report(self) -> str:
        stats = analyze_orientation_diversity(sample.orientation for sample in self.samples)
        lines = [format_orientation_stats(stats)]
        lines.extend(f"  warning: {warning}" for warning in stats.warnings)
        if stats.samples_with_orientation:
            recommendation = recommended_orientation(stats)
            lines.append(f"  next: {recommendation.direction} - {recommendation.description}")
        return "\n".join(lines)


def build_measurement(config: PipelineConfig, use_mock: bool, seed: int | None = None) -> ChirpMeasurement:
    orientation: OrientationSource | None
    if use_mock:
        room = SimulatedRoom(sample_rate=config.capture.sample_rate, seed=seed)
        source, sink = room, room
        orientation = RandomOrientationSource(seed)
        logger.info("Using simulated room (rt60=%.2fs)", room.rt60)
    else:
        source, sink = MicrophoneSource(), SpeakerSink()
        orientation = None
    return ChirpMeasurement(source, sink, orientation, config.capture)


def describe_sample(sample: FeatureSample) -> str:
    if sample.kind == "chirp":
        f = sample.features
        meta = sample.orientation_features.feature_metadata
        return (
            f"RT60 {f.rt60:.2f}s | EDT {f.edt:.2f}s | C50 {f.c50:.1f}dB | C80 {f.c80:.1f}dB | "
            f"mixing {meta.detected_mixing_time_ms:.0f}ms | late confidence {meta.late_reverb_confidence:.2f}"
        )
    f = sample.features
    return (
        f"noise floor {f.rms_level:.1f}dB (p10 {f.rms_percentile_10:.1f}, p90 {f.rms_percentile_90:.1f}) | "
        f"centroid {f.spectral_centroid_mean:.0f}Hz | flatness {f.spectral_flatness_mean:.2f}"
    )


def read_wav(path: Path) -> tuple[np.ndarray, int]:
    """Mono float32 samples in [-1, 1] and the sample rate."""
    sample_rate, data = wavfile.read(path)
    data = np.asarray(data)
    if data.ndim > 1:
        data = data[:, 0]
    if data.dtype == np.uint8:
        signal = (data.astype(np.float32) - 128.0) / 128.0
    elif np.issubdtype(data.dtype, np.integer):
        signal = data.astype(np.float32) / float(np.iinfo(data.dtype).max + 1)
    else:
        signal = data.astype(np.float32)
    return signal, int(sample_rate)


def analyse_recordings(
    recording: Path,
    reference: Path | None,
    mode: str,
    epsilon: float = REGULARIZATION_EPSILON,
) -> FeatureSample:
    audio, sample_rate = read_wav(recording)
    logger.info("Loaded %s (%s samples at %s Hz)", recording, audio.size, sample_rate)
    if reference is None:
        capture = AmbientCaptureResult(
            audio=audio,
            sample_rate=sample_rate,
            duration_seconds=audio.size / sample_rate,
            timestamp=time.time(),
        )
        return extract_ambient_sample(capture)

    chirp, reference_rate = read_wav(reference)
    if reference_rate != sample_rate:
        raise ValueError(f"sample rate mismatch: recording {sample_rate} Hz, reference {reference_rate} Hz")
    chirp_mode = ChirpMode.AUDIBLE if mode == AMBIENT_MODE else ChirpMode(mode)
    capture = CaptureResult(
        captured=audio,
        chirp_reference=chirp,
        sample_rate=sample_rate,
        config=get_chirp_config(chirp_mode, sample_rate),
        timestamp=time.time(),
    )
    return extract_chirp_sample(capture, epsilon)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), None)
    invalid = False
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        invalid = True
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    if invalid:
        logging.getLogger(__name__).warning("Invalid log level '%s'; defaulting to INFO", level)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Acoustic room fingerprinting")
    parser.add_argument("--mock", action="store_true", help="Measure a simulated room instead of live audio devices")
    parser.add_argument("--mode", choices=MODES, default=None, help="Measurement mode (default from settings file)")
    parser.add_argument("--samples", type=int, default=1, help="Number of measurements to take")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the simulated room")
    parser.add_argument("--recording", type=Path, default=None, help="Analyse a recorded WAV file instead of measuring")
    parser.add_argument(
        "--reference",
        type=Path,
        default=None,
        help="WAV of the emitted chirp; without it the recording is analysed as ambient audio",
    )
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Settings file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging verbosity (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args(argv)
    if args.samples < 1:
        parser.error("--samples must be at least 1")
    if args.reference is not None and args.recording is None:
        parser.error("--reference requires --recording")
    return args


def run_pipeline(args: argparse.Namespace) -> int:
    if not logging.getLogger().hasHandlers():
        configure_logging("INFO")
    settings = ConfigManager.load(args.config)
    config = PipelineConfig.from_settings(settings, args.mode)

    if args.recording is not None:
        sample = analyse_recordings(args.recording, args.reference, config.mode, config.regularization_epsilon)
        print(describe_sample(sample))
        return 0

    pipeline = MeasurementPipeline(build_measurement(config, args.mock, args.seed), config)
    try:
        for index in range(args.samples):
            sample = pipeline.measure()
            print(f"[{index + 1}/{args.samples}] {describe_sample(sample)}")
    except (DeviceUnavailableError, PermissionDeniedError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        print("Stopping measurements...")
    if len(pipeline.samples) > 1:
        print(pipeline.orientation_report())
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    return run_pipeline(args)


if __name__ == "__main__":
    sys.exit(main())
