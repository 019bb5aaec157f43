"""
Phone orientation model and training-set diversity analysis.

Orientation readings follow the W3C DeviceOrientation convention: alpha is
the rotation about Z (compass heading, 0-360), beta about X (front-to-back
tilt) and gamma about Y (left-to-right tilt), applied in intrinsic Z-X'-Y''
order. Readings are bucketed by where the phone's local up axis (0, 1, 0)
points in world space: hemisphere by the sign of Y, heading by the dominant
horizontal component.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import Counter
from typing import Callable, Iterable, NamedTuple, Optional

from .models import DeviceOrientation, Octant, OrientationStats, Quaternion, Vector3

logger = logging.getLogger(__name__)

NUM_OCTANTS = len(Octant)

OCTANT_HINTS: dict[Octant, str] = {
    Octant.UPPER_N: "Tilt phone up, screen facing North (12 o'clock)",
    Octant.UPPER_E: "Tilt phone up, screen facing East (3 o'clock)",
    Octant.UPPER_S: "Tilt phone up, screen facing South (6 o'clock)",
    Octant.UPPER_W: "Tilt phone up, screen facing West (9 o'clock)",
    Octant.LOWER_N: "Tilt phone down, screen facing North (12 o'clock)",
    Octant.LOWER_E: "Tilt phone down, screen facing East (3 o'clock)",
    Octant.LOWER_S: "Tilt phone down, screen facing South (6 o'clock)",
    Octant.LOWER_W: "Tilt phone down, screen facing West (9 o'clock)",
}

_QUADRANT_NAMES = {"N": "north", "E": "east", "S": "south", "W": "west"}


class Recommendation(NamedTuple):
    octant: Octant
    direction: str
    description: str


def euler_to_quaternion(alpha: float, beta: float, gamma: float) -> Quaternion:
    """Unit quaternion ``(w, x, y, z)`` of ``q_z(alpha) * q_x(beta) * q_y(gamma)``; angles in degrees."""
    ha, hb, hg = (math.radians(angle) / 2 for angle in (alpha, beta, gamma))
    ca, sa = math.cos(ha), math.sin(ha)
    cb, sb = math.cos(hb), math.sin(hb)
    cg, sg = math.cos(hg), math.sin(hg)

    w = ca * cb * cg - sa * sb * sg
    x = ca * sb * cg - sa * cb * sg
    y = ca * cb * sg + sa * sb * cg
    z = sa * cb * cg + ca * sb * sg
    return (w, x, y, z)


def quaternion_to_euler(q: Quaternion) -> tuple[float, float, float]:
    """
    Inverse of :func:`euler_to_quaternion`, returning ``(alpha, beta, gamma)``
    in degrees with alpha in [0, 360). Beta saturates at +-90 at gimbal lock.
    """
    w, x, y, z = q
    sin_beta = 2 * (w * x + y * z)
    if abs(sin_beta) >= 1:
        beta = math.copysign(90.0, sin_beta)
    else:
        beta = math.degrees(math.asin(sin_beta))

    gamma = math.degrees(math.atan2(2 * (w * y - x * z), 1 - 2 * (x * x + y * y)))
    alpha = math.degrees(math.atan2(2 * (w * z - x * y), 1 - 2 * (x * x + z * z)))
    if alpha < 0:
        alpha += 360.0
    return (alpha, beta, gamma)


def rotate_vector_by_quaternion(v: Vector3, q: Quaternion) -> Vector3:
    """``v + w*t + q_vec x t`` with ``t = 2 * (q_vec x v)``."""
    w, qx, qy, qz = q
    vx, vy, vz = v
    tx = 2 * (qy * vz - qz * vy)
    ty = 2 * (qz * vx - qx * vz)
    tz = 2 * (qx * vy - qy * vx)
    return (
        vx + w * tx + (qy * tz - qz * ty),
        vy + w * ty + (qz * tx - qx * tz),
        vz + w * tz + (qx * ty - qy * tx),
    )


def up_vector(q: Quaternion) -> Vector3:
    return rotate_vector_by_quaternion((0.0, 1.0, 0.0), q)


def classify_octant(up: Vector3) -> Octant:
    x, y, z = up
    hemisphere = "upper" if y >= 0 else "lower"
    if abs(z) >= abs(x):
        direction = "N" if z >= 0 else "S"
    else:
        direction = "E" if x >= 0 else "W"
    return Octant(f"{hemisphere}{direction}")


def orientation_to_quaternion(orientation: DeviceOrientation) -> Quaternion:
    """Missing angles read as 0 (phone flat, facing north)."""
    return euler_to_quaternion(
        orientation.alpha or 0.0,
        orientation.beta or 0.0,
        orientation.gamma or 0.0,
    )


def normalize_orientation(orientation: DeviceOrientation) -> tuple[float, float, float]:
    return (
        (orientation.alpha or 0.0) / 360.0,
        (orientation.beta or 0.0) / 180.0,
        (orientation.gamma or 0.0) / 90.0,
    )


def has_valid_orientation(orientation: DeviceOrientation | None) -> bool:
    if orientation is None:
        return False
    return orientation.beta is not None or orientation.gamma is not None


def _diversity_score(counts: Iterable[int], total: int) -> float:
    """Shannon entropy of the octant distribution divided by log2(8)."""
    if total == 0:
        return 0.0
    entropy = 0.0
    for count in counts:
        if count > 0:
            p = count / total
            entropy -= p * math.log2(p)
    return entropy / math.log2(NUM_OCTANTS)


def analyze_orientation_diversity(orientations: Iterable[DeviceOrientation | None]) -> OrientationStats:
    orientations = list(orientations)
    valid = [o for o in orientations if has_valid_orientation(o)]
    total, with_orientation = len(orientations), len(valid)

    octant_counts = {octant: 0 for octant in Octant}
    quadrant_counts = {name: 0 for name in _QUADRANT_NAMES.values()}

    if with_orientation == 0:
        return OrientationStats(
            samples_with_orientation=0,
            total_samples=total,
            octant_coverage=0.0,
            overall_coverage=0.0,
            octant_counts=octant_counts,
            quadrant_counts=quadrant_counts,
            diversity_score=0.0,
            octants_covered=0,
            warnings=["No orientation data available"],
        )

    for orientation in valid:
        octant = classify_octant(up_vector(orientation_to_quaternion(orientation)))
        octant_counts[octant] += 1
        quadrant_counts[_QUADRANT_NAMES[octant.direction]] += 1

    octants_covered = sum(1 for count in octant_counts.values() if count > 0)
    coverage = octants_covered / NUM_OCTANTS
    diversity = _diversity_score(octant_counts.values(), with_orientation)

    warnings = []
    if with_orientation < total * 0.5:
        warnings.append(f"Only {with_orientation}/{total} samples have orientation data")
    if octants_covered < 4:
        warnings.append(f"Only {octants_covered}/{NUM_OCTANTS} octants covered - try different phone orientations")
    dominant, dominant_count = Counter(octant_counts).most_common(1)[0]
    if diversity < 0.5:
        warnings.append(f"Most samples in {dominant.display_name} ({dominant_count}/{with_orientation})")
    if dominant_count > with_orientation * 0.5:
        warnings.append("Strong orientation bias detected - samples mostly from one octant")

    return OrientationStats(
        samples_with_orientation=with_orientation,
        total_samples=total,
        octant_coverage=coverage,
        overall_coverage=coverage,
        octant_counts=octant_counts,
        quadrant_counts=quadrant_counts,
        diversity_score=diversity,
        octants_covered=octants_covered,
        warnings=warnings,
    )


def has_minimum_orientation_diversity(
    stats: OrientationStats,
    min_diversity: float = 0.4,
    min_coverage: float = 0.5,
) -> bool:
    # Training without any orientation data is allowed.
    if stats.samples_with_orientation == 0:
        return True
    return stats.diversity_score >= min_diversity and stats.overall_coverage >= min_coverage


def recommended_orientation(stats: OrientationStats) -> Recommendation:
    """The least-sampled octant, first in declaration order on ties."""
    octant = min(Octant, key=lambda o: stats.octant_counts.get(o, 0))
    return Recommendation(octant=octant, direction=octant.display_name, description=OCTANT_HINTS[octant])


def format_orientation_stats(stats: OrientationStats) -> str:
    if stats.samples_with_orientation == 0:
        return "No orientation data"
    return f"{stats.octants_covered}/{NUM_OCTANTS} octants covered | Diversity: {round(stats.diversity_score * 100)}%"


class OrientationListener:
    """
    Caller-owned holder of the latest orientation reading.

    A platform binding calls :meth:`update` from its sensor callback while
    the listener is started; consumers call :meth:`snapshot`. Readings with
    no angle at all are ignored.
    """

    def __init__(self, on_change: Optional[Callable[[DeviceOrientation], None]] = None) -> None:
        self._lock = threading.Lock()
        self._listening = threading.Event()
        self._latest: DeviceOrientation | None = None
        self._on_change = on_change

    @property
    def is_listening(self) -> bool:
        return self._listening.is_set()

    def start(self, on_change: Optional[Callable[[DeviceOrientation], None]] = None) -> None:
        if on_change is not None:
            self._on_change = on_change
        if self._listening.is_set():
            logger.debug("Orientation listener already running")
            return
        self._listening.set()
        logger.info("Orientation listener started")

    def stop(self) -> None:
        if not self._listening.is_set():
            return
        self._listening.clear()
        self._on_change = None
        logger.info("Orientation listener stopped")

    def update(
        self,
        alpha: float | None,
        beta: float | None,
        gamma: float | None,
        absolute: bool = False,
    ) -> None:
        if not self._listening.is_set():
            return
        if alpha is None and beta is None and gamma is None:
            return
        reading = DeviceOrientation(alpha=alpha, beta=beta, gamma=gamma, timestamp=time.time(), absolute=absolute)
        with self._lock:
            self._latest = reading
            callback = self._on_change
        if callback is not None:
            callback(reading)

    def snapshot(self) -> DeviceOrientation | None:
        with self._lock:
            return self._latest

    def has_data(self) -> bool:
        return has_valid_orientation(self.snapshot())
