import math

import pytest

from roomprint.models import DeviceOrientation, Octant
from roomprint.orientation import (
    OrientationListener,
    analyze_orientation_diversity,
    classify_octant,
    euler_to_quaternion,
    format_orientation_stats,
    has_minimum_orientation_diversity,
    has_valid_orientation,
    normalize_orientation,
    quaternion_to_euler,
    recommended_orientation,
    up_vector,
)

OCTANT_POSES = {
    Octant.UPPER_N: (0.0, 60.0),
    Octant.UPPER_S: (0.0, -60.0),
    Octant.UPPER_E: (300.0, 0.0),
    Octant.UPPER_W: (60.0, 0.0),
    Octant.LOWER_N: (0.0, 120.0),
    Octant.LOWER_S: (0.0, -120.0),
    Octant.LOWER_W: (120.0, 0.0),
    Octant.LOWER_E: (240.0, 0.0),
}


def reading(alpha, beta, gamma=0.0):
    return DeviceOrientation(alpha=alpha, beta=beta, gamma=gamma, timestamp=0.0)


class TestQuaternions:
    @pytest.mark.parametrize("alpha", [10.0, 95.0, 200.0, 350.0])
    @pytest.mark.parametrize("beta", [-89.0, -45.0, 0.0, 30.0, 89.0])
    @pytest.mark.parametrize("gamma", [-85.0, -20.0, 0.0, 45.0, 89.0])
    def test_round_trip(self, alpha, beta, gamma):
        restored = quaternion_to_euler(euler_to_quaternion(alpha, beta, gamma))
        assert restored == pytest.approx((alpha, beta, gamma), abs=1e-3)

    def test_unit_norm(self):
        q = euler_to_quaternion(123.0, -45.0, 67.0)
        assert math.sqrt(sum(c * c for c in q)) == pytest.approx(1.0)

    def test_identity(self):
        assert euler_to_quaternion(0.0, 0.0, 0.0) == pytest.approx((1.0, 0.0, 0.0, 0.0))

    def test_gimbal_lock_saturates_beta(self):
        _, beta, _ = quaternion_to_euler(euler_to_quaternion(30.0, 90.0, 0.0))
        assert beta == pytest.approx(90.0, abs=1e-3)

    def test_alpha_wrapped_to_positive_range(self):
        alpha, _, _ = quaternion_to_euler(euler_to_quaternion(-90.0, 10.0, 0.0))
        assert alpha == pytest.approx(270.0)


class TestOctants:
    def test_flat_phone_points_north(self):
        up = up_vector(euler_to_quaternion(0.0, 0.0, 0.0))
        assert up == pytest.approx((0.0, 1.0, 0.0))
        assert classify_octant(up) is Octant.UPPER_N

    @pytest.mark.parametrize("octant, pose", list(OCTANT_POSES.items()))
    def test_pose_lands_in_octant(self, octant, pose):
        assert classify_octant(up_vector(euler_to_quaternion(*pose, 0.0))) is octant

    def test_display_names(self):
        assert Octant.LOWER_W.display_name == "Lower West"
        assert Octant.UPPER_E.direction == "E"


class TestDiversity:
    def test_one_sample_per_octant_is_fully_diverse(self):
        stats = analyze_orientation_diversity(reading(*pose) for pose in OCTANT_POSES.values())
        assert stats.diversity_score == pytest.approx(1.0)
        assert stats.octants_covered == 8
        assert stats.octant_coverage == 1.0
        assert stats.warnings == []
        assert all(count == 1 for count in stats.octant_counts.values())
        assert sum(stats.quadrant_counts.values()) == 8
        assert has_minimum_orientation_diversity(stats)
        assert format_orientation_stats(stats) == "8/8 octants covered | Diversity: 100%"

    def test_identical_samples_are_flagged(self):
        stats = analyze_orientation_diversity([reading(0.0, 60.0)] * 10)
        assert stats.diversity_score == 0.0
        assert stats.octants_covered == 1
        assert stats.octant_counts[Octant.UPPER_N] == 10
        assert stats.quadrant_counts["north"] == 10
        assert stats.warnings == [
            "Only 1/8 octants covered - try different phone orientations",
            "Most samples in Upper North (10/10)",
            "Strong orientation bias detected - samples mostly from one octant",
        ]
        assert not has_minimum_orientation_diversity(stats)
        assert format_orientation_stats(stats) == "1/8 octants covered | Diversity: 0%"

    @pytest.mark.parametrize("orientations", [[], [None, None]])
    def test_no_orientation_data(self, orientations):
        stats = analyze_orientation_diversity(orientations)
        assert stats.samples_with_orientation == 0
        assert stats.total_samples == len(orientations)
        assert stats.warnings == ["No orientation data available"]
        assert has_minimum_orientation_diversity(stats)
        assert format_orientation_stats(stats) == "No orientation data"

    def test_partial_orientation_data(self):
        stats = analyze_orientation_diversity([reading(0.0, 60.0), None, None, None])
        assert stats.samples_with_orientation == 1
        assert stats.warnings[0] == "Only 1/4 samples have orientation data"

    def test_recommendation_targets_least_sampled_octant(self):
        stats = analyze_orientation_diversity([reading(0.0, 60.0)] * 3)
        recommendation = recommended_orientation(stats)
        assert recommendation.octant is Octant.UPPER_E
        assert recommendation.direction == "Upper East"
        assert "East" in recommendation.description


class TestReadings:
    def test_validity(self):
        assert not has_valid_orientation(None)
        assert not has_valid_orientation(DeviceOrientation(alpha=10.0, beta=None, gamma=None, timestamp=0.0))
        assert has_valid_orientation(DeviceOrientation(alpha=None, beta=None, gamma=5.0, timestamp=0.0))

    def test_normalisation(self):
        assert normalize_orientation(reading(180.0, -90.0, 45.0)) == pytest.approx((0.5, -0.5, 0.5))
        missing = DeviceOrientation(alpha=None, beta=None, gamma=None, timestamp=0.0)
        assert normalize_orientation(missing) == (0.0, 0.0, 0.0)


class TestOrientationListener:
    def test_lifecycle(self):
        received = []
        listener = OrientationListener()

        listener.update(1.0, 2.0, 3.0)
        assert listener.snapshot() is None

        listener.start(received.append)
        assert listener.is_listening
        listener.update(10.0, 20.0, 30.0, absolute=True)
        listener.update(None, None, None)

        latest = listener.snapshot()
        assert (latest.alpha, latest.beta, latest.gamma, latest.absolute) == (10.0, 20.0, 30.0, True)
        assert received == [latest]
        assert listener.has_data()

        listener.stop()
        assert not listener.is_listening
        listener.update(0.0, 0.0, 0.0)
        assert listener.snapshot() is latest
        assert len(received) == 1
