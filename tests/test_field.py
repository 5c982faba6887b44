"""
Tests for the Gaussian RBF displacement field.
"""

import numpy as np
import pytest

from facewarp.control_points import map_control_points
from facewarp.field import DisplacementField, build_displacement_field
from facewarp.landmarks import compute_ipd


def _single(sx, sy, dx, dy, sigma):
    return DisplacementField(np.array([[sx, sy]]), np.array([[dx, dy]]), sigma)


class TestDisplacementField:
    """Test field evaluation."""

    def test_no_controls_is_identity(self):
        field = DisplacementField(np.zeros((0, 2)), np.zeros((0, 2)), sigma=10.0)
        points = np.array([[1.0, 2.0], [30.0, 40.0]])
        assert np.array_equal(field.evaluate(points), points)
        assert field.is_identity()

    def test_zero_deltas_is_identity(self):
        field = _single(50.0, 50.0, 0.0, 0.0, sigma=20.0)
        points = np.random.default_rng(0).uniform(0, 100, (20, 2))
        assert np.allclose(field.evaluate(points), points)
        assert field.is_identity()

    def test_full_delta_at_control(self):
        """At its own source a lone control moves by exactly its delta."""
        field = _single(50.0, 50.0, 10.0, -4.0, sigma=20.0)
        assert field(50.0, 50.0) == pytest.approx((60.0, 46.0))

    def test_corner_displacement(self):
        """
        One control at the center of a 100 px box, delta (10, 0), sigma 20.

        Each corner is 50*sqrt(2) away, so it moves by 10 * exp(-6.25).
        """
        field = _single(50.0, 50.0, 10.0, 0.0, sigma=20.0)
        expected = 10.0 * np.exp(-6.25)

        x, y = field(0.0, 0.0)
        assert x == pytest.approx(expected, abs=1e-3)
        assert y == pytest.approx(0.0, abs=1e-12)
        assert 0.0 < x < 0.05

        x, y = field(100.0, 100.0)
        assert x == pytest.approx(100.0 + expected, abs=1e-3)
        assert y == pytest.approx(100.0, abs=1e-12)

    def test_far_points_unmoved(self):
        field = _single(50.0, 50.0, 10.0, 10.0, sigma=5.0)
        x, y = field(500.0, 500.0)
        assert (x, y) == (500.0, 500.0)

    def test_decays_with_distance(self):
        field = _single(0.0, 0.0, 10.0, 0.0, sigma=10.0)
        points = np.array([[d, 0.0] for d in (0.0, 5.0, 10.0, 20.0, 40.0)])
        shift = field.evaluate(points)[:, 0] - points[:, 0]
        assert np.all(np.diff(shift) < 0)

    def test_continuous(self):
        """Nearby points get nearby destinations."""
        field = DisplacementField(
            np.array([[40.0, 40.0], [60.0, 45.0]]),
            np.array([[10.0, 0.0], [0.0, 8.0]]),
            sigma=20.0
        )
        rng = np.random.default_rng(3)
        points = rng.uniform(0, 100, (200, 2))
        nudged = points + 1e-3
        moved = np.linalg.norm(field.evaluate(nudged) - field.evaluate(points), axis=1)
        assert np.all(moved < 1e-2)

    def test_overlapping_controls_average(self):
        """Coincident controls give the average of their deltas."""
        field = DisplacementField(
            np.array([[10.0, 10.0], [10.0, 10.0]]),
            np.array([[4.0, 0.0], [0.0, 4.0]]),
            sigma=5.0
        )
        assert field(10.0, 10.0) == pytest.approx((12.0, 12.0))

    def test_call_matches_evaluate(self):
        field = _single(20.0, 30.0, 3.0, 5.0, sigma=15.0)
        x, y = field(25.0, 33.0)
        assert np.allclose(field.evaluate(np.array([[25.0, 33.0]]))[0], [x, y])

    def test_rejects_non_positive_sigma(self):
        with pytest.raises(ValueError):
            _single(0.0, 0.0, 1.0, 1.0, sigma=0.0)
        with pytest.raises(ValueError):
            _single(0.0, 0.0, 1.0, 1.0, sigma=-2.0)

    def test_rejects_shape_mismatch(self):
        with pytest.raises(ValueError):
            DisplacementField(np.zeros((2, 2)), np.zeros((3, 2)), sigma=1.0)


class TestBuildDisplacementField:

    def test_zero_intensity_identity(self, face_landmarks):
        cps = map_control_points(face_landmarks, 0.0)
        field = build_displacement_field(cps, sigma=30.0)
        points = np.random.default_rng(0).uniform(0, 200, (50, 2))
        assert np.array_equal(field.evaluate(points), points)

    def test_brow_moves_down(self, face_landmarks):
        cps = map_control_points(face_landmarks, 1.0)
        field = build_displacement_field(cps, sigma=compute_ipd(face_landmarks) * 0.55)
        _, y = field(100.0, 68.0)
        assert y > 68.0
