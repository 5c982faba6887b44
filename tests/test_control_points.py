"""
Tests for control point mapping.
"""

import numpy as np
import pytest

from facewarp.control_points import (
    BROW_DROP,
    BROW_PINCH,
    MOUTH_DROP,
    SAD_OFFSETS,
    ControlOffset,
    clamp_intensity,
    control_arrays,
    inward_sign,
    map_control_points,
)
from facewarp.landmarks import LandmarkRole


class TestClampIntensity:

    def test_range(self):
        assert clamp_intensity(-0.5) == 0.0
        assert clamp_intensity(0.3) == pytest.approx(0.3)
        assert clamp_intensity(7.0) == 1.0


class TestInwardSign:
    """Pinch direction points toward the face midline."""

    def test_left_of_midline_moves_right(self):
        assert inward_sign(80.0, 100.0) == 1.0

    def test_right_of_midline_moves_left(self):
        assert inward_sign(120.0, 100.0) == -1.0

    def test_on_midline(self):
        assert inward_sign(100.0, 100.0) == 0.0


class TestMapControlPoints:
    """Test landmark + intensity -> control point targets."""

    def test_zero_intensity_is_identity(self, face_landmarks):
        """Intensity 0 leaves every target on its source."""
        for cp in map_control_points(face_landmarks, 0.0).values():
            assert cp.target == cp.source
            assert cp.delta == (0.0, 0.0)

    def test_roles_match_offsets(self, face_landmarks):
        control_points = map_control_points(face_landmarks, 1.0)
        assert set(control_points) == set(SAD_OFFSETS)

    def test_inner_brow_full_intensity(self, face_landmarks):
        """Inner brow drops 0.25 ipd and pinches 0.08 ipd inward (ipd = 60)."""
        cps = map_control_points(face_landmarks, 1.0)

        right = cps[LandmarkRole.RIGHT_INNER_BROW]
        assert right.source == (88.0, 68.0)
        assert right.delta[0] == pytest.approx(BROW_PINCH * 60.0)
        assert right.delta[1] == pytest.approx(BROW_DROP * 60.0)

        left = cps[LandmarkRole.LEFT_INNER_BROW]
        assert left.delta[0] == pytest.approx(-BROW_PINCH * 60.0)
        assert left.delta[1] == pytest.approx(BROW_DROP * 60.0)

    def test_mouth_corners_drop(self, face_landmarks):
        cps = map_control_points(face_landmarks, 1.0)
        for role in (LandmarkRole.RIGHT_MOUTH_CORNER, LandmarkRole.LEFT_MOUTH_CORNER):
            assert cps[role].delta[1] == pytest.approx(MOUTH_DROP * 60.0)

    def test_mouth_corners_spread(self, face_landmarks):
        """Mouth corners move away from the midline, opposite to the brows."""
        cps = map_control_points(face_landmarks, 1.0)
        right = cps[LandmarkRole.RIGHT_MOUTH_CORNER].delta[0]
        left = cps[LandmarkRole.LEFT_MOUTH_CORNER].delta[0]
        assert right == pytest.approx(-BROW_PINCH * 0.2 * 60.0)
        assert left == pytest.approx(BROW_PINCH * 0.2 * 60.0)
        assert np.sign(right) == -np.sign(cps[LandmarkRole.RIGHT_INNER_BROW].delta[0])
        assert np.sign(left) == -np.sign(cps[LandmarkRole.LEFT_INNER_BROW].delta[0])

    def test_upper_lip_rises(self, face_landmarks):
        """Negative drop moves up (image y grows down)."""
        cps = map_control_points(face_landmarks, 1.0)
        dx, dy = cps[LandmarkRole.UPPER_LIP].delta
        assert dx == 0.0
        assert dy < 0.0

    def test_linear_in_intensity(self, face_landmarks):
        full = map_control_points(face_landmarks, 1.0)
        half = map_control_points(face_landmarks, 0.5)
        for role in full:
            assert np.allclose(half[role].delta, np.array(full[role].delta) * 0.5)

    def test_intensity_clamped(self, face_landmarks):
        over = map_control_points(face_landmarks, 3.0)
        full = map_control_points(face_landmarks, 1.0)
        for role in full:
            assert over[role].target == full[role].target

    def test_explicit_ipd(self, face_landmarks):
        cps = map_control_points(face_landmarks, 1.0, ipd=100.0)
        assert cps[LandmarkRole.RIGHT_INNER_BROW].delta[1] == pytest.approx(BROW_DROP * 100.0)

    def test_custom_offsets(self, face_landmarks):
        offsets = {LandmarkRole.LOWER_LIP: ControlOffset(drop=0.1)}
        cps = map_control_points(face_landmarks, 1.0, offsets=offsets)
        assert list(cps) == [LandmarkRole.LOWER_LIP]
        assert cps[LandmarkRole.LOWER_LIP].delta == pytest.approx((0.0, 6.0))

    def test_mirror_equivariant(self, face_landmarks):
        """Mapping mirrored landmarks gives the mirrored targets."""
        original = map_control_points(face_landmarks, 0.8)
        mirrored = map_control_points(face_landmarks.mirrored(200), 0.8)
        for role in original:
            ox, oy = original[role].target
            mx, my = mirrored[role].target
            assert mx == pytest.approx(199.0 - ox, abs=1e-4)
            assert my == pytest.approx(oy, abs=1e-4)


class TestControlArrays:

    def test_shapes(self, face_landmarks):
        sources, deltas = control_arrays(map_control_points(face_landmarks, 1.0))
        assert sources.shape == (len(SAD_OFFSETS), 2)
        assert deltas.shape == sources.shape
        assert sources.dtype == np.float64

    def test_empty(self):
        sources, deltas = control_arrays({})
        assert sources.shape == (0, 2)
        assert deltas.shape == (0, 2)
