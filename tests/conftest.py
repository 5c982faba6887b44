"""
Shared fixtures: a synthetic MediaPipe-layout face on a 200x200 image.

Roles sit at plausible positions; every other landmark lies on an ellipse
around the face so the face bounds are well defined.
"""

import numpy as np
import pytest

from facewarp.landmarks import MEDIAPIPE_LAYOUT, LandmarkRole, LandmarkSet

IMAGE_SIZE = (200, 200)

ROLE_POSITIONS = {
    LandmarkRole.RIGHT_EYE_REF: (70.0, 85.0),
    LandmarkRole.LEFT_EYE_REF: (130.0, 85.0),
    LandmarkRole.RIGHT_EYE_OUTER: (70.0, 85.0),
    LandmarkRole.LEFT_EYE_OUTER: (130.0, 85.0),
    LandmarkRole.RIGHT_EYE_INNER: (88.0, 86.0),
    LandmarkRole.LEFT_EYE_INNER: (112.0, 86.0),
    LandmarkRole.RIGHT_UPPER_EYELID: (79.0, 80.0),
    LandmarkRole.LEFT_UPPER_EYELID: (121.0, 80.0),
    LandmarkRole.RIGHT_INNER_BROW: (88.0, 68.0),
    LandmarkRole.LEFT_INNER_BROW: (112.0, 68.0),
    LandmarkRole.RIGHT_MID_BROW: (72.0, 66.0),
    LandmarkRole.LEFT_MID_BROW: (128.0, 66.0),
    LandmarkRole.RIGHT_MOUTH_CORNER: (82.0, 135.0),
    LandmarkRole.LEFT_MOUTH_CORNER: (118.0, 135.0),
    LandmarkRole.UPPER_LIP: (100.0, 130.0),
    LandmarkRole.LOWER_LIP: (100.0, 140.0),
}


def make_face_points(n_points: int = 468) -> np.ndarray:
    """Pixel-space landmarks, shape (n_points, 2)."""
    theta = np.linspace(0.0, 2.0 * np.pi, n_points, endpoint=False)
    points = np.stack([100.0 + 45.0 * np.cos(theta), 105.0 + 55.0 * np.sin(theta)], axis=1)
    for role, position in ROLE_POSITIONS.items():
        points[MEDIAPIPE_LAYOUT[role]] = position
    return points.astype(np.float32)


def make_image(width: int = 200, height: int = 200, channels: int = 3) -> np.ndarray:
    """Smooth textured uint8 image."""
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    base = 40.0 + 0.6 * xs + 0.3 * ys + 20.0 * np.sin(xs / 7.0) * np.cos(ys / 9.0)
    channels_list = [np.clip(base + 15.0 * c, 0, 255) for c in range(channels)]
    return np.stack(channels_list, axis=2).astype(np.uint8)


@pytest.fixture
def face_points():
    return make_face_points()


@pytest.fixture
def face_landmarks(face_points):
    return LandmarkSet(face_points, detector="mediapipe")


@pytest.fixture
def image():
    return make_image()


@pytest.fixture
def odd_image():
    """Non-square frame whose rows and columns round differently when scaled."""
    return make_image(width=300, height=201)
