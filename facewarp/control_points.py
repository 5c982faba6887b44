"""
Control point mapping: landmarks + intensity -> target positions.

Each control point moves its landmark by an offset expressed in units of
the inter-eye distance (ipd), scaled linearly by intensity:

    target = source + (pinch * inward, drop) * ipd * intensity

where `drop` is positive downward (image y grows down) and `inward` is +1
or -1 depending on which side of the face midline the landmark sits.
Intensity 0 is exactly identity; intensity 1 is the designed maximum.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from .landmarks import LandmarkRole, LandmarkSet, compute_ipd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlOffset:
    """Per-role offset in ipd units at intensity 1.

    Positive pinch moves toward the face midline, negative pinch away.
    """
    drop: float = 0.0
    pinch: float = 0.0


# Sad expression offsets
BROW_DROP = 0.25
BROW_PINCH = 0.08
MOUTH_DROP = 0.28
LIP_RAISE = 0.06
LID_DROOP = 0.06

SAD_OFFSETS: Dict[LandmarkRole, ControlOffset] = {
    # Inner brows drop and pinch toward the midline
    LandmarkRole.RIGHT_INNER_BROW: ControlOffset(BROW_DROP, BROW_PINCH),
    LandmarkRole.LEFT_INNER_BROW: ControlOffset(BROW_DROP, BROW_PINCH),
    LandmarkRole.RIGHT_MID_BROW: ControlOffset(BROW_DROP * 0.7, BROW_PINCH * 0.5),
    LandmarkRole.LEFT_MID_BROW: ControlOffset(BROW_DROP * 0.7, BROW_PINCH * 0.5),
    # Mouth corners pull down and slightly apart
    LandmarkRole.RIGHT_MOUTH_CORNER: ControlOffset(MOUTH_DROP, -BROW_PINCH * 0.2),
    LandmarkRole.LEFT_MOUTH_CORNER: ControlOffset(MOUTH_DROP, -BROW_PINCH * 0.2),
    LandmarkRole.UPPER_LIP: ControlOffset(-LIP_RAISE, 0.0),
    LandmarkRole.RIGHT_UPPER_EYELID: ControlOffset(LID_DROOP, 0.0),
    LandmarkRole.LEFT_UPPER_EYELID: ControlOffset(LID_DROOP, 0.0),
}


@dataclass(frozen=True)
class ControlPoint:
    """A landmark's current (source) and displaced (target) position."""
    role: LandmarkRole
    source: Tuple[float, float]
    target: Tuple[float, float]

    @property
    def delta(self) -> Tuple[float, float]:
        return (self.target[0] - self.source[0], self.target[1] - self.source[1])


def clamp_intensity(intensity: float) -> float:
    """Clamp intensity to [0, 1]."""
    return float(min(max(intensity, 0.0), 1.0))


def inward_sign(x: float, midline_x: float) -> float:
    """+1 if moving right goes toward the midline, -1 if left, 0 on it."""
    return float(np.sign(midline_x - x))


def map_control_points(
    landmarks: LandmarkSet,
    intensity: float,
    offsets: Dict[LandmarkRole, ControlOffset] = SAD_OFFSETS,
    ipd: Optional[float] = None
) -> Dict[LandmarkRole, ControlPoint]:
    """
    Map landmark roles to control points for the given intensity.

    Args:
        landmarks: Landmarks for the current frame
        intensity: Deformation strength, clamped to [0, 1]
        offsets: Per-role offsets in ipd units
        ipd: Precomputed inter-eye distance (computed if None)

    Returns:
        Dict mapping each role in offsets to its ControlPoint
    """
    k = clamp_intensity(intensity)
    if ipd is None:
        ipd = compute_ipd(landmarks)
    midline_x = landmarks.midline_x()
    scale = ipd * k

    control_points = {}
    for role, offset in offsets.items():
        sx, sy = (float(v) for v in landmarks[role])
        dx = offset.pinch * scale * inward_sign(sx, midline_x)
        dy = offset.drop * scale
        control_points[role] = ControlPoint(role, (sx, sy), (sx + dx, sy + dy))

    logger.debug(
        "Mapped %d control points: ipd=%.1f, intensity=%.2f",
        len(control_points), ipd, k
    )
    return control_points


def control_arrays(
    control_points: Dict[LandmarkRole, ControlPoint]
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Stack control points into (sources, deltas) arrays, each shape (K, 2).
    """
    if not control_points:
        empty = np.zeros((0, 2), dtype=np.float64)
        return empty, empty.copy()

    sources = np.array([cp.source for cp in control_points.values()], dtype=np.float64)
    deltas = np.array([cp.delta for cp in control_points.values()], dtype=np.float64)
    return sources, deltas
