"""
Face landmark roles, detector index tables, and landmark ingestion.

This module provides:
- LandmarkRole: semantic names for the landmarks the warp engine reads
- Detector layouts: one {LandmarkRole: index} table per supported detector
- LandmarkSet: a validated, per-frame set of 2D landmarks in pixel space
- compute_ipd: inter-eye distance used as the scale reference
- LandmarkIngest: convert external landmark formats to a LandmarkSet

Supported detector layouts:
  mediapipe: MediaPipe Face Mesh (468 points, or 478 with iris refinement)
  clm:       clmtrackr face model (71 points)

"Left" and "right" follow each detector's own naming (the subject's side
for MediaPipe). The warp engine never relies on which side of the image a
role lands on; inward directions are derived from geometry, so landmarks
may be given in mirrored or unmirrored image space.

No detector dependency is required. Detection itself happens upstream.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Below this the inter-eye distance is treated as an invalid scale reference
IPD_EPSILON = 1e-6
# Clamped inter-eye distance in pixels
MIN_IPD = 1.0


class MalformedLandmarkSet(ValueError):
    """Landmarks have the wrong shape, too few points, or invalid values."""


class LandmarkRole(str, Enum):
    """Semantic landmark roles used by the warp engine."""

    RIGHT_INNER_BROW = "right_inner_brow"
    LEFT_INNER_BROW = "left_inner_brow"
    RIGHT_MID_BROW = "right_mid_brow"
    LEFT_MID_BROW = "left_mid_brow"
    RIGHT_MOUTH_CORNER = "right_mouth_corner"
    LEFT_MOUTH_CORNER = "left_mouth_corner"
    UPPER_LIP = "upper_lip"
    LOWER_LIP = "lower_lip"
    RIGHT_UPPER_EYELID = "right_upper_eyelid"
    LEFT_UPPER_EYELID = "left_upper_eyelid"
    RIGHT_EYE_INNER = "right_eye_inner"
    RIGHT_EYE_OUTER = "right_eye_outer"
    LEFT_EYE_INNER = "left_eye_inner"
    LEFT_EYE_OUTER = "left_eye_outer"
    # Scale references; ipd is measured between these two
    RIGHT_EYE_REF = "right_eye_ref"
    LEFT_EYE_REF = "left_eye_ref"


# =============================================================================
# Detector Layouts
# =============================================================================

# MediaPipe Face Mesh indices (subject's left/right).
MEDIAPIPE_LAYOUT: Dict[LandmarkRole, int] = {
    LandmarkRole.RIGHT_INNER_BROW: 65,
    LandmarkRole.LEFT_INNER_BROW: 295,
    LandmarkRole.RIGHT_MID_BROW: 70,
    LandmarkRole.LEFT_MID_BROW: 300,
    LandmarkRole.RIGHT_MOUTH_CORNER: 61,
    LandmarkRole.LEFT_MOUTH_CORNER: 291,
    LandmarkRole.UPPER_LIP: 13,
    LandmarkRole.LOWER_LIP: 14,
    LandmarkRole.RIGHT_UPPER_EYELID: 159,
    LandmarkRole.LEFT_UPPER_EYELID: 386,
    LandmarkRole.RIGHT_EYE_INNER: 133,
    LandmarkRole.RIGHT_EYE_OUTER: 33,
    LandmarkRole.LEFT_EYE_INNER: 362,
    LandmarkRole.LEFT_EYE_OUTER: 263,
    LandmarkRole.RIGHT_EYE_REF: 33,
    LandmarkRole.LEFT_EYE_REF: 263,
}

# clmtrackr face model indices. Eye references are the pupils.
CLM_LAYOUT: Dict[LandmarkRole, int] = {
    LandmarkRole.RIGHT_INNER_BROW: 15,
    LandmarkRole.LEFT_INNER_BROW: 19,
    LandmarkRole.RIGHT_MID_BROW: 14,
    LandmarkRole.LEFT_MID_BROW: 20,
    LandmarkRole.RIGHT_MOUTH_CORNER: 50,
    LandmarkRole.LEFT_MOUTH_CORNER: 44,
    LandmarkRole.UPPER_LIP: 47,
    LandmarkRole.LOWER_LIP: 53,
    LandmarkRole.RIGHT_UPPER_EYELID: 29,
    LandmarkRole.LEFT_UPPER_EYELID: 24,
    LandmarkRole.RIGHT_EYE_INNER: 30,
    LandmarkRole.RIGHT_EYE_OUTER: 28,
    LandmarkRole.LEFT_EYE_INNER: 25,
    LandmarkRole.LEFT_EYE_OUTER: 23,
    LandmarkRole.RIGHT_EYE_REF: 32,
    LandmarkRole.LEFT_EYE_REF: 27,
}

DETECTOR_LAYOUTS: Dict[str, Dict[LandmarkRole, int]] = {
    "mediapipe": MEDIAPIPE_LAYOUT,
    "clm": CLM_LAYOUT,
}

# Number of points each detector emits
DETECTOR_POINT_COUNTS = {
    "mediapipe": 468,
    "clm": 71,
}


def get_layout(detector: str) -> Dict[LandmarkRole, int]:
    """
    Look up the role index table for a detector.

    Raises:
        ValueError: If the detector is not supported
    """
    try:
        return DETECTOR_LAYOUTS[detector]
    except KeyError:
        raise ValueError(
            f"Unsupported detector layout: '{detector}'. "
            f"Supported: {', '.join(sorted(DETECTOR_LAYOUTS))}"
        )


# =============================================================================
# Landmark Set
# =============================================================================

class LandmarkSet:
    """
    Validated 2D face landmarks for one frame, in image pixel coordinates.

    Landmarks are immutable after creation. Individual points are read by
    semantic role through the detector layout:

        landmarks = LandmarkSet(points, detector="mediapipe")
        brow = landmarks[LandmarkRole.LEFT_INNER_BROW]   # array([x, y])
    """

    def __init__(
        self,
        points: Union[NDArray[np.float32], List[List[float]]],
        detector: str = "mediapipe"
    ):
        """
        Initialize a LandmarkSet.

        Args:
            points: Landmark positions, shape (N, 2) or (N, 3). A third
                    column (depth) is ignored.
            detector: Detector layout name (see DETECTOR_LAYOUTS)

        Raises:
            ValueError: If the detector layout is unknown
            MalformedLandmarkSet: If points have the wrong shape, too few
                                  entries, or non-finite required points
        """
        self.detector = detector
        self.layout = get_layout(detector)

        try:
            pts = np.asarray(points, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise MalformedLandmarkSet(f"Landmarks are not numeric: {e}")

        if pts.ndim != 2 or pts.shape[1] not in (2, 3):
            raise MalformedLandmarkSet(
                f"Expected landmarks shape (N, 2) or (N, 3), got {pts.shape}"
            )

        required = DETECTOR_POINT_COUNTS[detector]
        if pts.shape[0] < required:
            raise MalformedLandmarkSet(
                f"{detector} landmarks require at least {required} points, "
                f"got {pts.shape[0]}"
            )

        pts = np.array(pts[:, :2], dtype=np.float32)
        role_points = pts[list(self.layout.values())]
        if not np.all(np.isfinite(role_points)):
            raise MalformedLandmarkSet("Required landmarks contain NaN or inf")

        pts.setflags(write=False)
        self._points = pts

    @property
    def points(self) -> NDArray[np.float32]:
        """All landmark positions, shape (N, 2), read-only."""
        return self._points

    def __len__(self) -> int:
        return self._points.shape[0]

    def __getitem__(self, role: LandmarkRole) -> NDArray[np.float32]:
        return self._points[self.layout[role]]

    def __repr__(self) -> str:
        return f"LandmarkSet(detector={self.detector!r}, n_points={len(self)})"

    def bounds(self) -> Tuple[NDArray[np.float32], NDArray[np.float32]]:
        """
        Axis-aligned bounds of all finite landmarks.

        Returns:
            (min_corner, max_corner), each shape (2,)
        """
        finite = self._points[np.all(np.isfinite(self._points), axis=1)]
        return finite.min(axis=0), finite.max(axis=0)

    def midline_x(self) -> float:
        """Horizontal position of the face midline (midpoint of eye references)."""
        right = self[LandmarkRole.RIGHT_EYE_REF]
        left = self[LandmarkRole.LEFT_EYE_REF]
        return float((right[0] + left[0]) / 2.0)

    def mirrored(self, image_width: int) -> "LandmarkSet":
        """
        Landmarks of the horizontally flipped image.

        Matches cv2.flip(image, 1): pixel column x maps to width - 1 - x.
        """
        pts = self._points.copy()
        pts[:, 0] = (image_width - 1) - pts[:, 0]
        return LandmarkSet(pts, detector=self.detector)

    def scaled(self, sx: float, sy: Optional[float] = None) -> "LandmarkSet":
        """Landmarks of the image resized by (sx, sy); uniform if sy is None."""
        if sy is None:
            sy = sx
        factor = np.array([sx, sy], dtype=np.float32)
        return LandmarkSet(self._points * factor, detector=self.detector)


def compute_ipd(landmarks: LandmarkSet) -> float:
    """
    Inter-eye distance in pixels, the scale reference for all offsets.

    A distance below IPD_EPSILON is an invalid scale reference and is
    clamped to MIN_IPD instead of propagating a divide-by-zero.
    """
    right = landmarks[LandmarkRole.RIGHT_EYE_REF]
    left = landmarks[LandmarkRole.LEFT_EYE_REF]
    ipd = float(np.linalg.norm(left - right))

    if ipd < IPD_EPSILON:
        logger.debug("Inter-eye distance %.3g below epsilon, clamping to %.1f", ipd, MIN_IPD)
        return MIN_IPD
    return ipd


# =============================================================================
# Landmark Ingestion
# =============================================================================

class LandmarkIngest:
    """
    Convert external face landmark formats to a LandmarkSet.

    Usage:
        # Normalized MediaPipe output for a 1280x720 frame:
        landmarks = LandmarkIngest.from_mediapipe(mp_landmarks, (1280, 720))

        # Pixel-space points from any supported detector:
        landmarks = LandmarkIngest.from_pixels(points, detector="clm")

        # JSON file (None when the file records no face):
        landmarks = LandmarkIngest.from_json("landmarks.json")
    """

    @staticmethod
    def from_mediapipe(
        landmarks: Union[List[List[float]], NDArray[np.float32]],
        image_size: Tuple[int, int],
    ) -> LandmarkSet:
        """
        Convert normalized MediaPipe Face Mesh landmarks to pixel space.

        MediaPipe x is normalized to image width and y to image height.

        Args:
            landmarks: MediaPipe landmarks, shape (N, 2) or (N, 3), N >= 468
            image_size: (width, height) of the frame the landmarks came from

        Returns:
            LandmarkSet with the mediapipe layout

        Raises:
            MalformedLandmarkSet: If landmarks have wrong shape or too few points
        """
        lm = np.asarray(landmarks, dtype=np.float32)
        if lm.ndim != 2 or lm.shape[1] not in (2, 3):
            raise MalformedLandmarkSet(
                f"Expected landmarks shape (N, 2) or (N, 3), got {lm.shape}"
            )

        w, h = image_size
        pixels = lm[:, :2] * np.array([w, h], dtype=np.float32)
        return LandmarkSet(pixels, detector="mediapipe")

    @staticmethod
    def from_pixels(
        points: Union[List[List[float]], NDArray[np.float32]],
        detector: str = "mediapipe"
    ) -> LandmarkSet:
        """Wrap pixel-space landmarks from a supported detector."""
        return LandmarkSet(points, detector=detector)

    @staticmethod
    def from_json(
        filepath: Union[str, Path],
        image_size: Optional[Tuple[int, int]] = None
    ) -> Optional[LandmarkSet]:
        """
        Load landmarks from a JSON file.

        Format:
            {"source": "mediapipe" | "clm",
             "landmarks": [[x, y(, z)], ...] or null,
             "image_size": [width, height],      (optional)
             "normalized": true | false}          (optional)

        MediaPipe landmarks are normalized unless "normalized" is false;
        clm landmarks are pixel-space unless "normalized" is true.
        Normalized landmarks need an image size, from the file or from the
        image_size argument (the argument wins).

        Args:
            filepath: Path to JSON file
            image_size: (width, height) of the frame, overrides the file

        Returns:
            LandmarkSet, or None if the file records no face

        Raises:
            ValueError: If the source is unsupported or an image size is missing
            MalformedLandmarkSet: If the landmark data is invalid
            FileNotFoundError: If file does not exist
        """
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            data = json.load(f)

        source = str(data.get("source", "")).lower()
        if source not in DETECTOR_LAYOUTS:
            raise ValueError(
                f"Unsupported face landmark source: '{source}' in {filepath}. "
                f"Supported: {', '.join(sorted(DETECTOR_LAYOUTS))}"
            )

        raw_landmarks = data.get("landmarks")
        if not raw_landmarks:
            logger.debug("No face recorded in %s", filepath)
            return None

        normalized = data.get("normalized", source == "mediapipe")
        size = image_size or data.get("image_size")
        logger.debug(
            "Loading %s JSON from %s: %d landmarks, image_size=%s, normalized=%s",
            source, filepath, len(raw_landmarks), size, normalized
        )

        if not normalized:
            return LandmarkSet(raw_landmarks, detector=source)

        if size is None:
            raise ValueError(
                f"Normalized landmarks in {filepath} need an image_size"
            )
        lm = np.asarray(raw_landmarks, dtype=np.float32)
        if lm.ndim != 2 or lm.shape[1] not in (2, 3):
            raise MalformedLandmarkSet(
                f"Expected landmarks shape (N, 2) or (N, 3), got {lm.shape}"
            )
        w, h = size
        return LandmarkSet(lm[:, :2] * np.array([w, h], dtype=np.float32), detector=source)
