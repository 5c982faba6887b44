"""
Per-frame warp engine.

This module provides the WarpEngine class which ties together:
- Landmark validation (malformed sets degrade to passthrough)
- Trigger policy (always on, EMA threshold, forced)
- Control point mapping and the displacement field
- Grid tessellation and affine resampling ("grid" mode)
- Feathered patch compositing ("patches" mode)

Each frame is in one of two states:
  NO_FACE:       no usable landmarks, the frame passes through unmodified
  FACE_DETECTED: the face region is warped

This is the main API for users of the library.
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np
from numpy.typing import NDArray

from .affine import ResampleStats, resample_grid
from .buffers import BufferPool
from .compositor import (
    Capabilities,
    FeatherStyle,
    PatchCompositor,
    probe_capabilities,
    sad_patch_regions,
)
from .config import WarpConfig
from .control_points import map_control_points
from .field import build_displacement_field
from .grid import BoundingBox, padded_bounds, tessellate
from .landmarks import LandmarkSet, MalformedLandmarkSet, compute_ipd
from .trigger import Trigger

logger = logging.getLogger(__name__)


class FrameState(str, Enum):
    NO_FACE = "no_face"
    FACE_DETECTED = "face_detected"


class WarpEngine:
    """
    Warp the face region of video frames, one frame at a time.

    Example:
        engine = WarpEngine(WarpConfig(intensity=0.8, mode="patches"))
        engine.reserve(frame.shape)
        for frame, landmarks in stream:
            output = engine.process(frame, landmarks)

    The engine is not thread-safe; frames must be processed sequentially.
    """

    def __init__(
        self,
        config: Optional[WarpConfig] = None,
        capabilities: Optional[Capabilities] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Warp configuration (defaults if None)
            capabilities: Probed optional effects; probed here if None

        Raises:
            ValueError: If the configuration is invalid
        """
        self.config = config if config is not None else WarpConfig()
        self.config.validate()

        self.capabilities = capabilities if capabilities is not None else probe_capabilities()
        self.pool = BufferPool()
        self.trigger = Trigger(self.config.trigger.to_mode())

        feather = self.config.feather
        style = FeatherStyle(feather.style) if feather.style else self.capabilities.feather_style
        if style == FeatherStyle.BLUR and not self.capabilities.gaussian_blur:
            logger.warning("Blur feathering requested but unavailable, using ramp")
            style = FeatherStyle.RAMP
        self.compositor = PatchCompositor(
            self.pool,
            feather_style=style,
            feather_min_margin=feather.min_margin,
            feather_ipd_factor=feather.ipd_factor
        )

        self.state = FrameState.NO_FACE
        self.last_stats = ResampleStats()

    def _working_shape(self, frame_shape: Tuple[int, ...]) -> Tuple[int, ...]:
        scale = self.config.source_scale
        if scale >= 1.0:
            return tuple(frame_shape)
        h, w = frame_shape[:2]
        return (max(int(round(h * scale)), 1), max(int(round(w * scale)), 1)) + tuple(frame_shape[2:])

    def reserve(self, frame_shape: Tuple[int, ...], dtype=np.uint8) -> None:
        """Allocate scratch buffers for a frame size before the first frame."""
        shape = self._working_shape(frame_shape)
        if self.config.mode == "patches":
            self.pool.reserve("patch_image", shape, dtype)
            self.pool.reserve("patch_alpha", shape[:2], np.float32)
        if self.config.source_scale < 1.0:
            self.pool.reserve("work_output", shape, dtype)

    def _validate_landmarks(
        self,
        landmarks: Union[LandmarkSet, NDArray[np.float32], None]
    ) -> Optional[LandmarkSet]:
        if landmarks is None or isinstance(landmarks, LandmarkSet):
            return landmarks
        try:
            return LandmarkSet(landmarks, detector=self.config.detector)
        except MalformedLandmarkSet as e:
            logger.warning("Malformed landmarks, passing frame through: %s", e)
            return None

    def process(
        self,
        frame: NDArray[np.uint8],
        landmarks: Union[LandmarkSet, NDArray[np.float32], None],
        score: Optional[float] = None,
        out: Optional[NDArray[np.uint8]] = None
    ) -> NDArray[np.uint8]:
        """
        Warp one frame.

        Args:
            frame: Input image (H, W) or (H, W, C), not modified
            landmarks: LandmarkSet or pixel-space (N, 2|3) array for this
                       frame, or None when no face was detected
            score: External per-frame expression score (threshold trigger)
            out: Optional output buffer with the frame's shape and dtype

        Returns:
            Output image with the same shape and dtype as frame
        """
        if out is None:
            out = np.empty_like(frame)
        elif out.shape != frame.shape or out.dtype != frame.dtype:
            raise ValueError(
                f"out buffer {out.shape} {out.dtype} does not match frame {frame.shape} {frame.dtype}"
            )
        np.copyto(out, frame)
        self.last_stats = ResampleStats()

        landmark_set = self._validate_landmarks(landmarks)
        if landmark_set is None:
            self.state = FrameState.NO_FACE
            return out

        self.state = FrameState.FACE_DETECTED
        intensity = self.trigger.effective_intensity(self.config.intensity, score)
        if intensity <= 0.0:
            return out

        scale = self.config.source_scale
        if scale >= 1.0:
            self._warp(frame, out, landmark_set, intensity)
            return out

        h, w = frame.shape[:2]
        work_shape = self._working_shape(frame.shape)
        small = cv2.resize(frame, (work_shape[1], work_shape[0]), interpolation=cv2.INTER_AREA)
        small = small.reshape(work_shape)
        small_out = self.pool.acquire("work_output", work_shape, frame.dtype)
        np.copyto(small_out, small)

        small_landmarks = landmark_set.scaled(work_shape[1] / w, work_shape[0] / h)
        affected = self._warp(small, small_out, small_landmarks, intensity)
        if affected is None:
            return out

        full = cv2.resize(small_out, (w, h), interpolation=cv2.INTER_LINEAR).reshape(frame.shape)
        sx, sy = w / work_shape[1], h / work_shape[0]
        x0 = max(int(np.floor(affected.x * sx)), 0)
        y0 = max(int(np.floor(affected.y * sy)), 0)
        x1 = min(int(np.ceil(affected.x2 * sx)), w)
        y1 = min(int(np.ceil(affected.y2 * sy)), h)
        out[y0:y1, x0:x1] = full[y0:y1, x0:x1]
        return out

    def _warp(
        self,
        src: NDArray[np.uint8],
        out: NDArray[np.uint8],
        landmarks: LandmarkSet,
        intensity: float
    ) -> Optional[BoundingBox]:
        """
        Warp src into out (already holding a copy of src).

        Returns:
            Bounding box of the pixels that may have changed, or None
        """
        h, w = src.shape[:2]
        ipd = compute_ipd(landmarks)

        if self.config.mode == "patches":
            regions = sad_patch_regions(landmarks, intensity, ipd, (w, h))
            self.last_stats = self.compositor.composite(src, out, regions, ipd)
            return _union_box([r.box for r in regions], (w, h))

        control_points = map_control_points(landmarks, intensity, ipd=ipd)
        field = build_displacement_field(control_points, ipd * self.config.sigma_factor)
        box = padded_bounds(np.stack(landmarks.bounds()), self.config.padding_fraction, (w, h))
        if box.is_empty:
            logger.debug("Face region lies outside the frame")
            return None

        cols, rows = self.config.grid_resolution
        grid = tessellate(box, cols, rows, field)
        self.last_stats = resample_grid(src, out, grid)

        # Destinations may leave the box slightly
        return _union_box([box, BoundingBox.from_points(grid.destination, pad=1.0)], (w, h))


def _union_box(boxes: List[BoundingBox], image_size: Tuple[int, int]) -> Optional[BoundingBox]:
    corners = np.concatenate([b.corners() for b in boxes], axis=0)
    box = BoundingBox.from_points(corners, image_size=image_size)
    return None if box.is_empty else box
