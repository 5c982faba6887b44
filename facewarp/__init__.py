"""
facewarp - Real-time landmark-driven facial expression warping.

This package deforms the face in a video frame from sparse control-point
displacements:
- Control points derived from face landmarks, scaled by inter-eye distance
- A smooth Gaussian RBF displacement field
- Grid tessellation with one affine transform per triangle
- Feathered patch compositing for localized regions

Example usage:
    from facewarp import WarpEngine, WarpConfig, LandmarkIngest

    engine = WarpEngine(WarpConfig(intensity=0.8))
    landmarks = LandmarkIngest.from_mediapipe(mp_landmarks, (width, height))
    output = engine.process(frame, landmarks)
"""

__version__ = "0.1.0"

from .affine import AffineTransform, ResampleStats, solve_affine, warp_triangle
from .buffers import BufferPool
from .compositor import FeatherStyle, PatchCompositor, feather_mask, probe_capabilities
from .config import Config, WarpConfig
from .control_points import ControlPoint, map_control_points
from .engine import FrameState, WarpEngine
from .field import DisplacementField, build_displacement_field
from .grid import BoundingBox, Grid, tessellate
from .landmarks import (
    LandmarkIngest,
    LandmarkRole,
    LandmarkSet,
    MalformedLandmarkSet,
    compute_ipd,
)
from .trigger import Trigger, TriggerKind, TriggerMode

__all__ = [
    "AffineTransform",
    "BoundingBox",
    "BufferPool",
    "Config",
    "ControlPoint",
    "DisplacementField",
    "FeatherStyle",
    "FrameState",
    "Grid",
    "LandmarkIngest",
    "LandmarkRole",
    "LandmarkSet",
    "MalformedLandmarkSet",
    "PatchCompositor",
    "ResampleStats",
    "Trigger",
    "TriggerKind",
    "TriggerMode",
    "WarpConfig",
    "WarpEngine",
    "build_displacement_field",
    "compute_ipd",
    "feather_mask",
    "map_control_points",
    "probe_capabilities",
    "solve_affine",
    "tessellate",
    "warp_triangle",
]
