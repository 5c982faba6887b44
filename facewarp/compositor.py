"""
Localized patch warping with feathered compositing.

Each anatomical region (mouth, both brows, both upper eyelids) is warped
independently: its rectangle is mapped to a displaced quad, resampled into
an isolated buffer with an alpha plane, the alpha is multiplied by a
feathered rounded-rectangle mask, and the buffer is alpha-blended onto the
output. Every region reads from the unmodified base frame.

Feather masks come in two styles:
  blur: solid inset rounded rectangle softened with a Gaussian blur
  ramp: smoothstep of the signed distance to the rounded rectangle

Whether the blur effect is usable is probed once with probe_capabilities().
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from .affine import ResampleStats, warp_quad
from .buffers import BufferPool
from .control_points import clamp_intensity, inward_sign
from .grid import BoundingBox
from .landmarks import LandmarkRole, LandmarkSet

logger = logging.getLogger(__name__)


class FeatherStyle(str, Enum):
    BLUR = "blur"
    RAMP = "ramp"


@dataclass(frozen=True)
class Capabilities:
    """Optional effects available in this process."""
    gaussian_blur: bool = False

    @property
    def feather_style(self) -> FeatherStyle:
        return FeatherStyle.BLUR if self.gaussian_blur else FeatherStyle.RAMP


def probe_capabilities() -> Capabilities:
    """Check once which optional resampling effects work."""
    try:
        probe = cv2.GaussianBlur(np.ones((8, 8), dtype=np.float32), (0, 0), 1.0)
        blur = probe.shape == (8, 8)
    except cv2.error as e:
        logger.info("Gaussian blur unavailable, using ramp feathering: %s", e)
        blur = False

    capabilities = Capabilities(gaussian_blur=blur)
    logger.info("Capabilities: %s", capabilities)
    return capabilities


# =============================================================================
# Feather Mask
# =============================================================================

def rounded_rect_distance(width: int, height: int, radius: float) -> NDArray[np.float32]:
    """
    Signed distance from each pixel center to a rounded rectangle.

    The rectangle spans [0, width] x [0, height]. Distances are negative
    inside, zero on the boundary, positive outside.
    """
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    half_w = width / 2.0
    half_h = height / 2.0
    qx = np.abs(xs + 0.5 - half_w) - (half_w - radius)
    qy = np.abs(ys + 0.5 - half_h) - (half_h - radius)

    outside = np.hypot(np.maximum(qx, 0.0), np.maximum(qy, 0.0))
    inside = np.minimum(np.maximum(qx, qy), 0.0)
    return (outside + inside - radius).astype(np.float32)


def feather_mask(
    width: int,
    height: int,
    margin: float,
    style: FeatherStyle = FeatherStyle.RAMP
) -> NDArray[np.float32]:
    """
    Feathered rounded-rectangle alpha mask.

    Full opacity in the interior, decaying to ~0 at the border over
    `margin` pixels. Margin and corner radius are capped at a quarter of
    the smaller side.

    Args:
        width, height: Mask size in pixels
        margin: Feather width in pixels
        style: FeatherStyle.BLUR or FeatherStyle.RAMP

    Returns:
        Float32 mask, shape (height, width), values in [0, 1]
    """
    if width <= 0 or height <= 0:
        return np.zeros((max(height, 0), max(width, 0)), dtype=np.float32)

    m = min(margin, width * 0.25, height * 0.25)
    if m <= 0:
        return np.ones((height, width), dtype=np.float32)

    distance = rounded_rect_distance(width, height, m)

    if style == FeatherStyle.BLUR:
        solid = (distance <= -m / 2.0).astype(np.float32)
        mask = cv2.GaussianBlur(solid, (0, 0), sigmaX=m / 4.0, borderType=cv2.BORDER_REPLICATE)
    else:
        t = np.clip(-distance / m, 0.0, 1.0)
        mask = t * t * (3.0 - 2.0 * t)

    return np.clip(mask, 0.0, 1.0).astype(np.float32)


def alpha_over(
    dst: NDArray[np.uint8],
    src: NDArray[np.uint8],
    alpha: NDArray[np.float32]
) -> None:
    """
    Blend src over an opaque dst in place: dst = src * alpha + dst * (1 - alpha).

    Args:
        dst: Destination pixels (H, W) or (H, W, C), modified in place
        src: Source pixels, same shape as dst
        alpha: Per-pixel opacity, shape (H, W)
    """
    a = alpha.astype(np.float32)
    if dst.ndim == 3:
        a = a[..., np.newaxis]
    blended = src.astype(np.float32) * a + dst.astype(np.float32) * (1.0 - a)
    dst[...] = np.clip(np.rint(blended), 0, 255).astype(dst.dtype)


# =============================================================================
# Patch Regions
# =============================================================================

@dataclass(frozen=True, eq=False)
class PatchRegion:
    """One independently warped rectangle and its displaced quad."""
    name: str
    box: BoundingBox
    dst_quad: NDArray[np.float64]

    @property
    def src_quad(self) -> NDArray[np.float64]:
        return self.box.corners()


# Region offsets in ipd units at intensity 1
MOUTH_PAD_MIN = 20.0
MOUTH_PAD = 0.5
MOUTH_DROP = 0.22
MOUTH_TOP_DROP = 0.06
BROW_WIDTH = 0.55
BROW_HEIGHT = 0.22
BROW_DROP = 0.14
BROW_PINCH = 0.04 * 0.6
EYE_WIDTH = 0.95
EYE_ASPECT = 0.5
LID_DROOP = 0.06


def sad_patch_regions(
    landmarks: LandmarkSet,
    intensity: float,
    ipd: float,
    image_size: Tuple[int, int]
) -> List[PatchRegion]:
    """
    Mouth, brow and eyelid patches for the sad expression.

    Args:
        landmarks: Landmarks for the current frame
        intensity: Deformation strength, clamped to [0, 1]
        ipd: Inter-eye distance in pixels
        image_size: (width, height) of the frame

    Returns:
        List of PatchRegion in compositing order
    """
    k = clamp_intensity(intensity)
    midline_x = landmarks.midline_x()
    regions = []

    # Mouth: top edge sinks a little, bottom edge sinks more
    mouth_points = np.array([
        landmarks[LandmarkRole.RIGHT_MOUTH_CORNER],
        landmarks[LandmarkRole.LEFT_MOUTH_CORNER],
        landmarks[LandmarkRole.UPPER_LIP],
        landmarks[LandmarkRole.LOWER_LIP],
    ], dtype=np.float64)
    box = BoundingBox.from_points(mouth_points, max(MOUTH_PAD_MIN, ipd * MOUTH_PAD), image_size)
    quad = box.corners()
    quad[0:2, 1] += MOUTH_TOP_DROP * ipd * k
    quad[2:4, 1] += MOUTH_DROP * ipd * k
    regions.append(PatchRegion("mouth", box, quad))

    # Brows: whole patch drops and pinches toward the midline
    for name, role in (("right_brow", LandmarkRole.RIGHT_MID_BROW),
                       ("left_brow", LandmarkRole.LEFT_MID_BROW)):
        center = landmarks[role].astype(np.float64)
        box = BoundingBox.centered(center, ipd * BROW_WIDTH, ipd * BROW_HEIGHT)
        shift = (BROW_PINCH * ipd * k * inward_sign(center[0], midline_x),
                 BROW_DROP * ipd * k)
        regions.append(PatchRegion(name, box, box.corners() + shift))

    # Upper eyelids: gentle droop
    for name, inner_role, outer_role in (
        ("right_eyelid", LandmarkRole.RIGHT_EYE_INNER, LandmarkRole.RIGHT_EYE_OUTER),
        ("left_eyelid", LandmarkRole.LEFT_EYE_INNER, LandmarkRole.LEFT_EYE_OUTER),
    ):
        inner = landmarks[inner_role].astype(np.float64)
        outer = landmarks[outer_role].astype(np.float64)
        w = float(np.linalg.norm(outer - inner)) * EYE_WIDTH
        box = BoundingBox.centered((inner + outer) / 2.0, w, w * EYE_ASPECT)
        regions.append(PatchRegion(name, box, box.corners() + (0.0, LID_DROOP * ipd * k)))

    return regions


class PatchCompositor:
    """
    Warp patch regions into isolated buffers and blend them onto a frame.

    Scratch buffers come from a BufferPool and are reused across frames.
    """

    def __init__(
        self,
        pool: Optional[BufferPool] = None,
        feather_style: FeatherStyle = FeatherStyle.RAMP,
        feather_min_margin: float = 16.0,
        feather_ipd_factor: float = 0.2
    ):
        """
        Args:
            pool: Buffer pool for scratch images (a private one if None)
            feather_style: Mask style, see feather_mask()
            feather_min_margin: Smallest feather width in pixels
            feather_ipd_factor: Feather width as a fraction of ipd
        """
        self.pool = pool if pool is not None else BufferPool()
        self.feather_style = FeatherStyle(feather_style)
        self.feather_min_margin = feather_min_margin
        self.feather_ipd_factor = feather_ipd_factor

    def feather_margin(self, ipd: float) -> float:
        return max(self.feather_min_margin, ipd * self.feather_ipd_factor)

    def composite(
        self,
        base: NDArray[np.uint8],
        out: NDArray[np.uint8],
        regions: List[PatchRegion],
        ipd: float
    ) -> ResampleStats:
        """
        Warp each region from base and blend it onto out.

        Args:
            base: Unmodified source frame
            out: Output frame (usually a copy of base), modified in place
            regions: Regions to warp, blended in order
            ipd: Inter-eye distance, sets the feather width

        Returns:
            Combined ResampleStats over all regions
        """
        height, width = base.shape[:2]
        margin = self.feather_margin(ipd)
        stats = ResampleStats()

        for region in regions:
            # Integer rectangle of the full (unclipped) region
            rx0 = int(round(region.box.x))
            ry0 = int(round(region.box.y))
            rw = int(round(region.box.width))
            rh = int(round(region.box.height))
            x0, y0 = max(rx0, 0), max(ry0, 0)
            x1, y1 = min(rx0 + rw, width), min(ry0 + rh, height)
            if x1 <= x0 or y1 <= y0:
                logger.debug("Patch %s lies outside the frame, skipping", region.name)
                continue

            patch = self.pool.acquire("patch_image", base.shape, base.dtype)
            alpha = self.pool.acquire("patch_alpha", (height, width), np.float32, zero=True)
            stats += warp_quad(base, patch, region.src_quad, region.dst_quad, alpha)

            mask = feather_mask(rw, rh, margin, self.feather_style)
            roi_alpha = alpha[y0:y1, x0:x1] * mask[y0 - ry0:y1 - ry0, x0 - rx0:x1 - rx0]
            alpha_over(out[y0:y1, x0:x1], patch[y0:y1, x0:x1], roi_alpha)

        return stats
