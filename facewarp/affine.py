"""
Per-triangle affine solve and image resampling.

Affine coefficients use the 2D canvas convention:

    x' = a * x + c * y + e
    y' = b * x + d * y + f

so the identity is (a, b, c, d, e, f) = (1, 0, 0, 1, 0, 0). As an OpenCV
2x3 matrix this is [[a, c, e], [b, d, f]].

A triangle whose source vertices are collinear has no unique affine map.
It is reported as degenerate and skipped: nothing is painted there and
whatever was already in the destination stays visible.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from .grid import Grid

logger = logging.getLogger(__name__)

# |det| below this is a degenerate triangle
DET_EPSILON = 1e-8

# Extra source pixels read around each triangle for bilinear taps
SOURCE_MARGIN = 2

# Sub-pixel bits for triangle mask rasterization
MASK_SHIFT = 4

Point = Tuple[float, float]


@dataclass(frozen=True)
class AffineTransform:
    """2D affine transform (a, b, c, d, e, f)."""
    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls(1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

    def apply(self, x: float, y: float) -> Tuple[float, float]:
        return (self.a * x + self.c * y + self.e,
                self.b * x + self.d * y + self.f)

    def as_tuple(self) -> Tuple[float, float, float, float, float, float]:
        return (self.a, self.b, self.c, self.d, self.e, self.f)

    def to_matrix(self) -> NDArray[np.float64]:
        """OpenCV 2x3 matrix."""
        return np.array([[self.a, self.c, self.e],
                         [self.b, self.d, self.f]], dtype=np.float64)

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    def inverse(self) -> Optional["AffineTransform"]:
        """Inverse transform, or None if the linear part is singular."""
        det = self.determinant
        if abs(det) < DET_EPSILON:
            return None
        a = self.d / det
        b = -self.b / det
        c = -self.c / det
        d = self.a / det
        e = -(a * self.e + c * self.f)
        f = -(b * self.e + d * self.f)
        return AffineTransform(a, b, c, d, e, f)

    def translated(self, src_offset: Point, dst_offset: Point) -> "AffineTransform":
        """
        Same mapping expressed between offset coordinate frames.

        Input points are given relative to src_offset and outputs are
        returned relative to dst_offset.
        """
        sx, sy = src_offset
        dx, dy = dst_offset
        return AffineTransform(
            self.a, self.b, self.c, self.d,
            self.a * sx + self.c * sy + self.e - dx,
            self.b * sx + self.d * sy + self.f - dy,
        )


def _invert3(m: Sequence[float]) -> Optional[Tuple[float, ...]]:
    """
    Closed-form inverse of a row-major 3x3 matrix via cofactors.

    Returns None if |det| < DET_EPSILON.
    """
    a, b, c, d, e, f, g, h, i = m
    A = e * i - f * h
    B = -(d * i - f * g)
    C = d * h - e * g
    det = a * A + b * B + c * C
    if abs(det) < DET_EPSILON:
        return None

    D = -(b * i - c * h)
    E = a * i - c * g
    F = -(a * h - b * g)
    G = b * f - c * e
    H = -(a * f - c * d)
    I = a * e - b * d
    return (A / det, D / det, G / det,
            B / det, E / det, H / det,
            C / det, F / det, I / det)


def _mul3(m: Sequence[float], v: Sequence[float]) -> Tuple[float, float, float]:
    return (m[0] * v[0] + m[1] * v[1] + m[2] * v[2],
            m[3] * v[0] + m[4] * v[1] + m[5] * v[2],
            m[6] * v[0] + m[7] * v[1] + m[8] * v[2])


def solve_affine(
    s0: Point, s1: Point, s2: Point,
    d0: Point, d1: Point, d2: Point
) -> Optional[AffineTransform]:
    """
    Solve the affine map taking source triangle s to destination triangle d.

    The homogeneous source matrix [[s0x, s0y, 1], [s1x, s1y, 1],
    [s2x, s2y, 1]] is inverted and applied to the destination x and y
    coordinate vectors, giving coefficients that map every source vertex
    exactly onto its destination vertex.

    Returns:
        AffineTransform, or None if the source triangle is degenerate
    """
    inv = _invert3((
        float(s0[0]), float(s0[1]), 1.0,
        float(s1[0]), float(s1[1]), 1.0,
        float(s2[0]), float(s2[1]), 1.0,
    ))
    if inv is None:
        return None

    a, c, e = _mul3(inv, (float(d0[0]), float(d1[0]), float(d2[0])))
    b, d, f = _mul3(inv, (float(d0[1]), float(d1[1]), float(d2[1])))
    return AffineTransform(a, b, c, d, e, f)


@dataclass
class ResampleStats:
    """Triangle counts for one resampling pass."""
    painted: int = 0
    degenerate: int = 0

    def __iadd__(self, other: "ResampleStats") -> "ResampleStats":
        self.painted += other.painted
        self.degenerate += other.degenerate
        return self


def _pixel_rect(points: NDArray[np.float64], width: int, height: int) -> Tuple[int, int, int, int]:
    """Integer pixel rectangle (x0, y0, x1, y1) covering points, clipped to the image."""
    x0 = max(int(math.floor(points[:, 0].min())), 0)
    y0 = max(int(math.floor(points[:, 1].min())), 0)
    x1 = min(int(math.ceil(points[:, 0].max())) + 1, width)
    y1 = min(int(math.ceil(points[:, 1].max())) + 1, height)
    return x0, y0, x1, y1


def warp_triangle(
    src: NDArray[np.uint8],
    dst: NDArray[np.uint8],
    src_tri: NDArray[np.float64],
    dst_tri: NDArray[np.float64],
    alpha: Optional[NDArray[np.float32]] = None
) -> bool:
    """
    Resample one triangle of src into dst.

    Only pixels inside the destination triangle are written. Each of them
    reads from the corresponding source location through the inverse
    transform, with bilinear filtering. Work is restricted to the
    triangle's bounding rectangle.

    Args:
        src: Source image (H, W) or (H, W, C)
        dst: Destination image, same shape as src, modified in place
        src_tri: Source triangle vertices, shape (3, 2)
        dst_tri: Destination triangle vertices, shape (3, 2)
        alpha: Optional (H, W) float32 plane set to 1.0 where painted

    Returns:
        False if the triangle is degenerate and was skipped, True otherwise
    """
    src_tri = np.asarray(src_tri, dtype=np.float64)
    dst_tri = np.asarray(dst_tri, dtype=np.float64)

    forward = solve_affine(src_tri[0], src_tri[1], src_tri[2],
                           dst_tri[0], dst_tri[1], dst_tri[2])
    if forward is None:
        return False
    # A collinear destination covers no area
    backward = forward.inverse()
    if backward is None:
        return False

    height, width = dst.shape[:2]
    x0, y0, x1, y1 = _pixel_rect(dst_tri, width, height)
    if x1 <= x0 or y1 <= y0:
        return True

    # Source region read by the destination rectangle
    dst_corners = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=np.float64)
    src_corners = np.array([backward.apply(x, y) for x, y in dst_corners])
    sx0, sy0, sx1, sy1 = _pixel_rect(src_corners, src.shape[1], src.shape[0])
    sx0 = max(sx0 - SOURCE_MARGIN, 0)
    sy0 = max(sy0 - SOURCE_MARGIN, 0)
    sx1 = min(sx1 + SOURCE_MARGIN, src.shape[1])
    sy1 = min(sy1 + SOURCE_MARGIN, src.shape[0])
    if sx1 <= sx0 or sy1 <= sy0:
        return True

    # Maps destination-rectangle pixels to source-rectangle pixels
    local = backward.translated((x0, y0), (sx0, sy0))
    warped = cv2.warpAffine(
        src[sy0:sy1, sx0:sx1],
        local.to_matrix(),
        (x1 - x0, y1 - y0),
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_REFLECT_101
    )
    if warped.ndim < dst.ndim:
        warped = warped[..., np.newaxis]

    mask = np.zeros((y1 - y0, x1 - x0), dtype=np.uint8)
    pts = np.round((dst_tri - (x0, y0)) * (1 << MASK_SHIFT)).astype(np.int32)
    cv2.fillConvexPoly(mask, pts, 1, lineType=cv2.LINE_8, shift=MASK_SHIFT)
    inside = mask.astype(bool)

    dst[y0:y1, x0:x1][inside] = warped[inside]
    if alpha is not None:
        alpha[y0:y1, x0:x1][inside] = 1.0
    return True


def resample_triangles(
    src: NDArray[np.uint8],
    dst: NDArray[np.uint8],
    src_points: NDArray[np.float64],
    dst_points: NDArray[np.float64],
    triangles: NDArray[np.int32],
    alpha: Optional[NDArray[np.float32]] = None
) -> ResampleStats:
    """
    Resample every triangle of a mesh from src into dst.

    Args:
        src_points: Source vertex positions, shape (V, 2)
        dst_points: Destination vertex positions, shape (V, 2)
        triangles: Vertex indices, shape (T, 3)

    Returns:
        ResampleStats with painted and degenerate triangle counts
    """
    stats = ResampleStats()
    for tri in triangles:
        if warp_triangle(src, dst, src_points[tri], dst_points[tri], alpha):
            stats.painted += 1
        else:
            stats.degenerate += 1

    if stats.degenerate:
        logger.debug("Skipped %d degenerate triangles of %d", stats.degenerate, len(triangles))
    return stats


def resample_grid(
    src: NDArray[np.uint8],
    dst: NDArray[np.uint8],
    grid: Grid,
    alpha: Optional[NDArray[np.float32]] = None
) -> ResampleStats:
    """Resample a tessellated grid from src into dst."""
    return resample_triangles(src, dst, grid.source, grid.destination, grid.triangles, alpha)


# Two triangles per quad, diagonal 0-2
QUAD_TRIANGLES = np.array([[0, 1, 2], [0, 2, 3]], dtype=np.int32)


def warp_quad(
    src: NDArray[np.uint8],
    dst: NDArray[np.uint8],
    src_quad: NDArray[np.float64],
    dst_quad: NDArray[np.float64],
    alpha: Optional[NDArray[np.float32]] = None
) -> ResampleStats:
    """Warp a quad (4 corners, clockwise from top-left) as two triangles."""
    return resample_triangles(
        src, dst,
        np.asarray(src_quad, dtype=np.float64),
        np.asarray(dst_quad, dtype=np.float64),
        QUAD_TRIANGLES, alpha
    )
