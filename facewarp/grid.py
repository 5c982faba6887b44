"""
Grid tessellation of the deformed region.

A uniform grid of (cols+1) x (rows+1) vertices covers a bounding box.
Each vertex has a source position and a destination position obtained by
evaluating the displacement field. Vertex (i, j) has index j * (cols+1) + i.

Every cell is split along the same diagonal:

    a ---- b        triangles (a, b, d) and (a, d, c)
    |    / |
    |  /   |
    c ---- d

Shared edges reference the same vertex indices on both sides, so
neighbouring triangles always agree on their common destination vertices.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from .field import DisplacementField


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def corners(self) -> NDArray[np.float64]:
        """Clockwise corners starting top-left, shape (4, 2)."""
        return np.array([
            [self.x, self.y],
            [self.x2, self.y],
            [self.x2, self.y2],
            [self.x, self.y2],
        ], dtype=np.float64)

    def clamp(self, image_size: Tuple[int, int]) -> "BoundingBox":
        """Intersect with the image rectangle [0, width] x [0, height]."""
        w, h = image_size
        x1 = min(max(self.x, 0.0), float(w))
        y1 = min(max(self.y, 0.0), float(h))
        x2 = min(max(self.x2, 0.0), float(w))
        y2 = min(max(self.y2, 0.0), float(h))
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    @classmethod
    def from_points(
        cls,
        points: NDArray[np.float64],
        pad: float = 0.0,
        image_size: Optional[Tuple[int, int]] = None
    ) -> "BoundingBox":
        """
        Bounds of a point set, padded by `pad` pixels on every side.

        Args:
            points: Positions, shape (N, 2)
            pad: Padding in pixels
            image_size: If given, the result is clamped to the image
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        x1, y1 = points.min(axis=0) - pad
        x2, y2 = points.max(axis=0) + pad
        box = cls(float(x1), float(y1), float(x2 - x1), float(y2 - y1))
        if image_size is not None:
            box = box.clamp(image_size)
        return box

    @classmethod
    def centered(cls, center: NDArray[np.float64], width: float, height: float) -> "BoundingBox":
        return cls(float(center[0] - width / 2.0), float(center[1] - height / 2.0),
                   float(width), float(height))


def padded_bounds(
    points: NDArray[np.float64],
    padding_fraction: float,
    image_size: Tuple[int, int]
) -> BoundingBox:
    """
    Bounds of a face region, padded by a fraction of its size.

    The horizontal pad is padding_fraction * width and the vertical pad is
    padding_fraction * height, applied on each side, then clamped to the
    image.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    lo = points.min(axis=0)
    hi = points.max(axis=0)
    pad = (hi - lo) * padding_fraction
    lo = lo - pad
    hi = hi + pad
    box = BoundingBox(float(lo[0]), float(lo[1]), float(hi[0] - lo[0]), float(hi[1] - lo[1]))
    return box.clamp(image_size)


class Grid:
    """
    Tessellated grid with source and destination vertex positions.

    Attributes:
        cols, rows: Number of cells horizontally and vertically
        source: Source vertex positions, shape ((rows+1)*(cols+1), 2)
        destination: Displaced vertex positions, same shape as source
    """

    def __init__(
        self,
        cols: int,
        rows: int,
        source: NDArray[np.float64],
        destination: NDArray[np.float64]
    ):
        n_vertices = (cols + 1) * (rows + 1)
        if source.shape != (n_vertices, 2) or destination.shape != (n_vertices, 2):
            raise ValueError(
                f"Grid {cols}x{rows} needs {n_vertices} vertices, got "
                f"source {source.shape}, destination {destination.shape}"
            )
        self.cols = cols
        self.rows = rows
        self.source = source
        self.destination = destination
        self._triangles: Optional[NDArray[np.int32]] = None

    def vertex_index(self, i: int, j: int) -> int:
        """Index of the vertex in column i, row j."""
        return j * (self.cols + 1) + i

    @property
    def triangles(self) -> NDArray[np.int32]:
        """Triangle vertex indices, shape (2 * cols * rows, 3)."""
        if self._triangles is None:
            self._triangles = grid_triangles(self.cols, self.rows)
        return self._triangles

    def __len__(self) -> int:
        return self.source.shape[0]

    def __repr__(self) -> str:
        return f"Grid(cols={self.cols}, rows={self.rows}, triangles={len(self.triangles)})"


def grid_triangles(cols: int, rows: int) -> NDArray[np.int32]:
    """
    Triangle indices for a cols x rows grid, two per cell.

    Cell (i, j) emits (a, b, d) then (a, d, c); cells are ordered row-major.
    """
    stride = cols + 1
    j, i = np.mgrid[0:rows, 0:cols]
    a = (j * stride + i).ravel()
    b = a + 1
    c = a + stride
    d = c + 1

    triangles = np.empty((2 * a.size, 3), dtype=np.int32)
    triangles[0::2] = np.stack([a, b, d], axis=1)
    triangles[1::2] = np.stack([a, d, c], axis=1)
    return triangles


def tessellate(
    box: BoundingBox,
    cols: int,
    rows: int,
    field: DisplacementField
) -> Grid:
    """
    Lay a uniform grid over a box and displace it through the field.

    Args:
        box: Region to cover
        cols: Number of cells horizontally (>= 1)
        rows: Number of cells vertically (>= 1)
        field: Displacement field for the current frame

    Returns:
        Grid with source and destination vertices

    Raises:
        ValueError: If the resolution is not positive
    """
    if cols < 1 or rows < 1:
        raise ValueError(f"Grid resolution must be at least 1x1, got {cols}x{rows}")

    xs = np.linspace(box.x, box.x2, cols + 1)
    ys = np.linspace(box.y, box.y2, rows + 1)
    gx, gy = np.meshgrid(xs, ys)
    source = np.stack([gx.ravel(), gy.ravel()], axis=1)
    destination = field.evaluate(source)

    return Grid(cols, rows, source, destination)
