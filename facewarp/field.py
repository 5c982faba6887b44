"""
Smooth displacement field from sparse control points.

The field is a Gaussian radial-basis-weighted average of the control
deltas:

    w_i(p)   = exp(-|p - s_i|^2 / (2 sigma^2))
    W(p)     = sum_i w_i(p)
    field(p) = p + sum_i(w_i(p) * delta_i) / max(W(p), 1)

Near the controls (W >= 1) this is the normalized weighted average of the
deltas. Away from them the denominator stays at 1, so the displacement
fades with the kernels instead of holding the nearest delta out to
infinity. Where W underflows the field is exactly the identity.

Both branches are continuous, so neighbouring grid vertices never get
discontinuous destinations.
"""

from typing import Dict, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .control_points import ControlPoint, control_arrays
from .landmarks import LandmarkRole

# Total weight below this falls back to identity
WEIGHT_EPSILON = 1e-12

# Default falloff radius as a fraction of ipd
DEFAULT_SIGMA_FACTOR = 0.55


class DisplacementField:
    """
    Gaussian RBF displacement field for one frame.

    Call with a single point, or use evaluate() for an (N, 2) array:

        field = DisplacementField(sources, deltas, sigma=20.0)
        x2, y2 = field(50.0, 50.0)
        dst = field.evaluate(grid_points)
    """

    def __init__(
        self,
        sources: NDArray[np.float64],
        deltas: NDArray[np.float64],
        sigma: float
    ):
        """
        Args:
            sources: Control source positions, shape (K, 2)
            deltas: Control displacements (target - source), shape (K, 2)
            sigma: Gaussian falloff radius in pixels, must be > 0

        Raises:
            ValueError: If sigma is not positive or shapes mismatch
        """
        if not sigma > 0:
            raise ValueError(f"sigma must be positive, got {sigma}")

        sources = np.asarray(sources, dtype=np.float64).reshape(-1, 2)
        deltas = np.asarray(deltas, dtype=np.float64).reshape(-1, 2)
        if sources.shape != deltas.shape:
            raise ValueError(
                f"sources {sources.shape} and deltas {deltas.shape} must match"
            )

        self.sources = sources
        self.deltas = deltas
        self.sigma = float(sigma)

    def evaluate(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Displace an array of points.

        Args:
            points: Query positions, shape (N, 2)

        Returns:
            Displaced positions, shape (N, 2)
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if self.sources.shape[0] == 0:
            return points.copy()

        # (N, K) squared distances to every control
        diff = points[:, np.newaxis, :] - self.sources[np.newaxis, :, :]
        dist_sq = np.sum(diff * diff, axis=2)
        weights = np.exp(-dist_sq / (2.0 * self.sigma * self.sigma))

        total = weights.sum(axis=1)
        moved = total >= WEIGHT_EPSILON

        result = points.copy()
        if np.any(moved):
            offset = weights[moved] @ self.deltas
            result[moved] += offset / np.maximum(total[moved], 1.0)[:, np.newaxis]
        return result

    def __call__(self, x: float, y: float) -> Tuple[float, float]:
        out = self.evaluate(np.array([[x, y]], dtype=np.float64))[0]
        return float(out[0]), float(out[1])

    def is_identity(self) -> bool:
        """True if no control point moves."""
        return not np.any(self.deltas)


def build_displacement_field(
    control_points: Union[Dict[LandmarkRole, ControlPoint], Dict],
    sigma: float
) -> DisplacementField:
    """Build the field for a frame's control points."""
    sources, deltas = control_arrays(control_points)
    return DisplacementField(sources, deltas, sigma)
