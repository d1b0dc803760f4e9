"""Reference curve fitting and tracking error estimation.

The transformed waypoints are approximated by a cubic polynomial
y = c0 + c1*x + c2*x^2 + c3*x^3 in the vehicle frame. Because the vehicle sits
at x = 0 with heading 0, the tracking errors fall straight out of the first
two coefficients.
"""

import math
from typing import Sequence, Tuple

import numpy as np
import numpy.typing as npt

from .config import POLY_ORDER
from .errors import InsufficientPointsError, NonFiniteErrorEstimate, SingularFitError


def fit_reference_curve(
    xvals: Sequence[float], yvals: Sequence[float], order: int = POLY_ORDER
) -> npt.NDArray[np.float64]:
    """Least-squares polynomial fit through the waypoints.

    Builds the Vandermonde design matrix [1, x, x^2, ..., x^order] and solves
    it with numpy's SVD-based least squares.

    Args:
        xvals: Waypoint x-coordinates (vehicle frame).
        yvals: Waypoint y-coordinates (vehicle frame), same length as xvals.
        order: Polynomial order (default: POLY_ORDER).

    Returns:
        Array of order + 1 coefficients, lowest order first.

    Raises:
        InsufficientPointsError: Fewer than order + 1 points.
        SingularFitError: Design matrix is rank deficient (too few distinct x).
        ValueError: xvals and yvals differ in length.
    """
    x = np.asarray(xvals, dtype=np.float64)
    y = np.asarray(yvals, dtype=np.float64)

    if x.shape != y.shape:
        raise ValueError(f"x and y lengths differ: {x.size} != {y.size}")
    if x.size < order + 1:
        raise InsufficientPointsError(
            f"Order {order} fit needs at least {order + 1} points, got {x.size}"
        )

    design = np.vander(x, order + 1, increasing=True)
    try:
        coeffs, _, rank, _ = np.linalg.lstsq(design, y, rcond=None)
    except np.linalg.LinAlgError as e:
        raise SingularFitError(f"Least-squares solve failed: {e}") from e

    if rank < order + 1:
        raise SingularFitError(
            f"Degenerate waypoints: design matrix rank {rank} < {order + 1}"
        )

    return coeffs


def polyeval(coeffs: Sequence[float], x: float) -> float:
    """Evaluate a polynomial (lowest order first) at x."""
    result = 0.0
    for i, c in enumerate(coeffs):
        result += c * x**i
    return float(result)


def estimate_errors(coeffs: Sequence[float]) -> Tuple[float, float]:
    """Compute cross-track and heading error from the fitted curve.

    No subtraction of the vehicle position is needed: in the vehicle frame the
    car is at (0, 0) heading along the x-axis, so
        cte  = f(0)            = c0
        epsi = -atan(f'(0))    = -atan(c1)

    Args:
        coeffs: Polynomial coefficients, lowest order first.

    Returns:
        Tuple of (cte, epsi).

    Raises:
        NonFiniteErrorEstimate: c0 or c1 is NaN or infinite.
    """
    c0 = float(coeffs[0])
    c1 = float(coeffs[1])

    # atan(inf) is finite, so check the slope itself rather than epsi
    if not (math.isfinite(c0) and math.isfinite(c1)):
        raise NonFiniteErrorEstimate(f"Non-finite fit coefficients: c0={c0}, c1={c1}")

    cte = c0
    epsi = -math.atan(c1)
    return cte, epsi
