"""Map-frame to vehicle-frame waypoint transform.

The vehicle frame has its origin at the vehicle position and its x-axis along
the vehicle heading. Working in this frame keeps the optimizer well
conditioned: the vehicle always sits at (0, 0) with heading 0.
"""

from typing import Sequence, Tuple

import numpy as np
import numpy.typing as npt


def to_vehicle_frame(
    ptsx: Sequence[float],
    ptsy: Sequence[float],
    px: float,
    py: float,
    psi: float,
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Transform map-frame waypoints into the vehicle's local frame.

    Translates by the vehicle position, then rotates by -psi:
        x' = dx * cos(-psi) - dy * sin(-psi)
        y' = dx * sin(-psi) + dy * cos(-psi)

    Args:
        ptsx: Waypoint x-coordinates in the map frame.
        ptsy: Waypoint y-coordinates in the map frame (same length as ptsx).
        px: Vehicle x position in the map frame.
        py: Vehicle y position in the map frame.
        psi: Vehicle heading (radians, counter-clockwise from map x-axis).

    Returns:
        Tuple of (x, y) read-only arrays in the vehicle frame.

    Example:
        >>> x, y = to_vehicle_frame([10.0], [0.0], 0.0, 0.0, np.pi / 2)
        >>> # x ≈ [0.0], y ≈ [-10.0]
    """
    dx = np.asarray(ptsx, dtype=np.float64) - px
    dy = np.asarray(ptsy, dtype=np.float64) - py

    cos_psi = np.cos(-psi)
    sin_psi = np.sin(-psi)

    x = dx * cos_psi - dy * sin_psi
    y = dx * sin_psi + dy * cos_psi

    x.flags.writeable = False
    y.flags.writeable = False
    return x, y
