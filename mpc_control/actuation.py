"""Optimizer output to actuator commands and visualization paths.

The optimizer result is a flat list:
    [steering, throttle, x1, y1, x2, y2, ...]
Index 0 is the steering angle in radians (optimizer sign convention), index 1
the throttle, and everything from index 2 on is the predicted trajectory in the
vehicle frame, x always followed by its y.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .config import MAX_STEERING_ANGLE_RAD


@dataclass(frozen=True)
class ActuationCommand:
    """Normalized command sent to the simulator.

    Attributes:
        steering: Normalized steering in [-1, 1]. Positive steers right.
        throttle: Throttle passthrough from the optimizer (negative brakes).
    """

    steering: float
    throttle: float


NEUTRAL_COMMAND = ActuationCommand(steering=0.0, throttle=0.0)
"""Command issued when the optimizer fails for a cycle."""


def map_actuation(
    result: Sequence[float], max_steering_angle: float = MAX_STEERING_ANGLE_RAD
) -> ActuationCommand:
    """Convert raw optimizer actuation into a normalized command.

    The optimizer uses counter-clockwise-positive steering while the simulator
    steers right for positive values, so the sign is inverted before dividing
    by the maximum steering angle.

    Args:
        result: Optimizer result; only indices 0 and 1 are read.
        max_steering_angle: Steering angle mapped to +/-1 (radians).

    Returns:
        ActuationCommand with steering clamped to [-1, 1].
    """
    steering = -result[0] / max_steering_angle
    throttle = float(result[1])

    if not -1.0 <= steering <= 1.0:
        logging.warning(
            f"Solver steering {result[0]:.4f} rad exceeds +/-{max_steering_angle:.4f} rad, clamping"
        )
        steering = max(-1.0, min(1.0, steering))

    return ActuationCommand(steering=float(steering), throttle=throttle)


def assemble_trajectory(result: Sequence[float]) -> Tuple[List[float], List[float]]:
    """Extract the predicted path from the optimizer result.

    Args:
        result: Optimizer result with an even number of entries after index 1.

    Returns:
        Tuple of (mpc_x, mpc_y), each of length (len(result) - 2) / 2.

    Raises:
        ValueError: Odd number of trajectory entries.
    """
    if len(result) < 2 or (len(result) - 2) % 2 != 0:
        raise ValueError(f"Result length {len(result)} has no whole (x, y) pairs after actuation")

    mpc_x = [float(result[i]) for i in range(2, len(result), 2)]
    mpc_y = [float(result[i + 1]) for i in range(2, len(result), 2)]
    return mpc_x, mpc_y
