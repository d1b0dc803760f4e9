"""Configuration parameters for the MPC control server.

This module centralizes all configuration parameters including:
- Vehicle and actuator limits
- Reference curve fitting
- Optimizer (kinematic MPC) horizon and cost weights
- WebSocket server parameters
- Recording and terminal output settings

All parameters are plain module constants. Components take them as constructor
defaults, so any value can be overridden per instance (and, for the server,
from the command line).
"""

import math

# ============================================================================
# Vehicle Parameters
# ============================================================================

LF = 2.67
"""Distance from the front axle to the center of gravity (meters).

Tuned against the simulator so that a vehicle driven at constant steering
angle and velocity on a flat road reproduces the simulated turning radius.
"""

MAX_STEERING_ANGLE_DEG = 25.0
"""Maximum physical steering angle (degrees).

The simulator expects steering normalized to [-1, 1], where 1 corresponds to
this angle.
"""

MAX_STEERING_ANGLE_RAD = math.radians(MAX_STEERING_ANGLE_DEG)
"""Maximum physical steering angle (radians)."""

THROTTLE_MIN = -1.0
"""Full brake / reverse throttle command."""

THROTTLE_MAX = 1.0
"""Full throttle command."""


# ============================================================================
# Actuation Latency
# ============================================================================

ACTUATION_LATENCY_SECONDS = 0.1
"""Delay between computing a command and sending it (seconds).

Mimics real driving conditions where the car does not actuate commands
instantly. The controller should drive the track with 100ms latency.
"""


# ============================================================================
# Reference Curve Fitting
# ============================================================================

POLY_ORDER = 3
"""Polynomial order of the reference curve fit.

A cubic fits most road segments within the waypoint window the simulator
sends (6 points, roughly 60-100m ahead).
"""


# ============================================================================
# Optimizer Parameters (Kinematic MPC)
# ============================================================================

MPC_HORIZON_STEPS = 10
"""Number of timesteps in the prediction horizon (N)."""

MPC_DT = 0.1
"""Duration of each prediction timestep (seconds).

N * dt = 1s horizon. Longer horizons make the solve slower and the far end of
the prediction is unreliable anyway since the environment changes.
"""

REF_SPEED = 40.0
"""Reference speed the optimizer tracks (simulator speed units, mph)."""

MPC_MAX_ITERATIONS = 100
"""Iteration cap for the L-BFGS-B solve."""

# Cost weights
WEIGHT_CTE = 2000.0
"""Weight on squared cross-track error."""

WEIGHT_EPSI = 2000.0
"""Weight on squared heading error."""

WEIGHT_SPEED = 1.0
"""Weight on squared deviation from REF_SPEED."""

WEIGHT_STEER = 5.0
"""Weight on steering actuator use."""

WEIGHT_THROTTLE = 5.0
"""Weight on throttle actuator use."""

WEIGHT_STEER_RATE = 200.0
"""Weight on change of steering between consecutive steps.

High value keeps the steering smooth and avoids oscillation at speed.
"""

WEIGHT_THROTTLE_RATE = 10.0
"""Weight on change of throttle between consecutive steps."""


# ============================================================================
# WebSocket Server Configuration
# ============================================================================

WS_HOST = "0.0.0.0"
"""Interface the control server listens on."""

WS_PORT = 4567
"""Port the simulator connects to."""

EVENT_MARKER = "42"
"""Prefix of application event frames.

The 4 signifies a websocket message, the 2 signifies a websocket event.
"""


# ============================================================================
# Recording
# ============================================================================

RESULTS_DIR = "results"
"""Base directory for recorded runs."""


# ============================================================================
# Terminal Colors
# ============================================================================

TERM_ORANGE = "\033[38;2;247;72;35m"
"""Terminal color code for warnings and fallback status lines."""

TERM_BLUE = "\033[38;2;35;116;247m"
"""Terminal color code for status lines."""

TERM_RESET = "\033[0m"
"""Terminal color reset code."""


# ============================================================================
# Plot Colors
# ============================================================================

PLOT_PRIMARY = "#f74823"
"""Primary plot color - measured or commanded signals."""

PLOT_SECONDARY = "#2374f7"
"""Secondary plot color - reference and predictions."""

PLOT_NEUTRAL = "#686a5f"
"""Neutral color for guides, zero lines and grids."""
