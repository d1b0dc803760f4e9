"""Per-cycle error taxonomy for the control loop.

Every error here is recoverable within a single telemetry cycle. The server
maps each one to a reply (or no reply) and keeps serving the connection.
"""


class ControlError(Exception):
    """Base class for errors raised while processing one telemetry event."""


class MalformedMessage(ControlError):
    """Inbound frame carries the event marker but no usable payload."""


class EmptyPayload(MalformedMessage):
    """Event frame with no data, as sent while the simulator is in manual mode."""


class CurveFitError(ControlError):
    """Reference curve cannot be fitted to the waypoints."""


class InsufficientPointsError(CurveFitError):
    """Fewer waypoints than coefficients (under-determined fit)."""


class SingularFitError(CurveFitError):
    """Waypoints are degenerate, e.g. all share the same x value."""


class NonFiniteErrorEstimate(ControlError):
    """Cross-track or heading error evaluated to NaN or infinity."""


class SolverFailure(ControlError):
    """Optimizer did not converge or returned a malformed result."""
