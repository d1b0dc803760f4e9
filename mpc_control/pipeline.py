"""Per-connection control loop.

Runs one telemetry event through the whole pipeline:
    frame -> vehicle-frame waypoints -> cubic fit -> (cte, epsi)
          -> optimizer -> actuation command + predicted path -> reply

and applies the per-cycle error policy:
    - no event marker               -> no reply
    - marker but no usable payload  -> "manual"
    - invalid telemetry fields      -> "manual"
    - curve fit / error estimate    -> "manual", optimizer not called
    - optimizer failure             -> neutral "steer" (0 steering, 0 throttle)
    - any other event name          -> no reply
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from .actuation import NEUTRAL_COMMAND, assemble_trajectory, map_actuation
from .config import MAX_STEERING_ANGLE_RAD, POLY_ORDER, TERM_ORANGE, TERM_RESET
from .errors import CurveFitError, EmptyPayload, MalformedMessage, NonFiniteErrorEstimate, SolverFailure
from .protocol import OutboundMessage, TelemetryFrame, encode_manual, encode_steer, parse_frame
from .reference import estimate_errors, fit_reference_curve
from .solver import ControlSolverAdapter, ControlState, Solver
from .transform import to_vehicle_frame


@dataclass(frozen=True)
class CycleRecord:
    """Summary of one processed telemetry event, for recording."""

    timestamp: float
    outcome: str
    cte: float = float("nan")
    epsi: float = float("nan")
    steering: float = float("nan")
    throttle: float = float("nan")
    solve_ms: float = float("nan")


class CycleSink(Protocol):
    def log_cycle(self, record: CycleRecord) -> None:
        ...


@dataclass(frozen=True)
class Reply:
    """Outgoing frame and whether it carries an actuation command.

    Actuation replies go out after the latency delay; the manual fallback is
    sent immediately.
    """

    text: str
    actuation: bool


class ControlLoop:
    """Telemetry-to-actuation pipeline owned by one connection.

    Attributes:
        adapter: Optimizer boundary wrapping this connection's solver.
        max_steering_angle: Steering angle mapped to +/-1 (radians).
        poly_order: Order of the reference curve fit.
        recorder: Optional sink receiving one CycleRecord per telemetry event.
    """

    def __init__(
        self,
        solver: Solver,
        max_steering_angle: float = MAX_STEERING_ANGLE_RAD,
        poly_order: int = POLY_ORDER,
        recorder: Optional[CycleSink] = None,
    ) -> None:
        self.adapter = ControlSolverAdapter(solver, poly_order=poly_order)
        self.max_steering_angle = max_steering_angle
        self.poly_order = poly_order
        self.recorder = recorder

    def process_telemetry(self, telemetry: TelemetryFrame) -> OutboundMessage:
        """Compute the reply for one telemetry frame.

        Args:
            telemetry: Validated telemetry snapshot.

        Returns:
            OutboundMessage with the command and both paths. On optimizer
            failure the command is neutral and the predicted path empty.

        Raises:
            CurveFitError: Waypoints cannot be fitted.
            NonFiniteErrorEstimate: Fit produced a non-finite cte or epsi.
        """
        # Transform waypoints from the map into the vehicle's coordinate system
        next_x, next_y = to_vehicle_frame(
            telemetry.ptsx, telemetry.ptsy, telemetry.x, telemetry.y, telemetry.psi
        )

        coeffs = fit_reference_curve(next_x, next_y, order=self.poly_order)
        cte, epsi = estimate_errors(coeffs)

        state = ControlState(v=telemetry.speed, cte=cte, epsi=epsi)

        try:
            result = self.adapter.solve(state, coeffs)
        except SolverFailure as e:
            logging.warning(f"{TERM_ORANGE}Solver failure, sending neutral command: {e}{TERM_RESET}")
            self._record("solver_failure", cte=cte, epsi=epsi)
            return OutboundMessage(
                command=NEUTRAL_COMMAND,
                next_x=next_x.tolist(),
                next_y=next_y.tolist(),
            )

        command = map_actuation(result, self.max_steering_angle)
        mpc_x, mpc_y = assemble_trajectory(result)

        self._record(
            "ok",
            cte=cte,
            epsi=epsi,
            steering=command.steering,
            throttle=command.throttle,
            solve_ms=self.adapter.last_solve_seconds * 1000.0,
        )
        return OutboundMessage(
            command=command,
            mpc_x=mpc_x,
            mpc_y=mpc_y,
            next_x=next_x.tolist(),
            next_y=next_y.tolist(),
        )

    def handle_message(self, message: Union[str, bytes]) -> Optional[Reply]:
        """Apply the per-cycle policy to one inbound frame.

        Never raises for per-cycle errors; unexpected exceptions are logged
        with a traceback and answered with the manual fallback.

        Returns:
            Reply to send, or None if the frame gets no reply.
        """
        try:
            event = parse_frame(message)
            if event is None:
                return None

            name, data = event
            if name != "telemetry":
                logging.debug(f"Ignoring event {name!r}")
                return None

            telemetry = TelemetryFrame.from_payload(data)
            outbound = self.process_telemetry(telemetry)
            return Reply(encode_steer(outbound), actuation=True)

        except EmptyPayload as e:
            logging.debug(f"No data, manual driving: {e}")
            return Reply(encode_manual(), actuation=False)
        except MalformedMessage as e:
            logging.warning(f"{TERM_ORANGE}Malformed frame, manual driving: {e}{TERM_RESET}")
            return Reply(encode_manual(), actuation=False)
        except (CurveFitError, NonFiniteErrorEstimate) as e:
            logging.warning(f"{TERM_ORANGE}Skipping cycle, {type(e).__name__}: {e}{TERM_RESET}")
            self._record("fit_error")
            return Reply(encode_manual(), actuation=False)
        except Exception as e:
            logging.error(f"Unexpected error processing frame: {e}", exc_info=True)
            self._record("error")
            return Reply(encode_manual(), actuation=False)

    def _record(self, outcome: str, **values: float) -> None:
        if self.recorder is not None:
            self.recorder.log_cycle(CycleRecord(timestamp=time.time(), outcome=outcome, **values))
