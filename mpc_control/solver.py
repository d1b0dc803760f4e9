"""Optimizer contract and the default kinematic MPC.

The control loop only talks to an optimizer through `ControlSolverAdapter`,
which enforces the input preconditions and validates the output layout:

    solve(ControlState, coeffs) -> [steering, throttle, x1, y1, ..., xk, yk]

Any object with a matching `solve` method can be plugged in. `KinematicMPC`
is the bundled implementation: a kinematic bicycle model rolled out over a
short horizon and optimized with scipy.
"""

import logging
import math
import time
from dataclasses import dataclass, replace
from typing import List, Protocol, Sequence

import numpy as np
import numpy.typing as npt
from scipy.optimize import minimize

from .config import (
    LF,
    MAX_STEERING_ANGLE_RAD,
    MPC_DT,
    MPC_HORIZON_STEPS,
    MPC_MAX_ITERATIONS,
    POLY_ORDER,
    REF_SPEED,
    THROTTLE_MAX,
    THROTTLE_MIN,
    WEIGHT_CTE,
    WEIGHT_EPSI,
    WEIGHT_SPEED,
    WEIGHT_STEER,
    WEIGHT_STEER_RATE,
    WEIGHT_THROTTLE,
    WEIGHT_THROTTLE_RATE,
)
from .errors import SolverFailure


@dataclass(frozen=True)
class ControlState:
    """Optimizer initial state, expressed in the vehicle frame.

    x, y and psi are always zero: the waypoints were transformed so that the
    vehicle sits at the origin heading along the x-axis.

    Attributes:
        v: Current speed.
        cte: Cross-track error.
        epsi: Heading error (radians).
    """

    v: float
    cte: float
    epsi: float
    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0

    def as_array(self) -> npt.NDArray[np.float64]:
        """State vector [x, y, psi, v, cte, epsi]."""
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi])


class Solver(Protocol):
    """Anything that can produce a SolverResult for a state and reference curve."""

    def solve(self, state: ControlState, coeffs: Sequence[float]) -> Sequence[float]:
        ...


class ControlSolverAdapter:
    """Boundary between the control loop and an optimizer instance.

    One adapter (and one solver) belongs to one connection. The call is
    synchronous and never retried.

    Attributes:
        solver: Wrapped optimizer.
        last_solve_seconds: Wall time of the most recent solve call.
    """

    def __init__(self, solver: Solver, poly_order: int = POLY_ORDER) -> None:
        self.solver = solver
        self.num_coeffs = poly_order + 1
        self.last_solve_seconds: float = 0.0

    def solve(self, state: ControlState, coeffs: Sequence[float]) -> List[float]:
        """Run the optimizer and validate its result.

        Args:
            state: Origin-anchored control state.
            coeffs: Reference polynomial coefficients, lowest order first.

        Returns:
            Validated result list [steering, throttle, x1, y1, ...].

        Raises:
            ValueError: State is not origin-anchored or coefficient count is wrong.
            SolverFailure: Optimizer raised, or returned a malformed result.
        """
        if state.x != 0.0 or state.y != 0.0 or state.psi != 0.0:
            raise ValueError(f"Control state must be origin-anchored, got {state}")
        if len(coeffs) != self.num_coeffs:
            raise ValueError(f"Expected {self.num_coeffs} coefficients, got {len(coeffs)}")
        if state.v < 0.0:
            logging.warning(f"Negative speed {state.v:.3f} reported, solving with v=0")
            state = replace(state, v=0.0)

        start = time.perf_counter()
        try:
            raw = self.solver.solve(state, coeffs)
        except SolverFailure:
            raise
        except Exception as e:
            raise SolverFailure(f"Optimizer raised {type(e).__name__}: {e}") from e
        finally:
            self.last_solve_seconds = time.perf_counter() - start

        result = [float(value) for value in raw]

        if len(result) < 2:
            raise SolverFailure(f"Result too short: {len(result)} entries")
        if (len(result) - 2) % 2 != 0:
            raise SolverFailure(f"Odd trajectory entry count: {len(result) - 2}")
        if not (math.isfinite(result[0]) and math.isfinite(result[1])):
            raise SolverFailure(f"Non-finite actuation: steering={result[0]}, throttle={result[1]}")

        logging.debug(
            f"Solved in {self.last_solve_seconds * 1000:.1f}ms: "
            f"steer={result[0]:.4f} throttle={result[1]:.4f} points={(len(result) - 2) // 2}"
        )
        return result


class KinematicMPC:
    """Receding-horizon controller on a kinematic bicycle model.

    Model, for t = 0 .. N-2:
        x[t+1]   = x[t] + v[t] * cos(psi[t]) * dt
        y[t+1]   = y[t] + v[t] * sin(psi[t]) * dt
        psi[t+1] = psi[t] + v[t] / Lf * delta[t] * dt
        v[t+1]   = v[t] + a[t] * dt

    Tracking errors along the rollout are measured against the reference
    polynomial f:
        cte[t]  = f(x[t]) - y[t]
        epsi[t] = psi[t] - atan(f'(x[t]))

    The decision variables are the N-1 steering and N-1 throttle values,
    bounded by the actuator limits. Only the first pair is applied; the rest of
    the rollout is returned as the predicted path.

    Attributes:
        horizon: Number of timesteps N.
        dt: Timestep duration (seconds).
        lf: Front axle to center of gravity distance (meters).
        ref_speed: Speed the cost function tracks.
    """

    def __init__(
        self,
        horizon: int = MPC_HORIZON_STEPS,
        dt: float = MPC_DT,
        lf: float = LF,
        ref_speed: float = REF_SPEED,
        max_steering_angle: float = MAX_STEERING_ANGLE_RAD,
        max_iterations: int = MPC_MAX_ITERATIONS,
    ) -> None:
        if horizon < 2:
            raise ValueError(f"Horizon must be at least 2 steps, got {horizon}")

        self.horizon = horizon
        self.dt = dt
        self.lf = lf
        self.ref_speed = ref_speed
        self.max_steering_angle = max_steering_angle
        self.max_iterations = max_iterations

        n_act = horizon - 1
        self.bounds = [(-max_steering_angle, max_steering_angle)] * n_act + [
            (THROTTLE_MIN, THROTTLE_MAX)
        ] * n_act

    def rollout(
        self, state: ControlState, steering: npt.NDArray[np.float64], throttle: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """Integrate the model forward.

        Returns:
            Array of shape (N, 4) with columns x, y, psi, v.
        """
        traj = np.zeros((self.horizon, 4))
        traj[0] = [state.x, state.y, state.psi, state.v]
        for t in range(self.horizon - 1):
            x, y, psi, v = traj[t]
            traj[t + 1] = [
                x + v * math.cos(psi) * self.dt,
                y + v * math.sin(psi) * self.dt,
                psi + v / self.lf * steering[t] * self.dt,
                v + throttle[t] * self.dt,
            ]
        return traj

    def cost(self, u: npt.NDArray[np.float64], state: ControlState, coeffs: Sequence[float]) -> float:
        """Objective for one candidate actuator sequence."""
        n_act = self.horizon - 1
        steering = u[:n_act]
        throttle = u[n_act:]

        traj = self.rollout(state, steering, throttle)
        x = traj[1:, 0]
        y = traj[1:, 1]
        psi = traj[1:, 2]
        v = traj[1:, 3]

        poly = np.polynomial.Polynomial(coeffs)
        cte = poly(x) - y
        epsi = psi - np.arctan(poly.deriv()(x))

        total = WEIGHT_CTE * np.sum(cte**2)
        total += WEIGHT_EPSI * np.sum(epsi**2)
        total += WEIGHT_SPEED * np.sum((v - self.ref_speed) ** 2)
        total += WEIGHT_STEER * np.sum(steering**2)
        total += WEIGHT_THROTTLE * np.sum(throttle**2)
        total += WEIGHT_STEER_RATE * np.sum(np.diff(steering) ** 2)
        total += WEIGHT_THROTTLE_RATE * np.sum(np.diff(throttle) ** 2)
        return float(total)

    def solve(self, state: ControlState, coeffs: Sequence[float]) -> List[float]:
        """Optimize the actuator sequence for the given state and curve.

        Returns:
            [steering0, throttle0, x1, y1, ..., x(N-1), y(N-1)]

        Raises:
            SolverFailure: The solution is non-finite, or the optimizer stopped
                early without improving on zero actuation.
        """
        n_act = self.horizon - 1
        u0 = np.zeros(2 * n_act)
        idle_cost = self.cost(u0, state, coeffs)

        res = minimize(
            self.cost,
            u0,
            args=(state, coeffs),
            method="L-BFGS-B",
            bounds=self.bounds,
            options={"maxiter": self.max_iterations},
        )

        if not (np.all(np.isfinite(res.x)) and np.isfinite(res.fun)):
            raise SolverFailure(f"MPC returned a non-finite solution: {res.message}")
        if not res.success:
            # An early stop still counts if it beats coasting with zero input
            if res.fun > idle_cost:
                raise SolverFailure(f"MPC did not converge: {res.message}")
            logging.debug(f"MPC stopped early ({res.message}), using best iterate")

        steering = res.x[:n_act]
        throttle = res.x[n_act:]
        traj = self.rollout(state, steering, throttle)

        result: List[float] = [float(steering[0]), float(throttle[0])]
        for x, y in traj[1:, :2]:
            result.extend((float(x), float(y)))
        return result

