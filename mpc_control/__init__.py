"""MPC Control - Receding-Horizon Control Server for a Driving Simulator

Serves a model-predictive controller to the simulator over a WebSocket. On
every telemetry frame the control loop turns map-frame waypoints and the
vehicle pose into actuator commands plus visualization paths.

## Pipeline

### Stage 1: Frame Transform (transform.py)
Translates and rotates waypoints into the vehicle frame: origin at the
vehicle, x-axis along its heading.

### Stage 2: Reference Curve (reference.py)
Fits a cubic y = c0 + c1*x + c2*x^2 + c3*x^3 to the transformed waypoints and
reads off the tracking errors at the vehicle: cte = c0, epsi = -atan(c1).

### Stage 3: Optimizer (solver.py)
Solves for steering and throttle over a short horizon from the state
(0, 0, 0, v, cte, epsi). The default is a kinematic bicycle MPC; any object
with a matching `solve` method can replace it.

### Stage 4: Actuation (actuation.py)
Normalizes steering to [-1, 1] (sign inverted for the simulator) and splits
the predicted path out of the optimizer result.

### Stage 5: Dispatch (server.py)
Holds each command back by the actuation latency (100ms) and sends it.

## Modules

- `config.py` - Centralized configuration parameters
- `errors.py` - Per-cycle error taxonomy
- `protocol.py` - "42" event framing and payload codec
- `pipeline.py` - Per-connection control loop and error policy
- `server.py` - WebSocket server, latency dispatcher, logging setup
- `data_collector.py` - CSV recording of control cycles
- `plot_results.py` - CLI for plotting recorded runs

## Quick Start

```bash
python -m mpc_control            # listen on port 4567
python -m mpc_control --record   # also write results/run_*/cycles.csv
python -m mpc_control.plot_results --save
```
"""

__version__ = "0.1.0"

from .actuation import ActuationCommand, assemble_trajectory, map_actuation
from .pipeline import ControlLoop
from .reference import estimate_errors, fit_reference_curve
from .solver import ControlSolverAdapter, ControlState, KinematicMPC
from .transform import to_vehicle_frame

__all__ = [
    "ActuationCommand",
    "ControlLoop",
    "ControlSolverAdapter",
    "ControlState",
    "KinematicMPC",
    "assemble_trajectory",
    "estimate_errors",
    "fit_reference_curve",
    "map_actuation",
    "to_vehicle_frame",
]
