"""MPC Control - Model Predictive Trajectory Tracking for a Simulated Car

A receding-horizon controller that drives a simulated car along a waypoint
path. The simulator streams telemetry over a WebSocket; every frame runs one
control cycle and the first actuation of the optimal plan is sent back.

## Architecture Overview

Each telemetry frame flows through five stages:

### Stage 1: Frame Transform (transform.py)
Maps global waypoints into the vehicle frame (vehicle at the origin, heading
along +x), so the reference becomes a function y = f(x) ahead of the car.

### Stage 2: Reference Fit (path.py)
Fits a polynomial (degree <= 3) to the local waypoints by QR least squares,
falling back to a lower degree when the system is rank deficient.

### Stage 3: Error Estimation (estimator.py)
Computes cross-track error and orientation error at the vehicle, choosing
the desired heading consistent with the direction of travel.

### Stage 4: Trajectory Optimization (mpc.py, model.py)
Solves a nonlinear program over N steps of a kinematic bicycle model with
CasADi/IPOPT, minimizing tracking error, speed error, actuator effort and
actuator rate of change. The previous solution warm-starts the next solve.

### Stage 5: Actuation (actuator.py)
Normalizes steering to the simulator's [-1, 1] range (inverted polarity) and
releases the command after the actuation latency.

## Modules

### Core Control Modules
- `config.py` - Centralized configuration parameters with documentation
- `transform.py` - Global/vehicle frame transforms
- `path.py` - Polynomial reference fitting and evaluation
- `estimator.py` - Cross-track and orientation error
- `model.py` - Kinematic bicycle model
- `mpc.py` - Trajectory optimizer
- `actuator.py` - Actuator mapping and latency
- `controller.py` - Per-session control loop and divergence policy
- `options.py` - Control loop options and command-line flags

### Communication & Data
- `telemetry.py` - Simulator frame decoding and encoding
- `server.py` - WebSocket server and session handling
- `data_collector.py` - CSV data logging for control cycles

### Visualization
- `plot_styles.py` - Shared plotting utilities and color scheme
- `plot_results.py` - CLI for post-run plots

## Quick Start

```python
import asyncio
from mpc_control.server import main

asyncio.run(main())
```

Or use the command-line interface:
```bash
python -m mpc_control --verbose
python -m mpc_control.plot_results --save
```

## Version

0.1.0 - Initial implementation
"""

__version__ = "0.1.0"

# Export key classes for convenience
from .actuator import ActuatorCommand, ActuatorMapper
from .config import MPCConfig
from .controller import CycleResult, CycleStatus, MPCController
from .data_collector import DataCollector
from .exceptions import FitFailure, InvalidInput, MPCControlError, SolverDivergence
from .mpc import HorizonSolution, TrajectoryOptimizer, WarmStart
from .options import ControllerOptions, DivergencePolicy

__all__ = [
    "ActuatorCommand",
    "ActuatorMapper",
    "ControllerOptions",
    "CycleResult",
    "CycleStatus",
    "DataCollector",
    "DivergencePolicy",
    "FitFailure",
    "HorizonSolution",
    "InvalidInput",
    "MPCConfig",
    "MPCControlError",
    "MPCController",
    "SolverDivergence",
    "TrajectoryOptimizer",
    "WarmStart",
]
