"""Configuration parameters for the MPC trajectory tracker.

This module centralizes all configuration parameters including:
- Vehicle calibration constants
- MPC horizon, timestep and cost weights
- Solver budget
- Actuation latency
- WebSocket server parameters
- Visualization settings

All parameters are documented with their purpose, valid ranges, and tuning rationale.
Module constants are the defaults; `MPCConfig` bundles them into a value that can be
overridden per run and validated before the server starts.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict


def deg2rad(x: float) -> float:
    """Convert degrees to radians."""
    return x * math.pi / 180.0


def rad2deg(x: float) -> float:
    """Convert radians to degrees."""
    return x * 180.0 / math.pi


# ============================================================================
# Vehicle Calibration
# ============================================================================

LF = 2.67
"""Distance from the vehicle's center of gravity to its front axle (meters).

Calibrated against the simulator by driving a constant steering angle at a
fixed speed and matching the resulting turning radius. Fixed per vehicle.
"""

MAX_STEER_RAD = deg2rad(25.0)
"""Maximum physical steering angle (radians, 25 degrees).

Also the divisor that maps raw steering into the simulator's [-1, 1] range.
"""


# ============================================================================
# MPC Horizon and Reference
# ============================================================================

HORIZON_N = 10
"""Number of states in the prediction horizon (N >= 2).

Actuator count is N - 1. With DT = 0.1 this plans one second ahead.

Tuning rationale:
- Longer horizons (N=20+) increase solve time without improving tracking,
  since the fitted polynomial is unreliable beyond the last waypoint
- Shorter horizons (N<6) react late to curves
"""

DT = 0.1
"""Discretization timestep of the prediction model (seconds).

Matches the nominal ~100 ms control cadence and the actuation latency so that
one horizon step corresponds to one control cycle.
"""

V_REF = 40.0
"""Reference speed tracked by the optimizer (simulator speed units, mph)."""

POLY_MAX_DEGREE = 3
"""Maximum degree of the reference polynomial.

A cubic follows the curvature changes of a typical road segment; the fitter
clamps the degree to (waypoint count - 1) and falls back to lower degrees if
the least-squares system is singular.
"""


# ============================================================================
# MPC Cost Weights
# ============================================================================

WEIGHT_CTE = 2000.0
"""Weight of squared cross-track error (range: >= 0)."""

WEIGHT_EPSI = 2000.0
"""Weight of squared heading error (range: >= 0)."""

WEIGHT_V = 1.0
"""Weight of squared speed error (v - V_REF) (range: >= 0).

Kept small relative to CTE/EPSI so the vehicle slows down in curves rather
than leaving the path.
"""

WEIGHT_DELTA = 5.0
"""Weight of squared steering magnitude (range: >= 0)."""

WEIGHT_ACCEL = 5.0
"""Weight of squared throttle magnitude (range: >= 0)."""

WEIGHT_DELTA_RATE = 200.0
"""Weight of squared steering change between consecutive steps (range: >= 0).

Tuning rationale:
- The dominant smoothing term: without it the optimizer alternates steering
  sign between steps and the vehicle oscillates around the path
- Values above ~1000 make the vehicle slow to enter curves
"""

WEIGHT_ACCEL_RATE = 10.0
"""Weight of squared throttle change between consecutive steps (range: >= 0)."""


# ============================================================================
# Solver Budget (IPOPT)
# ============================================================================

SOLVER_MAX_ITER = 200
"""Maximum IPOPT iterations per solve."""

SOLVER_MAX_CPU_TIME = 0.08
"""Maximum IPOPT CPU time per solve (seconds).

Kept below the ~100 ms control cadence so a divergent solve cannot stall the
control loop. Exceeding it is reported as a solver divergence.
"""

SOLVER_TOL = 1e-6
"""IPOPT convergence tolerance."""


# ============================================================================
# Actuation
# ============================================================================

ACTUATION_LATENCY_SECONDS = 0.1
"""Delay between computing a command and releasing it to the simulator (seconds).

Models real actuator response lag. The command is delayed, the state used by
the optimizer is not forward-predicted.
"""


# ============================================================================
# Visualization Colors
# ============================================================================

PLOT_ORANGE = "#f74823"
"""Primary plot color - used for tracking errors, steering and the vehicle marker."""

PLOT_BLUE = "#2374f7"
"""Secondary plot color - used for the predicted trajectory and throttle."""

PLOT_CREAM = "#fffdee"
"""Light color for text and labels on dark backgrounds."""

PLOT_TAUPE = "#686a5f"
"""Neutral color for guides, grids, and secondary elements."""

PLOT_YELLOW_ORANGE = "#ffa726"
"""Accent color for reference waypoints and solve times."""

PLOT_DARK_BLUE = "#0d1b2a"
"""Dark background color for dark mode displays."""

# Terminal color codes (ANSI escape sequences)
TERM_ORANGE = "\033[38;2;247;72;35m"
"""Terminal color code for orange (RGB: 247, 72, 35)."""

TERM_BLUE = "\033[38;2;35;116;247m"
"""Terminal color code for blue (RGB: 35, 116, 247)."""

TERM_RESET = "\033[0m"
"""Terminal color reset code."""


# ============================================================================
# WebSocket Configuration
# ============================================================================

WS_HOST = "127.0.0.1"
"""Interface the WebSocket server binds to."""

WS_PORT = 4567
"""Port the simulator connects to."""

RESULTS_DIR = "results"
"""Base directory for recorded runs."""


@dataclass
class MPCConfig:
    """Vehicle, horizon, cost and solver configuration for one controller.

    Defaults are the module constants above. Use `dataclasses.replace` to
    override individual values and call `validate()` before use.
    """

    port: int = WS_PORT
    lf: float = LF
    max_steer_rad: float = MAX_STEER_RAD
    horizon: int = HORIZON_N
    dt: float = DT
    v_ref: float = V_REF
    weight_cte: float = WEIGHT_CTE
    weight_epsi: float = WEIGHT_EPSI
    weight_v: float = WEIGHT_V
    weight_delta: float = WEIGHT_DELTA
    weight_accel: float = WEIGHT_ACCEL
    weight_delta_rate: float = WEIGHT_DELTA_RATE
    weight_accel_rate: float = WEIGHT_ACCEL_RATE
    poly_max_degree: int = POLY_MAX_DEGREE
    solver_max_iter: int = SOLVER_MAX_ITER
    solver_max_cpu_time: float = SOLVER_MAX_CPU_TIME
    solver_tol: float = SOLVER_TOL
    latency_seconds: float = ACTUATION_LATENCY_SECONDS

    def validate(self) -> "MPCConfig":
        """Check value ranges.

        Returns:
            Self, so construction and validation can be chained.

        Raises:
            ValueError: If any parameter is outside its valid range.
        """
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        if self.lf <= 0:
            raise ValueError(f"Lf must be > 0, got {self.lf}")
        if self.max_steer_rad <= 0:
            raise ValueError(f"max_steer_rad must be > 0, got {self.max_steer_rad}")
        if self.horizon < 2:
            raise ValueError(f"N must be >= 2, got {self.horizon}")
        if self.dt <= 0:
            raise ValueError(f"dt must be > 0, got {self.dt}")
        if self.poly_max_degree < 1:
            raise ValueError(f"poly_max_degree must be >= 1, got {self.poly_max_degree}")
        if self.solver_max_iter < 1:
            raise ValueError(f"solver_max_iter must be >= 1, got {self.solver_max_iter}")
        if self.solver_max_cpu_time <= 0:
            raise ValueError(
                f"solver_max_cpu_time must be > 0, got {self.solver_max_cpu_time}"
            )
        if self.latency_seconds < 0:
            raise ValueError(f"latency_seconds must be >= 0, got {self.latency_seconds}")

        for name, value in self.weights().items():
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        return self

    def weights(self) -> Dict[str, float]:
        """Cost weights keyed by field name."""
        return {
            "weight_cte": self.weight_cte,
            "weight_epsi": self.weight_epsi,
            "weight_v": self.weight_v,
            "weight_delta": self.weight_delta,
            "weight_accel": self.weight_accel,
            "weight_delta_rate": self.weight_delta_rate,
            "weight_accel_rate": self.weight_accel_rate,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return asdict(self)
