"""Control loop: one synchronous pass per telemetry event.

Telemetry -> frame transform -> polynomial fit -> error estimate ->
trajectory optimizer -> actuator mapping.

The controller owns the only state carried between cycles of a session: the
optimizer warm start and the last command sent (for the hold-last divergence
policy). Use one controller per session.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .actuator import ZERO_COMMAND, ActuatorCommand, ActuatorMapper
from .config import MPCConfig
from .estimator import TrackingErrors, estimate_errors
from .exceptions import FitFailure, InvalidInput, SolverDivergence
from .model import VehicleState
from .mpc import HorizonSolution, TrajectoryOptimizer, WarmStart
from .options import ControllerOptions, DivergencePolicy
from .path import fit_reference
from .telemetry import Telemetry
from .transform import normalize_angle, to_vehicle_frame


class CycleStatus(str, Enum):
    """Outcome of one control cycle."""

    OK = "ok"
    INVALID_INPUT = "invalid_input"
    FIT_FAILURE = "fit_failure"
    DIVERGED_HOLD = "diverged_hold"
    DIVERGED_ZERO = "diverged_zero"


@dataclass
class CycleResult:
    """Result of one control cycle.

    A result without a command means no command is sent this cycle and the
    simulator gets the manual acknowledgment instead.
    """

    status: CycleStatus
    command: Optional[ActuatorCommand] = None
    errors: Optional[TrackingErrors] = None
    speed: float = 0.0
    poly_degree: int = 0
    solve_time_ms: float = 0.0
    solution: Optional[HorizonSolution] = None
    mpc_x: List[float] = field(default_factory=list)
    mpc_y: List[float] = field(default_factory=list)
    next_x: List[float] = field(default_factory=list)
    next_y: List[float] = field(default_factory=list)
    message: str = ""

    @property
    def manual(self) -> bool:
        return self.command is None

    def to_payload(self) -> Dict[str, Any]:
        """Steer event payload (field names fixed by the simulator)."""
        if self.command is None:
            raise ValueError(f"No command computed for cycle with status {self.status.value}")
        payload: Dict[str, Any] = self.command.to_payload()
        payload["mpc_x"] = self.mpc_x
        payload["mpc_y"] = self.mpc_y
        payload["next_x"] = self.next_x
        payload["next_y"] = self.next_y
        return payload


class MPCController:
    """Per-session MPC control loop.

    Attributes:
        config: Vehicle, horizon, cost and solver configuration.
        options: Divergence policy and warm start switch.
        optimizer: Trajectory optimizer (one per controller).
        mapper: Actuator mapper.
        warm_start: Previous solution used to seed the next solve.
        last_command: Last command computed from a converged solve.
    """

    def __init__(
        self,
        config: Optional[MPCConfig] = None,
        options: Optional[ControllerOptions] = None,
        optimizer: Optional[TrajectoryOptimizer] = None,
        mapper: Optional[ActuatorMapper] = None,
    ) -> None:
        self.config = (config or MPCConfig()).validate()
        self.options = options or ControllerOptions()
        self.optimizer = optimizer or TrajectoryOptimizer(self.config)
        self.mapper = mapper or ActuatorMapper(
            max_steer_rad=self.config.max_steer_rad,
            latency_seconds=self.config.latency_seconds,
        )

        self.warm_start: Optional[WarmStart] = None
        self.last_command: Optional[ActuatorCommand] = None

    def reset(self) -> None:
        """Drop the warm start and the held command."""
        self.warm_start = None
        self.last_command = None

    def process(self, telemetry: Telemetry) -> CycleResult:
        """Run one control cycle.

        Args:
            telemetry: Validated telemetry sample (global frame).

        Returns:
            CycleResult with the command to send, or without a command if the
            cycle was skipped.

        Raises:
            SolverDivergence: Only with DivergencePolicy.PROPAGATE.
        """
        psi = normalize_angle(telemetry.psi)

        try:
            ptsx, ptsy = to_vehicle_frame(telemetry.x, telemetry.y, psi, telemetry.ptsx, telemetry.ptsy)
            path = fit_reference(ptsx, ptsy, self.config.poly_max_degree)
        except InvalidInput as e:
            logging.warning(f"Skipping cycle, invalid telemetry: {e}")
            return CycleResult(status=CycleStatus.INVALID_INPUT, speed=telemetry.speed, message=str(e))
        except FitFailure as e:
            logging.warning(f"Skipping cycle, reference fit failed: {e}")
            return CycleResult(status=CycleStatus.FIT_FAILURE, speed=telemetry.speed, message=str(e))

        next_x = [float(v) for v in ptsx]
        next_y = [float(v) for v in ptsy]

        errors = estimate_errors(path, ptsx, ptsy)
        state = VehicleState(v=telemetry.speed, cte=errors.cte, epsi=errors.epsi)
        logging.debug(
            f"State: v={state.v:.3f}, cte={state.cte:.4f}, epsi={state.epsi:.4f}, "
            f"degree={path.degree}"
        )

        warm_start = self.warm_start if self.options.use_warm_start else None
        start = time.perf_counter()
        try:
            solution, self.warm_start = self.optimizer.solve(state, path.coeffs, warm_start)
        except SolverDivergence as e:
            solve_time_ms = (time.perf_counter() - start) * 1000.0
            self.warm_start = None
            command, status = self._fallback(e)
            logging.warning(f"Solver diverged ({e}), sending {status.value} command")
            return CycleResult(
                status=status,
                command=command,
                errors=errors,
                speed=telemetry.speed,
                poly_degree=path.degree,
                solve_time_ms=solve_time_ms,
                next_x=next_x,
                next_y=next_y,
                message=str(e),
            )
        solve_time_ms = (time.perf_counter() - start) * 1000.0

        delta, a = solution.first_actuation()
        command = self.mapper.map(delta, a)
        self.last_command = command

        mpc_x, mpc_y = solution.predicted_xy()
        logging.debug(
            f"Command: steering={command.steering:.4f}, throttle={command.throttle:.4f} "
            f"({solve_time_ms:.1f} ms)"
        )

        return CycleResult(
            status=CycleStatus.OK,
            command=command,
            errors=errors,
            speed=telemetry.speed,
            poly_degree=path.degree,
            solve_time_ms=solve_time_ms,
            solution=solution,
            mpc_x=mpc_x,
            mpc_y=mpc_y,
            next_x=next_x,
            next_y=next_y,
        )

    def _fallback(self, error: SolverDivergence):
        policy = self.options.divergence_policy
        if policy is DivergencePolicy.PROPAGATE:
            raise error
        if policy is DivergencePolicy.HOLD_LAST and self.last_command is not None:
            return self.last_command, CycleStatus.DIVERGED_HOLD
        return ZERO_COMMAND, CycleStatus.DIVERGED_ZERO
