"""Model Predictive Control trajectory optimizer.

Solves a CasADi/IPOPT nonlinear program over a kinematic bicycle model in the
vehicle-local frame. Minimises cross-track, heading and speed tracking error
plus actuator magnitude and actuator rate of change, subject to the model
dynamics, the initial state and the actuator bounds.

The NLP is built once per optimizer with the initial state and the reference
polynomial as parameters, then re-solved every control cycle (receding
horizon): only the first actuator pair of each solution is applied.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import casadi as ca
import numpy as np

from .config import MPCConfig
from .exceptions import InvalidInput, SolverDivergence
from .model import VehicleState, rollout

STATE_NAMES = ("x", "y", "psi", "v", "cte", "epsi")
"""Row order of the state matrix and block order of the flat solution vector."""


@dataclass
class HorizonSolution:
    """Optimizer output over the horizon.

    State arrays have N entries, actuator arrays N - 1.
    """

    x: np.ndarray
    y: np.ndarray
    psi: np.ndarray
    v: np.ndarray
    cte: np.ndarray
    epsi: np.ndarray
    delta: np.ndarray
    a: np.ndarray
    cost: float = 0.0
    iterations: int = 0
    return_status: str = ""

    @property
    def horizon(self) -> int:
        return len(self.x)

    def first_actuation(self) -> Tuple[float, float]:
        """Actuator pair to apply now: (delta[0], a[0])."""
        return float(self.delta[0]), float(self.a[0])

    def predicted_xy(self) -> Tuple[List[float], List[float]]:
        """Predicted (x, y) path in the vehicle-local frame, for visualization."""
        return [float(v) for v in self.x], [float(v) for v in self.y]

    def to_vector(self) -> np.ndarray:
        """Flatten as x[N], y[N], psi[N], v[N], cte[N], epsi[N], delta[N-1], a[N-1]."""
        return np.concatenate(
            [self.x, self.y, self.psi, self.v, self.cte, self.epsi, self.delta, self.a]
        )

    @classmethod
    def from_vector(cls, vector: Sequence[float], horizon: int) -> "HorizonSolution":
        """Inverse of `to_vector` for a horizon of N states.

        Raises:
            ValueError: If the vector length is not 6N + 2(N - 1).
        """
        vec = np.asarray(vector, dtype=float)
        expected = 6 * horizon + 2 * (horizon - 1)
        if vec.size != expected:
            raise ValueError(f"Expected {expected} values for N={horizon}, got {vec.size}")

        blocks = {}
        offset = 0
        for name in STATE_NAMES:
            blocks[name] = vec[offset:offset + horizon]
            offset += horizon
        delta = vec[offset:offset + horizon - 1]
        a = vec[offset + horizon - 1:]
        return cls(delta=delta, a=a, **blocks)


@dataclass
class WarmStart:
    """Previous actuator plan used to seed the next solve.

    Owned by exactly one controller; passed into `solve` and replaced by the
    value `solve` returns.
    """

    delta: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def shifted(self, steps: int) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Actuator guess advanced by one cycle, or None if it does not fit `steps`."""
        if len(self.delta) != steps or len(self.a) != steps or steps == 0:
            return None
        delta = np.append(self.delta[1:], self.delta[-1])
        a = np.append(self.a[1:], self.a[-1])
        return delta, a


class TrajectoryOptimizer:
    """Receding-horizon MPC over the kinematic bicycle model.

    Args:
        config: Vehicle, horizon, cost and solver configuration.
    """

    def __init__(self, config: Optional[MPCConfig] = None):
        self.config = (config or MPCConfig()).validate()
        self._n_coeffs = self.config.poly_max_degree + 1

        # Symbolic handles, built on first solve
        self._opti: Optional[ca.Opti] = None
        self._X = None
        self._U = None
        self._x0 = None
        self._coeffs = None
        self._cost = None

    @property
    def horizon(self) -> int:
        return self.config.horizon

    def _build(self) -> None:
        """Build the NLP once; later solves only update parameters and guesses."""
        cfg = self.config
        N = cfg.horizon
        dt = cfg.dt
        lf = cfg.lf

        opti = ca.Opti()

        X = opti.variable(6, N)
        x, y, psi, v, cte, epsi = (X[i, :] for i in range(6))

        U = opti.variable(2, N - 1)
        delta = U[0, :]
        a = U[1, :]

        x0 = opti.parameter(6)
        coeffs = opti.parameter(self._n_coeffs)

        def f(xk):
            result = coeffs[self._n_coeffs - 1]
            for i in range(self._n_coeffs - 2, -1, -1):
                result = result * xk + coeffs[i]
            return result

        def f_prime(xk):
            result = (self._n_coeffs - 1) * coeffs[self._n_coeffs - 1]
            for i in range(self._n_coeffs - 2, 0, -1):
                result = result * xk + i * coeffs[i]
            return result

        # Initial state
        opti.subject_to(X[:, 0] == x0)

        # Dynamics
        for k in range(N - 1):
            yaw_step = v[k] / lf * delta[k] * dt
            opti.subject_to(x[k + 1] == x[k] + v[k] * ca.cos(psi[k]) * dt)
            opti.subject_to(y[k + 1] == y[k] + v[k] * ca.sin(psi[k]) * dt)
            opti.subject_to(psi[k + 1] == psi[k] + yaw_step)
            opti.subject_to(v[k + 1] == v[k] + a[k] * dt)
            opti.subject_to(cte[k + 1] == (f(x[k]) - y[k]) + v[k] * ca.sin(epsi[k]) * dt)
            opti.subject_to(epsi[k + 1] == (psi[k] - ca.atan(f_prime(x[k]))) + yaw_step)

        # Actuator bounds
        opti.subject_to(opti.bounded(-cfg.max_steer_rad, delta, cfg.max_steer_rad))
        opti.subject_to(opti.bounded(-1.0, a, 1.0))

        # Cost function
        cost = 0.0
        for k in range(N):
            cost += cfg.weight_cte * cte[k] ** 2
            cost += cfg.weight_epsi * epsi[k] ** 2
            cost += cfg.weight_v * (v[k] - cfg.v_ref) ** 2

        for k in range(N - 1):
            cost += cfg.weight_delta * delta[k] ** 2
            cost += cfg.weight_accel * a[k] ** 2

        for k in range(N - 2):
            cost += cfg.weight_delta_rate * (delta[k + 1] - delta[k]) ** 2
            cost += cfg.weight_accel_rate * (a[k + 1] - a[k]) ** 2

        opti.minimize(cost)

        # Solver options
        p_opts = {'expand': True, 'print_time': False}
        s_opts = {
            'max_iter': cfg.solver_max_iter,
            'max_cpu_time': cfg.solver_max_cpu_time,
            'tol': cfg.solver_tol,
            'acceptable_tol': 1e-4,
            'acceptable_iter': 5,
            'print_level': 0,
            'sb': 'yes',
        }
        opti.solver('ipopt', p_opts, s_opts)

        self._opti = opti
        self._X = X
        self._U = U
        self._x0 = x0
        self._coeffs = coeffs
        self._cost = cost

    def _padded_coeffs(self, coeffs: Sequence[float]) -> np.ndarray:
        values = np.asarray(coeffs, dtype=float).ravel()
        if values.size > self._n_coeffs:
            raise InvalidInput(
                f"Polynomial has {values.size} coefficients, optimizer supports "
                f"at most {self._n_coeffs}"
            )
        padded = np.zeros(self._n_coeffs)
        padded[:values.size] = values
        return padded

    def _initial_guess(
        self, state: VehicleState, coeffs: np.ndarray, warm_start: Optional[WarmStart]
    ) -> Tuple[np.ndarray, np.ndarray]:
        steps = self.horizon - 1
        guess = warm_start.shifted(steps) if warm_start is not None else None
        if guess is None:
            deltas, accels = np.zeros(steps), np.zeros(steps)
        else:
            deltas, accels = guess

        states = rollout(state, deltas, accels, coeffs, self.config.dt, self.config.lf)
        X_guess = np.column_stack([s.as_array() for s in states])
        U_guess = np.vstack([deltas, accels])
        return X_guess, U_guess

    def _return_status(self) -> Optional[str]:
        try:
            return self._opti.stats().get('return_status')
        except RuntimeError:
            return None

    def solve(
        self,
        state: VehicleState,
        coeffs: Sequence[float],
        warm_start: Optional[WarmStart] = None,
    ) -> Tuple[HorizonSolution, WarmStart]:
        """Solve the horizon problem for the current state.

        Args:
            state: Current state (vehicle-local frame, x = y = psi = 0).
            coeffs: Reference polynomial coefficients (degree <= poly_max_degree).
            warm_start: Previous actuator plan, or None for a cold start.

        Returns:
            (solution, warm_start) where warm_start seeds the next call.

        Raises:
            InvalidInput: If the polynomial has too many coefficients.
            SolverDivergence: If IPOPT fails to converge within its budget or
                returns non-finite values.
        """
        if self._opti is None:
            self._build()

        N = self.horizon
        padded = self._padded_coeffs(coeffs)

        opti = self._opti
        opti.set_value(self._x0, state.as_array())
        opti.set_value(self._coeffs, padded)

        X_guess, U_guess = self._initial_guess(state, padded, warm_start)
        opti.set_initial(self._X, X_guess)
        opti.set_initial(self._U, U_guess)

        try:
            sol = opti.solve()
        except RuntimeError as e:
            status = self._return_status()
            logging.debug(f"IPOPT failed: {e}")
            raise SolverDivergence(
                f"MPC solve did not converge (status: {status})", return_status=status
            ) from e

        states = np.asarray(sol.value(self._X), dtype=float).reshape(6, N)
        actuators = np.asarray(sol.value(self._U), dtype=float).reshape(2, N - 1)

        if not (np.all(np.isfinite(states)) and np.all(np.isfinite(actuators))):
            raise SolverDivergence("MPC solve returned non-finite values")

        # Remove solver tolerance overshoot past the actuator bounds
        max_steer = self.config.max_steer_rad
        delta = np.clip(actuators[0], -max_steer, max_steer)
        a = np.clip(actuators[1], -1.0, 1.0)

        stats = sol.stats()
        solution = HorizonSolution(
            x=states[0],
            y=states[1],
            psi=states[2],
            v=states[3],
            cte=states[4],
            epsi=states[5],
            delta=delta,
            a=a,
            cost=float(sol.value(self._cost)),
            iterations=int(stats.get('iter_count', 0)),
            return_status=str(stats.get('return_status', '')),
        )
        logging.debug(
            f"MPC solved in {solution.iterations} iterations "
            f"(cost={solution.cost:.3f}, status={solution.return_status})"
        )
        return solution, WarmStart(delta=delta.copy(), a=a.copy())
