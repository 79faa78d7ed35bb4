"""
Kinematic bicycle model of the vehicle.

This module provides the discrete-time model the optimizer plans with. The
same equations appear as equality constraints in the NLP; the numeric version
here rolls out initial guesses for the solver and checks solver output.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .path import polyderiv, polyeval


@dataclass
class VehicleState:
    """Kinematic state used by the optimizer.

    In the vehicle-local frame at decision time, x = y = psi = 0.
    """

    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    v: float = 0.0
    cte: float = 0.0
    epsi: float = 0.0

    def as_array(self) -> np.ndarray:
        """State as [x, y, psi, v, cte, epsi]."""
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi])


def bicycle_step(
    state: VehicleState,
    delta: float,
    a: float,
    coeffs: Sequence[float],
    dt: float,
    lf: float,
) -> VehicleState:
    """
    Advance the state by one timestep.

        x'    = x + v cos(psi) dt
        y'    = y + v sin(psi) dt
        psi'  = psi + v / Lf * delta * dt
        v'    = v + a dt
        cte'  = (f(x) - y) + v sin(epsi) dt
        epsi' = (psi - atan(f'(x))) + v / Lf * delta * dt

    where f is the reference polynomial.

    Args:
        state: Current state.
        delta: Steering angle (radians, positive turns toward +y).
        a: Throttle/brake (normalized, [-1, 1]).
        coeffs: Reference polynomial coefficients.
        dt: Timestep (seconds).
        lf: Front axle to center of gravity distance.

    Returns:
        State after dt.
    """
    yaw_step = state.v / lf * delta * dt
    return VehicleState(
        x=state.x + state.v * math.cos(state.psi) * dt,
        y=state.y + state.v * math.sin(state.psi) * dt,
        psi=state.psi + yaw_step,
        v=state.v + a * dt,
        cte=(polyeval(coeffs, state.x) - state.y) + state.v * math.sin(state.epsi) * dt,
        epsi=(state.psi - math.atan(polyderiv(coeffs, state.x))) + yaw_step,
    )


def rollout(
    state: VehicleState,
    deltas: Sequence[float],
    accels: Sequence[float],
    coeffs: Sequence[float],
    dt: float,
    lf: float,
) -> List[VehicleState]:
    """
    Simulate the model over a sequence of actuations.

    Args:
        state: Initial state.
        deltas: Steering sequence (length M).
        accels: Throttle sequence (length M).
        coeffs: Reference polynomial coefficients.
        dt: Timestep (seconds).
        lf: Front axle to center of gravity distance.

    Returns:
        List of M + 1 states, starting with `state`.
    """
    states = [state]
    for delta, a in zip(deltas, accels):
        states.append(bicycle_step(states[-1], delta, a, coeffs, dt, lf))
    return states
