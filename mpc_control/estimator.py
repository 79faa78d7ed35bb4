"""Tracking error estimation against the fitted reference path.

Computes the two errors the optimizer drives to zero:
- Cross-track error (cte): lateral offset between vehicle and path
- Heading error (epsi): vehicle heading minus the path tangent direction

The path tangent from atan(dP/dx) is only defined up to pi. The travel
direction implied by the waypoint order resolves it: if consecutive waypoints
move against the candidate tangent, the tangent is flipped.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .path import ReferencePath
from .transform import normalize_angle

MIN_WAYPOINT_SPACING = 1e-9
"""Waypoint pairs closer than this carry no direction information."""


@dataclass
class TrackingErrors:
    """Errors of the current pose relative to the reference path.

    Attributes:
        cte: Cross-track error, y - P(x).
        epsi: Heading error psi - desired_heading, in (-pi, pi].
        desired_heading: Path tangent direction after disambiguation (radians).
    """

    cte: float
    epsi: float
    desired_heading: float


def desired_heading(
    path: ReferencePath, x: float, ptsx: Sequence[float], ptsy: Sequence[float]
) -> float:
    """Direction of the reference path at x, consistent with travel direction.

    Uses the first pair of consecutive waypoints (in supplied order) whose
    displacement is non-zero. If their displacement projects negatively onto
    the candidate tangent, the tangent is turned by pi. If no such pair
    exists the candidate is returned unchanged.

    Args:
        path: Fitted reference path.
        x: Point at which to evaluate the tangent (vehicle-local x).
        ptsx: Waypoint x values in the vehicle-local frame, travel order.
        ptsy: Waypoint y values in the vehicle-local frame, travel order.

    Returns:
        Path heading in (-pi, pi].
    """
    heading = math.atan(path.derivative(x))

    xs = np.asarray(ptsx, dtype=float)
    ys = np.asarray(ptsy, dtype=float)
    for i in range(len(xs) - 1):
        dx = xs[i + 1] - xs[i]
        dy = ys[i + 1] - ys[i]
        if math.hypot(dx, dy) <= MIN_WAYPOINT_SPACING:
            continue
        if dx * math.cos(heading) + dy * math.sin(heading) < 0:
            heading = math.atan2(-math.sin(heading), -math.cos(heading))
        break

    return normalize_angle(heading)


def estimate_errors(
    path: ReferencePath,
    ptsx: Sequence[float],
    ptsy: Sequence[float],
    x: float = 0.0,
    y: float = 0.0,
    psi: float = 0.0,
) -> TrackingErrors:
    """Compute cte and epsi for a pose in the vehicle-local frame.

    Args:
        path: Fitted reference path.
        ptsx: Waypoint x values (vehicle-local), used for direction.
        ptsy: Waypoint y values (vehicle-local), used for direction.
        x: Vehicle x (0 in the vehicle-local frame).
        y: Vehicle y (0 in the vehicle-local frame).
        psi: Vehicle heading (0 in the vehicle-local frame).

    Returns:
        TrackingErrors for the pose.
    """
    cte = y - path.evaluate(x)
    heading = desired_heading(path, x, ptsx, ptsy)
    epsi = normalize_angle(psi - heading)
    return TrackingErrors(cte=float(cte), epsi=epsi, desired_heading=heading)
