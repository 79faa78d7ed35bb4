"""Rigid-body transforms between the global frame and the vehicle-local frame.

In the vehicle-local frame the vehicle sits at the origin with its heading
along +x. Headings must be normalized with `normalize_angle` before use.
"""

import math
from typing import Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

ArrayLike = Union[Sequence[float], npt.NDArray[np.float64]]


def normalize_angle(angle: float) -> float:
    """Wrap an angle to (-pi, pi].

    Args:
        angle: Angle in radians, any range.

    Returns:
        Equivalent angle in (-pi, pi].
    """
    wrapped = math.atan2(math.sin(angle), math.cos(angle))
    # atan2 can return exactly -pi; the half-open interval excludes it
    if wrapped <= -math.pi:
        wrapped = math.pi
    return wrapped


def to_vehicle_frame(
    px: float, py: float, psi: float, ptsx: ArrayLike, ptsy: ArrayLike
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Transform global waypoints into the vehicle-local frame.

    Translates by the vehicle position, then rotates by -psi:
        x' =  cos(psi) * dx + sin(psi) * dy
        y' = -sin(psi) * dx + cos(psi) * dy

    Args:
        px: Vehicle x position in the global frame.
        py: Vehicle y position in the global frame.
        psi: Vehicle heading (radians, normalized to (-pi, pi]).
        ptsx: Waypoint x coordinates in the global frame.
        ptsy: Waypoint y coordinates in the global frame.

    Returns:
        Tuple of (local_x, local_y) arrays.
    """
    dx = np.asarray(ptsx, dtype=float) - px
    dy = np.asarray(ptsy, dtype=float) - py
    cos_psi = math.cos(psi)
    sin_psi = math.sin(psi)

    local_x = cos_psi * dx + sin_psi * dy
    local_y = -sin_psi * dx + cos_psi * dy
    return local_x, local_y


def to_global_frame(
    px: float, py: float, psi: float, local_x: ArrayLike, local_y: ArrayLike
) -> Tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Inverse of `to_vehicle_frame`: rotate by +psi, then translate back.

    Args:
        px: Vehicle x position in the global frame.
        py: Vehicle y position in the global frame.
        psi: Vehicle heading (radians).
        local_x: Point x coordinates in the vehicle-local frame.
        local_y: Point y coordinates in the vehicle-local frame.

    Returns:
        Tuple of (global_x, global_y) arrays.
    """
    lx = np.asarray(local_x, dtype=float)
    ly = np.asarray(local_y, dtype=float)
    cos_psi = math.cos(psi)
    sin_psi = math.sin(psi)

    global_x = cos_psi * lx - sin_psi * ly + px
    global_y = sin_psi * lx + cos_psi * ly + py
    return global_x, global_y
