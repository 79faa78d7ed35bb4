"""Reference path fitting for MPC trajectory tracking.

This module fits the sparse waypoints supplied by the simulator (already in
the vehicle-local frame) to a polynomial y = P(x) that the optimizer tracks.
The fit is a least-squares solve of the Vandermonde system using a Householder
QR factorization of the column-scaled matrix, which stays accurate where the
normal equations would square the condition number.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
import numpy.typing as npt

from .exceptions import FitFailure, InvalidInput

RANK_RTOL = 1e-10
"""Relative threshold on |R_ii| / max|R_ii| below which the system is singular."""

ArrayOrFloat = Union[float, npt.NDArray[np.float64]]


@dataclass
class ReferencePath:
    """Fitted reference polynomial.

    Attributes:
        coeffs: Polynomial coefficients, index = power of x.
        degree: Degree actually used (may be below the requested one).
    """

    coeffs: npt.NDArray[np.float64]
    degree: int

    def evaluate(self, x: ArrayOrFloat) -> ArrayOrFloat:
        """Evaluate P(x)."""
        return polyeval(self.coeffs, x)

    def derivative(self, x: ArrayOrFloat) -> ArrayOrFloat:
        """Evaluate dP/dx at x."""
        return polyderiv(self.coeffs, x)


def polyeval(coeffs: Sequence[float], x: ArrayOrFloat) -> ArrayOrFloat:
    """Evaluate a polynomial with coefficients in increasing power order.

    Args:
        coeffs: Coefficients c_0..c_n of c_0 + c_1 x + ... + c_n x^n.
        x: Scalar or array of evaluation points.

    Returns:
        P(x), same shape as x.
    """
    result = np.zeros_like(np.asarray(x, dtype=float))
    for c in reversed(list(coeffs)):
        result = result * x + c
    if np.ndim(result) == 0:
        return float(result)
    return result


def polyderiv(coeffs: Sequence[float], x: ArrayOrFloat) -> ArrayOrFloat:
    """Evaluate the derivative dP/dx of a polynomial.

    Args:
        coeffs: Coefficients c_0..c_n in increasing power order.
        x: Scalar or array of evaluation points.

    Returns:
        dP/dx at x, same shape as x.
    """
    coeffs = list(coeffs)
    derived = [i * coeffs[i] for i in range(1, len(coeffs))]
    if not derived:
        return polyeval([0.0], x)
    return polyeval(derived, x)


def fit_polynomial(
    xs: Sequence[float], ys: Sequence[float], degree: int
) -> npt.NDArray[np.float64]:
    """Least-squares polynomial fit.

    The degree is clamped to min(degree, count - 1) so there are always at
    least as many points as coefficients, and never goes below 1.

    Args:
        xs: Sample x values.
        ys: Sample y values, same length as xs.
        degree: Requested polynomial degree.

    Returns:
        Coefficient array, index = power of x.

    Raises:
        InvalidInput: If lengths differ, fewer than 2 points are given, or
            any value is not finite.
        FitFailure: If the least-squares system is singular (e.g. repeated
            x values) or the solution is not finite.
    """
    x = np.asarray(xs, dtype=float).ravel()
    y = np.asarray(ys, dtype=float).ravel()

    if x.size != y.size:
        raise InvalidInput(f"x/y length mismatch: {x.size} != {y.size}")
    if x.size < 2:
        raise InvalidInput(f"Need at least 2 points to fit a polynomial, got {x.size}")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise InvalidInput("Waypoints contain non-finite values")

    degree = max(1, min(int(degree), x.size - 1))

    vander = np.vander(x, degree + 1, increasing=True)

    # Unit-norm columns keep R's diagonal comparable across powers of x
    col_norms = np.linalg.norm(vander, axis=0)
    if np.any(col_norms == 0.0):
        raise FitFailure(f"Degenerate Vandermonde column at degree {degree}", degree=degree)
    scaled = vander / col_norms

    q, r = np.linalg.qr(scaled)
    r_diag = np.abs(np.diag(r))
    if r_diag.min() <= RANK_RTOL * r_diag.max():
        raise FitFailure(
            f"Singular least-squares system at degree {degree} "
            f"(min/max |R_ii| = {r_diag.min() / r_diag.max():.2e})",
            degree=degree,
        )

    scaled_coeffs = np.linalg.solve(r, q.T @ y)
    coeffs = scaled_coeffs / col_norms

    if not np.all(np.isfinite(coeffs)):
        raise FitFailure(f"Non-finite coefficients at degree {degree}", degree=degree)

    return coeffs


def fit_reference(xs: Sequence[float], ys: Sequence[float], max_degree: int) -> ReferencePath:
    """Fit the reference path, falling back to lower degrees on failure.

    Args:
        xs: Waypoint x values (vehicle-local frame).
        ys: Waypoint y values (vehicle-local frame).
        max_degree: Highest degree to try.

    Returns:
        ReferencePath with the highest degree that produced a valid fit.

    Raises:
        InvalidInput: Propagated from `fit_polynomial`.
        FitFailure: If even a degree-1 fit fails.
    """
    start_degree = max(1, min(int(max_degree), len(xs) - 1))
    last_error: Optional[FitFailure] = None

    for degree in range(start_degree, 0, -1):
        try:
            coeffs = fit_polynomial(xs, ys, degree)
        except FitFailure as e:
            logging.debug(f"Polynomial fit failed at degree {degree}: {e}")
            last_error = e
            continue

        if degree < start_degree:
            logging.warning(f"Reference fit fell back from degree {start_degree} to {degree}")
        return ReferencePath(coeffs=coeffs, degree=degree)

    raise FitFailure(f"No valid fit down to degree 1: {last_error}", degree=1) from last_error
