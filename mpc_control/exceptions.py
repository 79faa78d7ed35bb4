"""Error kinds raised by the MPC control pipeline.

Every error here is a per-cycle, recoverable event. The control loop catches
them, skips or substitutes the command for the affected cycle, and carries on
with the next telemetry frame.
"""

from typing import Optional


class MPCControlError(Exception):
    """Base class for all control pipeline errors."""


class InvalidInput(MPCControlError):
    """Malformed or insufficient telemetry (too few waypoints, mismatched lengths)."""


class FitFailure(MPCControlError):
    """Least-squares system for the reference polynomial is singular or ill-conditioned."""

    def __init__(self, message: str, degree: Optional[int] = None) -> None:
        super().__init__(message)
        self.degree = degree


class SolverDivergence(MPCControlError):
    """NLP solver did not converge within its iteration/time budget.

    Attributes:
        return_status: IPOPT return status string, if the solver reported one.
    """

    def __init__(self, message: str, return_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.return_status = return_status
