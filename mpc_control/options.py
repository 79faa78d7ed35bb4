"""
Runtime options for the control loop.

This module defines the behavior switches of a control session (what to send
when the solver diverges, whether to warm-start the solver, whether to record
the run) and the command-line flags that set them.
"""

import argparse
import sys
from dataclasses import dataclass
from enum import Enum


class DivergencePolicy(str, Enum):
    """Command to send when the optimizer fails to converge."""

    HOLD_LAST = "hold"  # Resend the last successfully computed command
    ZERO = "zero"  # Zero steering, zero throttle
    PROPAGATE = "propagate"  # Raise to the session, which answers with manual mode


@dataclass
class ControllerOptions:
    """Configuration for control loop behavior."""

    divergence_policy: DivergencePolicy = DivergencePolicy.HOLD_LAST
    use_warm_start: bool = True  # If False, every solve starts from a zero-actuation guess
    record: bool = True  # If False, no CSV files are written

    def __str__(self):
        """Human-readable description of active options."""
        parts = [f"On divergence: {self.divergence_policy.value}"]
        parts.append("Warm start" if self.use_warm_start else "Cold start")
        parts.append("Recording" if self.record else "No recording")
        return " | ".join(parts)

    def to_dict(self):
        """Convert to dictionary for logging."""
        return {
            'divergence_policy': self.divergence_policy.value,
            'use_warm_start': self.use_warm_start,
            'record': self.record,
        }


def parse_option_flags(args=None):
    """
    Parse command-line flags that select control loop behavior.

    Args:
        args: List of command-line arguments (default: sys.argv[1:])

    Returns:
        tuple: (ControllerOptions, remaining_args)
            - ControllerOptions with appropriate settings
            - List of remaining arguments not consumed
    """
    parser = argparse.ArgumentParser(add_help=False)

    parser.add_argument('--on-divergence',
                        choices=[policy.value for policy in DivergencePolicy],
                        default=DivergencePolicy.HOLD_LAST.value,
                        help='Command sent when the solver fails to converge')
    parser.add_argument('--no-warm-start', action='store_true',
                        help='Do not seed the solver with the previous solution')
    parser.add_argument('--no-record', action='store_true',
                        help='Do not write cycle data to the results directory')

    # Parse known args, keep the rest
    if args is None:
        args = sys.argv[1:]

    known_args, remaining_args = parser.parse_known_args(args)

    options = ControllerOptions(
        divergence_policy=DivergencePolicy(known_args.on_divergence),
        use_warm_start=not known_args.no_warm_start,
        record=not known_args.no_record,
    )

    return options, remaining_args
