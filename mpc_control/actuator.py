"""Actuator mapping from optimizer output to simulator command units.

This module sits between the optimizer and the transport: it converts the raw
steering angle into the simulator's normalized range and releases commands
after the configured actuation latency, modeling real actuator lag.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

from .config import ACTUATION_LATENCY_SECONDS, MAX_STEER_RAD


@dataclass(frozen=True)
class ActuatorCommand:
    """Command in simulator units.

    Attributes:
        steering: Normalized steering in [-1, 1]. Negative steers toward +y
            (left) in the simulator's polarity.
        throttle: Normalized throttle/brake in [-1, 1].
    """

    steering: float
    throttle: float

    def to_payload(self) -> Dict[str, float]:
        return {"steering_angle": self.steering, "throttle": self.throttle}


ZERO_COMMAND = ActuatorCommand(steering=0.0, throttle=0.0)


class ActuatorMapper:
    """Normalizes optimizer actuators and applies actuation latency.

    Attributes:
        max_steer_rad: Maximum physical steering angle (normalization divisor).
        latency_seconds: Delay between computing and releasing a command.
    """

    def __init__(
        self,
        max_steer_rad: float = MAX_STEER_RAD,
        latency_seconds: float = ACTUATION_LATENCY_SECONDS,
    ):
        """Initialize the actuator mapper.

        Args:
            max_steer_rad: Maximum steering angle (radians), must be > 0.
            latency_seconds: Actuation latency (seconds), must be >= 0.

        Raises:
            ValueError: If a parameter is out of range.
        """
        if max_steer_rad <= 0:
            raise ValueError(f"max_steer_rad must be > 0, got {max_steer_rad}")
        if latency_seconds < 0:
            raise ValueError(f"latency_seconds must be >= 0, got {latency_seconds}")

        self.max_steer_rad = max_steer_rad
        self.latency_seconds = latency_seconds

    def map(self, delta: float, a: float) -> ActuatorCommand:
        """Convert raw optimizer actuators to a normalized command.

        steering = -delta / max_steer (the simulator's steering polarity is
        opposite to the model's), throttle passes through. Both are clamped to
        [-1, 1].

        Args:
            delta: Steering angle from the optimizer (radians).
            a: Throttle from the optimizer (already normalized).

        Returns:
            ActuatorCommand ready for release.
        """
        steering = -delta / self.max_steer_rad
        steering = max(-1.0, min(1.0, steering))
        throttle = max(-1.0, min(1.0, a))
        return ActuatorCommand(steering=steering, throttle=throttle)

    async def release(self, message: Any, send: Callable[[Any], Awaitable[None]]) -> None:
        """Wait the actuation latency, then hand the message to `send`.

        Schedule this as a task so the latency does not hold up the caller.

        Args:
            message: Command, or the encoded frame carrying it.
            send: Coroutine function that delivers the message.
        """
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        logging.debug(f"Releasing command after {self.latency_seconds * 1000:.0f} ms")
        await send(message)
