"""Telemetry decoding and simulator frame encoding.

The simulator speaks Socket.IO text frames over a WebSocket. Event frames are
prefixed with "42" (engine.io message + socket.io event) followed by a JSON
array [event_name, payload]:

    42["telemetry",{"ptsx":[...],"ptsy":[...],"x":..,"y":..,"psi":..,"speed":..}]
    42["steer",{"steering_angle":..,"throttle":..,"mpc_x":[..],...}]
    42["manual",{}]

A "42" frame without a parsable payload means the simulator is in manual
driving mode and is answered with the manual acknowledgment.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .exceptions import InvalidInput

EVENT_PREFIX = "42"
TELEMETRY_EVENT = "telemetry"
STEER_EVENT = "steer"
MANUAL_EVENT = "manual"

REQUIRED_FIELDS = ("ptsx", "ptsy", "x", "y", "psi", "speed")


@dataclass
class EventFrame:
    """Decoded event frame.

    Attributes:
        event: Event name, or None if the frame carried no parsable data.
        payload: Event payload object, or None if the frame carried no data.
    """

    event: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    @property
    def has_data(self) -> bool:
        return self.payload is not None


@dataclass
class Telemetry:
    """One telemetry sample in the global frame.

    Attributes:
        ptsx: Waypoint x coordinates (global frame, travel order).
        ptsy: Waypoint y coordinates (global frame, travel order).
        x: Vehicle x position (global frame).
        y: Vehicle y position (global frame).
        psi: Vehicle heading (radians, not necessarily normalized).
        speed: Vehicle speed (simulator units).
    """

    ptsx: List[float]
    ptsy: List[float]
    x: float
    y: float
    psi: float
    speed: float

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Telemetry":
        """Build a telemetry record from a decoded payload.

        Args:
            payload: The JSON object of a telemetry event.

        Returns:
            Validated Telemetry.

        Raises:
            InvalidInput: If a field is missing or not numeric, the waypoint
                sequences differ in length, or fewer than 2 waypoints are given.
        """
        if not isinstance(payload, dict):
            raise InvalidInput(f"Telemetry payload must be an object, got {type(payload).__name__}")

        missing = [name for name in REQUIRED_FIELDS if name not in payload]
        if missing:
            raise InvalidInput(f"Telemetry missing fields: {', '.join(missing)}")

        ptsx = _number_list(payload["ptsx"], "ptsx")
        ptsy = _number_list(payload["ptsy"], "ptsy")
        if len(ptsx) != len(ptsy):
            raise InvalidInput(f"ptsx/ptsy length mismatch: {len(ptsx)} != {len(ptsy)}")
        if len(ptsx) < 2:
            raise InvalidInput(f"Need at least 2 waypoints, got {len(ptsx)}")

        return cls(
            ptsx=ptsx,
            ptsy=ptsy,
            x=_number(payload["x"], "x"),
            y=_number(payload["y"], "y"),
            psi=_number(payload["psi"], "psi"),
            speed=_number(payload["speed"], "speed"),
        )


def _number(value: Any, name: str) -> float:
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"Telemetry field '{name}' must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidInput(f"Telemetry field '{name}' is not finite: {value!r}")
    return float(value)


def _number_list(value: Any, name: str) -> List[float]:
    if not isinstance(value, list):
        raise InvalidInput(f"Telemetry field '{name}' must be a list, got {type(value).__name__}")
    return [_number(item, name) for item in value]


def decode_frame(message: Union[str, bytes]) -> Optional[EventFrame]:
    """Decode a raw WebSocket message.

    Args:
        message: Raw text or bytes frame.

    Returns:
        None if the message is not an event frame (ignored), an EventFrame
        without payload if the event frame has no parsable data (manual mode),
        otherwise the decoded event.
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError:
            return None

    if len(message) <= len(EVENT_PREFIX) or not message.startswith(EVENT_PREFIX):
        return None

    if "null" in message:
        return EventFrame()

    start = message.find("[")
    end = message.rfind("}]")
    if start == -1 or end == -1 or end < start:
        return EventFrame()

    try:
        data = json.loads(message[start:end + 2])
    except json.JSONDecodeError:
        return EventFrame()

    if (
        not isinstance(data, list)
        or len(data) < 2
        or not isinstance(data[0], str)
        or not isinstance(data[1], dict)
    ):
        return EventFrame()

    return EventFrame(event=data[0], payload=data[1])


def encode_event(event: str, payload: Dict[str, Any]) -> str:
    """Encode an outbound event frame, e.g. 42["steer",{...}]."""
    return EVENT_PREFIX + json.dumps([event, payload], separators=(",", ":"))


MANUAL_FRAME = encode_event(MANUAL_EVENT, {})
"""Acknowledgment sent when no command is computed for a frame."""
