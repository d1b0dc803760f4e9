"""Simulator message framing and payload codec.

Application frames look like:
    42["telemetry",{"ptsx":[...],"ptsy":[...],"x":..,"y":..,"psi":..,"speed":..}]

"42" at the start of the message means there's a websocket message event: the
4 signifies a websocket message and the 2 signifies a websocket event. When the
simulator is in manual mode it sends the event with a null payload, which is
answered with the "manual" event.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .actuation import ActuationCommand
from .config import EVENT_MARKER
from .errors import EmptyPayload, MalformedMessage


@dataclass(frozen=True)
class TelemetryFrame:
    """One telemetry snapshot from the simulator (map frame).

    Attributes:
        ptsx: Waypoint x-coordinates.
        ptsy: Waypoint y-coordinates, index-aligned with ptsx.
        x: Vehicle x position.
        y: Vehicle y position.
        psi: Vehicle heading (radians).
        speed: Vehicle speed.
    """

    ptsx: Tuple[float, ...]
    ptsy: Tuple[float, ...]
    x: float
    y: float
    psi: float
    speed: float

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TelemetryFrame":
        """Build a frame from the telemetry event's data object.

        Raises:
            MalformedMessage: Missing or non-numeric fields, or waypoint lists
                that are empty or of different lengths.
        """
        if not isinstance(data, dict):
            raise MalformedMessage(f"Telemetry data must be an object, got {type(data).__name__}")

        try:
            ptsx = tuple(float(v) for v in data["ptsx"])
            ptsy = tuple(float(v) for v in data["ptsy"])
            x = float(data["x"])
            y = float(data["y"])
            psi = float(data["psi"])
            speed = float(data["speed"])
        except KeyError as e:
            raise MalformedMessage(f"Telemetry missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise MalformedMessage(f"Telemetry field not numeric: {e}") from e

        if len(ptsx) != len(ptsy):
            raise MalformedMessage(f"Waypoint lengths differ: {len(ptsx)} != {len(ptsy)}")
        if not ptsx:
            raise MalformedMessage("Telemetry carries no waypoints")
        if not all(math.isfinite(v) for v in (*ptsx, *ptsy, x, y, psi, speed)):
            raise MalformedMessage("Telemetry contains non-finite values")

        return cls(ptsx=ptsx, ptsy=ptsy, x=x, y=y, psi=psi, speed=speed)


@dataclass(frozen=True)
class OutboundMessage:
    """Reply to one telemetry event.

    Attributes:
        command: Normalized steering and throttle.
        mpc_x: Predicted path x (vehicle frame).
        mpc_y: Predicted path y (vehicle frame).
        next_x: Reference waypoints x (vehicle frame).
        next_y: Reference waypoints y (vehicle frame).
    """

    command: ActuationCommand
    mpc_x: List[float] = field(default_factory=list)
    mpc_y: List[float] = field(default_factory=list)
    next_x: List[float] = field(default_factory=list)
    next_y: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Payload of the "steer" event."""
        return {
            "steering_angle": self.command.steering,
            "throttle": self.command.throttle,
            "mpc_x": self.mpc_x,
            "mpc_y": self.mpc_y,
            "next_x": self.next_x,
            "next_y": self.next_y,
        }


def extract_payload(frame: str) -> Optional[str]:
    """Return the JSON event array inside a frame, or None if there is no data.

    A frame containing "null" has no data. Otherwise the payload runs from the
    first "[" to the last "}]".
    """
    if "null" in frame:
        return None
    start = frame.find("[")
    end = frame.rfind("}]")
    if start == -1 or end == -1 or end < start:
        return None
    return frame[start : end + 2]


def parse_frame(message: Union[str, bytes]) -> Optional[Tuple[str, Any]]:
    """Parse one inbound frame into (event_name, event_data).

    Args:
        message: Raw frame text (bytes are decoded as UTF-8).

    Returns:
        (event_name, event_data), or None if the frame is not an application
        event (no "42" marker) and must be ignored.

    Raises:
        EmptyPayload: Marker present but the frame carries no data.
        MalformedMessage: Marker present but the payload is unusable.
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Frame is not valid UTF-8: {e}") from e

    if not message.startswith(EVENT_MARKER):
        logging.debug(f"Ignoring non-event frame: {message[:40]!r}")
        return None

    body = message[len(EVENT_MARKER) :]
    payload = extract_payload(body)
    if payload is None:
        if not body.strip() or "null" in body:
            raise EmptyPayload("Event frame has no data")
        raise MalformedMessage(f"Event frame has no event array: {body[:60]!r}")

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedMessage(f"Event payload is not valid JSON: {e}") from e

    if not isinstance(event, list) or len(event) < 2 or not isinstance(event[0], str):
        raise MalformedMessage(f"Event payload must be [name, data], got {payload[:60]!r}")

    return event[0], event[1]


def encode_event(name: str, data: Dict[str, Any]) -> str:
    """Frame an outgoing event: 42["name",{...}]."""
    return f"{EVENT_MARKER}{json.dumps([name, data], separators=(',', ':'))}"


def encode_steer(message: OutboundMessage) -> str:
    """Frame a "steer" reply."""
    return encode_event("steer", message.to_dict())


def encode_manual() -> str:
    """Frame the manual-driving fallback: 42["manual",{}]."""
    return encode_event("manual", {})
