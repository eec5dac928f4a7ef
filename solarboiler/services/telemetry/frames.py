"""
Serial Frame Codec

Inbound (micro controller -> host), one ASCII line each:
- "log:<text>"                                  diagnostic
- "Ttop:Tmiddle:Tbottom:TflowIn:TflowOut"       readings
- anything else                                 malformed

Outbound (host -> micro controller): "[valveI][valveII][pump]" as T/F,
newline terminated.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from solarboiler.common.exceptions import FrameError

from ..control.state import Actuators

FIELD_SEPARATOR = ":"

# Plain decimal number, optionally signed, optionally with an exponent
_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


class FrameKind(str, Enum):
    LOG = "log"
    READINGS = "readings"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class InboundFrame:
    """Classified inbound line"""
    kind: FrameKind
    line: str
    text: str = ""
    fields: tuple[str, ...] = field(default_factory=tuple)


def parse_temperature(raw: str, min_valid: float = -5.0, max_valid: float = 120.0) -> float | None:
    """
    Outlier filter.

    Returns:
        The temperature, or None if raw is non-numeric or outside
        [min_valid, max_valid] (bounds inclusive)
    """
    if not isinstance(raw, str) or not _NUMBER.fullmatch(raw.strip()):
        return None
    value = float(raw)
    if value < min_valid or value > max_valid:
        return None
    return value


def is_outlier(raw: str, min_valid: float = -5.0, max_valid: float = 120.0) -> bool:
    return parse_temperature(raw, min_valid, max_valid) is None


def classify_line(line: str, field_count: int, log_marker: str = "log:") -> InboundFrame:
    """Classify an inbound line (without its line terminator)"""
    if line.startswith(log_marker):
        return InboundFrame(FrameKind.LOG, line, text=line[len(log_marker):].strip())

    parts = line.split(FIELD_SEPARATOR)
    if len(parts) == field_count:
        return InboundFrame(FrameKind.READINGS, line, fields=tuple(p.strip() for p in parts))

    return InboundFrame(FrameKind.MALFORMED, line)


def encode_actuators(actuators: Actuators) -> str:
    """Encode to the 3 character command, e.g. 'FFT'"""
    return "".join("T" if flag else "F" for flag in actuators)


def decode_actuators(frame: str) -> Actuators:
    """Decode a 3 character command back to the actuator tuple"""
    frame = frame.strip()
    if len(frame) != 3 or any(c not in "TF" for c in frame):
        raise FrameError("expected 3 characters of T/F", frame)
    return Actuators(*(c == "T" for c in frame))


def command_bytes(actuators: Actuators) -> bytes:
    """Wire form of a command, newline terminated"""
    return f"{encode_actuators(actuators)}\n".encode("ascii")
