"""
Telemetry Link

Responsibilities:
- Own the serial device through a TTL lease
- Validate inbound readings and keep the outflow history
- Forward micro controller diagnostics
- Answer each frame with the actuator command of the persisted state
"""

from .frames import FrameKind, InboundFrame, classify_line, encode_actuators, decode_actuators
from .lease import ResourceLease
from .service import TelemetryLink

__all__ = [
    "FrameKind",
    "InboundFrame",
    "classify_line",
    "encode_actuators",
    "decode_actuators",
    "ResourceLease",
    "TelemetryLink",
]
