"""
Control Engine

Responsibilities:
- Gate solar collection on the sun position
- Estimate the outflow temperature trend
- Decide the next control state from the transition table
- Persist the control record for the telemetry link
"""

from .service import ControlEngine, ControlService
from .state import ControlRecord, ControlState, Actuators

__all__ = ["ControlEngine", "ControlService", "ControlRecord", "ControlState", "Actuators"]
