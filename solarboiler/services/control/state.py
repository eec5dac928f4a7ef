"""
Control State Dataclasses

Data structures for the solar control state machine: the control states
with their actuator tuples, the persisted control record and the flow
samples feeding the trend estimate.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple

from solarboiler.common.state import (
    CONTROL_LAST_CHANGE_KEY,
    CONTROL_START_FLOW_OUT_KEY,
    CONTROL_STATE_KEY,
    SharedState,
)


class Actuators(NamedTuple):
    """Valve I, valve II and solar pump"""
    valve_one: bool
    valve_two: bool
    pump: bool


class ControlState(str, Enum):
    """Control states of the solar circuit"""
    SUNSET = "sunset"
    STARTUP = "startup"
    RECYCLE = "recycle"
    RECYCLE_TIMEOUT = "recycleTimeout"
    BOILER_500 = "boiler500"
    BOILER_200 = "boiler200"
    OVERHEAT = "overheat"
    ERROR = "error"

    @property
    def actuators(self) -> Actuators:
        return ACTUATOR_TABLE[self]

    @classmethod
    def parse(cls, value: str | None) -> "ControlState | None":
        """Parse a persisted state name, None if absent or unrecognized"""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# Valve I: large boiler (off) | valve II (on)
# Valve II: small boiler (off) | recycle (on)
ACTUATOR_TABLE: dict[ControlState, Actuators] = {
    ControlState.SUNSET: Actuators(False, False, False),
    ControlState.STARTUP: Actuators(True, True, True),
    ControlState.RECYCLE: Actuators(True, True, True),
    ControlState.RECYCLE_TIMEOUT: Actuators(True, True, False),
    ControlState.BOILER_500: Actuators(False, False, True),
    ControlState.BOILER_200: Actuators(True, False, True),
    ControlState.OVERHEAT: Actuators(False, False, False),
    ControlState.ERROR: Actuators(False, False, False),
}

# States whose entry clears lastChangeAt and stateStartFlowOut
CLEARING_STATES = frozenset({ControlState.SUNSET, ControlState.ERROR})


def actuators_for(state_name: str | None) -> Actuators:
    """
    Actuator tuple for a persisted state name.

    Absent or unrecognized states drive everything off, like ERROR.
    """
    state = ControlState.parse(state_name)
    if state is None:
        return ACTUATOR_TABLE[ControlState.ERROR]
    return state.actuators


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class ControlRecord:
    """
    Persisted control record (singleton).

    state_name keeps the raw persisted string so that unrecognized values
    can be told apart from an absent record.
    """
    state_name: str | None = None
    last_change_at: datetime | None = None
    state_start_flow_out: float | None = None

    @property
    def state(self) -> ControlState | None:
        return ControlState.parse(self.state_name)

    @property
    def actuators(self) -> Actuators:
        return actuators_for(self.state_name)

    def elapsed_s(self, now: datetime) -> float | None:
        """Seconds since the last state change, None if never set"""
        if self.last_change_at is None:
            return None
        return (now - self.last_change_at).total_seconds()

    @classmethod
    def entering(
        cls,
        state: ControlState,
        now: datetime,
        flow_out: float | None,
        previous: "ControlRecord | None" = None,
    ) -> "ControlRecord":
        """
        Build the record for entering a state.

        SUNSET and ERROR clear the timer and reference temperature, STARTUP
        keeps the previous reference, every other state records flow_out.
        """
        if state in CLEARING_STATES:
            return cls(state.value, None, None)
        if state == ControlState.STARTUP:
            reference = previous.state_start_flow_out if previous else None
            return cls(state.value, now, reference)
        return cls(state.value, now, flow_out)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and health output"""
        return {
            "state": self.state_name,
            "last_change_at": self.last_change_at.isoformat() if self.last_change_at else None,
            "state_start_flow_out": self.state_start_flow_out,
            "actuators": self.actuators._asdict(),
        }


def load_control_record(store: SharedState) -> ControlRecord:
    """Read the control record from the store"""
    return ControlRecord(
        state_name=store.get(CONTROL_STATE_KEY),
        last_change_at=_from_epoch(store.get(CONTROL_LAST_CHANGE_KEY)),
        state_start_flow_out=_to_float(store.get(CONTROL_START_FLOW_OUT_KEY)),
    )


def save_control_record(store: SharedState, record: ControlRecord) -> None:
    """Write the control record, deleting keys for absent values"""
    if record.state_name is None:
        store.delete(CONTROL_STATE_KEY)
    else:
        store.set(CONTROL_STATE_KEY, record.state_name)

    if record.last_change_at is None:
        store.delete(CONTROL_LAST_CHANGE_KEY)
    else:
        store.set(CONTROL_LAST_CHANGE_KEY, record.last_change_at.timestamp())

    if record.state_start_flow_out is None:
        store.delete(CONTROL_START_FLOW_OUT_KEY)
    else:
        store.set(CONTROL_START_FLOW_OUT_KEY, record.state_start_flow_out)


@dataclass(frozen=True)
class FlowSample:
    """Outflow temperature sample"""
    timestamp: datetime
    value: float

    def encode(self) -> str:
        """History entry format: <epoch seconds>:<value>"""
        return f"{self.timestamp.timestamp():.3f}:{self.value}"

    @classmethod
    def decode(cls, entry: str) -> "FlowSample | None":
        """Parse a history entry, None if malformed"""
        try:
            raw_ts, raw_value = str(entry).split(":", 1)
            return cls(
                timestamp=datetime.fromtimestamp(float(raw_ts), tz=timezone.utc),
                value=float(raw_value),
            )
        except (ValueError, OverflowError):
            return None
