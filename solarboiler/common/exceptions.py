"""
Custom Exception Classes for the Solar Boiler Controller

Hierarchical exception structure for error handling across the
telemetry link, the control engine and the reporting sinks.
"""

from enum import Enum


class FailureKind(str, Enum):
    """Failure kinds that can be escalated to the alert notifier"""
    SENSOR_FAULT = "sensor_fault"
    READING_UNAVAILABLE = "reading_unavailable"
    HARDWARE_FAULT = "hardware_fault"
    LEASE_CONFLICT = "lease_conflict"
    UNKNOWN_STATE = "unknown_state"
    OVER_TEMPERATURE = "over_temperature"


class SolarBoilerError(Exception):
    """Base exception for all controller errors"""

    kind: FailureKind | None = None

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(SolarBoilerError):
    """Configuration-related errors"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}", recoverable=False)


class StoreError(SolarBoilerError):
    """Shared state store access errors"""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(f"Store Error: {message}", recoverable=False)


class SensorFault(SolarBoilerError):
    """A single reading was rejected by the outlier filter"""

    kind = FailureKind.SENSOR_FAULT

    def __init__(self, field: str, raw: str):
        self.field = field
        self.raw = raw
        super().__init__(f"Sensor fault on {field}: {raw!r}", recoverable=True)


class ReadingUnavailable(SolarBoilerError):
    """A required control input is missing or expired"""

    kind = FailureKind.READING_UNAVAILABLE

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"No control temperature available: {', '.join(missing)}",
            recoverable=False,
        )


class HardwareFault(SolarBoilerError):
    """Serial channel failure"""

    kind = FailureKind.HARDWARE_FAULT

    def __init__(self, message: str, port: str | None = None):
        self.port = port
        super().__init__(f"Hardware Fault [{port}]: {message}", recoverable=False)


class LeaseConflict(SolarBoilerError):
    """The serial device lease is held by someone else or was lost"""

    kind = FailureKind.LEASE_CONFLICT

    def __init__(self, message: str, holder: str | None = None):
        self.holder = holder
        super().__init__(f"Lease Conflict: {message}", recoverable=False)


class UnknownState(SolarBoilerError):
    """An unrecognized control state was found in the store"""

    kind = FailureKind.UNKNOWN_STATE

    def __init__(self, state: str | None):
        self.state = state
        super().__init__(f"Unknown control state: {state!r}", recoverable=True)


class OverTemperature(SolarBoilerError):
    """Outflow temperature exceeds the safety bound"""

    kind = FailureKind.OVER_TEMPERATURE

    def __init__(self, value: float, limit: float):
        self.value = value
        self.limit = limit
        super().__init__(
            f"Outflow temperature {value:.1f}C exceeds {limit:.1f}C",
            recoverable=True,
        )


class FrameError(SolarBoilerError):
    """Serial frame could not be encoded or decoded"""

    def __init__(self, message: str, frame: str | None = None):
        self.frame = frame
        super().__init__(f"Frame Error: {message}", recoverable=True)
