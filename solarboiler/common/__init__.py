"""
Common Utilities

Shared modules used across all run modes:
- state.py - Shared file-based state store
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .state import SharedState, reading_key, get_reading, set_reading
from .config import (
    AppConfig,
    LocationSettings,
    SunSettings,
    ControlSettings,
    TrendSettings,
    SensorSettings,
    SerialSettings,
    LeaseSettings,
    StoreSettings,
    MetricsSettings,
    RemoteLogSettings,
    AlertSettings,
    LoggingSettings,
    HealthSettings,
    load_app_config,
    load_config_file,
)
from .exceptions import (
    FailureKind,
    SolarBoilerError,
    ConfigError,
    StoreError,
    SensorFault,
    ReadingUnavailable,
    HardwareFault,
    LeaseConflict,
    UnknownState,
    OverTemperature,
    FrameError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    configure_service_loggers,
    log_transition,
    log_sensor_fault,
    log_frame,
    log_failure,
)

__all__ = [
    # State
    "SharedState",
    "reading_key",
    "get_reading",
    "set_reading",
    # Config
    "AppConfig",
    "LocationSettings",
    "SunSettings",
    "ControlSettings",
    "TrendSettings",
    "SensorSettings",
    "SerialSettings",
    "LeaseSettings",
    "StoreSettings",
    "MetricsSettings",
    "RemoteLogSettings",
    "AlertSettings",
    "LoggingSettings",
    "HealthSettings",
    "load_app_config",
    "load_config_file",
    # Exceptions
    "FailureKind",
    "SolarBoilerError",
    "ConfigError",
    "StoreError",
    "SensorFault",
    "ReadingUnavailable",
    "HardwareFault",
    "LeaseConflict",
    "UnknownState",
    "OverTemperature",
    "FrameError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "configure_service_loggers",
    "log_transition",
    "log_sensor_fault",
    "log_frame",
    "log_failure",
]
