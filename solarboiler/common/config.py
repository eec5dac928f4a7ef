"""
Configuration Dataclasses

Type-safe, immutable configuration structures for the controller.
Loaded once from a YAML file at startup and injected into each service.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .exceptions import ConfigError

# Environment variable pointing at the YAML configuration
CONFIG_ENV_VAR = "SOLARBOILER_CONFIG"

DEFAULT_CONFIG_PATHS = [
    Path("/etc/solarboiler/config.yaml"),
    Path("/opt/solarboiler/config.yaml"),
    Path("config.yaml"),
]

# Frame order of the solar micro controller: Ttop:Tmiddle:Tbottom:TflowIn:TflowOut
DEFAULT_SENSOR_FIELDS = (
    "boiler500.Ttop",
    "boiler500.Tmiddle",
    "boiler500.Tbottom",
    "pipe.TflowIn",
    "pipe.TflowOut",
)


@dataclass(frozen=True)
class LocationSettings:
    """Site location used for the sun position"""
    latitude: float
    longitude: float
    elevation: float = 0.0


@dataclass(frozen=True)
class SunSettings:
    """Azimuth window and zenith limit in which the collectors get sun"""
    min_azimuth: float = 95.0
    max_azimuth: float = 300.0
    max_zenith: float = 83.0
    # Zenith limit while the sun is still east of the meridian, None uses max_zenith
    morning_max_zenith: float | None = None

    def zenith_limit(self, azimuth: float) -> float:
        if self.morning_max_zenith is not None and azimuth < 180.0:
            return self.morning_max_zenith
        return self.max_zenith


@dataclass(frozen=True)
class ControlSettings:
    """Transition table thresholds (temperatures in C, durations in seconds)"""
    overheat_c: float = 95.0
    overheat_hold_s: int = 30 * 60
    grace_s: int = 60
    recycle_rise_c: float = 5.0
    recycle_timeout_after_s: int = 10 * 60
    recycle_min_flow_out_c: float = 40.0
    recycle_timeout_hold_s: int = 20 * 60
    boiler_swap_rise_c: float = 10.0
    extraction_margin_c: float = 0.5


@dataclass(frozen=True)
class TrendSettings:
    """Rolling regression over the outflow history"""
    window_s: int = 10 * 60
    min_samples: int = 5
    publish_ttl_s: int = 5 * 60


@dataclass(frozen=True)
class SensorSettings:
    """Sensor name table and validation bounds"""
    fields: tuple[str, ...] = DEFAULT_SENSOR_FIELDS
    flow_in: str = "pipe.TflowIn"
    flow_out: str = "pipe.TflowOut"
    min_valid_c: float = -5.0
    max_valid_c: float = 120.0
    reading_ttl_s: int = 5 * 60
    history_length: int = 50


@dataclass(frozen=True)
class SerialSettings:
    """Serial link to the solar micro controller"""
    port: str = "/dev/ttyACM0"
    baudrate: int = 9600
    read_timeout_s: float | None = None
    log_marker: str = "log:"


@dataclass(frozen=True)
class LeaseSettings:
    """Single-owner lease on the serial device"""
    key: str = "lease.token"
    ttl_s: int = 60


@dataclass(frozen=True)
class StoreSettings:
    """Shared state store location"""
    state_dir: str = "/var/lib/solarboiler/state"


@dataclass(frozen=True)
class MetricsSettings:
    """UDP line protocol endpoint (InfluxDB UDP listener)"""
    host: str = ""
    port: int = 8089


@dataclass(frozen=True)
class RemoteLogSettings:
    """UDP endpoint for remote diagnostics (Logstash UDP input)"""
    host: str = ""
    port: int = 5000
    tag: str = "iot-solar-boiler"


@dataclass(frozen=True)
class AlertSettings:
    """Email alerting for sustained failures"""
    enabled: bool = False
    api_url: str = "https://api.resend.com/emails"
    api_key: str = ""
    from_email: str = "Solar Boiler <no-reply@localhost>"
    to: tuple[str, ...] = ()
    failure_threshold: int = 3
    cooldown_s: int = 60 * 60


@dataclass(frozen=True)
class LoggingSettings:
    """Log level and format"""
    level: str = "INFO"
    json_format: bool = True


@dataclass(frozen=True)
class HealthSettings:
    """Telemetry link health endpoint, 0 disables it"""
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(frozen=True)
class AppConfig:
    """Complete controller configuration"""
    location: LocationSettings
    sun: SunSettings = field(default_factory=SunSettings)
    control: ControlSettings = field(default_factory=ControlSettings)
    trend: TrendSettings = field(default_factory=TrendSettings)
    sensors: SensorSettings = field(default_factory=SensorSettings)
    serial: SerialSettings = field(default_factory=SerialSettings)
    lease: LeaseSettings = field(default_factory=LeaseSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)
    remote_log: RemoteLogSettings = field(default_factory=RemoteLogSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    health: HealthSettings = field(default_factory=HealthSettings)


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


def load_app_config(data: dict) -> AppConfig:
    """Load AppConfig from dictionary (e.g., parsed from YAML)"""
    location_data = _section(data, "location")
    if "latitude" not in location_data or "longitude" not in location_data:
        raise ConfigError("location.latitude and location.longitude are required")

    location = LocationSettings(
        latitude=float(location_data["latitude"]),
        longitude=float(location_data["longitude"]),
        elevation=float(location_data.get("elevation", 0.0)),
    )

    sun_data = _section(data, "sun")
    sun = SunSettings(
        min_azimuth=float(sun_data.get("min_azimuth", 95.0)),
        max_azimuth=float(sun_data.get("max_azimuth", 300.0)),
        max_zenith=float(sun_data.get("max_zenith", 83.0)),
        morning_max_zenith=(
            float(sun_data["morning_max_zenith"])
            if sun_data.get("morning_max_zenith") is not None else None
        ),
    )
    if sun.min_azimuth >= sun.max_azimuth:
        raise ConfigError("sun.min_azimuth must be below sun.max_azimuth")

    control_data = _section(data, "control")
    defaults = ControlSettings()
    control = ControlSettings(
        overheat_c=float(control_data.get("overheat_c", defaults.overheat_c)),
        overheat_hold_s=int(control_data.get("overheat_hold_s", defaults.overheat_hold_s)),
        grace_s=int(control_data.get("grace_s", defaults.grace_s)),
        recycle_rise_c=float(control_data.get("recycle_rise_c", defaults.recycle_rise_c)),
        recycle_timeout_after_s=int(
            control_data.get("recycle_timeout_after_s", defaults.recycle_timeout_after_s)
        ),
        recycle_min_flow_out_c=float(
            control_data.get("recycle_min_flow_out_c", defaults.recycle_min_flow_out_c)
        ),
        recycle_timeout_hold_s=int(
            control_data.get("recycle_timeout_hold_s", defaults.recycle_timeout_hold_s)
        ),
        boiler_swap_rise_c=float(
            control_data.get("boiler_swap_rise_c", defaults.boiler_swap_rise_c)
        ),
        extraction_margin_c=float(
            control_data.get("extraction_margin_c", defaults.extraction_margin_c)
        ),
    )

    trend_data = _section(data, "trend")
    trend = TrendSettings(
        window_s=int(trend_data.get("window_s", 10 * 60)),
        min_samples=int(trend_data.get("min_samples", 5)),
        publish_ttl_s=int(trend_data.get("publish_ttl_s", 5 * 60)),
    )
    if trend.min_samples < 3:
        raise ConfigError("trend.min_samples must be at least 3")

    sensor_data = _section(data, "sensors")
    sensors = SensorSettings(
        fields=tuple(sensor_data.get("fields", DEFAULT_SENSOR_FIELDS)),
        flow_in=sensor_data.get("flow_in", "pipe.TflowIn"),
        flow_out=sensor_data.get("flow_out", "pipe.TflowOut"),
        min_valid_c=float(sensor_data.get("min_valid_c", -5.0)),
        max_valid_c=float(sensor_data.get("max_valid_c", 120.0)),
        reading_ttl_s=int(sensor_data.get("reading_ttl_s", 5 * 60)),
        history_length=int(sensor_data.get("history_length", 50)),
    )
    for name in (sensors.flow_in, sensors.flow_out):
        if name not in sensors.fields:
            raise ConfigError(f"Control sensor {name} is not part of the frame fields")

    serial_data = _section(data, "serial")
    read_timeout = serial_data.get("read_timeout_s")
    serial = SerialSettings(
        port=serial_data.get("port", "/dev/ttyACM0"),
        baudrate=int(serial_data.get("baudrate", 9600)),
        read_timeout_s=float(read_timeout) if read_timeout is not None else None,
        log_marker=serial_data.get("log_marker", "log:"),
    )

    lease_data = _section(data, "lease")
    lease = LeaseSettings(
        key=lease_data.get("key", "lease.token"),
        ttl_s=int(lease_data.get("ttl_s", 60)),
    )

    store_data = _section(data, "store")
    store = StoreSettings(
        state_dir=os.environ.get(
            "SOLARBOILER_STATE_DIR",
            store_data.get("state_dir", StoreSettings.state_dir),
        ),
    )

    metrics_data = _section(data, "metrics")
    metrics = MetricsSettings(
        host=metrics_data.get("host", ""),
        port=int(metrics_data.get("port", 8089)),
    )

    remote_log_data = _section(data, "remote_log")
    remote_log = RemoteLogSettings(
        host=remote_log_data.get("host", ""),
        port=int(remote_log_data.get("port", 5000)),
        tag=remote_log_data.get("tag", "iot-solar-boiler"),
    )

    alerts_data = _section(data, "alerts")
    recipients = alerts_data.get("to", ())
    if isinstance(recipients, str):
        recipients = (recipients,)
    alerts = AlertSettings(
        enabled=bool(alerts_data.get("enabled", False)),
        api_url=alerts_data.get("api_url", AlertSettings.api_url),
        api_key=os.environ.get("SOLARBOILER_ALERT_API_KEY", alerts_data.get("api_key", "")),
        from_email=alerts_data.get("from_email", AlertSettings.from_email),
        to=tuple(recipients),
        failure_threshold=int(alerts_data.get("failure_threshold", 3)),
        cooldown_s=int(alerts_data.get("cooldown_s", 60 * 60)),
    )

    logging_data = _section(data, "logging")
    logging_settings = LoggingSettings(
        level=os.environ.get("SOLARBOILER_LOG_LEVEL", logging_data.get("level", "INFO")),
        json_format=bool(logging_data.get("json_format", True)),
    )

    health_data = _section(data, "health")
    health = HealthSettings(
        host=health_data.get("host", "127.0.0.1"),
        port=int(health_data.get("port", 0)),
    )

    return AppConfig(
        location=location,
        sun=sun,
        control=control,
        trend=trend,
        sensors=sensors,
        serial=serial,
        lease=lease,
        store=store,
        metrics=metrics,
        remote_log=remote_log,
        alerts=alerts,
        logging=logging_settings,
        health=health,
    )


def find_config_path() -> Path | None:
    """Find configuration file, honouring SOLARBOILER_CONFIG first"""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    for path in DEFAULT_CONFIG_PATHS:
        if path.exists():
            return path

    return None


def load_config_file(path: str | Path | None = None) -> AppConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Explicit path, or None to search the default locations

    Returns:
        Parsed AppConfig
    """
    config_path = Path(path) if path else find_config_path()
    if config_path is None:
        raise ConfigError(
            f"No configuration file found (set {CONFIG_ENV_VAR} or create "
            f"{DEFAULT_CONFIG_PATHS[0]})"
        )
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    return load_app_config(data)
