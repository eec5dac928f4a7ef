"""
Metrics Flush

Publishes a snapshot of the installation as InfluxDB line protocol over UDP:
- control state, actuator tuple and reference outflow temperature
- every fresh sensor reading
- sun position and gate
- outflow trend, when one is published
"""

from datetime import datetime, timezone

from solarboiler.common.config import AppConfig
from solarboiler.common.logging_setup import get_service_logger
from solarboiler.common.state import (
    TREND_SLOPE_KEY,
    TREND_STD_ERROR_KEY,
    SharedState,
    get_reading,
)

from ..control.state import load_control_record
from ..control.sun import SunGate, is_shining
from .udp import UdpLineSender

logger = get_service_logger("reporting.metrics")


def _flag(value: bool) -> str:
    return "1i" if value else "0i"


def _escape_tag(value: str) -> str:
    return value.replace(",", r"\,").replace(" ", r"\ ").replace("=", r"\=")


class MetricsReporter:
    """Builds and sends the metrics snapshot"""

    def __init__(
        self,
        store: SharedState,
        config: AppConfig,
        sun_gate: SunGate | None = None,
        sender: UdpLineSender | None = None,
    ):
        self.store = store
        self.config = config
        self.sun_gate = sun_gate or SunGate(config.location, config.sun)
        self.sender = sender or UdpLineSender(config.metrics.host, config.metrics.port)

    def control_line(self) -> str:
        record = load_control_record(self.store)
        actuators = record.actuators
        state = _escape_tag(record.state_name or "unavailable")
        fields = [
            f"valveI={_flag(actuators.valve_one)}",
            f"valveII={_flag(actuators.valve_two)}",
            f"pump={_flag(actuators.pump)}",
        ]
        if record.state_start_flow_out is not None:
            fields.append(f"startTflowOut={record.state_start_flow_out}")
        return f"solarstate,controlstate={state} " + ",".join(fields)

    def reading_lines(self) -> list[str]:
        lines = []
        for sensor in self.config.sensors.fields:
            value = get_reading(self.store, sensor)
            if value is None:
                logger.warning(f"No temperature for {sensor}", extra={"sensor": sensor})
                continue
            location, _, position = sensor.partition(".")
            lines.append(
                f"temperature,name={_escape_tag(location)},position={_escape_tag(position)} "
                f"value={value}"
            )
        return lines

    def sun_line(self, now: datetime) -> str:
        position = self.sun_gate.position(now)
        shining = is_shining(position, self.config.sun)
        return (
            f"sun azimuth={position.azimuth},zenithAngle={position.zenith},"
            f"power={_flag(shining)}"
        )

    def trend_line(self) -> str | None:
        slope = self.store.get(TREND_SLOPE_KEY)
        if slope is None:
            return None
        std_error = self.store.get(TREND_STD_ERROR_KEY)
        line = f"pipe.trend slope={float(slope)}"
        if std_error is not None:
            line += f",deviation={float(std_error)}"
        return line

    def build_lines(self, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(timezone.utc)
        lines = [self.control_line()]
        lines.extend(self.reading_lines())
        lines.append(self.sun_line(now))
        trend = self.trend_line()
        if trend:
            lines.append(trend)
        return lines

    def flush(self, now: datetime | None = None) -> int:
        """
        Send the snapshot.

        Returns:
            Number of lines handed to the network
        """
        lines = self.build_lines(now)
        if not self.sender.enabled:
            logger.warning("Metrics host not configured, nothing sent")
            return 0

        sent = sum(1 for line in lines if self.sender.send(line))
        logger.info(f"Metrics flushed: {sent}/{len(lines)} lines", extra={"lines": sent})
        return sent

    def close(self) -> None:
        self.sender.close()
