"""
Telemetry Link Service - serial owner

Responsible for:
- Holding the serial device lease for the lifetime of the process
- Validating inbound sensor frames and storing accepted readings
- Keeping the outflow history for the trend estimate
- Answering every frame with the actuator command of the persisted state

Frames are handled one at a time by a single read loop: a frame is fully
handled (lease check, store writes, command write) before the next line is
read.
"""

import asyncio
import signal
from collections import Counter
from datetime import datetime, timezone

from aiohttp import web

from solarboiler.common.config import AppConfig
from solarboiler.common.exceptions import FailureKind, HardwareFault, LeaseConflict, SensorFault
from solarboiler.common.logging_setup import (
    get_service_logger,
    log_failure,
    log_frame,
    log_sensor_fault,
)
from solarboiler.common.state import FLOW_HISTORY_KEY, SharedState, set_reading

from ..control.state import FlowSample, load_control_record
from ..reporting.alerts import AlertNotifier
from ..reporting.diagnostics import RemoteDiagnostics
from .channel import SerialChannel
from .frames import FrameKind, InboundFrame, classify_line, command_bytes, encode_actuators, parse_temperature
from .lease import ResourceLease

logger = get_service_logger("telemetry")

# Source name used for forwarded micro controller diagnostics
CONTROLLER_SOURCE = "iot-solar-controller"


class TelemetryLink:
    """
    Telemetry Link

    Per inbound line:
    1. Refresh the lease (loss -> LeaseConflict, frame not acted on)
    2. Log line -> remote diagnostics; readings -> outlier filter + store;
       anything else -> malformed diagnostic
    3. Write the actuator command of the currently persisted state
    """

    def __init__(
        self,
        store: SharedState,
        config: AppConfig,
        channel: SerialChannel | None = None,
        lease: ResourceLease | None = None,
        diagnostics: RemoteDiagnostics | None = None,
        notifier: AlertNotifier | None = None,
    ):
        self.store = store
        self.config = config
        self.channel = channel or SerialChannel(config.serial)
        self.lease = lease or ResourceLease(store, config.lease)
        self.diagnostics = diagnostics or RemoteDiagnostics(config.remote_log)
        self.notifier = notifier

        self._start_time = datetime.now(timezone.utc)
        self._frame_counts: Counter[str] = Counter()
        self._sensor_faults = 0
        self._last_frame_at: datetime | None = None
        self._last_command: str | None = None
        self._hardware_ok_reported = False

        # Health server
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._lease_lost = False
        self._shutdown_event: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def handle_line(self, line: str, now: datetime | None = None) -> str:
        """
        Handle one inbound line.

        Returns:
            The 3 character command written back

        Raises:
            LeaseConflict: ownership lost, nothing was written
            HardwareFault: the command could not be written
        """
        self.lease.refresh()

        now = now or datetime.now(timezone.utc)
        frame = classify_line(line, len(self.config.sensors.fields), self.config.serial.log_marker)

        if frame.kind == FrameKind.LOG:
            self.diagnostics.forward(CONTROLLER_SOURCE, frame.text)
        elif frame.kind == FrameKind.READINGS:
            self._store_readings(frame, now)
        else:
            self.diagnostics.forward(
                CONTROLLER_SOURCE,
                f"received garbage from the solar micro controller: {line!r}",
                error=True,
            )

        command = self._send_command()

        self._frame_counts[frame.kind.value] += 1
        self._last_frame_at = now
        log_frame(logger, frame.kind.value, line, command)
        return command

    def _store_readings(self, frame: InboundFrame, now: datetime) -> None:
        sensors = self.config.sensors
        for sensor, raw in zip(sensors.fields, frame.fields):
            value = parse_temperature(raw, sensors.min_valid_c, sensors.max_valid_c)
            if value is None:
                self._sensor_faults += 1
                log_sensor_fault(logger, SensorFault(sensor, raw))
                continue

            set_reading(self.store, sensor, value, sensors.reading_ttl_s)
            if sensor == sensors.flow_out:
                self.store.push_trim(
                    FLOW_HISTORY_KEY,
                    FlowSample(now, value).encode(),
                    sensors.history_length,
                )

    def _send_command(self) -> str:
        """Write the command for whatever state is persisted right now"""
        record = load_control_record(self.store)
        self.channel.write(command_bytes(record.actuators))
        self._last_command = encode_actuators(record.actuators)
        return self._last_command

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Own the serial device until shutdown, lease loss or hardware failure.

        Raises:
            LeaseConflict: another instance already holds the lease at start
            HardwareFault: the serial channel failed (lease released first)
        """
        self.lease.acquire()

        try:
            self.channel.open()
        except HardwareFault as e:
            self.lease.release()
            await self._hardware_failed(e)
            raise

        logger.info("Starting Telemetry Link", extra={"port": self.channel.port})
        self._running = True
        self._shutdown_event = asyncio.Event()
        self._setup_signal_handlers()
        await self._start_health_server()

        read_task = asyncio.create_task(self._read_loop())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        try:
            await asyncio.wait({read_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
            if read_task.done():
                # Re-raises HardwareFault from the read loop
                read_task.result()
            else:
                logger.info("Received shutdown signal")
        except HardwareFault as e:
            self._running = False
            await self._hardware_failed(e)
            raise
        finally:
            self._running = False
            shutdown_task.cancel()
            await self.stop()
            if not read_task.done():
                read_task.cancel()

    async def _read_loop(self) -> None:
        while self._running:
            line = await asyncio.to_thread(self.channel.readline)
            if not self._running:
                break
            if line is None:
                continue

            try:
                self.handle_line(line)
            except LeaseConflict as e:
                self._lease_lost = True
                logger.warning(f"{e.message}, exiting", extra={"holder": e.holder})
                return

            if not self._hardware_ok_reported and self.notifier:
                self.notifier.record_success(FailureKind.HARDWARE_FAULT)
                self._hardware_ok_reported = True

    async def _hardware_failed(self, error: HardwareFault) -> None:
        log_failure(logger, error.kind.value, error.message, fatal=True)
        if self.notifier:
            await self.notifier.record_failure(FailureKind.HARDWARE_FAULT, error.message)

    async def stop(self) -> None:
        """Release the lease (if still ours) and the serial handle"""
        self._running = False
        await self._stop_health_server()

        if not self._lease_lost:
            self.lease.release()
        self.channel.close()
        self.diagnostics.close()
        logger.info("Telemetry Link stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._shutdown_event.set)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(self._shutdown_event.set))

    # ------------------------------------------------------------------
    # Health endpoint
    # ------------------------------------------------------------------

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server, if a port is configured"""
        settings = self.config.health
        if not settings.port:
            return

        app = web.Application()
        app.router.add_get("/health", self._health_handler)

        self._health_runner = web.AppRunner(app)
        await self._health_runner.setup()
        site = web.TCPSite(self._health_runner, settings.host, settings.port)
        await site.start()

        logger.info(f"Health server started on port {settings.port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    def health(self) -> dict:
        """Health snapshot"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "status": "healthy" if self._running and self.lease.owned else "unhealthy",
            "service": "telemetry-link",
            "uptime": int(uptime),
            "port": self.channel.port,
            "lease_owned": self.lease.owned,
            "frames": dict(self._frame_counts),
            "sensor_faults": self._sensor_faults,
            "last_frame_at": self._last_frame_at.isoformat() if self._last_frame_at else None,
            "last_command": self._last_command,
        }

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.health())
