"""
Serial Channel

Thin pyserial wrapper for the solar micro controller link. Every transport
error surfaces as HardwareFault.
"""

import serial

from solarboiler.common.config import SerialSettings
from solarboiler.common.exceptions import HardwareFault
from solarboiler.common.logging_setup import get_service_logger

logger = get_service_logger("telemetry.serial")


class SerialChannel:
    """Line oriented serial channel, 8N1"""

    def __init__(self, settings: SerialSettings):
        self.settings = settings
        self._serial: serial.Serial | None = None

    @property
    def port(self) -> str:
        return self.settings.port

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        try:
            self._serial = serial.Serial(
                port=self.settings.port,
                baudrate=self.settings.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.settings.read_timeout_s,
            )
        except (serial.SerialException, ValueError) as e:
            raise HardwareFault(f"could not open: {e}", self.port) from e

        logger.info(
            f"Connected to serial port {self.port} ({self.settings.baudrate} baud)",
            extra={"port": self.port, "baudrate": self.settings.baudrate},
        )

    def readline(self) -> str | None:
        """
        Block for the next line.

        Returns:
            The decoded line without terminator, or None when a read
            timeout expired without data
        """
        if not self.is_open:
            raise HardwareFault("port not open", self.port)

        try:
            raw = self._serial.readline()
        except (serial.SerialException, OSError, TypeError) as e:
            raise HardwareFault(f"read failed: {e}", self.port) from e

        if not raw:
            if self.settings.read_timeout_s is None:
                raise HardwareFault("end of stream", self.port)
            return None

        return raw.decode("ascii", errors="replace").rstrip("\r\n")

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise HardwareFault("port not open", self.port)

        try:
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as e:
            raise HardwareFault(f"write failed: {e}", self.port) from e

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as e:
                logger.warning(f"Error closing {self.port}: {e}")
            self._serial = None
            logger.debug(f"Disconnected from serial port {self.port}")
