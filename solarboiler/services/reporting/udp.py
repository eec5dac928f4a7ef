"""
UDP Line Sender

Fire-and-forget datagram sink shared by the metrics flush (InfluxDB UDP
listener) and the remote diagnostics (Logstash UDP input).
"""

import socket

from solarboiler.common.logging_setup import get_service_logger

logger = get_service_logger("reporting.udp")


class UdpLineSender:
    """Sends one text line per datagram. Disabled when host is empty"""

    def __init__(self, host: str, port: int):
        self.host = host
        self.port = port
        self._socket: socket.socket | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send(self, line: str) -> bool:
        """
        Send a line.

        Returns:
            True if the datagram was handed to the network stack
        """
        if not self.enabled:
            return False

        try:
            if self._socket is None:
                self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self._socket.sendto(line.encode("utf-8"), (self.host, self.port))
            return True
        except OSError as e:
            logger.error(
                f"Faulty UDP connection @{self.host}:{self.port}: {e}",
                extra={"host": self.host, "port": self.port},
            )
            return False

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def __enter__(self) -> "UdpLineSender":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
