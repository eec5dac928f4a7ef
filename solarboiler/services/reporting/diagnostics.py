"""
Remote Diagnostics

Forwards diagnostic events (micro controller log lines, malformed frame
notices) to the remote log collector as tagged UDP lines.
"""

from solarboiler.common.config import RemoteLogSettings
from solarboiler.common.logging_setup import get_service_logger
from .udp import UdpLineSender

logger = get_service_logger("reporting.diagnostics")


class RemoteDiagnostics:
    """Tagged diagnostic sink, always mirrored to the local log"""

    def __init__(self, settings: RemoteLogSettings, sender: UdpLineSender | None = None):
        self.tag = settings.tag
        self.sender = sender or UdpLineSender(settings.host, settings.port)

    def format(self, source: str, text: str) -> str:
        return f"{self.tag}: {source}: {text}"

    def forward(self, source: str, text: str, error: bool = False) -> None:
        line = self.format(source, text)
        if error:
            logger.error(line, extra={"source": source})
        else:
            logger.info(line, extra={"source": source})
        self.sender.send(line)

    def close(self) -> None:
        self.sender.close()
