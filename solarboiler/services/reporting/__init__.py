"""
Reporting Sinks

Fire-and-forget outbound transports:
- UDP line sender shared by metrics and remote diagnostics
- Metrics flush (line protocol snapshot)
- Alert notifier for sustained failures
"""

from .alerts import AlertNotifier
from .diagnostics import RemoteDiagnostics
from .metrics import MetricsReporter
from .udp import UdpLineSender

__all__ = ["AlertNotifier", "MetricsReporter", "RemoteDiagnostics", "UdpLineSender"]
