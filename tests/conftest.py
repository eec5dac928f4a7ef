"""Shared fixtures for the controller tests"""

from datetime import datetime, timezone

import pytest

from solarboiler.common.config import AppConfig, LocationSettings, StoreSettings
from solarboiler.common.exceptions import HardwareFault
from solarboiler.common.state import SharedState
from solarboiler.services.control.sun import SunGate, SunPosition

# 2024-06-01 12:00 UTC
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

NOON = SunPosition(azimuth=180.0, zenith=30.0)
NIGHT = SunPosition(azimuth=0.0, zenith=120.0)


class FakeClock:
    """Settable epoch clock for store TTLs"""

    def __init__(self, start: float = NOW.timestamp()):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """In-memory stand-in for SerialChannel"""

    def __init__(self, lines=None, port="/dev/fake"):
        self.lines = list(lines or [])
        self.written: list[bytes] = []
        self.port = port
        self.opened = False
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        self.opened = True

    def readline(self):
        if not self.lines:
            raise HardwareFault("end of stream", self.port)
        return self.lines.pop(0)

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def close(self) -> None:
        self.closed = True


class FakeSender:
    """Collects UDP lines instead of sending them"""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.lines: list[str] = []
        self.closed = False

    def send(self, line: str) -> bool:
        if not self.enabled:
            return False
        self.lines.append(line)
        return True

    def close(self) -> None:
        self.closed = True


def fixed_sun_gate(config: AppConfig, position: SunPosition = NOON) -> SunGate:
    return SunGate(config.location, config.sun, position_fn=lambda when: position)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    return SharedState(tmp_path / "state", clock=clock)


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        location=LocationSettings(latitude=47.37, longitude=8.54, elevation=410.0),
        store=StoreSettings(state_dir=str(tmp_path / "state")),
    )
