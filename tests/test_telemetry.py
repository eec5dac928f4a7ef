"""Telemetry link frame handling and lifecycle"""

import asyncio
import dataclasses
import socket
import time

import aiohttp
import pytest

from solarboiler.common.config import AlertSettings, HealthSettings, RemoteLogSettings
from solarboiler.common.exceptions import HardwareFault, LeaseConflict
from solarboiler.common.state import FLOW_HISTORY_KEY, get_reading
from solarboiler.services.control.state import ControlRecord, FlowSample, save_control_record
from solarboiler.services.reporting.alerts import AlertNotifier
from solarboiler.services.reporting.diagnostics import RemoteDiagnostics
from solarboiler.services.telemetry import ResourceLease, TelemetryLink

from .conftest import NOW, FakeChannel, FakeSender

READINGS = "20.5:21.0:22.5:30.0:35.5"


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def make_link(store, config, sender):
    def _make(lines=None, token="link-a", notifier=None):
        channel = FakeChannel(lines)
        link = TelemetryLink(
            store,
            config,
            channel=channel,
            lease=ResourceLease(store, config.lease, token=token),
            diagnostics=RemoteDiagnostics(RemoteLogSettings(tag="iot-solar-boiler"), sender),
            notifier=notifier,
        )
        return link, channel
    return _make


@pytest.fixture
def link(make_link):
    link, channel = make_link()
    link.lease.acquire()
    channel.open()
    return link, channel


def test_readings_are_stored(link, store):
    telemetry, channel = link

    command = telemetry.handle_line(READINGS, NOW)

    assert get_reading(store, "boiler500.Ttop") == 20.5
    assert get_reading(store, "boiler500.Tmiddle") == 21.0
    assert get_reading(store, "boiler500.Tbottom") == 22.5
    assert get_reading(store, "pipe.TflowIn") == 30.0
    assert get_reading(store, "pipe.TflowOut") == 35.5
    assert store.ttl("reading.pipe.TflowOut") == 300
    assert store.list_range(FLOW_HISTORY_KEY) == [FlowSample(NOW, 35.5).encode()]

    # No control record yet: everything off
    assert command == "FFF"
    assert channel.written == [b"FFF\n"]


def test_command_follows_persisted_state(link, store):
    telemetry, channel = link
    save_control_record(store, ControlRecord("boiler200", NOW, 40.0))

    assert telemetry.handle_line(READINGS, NOW) == "TFT"

    save_control_record(store, ControlRecord("recycleTimeout", NOW, 40.0))
    telemetry.handle_line(READINGS, NOW)

    assert channel.written == [b"TFT\n", b"TTF\n"]


def test_unknown_persisted_state_commands_all_off(link, store):
    telemetry, channel = link
    store.set("control.state", "furnace")

    assert telemetry.handle_line(READINGS, NOW) == "FFF"


def test_outliers_are_dropped_individually(link, store):
    telemetry, channel = link
    store.set("reading.boiler500.Tbottom", 40.0, ttl_s=300)

    telemetry.handle_line("20.5:21.0:150.0:30.0:abc", NOW)

    assert get_reading(store, "boiler500.Ttop") == 20.5
    assert get_reading(store, "pipe.TflowIn") == 30.0
    # Previous value survives, rejected ones are not written
    assert get_reading(store, "boiler500.Tbottom") == 40.0
    assert get_reading(store, "pipe.TflowOut") is None
    assert store.list_range(FLOW_HISTORY_KEY) == []
    assert telemetry.health()["sensor_faults"] == 2
    assert channel.written == [b"FFF\n"]


def test_history_is_bounded(link, store, config):
    telemetry, _ = link
    for _ in range(config.sensors.history_length + 5):
        telemetry.handle_line(READINGS, NOW)

    assert len(store.list_range(FLOW_HISTORY_KEY)) == config.sensors.history_length


def test_log_lines_are_forwarded(link, store, sender):
    telemetry, channel = link

    telemetry.handle_line("log:pump started", NOW)

    assert sender.lines == ["iot-solar-boiler: iot-solar-controller: pump started"]
    assert store.list_keys("reading.") == []
    assert channel.written == [b"FFF\n"]


def test_malformed_lines_are_reported_and_answered(link, store, sender):
    telemetry, channel = link

    telemetry.handle_line("20.5:21.0", NOW)

    assert len(sender.lines) == 1
    assert "garbage" in sender.lines[0]
    assert store.list_keys("reading.") == []
    assert channel.written == [b"FFF\n"]
    assert telemetry.health()["frames"] == {"malformed": 1}


def test_hijacked_lease_stops_before_any_write(link, store):
    telemetry, channel = link
    store.set("lease.token", "intruder", ttl_s=60)

    with pytest.raises(LeaseConflict):
        telemetry.handle_line(READINGS, NOW)

    assert store.list_keys("reading.") == []
    assert channel.written == []
    assert store.get("lease.token") == "intruder"


def test_second_instance_never_touches_the_device(make_link, store):
    first, _ = make_link(token="link-a")
    first.lease.acquire()

    second, channel = make_link([READINGS], token="link-b")
    with pytest.raises(LeaseConflict):
        asyncio.run(second.run())

    assert not channel.opened
    assert channel.written == []
    assert store.get("lease.token") == "link-a"


def test_run_until_hardware_fault(make_link, store):
    notifier = AlertNotifier(store, AlertSettings(enabled=False))
    telemetry, channel = make_link([READINGS, "log:hello", READINGS], notifier=notifier)

    with pytest.raises(HardwareFault):
        asyncio.run(telemetry.run())

    assert channel.written == [b"FFF\n"] * 3
    assert get_reading(store, "pipe.TflowOut") == 35.5
    assert len(store.list_range(FLOW_HISTORY_KEY)) == 2
    # Lease released and device closed on the way out
    assert store.get("lease.token") is None
    assert channel.closed
    assert store.get("alert.hardware_fault.failures") == 1


def test_health_snapshot(link):
    telemetry, _ = link
    telemetry.handle_line(READINGS, NOW)
    telemetry.handle_line("log:hi", NOW)

    health = telemetry.health()

    assert health["service"] == "telemetry-link"
    assert health["lease_owned"] is True
    assert health["frames"] == {"readings": 1, "log": 1}
    assert health["last_command"] == "FFF"
    assert health["last_frame_at"] == NOW.isoformat()


class IdleChannel(FakeChannel):
    """Device that stays silent: every read times out"""

    def readline(self):
        time.sleep(0.01)
        return None


class HijackedChannel(FakeChannel):
    """Another instance takes the lease just before the second line arrives"""

    def __init__(self, store, lines):
        super().__init__(lines)
        self.store = store
        self.reads = 0

    def readline(self):
        self.reads += 1
        if self.reads == 2:
            self.store.set("lease.token", "intruder", ttl_s=60)
        return super().readline()


async def wait_until_running(telemetry: TelemetryLink) -> None:
    for _ in range(200):
        if telemetry._running and telemetry._shutdown_event is not None:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("telemetry link did not start")


def idle_link(store, config, sender):
    channel = IdleChannel()
    telemetry = TelemetryLink(
        store,
        config,
        channel=channel,
        lease=ResourceLease(store, config.lease, token="link-a"),
        diagnostics=RemoteDiagnostics(RemoteLogSettings(tag="iot-solar-boiler"), sender),
    )
    return telemetry, channel


def test_shutdown_signal_releases_lease_and_device(store, config, sender):
    telemetry, channel = idle_link(store, config, sender)

    async def scenario():
        task = asyncio.create_task(telemetry.run())
        await wait_until_running(telemetry)
        assert store.get("lease.token") == "link-a"
        telemetry._shutdown_event.set()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(scenario())

    assert store.get("lease.token") is None
    assert channel.closed
    assert channel.written == []
    assert telemetry.health()["status"] == "unhealthy"


def test_lease_lost_mid_run_stops_quietly(store, config, sender):
    channel = HijackedChannel(store, [READINGS, READINGS, READINGS])
    telemetry = TelemetryLink(
        store,
        config,
        channel=channel,
        lease=ResourceLease(store, config.lease, token="link-a"),
        diagnostics=RemoteDiagnostics(RemoteLogSettings(tag="iot-solar-boiler"), sender),
    )

    # Returns normally: losing the lease is not a failure of this instance
    asyncio.run(telemetry.run())

    assert channel.reads == 2
    assert channel.written == [b"FFF\n"]
    assert store.get("lease.token") == "intruder"
    assert channel.closed
    assert len(store.list_range(FLOW_HISTORY_KEY)) == 1


def test_health_endpoint_serves_snapshot(store, config, sender):
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    config = dataclasses.replace(config, health=HealthSettings(host="127.0.0.1", port=port))
    telemetry, _ = idle_link(store, config, sender)

    async def scenario():
        task = asyncio.create_task(telemetry.run())
        try:
            await wait_until_running(telemetry)
            async with aiohttp.ClientSession() as session:
                for _ in range(50):
                    try:
                        async with session.get(f"http://127.0.0.1:{port}/health") as response:
                            return response.status, await response.json()
                    except aiohttp.ClientConnectionError:
                        await asyncio.sleep(0.02)
            raise AssertionError("health endpoint never answered")
        finally:
            telemetry._shutdown_event.set()
            await asyncio.wait_for(task, timeout=5)

    status, body = asyncio.run(scenario())

    assert status == 200
    assert body["service"] == "telemetry-link"
    assert body["status"] == "healthy"
    assert body["lease_owned"] is True
    assert body["port"] == "/dev/fake"
