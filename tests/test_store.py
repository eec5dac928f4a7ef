"""Shared state store: TTLs, conditional writes and bounded lists"""

import pytest

from solarboiler.common.exceptions import StoreError
from solarboiler.common.state import SharedState, get_reading, reading_key, set_reading


def test_get_set_delete(store):
    assert store.get("missing") is None
    assert store.get("missing", 7) == 7

    store.set("control.state", "boiler500")
    assert store.get("control.state") == "boiler500"
    assert store.exists("control.state")

    assert store.delete("control.state") is True
    assert store.delete("control.state") is False
    assert store.get("control.state") is None


def test_ttl_expiry(store, clock):
    store.set("reading.pipe.TflowOut", 45.0, ttl_s=300)
    assert store.ttl("reading.pipe.TflowOut") == 300

    clock.advance(299)
    assert store.get("reading.pipe.TflowOut") == 45.0

    clock.advance(1)
    assert store.get("reading.pipe.TflowOut") is None
    assert store.ttl("reading.pipe.TflowOut") is None


def test_no_ttl_never_expires(store, clock):
    store.set("control.state", "recycle")
    clock.advance(10 ** 6)
    assert store.get("control.state") == "recycle"
    assert store.ttl("control.state") is None


def test_stores_are_shared_through_the_directory(tmp_path, clock):
    writer = SharedState(tmp_path, clock=clock)
    reader = SharedState(tmp_path, clock=clock)
    writer.set("trend.slope", 6.0)
    assert reader.get("trend.slope") == 6.0


@pytest.mark.parametrize("key", ["", "a/b", ".hidden"])
def test_invalid_keys(store, key):
    with pytest.raises(StoreError):
        store.get(key)


def test_list_keys(store, clock):
    store.set("reading.pipe.TflowIn", 30.0, ttl_s=10)
    store.set("reading.pipe.TflowOut", 35.0)
    store.set("control.state", "startup")

    assert store.list_keys("reading.") == ["reading.pipe.TflowIn", "reading.pipe.TflowOut"]

    clock.advance(10)
    assert store.list_keys("reading.") == ["reading.pipe.TflowOut"]


def test_set_if_absent(store, clock):
    assert store.set_if_absent("lease.token", "a", ttl_s=60) is True
    assert store.set_if_absent("lease.token", "b", ttl_s=60) is False
    assert store.get("lease.token") == "a"

    clock.advance(60)
    assert store.set_if_absent("lease.token", "b", ttl_s=60) is True
    assert store.get("lease.token") == "b"


def test_touch_if_equal(store, clock):
    store.set("lease.token", "a", ttl_s=60)
    clock.advance(50)

    assert store.touch_if_equal("lease.token", "b", ttl_s=60) is False
    assert store.ttl("lease.token") == 10

    assert store.touch_if_equal("lease.token", "a", ttl_s=60) is True
    assert store.ttl("lease.token") == 60

    clock.advance(60)
    assert store.touch_if_equal("lease.token", "a", ttl_s=60) is False


def test_delete_if_equal(store):
    store.set("lease.token", "a")
    assert store.delete_if_equal("lease.token", "b") is False
    assert store.get("lease.token") == "a"
    assert store.delete_if_equal("lease.token", "a") is True
    assert store.get("lease.token") is None


def test_incr(store):
    assert store.incr("alert.x.failures") == 1
    assert store.incr("alert.x.failures") == 2
    assert store.incr("alert.x.failures", 3) == 5


def test_push_trim_keeps_newest_first(store):
    for i in range(6):
        length = store.push_trim("history.flowOut", f"entry-{i}", 4)

    assert length == 4
    assert store.list_range("history.flowOut") == ["entry-5", "entry-4", "entry-3", "entry-2"]
    assert store.list_range("history.flowOut", 0, 2) == ["entry-5", "entry-4"]


def test_list_range_empty_and_wrong_type(store):
    assert store.list_range("history.flowOut") == []

    store.set("control.state", "boiler500")
    with pytest.raises(StoreError):
        store.list_range("control.state")


def test_readings(store, clock):
    assert get_reading(store, "pipe.TflowOut") is None

    set_reading(store, "pipe.TflowOut", 47.5, ttl_s=300)
    assert reading_key("pipe.TflowOut") == "reading.pipe.TflowOut"
    assert get_reading(store, "pipe.TflowOut") == 47.5

    clock.advance(300)
    assert get_reading(store, "pipe.TflowOut") is None
