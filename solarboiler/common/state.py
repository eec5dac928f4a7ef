"""
Shared State Management

File-based key-value store linking the telemetry link and the control
engine. Each key is one JSON document holding a value and an optional
expiry. Writes go through a temp file and an atomic rename, and every
mutation holds an advisory lock on the key so that single-key
operations (including the conditional ones used by the lease) are atomic.
"""

import json
import os
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

from .exceptions import StoreError

DEFAULT_STATE_DIR = Path(
    os.environ.get("SOLARBOILER_STATE_DIR", "/var/lib/solarboiler/state")
)

# Control record
CONTROL_STATE_KEY = "control.state"
CONTROL_LAST_CHANGE_KEY = "control.lastChangeAt"
CONTROL_START_FLOW_OUT_KEY = "control.stateStartFlowOut"

# Telemetry
FLOW_HISTORY_KEY = "history.flowOut"
READING_PREFIX = "reading."

# Trend estimate
TREND_SLOPE_KEY = "trend.slope"
TREND_STD_ERROR_KEY = "trend.stdError"
TREND_SAMPLES_KEY = "trend.samples"


def reading_key(sensor: str) -> str:
    """Store key for a sensor reading, e.g. reading.pipe.TflowOut"""
    return f"{READING_PREFIX}{sensor}"


class SharedState:
    """
    Simple file-based state sharing between processes.

    Uses fcntl file locking on Unix systems for safe concurrent access.
    On Windows (development only), falls back to an in-process lock.
    """

    _thread_lock = threading.Lock()

    def __init__(
        self,
        state_dir: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state_dir = Path(state_dir) if state_dir else DEFAULT_STATE_DIR
        self._clock = clock

    def _ensure_dir(self) -> None:
        """Ensure state directory exists"""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create state directory {self.state_dir}: {e}") from e

    def _get_path(self, key: str) -> Path:
        """Get file path for state key"""
        if not key or "/" in key or key.startswith("."):
            raise StoreError("Invalid key", key)
        return self.state_dir / f"{key}.json"

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        """Hold an exclusive lock on a key for a read-modify-write"""
        self._ensure_dir()
        lock_path = self.state_dir / f".{key}.lock"

        if os.name == "nt":
            with self._thread_lock:
                yield
            return

        import fcntl
        with open(lock_path, "a", encoding="utf-8") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self, key: str) -> dict | None:
        """Load the raw document for a key, or None if absent or expired"""
        path = self._get_path(key)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (json.JSONDecodeError, OSError):
            return None

        expires_at = document.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            return None
        return document

    def _dump(self, key: str, value: Any, expires_at: float | None) -> None:
        """Write a key document atomically"""
        path = self._get_path(key)
        document = {
            "value": value,
            "expires_at": expires_at,
            "_updated_at": datetime.now(timezone.utc).isoformat(),
        }

        temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(path)
        except OSError as e:
            raise StoreError(f"Write failed: {e}", key) from e

    def _unlink(self, key: str) -> bool:
        path = self._get_path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def _expiry(self, ttl_s: float | None) -> float | None:
        return self._clock() + ttl_s if ttl_s is not None else None

    # ------------------------------------------------------------------
    # Plain key operations
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read a value.

        Returns:
            The stored value, or default if the key is absent or expired
        """
        document = self._load(key)
        if document is None:
            return default
        return document.get("value", default)

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        """
        Write a value, optionally expiring after ttl_s seconds.

        Args:
            key: State key (becomes filename without .json)
            value: JSON serializable value
            ttl_s: Time to live in seconds, None for no expiry
        """
        with self._locked(key):
            self._dump(key, value, self._expiry(ttl_s))

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if something was removed"""
        with self._locked(key):
            return self._unlink(key)

    def exists(self, key: str) -> bool:
        return self._load(key) is not None

    def ttl(self, key: str) -> float | None:
        """
        Remaining time to live in seconds.

        Returns:
            Seconds left, or None if the key is absent or never expires
        """
        document = self._load(key)
        if document is None or document.get("expires_at") is None:
            return None
        return max(0.0, document["expires_at"] - self._clock())

    def list_keys(self, prefix: str = "") -> list[str]:
        """List all live keys, optionally filtered by prefix"""
        self._ensure_dir()
        keys = []
        for path in sorted(self.state_dir.glob("*.json")):
            key = path.stem
            if key.startswith(prefix) and self._load(key) is not None:
                keys.append(key)
        return keys

    # ------------------------------------------------------------------
    # Conditional operations
    # ------------------------------------------------------------------

    def set_if_absent(self, key: str, value: Any, ttl_s: float | None = None) -> bool:
        """Write only if the key is absent or expired. Returns True if written"""
        with self._locked(key):
            if self._load(key) is not None:
                return False
            self._dump(key, value, self._expiry(ttl_s))
            return True

    def touch_if_equal(self, key: str, expected: Any, ttl_s: float) -> bool:
        """Refresh the TTL only if the key holds the expected value"""
        with self._locked(key):
            document = self._load(key)
            if document is None or document.get("value") != expected:
                return False
            self._dump(key, expected, self._expiry(ttl_s))
            return True

    def delete_if_equal(self, key: str, expected: Any) -> bool:
        """Delete only if the key holds the expected value"""
        with self._locked(key):
            document = self._load(key)
            if document is None or document.get("value") != expected:
                return False
            return self._unlink(key)

    def incr(self, key: str, amount: int = 1, ttl_s: float | None = None) -> int:
        """Increment an integer counter, creating it at 0"""
        with self._locked(key):
            document = self._load(key)
            current = int(document["value"]) if document else 0
            current += amount
            self._dump(key, current, self._expiry(ttl_s))
            return current

    # ------------------------------------------------------------------
    # Bounded lists
    # ------------------------------------------------------------------

    def push_trim(self, key: str, value: Any, max_len: int) -> int:
        """
        Push a value at the head of a list and trim it to max_len entries.

        Returns:
            New list length
        """
        with self._locked(key):
            document = self._load(key)
            items = list(document["value"]) if document else []
            items.insert(0, value)
            del items[max_len:]
            self._dump(key, items, None)
            return len(items)

    def list_range(self, key: str, start: int = 0, stop: int | None = None) -> list:
        """Read a slice of a list, newest first"""
        value = self.get(key, [])
        if not isinstance(value, list):
            raise StoreError("Not a list", key)
        return value[start:stop]


# Convenience functions for the readings written by the telemetry link
def get_reading(store: SharedState, sensor: str) -> float | None:
    """Get a fresh reading, None when unknown or expired"""
    value = store.get(reading_key(sensor))
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def set_reading(store: SharedState, sensor: str, value: float, ttl_s: float) -> None:
    """Persist an accepted reading with its freshness TTL"""
    store.set(reading_key(sensor), value, ttl_s=ttl_s)
