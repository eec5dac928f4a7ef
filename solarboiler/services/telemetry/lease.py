"""
Resource Lease

TTL lease on the serial device so that exactly one telemetry link drives
the hardware. A crashed owner's lease simply expires; a live owner
refreshes it on every inbound frame. Refresh and release are conditional
on this process's own token, so a foreign lease is never extended or
deleted.
"""

import os
import socket
import uuid

from solarboiler.common.config import LeaseSettings
from solarboiler.common.exceptions import LeaseConflict
from solarboiler.common.logging_setup import get_service_logger
from solarboiler.common.state import SharedState

logger = get_service_logger("telemetry.lease")


def new_token() -> str:
    """Opaque per-process identity"""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"


class ResourceLease:
    """Single-owner lease stored under one key"""

    def __init__(
        self,
        store: SharedState,
        settings: LeaseSettings | None = None,
        token: str | None = None,
    ):
        self.store = store
        self.settings = settings or LeaseSettings()
        self.token = token or new_token()
        self._owned = False

    @property
    def key(self) -> str:
        return self.settings.key

    @property
    def owned(self) -> bool:
        return self._owned

    def holder(self) -> str | None:
        return self.store.get(self.key)

    def acquire(self) -> None:
        """
        Claim the lease.

        Raises:
            LeaseConflict: any token is already present
        """
        if not self.store.set_if_absent(self.key, self.token, ttl_s=self.settings.ttl_s):
            holder = self.holder()
            raise LeaseConflict("another instance holds the serial device", holder)

        self._owned = True
        logger.info(
            f"Lease acquired ({self.settings.ttl_s}s)",
            extra={"token": self.token, "key": self.key},
        )

    def refresh(self) -> None:
        """
        Verify ownership and extend the TTL.

        Raises:
            LeaseConflict: the lease is absent or holds a foreign token
        """
        if self.store.touch_if_equal(self.key, self.token, ttl_s=self.settings.ttl_s):
            return

        self._owned = False
        holder = self.holder()
        if holder is None:
            raise LeaseConflict("lease expired or deleted", None)
        raise LeaseConflict("connection hijacked", holder)

    def release(self) -> bool:
        """Delete the lease if it is still ours"""
        released = self.store.delete_if_equal(self.key, self.token)
        self._owned = False
        if released:
            logger.info("Lease released", extra={"token": self.token})
        return released
