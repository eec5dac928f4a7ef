"""
Alert Notifier - sustained failure emails

Counts consecutive failures per FailureKind in the shared store so that
counts survive between short-lived invocations. When a count reaches the
threshold and the cooldown for that kind has passed, an email is sent
through an HTTP email API (Resend compatible). Any success resets the
count. Notification problems are logged, never raised.
"""

import time

import httpx

from solarboiler.common.config import AlertSettings
from solarboiler.common.exceptions import FailureKind
from solarboiler.common.logging_setup import get_service_logger
from solarboiler.common.state import SharedState

logger = get_service_logger("reporting.alerts")


def _count_key(kind: FailureKind) -> str:
    return f"alert.{kind.value}.failures"


def _sent_key(kind: FailureKind) -> str:
    return f"alert.{kind.value}.sentAt"


class AlertNotifier:
    """Escalates sustained failures by email"""

    def __init__(
        self,
        store: SharedState,
        settings: AlertSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        clock=time.time,
    ):
        self.store = store
        self.settings = settings
        self._transport = transport
        self._clock = clock

    async def record_failure(self, kind: FailureKind, detail: str) -> bool:
        """
        Count a failure and notify when it is sustained.

        Returns:
            True if a notification was sent
        """
        count = self.store.incr(_count_key(kind))
        if count < self.settings.failure_threshold:
            return False

        last_sent = self.store.get(_sent_key(kind))
        if last_sent is not None and self._clock() - float(last_sent) < self.settings.cooldown_s:
            logger.debug(f"Alert {kind.value} in cooldown ({count} failures)")
            return False

        sent = await self.send(
            subject=f"Solar boiler alert: {kind.value}",
            body=f"{count} consecutive failures of kind {kind.value}.\n\nLast: {detail}",
        )
        if sent:
            self.store.set(_sent_key(kind), self._clock())
        return sent

    def record_success(self, kind: FailureKind) -> None:
        """Reset the failure count for a kind"""
        self.store.delete(_count_key(kind))

    async def send(self, subject: str, body: str) -> bool:
        """Send an email via the configured API"""
        if not self.settings.enabled:
            logger.warning(f"Alerting disabled, not sending: {subject}")
            return False
        if not self.settings.api_key or not self.settings.to:
            logger.warning(f"Alerting not configured (api key / recipients), not sending: {subject}")
            return False

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self.settings.api_url,
                    headers={
                        "Authorization": f"Bearer {self.settings.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": self.settings.from_email,
                        "to": list(self.settings.to),
                        "subject": subject,
                        "text": body,
                    },
                    timeout=10.0,
                )
                response.raise_for_status()
            logger.info(f"Alert sent: {subject}")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Alert HTTP error {e.response.status_code}: {e.response.text}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Alert connection error: {e}")
            return False
