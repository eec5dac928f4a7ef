"""
Control Engine - one read-decide-write pass

Responsible for:
- Reading the flow temperatures written by the telemetry link
- Refreshing the outflow trend estimate
- Running the sun gate and the transition table
- Persisting the next control record

The engine is not resident: each scheduled invocation performs a single
tick against the shared store and exits.
"""

from datetime import datetime, timedelta, timezone

from solarboiler.common.config import AppConfig
from solarboiler.common.exceptions import FailureKind, ReadingUnavailable
from solarboiler.common.logging_setup import get_service_logger, log_failure, log_transition
from solarboiler.common.state import (
    FLOW_HISTORY_KEY,
    TREND_SAMPLES_KEY,
    TREND_SLOPE_KEY,
    TREND_STD_ERROR_KEY,
    SharedState,
    get_reading,
)

from ..reporting.alerts import AlertNotifier
from .algorithm import ControlInputs, Decision, decide
from .state import ControlRecord, ControlState, load_control_record, save_control_record
from .sun import SunGate
from .trend import TrendEstimate, TrendEstimator, parse_history

logger = get_service_logger("control")


class ControlEngine:
    """
    Control Engine

    Executes one control tick:
    1. Read TflowIn / TflowOut (missing -> error state, ReadingUnavailable)
    2. Refresh the trend estimate (failures are logged only)
    3. Decide with sun gate and transition table
    4. Persist the decision
    """

    def __init__(
        self,
        store: SharedState,
        config: AppConfig,
        sun_gate: SunGate | None = None,
        estimator: TrendEstimator | None = None,
    ):
        self.store = store
        self.config = config
        self.sun_gate = sun_gate or SunGate(config.location, config.sun)
        self.estimator = estimator or TrendEstimator(
            window=timedelta(seconds=config.trend.window_s),
            min_samples=config.trend.min_samples,
        )

    def tick(self, now: datetime | None = None) -> ControlRecord:
        """
        Execute one control pass.

        Args:
            now: Decision instant, defaults to the current UTC time

        Returns:
            The control record in force after the tick

        Raises:
            ReadingUnavailable: a control temperature is unknown; the error
                state has been persisted before raising
        """
        now = now or datetime.now(timezone.utc)
        current = load_control_record(self.store)

        flow_in = get_reading(self.store, self.config.sensors.flow_in)
        flow_out = get_reading(self.store, self.config.sensors.flow_out)

        missing = [
            name for name, value in (
                (self.config.sensors.flow_in, flow_in),
                (self.config.sensors.flow_out, flow_out),
            )
            if value is None
        ]
        if missing:
            self._fail(current, now, missing)

        self._refresh_trend(now)

        decision = decide(
            current,
            ControlInputs(
                flow_in=flow_in,
                flow_out=flow_out,
                shining=self.sun_gate.shining(now),
                now=now,
            ),
            self.config.control,
        )
        return self._apply(current, decision, flow_out)

    def _fail(self, current: ControlRecord, now: datetime, missing: list[str]) -> None:
        """Shut everything down and fail loudly"""
        record = ControlRecord.entering(ControlState.ERROR, now, None, current)
        save_control_record(self.store, record)
        if current.state_name != record.state_name:
            log_transition(logger, current.state_name, record.state_name, "readings unavailable")

        error = ReadingUnavailable(missing)
        log_failure(logger, error.kind.value, error.message)
        raise error

    def _apply(
        self,
        current: ControlRecord,
        decision: Decision,
        flow_out: float,
    ) -> ControlRecord:
        if not decision.changed:
            logger.debug(
                f"State {current.state_name} unchanged: {decision.reason}",
                extra={"state": current.state_name, "reason": decision.reason},
            )
            return current

        record = decision.record
        save_control_record(self.store, record)

        if record.state_name != current.state_name:
            log_transition(logger, current.state_name, record.state_name, decision.reason, flow_out)
        else:
            logger.debug(
                f"State {record.state_name} refreshed: {decision.reason}",
                extra={"state": record.state_name, "reason": decision.reason},
            )
        return record

    def _refresh_trend(self, now: datetime) -> TrendEstimate | None:
        """Compute and publish the trend, never failing the tick"""
        try:
            samples = parse_history(self.store.list_range(FLOW_HISTORY_KEY))
            estimate = self.estimator.estimate(samples, now)
            if estimate is None:
                return None

            ttl = self.config.trend.publish_ttl_s
            self.store.set(TREND_SLOPE_KEY, estimate.slope_per_hour, ttl_s=ttl)
            self.store.set(TREND_STD_ERROR_KEY, estimate.std_error, ttl_s=ttl)
            self.store.set(TREND_SAMPLES_KEY, estimate.samples, ttl_s=ttl)
            logger.debug(
                f"Trend {estimate.slope_per_hour:.2f}C/h +- {estimate.std_error:.2f}",
                extra=estimate.to_dict(),
            )
            return estimate
        except Exception as e:
            logger.warning(f"Trend estimate failed: {e}")
            return None


class ControlService:
    """Runs a control tick and escalates sustained failures"""

    def __init__(
        self,
        engine: ControlEngine,
        notifier: AlertNotifier | None = None,
    ):
        self.engine = engine
        self.notifier = notifier

    async def run_once(self, now: datetime | None = None) -> ControlRecord:
        try:
            record = self.engine.tick(now)
        except ReadingUnavailable as e:
            if self.notifier:
                await self.notifier.record_failure(FailureKind.READING_UNAVAILABLE, e.message)
            raise

        if self.notifier:
            self.notifier.record_success(FailureKind.READING_UNAVAILABLE)
        return record
