"""
Control Algorithm - Solar Transition Table

Pure decision logic: given the persisted control record, the flow
temperatures and the sun gate, returns the record to persist next.

Precedence, highest first:
1. Sun not shining        -> sunset (clears timer and reference)
2. Outflow over the limit -> overheat (timer refreshed on every pass)
3. Overheat cool-down     -> boiler500 after the hold time
4. No record yet          -> startup
5. Grace period           -> unchanged
6. Transition table       -> see decide()
"""

from dataclasses import dataclass
from datetime import datetime

from solarboiler.common.config import ControlSettings
from solarboiler.common.exceptions import OverTemperature, UnknownState
from solarboiler.common.logging_setup import get_service_logger, log_failure
from .state import ControlRecord, ControlState

logger = get_service_logger("control.algorithm")

OTHER_BOILER = {
    ControlState.BOILER_500: ControlState.BOILER_200,
    ControlState.BOILER_200: ControlState.BOILER_500,
}


@dataclass(frozen=True)
class ControlInputs:
    """Inputs for one decision"""
    flow_in: float
    flow_out: float
    shining: bool
    now: datetime


@dataclass(frozen=True)
class Decision:
    """
    Outcome of one decision.

    record is None when nothing needs to be written.
    """
    record: ControlRecord | None
    reason: str
    unknown_state: str | None = None

    @property
    def changed(self) -> bool:
        return self.record is not None


def _enter(
    state: ControlState,
    current: ControlRecord,
    inputs: ControlInputs,
    reason: str,
) -> Decision:
    return Decision(
        record=ControlRecord.entering(state, inputs.now, inputs.flow_out, current),
        reason=reason,
    )


def _stay(reason: str) -> Decision:
    return Decision(record=None, reason=reason)


def decide(
    current: ControlRecord,
    inputs: ControlInputs,
    settings: ControlSettings | None = None,
) -> Decision:
    """
    Decide the next control record.

    Args:
        current: Persisted control record
        inputs: Fresh flow temperatures, sun gate and the current instant
        settings: Thresholds, defaults to ControlSettings()

    Returns:
        Decision holding the record to persist, or None to keep the current one
    """
    settings = settings or ControlSettings()
    flow_out = inputs.flow_out

    if not inputs.shining:
        if current.state == ControlState.SUNSET and current.last_change_at is None:
            return _stay("sun not shining")
        return _enter(ControlState.SUNSET, current, inputs, "sun not shining")

    if flow_out > settings.overheat_c:
        error = OverTemperature(flow_out, settings.overheat_c)
        logger.warning(error.message, extra={"failure_kind": error.kind.value})
        return _enter(ControlState.OVERHEAT, current, inputs, error.message)

    elapsed = current.elapsed_s(inputs.now)
    state = current.state

    if state == ControlState.OVERHEAT:
        if elapsed is None or elapsed > settings.overheat_hold_s:
            return _enter(ControlState.BOILER_500, current, inputs, "overheat cooled down")
        return _stay("overheat hold")

    if elapsed is None:
        return _enter(ControlState.STARTUP, current, inputs, "no previous state change")

    if elapsed < settings.grace_s:
        return _stay("grace period")

    if current.state_name is None or state == ControlState.STARTUP:
        return _enter(ControlState.BOILER_500, current, inputs, "startup complete")

    if state == ControlState.RECYCLE:
        reference = current.state_start_flow_out
        if reference is not None and flow_out > reference + settings.recycle_rise_c:
            return _enter(
                ControlState.BOILER_500,
                current,
                inputs,
                f"recycle temperature rose {flow_out - reference:.1f}C",
            )
        if (
            elapsed > settings.recycle_timeout_after_s
            and flow_out < settings.recycle_min_flow_out_c
        ):
            return _enter(
                ControlState.RECYCLE_TIMEOUT,
                current,
                inputs,
                f"recycle without gain, outflow {flow_out:.1f}C",
            )
        return _stay("recycle")

    if state == ControlState.RECYCLE_TIMEOUT:
        if elapsed > settings.recycle_timeout_hold_s:
            return _enter(ControlState.RECYCLE, current, inputs, "recycle timeout passed")
        return _stay("recycle timeout")

    if state in OTHER_BOILER:
        extracting = inputs.flow_in > flow_out + settings.extraction_margin_c
        if extracting:
            reference = current.state_start_flow_out
            if reference is not None and flow_out > reference + settings.boiler_swap_rise_c:
                return _enter(
                    OTHER_BOILER[state],
                    current,
                    inputs,
                    f"{state.value} heated {flow_out - reference:.1f}C",
                )
            return _stay(f"heating {state.value}")

        if state == ControlState.BOILER_500:
            return _enter(ControlState.BOILER_200, current, inputs, "boiler500 not gaining heat")
        return _enter(ControlState.RECYCLE, current, inputs, "boiler200 not gaining heat")

    error = UnknownState(current.state_name)
    log_failure(logger, error.kind.value, error.message)
    return Decision(
        record=ControlRecord.entering(ControlState.RECYCLE, inputs.now, flow_out, current),
        reason="unknown state, fail-safe recycle",
        unknown_state=current.state_name,
    )
