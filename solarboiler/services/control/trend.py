"""
Trend Estimator

Rolling least-squares slope of the outflow temperature over a recent
window, in degrees per hour, with the standard error of the slope.
Observability only: the transition table does not consume it.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from solarboiler.common.logging_setup import get_service_logger
from .state import FlowSample

logger = get_service_logger("control.trend")

SECONDS_PER_HOUR = 3600.0


@dataclass(frozen=True)
class TrendEstimate:
    """Outflow temperature trend"""
    slope_per_hour: float
    std_error: float
    samples: int

    def to_dict(self) -> dict:
        return {
            "slope_per_hour": self.slope_per_hour,
            "std_error": self.std_error,
            "samples": self.samples,
        }


def parse_history(entries: Iterable[str]) -> list[FlowSample]:
    """Decode stored history entries, skipping malformed ones"""
    samples = []
    for entry in entries:
        sample = FlowSample.decode(entry)
        if sample is None:
            logger.debug(f"Skipping malformed history entry {entry!r}")
            continue
        samples.append(sample)
    return samples


class TrendEstimator:
    """Ordinary least squares over the samples inside the window"""

    def __init__(
        self,
        window: timedelta = timedelta(minutes=10),
        min_samples: int = 5,
    ):
        self.window = window
        self.min_samples = min_samples

    def estimate(
        self,
        samples: Iterable[FlowSample],
        now: datetime,
    ) -> TrendEstimate | None:
        """
        Estimate the trend.

        Returns:
            TrendEstimate, or None when fewer than min_samples fall inside
            the window or the timestamps carry no spread
        """
        cutoff = now - self.window
        in_window = [s for s in samples if cutoff <= s.timestamp <= now]

        if len(in_window) < self.min_samples:
            logger.info(
                f"Not enough samples for a trend: {len(in_window)} < {self.min_samples}",
                extra={"samples": len(in_window), "min_samples": self.min_samples},
            )
            return None

        # Hours relative to the window start keep the sums well conditioned
        xs = [(s.timestamp - cutoff).total_seconds() / SECONDS_PER_HOUR for s in in_window]
        ys = [s.value for s in in_window]
        n = len(xs)

        x_mean = sum(xs) / n
        y_mean = sum(ys) / n
        sxx = sum((x - x_mean) ** 2 for x in xs)
        if sxx == 0:
            logger.info("Trend samples share one timestamp, no slope")
            return None

        sxy = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys))
        slope = sxy / sxx
        intercept = y_mean - slope * x_mean

        sse = sum((y - (intercept + slope * x)) ** 2 for x, y in zip(xs, ys))
        std_error = math.sqrt(sse / (n - 2) / sxx)

        return TrendEstimate(
            slope_per_hour=slope,
            std_error=std_error,
            samples=n,
        )
