"""
Sun Gate

Decides whether solar collection is viable: the sun must stand inside the
configured azimuth window and above the configured zenith limit (a
separate limit may be set for the morning).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from astral import Observer
from astral.sun import azimuth, zenith

from solarboiler.common.config import LocationSettings, SunSettings


@dataclass(frozen=True)
class SunPosition:
    """Sun position in degrees"""
    azimuth: float
    zenith: float


def is_shining(position: SunPosition, settings: SunSettings) -> bool:
    """
    Strict window check, boundary values are not shining.

    Before solar noon (azimuth below 180) the optional morning zenith
    limit applies instead of max_zenith.
    """
    return (
        settings.min_azimuth < position.azimuth < settings.max_azimuth
        and position.zenith < settings.zenith_limit(position.azimuth)
    )


class SunGate:
    """Sun visibility gate for a fixed site"""

    def __init__(
        self,
        location: LocationSettings,
        settings: SunSettings,
        position_fn: Callable[[datetime], SunPosition] | None = None,
    ):
        self.location = location
        self.settings = settings
        self._observer = Observer(
            latitude=location.latitude,
            longitude=location.longitude,
            elevation=location.elevation,
        )
        self._position_fn = position_fn or self._astral_position

    def _astral_position(self, when: datetime) -> SunPosition:
        return SunPosition(
            azimuth=azimuth(self._observer, when),
            zenith=zenith(self._observer, when),
        )

    def position(self, when: datetime | None = None) -> SunPosition:
        """Sun azimuth and zenith angle at the given instant (default now)"""
        return self._position_fn(when or datetime.now(timezone.utc))

    def shining(self, when: datetime | None = None) -> bool:
        return is_shining(self.position(when), self.settings)
