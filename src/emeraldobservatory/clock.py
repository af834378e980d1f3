"""Live and time-travel clock with UTC, solar and sidereal readings."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Protocol

import pytz
from pytz import utc

from emeraldobservatory.events import EventBus
from emeraldobservatory.models import ClockState, Mode

logger = logging.getLogger(__name__)


class TimeScaleSource(Protocol):
    """The part of the ephemeris collaborator the clock needs."""

    def sidereal_time_hours(self, when: datetime) -> float: ...

    def equation_of_time_minutes(self, when: datetime) -> float: ...


def _now() -> datetime:
    return datetime.now(utc)


def as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return utc.localize(when)
    return when.astimezone(utc)


class Clock:
    """Live or time-travel clock.

    Live mode: each ``tick()`` moves the instant to wall clock + manual
    offset, never backwards. Time-travel mode: the instant stays where
    ``set_time``/``jump_to_time`` pinned it until ``reset_to_now``.
    Every mutation is broadcast to subscribers with a fresh ClockState.
    """

    def __init__(
        self,
        timescale: TimeScaleSource,
        wall_clock: Callable[[], datetime] = _now,
        timezone: str = "UTC",
    ) -> None:
        self._timescale = timescale
        self._wall_clock = wall_clock
        self._bus: EventBus[ClockState] = EventBus()
        self._state = ClockState(
            instant=as_utc(wall_clock()),
            manual_offset_minutes=0.0,
            timezone=timezone,
            latitude=0.0,
            longitude=0.0,
        )

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def mode(self) -> Mode:
        return self._state.mode

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        self._bus.publish(self._state)

    def _live_instant(self, offset_minutes: float) -> datetime:
        return as_utc(self._wall_clock()) + timedelta(minutes=offset_minutes)

    def subscribe(self, callback: Callable[[ClockState], None]) -> Callable[[], None]:
        """Register callback; it is called now with the current state and on every change."""
        return self._bus.subscribe(callback, initial=self._state)

    # --- mutations ---

    def tick(self) -> None:
        if self._state.mode is Mode.LIVE:
            instant = self._live_instant(self._state.manual_offset_minutes)
            if instant < self._state.instant:
                logger.debug("Wall clock moved backwards; holding %s", self._state.instant)
                instant = self._state.instant
            self._update(instant=instant)
        else:
            self._update()

    def set_time(self, when: datetime) -> None:
        """Pin the instant and enter time-travel mode. Naive datetimes are UTC."""
        self._update(instant=as_utc(when), mode=Mode.TIME_TRAVEL)

    jump_to_time = set_time

    def reset_to_now(self) -> None:
        self._update(
            instant=self._live_instant(self._state.manual_offset_minutes), mode=Mode.LIVE
        )

    def set_offset(self, minutes: float) -> None:
        if self._state.mode is Mode.LIVE:
            self._update(manual_offset_minutes=minutes, instant=self._live_instant(minutes))
        else:
            self._update(manual_offset_minutes=minutes)

    def set_location(self, latitude: float, longitude: float) -> None:
        """Store raw coordinates. Range validation belongs to geodesy."""
        self._update(latitude=latitude, longitude=longitude)

    def set_timezone(self, name: str) -> None:
        """Change the display label only; the instant is untouched."""
        self._update(timezone=name)

    def close(self) -> None:
        self._bus.clear()

    # --- readings ---

    def _zone(self):
        try:
            return pytz.timezone(self._state.timezone)
        except pytz.UnknownTimeZoneError:
            return utc

    def current_time(self) -> datetime:
        """The instant in the labelled timezone, or UTC when the label is not a known zone."""
        return self._state.instant.astimezone(self._zone())

    def utc_time(self) -> datetime:
        return self._state.instant

    def solar_time(self) -> datetime:
        """Apparent solar time: UTC + longitude / 15 hours + the equation of time."""
        instant = self._state.instant
        eot = self._timescale.equation_of_time_minutes(instant)
        return instant + timedelta(hours=self._state.longitude / 15, minutes=eot)

    def sidereal_hours(self) -> float:
        """Local sidereal time in [0, 24) hours."""
        gst = self._timescale.sidereal_time_hours(self._state.instant)
        return (gst + self._state.longitude / 15) % 24.0

    def sidereal_time(self) -> datetime:
        """Local sidereal time as a time of day on the current local calendar day."""
        zone = self._zone()
        local = self._state.instant.astimezone(zone)
        midnight = zone.localize(
            local.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
        )
        return midnight + timedelta(hours=self.sidereal_hours())
