"""Observation session: location, clock and astronomy in one broadcast state.

The session owns no global state. Build one with ``ObservationSession.from_settings``
(or inject collaborators for tests), ``start()`` it inside a running event
loop to get the periodic clock tick, astronomy refresh and eclipse rescan,
and ``close()`` it when done.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from pytz import utc

from emeraldobservatory.clock import Clock, as_utc
from emeraldobservatory.config import Settings
from emeraldobservatory.ephemeris import Ephemeris
from emeraldobservatory.events import EventBus, EventKind, SessionEvent
from emeraldobservatory.geodesy import (
    CoordinateRangeError,
    estimate_timezone,
    to_coordinate_frame,
)
from emeraldobservatory.geolocation import (
    GeolocationError,
    GeolocationErrorReason,
    GeolocationProvider,
)
from emeraldobservatory.i18n import t
from emeraldobservatory.models import (
    AstronomicalPosition,
    AstronomySnapshot,
    CoordinateConversion,
    Mode,
    Observer,
    SessionState,
)
from emeraldobservatory.skyfield_backend import SkyfieldBackend

logger = logging.getLogger(__name__)


class LocationNotSetError(Exception):
    """Astronomy requested before any location was set."""


class ObservationSession:
    """Location, clock and astronomical results under one subscription model.

    Every mutation replaces the immutable SessionState and is delivered to
    all subscribers synchronously, in registration order. After ``close()``
    nothing is broadcast any more.
    """

    def __init__(
        self,
        ephemeris: Ephemeris,
        clock: Clock,
        geolocation: GeolocationProvider | None = None,
        settings: Settings | None = None,
        auto_refresh: bool = True,
    ) -> None:
        self._ephemeris = ephemeris
        self._clock = clock
        self._geolocation = geolocation
        self._settings = settings or Settings()
        self._auto_refresh = auto_refresh
        self._bus: EventBus[SessionEvent] = EventBus()
        self._tasks: list[asyncio.Task] = []
        self._gps_task: asyncio.Task | None = None
        self._closed = False
        self._muted = False
        self._state = SessionState(
            observer=None,
            frame=None,
            timezone=None,
            clock=clock.state,
            astronomy=AstronomySnapshot(),
            mode=clock.mode,
            gps_enabled=False,
            last_update=datetime.now(utc),
        )
        self._unsubscribe_clock = clock.subscribe(self._on_clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        geolocation: GeolocationProvider | None = None,
    ) -> "ObservationSession":
        """Wire a skyfield-backed ephemeris and a wall-clock driven clock."""
        settings = settings or Settings()
        backend = SkyfieldBackend(settings)
        return cls(Ephemeris(backend), Clock(backend), geolocation, settings)

    # --- state and subscription ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def ephemeris(self) -> Ephemeris:
        return self._ephemeris

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def mode(self) -> Mode:
        return self._state.mode

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """Deliver the current state now, then every change until unsubscribed."""
        if self._closed:
            callback(SessionEvent(EventKind.SNAPSHOT, self._state))
            return lambda: None
        return self._bus.subscribe(
            callback, initial=SessionEvent(EventKind.SNAPSHOT, self._state)
        )

    def _commit(self, kind: EventKind, **changes) -> None:
        if self._closed:
            return
        self._state = replace(self._state, last_update=datetime.now(utc), **changes)
        self._bus.publish(SessionEvent(kind, self._state))

    def _on_clock(self, clock_state) -> None:
        if self._closed:
            return
        self._state = replace(self._state, clock=clock_state, mode=clock_state.mode)
        if not self._muted:
            self._commit(EventKind.CLOCK)

    def _quietly(self, action: Callable, *args) -> None:
        """Run a clock mutation without its own broadcast; the caller commits once after."""
        self._muted = True
        try:
            action(*args)
        finally:
            self._muted = False

    def _report(self, error: GeolocationError) -> None:
        self._commit(EventKind.ERROR, error=t(f"error_{error.reason.name.lower()}", self._settings.lang))

    # --- location ---

    def set_location(
        self,
        latitude: float,
        longitude: float,
        altitude: float = 0.0,
        accuracy: float | None = None,
        captured_at: datetime | None = None,
    ) -> Observer:
        """Replace the observer.

        Raises:
            CoordinateRangeError: latitude or longitude out of range. State is unchanged.
        """
        frame = to_coordinate_frame(latitude, longitude, altitude)
        timezone = estimate_timezone(latitude, longitude, at=self._clock.utc_time())
        observer = Observer(
            latitude=latitude,
            longitude=longitude,
            altitude=altitude,
            accuracy=accuracy,
            captured_at=captured_at or datetime.now(utc),
        )
        self._quietly(self._clock.set_location, latitude, longitude)
        self._quietly(self._clock.set_timezone, timezone.name)
        self._commit(
            EventKind.LOCATION, observer=observer, frame=frame, timezone=timezone, error=None
        )
        if self._auto_refresh:
            self.refresh_astronomy()
        return observer

    def apply_fix(self, fix: Observer) -> Observer:
        return self.set_location(
            fix.latitude, fix.longitude, fix.altitude, fix.accuracy, fix.captured_at
        )

    def _require_provider(self) -> GeolocationProvider:
        if self._geolocation is None:
            error = GeolocationError(
                GeolocationErrorReason.UNAVAILABLE, "Geolocation is not supported"
            )
            self._report(error)
            raise error
        return self._geolocation

    async def get_current_location(self) -> Observer:
        """One-shot fix from the provider, applied with ``set_location``.

        Raises:
            GeolocationError: The provider failed; ``state.error`` holds the message.
        """
        provider = self._require_provider()
        try:
            fix = await provider.get_current_position()
        except GeolocationError as e:
            self._report(e)
            raise
        if not self._closed:
            self.apply_fix(fix)
        return fix

    async def enable_gps(self) -> None:
        """Start tracking; returns once the first fix has been applied.

        Raises:
            GeolocationError: The first fix failed. Tracking is off again.
        """
        provider = self._require_provider()
        if self._gps_task is not None:
            return
        first_fix: asyncio.Future = asyncio.get_running_loop().create_future()
        self._gps_task = asyncio.create_task(self._watch(provider, first_fix))
        await first_fix

    async def _watch(self, provider: GeolocationProvider, first_fix: asyncio.Future) -> None:
        try:
            async for fix in provider.watch_position():
                if self._closed:
                    return
                try:
                    self.apply_fix(fix)
                except CoordinateRangeError as e:
                    logger.warning("Discarding invalid fix %s: %s", fix, e)
                    continue
                if not first_fix.done():
                    self._commit(EventKind.GPS, gps_enabled=True)
                    first_fix.set_result(None)
        except GeolocationError as e:
            self._end_watch()
            self._report(e)
            if not first_fix.done():
                first_fix.set_exception(e)
            return
        except asyncio.CancelledError:
            if not first_fix.done():
                first_fix.set_result(None)
            raise
        finally:
            self._end_watch()
        logger.info("Position watch ended")
        if not first_fix.done():
            first_fix.set_exception(
                GeolocationError(GeolocationErrorReason.UNAVAILABLE, "Position watch ended")
            )

    def _end_watch(self) -> None:
        # disable_gps() and a newer enable_gps() have already replaced the task
        if self._gps_task is not asyncio.current_task():
            return
        self._gps_task = None
        self._commit(EventKind.GPS, gps_enabled=False)

    def disable_gps(self) -> None:
        if self._gps_task is not None:
            self._gps_task.cancel()
            self._gps_task = None
        self._commit(EventKind.GPS, gps_enabled=False)

    # --- clock ---

    def tick(self) -> None:
        self._clock.tick()

    def set_time(self, when: datetime) -> None:
        """Pin the clock (time-travel mode) and recompute astronomy for that instant."""
        self._quietly(self._clock.set_time, when)
        self._commit(EventKind.MODE)
        if self._auto_refresh:
            self.refresh_astronomy()

    jump_to_time = set_time

    def reset_to_now(self) -> None:
        self._quietly(self._clock.reset_to_now)
        self._commit(EventKind.MODE)
        if self._auto_refresh:
            self.refresh_astronomy()

    def set_offset(self, minutes: float) -> None:
        self._clock.set_offset(minutes)

    def set_timezone(self, name: str) -> None:
        self._clock.set_timezone(name)

    # --- astronomy ---

    def refresh_astronomy(self) -> None:
        """Recompute planets, moon and sun/moon times for the clock's instant."""
        observer = self._state.observer
        if self._closed or observer is None:
            return
        when = self._clock.utc_time()
        try:
            planets = tuple(self._ephemeris.planetary_positions(when, observer))
            moon_phase = self._ephemeris.moon_phase(when)
            moon_position = self._ephemeris.body_position("Moon", when, observer)
            times = self._ephemeris.sun_moon_times(self._clock.current_time(), observer)
        except Exception as e:
            logger.exception("Astronomy refresh failed")
            self._commit(
                EventKind.ERROR, error=t("error_astronomy", self._settings.lang, error=e)
            )
            return
        astronomy = replace(
            self._state.astronomy,
            planets=planets,
            moon_phase=moon_phase,
            moon_position=moon_position,
            sun_moon_times=times,
            updated_at=when,
        )
        self._commit(EventKind.ASTRONOMY, astronomy=astronomy)

    def refresh_eclipses(self) -> None:
        """Rescan the configured window for eclipses."""
        observer = self._state.observer
        if self._closed or observer is None:
            return
        when = self._clock.utc_time()
        events = self._ephemeris.upcoming_eclipses(
            when, observer, self._settings.eclipse_search_days
        )
        astronomy = replace(
            self._state.astronomy, eclipses=tuple(events), eclipses_updated_at=when
        )
        self._commit(EventKind.ECLIPSES, astronomy=astronomy)

    def get_astronomical_position(self, when: datetime | None = None) -> AstronomicalPosition:
        """Sun, Moon and twilight for the current observer.

        Raises:
            LocationNotSetError: No observer yet.
        """
        observer = self._state.observer
        if observer is None:
            raise LocationNotSetError(t("error_location_not_set", self._settings.lang))
        when = as_utc(when) if when is not None else self._clock.utc_time()
        return self._ephemeris.astronomical_position(when, observer)

    def convert_coordinates(self, ra: float, dec: float) -> CoordinateConversion | None:
        observer = self._state.observer
        if observer is None:
            return None
        return self._ephemeris.coordinate_conversion(ra, dec, self._clock.utc_time(), observer)

    # --- lifecycle ---

    def start(self) -> None:
        """Start the periodic loops. Must be called with a running event loop."""
        if self._closed:
            raise RuntimeError("Session is closed")
        if self._tasks:
            return
        s = self._settings
        self._tasks = [
            asyncio.create_task(self._every("clock", s.clock_interval, self.tick)),
            asyncio.create_task(
                self._every("astronomy", s.astronomy_interval, self.refresh_astronomy, immediate=True)
            ),
            asyncio.create_task(
                self._every("eclipses", s.eclipse_interval, self.refresh_eclipses, immediate=True)
            ),
        ]

    async def _every(
        self, name: str, interval: float, action: Callable[[], None], immediate: bool = False
    ) -> None:
        if immediate:
            self._run_periodic(name, action)
        while True:
            await asyncio.sleep(interval)
            self._run_periodic(name, action)

    def _run_periodic(self, name: str, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception as e:
            logger.exception("Periodic %s update failed", name)
            self._commit(EventKind.ERROR, error=t("error_astronomy", self._settings.lang, error=e))

    def close(self) -> None:
        """Cancel every loop and the GPS watch, drop subscribers. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        if self._gps_task is not None:
            self._gps_task.cancel()
        self._unsubscribe_clock()
        self._bus.clear()
        logger.debug("Session closed")

    async def aclose(self) -> None:
        pending = [t for t in [*self._tasks, self._gps_task] if t is not None]
        self.close()
        await asyncio.gather(*pending, return_exceptions=True)

    async def __aenter__(self) -> "ObservationSession":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
