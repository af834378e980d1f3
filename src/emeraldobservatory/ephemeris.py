"""Ephemeris — planetary positions, moon phase, rise/set and twilight, coordinate conversion and eclipse search.

Raw vectors and searches come from an ephemeris-vector source
(``SkyfieldBackend`` in production). This layer turns them into the
published records and absorbs search failures: a missing rise, twilight
or eclipse is ``None`` or an empty list, never an exception.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Protocol

from emeraldobservatory.clock import as_utc
from emeraldobservatory.eclipses import GlobalSolarEclipse, LocalSolarEclipse, LunarEclipse
from emeraldobservatory.models import (
    AstronomicalPosition,
    CelestialBodyPosition,
    CoordinateConversion,
    EclipseEvent,
    MoonPhase,
    MoonPosition,
    Observer,
    SunMoonTimes,
    SunPosition,
    TwilightWindow,
)
from emeraldobservatory.skyfield_backend import Equatorial

logger = logging.getLogger(__name__)

AU_KM = 149597870.7

PLANETS = ("Mercury", "Venus", "Mars", "Jupiter", "Saturn", "Uranus", "Neptune")

# Magnitude at 1 AU for the distance-only approximation. Phase angle and
# albedo are ignored, so results are indicative only.
BASE_MAGNITUDES: dict[str, float] = {
    "Mercury": -0.4,
    "Venus": -4.4,
    "Mars": -2.9,
    "Jupiter": -2.9,
    "Saturn": -0.5,
    "Uranus": 5.7,
    "Neptune": 8.0,
    "Sun": -26.74,
    "Moon": 0.25,
}

MOON_PHASE_NAMES = (
    "New Moon",
    "Waxing Crescent",
    "First Quarter",
    "Waxing Gibbous",
    "Full Moon",
    "Waning Gibbous",
    "Last Quarter",
    "Waning Crescent",
)

PHASE_SEARCH_DAYS = 40.0
PHASE_FALLBACK = timedelta(days=15)
ECLIPSE_SEARCH_LIMIT_DAYS = 400.0

CIVIL, NAUTICAL, ASTRONOMICAL = -6.0, -12.0, -18.0


class EphemerisSource(Protocol):
    """Vectors and search primitives consumed by Ephemeris."""

    def equator(self, name: str, when: datetime, observer: Observer) -> Equatorial: ...

    def horizon(
        self, when: datetime, observer: Observer, ra_hours: float, dec_degrees: float
    ) -> tuple[float, float]: ...

    def geo_distance_au(self, name: str, when: datetime) -> float: ...

    def moon_phase(self, when: datetime) -> float: ...

    def search_moon_phase(
        self, target_phase: float, start: datetime, limit_days: float
    ) -> datetime | None: ...

    def search_rise_set(
        self, name: str, observer: Observer, direction: int, start: datetime, limit_days: float
    ) -> datetime | None: ...

    def search_altitude(
        self,
        name: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
        altitude: float,
    ) -> datetime | None: ...

    def search_hour_angle(
        self, name: str, observer: Observer, start: datetime, limit_days: float
    ) -> datetime | None: ...

    def search_global_solar_eclipse(
        self, after: datetime, limit_days: float
    ) -> GlobalSolarEclipse | None: ...

    def search_local_solar_eclipse(
        self, peak: datetime, observer: Observer
    ) -> LocalSolarEclipse | None: ...

    def search_lunar_eclipse(self, after: datetime, limit_days: float) -> LunarEclipse | None: ...


def approximate_magnitude(name: str, distance_au: float) -> float:
    """Base magnitude + 5·log10(distance). Not photometrically exact."""
    return BASE_MAGNITUDES.get(name, 0.0) + 5 * math.log10(distance_au)


def illumination_percent(phase: float) -> float:
    return (1 - math.cos(2 * math.pi * phase)) * 50


def phase_name(phase: float) -> str:
    # Round half up, so phase 1/16 already counts as a crescent
    return MOON_PHASE_NAMES[int(math.floor(phase * 8 + 0.5)) % 8]


def approximate_galactic(ra_hours: float, dec_degrees: float) -> tuple[float, float]:
    """Rough (longitude, latitude) in degrees.

    A fixed longitude shift and a sine of declination, not the rotation
    through the galactic pole; good only for coarse display.
    """
    longitude = (ra_hours * 15 + 123) % 360
    latitude = math.sin(math.radians(dec_degrees)) * 57.2958
    return longitude, latitude


def start_of_day(when: datetime) -> datetime:
    """Local midnight of ``when`` in its own timezone (UTC for naive values)."""
    if when.tzinfo is None:
        when = as_utc(when)
    zone = when.tzinfo
    naive = when.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if hasattr(zone, "localize"):
        return zone.localize(naive)
    return naive.replace(tzinfo=zone)


def _minutes_between(begin: datetime | None, end: datetime | None) -> float | None:
    if begin is None or end is None:
        return None
    return (end - begin).total_seconds() / 60


class Ephemeris:
    """Astronomical results for an instant and an observer. Stateless apart from its source."""

    def __init__(self, source: EphemerisSource) -> None:
        self._source = source

    @property
    def source(self) -> EphemerisSource:
        return self._source

    # --- positions ---

    def body_position(
        self, name: str, when: datetime, observer: Observer
    ) -> CelestialBodyPosition:
        """Topocentric position of one body. Errors propagate to the caller."""
        equatorial = self._source.equator(name, when, observer)
        altitude, azimuth = self._source.horizon(
            when, observer, equatorial.right_ascension, equatorial.declination
        )
        distance = self._source.geo_distance_au(name, when)
        return CelestialBodyPosition(
            name=name,
            right_ascension=equatorial.right_ascension,
            declination=equatorial.declination,
            altitude=altitude,
            azimuth=azimuth,
            distance_au=distance,
            magnitude=approximate_magnitude(name, distance),
            constellation=equatorial.constellation,
        )

    def planetary_positions(
        self, when: datetime, observer: Observer
    ) -> list[CelestialBodyPosition]:
        """Positions of the seven classical planets.

        A body whose computation fails is logged and left out; the call as a
        whole does not fail.
        """
        results: list[CelestialBodyPosition] = []
        for name in PLANETS:
            try:
                results.append(self.body_position(name, when, observer))
            except Exception as e:
                logger.warning("Error calculating position for %s: %s", name, e)
        return results

    # --- moon ---

    def moon_phase(self, when: datetime) -> MoonPhase:
        """Phase, illumination, age and the next new and full moon.

        Syzygies are searched within 40 days. When a search fails the
        instant is estimated as 15 days away, which is only a rough guess.
        """
        when = as_utc(when)
        phase = self._source.moon_phase(when)
        last_new_moon = self._find_previous_phase(when, 0.0)
        return MoonPhase(
            phase=phase,
            phase_name=phase_name(phase),
            illumination=illumination_percent(phase),
            next_new_moon=self._find_next_phase(when, 0.0),
            next_full_moon=self._find_next_phase(when, 0.5),
            age=(when - last_new_moon).total_seconds() / 86400,
        )

    def _find_next_phase(self, when: datetime, target: float) -> datetime:
        try:
            found = self._source.search_moon_phase(target, when, PHASE_SEARCH_DAYS)
        except Exception as e:
            logger.warning("Moon phase %.2f search failed: %s", target, e)
            found = None
        return found if found is not None else when + PHASE_FALLBACK

    def _find_previous_phase(self, when: datetime, target: float) -> datetime:
        latest = None
        cursor = when - timedelta(days=30)
        try:
            while True:
                found = self._source.search_moon_phase(target, cursor, PHASE_SEARCH_DAYS)
                if found is None or found > when:
                    break
                latest = found
                cursor = found + timedelta(days=1)
        except Exception as e:
            logger.warning("Previous moon phase %.2f search failed: %s", target, e)
        return latest if latest is not None else when - PHASE_FALLBACK

    # --- rise, set, twilight ---

    def _attempt(self, label: str, search: Callable[..., datetime | None], *args) -> datetime | None:
        try:
            return search(*args)
        except Exception as e:
            logger.debug("%s search failed: %s", label, e)
            return None

    def sun_moon_times(self, date: datetime, observer: Observer | None) -> SunMoonTimes:
        """Rise, set, culmination and twilight for the civil day containing ``date``.

        The day starts at local midnight in ``date``'s own timezone. Events
        that do not happen that day (polar day or night) are None.
        """
        if observer is None:
            return SunMoonTimes()

        start = start_of_day(date)
        s = self._source

        def twilight(altitude: float) -> TwilightWindow:
            return TwilightWindow(
                dawn=self._attempt("dawn", s.search_altitude, "Sun", observer, +1, start, 1, altitude),
                dusk=self._attempt("dusk", s.search_altitude, "Sun", observer, -1, start, 1, altitude),
            )

        return SunMoonTimes(
            sunrise=self._attempt("sunrise", s.search_rise_set, "Sun", observer, +1, start, 1),
            sunset=self._attempt("sunset", s.search_rise_set, "Sun", observer, -1, start, 1),
            solar_noon=self._attempt("solar noon", s.search_hour_angle, "Sun", observer, start, 1),
            moonrise=self._attempt("moonrise", s.search_rise_set, "Moon", observer, +1, start, 1),
            moonset=self._attempt("moonset", s.search_rise_set, "Moon", observer, -1, start, 1),
            civil_twilight=twilight(CIVIL),
            nautical_twilight=twilight(NAUTICAL),
            astronomical_twilight=twilight(ASTRONOMICAL),
        )

    # --- conversions ---

    def coordinate_conversion(
        self, ra: float, dec: float, when: datetime, observer: Observer
    ) -> CoordinateConversion:
        """Equatorial (hours, degrees) to horizontal and approximate galactic coordinates."""
        altitude, azimuth = self._source.horizon(when, observer, ra, dec)
        galactic_longitude, galactic_latitude = approximate_galactic(ra, dec)
        return CoordinateConversion(
            right_ascension=ra,
            declination=dec,
            altitude=altitude,
            azimuth=azimuth,
            galactic_longitude=galactic_longitude,
            galactic_latitude=galactic_latitude,
        )

    def astronomical_position(
        self, when: datetime, observer: Observer
    ) -> AstronomicalPosition:
        sun = self.body_position("Sun", when, observer)
        moon = self.body_position("Moon", when, observer)
        times = self.sun_moon_times(when, observer)

        def window(w: TwilightWindow) -> TwilightWindow | None:
            return None if w.dawn is None and w.dusk is None else w

        return AstronomicalPosition(
            sun=SunPosition(altitude=sun.altitude, azimuth=sun.azimuth, distance_au=sun.distance_au),
            moon=MoonPosition(
                altitude=moon.altitude,
                azimuth=moon.azimuth,
                distance_km=moon.distance_au * AU_KM,
                phase=self._source.moon_phase(when),
            ),
            civil_twilight=window(times.civil_twilight),
            nautical_twilight=window(times.nautical_twilight),
            astronomical_twilight=window(times.astronomical_twilight),
            sunrise=times.sunrise,
            sunset=times.sunset,
        )

    # --- eclipses ---

    def upcoming_eclipses(
        self, start: datetime, observer: Observer | None, days_to_search: float = 365
    ) -> list[EclipseEvent]:
        """Solar and lunar eclipses peaking within ``days_to_search`` of ``start``.

        Each type is searched forward independently, one day past every peak.
        A failing search step ends that type's search; events found so far
        are kept.

        Returns:
            Events sorted by peak instant, earliest first.
        """
        start = as_utc(start)
        end = start + timedelta(days=days_to_search)
        events = self._scan("solar", lambda c, limit: self._next_solar(c, limit, observer), start, end)
        events += self._scan("lunar", lambda c, limit: self._next_lunar(c, limit, observer), start, end)
        return sorted(events, key=lambda e: e.peak)

    def _scan(self, label, search, start: datetime, end: datetime) -> list[EclipseEvent]:
        found: list[EclipseEvent] = []
        cursor = start
        while cursor < end:
            limit = min(ECLIPSE_SEARCH_LIMIT_DAYS, (end - cursor).total_seconds() / 86400)
            try:
                event = search(cursor, limit)
            except Exception as e:
                logger.warning("%s eclipse search stopped at %s: %s", label.capitalize(), cursor, e)
                break
            if event is None:
                # Nothing within this step; the window may still hold more
                cursor += timedelta(days=limit)
                continue
            if event.peak >= end:
                break
            found.append(event)
            cursor = event.peak + timedelta(days=1)
        return found

    def _next_solar(
        self, cursor: datetime, limit: float, observer: Observer | None
    ) -> EclipseEvent | None:
        eclipse = self._source.search_global_solar_eclipse(cursor, limit)
        if eclipse is None:
            return None
        local = None
        if observer is not None:
            try:
                local = self._source.search_local_solar_eclipse(eclipse.peak, observer)
            except Exception as e:
                logger.debug("Local circumstances unavailable for %s: %s", eclipse.peak, e)
        return EclipseEvent(
            type="solar",
            peak=eclipse.peak,
            magnitude=eclipse.obscuration,
            obscuration=eclipse.obscuration * 100,
            is_visible=local is not None and local.visible,
            max_eclipse_time=local.peak if local else None,
            duration=_minutes_between(local.partial_begin, local.partial_end) if local else None,
            kind=eclipse.kind,
        )

    def _next_lunar(
        self, cursor: datetime, limit: float, observer: Observer | None
    ) -> EclipseEvent | None:
        eclipse = self._source.search_lunar_eclipse(cursor, limit)
        if eclipse is None:
            return None
        visible = False
        if observer is not None:
            try:
                visible = self.body_position("Moon", eclipse.peak, observer).is_visible
            except Exception as e:
                logger.debug("Moon altitude unavailable for %s: %s", eclipse.peak, e)
        return EclipseEvent(
            type="lunar",
            peak=eclipse.peak,
            magnitude=eclipse.obscuration,
            obscuration=eclipse.obscuration * 100,
            is_visible=visible,
            max_eclipse_time=eclipse.peak,
            duration=_minutes_between(eclipse.partial_begin, eclipse.partial_end),
            kind=eclipse.kind,
        )
