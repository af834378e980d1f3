"""Ephemeris-vector collaborator — skyfield loading, body vectors, sidereal time and search primitives.

Every public method takes and returns timezone-aware datetimes so the clock
and ephemeris layers never handle skyfield Time objects directly.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import NamedTuple

from pytz import utc
from skyfield import almanac
from skyfield.api import Loader, load_constellation_map, wgs84
from skyfield.searchlib import find_discrete

from emeraldobservatory import eclipses
from emeraldobservatory.config import Settings
from emeraldobservatory.eclipses import GlobalSolarEclipse, LocalSolarEclipse, LunarEclipse
from emeraldobservatory.models import Observer

logger = logging.getLogger(__name__)

# Display name → ephemeris segment. Planets use barycenters, which de421 covers for all of them.
BODY_KEYS: dict[str, str] = {
    "Sun": "sun",
    "Moon": "moon",
    "Mercury": "mercury barycenter",
    "Venus": "venus barycenter",
    "Mars": "mars barycenter",
    "Jupiter": "jupiter barycenter",
    "Saturn": "saturn barycenter",
    "Uranus": "uranus barycenter",
    "Neptune": "neptune barycenter",
}


class UnknownBodyError(KeyError):
    """Body name not present in BODY_KEYS."""


class Equatorial(NamedTuple):
    right_ascension: float  # Hours, equator of date
    declination: float  # Degrees
    distance_au: float
    constellation: str | None


def _aware(when: datetime) -> datetime:
    return utc.localize(when) if when.tzinfo is None else when


class SkyfieldBackend:
    """skyfield-backed vectors and searches for the Sun, Moon and planets.

    The timescale uses skyfield's builtin tables. The planetary ephemeris is
    opened on first use, downloading into ``settings.ephemeris_dir`` if missing.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self._loader = Loader(settings.ephemeris_dir)
        self._ephemeris_file = settings.ephemeris_file
        self._eph = None
        self.ts = self._loader.timescale()
        self._constellation_at = load_constellation_map()

    @property
    def eph(self):
        if self._eph is None:
            logger.info("Loading ephemeris %s", self._ephemeris_file)
            self._eph = self._loader(self._ephemeris_file)
        return self._eph

    def _time(self, when: datetime):
        return self.ts.from_datetime(_aware(when))

    def _body(self, name: str):
        try:
            return self.eph[BODY_KEYS[name]]
        except KeyError as e:
            raise UnknownBodyError(name) from e

    def _site(self, observer: Observer):
        return self.eph["earth"] + wgs84.latlon(
            observer.latitude, observer.longitude, elevation_m=observer.altitude
        )

    @staticmethod
    def _datetime(t) -> datetime:
        return t.utc_datetime().astimezone(utc)

    # --- time scales ---

    def sidereal_time_hours(self, when: datetime) -> float:
        """Greenwich apparent sidereal time in hours."""
        return float(self._time(when).gast)

    def equation_of_time_minutes(self, when: datetime) -> float:
        """Apparent minus mean solar time, in minutes (positive when the sundial is fast)."""
        t = self._time(when)
        earth = self.eph["earth"]
        ra, _, _ = earth.at(t).observe(self.eph["sun"]).apparent().radec(epoch="date")
        apparent_hours = (t.gast - ra.hours + 12.0) % 24.0
        u = t.utc_datetime()
        mean_hours = u.hour + u.minute / 60 + (u.second + u.microsecond / 1e6) / 3600
        return ((apparent_hours - mean_hours + 12.0) % 24.0 - 12.0) * 60.0

    # --- positions ---

    def equator(self, name: str, when: datetime, observer: Observer) -> Equatorial:
        """Topocentric apparent right ascension and declination of date."""
        t = self._time(when)
        apparent = self._site(observer).at(t).observe(self._body(name)).apparent()
        ra, dec, distance = apparent.radec(epoch="date")
        return Equatorial(
            right_ascension=float(ra.hours),
            declination=float(dec.degrees),
            distance_au=float(distance.au),
            constellation=str(self._constellation_at(apparent)),
        )

    def horizon(
        self, when: datetime, observer: Observer, ra_hours: float, dec_degrees: float
    ) -> tuple[float, float]:
        """Equator-of-date coordinates to (altitude, azimuth) for the observer. No refraction."""
        t = self._time(when)
        hour_angle = math.radians(((t.gast + observer.longitude / 15 - ra_hours) % 24.0) * 15)
        phi = math.radians(observer.latitude)
        delta = math.radians(dec_degrees)

        sin_alt = math.sin(phi) * math.sin(delta) + math.cos(phi) * math.cos(delta) * math.cos(hour_angle)
        altitude = math.degrees(math.asin(max(-1.0, min(1.0, sin_alt))))
        azimuth = math.degrees(
            math.atan2(
                -math.cos(delta) * math.sin(hour_angle),
                math.sin(delta) * math.cos(phi)
                - math.cos(delta) * math.sin(phi) * math.cos(hour_angle),
            )
        ) % 360.0
        if azimuth >= 360.0:
            azimuth = 0.0
        return altitude, azimuth

    def geo_distance_au(self, name: str, when: datetime) -> float:
        """Light-time corrected distance from Earth's centre."""
        t = self._time(when)
        return float(self.eph["earth"].at(t).observe(self._body(name)).distance().au)

    # --- moon phase ---

    def moon_phase(self, when: datetime) -> float:
        """Phase on a [0, 1) scale from the Sun–Moon ecliptic longitude difference."""
        return (float(almanac.moon_phase(self.eph, self._time(when)).degrees) / 360.0) % 1.0

    def search_moon_phase(
        self, target_phase: float, start: datetime, limit_days: float
    ) -> datetime | None:
        """First instant after start when the phase reaches target_phase."""
        target_degrees = (target_phase % 1.0) * 360.0
        eph = self.eph

        def past_target(t):
            return (almanac.moon_phase(eph, t).degrees - target_degrees) % 360.0 < 180.0

        past_target.step_days = 5.0
        times, flags = find_discrete(
            self._time(start), self._time(start + timedelta(days=limit_days)), past_target
        )
        for i in range(len(flags)):
            if flags[i]:
                return self._datetime(times[i])
        return None

    # --- rise, set, transit ---

    def search_rise_set(
        self,
        name: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
    ) -> datetime | None:
        """First rising (direction +1) or setting (-1) of the body's upper limb."""
        return self._search_horizon(name, observer, direction, start, limit_days, None)

    def search_altitude(
        self,
        name: str,
        observer: Observer,
        direction: int,
        start: datetime,
        limit_days: float,
        altitude: float,
    ) -> datetime | None:
        """First ascending (+1) or descending (-1) crossing of the body's centre through altitude."""
        return self._search_horizon(name, observer, direction, start, limit_days, altitude)

    def _search_horizon(self, name, observer, direction, start, limit_days, altitude):
        finder = almanac.find_risings if direction > 0 else almanac.find_settings
        times, crossed = finder(
            self._site(observer),
            self._body(name),
            self._time(start),
            self._time(start + timedelta(days=limit_days)),
            horizon_degrees=altitude,
        )
        for i in range(len(crossed)):
            if crossed[i]:
                return self._datetime(times[i])
        return None

    def search_hour_angle(
        self, name: str, observer: Observer, start: datetime, limit_days: float
    ) -> datetime | None:
        """First upper culmination (hour angle 0) after start."""
        times = almanac.find_transits(
            self._site(observer),
            self._body(name),
            self._time(start),
            self._time(start + timedelta(days=limit_days)),
        )
        if not len(times):
            return None
        return self._datetime(times[0])

    # --- eclipses ---

    def search_global_solar_eclipse(
        self, after: datetime, limit_days: float = 400.0
    ) -> GlobalSolarEclipse | None:
        return eclipses.search_global_solar_eclipse(
            self.eph, self.ts, self._time(after), limit_days
        )

    def search_local_solar_eclipse(
        self, peak: datetime, observer: Observer
    ) -> LocalSolarEclipse | None:
        return eclipses.search_local_solar_eclipse(
            self.eph, self.ts, self._time(peak), self._site(observer)
        )

    def search_lunar_eclipse(
        self, after: datetime, limit_days: float = 400.0
    ) -> LunarEclipse | None:
        return eclipses.search_lunar_eclipse(
            self.eph, self.ts, self._time(after), limit_days
        )
