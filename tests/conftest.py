"""Shared fakes and fixtures.

Most tests run against FakeSource, a deterministic stand-in for the
skyfield backend. Tests that need real vectors use the ``backend``
fixture, which skips when the planetary ephemeris cannot be loaded.
"""

from datetime import datetime, timedelta

import pytest
from pytz import utc

from emeraldobservatory.eclipses import GlobalSolarEclipse, LocalSolarEclipse, LunarEclipse
from emeraldobservatory.models import Observer
from emeraldobservatory.skyfield_backend import Equatorial, SkyfieldBackend

SYNODIC_DAYS = 29.530588
REFERENCE_NEW_MOON = datetime(2024, 1, 11, 11, 57, tzinfo=utc)

NEW_YORK = Observer(latitude=40.7128, longitude=-74.0060, altitude=0.0)
TOKYO = Observer(latitude=35.6762, longitude=139.6503)
SYDNEY = Observer(latitude=-33.8688, longitude=151.2093)

# Right ascension (hours) and declination (degrees) per body. FakeSource
# reports altitude = declination and azimuth = 15 * RA, so the sign of the
# declination decides visibility.
FAKE_EQUATORIAL = {
    "Sun": (13.0, -10.0),
    "Moon": (20.0, 15.0),
    "Mercury": (12.5, -5.0),
    "Venus": (14.0, 12.0),
    "Mars": (9.0, 20.0),
    "Jupiter": (4.5, -21.0),
    "Saturn": (23.0, 8.0),
    "Uranus": (3.5, -18.0),
    "Neptune": (23.9, 30.0),
}


class FakeWallClock:
    """Callable wall clock that tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTimescale:
    def __init__(self, gst_hours: float = 6.0, eot_minutes: float = 0.0) -> None:
        self.gst_hours = gst_hours
        self.eot_minutes = eot_minutes

    def sidereal_time_hours(self, when: datetime) -> float:
        return self.gst_hours

    def equation_of_time_minutes(self, when: datetime) -> float:
        return self.eot_minutes


class FakeSource(FakeTimescale):
    """Deterministic ephemeris-vector source with configurable failures."""

    def __init__(self) -> None:
        super().__init__()
        self.phase = 0.3
        self.failing_bodies: set[str] = set()
        self.phase_search_fails = False
        self.polar = False
        self.solar_peaks: list[datetime] = []
        self.lunar_peaks: list[datetime] = []
        self.eclipse_search_fails_after: datetime | None = None
        self.calls: list[str] = []

    def equator(self, name, when, observer):
        self.calls.append(name)
        if name in self.failing_bodies:
            raise RuntimeError(f"no segment for {name}")
        ra, dec = FAKE_EQUATORIAL[name]
        return Equatorial(ra, dec, 1.0, "Ori")

    def horizon(self, when, observer, ra_hours, dec_degrees):
        return dec_degrees, (ra_hours * 15) % 360

    def geo_distance_au(self, name, when):
        return 0.00257 if name == "Moon" else 1.0

    def moon_phase(self, when):
        return self.phase

    def search_moon_phase(self, target_phase, start, limit_days):
        if self.phase_search_fails:
            raise RuntimeError("search did not converge")
        cycles = (start - REFERENCE_NEW_MOON).total_seconds() / 86400 / SYNODIC_DAYS
        k = int(cycles // 1)
        while True:
            found = REFERENCE_NEW_MOON + timedelta(days=(k + target_phase) * SYNODIC_DAYS)
            if found >= start:
                break
            k += 1
        if found > start + timedelta(days=limit_days):
            return None
        return found

    def search_rise_set(self, name, observer, direction, start, limit_days):
        if self.polar:
            return None
        return start + timedelta(hours=6 if direction > 0 else 18)

    def search_altitude(self, name, observer, direction, start, limit_days, altitude):
        if self.polar:
            return None
        # Deeper twilight is further from sunrise and sunset
        shift = timedelta(minutes=abs(altitude) * 5)
        if direction > 0:
            return start + timedelta(hours=6) - shift
        return start + timedelta(hours=18) + shift

    def search_hour_angle(self, name, observer, start, limit_days):
        return start + timedelta(hours=12)

    def _next(self, peaks, after, limit_days):
        if self.eclipse_search_fails_after is not None and after > self.eclipse_search_fails_after:
            raise RuntimeError("eclipse search failed")
        end = after + timedelta(days=limit_days)
        return next((p for p in sorted(peaks) if after <= p <= end), None)

    def search_global_solar_eclipse(self, after, limit_days=400):
        peak = self._next(self.solar_peaks, after, limit_days)
        return GlobalSolarEclipse(peak=peak, kind="partial", obscuration=0.4) if peak else None

    def search_local_solar_eclipse(self, peak, observer):
        return LocalSolarEclipse(
            peak=peak,
            obscuration=0.3,
            partial_begin=peak - timedelta(hours=1),
            partial_end=peak + timedelta(hours=1),
            visible=True,
        )

    def search_lunar_eclipse(self, after, limit_days=400):
        peak = self._next(self.lunar_peaks, after, limit_days)
        if peak is None:
            return None
        return LunarEclipse(
            peak=peak,
            kind="total",
            obscuration=1.0,
            partial_begin=peak - timedelta(minutes=90),
            partial_end=peak + timedelta(minutes=90),
        )


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock(datetime(2024, 10, 15, 12, 0, tzinfo=utc))


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture(scope="session")
def backend() -> SkyfieldBackend:
    """Real skyfield backend; skipped when de421.bsp is neither cached nor downloadable."""
    b = SkyfieldBackend()
    try:
        b.eph
    except Exception as e:
        pytest.skip(f"planetary ephemeris unavailable: {e}")
    return b
