"""Tests for the ephemeris layer against a deterministic fake source."""

import math
from datetime import datetime, timedelta

import pytest
import pytz
from pytz import utc

from conftest import NEW_YORK, FakeSource
from emeraldobservatory.ephemeris import (
    MOON_PHASE_NAMES,
    PHASE_FALLBACK,
    PLANETS,
    Ephemeris,
    approximate_galactic,
    approximate_magnitude,
    illumination_percent,
    phase_name,
    start_of_day,
)

WHEN = datetime(2024, 10, 15, 12, 0, tzinfo=utc)


def test_planetary_positions_all_planets(source: FakeSource) -> None:
    """All seven planets in order, with altitude and azimuth in range."""
    positions = Ephemeris(source).planetary_positions(WHEN, NEW_YORK)
    assert [p.name for p in positions] == list(PLANETS)
    for p in positions:
        assert -90 <= p.altitude <= 90
        assert 0 <= p.azimuth < 360


def test_failing_body_is_left_out(source: FakeSource, caplog) -> None:
    """One failing planet is logged and skipped; the rest are returned."""
    source.failing_bodies = {"Mars"}
    positions = Ephemeris(source).planetary_positions(WHEN, NEW_YORK)
    assert "Mars" not in [p.name for p in positions]
    assert len(positions) == 6
    assert "Mars" in caplog.text


def test_planetary_positions_idempotent(source: FakeSource) -> None:
    """Same instant and observer give identical results."""
    e = Ephemeris(source)
    assert e.planetary_positions(WHEN, NEW_YORK) == e.planetary_positions(WHEN, NEW_YORK)


def test_visibility_from_altitude(source: FakeSource) -> None:
    """is_visible is altitude above zero."""
    positions = {p.name: p for p in Ephemeris(source).planetary_positions(WHEN, NEW_YORK)}
    assert positions["Venus"].is_visible
    assert not positions["Jupiter"].is_visible


def test_magnitude_approximation() -> None:
    """Base magnitude at 1 AU, fainter by 5 log10(distance)."""
    assert approximate_magnitude("Venus", 1.0) == pytest.approx(-4.4)
    assert approximate_magnitude("Jupiter", 10.0) == pytest.approx(2.1)
    assert approximate_magnitude("Unknown", 1.0) == 0.0


@pytest.mark.parametrize("phase", [0.0, 0.1, 0.25, 0.5, 0.618, 0.75, 0.99])
def test_illumination_law(phase: float) -> None:
    """Illumination is (1 - cos 2 pi p) * 50."""
    assert illumination_percent(phase) == pytest.approx((1 - math.cos(2 * math.pi * phase)) * 50)


def test_illumination_landmarks() -> None:
    """0 % at new, 50 % at the quarters, 100 % at full."""
    assert illumination_percent(0.0) == pytest.approx(0.0)
    assert illumination_percent(0.25) == pytest.approx(50.0)
    assert illumination_percent(0.5) == pytest.approx(100.0)


@pytest.mark.parametrize(
    "phase, name",
    [
        (0.0, "New Moon"),
        (0.05, "New Moon"),
        (0.0625, "Waxing Crescent"),
        (0.25, "First Quarter"),
        (0.5, "Full Moon"),
        (0.75, "Last Quarter"),
        (0.9, "Waning Crescent"),
        (0.97, "New Moon"),
    ],
)
def test_phase_names(phase: float, name: str) -> None:
    """Eight named phases, each centred on a multiple of 1/8."""
    assert phase_name(phase) == name


def test_moon_phase_record(source: FakeSource) -> None:
    """Phase, name, illumination and syzygies from the source."""
    mp = Ephemeris(source).moon_phase(WHEN)
    assert mp.phase == 0.3
    assert mp.phase_name in MOON_PHASE_NAMES
    assert mp.illumination == pytest.approx(illumination_percent(0.3))
    assert mp.next_new_moon > WHEN
    assert mp.next_full_moon > WHEN
    assert mp.next_new_moon - WHEN < timedelta(days=30)
    assert 0 <= mp.age < 29.6


def test_moon_phase_fallback(source: FakeSource) -> None:
    """Failed searches fall back to 15 days either side."""
    source.phase_search_fails = True
    mp = Ephemeris(source).moon_phase(WHEN)
    assert mp.next_new_moon == WHEN + PHASE_FALLBACK
    assert mp.next_full_moon == WHEN + PHASE_FALLBACK
    assert mp.age == pytest.approx(15.0)


def test_sun_moon_times_without_observer(source: FakeSource) -> None:
    """No observer: every entry is None."""
    times = Ephemeris(source).sun_moon_times(WHEN, None)
    assert times.sunrise is None
    assert times.moonset is None
    assert times.civil_twilight.dawn is None
    assert times.day_length is None


def test_sun_moon_times_local_day(source: FakeSource) -> None:
    """Searches start at local midnight of the date's own timezone."""
    zone = pytz.timezone("America/New_York")
    date = WHEN.astimezone(zone)
    times = Ephemeris(source).sun_moon_times(date, NEW_YORK)
    midnight = zone.localize(datetime(2024, 10, 15))
    assert times.sunrise == midnight + timedelta(hours=6)
    assert times.sunset == midnight + timedelta(hours=18)
    assert times.solar_noon == midnight + timedelta(hours=12)
    assert times.day_length == timedelta(hours=12)
    assert times.astronomical_twilight.dawn < times.nautical_twilight.dawn < times.civil_twilight.dawn
    assert times.civil_twilight.dusk < times.nautical_twilight.dusk < times.astronomical_twilight.dusk


def test_polar_conditions_are_none(source: FakeSource) -> None:
    """Searches that find nothing give None, not an exception."""
    source.polar = True
    times = Ephemeris(source).sun_moon_times(WHEN, NEW_YORK)
    assert times.sunrise is None
    assert times.sunset is None
    assert times.civil_twilight.dawn is None
    assert times.solar_noon is not None


def test_failing_search_is_absorbed(source: FakeSource, monkeypatch) -> None:
    """An exception from a search becomes None."""

    def boom(*args):
        raise RuntimeError("no convergence")

    monkeypatch.setattr(source, "search_rise_set", boom)
    times = Ephemeris(source).sun_moon_times(WHEN, NEW_YORK)
    assert times.sunrise is None
    assert times.moonrise is None
    assert times.civil_twilight.dawn is not None


def test_start_of_day() -> None:
    """Midnight in the value's own zone; naive values are UTC."""
    assert start_of_day(datetime(2024, 3, 1, 17, 5)) == datetime(2024, 3, 1, tzinfo=utc)
    zone = pytz.timezone("Asia/Seoul")
    local = zone.localize(datetime(2024, 3, 1, 1, 0))
    assert start_of_day(local) == zone.localize(datetime(2024, 3, 1))


def test_galactic_approximation() -> None:
    """Shifted right ascension and sine-scaled declination."""
    lon, lat = approximate_galactic(0.0, 0.0)
    assert lon == pytest.approx(123.0)
    assert lat == pytest.approx(0.0)
    lon, lat = approximate_galactic(20.0, 90.0)
    assert lon == pytest.approx((300 + 123) % 360)
    assert lat == pytest.approx(57.2958)


def test_coordinate_conversion(source: FakeSource) -> None:
    """Equatorial input is echoed with horizontal and galactic values."""
    c = Ephemeris(source).coordinate_conversion(5.5, -5.0, WHEN, NEW_YORK)
    assert c.right_ascension == 5.5
    assert c.declination == -5.0
    assert c.altitude == -5.0
    assert c.azimuth == pytest.approx(82.5)
    assert c.galactic_longitude == pytest.approx(205.5)


def test_astronomical_position(source: FakeSource) -> None:
    """Sun and Moon with twilight windows and moon distance in kilometres."""
    pos = Ephemeris(source).astronomical_position(WHEN, NEW_YORK)
    assert pos.sun.altitude == -10.0
    assert pos.moon.distance_km == pytest.approx(0.00257 * 149597870.7)
    assert pos.moon.phase == 0.3
    assert pos.civil_twilight is not None
    assert pos.sunrise is not None


def test_astronomical_position_polar(source: FakeSource) -> None:
    """Twilight windows with neither dawn nor dusk are None."""
    source.polar = True
    pos = Ephemeris(source).astronomical_position(WHEN, NEW_YORK)
    assert pos.civil_twilight is None
    assert pos.astronomical_twilight is None
    assert pos.sunrise is None


def test_upcoming_eclipses_sorted_and_tagged(source: FakeSource) -> None:
    """Solar and lunar events merged, sorted by peak, tagged by type."""
    source.solar_peaks = [WHEN + timedelta(days=d) for d in (170, 350)]
    source.lunar_peaks = [WHEN + timedelta(days=d) for d in (14, 184, 700)]
    events = Ephemeris(source).upcoming_eclipses(WHEN, NEW_YORK, 730)
    assert [e.type for e in events] == ["lunar", "solar", "lunar", "solar", "lunar"]
    peaks = [e.peak for e in events]
    assert peaks == sorted(peaks)
    assert len(set(peaks)) == len(peaks)


def test_upcoming_eclipses_window(source: FakeSource) -> None:
    """Events peaking after the window are not reported."""
    source.lunar_peaks = [WHEN + timedelta(days=d) for d in (10, 400)]
    events = Ephemeris(source).upcoming_eclipses(WHEN, NEW_YORK, 365)
    assert [e.peak for e in events] == [WHEN + timedelta(days=10)]


def test_eclipse_details(source: FakeSource) -> None:
    """Obscuration is a percentage; duration spans the partial phase in minutes."""
    source.solar_peaks = [WHEN + timedelta(days=20)]
    source.lunar_peaks = [WHEN + timedelta(days=5)]
    lunar, solar = Ephemeris(source).upcoming_eclipses(WHEN, NEW_YORK, 60)
    assert lunar.kind == "total"
    assert lunar.obscuration == pytest.approx(100.0)
    assert lunar.duration == pytest.approx(180.0)
    assert lunar.is_visible  # Moon altitude is positive in the fake
    assert solar.magnitude == pytest.approx(0.4)
    assert solar.obscuration == pytest.approx(40.0)
    assert solar.duration == pytest.approx(120.0)
    assert solar.is_visible


def test_eclipses_without_observer(source: FakeSource) -> None:
    """Without an observer events are still found but never visible."""
    source.solar_peaks = [WHEN + timedelta(days=20)]
    source.lunar_peaks = [WHEN + timedelta(days=5)]
    events = Ephemeris(source).upcoming_eclipses(WHEN, None, 60)
    assert len(events) == 2
    assert not any(e.is_visible for e in events)


def test_eclipse_search_failure_keeps_found(source: FakeSource) -> None:
    """A failing search step ends that type's scan but keeps earlier events."""
    source.lunar_peaks = [WHEN + timedelta(days=d) for d in (10, 190, 370)]
    source.eclipse_search_fails_after = WHEN + timedelta(days=5)
    events = Ephemeris(source).upcoming_eclipses(WHEN, NEW_YORK, 730)
    assert [e.peak for e in events] == [WHEN + timedelta(days=10)]
