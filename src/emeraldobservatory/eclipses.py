"""Eclipse search on skyfield vectors — lunar eclipses via eclipselib, solar eclipses via Sun-Moon separation minima."""

import math
from dataclasses import dataclass
from datetime import datetime

import numpy as np
from pytz import utc
from skyfield import almanac, eclipselib
from skyfield.functions import angle_between
from skyfield.searchlib import find_discrete, find_minima

EARTH_RADIUS_KM = 6378.137
SUN_RADIUS_KM = 696000.0
MOON_RADIUS_KM = 1737.4

_CONTACT_STEP_DAYS = 0.01  # ~15 minutes, shorter than any partial phase
_LOCAL_WINDOW_DAYS = 0.25


@dataclass(frozen=True)
class GlobalSolarEclipse:
    """Greatest eclipse anywhere on Earth."""

    peak: datetime
    kind: str  # "partial", "annular" or "total"
    obscuration: float  # Fraction of the solar disc covered at greatest eclipse


@dataclass(frozen=True)
class LocalSolarEclipse:
    """The same eclipse seen from one site."""

    peak: datetime
    obscuration: float
    partial_begin: datetime | None
    partial_end: datetime | None
    visible: bool  # Partial phase overlaps daylight at the site


@dataclass(frozen=True)
class LunarEclipse:
    peak: datetime
    kind: str  # "penumbral", "partial" or "total"
    obscuration: float  # Fraction of the lunar disc inside the umbra
    partial_begin: datetime | None
    partial_end: datetime | None


def disc_overlap(r1: float, r2: float, d: float) -> float:
    """Fraction of disc r1 covered by disc r2 whose centres are d apart.

    All three values share one angular unit.
    """
    if d >= r1 + r2:
        return 0.0
    if d <= abs(r1 - r2):
        return 1.0 if r2 >= r1 else (r2 * r2) / (r1 * r1)
    c1 = max(-1.0, min(1.0, (d * d + r1 * r1 - r2 * r2) / (2 * d * r1)))
    c2 = max(-1.0, min(1.0, (d * d + r2 * r2 - r1 * r1) / (2 * d * r2)))
    lens = (
        r1 * r1 * math.acos(c1)
        + r2 * r2 * math.acos(c2)
        - 0.5
        * math.sqrt(
            max(0.0, (-d + r1 + r2) * (d + r1 - r2) * (d - r1 + r2) * (d + r1 + r2))
        )
    )
    return lens / (math.pi * r1 * r1)


def _to_datetime(t) -> datetime:
    return t.utc_datetime().astimezone(utc)


def _semi_diameters(sun_apparent, moon_apparent) -> tuple[float, float]:
    sun_sd = math.asin(SUN_RADIUS_KM / sun_apparent.distance().km)
    moon_sd = math.asin(MOON_RADIUS_KM / moon_apparent.distance().km)
    return sun_sd, moon_sd


def _contact_times(ts, start, end, in_contact) -> tuple[datetime | None, datetime | None]:
    """First entry into and following exit from contact inside [start, end]."""
    in_contact.step_days = _CONTACT_STEP_DAYS
    times, flags = find_discrete(start, end, in_contact)
    begin = finish = None
    for i in range(len(flags)):
        if flags[i] and begin is None:
            begin = _to_datetime(times[i])
        elif not flags[i] and begin is not None:
            finish = _to_datetime(times[i])
            break
    return begin, finish


def search_global_solar_eclipse(eph, ts, after, limit_days: float = 400.0):
    """Next solar eclipse after ``after`` (a skyfield Time), or None within the limit.

    Each new moon is inspected: the geocentric Sun–Moon separation minimum
    is compared with the sum of the semi-diameters plus the Moon's parallax
    relative to the Sun. Earth's flattening is ignored.
    """
    earth, sun, moon = eph["earth"], eph["sun"], eph["moon"]
    end = ts.tt_jd(after.tt + limit_days)
    times, phases = find_discrete(after, end, almanac.moon_phases(eph))

    def separation(t):
        e = earth.at(t)
        return e.observe(sun).apparent().separation_from(e.observe(moon).apparent()).degrees

    separation.step_days = 0.05

    for i in np.flatnonzero(phases == 0):
        t_new = times[i]
        minima, values = find_minima(
            ts.tt_jd(t_new.tt - 1.0), ts.tt_jd(t_new.tt + 1.0), separation
        )
        if not len(values):
            continue
        peak = minima[int(np.argmin(values))]

        e = earth.at(peak)
        s = e.observe(sun).apparent()
        m = e.observe(moon).apparent()
        sep = math.radians(s.separation_from(m).degrees)
        sun_sd, moon_sd = _semi_diameters(s, m)
        moon_parallax = math.asin(EARTH_RADIUS_KM / m.distance().km)
        sun_parallax = math.asin(EARTH_RADIUS_KM / s.distance().km)

        if sep >= moon_parallax - sun_parallax + sun_sd + moon_sd:
            continue

        closest = max(0.0, sep - (moon_parallax - sun_parallax))
        if moon_sd >= sun_sd and closest <= moon_sd - sun_sd:
            kind = "total"
        elif moon_sd < sun_sd and closest <= sun_sd - moon_sd:
            kind = "annular"
        else:
            kind = "partial"
        return GlobalSolarEclipse(
            peak=_to_datetime(peak),
            kind=kind,
            obscuration=disc_overlap(sun_sd, moon_sd, closest),
        )
    return None


def search_local_solar_eclipse(eph, ts, peak, site):
    """Local circumstances of the solar eclipse peaking near ``peak`` for ``site``.

    Args:
        eph: Loaded skyfield ephemeris.
        ts: skyfield Timescale.
        peak: Time of the global greatest eclipse.
        site: ``earth + wgs84.latlon(...)`` vector sum.

    Returns:
        LocalSolarEclipse, or None when the Moon never touches the Sun's disc here.
    """
    sun, moon = eph["sun"], eph["moon"]
    start = ts.tt_jd(peak.tt - _LOCAL_WINDOW_DAYS)
    end = ts.tt_jd(peak.tt + _LOCAL_WINDOW_DAYS)

    def separation(t):
        a = site.at(t)
        return a.observe(sun).apparent().separation_from(a.observe(moon).apparent()).degrees

    separation.step_days = _CONTACT_STEP_DAYS
    minima, values = find_minima(start, end, separation)
    if not len(values):
        return None
    i = int(np.argmin(values))
    local_peak = minima[i]

    a = site.at(local_peak)
    s = a.observe(sun).apparent()
    m = a.observe(moon).apparent()
    sun_sd, moon_sd = _semi_diameters(s, m)
    contact = sun_sd + moon_sd
    closest = math.radians(float(values[i]))
    if closest >= contact:
        return None

    contact_degrees = math.degrees(contact)

    def in_contact(t):
        return separation(t) < contact_degrees

    begin, finish = _contact_times(ts, start, end, in_contact)

    checkpoints = [local_peak] + [ts.from_datetime(x) for x in (begin, finish) if x]
    visible = any(
        site.at(t).observe(sun).apparent().altaz()[0].degrees > 0 for t in checkpoints
    )
    return LocalSolarEclipse(
        peak=_to_datetime(local_peak),
        obscuration=disc_overlap(sun_sd, moon_sd, closest),
        partial_begin=begin,
        partial_end=finish,
        visible=visible,
    )


def search_lunar_eclipse(eph, ts, after, limit_days: float = 400.0):
    """Next lunar eclipse after ``after`` (a skyfield Time), or None within the limit."""
    end = ts.tt_jd(after.tt + limit_days)
    times, kinds, details = eclipselib.lunar_eclipses(after, end, eph)
    if not len(times):
        return None

    peak = times[0]
    kind = eclipselib.LUNAR_ECLIPSES[int(kinds[0])].lower()
    moon_r = float(details["moon_radius_radians"][0])
    umbra_r = float(details["umbra_radius_radians"][0])
    closest = float(details["closest_approach_radians"][0])

    if kind == "penumbral":
        penumbra = details.get("penumbra_radius_radians")
        contact = float(penumbra[0]) + moon_r if penumbra is not None else None
    else:
        contact = umbra_r + moon_r

    begin = finish = None
    if contact is not None:
        earth, sun, moon = eph["earth"], eph["sun"], eph["moon"]

        def in_shadow(t):
            e = earth.at(t)
            anti_sun = -e.observe(sun).position.au
            return angle_between(anti_sun, e.observe(moon).position.au) < contact

        begin, finish = _contact_times(
            ts,
            ts.tt_jd(peak.tt - _LOCAL_WINDOW_DAYS),
            ts.tt_jd(peak.tt + _LOCAL_WINDOW_DAYS),
            in_shadow,
        )

    return LunarEclipse(
        peak=_to_datetime(peak),
        kind=kind,
        obscuration=disc_overlap(moon_r, umbra_r, closest),
        partial_begin=begin,
        partial_end=finish,
    )
