"""Geodesy — WGS84 Cartesian and UTM coordinates, and longitude-based timezone estimation."""

import logging
import math
from datetime import datetime, timedelta

import pytz
from pytz import utc
from timezonefinder import TimezoneFinder

from emeraldobservatory.models import (
    Cartesian,
    CoordinateFrame,
    TimezoneEstimate,
    UtmCoordinate,
)

logger = logging.getLogger(__name__)

# WGS84 ellipsoid
WGS84_A = 6378137.0  # Semi-major axis (m)
WGS84_F = 1 / 298.257223563  # Flattening
WGS84_E2 = 2 * WGS84_F - WGS84_F * WGS84_F  # First eccentricity squared

UTM_K0 = 0.9996
UTM_FALSE_EASTING = 500000.0
UTM_FALSE_NORTHING_SOUTH = 10000000.0

_tf = TimezoneFinder()


class CoordinateRangeError(ValueError):
    """Latitude or longitude outside its valid range."""


def validate_coordinates(lat: float, lon: float) -> None:
    """Raise CoordinateRangeError unless lat is in [-90, 90] and lon in [-180, 180].

    NaN fails both comparisons and is rejected as well.
    """
    if not -90 <= lat <= 90:
        raise CoordinateRangeError("Latitude must be between -90 and 90 degrees")
    if not -180 <= lon <= 180:
        raise CoordinateRangeError("Longitude must be between -180 and 180 degrees")


def to_cartesian(lat: float, lon: float, alt: float = 0.0) -> Cartesian:
    """Geodetic to Earth-centred, Earth-fixed coordinates."""
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    sin_lat = math.sin(lat_rad)

    # Prime-vertical radius of curvature
    n = WGS84_A / math.sqrt(1 - WGS84_E2 * sin_lat * sin_lat)

    x = (n + alt) * math.cos(lat_rad) * math.cos(lon_rad)
    y = (n + alt) * math.cos(lat_rad) * math.sin(lon_rad)
    z = (n * (1 - WGS84_E2) + alt) * sin_lat
    return Cartesian(x=x, y=y, z=z)


def utm_zone(lon: float) -> int:
    """Six-degree zone number. Longitude 180 belongs to zone 60."""
    return min(int(math.floor((lon + 180) / 6)) + 1, 60)


def to_utm(lat: float, lon: float) -> UtmCoordinate:
    """Transverse Mercator projection relative to the zone's central meridian.

    Uses the Snyder series on the WGS84 ellipsoid; accurate to well under a
    metre inside the zone. No special zones for Norway or Svalbard.
    """
    zone = utm_zone(lon)
    hemisphere = "N" if lat >= 0 else "S"

    phi = math.radians(lat)
    central_meridian = math.radians((zone - 1) * 6 - 180 + 3)
    e2 = WGS84_E2
    e4 = e2 * e2
    e6 = e4 * e2
    ep2 = e2 / (1 - e2)

    sin_phi = math.sin(phi)
    cos_phi = math.cos(phi)
    tan_phi = math.tan(phi)

    n = WGS84_A / math.sqrt(1 - e2 * sin_phi * sin_phi)
    t = tan_phi * tan_phi
    c = ep2 * cos_phi * cos_phi
    a = cos_phi * (math.radians(lon) - central_meridian)

    # Meridian arc length from the equator
    m = WGS84_A * (
        (1 - e2 / 4 - 3 * e4 / 64 - 5 * e6 / 256) * phi
        - (3 * e2 / 8 + 3 * e4 / 32 + 45 * e6 / 1024) * math.sin(2 * phi)
        + (15 * e4 / 256 + 45 * e6 / 1024) * math.sin(4 * phi)
        - (35 * e6 / 3072) * math.sin(6 * phi)
    )

    easting = UTM_FALSE_EASTING + UTM_K0 * n * (
        a
        + (1 - t + c) * a**3 / 6
        + (5 - 18 * t + t * t + 72 * c - 58 * ep2) * a**5 / 120
    )
    northing = UTM_K0 * (
        m
        + n
        * tan_phi
        * (
            a * a / 2
            + (5 - t + 9 * c + 4 * c * c) * a**4 / 24
            + (61 - 58 * t + t * t + 600 * c - 330 * ep2) * a**6 / 720
        )
    )
    if lat < 0:
        northing += UTM_FALSE_NORTHING_SOUTH

    return UtmCoordinate(
        zone=zone, easting=easting, northing=northing, hemisphere=hemisphere
    )


def to_coordinate_frame(lat: float, lon: float, alt: float = 0.0) -> CoordinateFrame:
    """Derive Cartesian and UTM coordinates for a location.

    Args:
        lat: Latitude in degrees, north positive.
        lon: Longitude in degrees, east positive.
        alt: Height above the ellipsoid in metres.

    Returns:
        CoordinateFrame echoing the inputs with both derived systems.

    Raises:
        CoordinateRangeError: lat or lon out of range. Values are never clamped.
    """
    validate_coordinates(lat, lon)
    return CoordinateFrame(
        latitude=lat,
        longitude=lon,
        altitude=alt,
        cartesian=to_cartesian(lat, lon, alt),
        utm=to_utm(lat, lon),
    )


def approximate_offset_minutes(lon: float) -> int:
    """15 degrees of longitude per hour, rounded half up to a whole hour."""
    return int(math.floor(lon / 15 + 0.5)) * 60


def format_utc_offset(minutes: int) -> str:
    """Render an offset as "UTC+9:00" / "UTC-5:30"."""
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(int(minutes)), 60)
    return f"UTC{sign}{hours}:{mins:02d}"


def format_coordinates(lat: float | None, lon: float | None) -> str:
    if lat is None or lon is None:
        return "Not set"
    return f"{lat:.6f}°, {lon:.6f}°"


def _etc_zone_name(offset_minutes: int) -> str:
    # POSIX sign convention: Etc/GMT-9 is nine hours east of Greenwich
    hours = offset_minutes // 60
    if hours == 0:
        return "Etc/GMT"
    return f"Etc/GMT{'-' if hours > 0 else '+'}{abs(hours)}"


def _offset_only_estimate(offset: int) -> TimezoneEstimate:
    return TimezoneEstimate(
        name=format_utc_offset(offset),
        abbreviation="UTC",
        offset_minutes=offset,
        is_dst=False,
    )


def estimate_timezone(
    lat: float, lon: float, at: datetime | None = None
) -> TimezoneEstimate:
    """Estimate the civil timezone of a location.

    The offset is always the longitude approximation. The zone name comes
    from timezonefinder (or the Etc/GMT zone for that offset over open
    water); its abbreviation and DST state are evaluated at ``at``.

    Args:
        lat: Latitude in degrees.
        lon: Longitude in degrees.
        at: Reference instant for DST. Defaults to now; naive values are UTC.

    Returns:
        TimezoneEstimate. Falls back to a "UTC+H:MM" label when no zone
        resolves, and to UTC+0:00 for non-finite coordinates.
    """
    if not (math.isfinite(lat) and math.isfinite(lon)):
        logger.debug("Non-finite coordinates lat=%s lon=%s", lat, lon)
        return _offset_only_estimate(0)

    offset = approximate_offset_minutes(lon)
    if at is None:
        at = datetime.now(utc)
    elif at.tzinfo is None:
        at = utc.localize(at)

    try:
        name = _tf.timezone_at(lat=lat, lng=lon) or _etc_zone_name(offset)
        local = at.astimezone(pytz.timezone(name))
    except (ValueError, OverflowError, pytz.UnknownTimeZoneError) as e:
        logger.debug("Timezone lookup failed for lat=%s lon=%s: %s", lat, lon, e)
        return _offset_only_estimate(offset)

    is_dst = bool(local.dst() or timedelta(0))
    utc_offset = local.utcoffset() or timedelta(0)
    return TimezoneEstimate(
        name=name,
        abbreviation=local.tzname() or "UTC",
        offset_minutes=offset,
        is_dst=is_dst,
        dst_offset_minutes=60 if is_dst else 0,
        zone_offset_minutes=int(utc_offset.total_seconds() // 60),
    )
