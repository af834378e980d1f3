"""Data model definitions — immutable records exchanged between geodesy, clock, ephemeris and session layers."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class Mode(str, Enum):
    """Clock operating mode."""

    LIVE = "live"
    TIME_TRAVEL = "time-travel"


@dataclass(frozen=True)
class Observer:
    """A single location fix. Superseded, never mutated."""

    latitude: float  # Decimal degrees, north positive
    longitude: float  # Decimal degrees, east positive
    altitude: float = 0.0  # Metres above sea level
    accuracy: float | None = None  # Horizontal accuracy in metres (GPS fixes only)
    captured_at: datetime | None = None  # When the fix was taken


@dataclass(frozen=True)
class Cartesian:
    """Earth-centred, Earth-fixed position on the WGS84 ellipsoid."""

    x: float  # Metres
    y: float  # Metres
    z: float  # Metres


@dataclass(frozen=True)
class UtmCoordinate:
    """Universal Transverse Mercator grid position."""

    zone: int  # 1..60
    easting: float  # Metres, false easting 500 km
    northing: float  # Metres, false northing 10 000 km in the south
    hemisphere: str  # "N" or "S"


@dataclass(frozen=True)
class CoordinateFrame:
    """Derived coordinate systems for an observer."""

    latitude: float
    longitude: float
    altitude: float
    cartesian: Cartesian
    utm: UtmCoordinate


@dataclass(frozen=True)
class TimezoneEstimate:
    """Longitude-based timezone guess, refined by a zone lookup when one resolves."""

    name: str  # IANA zone ("Asia/Tokyo") or synthesized label ("UTC+9:00")
    abbreviation: str  # "JST", "EDT", "UTC"
    offset_minutes: int  # round(lon / 15) * 60, always a whole hour
    is_dst: bool
    dst_offset_minutes: int = 0  # 60 while DST is in effect
    zone_offset_minutes: int | None = None  # Real UTC offset of the resolved zone


@dataclass(frozen=True)
class ClockState:
    """Snapshot of the clock. Only the clock's setters and tick produce new ones."""

    instant: datetime  # UTC, manual offset already applied
    manual_offset_minutes: float
    timezone: str  # Display label, not used to shift the instant
    latitude: float
    longitude: float
    mode: Mode = Mode.LIVE


@dataclass(frozen=True)
class CelestialBodyPosition:
    """Where a solar-system body is for one observer at one instant."""

    name: str
    right_ascension: float  # Hours, equator of date
    declination: float  # Degrees, equator of date
    altitude: float  # Degrees above the horizon
    azimuth: float  # Degrees from north through east, [0, 360)
    distance_au: float  # Geocentric distance
    magnitude: float  # Approximate apparent magnitude
    constellation: str | None = None  # IAU abbreviation ("Ori")

    @property
    def is_visible(self) -> bool:
        return self.altitude > 0


@dataclass(frozen=True)
class MoonPhase:
    """Lunar phase and the syzygies around it."""

    phase: float  # [0, 1): 0 new, 0.25 first quarter, 0.5 full, 0.75 last quarter
    phase_name: str
    illumination: float  # Percent, (1 - cos(2*pi*phase)) * 50
    next_new_moon: datetime
    next_full_moon: datetime
    age: float  # Days since the last new moon


@dataclass(frozen=True)
class TwilightWindow:
    """Dawn and dusk at one solar depression angle."""

    dawn: datetime | None = None
    dusk: datetime | None = None


@dataclass(frozen=True)
class SunMoonTimes:
    """Rise, set and twilight instants for one civil day. Any entry may be None."""

    sunrise: datetime | None = None
    sunset: datetime | None = None
    solar_noon: datetime | None = None
    moonrise: datetime | None = None
    moonset: datetime | None = None
    civil_twilight: TwilightWindow = field(default_factory=TwilightWindow)
    nautical_twilight: TwilightWindow = field(default_factory=TwilightWindow)
    astronomical_twilight: TwilightWindow = field(default_factory=TwilightWindow)

    @property
    def day_length(self) -> timedelta | None:
        if self.sunrise is None or self.sunset is None:
            return None
        return self.sunset - self.sunrise


@dataclass(frozen=True)
class CoordinateConversion:
    """One equatorial position expressed in three systems."""

    right_ascension: float  # Hours
    declination: float  # Degrees
    altitude: float  # Degrees
    azimuth: float  # Degrees
    galactic_longitude: float  # Degrees, simplified formula
    galactic_latitude: float  # Degrees, simplified formula


@dataclass(frozen=True)
class EclipseEvent:
    """A solar or lunar eclipse found by the forward search."""

    type: str  # "solar" or "lunar"
    peak: datetime  # Instant of greatest eclipse
    magnitude: float  # Areal obscuration fraction, 0..1
    obscuration: float  # Same quantity in percent
    is_visible: bool  # Visible from the observer
    max_eclipse_time: datetime | None = None  # Local maximum (solar) or peak (lunar)
    duration: float | None = None  # Minutes of the partial (or penumbral) phase
    kind: str = "partial"  # "penumbral", "partial", "annular" or "total"


@dataclass(frozen=True)
class SunPosition:
    altitude: float
    azimuth: float
    distance_au: float


@dataclass(frozen=True)
class MoonPosition:
    altitude: float
    azimuth: float
    distance_km: float
    phase: float  # Same 0..1 scale as MoonPhase.phase


@dataclass(frozen=True)
class AstronomicalPosition:
    """Sun and Moon as seen from the current location."""

    sun: SunPosition
    moon: MoonPosition
    civil_twilight: TwilightWindow | None
    nautical_twilight: TwilightWindow | None
    astronomical_twilight: TwilightWindow | None
    sunrise: datetime | None
    sunset: datetime | None


@dataclass(frozen=True)
class AstronomySnapshot:
    """Latest astronomical results held by a session."""

    planets: tuple[CelestialBodyPosition, ...] = ()
    moon_phase: MoonPhase | None = None
    moon_position: CelestialBodyPosition | None = None
    sun_moon_times: SunMoonTimes | None = None
    eclipses: tuple[EclipseEvent, ...] = ()
    updated_at: datetime | None = None
    eclipses_updated_at: datetime | None = None

    def next_eclipse(self, after: datetime) -> EclipseEvent | None:
        return next((e for e in self.eclipses if e.peak > after), None)


@dataclass(frozen=True)
class SessionState:
    """The single aggregate broadcast to session subscribers."""

    observer: Observer | None
    frame: CoordinateFrame | None
    timezone: TimezoneEstimate | None
    clock: ClockState
    astronomy: AstronomySnapshot
    mode: Mode
    gps_enabled: bool
    last_update: datetime
    error: str | None = None  # Last user-facing error message
