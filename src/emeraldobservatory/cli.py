"""CLI entry point: one-shot observatory report, or a live clock for a while.

    emerald-observatory --lat 40.7128 --lon -74.0060
    emerald-observatory --address "부산광역시 가야동" --when "1995-01-15 00:00"
    emerald-observatory --ip --watch 10
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime

import pytz
from pytz import utc

from emeraldobservatory.config import Settings, load_settings
from emeraldobservatory.events import EventKind, SessionEvent
from emeraldobservatory.geodesy import CoordinateRangeError, format_coordinates, format_utc_offset
from emeraldobservatory.geolocation import (
    GeocodingError,
    GeolocationError,
    IpGeolocationProvider,
    geocode_address,
)
from emeraldobservatory.i18n import t
from emeraldobservatory.models import SessionState
from emeraldobservatory.session import ObservationSession

logger = logging.getLogger(__name__)


def _configure_logging(level: str, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="emerald-observatory",
        description="Location, time and sky report for an observing site.",
    )
    where = parser.add_mutually_exclusive_group()
    where.add_argument("--address", help="Resolve the site from an address (Nominatim)")
    where.add_argument("--ip", action="store_true", help="Use IP geolocation for the site")
    parser.add_argument("--lat", type=float, help="Latitude in degrees, north positive")
    parser.add_argument("--lon", type=float, help="Longitude in degrees, east positive")
    parser.add_argument("--alt", type=float, default=0.0, help="Altitude in metres")
    parser.add_argument(
        "--when",
        help="'YYYY-MM-DD HH:MM' local to the site (or ISO 8601 with offset); default now",
    )
    parser.add_argument("--offset", type=float, default=0.0, help="Manual clock offset in minutes")
    parser.add_argument("--days", type=int, help="Eclipse search window in days")
    parser.add_argument("--watch", type=float, help="Run the live clock for this many seconds")
    parser.add_argument("--lang", choices=("en", "ko"), help="Report language")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)
    if not (args.address or args.ip) and (args.lat is None or args.lon is None):
        parser.error("give --lat and --lon, --address or --ip")
    return args


def parse_when(text: str, zone_name: str) -> datetime:
    """Parse ``text``; a value without an offset is local time in ``zone_name``."""
    try:
        when = datetime.strptime(text, "%Y-%m-%d %H:%M")
    except ValueError:
        when = datetime.fromisoformat(text)
    if when.tzinfo is not None:
        return when.astimezone(utc)
    try:
        zone = pytz.timezone(zone_name)
    except pytz.UnknownTimeZoneError:
        zone = utc
    return zone.localize(when).astimezone(utc)


def _fmt(when: datetime | None, zone, lang: str) -> str:
    if when is None:
        return t("none_found", lang)
    return when.astimezone(zone).strftime("%Y-%m-%d %H:%M")


def format_report(session: ObservationSession, lang: str = "en") -> list[str]:
    """Lines of the observatory report for the session's current state."""
    state: SessionState = session.state
    clock = session.clock
    zone = clock.current_time().tzinfo
    lines: list[str] = []

    observer = state.observer
    lines.append(
        f"{t('label_location', lang)}: "
        + (
            format_coordinates(observer.latitude, observer.longitude)
            if observer
            else t("not_set", lang)
        )
    )
    if state.frame is not None:
        utm = state.frame.utm
        lines.append(
            f"{t('label_utm', lang)}: {utm.zone}{utm.hemisphere} "
            f"{utm.easting:.1f}E {utm.northing:.1f}N"
        )
    if state.timezone is not None:
        tz = state.timezone
        lines.append(
            f"{t('label_timezone', lang)}: {tz.name} ({tz.abbreviation}, "
            f"{format_utc_offset(tz.offset_minutes)})"
        )

    lines.append(f"{t('label_utc_time', lang)}: {clock.utc_time():%Y-%m-%d %H:%M:%S}")
    lines.append(f"{t('label_solar_time', lang)}: {clock.solar_time():%H:%M:%S}")
    lines.append(f"{t('label_sidereal_time', lang)}: {clock.sidereal_time():%H:%M:%S}")

    astronomy = state.astronomy
    phase = astronomy.moon_phase
    if phase is not None:
        lines.append(
            f"{t('label_moon', lang)}: {phase.phase_name}, {phase.illumination:.1f}% "
            f"(age {phase.age:.1f} d, new {_fmt(phase.next_new_moon, zone, lang)}, "
            f"full {_fmt(phase.next_full_moon, zone, lang)})"
        )
    times = astronomy.sun_moon_times
    if times is not None:
        lines.append(
            f"{t('label_sun_times', lang)}: "
            f"sunrise {_fmt(times.sunrise, zone, lang)}, sunset {_fmt(times.sunset, zone, lang)}, "
            f"moonrise {_fmt(times.moonrise, zone, lang)}, moonset {_fmt(times.moonset, zone, lang)}"
        )
    if astronomy.planets:
        lines.append(f"{t('label_planets', lang)}:")
        for p in astronomy.planets:
            marker = "*" if p.is_visible else " "
            lines.append(
                f"  {marker} {p.name:<8} alt {p.altitude:6.1f}° az {p.azimuth:6.1f}° "
                f"mag {p.magnitude:5.1f} {p.constellation or ''}"
            )
    lines.append(f"{t('label_eclipses', lang)}:")
    if not astronomy.eclipses:
        lines.append(f"  {t('none_found', lang)}")
    for e in astronomy.eclipses:
        seen = "visible" if e.is_visible else "not visible"
        lines.append(
            f"  {_fmt(e.peak, zone, lang)} {e.kind} {e.type} eclipse, "
            f"{e.obscuration:.0f}% ({seen})"
        )
    if state.error:
        lines.append(state.error)
    return lines


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    lang = settings.lang
    provider = None
    if args.ip:
        provider = IpGeolocationProvider(
            settings.geolocation_url, settings.geolocation_timeout, settings.gps_interval
        )
    session = ObservationSession.from_settings(settings, geolocation=provider)
    try:
        if args.ip:
            await session.get_current_location()
        elif args.address:
            fix = geocode_address(args.address, args.alt)
            session.set_location(fix.latitude, fix.longitude, fix.altitude)
        else:
            session.set_location(args.lat, args.lon, args.alt)
    except GeolocationError:
        print(session.state.error, file=sys.stderr)
        return 1
    except GeocodingError as e:
        print(t("error_address", lang, error=e), file=sys.stderr)
        return 1
    except CoordinateRangeError as e:
        print(e, file=sys.stderr)
        return 1

    if args.when:
        try:
            when = parse_when(args.when, session.state.timezone.name)
        except ValueError:
            print(
                f"emerald-observatory: error: invalid --when value: {args.when!r}",
                file=sys.stderr,
            )
            session.close()
            return 2
        session.set_time(when)
    if args.offset:
        session.set_offset(args.offset)
        session.refresh_astronomy()

    if args.watch:
        def show(event: SessionEvent) -> None:
            if event.kind is EventKind.CLOCK:
                clock = session.clock
                print(
                    f"{clock.current_time():%Y-%m-%d %H:%M:%S %Z}  "
                    f"{t('label_sidereal_time', lang)} {clock.sidereal_time():%H:%M:%S}"
                )

        async with session:
            session.subscribe(show)
            await asyncio.sleep(args.watch)
        return 0

    session.refresh_eclipses()
    for line in format_report(session, lang):
        print(line)
    session.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        settings = load_settings()
    except ValueError as e:
        print(e, file=sys.stderr)
        return 2
    if args.lang:
        settings = replace(settings, lang=args.lang)
    if args.days:
        settings = replace(settings, eclipse_search_days=args.days)
    _configure_logging(settings.log_level, args.verbose)
    logger.debug("Settings: %s", settings)
    return asyncio.run(_run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
