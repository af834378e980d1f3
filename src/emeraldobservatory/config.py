"""Configuration: ephemeris location, refresh cadences and provider settings from environment."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_ROOT = Path(__file__).parent.parent.parent

DEFAULT_EPHEMERIS_DIR = str(_ROOT / "resources")
DEFAULT_EPHEMERIS_FILE = "de421.bsp"
DEFAULT_GEOLOCATION_URL = "https://ipapi.co/json/"


@dataclass(frozen=True)
class Settings:
    """Runtime settings. Every refresh cadence is a caller-supplied value."""

    ephemeris_dir: str = DEFAULT_EPHEMERIS_DIR
    ephemeris_file: str = DEFAULT_EPHEMERIS_FILE
    clock_interval: float = 1.0  # Seconds between live clock ticks
    astronomy_interval: float = 60.0  # Seconds between planet/moon/sun refreshes
    eclipse_interval: float = 24 * 3600.0  # Seconds between eclipse rescans
    eclipse_search_days: int = 730
    gps_interval: float = 30.0  # Seconds between polled fixes while GPS tracking
    geolocation_url: str = DEFAULT_GEOLOCATION_URL
    geolocation_timeout: float = 10.0
    lang: str = "en"
    log_level: str = "INFO"


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def load_settings(dotenv: bool = True) -> Settings:
    """Build Settings from OBSERVATORY_* environment variables.

    Args:
        dotenv: Read a ``.env`` file into the environment first.

    Returns:
        Settings with defaults for every variable that is unset or empty.

    Raises:
        ValueError: A numeric variable does not parse.
    """
    if dotenv:
        load_dotenv()
    return Settings(
        ephemeris_dir=os.environ.get("OBSERVATORY_EPHEMERIS_DIR") or DEFAULT_EPHEMERIS_DIR,
        ephemeris_file=os.environ.get("OBSERVATORY_EPHEMERIS_FILE") or DEFAULT_EPHEMERIS_FILE,
        clock_interval=_float("OBSERVATORY_CLOCK_INTERVAL", 1.0),
        astronomy_interval=_float("OBSERVATORY_ASTRONOMY_INTERVAL", 60.0),
        eclipse_interval=_float("OBSERVATORY_ECLIPSE_INTERVAL", 24 * 3600.0),
        eclipse_search_days=int(_float("OBSERVATORY_ECLIPSE_SEARCH_DAYS", 730)),
        gps_interval=_float("OBSERVATORY_GPS_INTERVAL", 30.0),
        geolocation_url=os.environ.get("OBSERVATORY_GEOLOCATION_URL") or DEFAULT_GEOLOCATION_URL,
        geolocation_timeout=_float("OBSERVATORY_GEOLOCATION_TIMEOUT", 10.0),
        lang=os.environ.get("OBSERVATORY_LANG") or "en",
        log_level=os.environ.get("OBSERVATORY_LOG_LEVEL") or "INFO",
    )
