"""Tests for the command-line report."""

from datetime import datetime

import pytest
from pytz import utc

from conftest import FakeSource, FakeWallClock
from emeraldobservatory import cli
from emeraldobservatory.clock import Clock
from emeraldobservatory.ephemeris import Ephemeris
from emeraldobservatory.session import ObservationSession


@pytest.fixture
def fake_session(monkeypatch):
    """Make the CLI build its session on FakeSource instead of de421."""
    source = FakeSource()
    wall_clock = FakeWallClock(datetime(2024, 10, 15, 12, 0, tzinfo=utc))

    def from_settings(cls, settings=None, geolocation=None):
        return cls(Ephemeris(source), Clock(source, wall_clock=wall_clock), geolocation, settings)

    monkeypatch.setattr(ObservationSession, "from_settings", classmethod(from_settings))
    for name in ("OBSERVATORY_LANG", "OBSERVATORY_ECLIPSE_SEARCH_DAYS"):
        monkeypatch.delenv(name, raising=False)
    return source


def test_parse_when_local() -> None:
    """A plain date and time is local to the site's zone."""
    when = cli.parse_when("1995-01-15 00:00", "Asia/Seoul")
    assert when == datetime(1995, 1, 14, 15, 0, tzinfo=utc)


def test_parse_when_with_offset() -> None:
    """An explicit offset wins over the site's zone."""
    when = cli.parse_when("2024-04-08T14:00:00-04:00", "Asia/Seoul")
    assert when == datetime(2024, 4, 8, 18, 0, tzinfo=utc)


def test_parse_when_unknown_zone() -> None:
    """Synthesized zone labels fall back to UTC."""
    assert cli.parse_when("2024-01-01 06:30", "UTC+9:00") == datetime(2024, 1, 1, 6, 30, tzinfo=utc)


def test_report(fake_session, capsys) -> None:
    """The report lists location, timezone, clocks, planets and eclipses."""
    assert cli.main(["--lat", "40.7128", "--lon", "-74.0060"]) == 0
    out = capsys.readouterr().out
    assert "Location: 40.712800°, -74.006000°" in out
    assert "UTM: 18N" in out
    assert "Timezone: America/New_York (EDT, UTC-5:00)" in out
    assert "UTC Time: 2024-10-15 12:00:00" in out
    assert "Venus" in out
    assert "Upcoming eclipses:" in out


def test_report_korean(fake_session, capsys) -> None:
    """--lang ko switches the labels."""
    assert cli.main(["--lat", "35.1547", "--lon", "129.0397", "--lang", "ko"]) == 0
    out = capsys.readouterr().out
    assert "위치: 35.154700°, 129.039700°" in out
    assert "다가오는 식:" in out


def test_time_travel_option(fake_session, capsys) -> None:
    """--when pins the clock to the given local time."""
    assert cli.main(["--lat", "37.5665", "--lon", "126.978", "--when", "1995-01-15 00:00"]) == 0
    out = capsys.readouterr().out
    assert "UTC Time: 1995-01-14 15:00:00" in out


def test_out_of_range(fake_session, capsys) -> None:
    """Invalid coordinates exit with status 1 and the range message."""
    assert cli.main(["--lat", "91", "--lon", "0"]) == 1
    assert "Latitude must be between -90 and 90 degrees" in capsys.readouterr().err


def test_missing_location() -> None:
    """Without any way to place the site argparse exits."""
    with pytest.raises(SystemExit):
        cli.main(["--lat", "10"])


def test_offset_moves_astronomy(fake_session, capsys, monkeypatch) -> None:
    """--offset recomputes the planets for the shifted instant."""
    seen = []
    planetary_positions = Ephemeris.planetary_positions

    def recording(self, when, observer):
        seen.append(when)
        return planetary_positions(self, when, observer)

    monkeypatch.setattr(Ephemeris, "planetary_positions", recording)
    assert cli.main(["--lat", "40.7128", "--lon", "-74.0060", "--offset", "30"]) == 0
    assert "UTC Time: 2024-10-15 12:30:00" in capsys.readouterr().out
    assert seen[-1] == datetime(2024, 10, 15, 12, 30, tzinfo=utc)


def test_bad_when(fake_session, capsys) -> None:
    """A malformed --when exits with status 2 and no traceback."""
    assert cli.main(["--lat", "40.7128", "--lon", "-74.0060", "--when", "next tuesday"]) == 2
    assert "invalid --when value: 'next tuesday'" in capsys.readouterr().err
