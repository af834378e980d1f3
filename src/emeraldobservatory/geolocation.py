"""Position providers and address geocoding."""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Protocol

import httpx
from pytz import utc

from emeraldobservatory.models import Observer

logger = logging.getLogger(__name__)

USER_AGENT = "EmeraldObservatory/1.0"


class GeolocationErrorReason(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class GeolocationError(Exception):
    """A provider could not produce a fix. Recoverable by retrying."""

    def __init__(self, reason: GeolocationErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class GeocodingError(Exception):
    """Geocoder call failure."""


class GeolocationProvider(Protocol):
    async def get_current_position(self) -> Observer: ...

    def watch_position(self) -> AsyncIterator[Observer]: ...


class StaticGeolocationProvider:
    """Always reports the same fix. For manually configured sites."""

    def __init__(self, observer: Observer, interval: float = 30.0) -> None:
        self._observer = observer
        self._interval = interval

    async def get_current_position(self) -> Observer:
        return self._observer

    async def watch_position(self) -> AsyncIterator[Observer]:
        while True:
            yield self._observer
            await asyncio.sleep(self._interval)


class IpGeolocationProvider:
    """Coarse position from an IP geolocation JSON endpoint.

    The endpoint must answer with ``latitude`` and ``longitude`` fields
    (ipapi.co format). Accuracy is city level and is not reported.
    """

    def __init__(
        self,
        url: str = "https://ipapi.co/json/",
        timeout: float = 10.0,
        interval: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._interval = interval
        self._client = client

    async def _fetch(self) -> dict:
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            resp = await self._client.get(self._url, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.get(self._url, headers=headers, timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()

    async def get_current_position(self) -> Observer:
        """One-shot fix.

        Raises:
            GeolocationError: TIMEOUT on a timed-out request, PERMISSION_DENIED
                on 401/403/429, UNAVAILABLE for anything else.
        """
        try:
            data = await self._fetch()
        except httpx.TimeoutException as e:
            raise GeolocationError(GeolocationErrorReason.TIMEOUT, f"Geolocation error: {e}") from e
        except httpx.HTTPStatusError as e:
            reason = (
                GeolocationErrorReason.PERMISSION_DENIED
                if e.response.status_code in (401, 403, 429)
                else GeolocationErrorReason.UNAVAILABLE
            )
            raise GeolocationError(reason, f"Geolocation error: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise GeolocationError(
                GeolocationErrorReason.UNAVAILABLE, f"Geolocation error: {e}"
            ) from e

        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
        except (KeyError, TypeError, ValueError) as e:
            raise GeolocationError(
                GeolocationErrorReason.UNAVAILABLE,
                f"Geolocation error: no coordinates in response ({data.get('reason', e)})"
                if isinstance(data, dict)
                else "Geolocation error: malformed response",
            ) from e

        return Observer(
            latitude=latitude,
            longitude=longitude,
            altitude=0.0,
            captured_at=datetime.now(utc),
        )

    async def watch_position(self) -> AsyncIterator[Observer]:
        """Poll for a new fix every ``interval`` seconds. Errors end the watch."""
        while True:
            yield await self.get_current_position()
            await asyncio.sleep(self._interval)


def geocode_address(address: str, altitude: float = 0.0) -> Observer:
    """Resolve an address with Nominatim (OpenStreetMap).

    Args:
        address: Address string in any language.
        altitude: Altitude to attach to the fix; geocoders do not report one.

    Returns:
        Observer at the first match.

    Raises:
        GeocodingError: On API error or when the address cannot be found.
    """
    params = {"q": address, "format": "json", "limit": 1}
    headers = {"User-Agent": USER_AGENT}
    try:
        resp = httpx.get(
            "https://nominatim.openstreetmap.org/search",
            params=params,
            headers=headers,
            timeout=10,
        )
        resp.raise_for_status()
        results = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise GeocodingError(f"Nominatim error: {e}") from e
    if not results:
        raise GeocodingError(f"Address not found: {address}")
    r = results[0]
    logger.info("Geocoded %r to %s", address, r.get("display_name"))
    return Observer(
        latitude=float(r["lat"]),
        longitude=float(r["lon"]),
        altitude=altitude,
        captured_at=datetime.now(utc),
    )
