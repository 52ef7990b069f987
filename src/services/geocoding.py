"""Reverse geocoding of browser coordinates to an MGNREGA district name.

Backed by OpenStreetMap Nominatim.  Its usage policy requires a
descriptive ``User-Agent`` and at most one request per second, so
successful detections are cached for 24 hours on coordinates truncated
to three decimal places (see :func:`~src.services.cache_keys.geocode_key`).
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from src.models.metrics import normalise_name
from src.services.cache_keys import GEOCODE_TTL, geocode_key
from src.services.errors import (
    DistrictNotDetectedError,
    GeocodingError,
    InvalidCoordinatesError,
    OutOfRegionError,
)

if TYPE_CHECKING:
    from src.services.cache import CacheManager

logger = structlog.get_logger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org"
DEFAULT_USER_AGENT = "MGNREGA Dashboard App (mgnrega-dashboard-project)"

# Address fields that carry the district, most specific first.
_DISTRICT_FIELDS = ("county", "state_district", "city_district")
_DISTRICT_SUFFIX = re.compile(r"\s+district\b", re.IGNORECASE)


@dataclass(frozen=True)
class GeoDetection:
    district: str
    state: str
    cached: bool = False

    def to_dict(self) -> dict[str, str]:
        return {"state": self.state, "district": self.district}


def _coordinate(value: Any, name: str, bound: float) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidCoordinatesError(f"{name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinatesError(f"{name} must be a number") from exc
    if not math.isfinite(number) or not -bound <= number <= bound:
        raise InvalidCoordinatesError(f"{name} must be between -{bound:g} and {bound:g}")
    return number


def clean_district_name(raw: str) -> str:
    """``"Lucknow District"`` -> ``"LUCKNOW"``."""
    return normalise_name(_DISTRICT_SUFFIX.sub("", raw, count=1))


class ReverseGeocoder:
    """Detects the district for a latitude/longitude pair.

    Parameters
    ----------
    cache:
        Cache for successful detections.
    base_url:
        Nominatim root URL.
    user_agent:
        Sent with every request, as Nominatim requires.
    target_state:
        When set, locations in any other state are rejected.
    timeout:
        Per-request timeout in seconds.
    http_client:
        Pre-built client; closed by :meth:`close` only if created here.
    """

    def __init__(
        self,
        cache: CacheManager,
        *,
        base_url: str = NOMINATIM_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        target_state: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cache = cache
        self._url = f"{base_url.rstrip('/')}/reverse"
        self._target_state = normalise_name(target_state) if target_state else None
        self._timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def detect_district(self, latitude: Any, longitude: Any) -> GeoDetection:
        """Resolve coordinates to a district.

        Raises
        ------
        InvalidCoordinatesError
            Missing, non-numeric or out-of-range coordinates (no I/O done).
        OutOfRegionError
            The location is outside the configured target state.
        DistrictNotDetectedError
            The provider returned no district-like address field.
        GeocodingError
            The provider call failed.
        """
        lat = _coordinate(latitude, "latitude", 90.0)
        lon = _coordinate(longitude, "longitude", 180.0)

        key = geocode_key(lat, lon)
        cached = await self._cache.get(key)
        if isinstance(cached, dict) and cached.get("district"):
            return GeoDetection(
                district=cached["district"],
                state=cached.get("state", ""),
                cached=True,
            )

        address = await self._reverse(lat, lon)

        detected_state = address.get("state")
        if self._target_state and (
            not detected_state or self._target_state not in normalise_name(detected_state)
        ):
            logger.info("geocode.out_of_region", detected_state=detected_state)
            raise OutOfRegionError(self._target_state, detected_state)

        raw_district = next(
            (address[field] for field in _DISTRICT_FIELDS if address.get(field)),
            None,
        )
        if not raw_district:
            raise DistrictNotDetectedError("Could not determine district for this location")

        detection = GeoDetection(
            district=clean_district_name(raw_district),
            state=self._target_state or normalise_name(detected_state or ""),
        )
        await self._cache.set(key, detection.to_dict(), ttl_seconds=GEOCODE_TTL)
        logger.info("geocode.detected", district=detection.district, state=detection.state)
        return detection

    async def _reverse(self, lat: float, lon: float) -> dict[str, Any]:
        params = {
            "format": "json",
            "lat": repr(lat),
            "lon": repr(lon),
            "zoom": "10",
            "addressdetails": "1",
        }
        try:
            response = await self._client.get(
                self._url, params=params, headers=self._headers, timeout=self._timeout
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("geocode.request_failed", error=str(exc))
            raise GeocodingError("Reverse geocoding failed") from exc

        address = body.get("address") if isinstance(body, dict) else None
        return address if isinstance(address, dict) else {}
