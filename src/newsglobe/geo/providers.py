"""OpenStreetMap-backed geocoding providers."""

import logging
from typing import Any

import httpx

from newsglobe.data import GeocodeResult

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
PHOTON_URL = "https://photon.komoot.io/api/"
DEFAULT_USER_AGENT = "NewsGlobe/1.0"

logger = logging.getLogger(__name__)


class NominatimProvider:
    """Geocode with the Nominatim search API.

    Nominatim's usage policy requires an identifying ``User-Agent``.

    Args:
        url: Search endpoint.
        user_agent: Value sent as the ``User-Agent`` header.
        timeout: Per-request timeout in seconds.
    """

    name = "nominatim"

    def __init__(
        self,
        *,
        url: str = NOMINATIM_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._user_agent = user_agent
        self._timeout = timeout

    async def geocode(self, client: httpx.AsyncClient, location: str) -> GeocodeResult | None:
        params = {"q": location, "format": "json", "limit": 1, "addressdetails": 1}
        response = await client.get(
            self._url,
            params=params,
            headers={"User-Agent": self._user_agent},
            timeout=self._timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list) or not data:
            return None

        place = data[0]
        return GeocodeResult(
            coordinates=(float(place["lon"]), float(place["lat"])),
            display_name=place.get("display_name", location),
        )


class PhotonProvider:
    """Geocode with the keyless Photon API (GeoJSON feature collection)."""

    name = "photon"

    def __init__(self, *, url: str = PHOTON_URL, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = timeout

    async def geocode(self, client: httpx.AsyncClient, location: str) -> GeocodeResult | None:
        response = await client.get(
            self._url,
            params={"q": location, "limit": 1},
            timeout=self._timeout,
        )
        response.raise_for_status()
        data = response.json()
        features = data.get("features") if isinstance(data, dict) else None
        if not isinstance(features, list) or not features:
            return None

        feature = features[0]
        lon, lat = feature["geometry"]["coordinates"][:2]
        return GeocodeResult(
            coordinates=(float(lon), float(lat)),
            display_name=_photon_display_name(feature.get("properties", {}), location),
        )


def _photon_display_name(properties: dict[str, Any], fallback: str) -> str:
    """Build ``"name, city"`` (or country) from Photon feature properties."""
    name = properties.get("name") or fallback
    area = properties.get("city") or properties.get("country") or ""
    return f"{name}, {area}" if area else name
