from typing import Protocol

import httpx

from newsglobe.data import GeocodeResult


class GeocodingError(Exception):
    """Raised when a location could not be resolved after all retries."""


class GeocodingRateLimitedError(GeocodingError):
    """The upstream provider kept answering 429."""


class GeocodingTimeoutError(GeocodingError):
    """Every attempt timed out."""


class GeocodingProvider(Protocol):
    """Interface for a single forward-geocoding backend."""

    name: str

    async def geocode(self, client: httpx.AsyncClient, location: str) -> GeocodeResult | None:
        """Resolve a place name.

        Args:
            client: Shared HTTP client; the provider applies its own timeout.
            location: Free-text place name.

        Returns:
            The result, or None if the provider knows no such place.

        Raises:
            httpx.TransportError: On network failure or timeout.
            httpx.HTTPStatusError: On a non-2xx response.
        """
        ...
