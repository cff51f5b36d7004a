"""Location resolution with caching, provider fallback and retries."""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence

import httpx

from newsglobe.data import GeocodeResult
from newsglobe.geo.base import (
    GeocodingError,
    GeocodingProvider,
    GeocodingRateLimitedError,
    GeocodingTimeoutError,
)
from newsglobe.geo.cache import GeocodeCache
from newsglobe.geo.providers import NominatimProvider, PhotonProvider

logger = logging.getLogger(__name__)


class LocationResolver:
    """Resolve free-text place names to ``(lon, lat)`` coordinates.

    Providers form an ordered fallback chain: the next provider is tried only
    when the current one fails at the transport level (connection refused,
    DNS, timeout). An HTTP error response from a provider is final for that
    attempt. Each resolution is retried ``retries`` extra times with linear
    backoff, honouring ``Retry-After`` on 429 responses.

    Args:
        providers: Ordered provider chain (default Nominatim, then Photon).
        cache: Shared result cache.
        retries: Extra attempts after the first failure.
        backoff_seconds: Linear backoff unit (attempt N waits N * unit).
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        *,
        providers: Sequence[GeocodingProvider] | None = None,
        cache: GeocodeCache | None = None,
        retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._providers = list(providers) if providers else [NominatimProvider(), PhotonProvider()]
        self._cache = cache if cache is not None else GeocodeCache()
        self._retries = retries
        self._backoff = backoff_seconds
        self._sleep = sleep

    @property
    def cache(self) -> GeocodeCache:
        return self._cache

    async def cached(self, location: str) -> GeocodeResult | None:
        """Return a live cache entry without touching any provider."""
        result = await self._cache.get(location)
        if result is None:
            return None
        return dataclasses.replace(result, cached=True)

    async def resolve(self, location: str) -> GeocodeResult | None:
        """Resolve a place name, serving from cache when possible.

        Args:
            location: Free-text place name.

        Returns:
            The geocode result, or None if no provider knows the place.

        Raises:
            GeocodingError: If every attempt failed.
        """
        hit = await self.cached(location)
        if hit is not None:
            return hit

        result = await self._resolve_with_retry(location.strip())
        if result is not None:
            await self._cache.put(location, result)
        return result

    async def resolve_many(
        self, locations: Sequence[str], *, concurrency: int = 5
    ) -> list[GeocodeResult | None]:
        """Resolve several places in parallel, at most ``concurrency`` at a time.

        Failures map to None so one bad place never sinks the batch.
        """
        semaphore = asyncio.Semaphore(concurrency)

        async def _one(location: str) -> GeocodeResult | None:
            async with semaphore:
                try:
                    return await self.resolve(location)
                except GeocodingError as e:
                    logger.warning(f"Geocoding error for {location!r}: {e}")
                    return None

        return list(await asyncio.gather(*(_one(loc) for loc in locations)))

    async def _resolve_with_retry(self, location: str) -> GeocodeResult | None:
        error: GeocodingError = GeocodingError("Failed after retries")
        for attempt in range(self._retries + 1):
            wait = (attempt + 1) * self._backoff
            try:
                return await self._run_chain(location)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    if (retry_after := _retry_after(e.response)) is not None:
                        wait = retry_after
                    error = GeocodingRateLimitedError(
                        "Rate limit exceeded. Please try again later."
                    )
                else:
                    error = GeocodingError(f"Geocoding failed: {status}")
            except httpx.TimeoutException:
                error = GeocodingTimeoutError("Geocoding request timed out")
            except httpx.TransportError as e:
                error = GeocodingError(f"Geocoding failed: Network Error ({e})")
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                error = GeocodingError(f"Malformed geocoding response: {e}")

            if attempt < self._retries:
                logger.info(
                    f"Geocoding attempt {attempt + 1} for {location!r} failed ({error}), "
                    f"retrying in {wait:.1f}s"
                )
                await self._sleep(wait)

        raise error

    async def _run_chain(self, location: str) -> GeocodeResult | None:
        async with httpx.AsyncClient() as client:
            transport_error: httpx.TransportError | None = None
            for provider in self._providers:
                try:
                    return await provider.geocode(client, location)
                except httpx.TransportError as e:
                    logger.warning(f"{provider.name} failed for {location!r}, trying next provider")
                    transport_error = e
        if transport_error is None:
            raise GeocodingError("No geocoding providers configured")
        raise transport_error


def _retry_after(response: httpx.Response) -> float | None:
    """Parse a ``Retry-After`` header given in seconds."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
