from newsglobe.geo.base import (
    GeocodingError,
    GeocodingProvider,
    GeocodingRateLimitedError,
    GeocodingTimeoutError,
)
from newsglobe.geo.cache import GeocodeCache
from newsglobe.geo.providers import NominatimProvider, PhotonProvider
from newsglobe.geo.rate_limit import RateLimitDecision, RateLimiter
from newsglobe.geo.resolver import LocationResolver

__all__ = [
    "GeocodeCache",
    "GeocodingError",
    "GeocodingProvider",
    "GeocodingRateLimitedError",
    "GeocodingTimeoutError",
    "LocationResolver",
    "NominatimProvider",
    "PhotonProvider",
    "RateLimitDecision",
    "RateLimiter",
]
