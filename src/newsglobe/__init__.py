"""NewsGlobe: streaming discovery of breaking news, placed on a map."""

from newsglobe.api import create_app
from newsglobe.config import NewsGlobeConfig, ServiceContext, create_from_config, load_config
from newsglobe.data import (
    APICallUsage,
    Candidate,
    GeocodeResult,
    NewsEvent,
    NormalizedQuery,
    Scope,
    SearchQuery,
    SocialPost,
    Usage,
)
from newsglobe.errors import MissingCredentialsError
from newsglobe.geo import GeocodeCache, GeocodingError, LocationResolver, RateLimiter
from newsglobe.pipeline import ClaudeNewsReporter, DiscoveryEngine, NewsReporter
from newsglobe.query import ClaudeQueryNormalizer, NoOpQueryNormalizer, QueryNormalizer
from newsglobe.run_logger import RunLogger
from newsglobe.search import SocialPostFetcher, XPostFetcher
from newsglobe.store import CacheStore, PersistenceConflictError
from newsglobe.stream import StreamRelay

__all__ = [
    # Models
    "APICallUsage",
    "Candidate",
    "GeocodeResult",
    "NewsEvent",
    "NormalizedQuery",
    "Scope",
    "SearchQuery",
    "SocialPost",
    "Usage",
    # Errors
    "GeocodingError",
    "MissingCredentialsError",
    "PersistenceConflictError",
    # Protocols
    "NewsReporter",
    "QueryNormalizer",
    "SocialPostFetcher",
    # Components
    "CacheStore",
    "ClaudeNewsReporter",
    "ClaudeQueryNormalizer",
    "DiscoveryEngine",
    "GeocodeCache",
    "LocationResolver",
    "NoOpQueryNormalizer",
    "RateLimiter",
    "StreamRelay",
    "XPostFetcher",
    # Logging
    "RunLogger",
    # Config
    "NewsGlobeConfig",
    "ServiceContext",
    "create_app",
    "create_from_config",
    "load_config",
]
