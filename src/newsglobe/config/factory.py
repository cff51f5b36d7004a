"""Factory functions to create components from configuration."""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from newsglobe.config.models import (
    ClaudeNormalizerConfig,
    ClaudeReporterConfig,
    DiscoveryConfig,
    GeocodingConfig,
    NewsGlobeConfig,
    NoOpNormalizerConfig,
    NormalizerConfig,
    ReporterConfig,
    SocialConfig,
    StoreConfig,
)
from newsglobe.data import Scope
from newsglobe.errors import MissingCredentialsError
from newsglobe.geo import (
    GeocodeCache,
    LocationResolver,
    NominatimProvider,
    PhotonProvider,
    RateLimiter,
)
from newsglobe.pipeline import AuthorGeoStream, ClaudeNewsReporter, DiscoveryEngine, NewsReporter
from newsglobe.query import ClaudeQueryNormalizer, NoOpQueryNormalizer, QueryNormalizer
from newsglobe.run_logger import RunLogger
from newsglobe.search import XPostFetcher
from newsglobe.store import CacheStore, SessionManager

logger = logging.getLogger(__name__)


def create_normalizer(config: NormalizerConfig) -> QueryNormalizer:
    """Create a query normalizer from config.

    Uses explicit type matching rather than getattr.
    """
    if isinstance(config, ClaudeNormalizerConfig):
        return ClaudeQueryNormalizer(model=config.model, system_prompt=config.system_prompt)
    if isinstance(config, NoOpNormalizerConfig):
        return NoOpQueryNormalizer()
    msg = f"Unknown normalizer config type: {type(config)}"
    raise ValueError(msg)


def create_reporter(config: ReporterConfig) -> NewsReporter:
    if isinstance(config, ClaudeReporterConfig):
        return ClaudeNewsReporter(model=config.model, max_tokens=config.max_tokens)
    msg = f"Unknown reporter config type: {type(config)}"
    raise ValueError(msg)


def create_resolver(config: GeocodingConfig) -> LocationResolver:
    """Create a location resolver with its own cache."""
    return LocationResolver(
        providers=[
            NominatimProvider(
                url=config.nominatim_url,
                user_agent=config.user_agent,
                timeout=config.timeout_seconds,
            ),
            PhotonProvider(url=config.photon_url, timeout=config.timeout_seconds),
        ],
        cache=GeocodeCache(
            ttl_seconds=config.cache_ttl_seconds,
            max_entries=config.cache_max_entries,
        ),
        retries=config.retries,
        backoff_seconds=config.backoff_seconds,
    )


def create_fetcher(config: SocialConfig) -> XPostFetcher:
    return XPostFetcher(
        max_results=config.max_results,
        min_text_length=config.min_text_length,
        timeout=config.timeout_seconds,
    )


def create_store(config: StoreConfig) -> CacheStore:
    """Create the cache store, creating missing tables."""
    sessions = SessionManager(config.database_url, echo=config.echo)
    sessions.create_all()
    return CacheStore(
        sessions,
        query_ttl=timedelta(hours=config.query_ttl_hours),
        event_ttl=timedelta(days=config.event_ttl_days),
    )


@dataclass
class ServiceContext:
    """Process-wide collaborators shared by all requests.

    Request handlers receive this through dependency injection. Discovery
    engines are per request; everything else here is shared.
    """

    config: NewsGlobeConfig
    normalizer: QueryNormalizer
    reporter: NewsReporter
    resolver: LocationResolver
    fetcher: XPostFetcher
    store: CacheStore
    rate_limiter: RateLimiter
    log_enabled: bool = False
    log_dir: Path = Path("logs")

    def require_llm_key(self) -> None:
        """Raise if the LLM key the discovery endpoint depends on is absent.

        Raises:
            MissingCredentialsError: If CLAUDE_API_KEY is not set.
        """
        uses_claude = isinstance(self.config.normalizer, ClaudeNormalizerConfig) or isinstance(
            self.config.reporter, ClaudeReporterConfig
        )
        if uses_claude and not os.environ.get("CLAUDE_API_KEY"):
            raise MissingCredentialsError("CLAUDE_API_KEY config missing")

    def create_engine(self) -> DiscoveryEngine:
        """Build a discovery engine for one run."""
        discovery: DiscoveryConfig = self.config.discovery
        run_logger = RunLogger(log_dir=self.log_dir, enabled=True) if self.log_enabled else None
        return DiscoveryEngine(
            normalizer=self.normalizer,
            reporter=self.reporter,
            resolver=self.resolver,
            fetcher=self.fetcher,
            store=self.store,
            target_counts={
                Scope.GLOBAL: discovery.global_target,
                Scope.REGION: discovery.region_target,
                Scope.LOCAL: discovery.local_target,
            },
            min_fetch=discovery.min_fetch,
            max_fetch=discovery.max_fetch,
            max_attempts=discovery.max_attempts,
            time_budget_seconds=discovery.time_budget_seconds,
            max_event_age=timedelta(days=discovery.max_event_age_days),
            base_temperature=discovery.base_temperature,
            temperature_step=discovery.temperature_step,
            run_logger=run_logger,
        )

    def create_geo_stream(self) -> AuthorGeoStream:
        """Build a poller for one author geo stream."""
        social = self.config.social
        return AuthorGeoStream(
            fetcher=self.fetcher,
            resolver=self.resolver,
            rate_limiter=self.rate_limiter,
            poll_interval=social.geo_poll_interval_seconds,
            max_duration=social.geo_stream_max_seconds,
            batch_size=social.geo_stream_batch,
            concurrency=self.config.geocoding.batch_concurrency,
        )

    def close(self) -> None:
        self.store.close()


def create_from_config(
    config: NewsGlobeConfig,
    *,
    log_override: bool | None = None,
    log_dir_override: str | None = None,
) -> ServiceContext:
    """Create the service context from root config.

    Args:
        config: Root configuration.
        log_override: Override the config's logging.enabled setting.
        log_dir_override: Override the config's logging.log_dir setting.

    Returns:
        The service context.
    """
    log_enabled = log_override if log_override is not None else config.logging.enabled
    log_dir = Path(log_dir_override if log_dir_override is not None else config.logging.log_dir)

    context = ServiceContext(
        config=config,
        normalizer=create_normalizer(config.normalizer),
        reporter=create_reporter(config.reporter),
        resolver=create_resolver(config.geocoding),
        fetcher=create_fetcher(config.social),
        store=create_store(config.store),
        rate_limiter=RateLimiter(
            max_requests=config.geocoding.rate_limit_requests,
            window_seconds=config.geocoding.rate_limit_window_seconds,
        ),
        log_enabled=log_enabled,
        log_dir=log_dir,
    )
    logger.info(f"Service context ready (store: {config.store.database_url.split('://')[0]})")
    return context
