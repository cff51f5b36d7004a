"""Pydantic configuration models for NewsGlobe components."""

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from newsglobe.geo.providers import DEFAULT_USER_AGENT, NOMINATIM_URL, PHOTON_URL

# ============================================================
# Normalizer Configs
# ============================================================


class ClaudeNormalizerConfig(BaseModel):
    """Configuration for ClaudeQueryNormalizer."""

    type: Literal["claude"] = "claude"
    model: str = "claude-haiku-4-5-20251001"
    system_prompt: str | None = None

    model_config = {"frozen": True}


class NoOpNormalizerConfig(BaseModel):
    """Use the raw query as cache key with global scope."""

    type: Literal["noop"] = "noop"

    model_config = {"frozen": True}


NormalizerConfig = Annotated[
    ClaudeNormalizerConfig | NoOpNormalizerConfig,
    Field(discriminator="type"),
]


# ============================================================
# Reporter Configs
# ============================================================


class ClaudeReporterConfig(BaseModel):
    """Configuration for ClaudeNewsReporter."""

    type: Literal["claude"] = "claude"
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 8192

    model_config = {"frozen": True}


ReporterConfig = Annotated[
    ClaudeReporterConfig,
    Field(discriminator="type"),
]


# ============================================================
# Discovery Config
# ============================================================


class DiscoveryConfig(BaseModel):
    """Budgets of the discovery loop."""

    global_target: int = 40
    region_target: int = 20
    local_target: int = 5
    min_fetch: int = Field(default=5, ge=1)
    max_fetch: int = Field(default=20, ge=1)
    max_attempts: int = Field(default=10, ge=1)
    time_budget_seconds: float = 90.0
    max_event_age_days: int = 7
    base_temperature: float = 0.2
    temperature_step: float = 0.1

    model_config = {"frozen": True}


# ============================================================
# Geocoding Config
# ============================================================


class GeocodingConfig(BaseModel):
    """Configuration for the location resolver, its cache and the endpoint rate limit."""

    nominatim_url: str = NOMINATIM_URL
    photon_url: str = PHOTON_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = 5.0
    retries: int = Field(default=2, ge=0)
    backoff_seconds: float = 1.0
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_max_entries: int = Field(default=1000, ge=1)
    cache_purge_interval_seconds: float = 60 * 60
    rate_limit_requests: int = Field(default=50, ge=1)
    rate_limit_window_seconds: float = 60.0
    batch_concurrency: int = Field(default=5, ge=1)

    model_config = {"frozen": True}


# ============================================================
# Social Config
# ============================================================


class SocialConfig(BaseModel):
    """Configuration for XPostFetcher and the author geo stream."""

    max_results: int = Field(default=10, ge=10, le=100)
    min_text_length: int = 10
    timeout_seconds: float = 30.0
    geo_poll_interval_seconds: float = Field(default=5.0, gt=0)
    geo_stream_max_seconds: float = Field(default=1800.0, gt=0)
    geo_stream_batch: int = Field(default=5, ge=1)

    model_config = {"frozen": True}


# ============================================================
# Store Config
# ============================================================


class StoreConfig(BaseModel):
    """Configuration for the persistent news cache."""

    database_url: str = "sqlite:///newsglobe.db"
    query_ttl_hours: float = 6
    event_ttl_days: float = 7
    echo: bool = False

    model_config = {"frozen": True}


# ============================================================
# Logging Config
# ============================================================


class LoggingConfig(BaseModel):
    """Configuration for per-run JSON logging."""

    enabled: bool = False
    log_dir: str = "logs"

    model_config = {"frozen": True}


# ============================================================
# Server Config
# ============================================================


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = {"frozen": True}


# ============================================================
# Root Config
# ============================================================


class NewsGlobeConfig(BaseModel):
    """Root configuration for NewsGlobe."""

    normalizer: ClaudeNormalizerConfig | NoOpNormalizerConfig = Field(
        default_factory=ClaudeNormalizerConfig, discriminator="type"
    )
    reporter: ClaudeReporterConfig = Field(default_factory=ClaudeReporterConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    geocoding: GeocodingConfig = Field(default_factory=GeocodingConfig)
    social: SocialConfig = Field(default_factory=SocialConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    model_config = {"frozen": True}
