"""Configuration module for NewsGlobe."""

from newsglobe.config.factory import ServiceContext, create_from_config
from newsglobe.config.loader import get_default_config_path, load_config
from newsglobe.config.models import (
    ClaudeNormalizerConfig,
    ClaudeReporterConfig,
    DiscoveryConfig,
    GeocodingConfig,
    LoggingConfig,
    NewsGlobeConfig,
    NoOpNormalizerConfig,
    NormalizerConfig,
    ReporterConfig,
    ServerConfig,
    SocialConfig,
    StoreConfig,
)

__all__ = [
    "ClaudeNormalizerConfig",
    "ClaudeReporterConfig",
    "DiscoveryConfig",
    "GeocodingConfig",
    "LoggingConfig",
    "NewsGlobeConfig",
    "NoOpNormalizerConfig",
    "NormalizerConfig",
    "ReporterConfig",
    "ServerConfig",
    "ServiceContext",
    "SocialConfig",
    "StoreConfig",
    "create_from_config",
    "get_default_config_path",
    "load_config",
]
