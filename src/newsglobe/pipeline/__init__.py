from newsglobe.pipeline.base import NewsReporter, ReportRequest
from newsglobe.pipeline.discovery import DEFAULT_TARGET_COUNTS, DiscoveryEngine, DiscoveryResult
from newsglobe.pipeline.geo_stream import AuthorGeoStream, authors_with_location, locate_authors
from newsglobe.pipeline.reporter import ClaudeNewsReporter, ToolCallAccumulator

__all__ = [
    "DEFAULT_TARGET_COUNTS",
    "AuthorGeoStream",
    "ClaudeNewsReporter",
    "DiscoveryEngine",
    "DiscoveryResult",
    "NewsReporter",
    "ReportRequest",
    "ToolCallAccumulator",
    "authors_with_location",
    "locate_authors",
]
