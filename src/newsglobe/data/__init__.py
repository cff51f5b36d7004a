"""Data models for NewsGlobe."""

from newsglobe.data.categories import category_color, category_group
from newsglobe.data.models import (
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

__all__ = [
    "APICallUsage",
    "Candidate",
    "GeocodeResult",
    "NewsEvent",
    "NormalizedQuery",
    "Scope",
    "SearchQuery",
    "SocialPost",
    "Usage",
    "category_color",
    "category_group",
]
