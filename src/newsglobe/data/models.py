"""Core data models for NewsGlobe."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Scope(StrEnum):
    """Coarse granularity of a user query, controlling how many events to find."""

    GLOBAL = "global"
    REGION = "region"
    LOCAL = "local"


@dataclass(frozen=True)
class NormalizedQuery:
    """Canonical cache identity for a free-text query."""

    key: str
    scope: Scope = Scope.GLOBAL


@dataclass(frozen=True)
class SocialPost:
    """A post retrieved from X that corroborates a news event.

    ``id`` is the provider-assigned post id and is never synthesized.
    """

    id: str
    author: str
    name: str
    text: str
    url: str
    timestamp: str | None = None
    likes: int = 0
    replies: int = 0
    reposts: int = 0
    profile_pic: str | None = None
    verified: bool = False


@dataclass(frozen=True)
class NewsEvent:
    """A geocoded news event, immutable once persisted."""

    id: str
    headline: str
    location: str
    summary: str
    coordinates: tuple[float, float]
    timestamp: datetime
    category: str = "General"
    posts: tuple[SocialPost, ...] = ()


@dataclass(frozen=True)
class SearchQuery:
    """A cache record linking a normalized query key to discovered events."""

    id: str
    normalized_key: str
    original_query: str
    last_refresh: datetime
    events: tuple[NewsEvent, ...] = ()


@dataclass(frozen=True)
class Candidate:
    """A proposed news event from one LLM tool invocation, not yet validated."""

    headline: str | None = None
    location: str | None = None
    summary: str | None = None
    category: str | None = None
    timestamp: str | None = None
    search_query: str | None = None


@dataclass(frozen=True)
class GeocodeResult:
    """Coordinates for a place name as ``(lon, lat)``."""

    coordinates: tuple[float, float]
    display_name: str
    cached: bool = False


@dataclass(frozen=True)
class APICallUsage:
    """Usage from a single LLM call."""

    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Usage:
    """Accumulated upstream usage across a discovery run."""

    api_calls: list[APICallUsage] = field(default_factory=list)
    social_lookups: int = 0
    geocode_lookups: int = 0

    @property
    def input_tokens(self) -> int:
        return sum(c.input_tokens for c in self.api_calls)

    @property
    def output_tokens(self) -> int:
        return sum(c.output_tokens for c in self.api_calls)

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            api_calls=self.api_calls + other.api_calls,
            social_lookups=self.social_lookups + other.social_lookups,
            geocode_lookups=self.geocode_lookups + other.geocode_lookups,
        )

    def __iadd__(self, other: "Usage") -> "Usage":
        self.api_calls.extend(other.api_calls)
        self.social_lookups += other.social_lookups
        self.geocode_lookups += other.geocode_lookups
        return self
