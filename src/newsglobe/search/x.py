"""X/Twitter post search using the official API v2."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from newsglobe.data import SocialPost
from newsglobe.errors import MissingCredentialsError

X_API_URL = "https://api.x.com/2/tweets/search/recent"
QUERY_FILTERS = "-is:retweet -is:reply lang:en has:links"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitInfo:
    remaining: int | None = None
    reset: int | None = None


@dataclass(frozen=True)
class SearchPage:
    """Result of a raw recent-search call."""

    query: str
    total: int
    posts: list[dict[str, Any]] = field(default_factory=list)
    rate_limit: RateLimitInfo = field(default_factory=RateLimitInfo)

    @property
    def with_location(self) -> list[dict[str, Any]]:
        return [p for p in self.posts if p.get("geo") or p.get("user_location")]


class XPostFetcher:
    """Fetch corroborating posts from the X API v2 ``tweets/search/recent`` endpoint.

    The bearer token is optional at construction time: without one,
    :meth:`fetch` returns no posts and :meth:`search_recent` raises
    :class:`MissingCredentialsError`.

    Args:
        bearer_token: X API bearer token (defaults to X_BEARER_TOKEN or
            BEARER_TOKEN env vars).
        max_results: Posts requested and returned per fetch (10-100).
        min_text_length: Posts with text this short or shorter are dropped.
        timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        *,
        bearer_token: str | None = None,
        max_results: int = 10,
        min_text_length: int = 10,
        timeout: float = 30.0,
    ) -> None:
        self._bearer_token = (
            bearer_token or os.environ.get("X_BEARER_TOKEN") or os.environ.get("BEARER_TOKEN")
        )
        self._max_results = max_results
        self._min_text_length = min_text_length
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._bearer_token)

    async def fetch(self, keywords: str, headline_hint: str | None = None) -> list[SocialPost]:
        """Find posts about an event, trying several query variants in turn.

        Stops at the first variant that yields a usable post. A 429 response
        aborts all remaining variants. Never raises.

        Args:
            keywords: Search keywords suggested for the event.
            headline_hint: Event headline, combined with the keywords as a variant.

        Returns:
            Up to ``max_results`` posts, possibly empty.
        """
        if not self._bearer_token:
            logger.warning("[X API] No bearer token found")
            return []

        variants = query_variants(keywords, headline_hint)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for variant in variants:
                try:
                    response = await client.get(
                        X_API_URL,
                        params={
                            "query": f"{variant} {QUERY_FILTERS}",
                            "max_results": min(max(self._max_results, 10), 100),
                            "tweet.fields": "created_at,author_id,public_metrics,text,lang",
                            "expansions": "author_id",
                            "user.fields": "name,username,profile_image_url,verified",
                        },
                        headers=self._headers(),
                    )
                except httpx.HTTPError as e:
                    logger.warning(f"[X API] Error for query {variant!r}: {e}")
                    continue

                if response.status_code == 429:
                    reset = response.headers.get("x-rate-limit-reset")
                    logger.warning(f"[X API] Rate limited. Reset at: {reset}")
                    break
                if not response.is_success:
                    logger.warning(
                        f"[X API] Request failed: {response.status_code} - {response.text[:100]}"
                    )
                    continue

                try:
                    posts = self._parse_posts(response.json())
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning(f"[X API] Malformed response for {variant!r}: {e}")
                    continue

                if posts:
                    logger.info(f"[X API] Found {len(posts)} posts for query: {variant!r}")
                    return posts[: self._max_results]
                logger.info(f"[X API] No results for query: {variant!r}")

        logger.info(f"[X API] No posts found after trying {len(variants)} query variants")
        return []

    async def search_recent(self, query: str, *, max_results: int = 100) -> SearchPage:
        """Run a raw recent search, keeping author location data.

        Args:
            query: X search query.
            max_results: Posts to request (capped to 10-100).

        Returns:
            The search page with rate-limit headers.

        Raises:
            MissingCredentialsError: If no bearer token is configured.
            httpx.HTTPStatusError: On an upstream error response.
        """
        if not self._bearer_token:
            raise MissingCredentialsError("X_BEARER_TOKEN or BEARER_TOKEN not found")

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                X_API_URL,
                params={
                    "query": query,
                    "max_results": min(max(max_results, 10), 100),
                    "tweet.fields": "created_at,author_id,geo,public_metrics,text",
                    "user.fields": "username,location,description,name",
                    "expansions": "author_id,geo.place_id",
                },
                headers=self._headers(),
            )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            data = {}

        users = _users_by_id(data)
        posts: list[dict[str, Any]] = []
        for item in data.get("data") or []:
            if not isinstance(item, dict) or "id" not in item:
                continue
            user = users.get(item.get("author_id", ""), {})
            posts.append(
                {
                    "id": item["id"],
                    "text": item.get("text", ""),
                    "author_id": item.get("author_id"),
                    "username": user.get("username"),
                    "name": user.get("name"),
                    "user_location": (user.get("location") or "").strip() or None,
                    "created_at": item.get("created_at"),
                    "geo": item.get("geo"),
                    "public_metrics": item.get("public_metrics", {}),
                }
            )

        return SearchPage(
            query=query,
            total=len(posts),
            posts=posts,
            rate_limit=RateLimitInfo(
                remaining=_int_header(response, "x-rate-limit-remaining"),
                reset=_int_header(response, "x-rate-limit-reset"),
            ),
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._bearer_token}",
            "Content-Type": "application/json",
        }

    def _parse_posts(self, data: Any) -> list[SocialPost]:
        """Map an API v2 payload to posts, dropping non-English and short ones.

        Entries of the wrong shape are skipped; a payload that is not an
        object yields no posts.
        """
        if not isinstance(data, dict):
            return []
        users = _users_by_id(data)

        posts: list[SocialPost] = []
        for item in data.get("data") or []:
            if not isinstance(item, dict) or "id" not in item:
                continue
            if item.get("lang", "en") != "en":
                continue
            text = item.get("text") or ""
            if len(text) <= self._min_text_length:
                continue

            user = users.get(item.get("author_id", ""), {})
            handle = user.get("username") or "unknown"
            metrics = item.get("public_metrics") or {}
            posts.append(
                SocialPost(
                    id=str(item["id"]),
                    author=f"@{handle}",
                    name=user.get("name") or "Unknown",
                    text=text,
                    url=f"https://x.com/{handle}/status/{item['id']}",
                    timestamp=item.get("created_at"),
                    likes=metrics.get("like_count", 0),
                    replies=metrics.get("reply_count", 0),
                    reposts=metrics.get("retweet_count", 0),
                    profile_pic=user.get("profile_image_url"),
                    verified=bool(user.get("verified", False)),
                )
            )
        return posts


def query_variants(keywords: str, headline_hint: str | None = None) -> list[str]:
    """Build the ordered, de-duplicated list of search variants.

    Variants are the raw keywords, headline plus keywords, and the first
    three keywords, each with collapsed whitespace.
    """
    raw = [
        keywords,
        f"{headline_hint} {keywords}" if headline_hint else keywords,
        " ".join(keywords.split()[:3]),
    ]
    variants: list[str] = []
    for candidate in raw:
        cleaned = " ".join(candidate.split())
        if cleaned and cleaned not in variants:
            variants.append(cleaned)
    return variants


def _int_header(response: httpx.Response, name: str) -> int | None:
    value = response.headers.get(name)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _users_by_id(data: dict[str, Any]) -> dict[str, dict[str, Any]]:
    includes = data.get("includes")
    raw_users = includes.get("users") if isinstance(includes, dict) else None
    return {
        user["id"]: user
        for user in raw_users or []
        if isinstance(user, dict) and "id" in user
    }
