"""Placing X authors on the map by their profile location."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from newsglobe.data import GeocodeResult
from newsglobe.geo import LocationResolver, RateLimiter
from newsglobe.search import XPostFetcher
from newsglobe.stream import StreamRelay

logger = logging.getLogger(__name__)

STREAM_FETCH_SIZE = 30


def authors_with_location(posts: Sequence[dict[str, Any]]) -> list[tuple[str, dict[str, Any]]]:
    """First post of every author that has a profile location, in page order."""
    authors: dict[str, dict[str, Any]] = {}
    for post in posts:
        author_id = post.get("author_id")
        if author_id and post.get("user_location") and author_id not in authors:
            authors[author_id] = post
    return list(authors.items())


async def locate_authors(
    authors: Sequence[tuple[str, dict[str, Any]]],
    *,
    resolver: LocationResolver,
    rate_limiter: RateLimiter,
    client_key: str,
    concurrency: int = 5,
) -> list[dict[str, Any]]:
    """Geocode author locations into map points.

    Cached places are free. Every other lookup spends one request of the
    client's geocoding quota; authors denied by the limiter are skipped, as
    are places that cannot be resolved.

    Args:
        authors: ``(author_id, post)`` pairs from :func:`authors_with_location`.
        resolver: Location resolver.
        rate_limiter: Per-client geocoding limiter.
        client_key: Rate-limit key of the requesting client.
        concurrency: Maximum parallel upstream lookups.

    Returns:
        One point per located author, in input order.
    """
    located: dict[str, GeocodeResult] = {}
    pending: list[tuple[str, dict[str, Any]]] = []
    limited = 0
    for author_id, post in authors:
        hit = await resolver.cached(post["user_location"])
        if hit is not None:
            located[author_id] = hit
            continue
        decision = await rate_limiter.check(client_key)
        if not decision.allowed:
            limited += 1
            continue
        pending.append((author_id, post))

    if limited:
        logger.warning(f"Rate limited: skipped geocoding {limited} author locations")

    results = await resolver.resolve_many(
        [post["user_location"] for _, post in pending], concurrency=concurrency
    )
    for (author_id, _), result in zip(pending, results, strict=True):
        if result is not None:
            located[author_id] = result

    points = []
    for author_id, post in authors:
        result = located.get(author_id)
        if result is None:
            continue
        points.append(
            {
                "id": f"user-{author_id}",
                "coordinates": list(result.coordinates),
                "location": post["user_location"],
                "display_name": result.display_name,
                "username": post.get("username"),
                "name": post.get("name"),
                "created_at": post.get("created_at"),
            }
        )
    return points


class AuthorGeoStream:
    """Poll recent posts for a query and stream newly located authors.

    Every poll searches X, takes the first few authors with a profile
    location, geocodes them under the client's quota and emits a ``geo``
    frame when any were placed. Upstream failures become ``error`` frames and
    the polling goes on. The stream ends with an ``info`` frame once the
    maximum duration is reached, or silently when the client leaves.

    Args:
        fetcher: X client used for the raw recent search.
        resolver: Location resolver.
        rate_limiter: Per-client geocoding limiter.
        poll_interval: Seconds between polls.
        max_duration: Seconds before the stream times out.
        batch_size: Authors geocoded per poll.
        concurrency: Maximum parallel upstream lookups.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        *,
        fetcher: XPostFetcher,
        resolver: LocationResolver,
        rate_limiter: RateLimiter,
        poll_interval: float = 5.0,
        max_duration: float = 1800.0,
        batch_size: int = 5,
        concurrency: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._resolver = resolver
        self._rate_limiter = rate_limiter
        self._poll_interval = poll_interval
        self._max_duration = max_duration
        self._batch_size = batch_size
        self._concurrency = concurrency
        self._sleep = sleep
        self._clock = clock

    async def run(self, query: str, client_key: str, relay: StreamRelay) -> int:
        """Poll until timeout or disconnect.

        Returns:
            Number of polls made.
        """
        relay.connected("Stream started")
        deadline = self._clock() + self._max_duration
        polls = 0
        try:
            while relay.is_open:
                await self._sleep(self._poll_interval)
                if self._clock() >= deadline:
                    relay.info("Stream timeout reached")
                    break
                if not relay.is_open:
                    break
                polls += 1
                await self._poll(query, client_key, relay)
        finally:
            relay.finish()
        logger.info(f"Geo stream for {query!r} ended after {polls} polls")
        return polls

    async def _poll(self, query: str, client_key: str, relay: StreamRelay) -> None:
        try:
            page = await self._fetcher.search_recent(query, max_results=STREAM_FETCH_SIZE)
            authors = authors_with_location(page.posts)[: self._batch_size]
            points = await locate_authors(
                authors,
                resolver=self._resolver,
                rate_limiter=self._rate_limiter,
                client_key=client_key,
                concurrency=self._concurrency,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"Geo stream poll for {query!r} failed: {status}")
            relay.error(f"X API error: {status}", details=e.response.text[:200])
            return
        except Exception as e:
            logger.exception(f"Geo stream poll for {query!r} failed")
            relay.error(str(e) or type(e).__name__)
            return

        if points:
            relay.geo(points)
