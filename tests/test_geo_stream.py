"""Tests for author geolocation and the polling geo stream."""

import json
from typing import Any

import httpx
import pytest

from newsglobe.data import GeocodeResult
from newsglobe.geo import LocationResolver, RateLimiter
from newsglobe.pipeline import AuthorGeoStream, authors_with_location, locate_authors
from newsglobe.search.x import X_API_URL, RateLimitInfo, SearchPage
from newsglobe.stream import StreamRelay


class KnownPlaces:
    name = "known"

    def __init__(self, known: dict[str, tuple[float, float]]) -> None:
        self._known = known
        self.calls: list[str] = []

    async def geocode(self, client: httpx.AsyncClient, location: str) -> GeocodeResult | None:
        self.calls.append(location)
        coords = self._known.get(location)
        return GeocodeResult(coordinates=coords, display_name=location) if coords else None


class ScriptedSearch:
    """Replays search pages or exceptions, repeating the last one."""

    def __init__(self, *outcomes: list[dict[str, Any]] | Exception) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, int]] = []

    async def search_recent(self, query: str, *, max_results: int = 100) -> SearchPage:
        self.calls.append((query, max_results))
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return SearchPage(
            query=query,
            total=len(outcome),
            posts=outcome,
            rate_limit=RateLimitInfo(remaining=None, reset=None),
        )


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def clock(self) -> float:
        return self.now


async def _no_sleep(seconds: float) -> None:
    return None


def post(author_id: str, location: str | None, **extra: Any) -> dict[str, Any]:
    return {
        "id": f"p-{author_id}",
        "author_id": author_id,
        "user_location": location,
        "username": author_id,
        **extra,
    }


PLACES = {
    "Sendai": (140.87, 38.27),
    "Lima": (-77.04, -12.05),
    "Nairobi": (36.82, -1.29),
    "Paris": (2.35, 48.86),
    "Quito": (-78.47, -0.18),
    "Oslo": (10.75, 59.91),
}


@pytest.fixture
def places() -> KnownPlaces:
    return KnownPlaces(PLACES)


@pytest.fixture
def resolver(places: KnownPlaces) -> LocationResolver:
    return LocationResolver(providers=[places], sleep=_no_sleep)


async def drain(relay: StreamRelay) -> list[dict]:
    return [json.loads(frame.removeprefix("data: ")) async for frame in relay.frames()]


def make_stream(
    fetcher: ScriptedSearch,
    resolver: LocationResolver,
    fake_time: FakeTime,
    *,
    rate_limiter: RateLimiter | None = None,
    **kwargs: Any,
) -> AuthorGeoStream:
    kwargs.setdefault("poll_interval", 5.0)
    kwargs.setdefault("max_duration", 12.0)
    return AuthorGeoStream(
        fetcher=fetcher,
        resolver=resolver,
        rate_limiter=rate_limiter or RateLimiter(max_requests=50, window_seconds=60),
        sleep=fake_time.sleep,
        clock=fake_time.clock,
        **kwargs,
    )


class TestAuthorsWithLocation:
    def test_first_post_per_author_with_location(self) -> None:
        posts = [
            post("a", "Sendai"),
            post("a", "Sendai", id="second"),
            post("b", None),
            post("c", "Lima"),
            {"id": "orphan", "user_location": "Paris"},
        ]

        authors = authors_with_location(posts)

        assert [author_id for author_id, _ in authors] == ["a", "c"]
        assert authors[0][1]["id"] == "p-a"


class TestLocateAuthors:
    async def test_places_resolved_authors_in_order(
        self, resolver: LocationResolver, places: KnownPlaces
    ) -> None:
        authors = authors_with_location([post("a", "Sendai"), post("b", "Atlantis")])

        points = await locate_authors(
            authors,
            resolver=resolver,
            rate_limiter=RateLimiter(max_requests=50, window_seconds=60),
            client_key="1.2.3.4",
        )

        assert points == [
            {
                "id": "user-a",
                "coordinates": [140.87, 38.27],
                "location": "Sendai",
                "display_name": "Sendai",
                "username": "a",
                "name": None,
                "created_at": None,
            }
        ]

    async def test_authors_over_quota_are_skipped(
        self, resolver: LocationResolver, places: KnownPlaces
    ) -> None:
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        authors = authors_with_location([post("a", "Sendai"), post("b", "Lima")])

        points = await locate_authors(
            authors, resolver=resolver, rate_limiter=limiter, client_key="1.2.3.4"
        )

        assert [p["id"] for p in points] == ["user-a"]
        assert places.calls == ["Sendai"]
        assert not (await limiter.check("1.2.3.4")).allowed
        assert (await limiter.check("5.6.7.8")).allowed

    async def test_cached_places_skip_the_limiter(
        self, resolver: LocationResolver, places: KnownPlaces
    ) -> None:
        await resolver.resolve("Sendai")
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        points = await locate_authors(
            authors_with_location([post("a", "Sendai")]),
            resolver=resolver,
            rate_limiter=limiter,
            client_key="1.2.3.4",
        )

        assert [p["id"] for p in points] == ["user-a"]
        assert (await limiter.check("1.2.3.4")).allowed


class TestAuthorGeoStream:
    async def test_polls_until_timeout(self, resolver: LocationResolver) -> None:
        fake_time = FakeTime()
        fetcher = ScriptedSearch([post("a", "Sendai")])
        stream = make_stream(fetcher, resolver, fake_time)
        relay = StreamRelay()

        polls = await stream.run("earthquake", "1.2.3.4", relay)

        frames = await drain(relay)
        assert polls == 2
        assert fake_time.sleeps == [5.0, 5.0, 5.0]
        assert fetcher.calls == [("earthquake", 30), ("earthquake", 30)]
        assert [f["type"] for f in frames] == ["connected", "geo", "geo", "info"]
        assert frames[0]["message"] == "Stream started"
        assert frames[1]["data"][0]["coordinates"] == [140.87, 38.27]
        assert frames[-1]["message"] == "Stream timeout reached"

    async def test_geocodes_at_most_one_batch_per_poll(
        self, resolver: LocationResolver, places: KnownPlaces
    ) -> None:
        posts = [post(str(i), name) for i, name in enumerate(PLACES)]
        stream = make_stream(ScriptedSearch(posts), resolver, FakeTime(), max_duration=6.0)
        relay = StreamRelay()

        await stream.run("news", "1.2.3.4", relay)

        frames = await drain(relay)
        geo = [f for f in frames if f["type"] == "geo"]
        assert len(geo) == 1
        assert len(geo[0]["data"]) == 5
        assert "Oslo" not in places.calls

    async def test_poll_without_located_authors_emits_nothing(
        self, resolver: LocationResolver
    ) -> None:
        stream = make_stream(ScriptedSearch([post("a", "Atlantis")]), resolver, FakeTime())
        relay = StreamRelay()

        await stream.run("news", "1.2.3.4", relay)

        assert [f["type"] for f in await drain(relay)] == ["connected", "info"]

    async def test_upstream_errors_become_error_frames(self, resolver: LocationResolver) -> None:
        request = httpx.Request("GET", X_API_URL)
        forbidden = httpx.HTTPStatusError(
            "forbidden",
            request=request,
            response=httpx.Response(403, text="x" * 500, request=request),
        )
        fetcher = ScriptedSearch(forbidden, [post("a", "Sendai")])
        stream = make_stream(fetcher, resolver, FakeTime())
        relay = StreamRelay()

        await stream.run("news", "1.2.3.4", relay)

        frames = await drain(relay)
        assert [f["type"] for f in frames] == ["connected", "error", "geo", "info"]
        assert frames[1]["message"] == "X API error: 403"
        assert len(frames[1]["details"]) == 200

    async def test_network_errors_keep_polling(self, resolver: LocationResolver) -> None:
        fetcher = ScriptedSearch(httpx.ConnectError("unreachable"), [post("a", "Sendai")])
        stream = make_stream(fetcher, resolver, FakeTime())
        relay = StreamRelay()

        await stream.run("news", "1.2.3.4", relay)

        frames = await drain(relay)
        assert [f["type"] for f in frames] == ["connected", "error", "geo", "info"]
        assert frames[1]["message"] == "unreachable"

    async def test_closed_relay_stops_polling(self, resolver: LocationResolver) -> None:
        fetcher = ScriptedSearch([post("a", "Sendai")])
        fake_time = FakeTime()
        stream = make_stream(fetcher, resolver, fake_time, max_duration=1000.0)
        relay = StreamRelay()

        async def sleep_then_leave(seconds: float) -> None:
            await fake_time.sleep(seconds)
            if len(fake_time.sleeps) == 2:
                relay.close()

        stream._sleep = sleep_then_leave

        polls = await stream.run("news", "1.2.3.4", relay)

        assert polls == 1
        assert len(fetcher.calls) == 1
