"""Tests for the discovery engine."""

import json
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest

from newsglobe.data import (
    APICallUsage,
    Candidate,
    GeocodeResult,
    NewsEvent,
    NormalizedQuery,
    Scope,
    SocialPost,
    Usage,
)
from newsglobe.geo import GeocodingError
from newsglobe.pipeline import DiscoveryEngine, ReportRequest
from newsglobe.query import GLOBAL_NEWS
from newsglobe.run_logger import RunLogger
from newsglobe.search import XPostFetcher
from newsglobe.store import CacheStore, SessionManager
from newsglobe.stream import StreamRelay


class FakeNormalizer:
    def __init__(self, scope: Scope = Scope.GLOBAL, error: Exception | None = None) -> None:
        self._scope = scope
        self._error = error

    async def normalize(self, query: str) -> tuple[NormalizedQuery, Usage]:
        if self._error is not None:
            raise self._error
        key = query.strip() or GLOBAL_NEWS
        return NormalizedQuery(key=key, scope=self._scope), Usage()


class ScriptedReporter:
    """Returns one scripted batch per round, then nothing."""

    def __init__(self, *rounds: list[Candidate] | Exception) -> None:
        self._rounds = list(rounds)
        self.requests: list[ReportRequest] = []

    async def report(
        self, request: ReportRequest, *, is_active: Callable[[], bool] = lambda: True
    ) -> tuple[list[Candidate], Usage]:
        self.requests.append(request)
        usage = Usage(api_calls=[APICallUsage(model="fake", input_tokens=100, output_tokens=50)])
        if not self._rounds:
            return [], usage
        batch = self._rounds.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return list(batch), usage


class FakeResolver:
    def __init__(
        self, known: dict[str, tuple[float, float]], failing: set[str] | None = None
    ) -> None:
        self._known = known
        self._failing = failing or set()
        self.lookups: list[str] = []

    async def resolve(self, location: str) -> GeocodeResult | None:
        self.lookups.append(location)
        if location in self._failing:
            raise GeocodingError("Geocoding request timed out")
        coords = self._known.get(location)
        if coords is None:
            return None
        return GeocodeResult(coordinates=coords, display_name=location)


class FakeFetcher:
    def __init__(self, posts: list[SocialPost] | None = None) -> None:
        self._posts = posts or []
        self.calls: list[tuple[str, str | None]] = []

    async def fetch(self, keywords: str, headline_hint: str | None = None) -> list[SocialPost]:
        self.calls.append((keywords, headline_hint))
        return list(self._posts)


PLACES = {
    "Sendai, Japan": (140.87, 38.27),
    "Paris, France": (2.35, 48.86),
    "Nairobi, Kenya": (36.82, -1.29),
    "Lima, Peru": (-77.04, -12.05),
}

POST = SocialPost(
    id="1849",
    author="jma_en",
    name="JMA",
    text="Strong shaking reported in Miyagi.",
    url="https://x.com/jma_en/status/1849",
)


def candidate(headline: str, location: str, **extra) -> Candidate:
    return Candidate(
        headline=headline,
        location=location,
        summary=f"About {headline}",
        category=extra.pop("category", "Breaking News"),
        search_query=extra.pop("search_query", headline),
        **extra,
    )


FIVE = [
    candidate("Quake hits Sendai", "Sendai, Japan"),
    candidate("Strike in Paris", "Paris, France"),
    candidate("Flooding in Nairobi", "Nairobi, Kenya"),
    candidate("Mystery on Atlantis", "Atlantis"),
    candidate("Election in Lima", "Lima, Peru"),
]


@pytest.fixture
def store(tmp_path: Path) -> Iterator[CacheStore]:
    sessions = SessionManager(f"sqlite:///{tmp_path / 'news.db'}")
    sessions.create_all()
    cache_store = CacheStore(sessions)
    yield cache_store
    cache_store.close()


def make_engine(
    store: CacheStore,
    reporter: ScriptedReporter,
    *,
    normalizer: FakeNormalizer | None = None,
    resolver: FakeResolver | None = None,
    fetcher: FakeFetcher | XPostFetcher | None = None,
    **kwargs,
) -> DiscoveryEngine:
    kwargs.setdefault("max_attempts", 3)
    return DiscoveryEngine(
        normalizer=normalizer or FakeNormalizer(),
        reporter=reporter,
        resolver=resolver or FakeResolver(PLACES),
        fetcher=fetcher or FakeFetcher([POST]),
        store=store,
        **kwargs,
    )


async def collect(engine: DiscoveryEngine, query: str, relay: StreamRelay | None = None):
    relay = relay or StreamRelay()
    result = await engine.run(query, relay)
    frames = [json.loads(f.removeprefix("data: ")) async for f in relay.frames()]
    return result, frames


def of_type(frames: list[dict], kind: str) -> list[dict]:
    return [f for f in frames if f["type"] == kind]


async def test_empty_query_streams_geocodable_events(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE)
    engine = make_engine(store, reporter)

    result, frames = await collect(engine, "")

    news = of_type(frames, "news")
    assert [n["news"]["headline"] for n in news] == [
        "Quake hits Sendai",
        "Strike in Paris",
        "Flooding in Nairobi",
        "Election in Lima",
    ]
    assert frames[0]["type"] == "connected"
    assert frames[-1]["type"] == "complete"
    assert frames[-1]["query"] == GLOBAL_NEWS
    assert frames[-1]["scope"] == "global"
    assert frames[-1]["fetched"] == 4
    assert frames[-1]["attempts"] == 3
    assert len(reporter.requests) >= 2
    assert result.fetched_count == 4


async def test_first_round_requests_the_clamped_remainder(store: CacheStore) -> None:
    reporter = ScriptedReporter()
    engine = make_engine(store, reporter, target_counts={Scope.GLOBAL: 40})

    await collect(engine, "")

    assert reporter.requests[0].fetch_count == 20
    assert reporter.requests[0].normalized_key == GLOBAL_NEWS
    assert reporter.requests[0].scope == Scope.GLOBAL


async def test_small_remainder_still_requests_the_minimum(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE[:2])
    engine = make_engine(
        store,
        reporter,
        normalizer=FakeNormalizer(Scope.LOCAL),
        target_counts={Scope.LOCAL: 3},
        max_attempts=2,
    )

    await collect(engine, "Montmartre")

    assert [r.fetch_count for r in reporter.requests] == [5, 5]


async def test_later_rounds_exclude_known_headlines_and_heat_up(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE)
    engine = make_engine(store, reporter)

    await collect(engine, "")

    first, second = reporter.requests[0], reporter.requests[1]
    assert first.excluded_headlines == ()
    assert set(second.excluded_headlines) == {
        "Quake hits Sendai",
        "Strike in Paris",
        "Flooding in Nairobi",
        "Election in Lima",
    }
    assert first.temperature == pytest.approx(0.3)
    assert second.temperature == pytest.approx(0.4)


async def test_temperature_never_exceeds_one(store: CacheStore) -> None:
    reporter = ScriptedReporter()
    engine = make_engine(store, reporter, max_attempts=12, base_temperature=0.5)

    await collect(engine, "")

    assert max(r.temperature for r in reporter.requests) == 1.0


async def test_stops_once_target_is_met(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE, FIVE)
    engine = make_engine(store, reporter, target_counts={Scope.GLOBAL: 4}, max_attempts=10)

    result, frames = await collect(engine, "")

    assert len(reporter.requests) == 1
    assert result.attempts == 1
    assert frames[-1]["fetched"] == 4


async def test_duplicate_headlines_are_emitted_once(store: CacheStore) -> None:
    repeat = candidate("Quake hits Sendai", "Sendai, Japan")
    reporter = ScriptedReporter([FIVE[0], repeat], [repeat, FIVE[1]])
    engine = make_engine(store, reporter)

    _, frames = await collect(engine, "")

    headlines = [n["news"]["headline"] for n in of_type(frames, "news")]
    assert headlines == ["Quake hits Sendai", "Strike in Paris"]


async def test_incomplete_and_stale_candidates_are_skipped(store: CacheStore) -> None:
    stale = (datetime.now(tz=UTC) - timedelta(days=10)).isoformat()
    reporter = ScriptedReporter(
        [
            Candidate(headline="No location given", summary="?"),
            Candidate(location="Paris, France"),
            candidate("Old news from Lima", "Lima, Peru", timestamp=stale),
            candidate("Quake hits Sendai", "Sendai, Japan"),
        ]
    )
    resolver = FakeResolver(PLACES)
    engine = make_engine(store, reporter, resolver=resolver)

    _, frames = await collect(engine, "")

    assert [n["news"]["headline"] for n in of_type(frames, "news")] == ["Quake hits Sendai"]
    assert resolver.lookups == ["Sendai, Japan"]


async def test_geocoding_failures_skip_only_that_candidate(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE[:3])
    resolver = FakeResolver(PLACES, failing={"Paris, France"})
    engine = make_engine(store, reporter, resolver=resolver)

    result, frames = await collect(engine, "")

    headlines = [n["news"]["headline"] for n in of_type(frames, "news")]
    assert headlines == ["Quake hits Sendai", "Flooding in Nairobi"]
    assert result.usage.geocode_lookups == 3
    assert of_type(frames, "error") == []


async def test_event_without_posts_is_still_emitted(store: CacheStore) -> None:
    no_keywords = candidate("Strike in Paris", "Paris, France", search_query=None)
    reporter = ScriptedReporter([FIVE[0], no_keywords])
    fetcher = FakeFetcher([])
    engine = make_engine(store, reporter, fetcher=fetcher)

    result, frames = await collect(engine, "")

    news = of_type(frames, "news")
    assert len(news) == 2
    assert all(n["news"]["top_tweets"] == [] for n in news)
    assert fetcher.calls == [("Quake hits Sendai", "Quake hits Sendai")]
    assert result.usage.social_lookups == 1
    statuses = [f["message"] for f in of_type(frames, "status")]
    assert "No posts found on X for: Quake hits Sendai" in statuses


async def test_news_carries_posts_and_coordinates(store: CacheStore) -> None:
    reporter = ScriptedReporter([FIVE[0]])
    engine = make_engine(store, reporter)

    _, frames = await collect(engine, "")

    news = of_type(frames, "news")[0]["news"]
    assert news["coordinates"] == [140.87, 38.27]
    assert news["top_tweets"][0]["url"] == "https://x.com/jma_en/status/1849"
    assert news["category"] == "Breaking News"


async def test_cached_events_are_resurfaced_first(store: CacheStore) -> None:
    normalizer = FakeNormalizer(Scope.REGION)
    first = make_engine(store, ScriptedReporter(FIVE[:2]), normalizer=normalizer)
    await collect(first, "Japan")

    reporter = ScriptedReporter(FIVE[:2])
    second = make_engine(store, reporter, normalizer=normalizer)
    result, frames = await collect(second, "Japan")

    news = of_type(frames, "news")
    assert {n["news"]["headline"] for n in news} == {"Quake hits Sendai", "Strike in Paris"}
    assert frames[-1]["cached"] == 2
    assert frames[-1]["fetched"] == 0
    assert result.cached_count == 2
    assert set(reporter.requests[0].excluded_headlines) == {"Quake hits Sendai", "Strike in Paris"}
    statuses = [f["message"] for f in of_type(frames, "status")]
    assert "Found 2 cached events for Japan" in statuses


async def test_new_events_are_linked_to_the_query(store: CacheStore) -> None:
    engine = make_engine(store, ScriptedReporter(FIVE[:3]), normalizer=FakeNormalizer(Scope.REGION))

    await collect(engine, "  Japan ")

    record = await store.lookup("Japan")
    assert record is not None
    assert record.original_query == "Japan"
    assert len(record.events) == 3


async def test_failing_round_does_not_end_the_run(store: CacheStore) -> None:
    reporter = ScriptedReporter(RuntimeError("overloaded"), FIVE[:1])
    engine = make_engine(store, reporter)

    result, frames = await collect(engine, "")

    assert len(of_type(frames, "news")) == 1
    assert of_type(frames, "error") == []
    assert frames[-1]["type"] == "complete"
    assert result.attempts == 3


async def test_fatal_error_is_reported_before_complete(store: CacheStore) -> None:
    engine = make_engine(
        store, ScriptedReporter(), normalizer=FakeNormalizer(error=RuntimeError("LLM down"))
    )

    _, frames = await collect(engine, "")

    assert [f["type"] for f in frames[-2:]] == ["error", "complete"]
    assert frames[-2]["message"] == "LLM down"
    assert frames[-1]["query"] is None


async def test_closed_stream_stops_the_loop(store: CacheStore) -> None:
    reporter = ScriptedReporter(FIVE)
    relay = StreamRelay()
    relay.close()
    engine = make_engine(store, reporter)

    result = await engine.run("", relay)

    assert reporter.requests == []
    assert result.attempts == 0


async def test_time_budget_bounds_the_loop(store: CacheStore) -> None:
    ticks = iter([0.0, 0.0, 100.0])
    reporter = ScriptedReporter()
    engine = make_engine(
        store, reporter, max_attempts=10, time_budget_seconds=90, clock=lambda: next(ticks, 100.0)
    )

    result, _ = await collect(engine, "")

    assert result.attempts == 1


async def test_usage_is_accumulated_across_rounds(store: CacheStore) -> None:
    engine = make_engine(store, ScriptedReporter(FIVE))

    result, frames = await collect(engine, "")

    assert result.usage.input_tokens == 300
    assert frames[-1]["usage"]["api_calls"] == 3
    assert frames[-1]["usage"]["output_tokens"] == 150
    assert frames[-1]["usage"]["geocode_lookups"] == 5


async def test_run_logger_records_each_round(store: CacheStore, tmp_path: Path) -> None:
    reporter = ScriptedReporter(
        [
            FIVE[0],
            candidate("Quake hits Sendai", "Sendai, Japan"),
            FIVE[3],
            Candidate(headline="No location given"),
        ],
        RuntimeError("overloaded"),
    )
    run_logger = RunLogger(log_dir=tmp_path / "logs")
    engine = make_engine(store, reporter, max_attempts=2, run_logger=run_logger)

    result, _ = await collect(engine, "")

    assert result.log_path is not None
    data = json.loads(result.log_path.read_text())
    assert data["normalized_key"] == GLOBAL_NEWS
    assert data["scope"] == "global"
    assert data["cached_count"] == 0
    first, second = data["rounds"]
    assert first["attempt"] == 1
    assert first["fetch_count"] == 20
    assert first["excluded_headlines"] == []
    assert first["candidate_count"] == 4
    assert first["accepted"] == ["Quake hits Sendai"]
    assert first["skipped"] == {"duplicate": 1, "not_geocoded": 1, "incomplete": 1}
    assert first["usage"]["input_tokens"] == 100
    assert second["excluded_headlines"] == ["Quake hits Sendai"]
    assert second["temperature"] == pytest.approx(0.4)
    assert second["error"] == "overloaded"
    assert second["usage"] is None
    assert [e["headline"] for e in data["events"]] == ["Quake hits Sendai"]
    assert data["error"] is None


async def test_run_logger_records_fatal_error(store: CacheStore, tmp_path: Path) -> None:
    run_logger = RunLogger(log_dir=tmp_path / "logs")
    engine = make_engine(
        store,
        ScriptedReporter(),
        normalizer=FakeNormalizer(error=RuntimeError("LLM down")),
        run_logger=run_logger,
    )

    result, _ = await collect(engine, "")

    assert result.log_path is not None
    data = json.loads(result.log_path.read_text())
    assert data["error"] == "LLM down"
    assert data["rounds"] == []


async def test_malformed_post_payload_still_emits_event(
    store: CacheStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def mock_get(self: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
        return httpx.Response(
            200, json={"data": [], "includes": None}, request=httpx.Request("GET", url)
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", mock_get)
    engine = make_engine(
        store, ScriptedReporter([FIVE[0]]), fetcher=XPostFetcher(bearer_token="t")
    )

    result, frames = await collect(engine, "")

    news = of_type(frames, "news")
    assert [n["news"]["headline"] for n in news] == ["Quake hits Sendai"]
    assert news[0]["news"]["top_tweets"] == []
    assert result.fetched_count == 1


async def test_event_persisted_under_another_key_is_recovered(store: CacheStore) -> None:
    existing = await store.create_event(
        NewsEvent(
            id="evt-tokyo",
            headline="Quake hits Sendai",
            location="Sendai, Japan",
            summary="Reported earlier for Tokyo.",
            coordinates=(140.87, 38.27),
            timestamp=datetime.now(tz=UTC) - timedelta(hours=1),
        )
    )
    await store.upsert_query_for_key("Tokyo", "Tokyo", [existing.id])
    reporter = ScriptedReporter([FIVE[0]])
    engine = make_engine(
        store, reporter, normalizer=FakeNormalizer(Scope.REGION), max_attempts=1
    )

    result, frames = await collect(engine, "Japan")

    news = of_type(frames, "news")
    assert [n["news"]["id"] for n in news] == ["evt-tokyo"]
    assert frames[-1]["fetched"] == 1
    assert result.fetched_count == 1
    japan = await store.lookup("Japan")
    tokyo = await store.lookup("Tokyo")
    assert japan is not None and tokyo is not None
    assert [e.id for e in japan.events] == ["evt-tokyo"]
    assert [e.id for e in tokyo.events] == ["evt-tokyo"]


async def test_event_under_stale_record_is_relinked(tmp_path: Path) -> None:
    clock = [datetime.now(tz=UTC)]
    sessions = SessionManager(f"sqlite:///{tmp_path / 'stale.db'}")
    sessions.create_all()
    store = CacheStore(sessions, clock=lambda: clock[0])
    try:
        existing = await store.create_event(
            NewsEvent(
                id="evt-old",
                headline="Quake hits Sendai",
                location="Sendai, Japan",
                summary="First report.",
                coordinates=(140.87, 38.27),
                timestamp=clock[0] - timedelta(hours=1),
            )
        )
        record_id = await store.upsert_query_for_key("Japan", "Japan", [existing.id])
        clock[0] += timedelta(hours=7)
        assert await store.lookup("Japan") is None

        engine = make_engine(
            store,
            ScriptedReporter([FIVE[0]]),
            normalizer=FakeNormalizer(Scope.REGION),
            max_attempts=1,
        )
        result, frames = await collect(engine, "Japan")

        assert [n["news"]["id"] for n in of_type(frames, "news")] == ["evt-old"]
        assert frames[-1]["cached"] == 0
        assert frames[-1]["fetched"] == 1
        refreshed = await store.lookup("Japan")
        assert refreshed is not None
        assert refreshed.id == record_id
        assert [e.id for e in refreshed.events] == ["evt-old"]
    finally:
        store.close()
