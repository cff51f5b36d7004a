"""Bounded, streaming discovery of breaking-news events."""

import logging
import time
import uuid
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from newsglobe.data import Candidate, NewsEvent, NormalizedQuery, Scope, SocialPost, Usage
from newsglobe.geo import GeocodingError, LocationResolver
from newsglobe.pipeline.base import NewsReporter, ReportRequest
from newsglobe.query import GLOBAL_NEWS, QueryNormalizer
from newsglobe.run_logger import RunLogger
from newsglobe.search import SocialPostFetcher
from newsglobe.store import CacheStore, PersistenceConflictError
from newsglobe.stream import StreamRelay

logger = logging.getLogger(__name__)

DEFAULT_TARGET_COUNTS: dict[Scope, int] = {
    Scope.GLOBAL: 40,
    Scope.REGION: 20,
    Scope.LOCAL: 5,
}


@dataclass
class DiscoveryResult:
    """What a discovery run produced, beyond what was streamed."""

    query: NormalizedQuery | None = None
    cached_count: int = 0
    events: list[NewsEvent] = field(default_factory=list)
    attempts: int = 0
    usage: Usage = field(default_factory=Usage)
    log_path: Path | None = None

    @property
    def fetched_count(self) -> int:
        return len(self.events)


@dataclass
class RoundTally:
    """Outcome of one round's candidates, counted for the run log."""

    candidates: int = 0
    accepted: list[str] = field(default_factory=list)
    skipped: Counter[str] = field(default_factory=Counter)
    usage: Usage | None = None


@dataclass
class _RunState:
    raw_query: str
    query: NormalizedQuery
    headlines: list[str]
    query_id: str | None
    result: DiscoveryResult


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


class DiscoveryEngine:
    """Drive one discovery run from a raw query to a completed stream.

    The run re-surfaces fresh cached events first, then asks the reporter for
    new events round by round until the scope's target is met, the attempt
    cap is hit, the time budget runs out, or the client goes away. Every
    candidate is geocoded, enriched with posts and persisted before it is
    emitted. Failures of a single candidate or round never end the run.

    Args:
        normalizer: Maps the raw query onto a cache key and scope.
        reporter: Proposes news candidates.
        resolver: Geocodes candidate locations.
        fetcher: Finds corroborating social posts.
        store: Persistent news cache.
        target_counts: Events wanted per scope.
        min_fetch: Lower bound on stories requested per round.
        max_fetch: Upper bound on stories requested per round.
        max_attempts: Round cap.
        time_budget_seconds: Wall-clock budget for the round loop.
        max_event_age: Candidates declaring an older timestamp are dropped.
        base_temperature: Temperature of the first round.
        temperature_step: Temperature increase per round.
        run_logger: Optional RunLogger for per-round records.
        clock: Monotonic clock for the time budget.
        now: Aware UTC wall clock.
    """

    def __init__(
        self,
        *,
        normalizer: QueryNormalizer,
        reporter: NewsReporter,
        resolver: LocationResolver,
        fetcher: SocialPostFetcher,
        store: CacheStore,
        target_counts: Mapping[Scope, int] | None = None,
        min_fetch: int = 5,
        max_fetch: int = 20,
        max_attempts: int = 10,
        time_budget_seconds: float = 90.0,
        max_event_age: timedelta = timedelta(days=7),
        base_temperature: float = 0.2,
        temperature_step: float = 0.1,
        run_logger: RunLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._normalizer = normalizer
        self._reporter = reporter
        self._resolver = resolver
        self._fetcher = fetcher
        self._store = store
        self._target_counts = dict(target_counts or DEFAULT_TARGET_COUNTS)
        self._min_fetch = min_fetch
        self._max_fetch = max_fetch
        self._max_attempts = max_attempts
        self._time_budget = time_budget_seconds
        self._max_event_age = max_event_age
        self._base_temperature = base_temperature
        self._temperature_step = temperature_step
        self._run_logger = run_logger
        self._clock = clock
        self._now = now

    async def run(self, raw_query: str, relay: StreamRelay) -> DiscoveryResult:
        """Execute a discovery run, streaming progress through ``relay``.

        ``complete`` is always the last event written, whatever happens.

        Args:
            raw_query: The user's query, possibly empty.
            relay: Channel to the client.

        Returns:
            The run summary.
        """
        result = DiscoveryResult()
        if self._run_logger:
            self._run_logger.start_run(raw_query)

        relay.connected()
        failure: str | None = None
        try:
            await self._discover(raw_query, relay, result)
        except Exception as e:
            logger.exception(f"Discovery failed for {raw_query!r}")
            failure = str(e)
            relay.error(failure)
        finally:
            relay.complete(
                query=result.query.key if result.query else None,
                scope=result.query.scope if result.query else None,
                cached=result.cached_count,
                fetched=result.fetched_count,
                attempts=result.attempts,
                usage={
                    "input_tokens": result.usage.input_tokens,
                    "output_tokens": result.usage.output_tokens,
                    "api_calls": len(result.usage.api_calls),
                    "social_lookups": result.usage.social_lookups,
                    "geocode_lookups": result.usage.geocode_lookups,
                },
            )
            if self._run_logger:
                result.log_path = self._run_logger.finish_run(
                    result.events, result.usage, error=failure
                )

        return result

    async def _discover(self, raw_query: str, relay: StreamRelay, result: DiscoveryResult) -> None:
        relay.status("Analyzing query scope...")
        t0 = time.monotonic()
        query, norm_usage = await self._normalizer.normalize(raw_query)
        result.query = query
        result.usage += norm_usage
        if self._run_logger:
            self._run_logger.log_normalization(query, time.monotonic() - t0)
        logger.info(f"Normalized {raw_query!r} to {query.key!r} ({query.scope})")

        cached = await self._store.lookup(query.key)
        headlines: list[str] = []
        if cached is not None and cached.events:
            relay.status(f"Found {len(cached.events)} cached events for {query.key}")
            for event in cached.events:
                relay.news(event)
                headlines.append(event.headline)
        result.cached_count = len(headlines)
        if self._run_logger:
            self._run_logger.log_cache(result.cached_count)

        state = _RunState(
            raw_query=raw_query,
            query=query,
            headlines=headlines,
            query_id=cached.id if cached is not None else None,
            result=result,
        )
        target = self._target_counts[query.scope]
        fetched = 0
        start = self._clock()

        while (
            fetched < target
            and result.attempts < self._max_attempts
            and self._clock() - start < self._time_budget
            and relay.is_open
        ):
            result.attempts += 1
            fetch_count = min(
                max(target - (result.cached_count + fetched), self._min_fetch), self._max_fetch
            )
            if result.attempts == 1:
                relay.status(
                    f"Scanning {query.scope} scope for updates "
                    f"(target: {target}, fetching: {fetch_count})..."
                )
            else:
                relay.status(f"Scanning for more... ({fetched}/{target} found)")

            request = ReportRequest(
                normalized_key=query.key,
                scope=query.scope,
                fetch_count=fetch_count,
                now=self._now(),
                excluded_headlines=tuple(headlines),
                temperature=min(
                    self._base_temperature + self._temperature_step * result.attempts, 1.0
                ),
            )
            tally = RoundTally()
            error: str | None = None
            t0 = time.monotonic()
            try:
                await self._run_round(state, request, relay, tally)
            except Exception as e:
                logger.exception(f"Discovery round {result.attempts} failed for {query.key!r}")
                error = str(e)
            fetched = len(result.events)

            if self._run_logger:
                self._run_logger.log_round(
                    attempt=result.attempts,
                    fetch_count=fetch_count,
                    temperature=request.temperature,
                    excluded_headlines=request.excluded_headlines,
                    candidate_count=tally.candidates,
                    accepted=tally.accepted,
                    skipped=tally.skipped,
                    usage=tally.usage,
                    duration_seconds=time.monotonic() - t0,
                    error=error,
                )

        logger.info(
            f"Discovery for {query.key!r} finished: {result.cached_count} cached, "
            f"{fetched} new in {result.attempts} rounds"
        )

    async def _run_round(
        self, state: _RunState, request: ReportRequest, relay: StreamRelay, tally: RoundTally
    ) -> None:
        """Run one reporter call and process its candidates in order."""
        candidates, round_usage = await self._reporter.report(
            request, is_active=lambda: relay.is_open
        )
        tally.candidates = len(candidates)
        tally.usage = round_usage

        saved_ids: list[str] = []
        try:
            for candidate in candidates:
                if not relay.is_open:
                    break
                try:
                    event = await self._process_candidate(
                        candidate, state, round_usage, relay, tally.skipped
                    )
                except Exception:
                    logger.exception(f"Failed to process candidate {candidate.headline!r}")
                    tally.skipped["error"] += 1
                    continue
                if event is not None:
                    saved_ids.append(event.id)
                    tally.accepted.append(event.headline)
        finally:
            state.result.usage += round_usage
            if saved_ids:
                await self._link(state, saved_ids)

    async def _process_candidate(
        self,
        candidate: Candidate,
        state: _RunState,
        usage: Usage,
        relay: StreamRelay,
        skipped: Counter[str],
    ) -> NewsEvent | None:
        headline, location = candidate.headline, candidate.location
        if not headline or not location:
            skipped["incomplete"] += 1
            return None
        if headline in state.headlines:
            skipped["duplicate"] += 1
            return None

        now = self._now()
        declared = parse_timestamp(candidate.timestamp)
        if declared is not None and declared < now - self._max_event_age:
            logger.info(f"Skipping old event: {headline}")
            skipped["stale"] += 1
            return None

        relay.status(f"Found: {headline}")

        usage.geocode_lookups += 1
        try:
            geocoded = await self._resolver.resolve(location)
        except GeocodingError as e:
            logger.warning(f"Could not geocode {location!r} for {headline!r}: {e}")
            skipped["geocode_failed"] += 1
            return None
        if geocoded is None:
            logger.info(f"Location not found: {location!r}")
            skipped["not_geocoded"] += 1
            return None

        posts: list[SocialPost] = []
        if candidate.search_query:
            relay.status(f'Fetching posts from X: "{candidate.search_query}"...')
            usage.social_lookups += 1
            posts = await self._fetcher.fetch(candidate.search_query, headline)
            if posts:
                relay.status(f"Found {len(posts)} posts from X")
            else:
                relay.status(f"No posts found on X for: {headline}")

        event = NewsEvent(
            id=str(uuid.uuid4()),
            headline=headline,
            location=location,
            summary=candidate.summary or "",
            category=candidate.category or "General",
            coordinates=geocoded.coordinates,
            timestamp=declared or now,
            posts=tuple(posts),
        )
        try:
            saved = await self._store.create_event(event)
        except PersistenceConflictError as e:
            logger.warning(str(e))
            skipped["conflict"] += 1
            return None
        if saved.id != event.id:
            logger.info(f"Linked existing event for {headline!r}")

        state.headlines.append(saved.headline)
        state.result.events.append(saved)
        relay.news(saved)
        return saved

    async def _link(self, state: _RunState, event_ids: list[str]) -> None:
        if state.query_id is not None:
            await self._store.link_events(state.query_id, event_ids)
            return
        state.query_id = await self._store.upsert_query_for_key(
            state.query.key, state.raw_query.strip() or GLOBAL_NEWS, event_ids
        )
