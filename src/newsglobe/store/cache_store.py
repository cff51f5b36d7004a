"""Read/write access to previously discovered news events, keyed by normalized query."""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from newsglobe.data import NewsEvent, SearchQuery, SocialPost
from newsglobe.store.models import (
    NewsEventRecord,
    SearchQueryRecord,
    SocialPostRecord,
    from_db,
    search_query_events,
    to_db,
)
from newsglobe.store.session import SessionManager

logger = logging.getLogger(__name__)


class PersistenceConflictError(Exception):
    """An event clashed with an existing row that could not be located."""


@dataclass(frozen=True)
class StoreStats:
    query_count: int
    event_count: int
    recent_events: list[NewsEvent] = field(default_factory=list)


class CacheStore:
    """Async facade over the relational news cache.

    Every operation opens its own session and runs in a worker thread, so
    concurrent requests never share a session and the event loop is never
    blocked on the database.

    Args:
        sessions: Session manager owning the engine.
        query_ttl: How long a query record counts as fresh.
        event_ttl: Maximum age of events surfaced from the cache.
        clock: Aware UTC time source, injectable for tests.
    """

    def __init__(
        self,
        sessions: SessionManager,
        *,
        query_ttl: timedelta = timedelta(hours=6),
        event_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._sessions = sessions
        self._query_ttl = query_ttl
        self._event_ttl = event_ttl
        self._clock = clock

    async def lookup(self, normalized_key: str) -> SearchQuery | None:
        """Return the freshest record for a key with its recent events.

        Args:
            normalized_key: Canonical cache key.

        Returns:
            The most recent record refreshed within the query TTL, with
            events newer than the event TTL (most recent first), or None.
        """
        return await asyncio.to_thread(self._lookup, normalized_key)

    async def link_events(self, query_id: str, event_ids: Iterable[str]) -> None:
        """Associate events with a query record and bump its refresh time.

        Linking an already linked event is a no-op.

        Raises:
            LookupError: If the query record does not exist.
        """
        await asyncio.to_thread(self._link_events, query_id, list(event_ids))

    async def upsert_query_for_key(
        self, normalized_key: str, original_query: str, event_ids: Iterable[str]
    ) -> str | None:
        """Link events to the record for ``normalized_key``, creating it if needed.

        Returns:
            The record id, or None when there was nothing to link.
        """
        ids = list(event_ids)
        if not ids:
            return None
        return await asyncio.to_thread(
            self._upsert_query_for_key, normalized_key, original_query, ids
        )

    async def create_event(self, event: NewsEvent) -> NewsEvent:
        """Persist an event and its posts atomically.

        A duplicate headline+location is not an error: the pre-existing event
        is returned instead, so callers can link it like a new one. Compare
        the returned ``id`` with the input to tell the two apart.

        Raises:
            PersistenceConflictError: If the insert conflicted but no matching
                event could be found.
        """
        try:
            return await asyncio.to_thread(self._insert_event, event)
        except IntegrityError as e:
            logger.warning(
                f"Failed to save event {event.headline!r}, recovering existing row: {e.orig}"
            )

        existing = await self.find_event(event.headline, event.location)
        if existing is None:
            raise PersistenceConflictError(
                f"Conflict saving {event.headline!r} but no existing event found"
            )
        return existing

    async def find_event(self, headline: str, location: str) -> NewsEvent | None:
        return await asyncio.to_thread(self._find_event, headline, location)

    async def stats(self, *, recent: int = 5) -> StoreStats:
        """Counts of records and the most recent events."""
        return await asyncio.to_thread(self._stats, recent)

    async def clear_key(self, normalized_key: str) -> int:
        """Delete every query record for a key (events are kept).

        Returns:
            Number of records deleted.
        """
        return await asyncio.to_thread(self._clear_key, normalized_key)

    def close(self) -> None:
        self._sessions.close()

    # -- synchronous implementations, run in worker threads --

    def _lookup(self, normalized_key: str) -> SearchQuery | None:
        now = self._clock()
        with self._sessions.session_scope() as session:
            record = session.scalars(
                select(SearchQueryRecord)
                .where(
                    SearchQueryRecord.normalized_key == normalized_key,
                    SearchQueryRecord.last_refresh > to_db(now - self._query_ttl),
                )
                .order_by(SearchQueryRecord.last_refresh.desc())
                .limit(1)
            ).first()
            if record is None:
                return None

            events = session.scalars(
                select(NewsEventRecord)
                .join(search_query_events, search_query_events.c.event_id == NewsEventRecord.id)
                .where(
                    search_query_events.c.query_id == record.id,
                    NewsEventRecord.timestamp > to_db(now - self._event_ttl),
                )
                .order_by(NewsEventRecord.timestamp.desc())
            ).all()

            return SearchQuery(
                id=record.id,
                normalized_key=record.normalized_key,
                original_query=record.original_query,
                last_refresh=from_db(record.last_refresh),
                events=tuple(_to_event(e) for e in events),
            )

    def _link_events(self, query_id: str, event_ids: list[str]) -> None:
        with self._sessions.session_scope() as session:
            record = session.get(SearchQueryRecord, query_id)
            if record is None:
                raise LookupError(f"Unknown search query {query_id}")
            self._link(session, record, event_ids)

    def _upsert_query_for_key(
        self, normalized_key: str, original_query: str, event_ids: list[str]
    ) -> str:
        with self._sessions.session_scope() as session:
            record = session.scalars(
                select(SearchQueryRecord)
                .where(SearchQueryRecord.normalized_key == normalized_key)
                .order_by(SearchQueryRecord.last_refresh.desc())
                .limit(1)
            ).first()
            if record is None:
                record = SearchQueryRecord(
                    id=str(uuid.uuid4()),
                    normalized_key=normalized_key,
                    original_query=original_query,
                    last_refresh=to_db(self._clock()),
                )
                session.add(record)
                logger.info(f"Created search query record for {normalized_key!r}")
            self._link(session, record, event_ids)
            return record.id

    def _link(self, session: Session, record: SearchQueryRecord, event_ids: list[str]) -> None:
        linked = {event.id for event in record.events}
        for event_id in dict.fromkeys(event_ids):
            if event_id in linked:
                continue
            event = session.get(NewsEventRecord, event_id)
            if event is None:
                logger.warning(f"Cannot link unknown event {event_id} to {record.normalized_key!r}")
                continue
            record.events.append(event)
            linked.add(event_id)
        record.last_refresh = to_db(self._clock())

    def _insert_event(self, event: NewsEvent) -> NewsEvent:
        unique_posts = {post.id: post for post in event.posts}
        with self._sessions.session_scope() as session:
            session.add(
                NewsEventRecord(
                    id=event.id,
                    headline=event.headline,
                    location=event.location,
                    summary=event.summary,
                    category=event.category,
                    longitude=event.coordinates[0],
                    latitude=event.coordinates[1],
                    timestamp=to_db(event.timestamp),
                    discovered_at=to_db(self._clock()),
                    posts=[_to_post_record(p) for p in unique_posts.values()],
                )
            )
        return event

    def _find_event(self, headline: str, location: str) -> NewsEvent | None:
        with self._sessions.session_scope() as session:
            record = session.scalars(
                select(NewsEventRecord).where(
                    NewsEventRecord.headline == headline,
                    NewsEventRecord.location == location,
                )
            ).first()
            return _to_event(record) if record is not None else None

    def _stats(self, recent: int) -> StoreStats:
        with self._sessions.session_scope() as session:
            query_count = session.scalar(select(func.count()).select_from(SearchQueryRecord)) or 0
            event_count = session.scalar(select(func.count()).select_from(NewsEventRecord)) or 0
            latest = session.scalars(
                select(NewsEventRecord).order_by(NewsEventRecord.timestamp.desc()).limit(recent)
            ).all()
            return StoreStats(
                query_count=query_count,
                event_count=event_count,
                recent_events=[_to_event(e) for e in latest],
            )

    def _clear_key(self, normalized_key: str) -> int:
        with self._sessions.session_scope() as session:
            records = session.scalars(
                select(SearchQueryRecord).where(SearchQueryRecord.normalized_key == normalized_key)
            ).all()
            for record in records:
                session.delete(record)
            return len(records)


def _to_post_record(post: SocialPost) -> SocialPostRecord:
    return SocialPostRecord(
        post_id=post.id,
        author=post.author,
        name=post.name or post.author,
        text=post.text,
        url=post.url,
        timestamp=post.timestamp,
        likes=post.likes,
        replies=post.replies,
        reposts=post.reposts,
        profile_pic=post.profile_pic,
        verified=post.verified,
    )


def _to_event(record: NewsEventRecord) -> NewsEvent:
    return NewsEvent(
        id=record.id,
        headline=record.headline,
        location=record.location,
        summary=record.summary,
        category=record.category,
        coordinates=(record.longitude, record.latitude),
        timestamp=from_db(record.timestamp),
        posts=tuple(
            SocialPost(
                id=p.post_id,
                author=p.author,
                name=p.name,
                text=p.text,
                url=p.url,
                timestamp=p.timestamp,
                likes=p.likes,
                replies=p.replies,
                reposts=p.reposts,
                profile_pic=p.profile_pic,
                verified=p.verified,
            )
            for p in record.posts
        ),
    )
