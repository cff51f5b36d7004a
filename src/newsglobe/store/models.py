"""SQLAlchemy tables backing the news cache."""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in the database."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


def to_db(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def from_db(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class Base(DeclarativeBase):
    pass


search_query_events = Table(
    "search_query_events",
    Base.metadata,
    Column("query_id", ForeignKey("search_queries.id", ondelete="CASCADE"), primary_key=True),
    Column("event_id", ForeignKey("news_events.id", ondelete="CASCADE"), primary_key=True),
)


class NewsEventRecord(Base):
    __tablename__ = "news_events"
    __table_args__ = (
        UniqueConstraint("headline", "location", name="uq_news_events_headline_location"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    headline: Mapped[str] = mapped_column(String(512))
    location: Mapped[str] = mapped_column(String(512))
    summary: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(128), default="General")
    longitude: Mapped[float] = mapped_column(Float)
    latitude: Mapped[float] = mapped_column(Float)
    # Event time as reported for the story; discovered_at is when we found it.
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True)
    discovered_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    posts: Mapped[list["SocialPostRecord"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SocialPostRecord.id",
    )


class SocialPostRecord(Base):
    __tablename__ = "social_posts"
    __table_args__ = (UniqueConstraint("event_id", "post_id", name="uq_social_posts_event_post"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        ForeignKey("news_events.id", ondelete="CASCADE"), index=True
    )
    post_id: Mapped[str] = mapped_column(String(64), comment="Provider-assigned post id")
    author: Mapped[str] = mapped_column(String(128))
    name: Mapped[str] = mapped_column(String(256))
    text: Mapped[str] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text)
    timestamp: Mapped[str | None] = mapped_column(String(64), nullable=True)
    likes: Mapped[int] = mapped_column(Integer, default=0)
    replies: Mapped[int] = mapped_column(Integer, default=0)
    reposts: Mapped[int] = mapped_column(Integer, default=0)
    profile_pic: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    event: Mapped[NewsEventRecord] = relationship(back_populates="posts")


class SearchQueryRecord(Base):
    __tablename__ = "search_queries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    normalized_key: Mapped[str] = mapped_column(String(512), index=True)
    original_query: Mapped[str] = mapped_column(Text)
    last_refresh: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    events: Mapped[list[NewsEventRecord]] = relationship(secondary=search_query_events)
