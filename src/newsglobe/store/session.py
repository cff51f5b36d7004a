"""Database engine and session management."""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from newsglobe.store.models import Base

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the SQLAlchemy engine and hands out short-lived sessions.

    Sessions are used from worker threads (see ``CacheStore``), so SQLite
    connections are opened with ``check_same_thread=False``.

    Args:
        database_url: SQLAlchemy database URL.
        echo: Log emitted SQL.
    """

    def __init__(self, database_url: str = "sqlite:///newsglobe.db", *, echo: bool = False) -> None:
        self.database_url = database_url
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            pool_pre_ping=True,
            echo=echo,
        )
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        logger.info(f"Database engine created for {_mask_db_url(database_url)}")

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Yield a session that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database connections closed")


def _mask_db_url(url: str) -> str:
    """Hide credentials in a database URL for logging."""
    if "@" not in url:
        return url
    scheme, rest = url.split("//", 1)
    return f"{scheme}//***:***@{rest.split('@', 1)[1]}"
