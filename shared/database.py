import logging
import os
from contextlib import contextmanager
from typing import Callable, Generator, Tuple, Type, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import NullPool, StaticPool

Base = declarative_base()

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Database:
    """Database connection manager for services"""

    def __init__(self, url: str = None, echo: bool = False):
        self.url = url or os.getenv("DATABASE_URL")
        if not self.url:
            raise RuntimeError("DATABASE_URL environment variable is not set")

        self.echo = echo or (os.getenv("DB_ECHO", "false").lower() == "true")

        engine_args = {}
        if self.url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                # In-memory databases only live as long as their one connection
                engine_args["poolclass"] = StaticPool
            else:
                engine_args["poolclass"] = NullPool
        else:
            engine_args["poolclass"] = NullPool

        self.engine = create_engine(
            self.url,
            echo=self.echo,
            future=True,
            **engine_args
        )

        if self.url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True
        )

    def get_session(self) -> Session:
        """Get a new database session"""
        return self.SessionLocal()

    @contextmanager
    def session_ctx(self) -> Generator[Session, None, None]:
        """Context manager for database sessions"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run_transaction(
        self,
        work: Callable[[Session], T],
        *,
        attempts: int = 3,
        retry_on: Tuple[Type[BaseException], ...] = (),
    ) -> T:
        """Run ``work`` in a fresh transaction, retrying on the given errors.

        Every attempt re-reads its rows in a new session, so a retried
        read-modify-write never works from the stale copy that lost the race.
        The last error is re-raised once ``attempts`` are used up.
        """
        for attempt in range(1, attempts + 1):
            try:
                with self.session_ctx() as session:
                    return work(session)
            except retry_on as exc:
                if attempt == attempts:
                    raise
                logger.warning("Transaction attempt %s/%s failed, retrying: %s", attempt, attempts, exc)
        raise RuntimeError("run_transaction called with attempts < 1")

    def create_all(self):
        """Create all tables"""
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self):
        """Drop all tables (use with caution!)"""
        Base.metadata.drop_all(bind=self.engine)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Global instance (will be initialized in each service)
_db: Database | None = None


def init_db(url: str = None, echo: bool = False) -> Database:
    """Initialize database connection"""
    global _db
    _db = Database(url=url, echo=echo)
    return _db


def get_db() -> Database:
    """Get initialized database instance"""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db
