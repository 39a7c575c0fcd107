"""
Database engine and session management.

One Database object per process owns the SQLAlchemy engine and the session
factory. Schedulers (threads) and HTTP handlers each open short sessions
through session_scope(); the natural-key upsert makes concurrent writers safe.
"""
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from budget_tracker.config.logging import logger
from budget_tracker.core.exceptions import DataDestinationError


class Base(DeclarativeBase):
    pass


class Database:

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        connect_args = {}
        if url.startswith("sqlite"):
            # sessions are opened from scheduler threads and request handlers
            connect_args["check_same_thread"] = False

        self.engine = create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)
        if self.dialect == "sqlite":
            event.listen(self.engine, "connect", _sqlite_pragmas)

        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(f"Database engine created for: {url.split('@')[-1]}")

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self):
        # imported for its side effect of registering the tables
        from budget_tracker.infrastructure.database import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_all(self):
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transaction boundary: commits when the block succeeds, rolls back and
        raises DataDestinationError on any database failure.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database transaction failed, rolling back: {e}")
            raise DataDestinationError(f"Transaction failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()


def _sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()
