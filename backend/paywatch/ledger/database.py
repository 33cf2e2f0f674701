"""
Engine and session management for the ledger store.

A single process owns the store. Writes are serialised with a process-local
lock on top of the conditional UPDATEs, which keeps SQLite from raising
"database is locked" when several monitors confirm at once.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from paywatch.ledger.models import AddressCounter, Base

logger = logging.getLogger(__name__)


def create_store_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


class Database:
    """Owns the engine, the session factory and the write lock."""

    def __init__(self, database_url: str = "sqlite:///payments.db") -> None:
        self.database_url = database_url
        self.engine = create_store_engine(database_url)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.write_lock = threading.RLock()

    def init_schema(self) -> None:
        """Create tables and the singleton address counter row."""
        Base.metadata.create_all(self.engine)
        with self.transaction() as session:
            if session.scalar(select(AddressCounter).where(AddressCounter.id == 1)) is None:
                session.add(AddressCounter(id=1, next_index=0))
        logger.info(f"Ledger store ready: {self.engine.url.render_as_string(hide_password=True)}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only session."""
        session = self._sessions()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Serialised read-write session, committed on success and rolled back on error."""
        with self.write_lock:
            session = self._sessions()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self) -> None:
        self.engine.dispose()
