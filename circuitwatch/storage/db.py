"""Engine and session management.

``Database`` owns one SQLAlchemy engine + session factory. ``session_scope``
commits on success, rolls back on any exception, and re-raises SQLAlchemy
failures as ``PersistenceError`` so callers handle one storage error type.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from circuitwatch.storage.models import Base
from circuitwatch.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def _sqlite_pragmas(dbapi_conn, _record) -> None:  # type: ignore[no-untyped-def]
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA busy_timeout=30000")
    cur.close()


def build_engine(url: str, echo: bool = False) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo, pool_pre_ping=True, future=True)
    database = parsed.database
    if not database or database == ":memory:":
        # one shared connection so every thread sees the same in-memory db
        return create_engine(
            url, echo=echo, future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    Path(database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, echo=echo, future=True, connect_args={"check_same_thread": False, "timeout": 30})
    event.listen(engine, "connect", _sqlite_pragmas)
    return engine


class Database:
    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine = build_engine(url, echo=echo)
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"schema creation failed: {e}") from e
        logger.info("db.schema_ready url=%s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self._factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = ["Database", "build_engine"]
