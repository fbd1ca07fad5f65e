"""Database engine construction and session management."""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import db_models

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_with_retry(url: str, retries: int = 5, delay: float = 2.0) -> Engine:
    """Create a SQLAlchemy engine, retrying until the database becomes available."""
    connect_args = {}
    engine_kwargs = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    for attempt in range(retries):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            break
        except OperationalError:
            if attempt == retries - 1:
                raise
            logger.warning("Database not reachable (attempt %d/%d)", attempt + 1, retries)
            time.sleep(delay * (attempt + 1))

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def run_schema_migrations(engine: Engine) -> None:
    """Create database objects managed by SQLAlchemy."""
    db_models.Base.metadata.create_all(bind=engine)


__all__ = [
    "create_engine_with_retry",
    "make_session_factory",
    "run_schema_migrations",
    "session_scope",
]
