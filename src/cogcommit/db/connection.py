"""
Database connection management for the CogCommit local store.

The local store is a single SQLite file. Engines are created explicitly and
passed to ``LocalStore`` rather than living at module level, so tests and the
sync queue can each own their own store.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cogcommit.config import settings
from cogcommit.models.db import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for the local store and make sure the schema exists.

    Args:
        database_url: SQLAlchemy URL (defaults to the configured SQLite file)

    Returns:
        Engine: A SQLAlchemy engine bound to the local store
    """
    url = database_url or settings.database_url

    if url == "sqlite://" or url == "sqlite:///:memory:":
        # One shared connection so every session sees the same in-memory database
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        if url.startswith("sqlite:///"):
            Path(url.removeprefix("sqlite:///")).expanduser().parent.mkdir(
                parents=True, exist_ok=True
            )
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )

    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    Base.metadata.create_all(bind=engine)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(
        autoflush=False,
        bind=engine,
    )


def check_connection(engine: Engine) -> bool:
    """
    Check if the local database is reachable.

    Returns:
        bool: True if a trivial query succeeds
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Local database check failed: {e}")
        return False
