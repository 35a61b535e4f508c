"""
Database engine factory for the catalog store.

This is the SINGLE SOURCE OF TRUTH for engine creation. The CLI, the
harvester and the consolidation passes all obtain engines and sessions here.

Usage:
    from db.engine import get_engine, get_session_factory

    engine = get_engine()                      # DATABASE_URL from config
    Session = get_session_factory(engine)
    session = Session()
    try:
        ...
    finally:
        session.close()

SQLite specifics:
    - PRAGMA foreign_keys=ON is issued on every new connection; SQLite
      leaves foreign keys unenforced otherwise.
    - The driver's implicit BEGIN handling is disabled and SQLAlchemy emits
      BEGIN itself, so session.begin_nested() maps to a real SAVEPOINT.
    - Engines are cached per URL (per-process singletons).
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

log = logging.getLogger(__name__)

# Module-level engine cache keyed by database URL
_ENGINES: Dict[str, Engine] = {}


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # Hand transaction control to SQLAlchemy so SAVEPOINT and
    # PRAGMA defer_foreign_keys behave inside session transactions.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def _begin_sqlite_transaction(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def _warmup(engine: Engine, attempts: int = 3, base_sleep: float = 0.5) -> None:
    """
    Open one connection with exponential backoff retry.

    A locked or briefly unavailable database file surfaces here instead of
    in the middle of a crawl.

    Raises:
        OperationalError: If all attempts fail
    """
    last_error: Optional[Exception] = None

    for i in range(attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.debug("db_warmup_success attempt=%d", i + 1)
            return
        except OperationalError as e:
            last_error = e
            sleep_s = base_sleep * (2 ** i)
            log.warning(
                "db_warmup_retry attempt=%d/%d sleep_s=%.2f err=%s",
                i + 1, attempts, sleep_s, str(e)[:100]
            )
            time.sleep(sleep_s)

    log.error("db_warmup_failed after %d attempts", attempts)
    raise last_error  # type: ignore[misc]


def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Get an engine for the catalog store.

    Args:
        database_url: SQLAlchemy URL (defaults to DATABASE_URL via config)

    Returns:
        SQLAlchemy Engine instance (cached per URL)

    Raises:
        OperationalError: If the database cannot be opened after retries
    """
    if database_url is None:
        from config import get_database_url
        database_url = get_database_url()

    cached = _ENGINES.get(database_url)
    if cached is not None:
        return cached

    engine = create_engine(database_url, future=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _configure_sqlite_connection)
        event.listen(engine, "begin", _begin_sqlite_transaction)
    log.info("db_engine_created dialect=%s", engine.dialect.name)

    _warmup(engine)

    _ENGINES[database_url] = engine
    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to ``engine`` (or the default engine)."""
    return sessionmaker(bind=engine or get_engine(), future=True)


def dispose_engines() -> None:
    """
    Dispose all cached engines (for testing/cleanup).
    """
    for url, engine in list(_ENGINES.items()):
        engine.dispose()
        del _ENGINES[url]

    log.info("db_engines_disposed")
