"""
Database configuration and session management.
The engine is built lazily from ``Settings.database_url`` (SQLite in the
app data directory unless JOURNAL_DATABASE_URL says otherwise).
"""
import logging
from typing import Generator, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from config.settings import get_settings

logger = logging.getLogger(__name__)

# Base class for declarative models
Base = declarative_base()

# Bound to the journal engine on first use.
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite gets WAL mode and cross-thread connections."""
    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        pool_pre_ping=True,
        echo=echo,
    )
    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_wal_mode(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()
    return engine


def get_engine() -> Engine:
    """The journal engine, created from settings on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.sql_echo)
        SessionLocal.configure(bind=_engine)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the engine so settings are re-read."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def get_db() -> Generator[Session, None, None]:
    """
    Yield a database session and close it afterwards.

    Usage:
        for db in get_db():
            service = StorageService(db)
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create any missing journal tables."""
    from storage import models  # noqa: F401  # Import to register models
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Journal database ready at %s", engine.url.render_as_string(hide_password=True))
