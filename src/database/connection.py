"""
Database connection module

Builds SQLAlchemy engines and sessions for the market data store. PostgreSQL
is reached through the psycopg3 driver (`postgresql+psycopg://`); SQLite URLs
are accepted for local runs and tests.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.data_collector.config import config
from src.database.models import create_tables
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="database")

_engine: Optional[Engine] = None


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create an engine for `database_url` and ensure the tables exist.

    Args:
        database_url: SQLAlchemy URL, defaults to the configured database
        echo: Log emitted SQL

    Returns:
        Engine with pre-ping enabled
    """
    url = database_url or config.database_url
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise each session sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
    else:
        engine = create_engine(url, echo=echo, pool_pre_ping=True, pool_size=5, max_overflow=10)

    create_tables(engine)
    logger.info(f"Database engine ready for {engine.url.render_as_string(hide_password=True)}")
    return engine


def get_engine() -> Engine:
    """Process-wide engine for the configured database, created on first use"""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def dispose_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Commit on success, roll back and re-raise on error, always close"""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
