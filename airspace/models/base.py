"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev) and PostgreSQL (prod).
Engines are created per database URL so the contact store can be pointed
at any database, including in-memory SQLite for tests.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configure SQLite for better write performance.

    WAL mode allows concurrent reads during writes, which matters when the
    poll cycle writes while the API reads.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA synchronous=NORMAL')
    cursor.close()


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine with settings appropriate for the database type."""
    engine_kwargs = {'echo': echo}

    is_sqlite = url.startswith('sqlite')
    if is_sqlite:
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if url in ('sqlite://', 'sqlite:///:memory:'):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs['poolclass'] = StaticPool

    engine = create_engine(url, **engine_kwargs)

    if is_sqlite:
        event.listen(engine, 'connect', _set_sqlite_pragma)

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Avoid lazy loading issues
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with session_scope(SessionLocal) as session:
            session.execute(...)

    Automatically handles commit/rollback and session cleanup.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """
    Initialize database schema.

    Creates all tables if they don't exist.
    """
    # Import models so they register on Base.metadata
    from airspace.models import first_contact  # noqa: F401
    Base.metadata.create_all(bind=engine)
