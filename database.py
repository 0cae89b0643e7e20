"""
Database connection and session management for DoseCall
"""

import logging
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings


logger = logging.getLogger(__name__)


def create_db_engine(url: str, echo: bool = False):
    """Create an engine for the given URL with per-backend pooling"""
    if url.startswith("sqlite"):
        # SQLite specific configuration
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo
        )

        # Enable foreign keys for SQLite
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    # PostgreSQL or other databases
    return create_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True
    )


def create_session_factory(bind) -> sessionmaker:
    """
    Session factory used by the reminder store.

    Objects stay readable after commit because the scheduler and the call
    state machine hold them across awaits, outside of any session.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind
    )


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

# Create session factory
SessionLocal = create_session_factory(engine)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None) -> None:
    """
    Initialize database tables.
    Creates all tables defined in models.
    """
    # Import models to register them with Base
    import models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database initialized at: {bind.url}")


# Export commonly used items
__all__ = [
    "engine",
    "SessionLocal",
    "Base",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
