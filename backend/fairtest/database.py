"""
SQLAlchemy engine, session factory and declarative base.

The same engine backs two concerns:
- local_identities: the device-scoped identity store (never synced anywhere)
- exams / submissions / results: the reference ledger adapter

Stores and adapters take a session factory (SessionLocal here, a fresh
in-memory engine in tests) instead of a request-scoped session.
PostgreSQL and SQLite are supported; SQLite is the local default.
"""

import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///./fairtest.db"
)


def build_engine(url: str = DATABASE_URL):
    """
    Create an engine with settings appropriate for the database type.

    SQLite does not support pool_size, max_overflow, or pool_pre_ping.
    """
    engine_kwargs = {"echo": False}

    if url.startswith("postgresql"):
        engine_kwargs.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
        })
    elif url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory database
            engine_kwargs["poolclass"] = StaticPool

    new_engine = create_engine(url, **engine_kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine()

# Session factory - creates new database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


def create_tables(bind=None):
    """
    Create all database tables directly (used for SQLite local dev and tests).
    For PostgreSQL, use Alembic migrations instead.
    """
    # Register every model with Base.metadata
    import fairtest.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
