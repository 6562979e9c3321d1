# ---------------------------------------------------------------------------
# db.py
#
# SQLAlchemy database setup.
#
# This module defines:
# - `engine`: the SQLAlchemy Engine (connection pool and DB driver)
# - `SessionLocal`: the session factory used for per-request sessions
# - `Base`: the declarative base class for ORM models
# - `init_db()`: idempotent schema bootstrap run once at startup
#
# All modules should import database primitives from this file to ensure
# consistent connection pooling and transaction semantics.
# ---------------------------------------------------------------------------

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import DATABASE_URL, SQL_ECHO

# SQLite connections are shared across the threadpool used for sync handlers.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# pool_pre_ping proactively checks connections to avoid stale sockets.
engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=SQL_ECHO,
    connect_args=_connect_args,
    future=True,
)

# Disable autocommit/autoflush to make writes explicit and predictable.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class Base(DeclarativeBase):
    """Declarative base class for all ORM models."""

    pass


def init_db() -> list[str]:
    """Create any missing tables ("create if not exists") and return their names."""
    from . import models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(bind=engine, checkfirst=True)
    return sorted(Base.metadata.tables)
