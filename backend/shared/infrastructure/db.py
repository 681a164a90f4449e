"""
Database engine and sessions (SQLAlchemy 2.0, synchronous).

Webhook handlers receive a session through the `get_db` dependency; the CLI
and jobs use `get_db_context()`. Sessions never autocommit: reconciliation
code decides where a transaction ends.
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from shared.config.settings import DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    """Pool options for PostgreSQL; SQLite (local runs, tests) only needs thread sharing."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        # Webhook bursts are short; (2 * cores) + 1 connections, at most 20
        "pool_size": min((os.cpu_count() or 4) * 2 + 1, 20),
        "max_overflow": 15,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "connect_args": {"connect_timeout": 10},
    }


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Session outside of a request:

        with get_db_context() as db:
            PendingPaymentRechecker(db).run(since)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def safe_commit(db: Session) -> None:
    """Commit, or roll back and re-raise."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
