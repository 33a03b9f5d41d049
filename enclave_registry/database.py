"""SQLModel database configuration for the enclave registry."""

from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

DB_PATH = os.environ.get("ENCLAVE_REGISTRY_DB_PATH", "enclave_registry.db")
DATABASE_URL = f"sqlite:///{DB_PATH}"

# Create engine with SQLite-specific settings
engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False, "timeout": 30},
)


# Enable WAL mode and foreign keys for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Set SQLite pragmas on each connection.

    pysqlite's own transaction handling is switched off so the ``begin``
    listener below controls when a transaction starts.
    """
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine, "begin")
def begin_immediate(conn):
    """Take the write lock at the first statement of every transaction.

    A session's reads and writes then form one serialized transaction, so
    read-modify-write sequences (version bumps, staleness checks) cannot
    interleave with another writer.
    """
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_session() -> Session:
    """Create a new database session."""
    return Session(engine, expire_on_commit=False)


@contextmanager
def get_db():
    """Context manager for database sessions with auto-commit.

    Each registry operation runs inside exactly one of these, so an
    exception anywhere in the block rolls back every write it made.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db():
    """Initialize database schema using SQLModel metadata."""
    # Import models to register them with SQLModel
    from . import db_models  # noqa: F401

    SQLModel.metadata.create_all(engine)
