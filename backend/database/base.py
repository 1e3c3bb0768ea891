# backend/database/base.py
"""
SQLAlchemy Base and Engine Configuration

Provides the declarative base for all models, the engine factory and the
per-request tenant session.

Exactly one session is checked out per top-level request. Its tenant is
recorded in ``session.info["owner_id"]`` and, on PostgreSQL, published to
row-level security policies through the ``appsec.user_id`` setting for the
lifetime of the transaction.
"""

import uuid
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError, TimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DatabaseConfig
from logging_config import get_logger

logger = get_logger(__name__)

TENANT_SETTING = "appsec.user_id"

# Declarative base for all models
Base = declarative_base()


def create_db_engine(config: DatabaseConfig):
    """Create the engine for the configured database URL."""
    options = {
        "pool_pre_ping": True,  # Verify connections before use
        "hide_parameters": True,  # Keep tokens and PII out of error messages
    }
    if config.url.startswith("postgresql"):
        options.update(pool_size=config.pool_size, max_overflow=0)
    return create_engine(config.url, **options)


def create_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_session(session_factory):
    """Get a new SQLAlchemy session (context manager)."""
    try:
        db = session_factory()
    except TimeoutError:
        logger.error("Connection pool exhausted (all connections in use)")
        raise
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise

    try:
        yield db
    except Exception as e:
        logger.error(f"Session error: {e}")
        db.rollback()  # Explicit rollback on error
        raise
    finally:
        db.close()


@contextmanager
def tenant_session(session_factory, owner_id: uuid.UUID, statement_timeout_ms=None):
    """One unit of work scoped to ``owner_id``.

    Commits when the block exits cleanly, rolls everything back otherwise.
    The tenant is set once here and never changed for the session's life.
    """
    with get_session(session_factory) as db:
        db.info["owner_id"] = owner_id
        if db.get_bind().dialect.name == "postgresql":
            db.execute(
                text("SELECT set_config(:name, :owner_id, true)"),
                {"name": TENANT_SETTING, "owner_id": str(owner_id)},
            )
            if statement_timeout_ms:
                db.execute(
                    text("SELECT set_config('statement_timeout', :timeout, true)"),
                    {"timeout": str(int(statement_timeout_ms))},
                )
        yield db
        db.commit()
