"""
Startup schema negotiation.

Installations differ in what the encrypted-token column is called and in
whether ``users`` carries a display-name column. Both are probed once at
startup and frozen into a SchemaDescriptor that the storage layer is built
with, so no metadata query happens per call.
"""

from dataclasses import dataclass

from sqlalchemy import inspect

from config import DEFAULT_TOKEN_COLUMN
from errors import SchemaNotReadyError
from logging_config import get_logger

logger = get_logger(__name__)

CREDENTIALS_TABLE = "linked_credentials"
TOKEN_COLUMN_CANDIDATES = ("encrypted_access_token", "access_token_enc", "access_token")
REQUIRED_TABLES = ("users", "accounts", "merchants", "transactions", CREDENTIALS_TABLE)


@dataclass(frozen=True)
class SchemaDescriptor:
    token_column: str = DEFAULT_TOKEN_COLUMN
    users_have_full_name: bool = True


def negotiate_schema(engine, require_tables: bool = True) -> SchemaDescriptor:
    """Inspect the live database once and describe its layout.

    Args:
        engine: SQLAlchemy engine
        require_tables: raise if any ledger table is missing

    Raises:
        SchemaNotReadyError: if ``require_tables`` and migrations have not run
    """
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    missing = [name for name in REQUIRED_TABLES if name not in tables]
    if missing:
        if require_tables:
            raise SchemaNotReadyError(
                f"Database schema is not migrated; missing tables: {', '.join(missing)}"
            )
        logger.warning(f"Schema negotiation: missing tables {missing}, using defaults")

    token_column = DEFAULT_TOKEN_COLUMN
    if CREDENTIALS_TABLE in tables:
        columns = {c["name"] for c in inspector.get_columns(CREDENTIALS_TABLE)}
        for candidate in TOKEN_COLUMN_CANDIDATES:
            if candidate in columns:
                token_column = candidate
                break

    users_have_full_name = True
    if "users" in tables:
        users_have_full_name = "full_name" in {c["name"] for c in inspector.get_columns("users")}

    descriptor = SchemaDescriptor(
        token_column=token_column, users_have_full_name=users_have_full_name
    )
    logger.info(f"Schema negotiated: {descriptor}")
    return descriptor
