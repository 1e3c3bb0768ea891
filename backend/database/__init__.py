"""
Database Layer - Public API

This module provides the public interface for all database operations.
It imports and re-exports from domain-specific modules.

Usage:
    from database import tenant_session, StorageUpserter, CredentialRepository

Organization:
    - base.py: Declarative base, engine factory and tenant sessions
    - models/: ORM models for the ledger tables
    - schema.py: One-time schema negotiation at startup
    - ledger.py: Account/merchant/transaction upserts and reset
    - credentials.py: Linked credential storage
"""

from .base import (
    Base,
    create_db_engine,
    create_session_factory,
    get_session,
    tenant_session,
)
from .credentials import CredentialRepository, StoredCredential
from .ledger import StorageUpserter, TransactionRow
from .schema import SchemaDescriptor, negotiate_schema

__all__ = [
    "Base",
    "CredentialRepository",
    "SchemaDescriptor",
    "StorageUpserter",
    "StoredCredential",
    "TransactionRow",
    "create_db_engine",
    "create_session_factory",
    "get_session",
    "negotiate_schema",
    "tenant_session",
]
