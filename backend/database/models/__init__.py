# backend/database/models/__init__.py
"""SQLAlchemy models for all database tables."""

from .ledger import Account, LinkedCredential, Merchant, Transaction, User

__all__ = [
    "Account",
    "LinkedCredential",
    "Merchant",
    "Transaction",
    "User",
]
