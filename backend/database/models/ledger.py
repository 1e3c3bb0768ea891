"""
Ledger models for tenants, accounts, merchants and transactions.

Maps to:
- users table
- accounts table
- merchants table
- transactions table
- linked_credentials table

Account, merchant and transaction ids are derived from stable external keys
(see security.identifiers), never generated at random.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import false, func

from database.base import Base


class User(Base):
    """Tenants, upserted on first authenticated storage access."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True)
    email = Column(String(320), nullable=False, unique=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    accounts = relationship("Account", back_populates="owner")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class Account(Base):
    """Aggregator accounts. Balance is the sum of the account's transactions."""

    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    institution = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")

    __table_args__ = (Index("idx_accounts_user", "user_id"),)

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, name={self.name}, institution={self.institution})>"


class Merchant(Base):
    """Global merchant catalog shared by all tenants."""

    __tablename__ = "merchants"

    id = Column(Uuid, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<Merchant(id={self.id}, name={self.name})>"


class Transaction(Base):
    """Signed ledger entries: negative is an expense, positive is income."""

    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    merchant_id = Column(Uuid, ForeignKey("merchants.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    authorized_at = Column(DateTime(timezone=True), nullable=True)
    pending = Column(Boolean, nullable=False, default=False, server_default=false())
    category = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    account = relationship("Account", back_populates="transactions")
    merchant = relationship("Merchant")

    __table_args__ = (
        Index("idx_transactions_user_occurred", "user_id", "occurred_at"),
        Index("idx_transactions_account", "account_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, amount={self.amount}, "
            f"currency={self.currency}, occurred_at={self.occurred_at})>"
        )


class LinkedCredential(Base):
    """Aggregator items linked by a tenant, with the vault-encrypted token."""

    __tablename__ = "linked_credentials"

    item_id = Column(String(255), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    encrypted_access_token = Column(Text, nullable=False)  # ENCRYPTED (vault blob)
    linked_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_linked_credentials_user", "user_id"),)

    def __repr__(self) -> str:
        return f"<LinkedCredential(item_id={self.item_id}, user_id={self.user_id})>"
