"""
Ledger storage: idempotent, failure-isolated writes.

Every write is an insert-or-update keyed by a deterministic id. Each row
runs inside its own savepoint so a constraint violation rolls back only
that row. Owner-scoped rows are checked against the caller's owner id
before mutation, and the conflict update is additionally guarded so it can
never touch another tenant's row.
"""

import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from database.models import Account, Merchant, Transaction, User
from database.schema import SchemaDescriptor
from errors import ConfigurationError, RowUpsertError, TenantContextError
from logging_config import get_logger
from security.identifiers import merchant_id as derive_merchant_id
from security.identifiers import normalize_merchant_name

logger = get_logger(__name__)

UNKNOWN_MERCHANT = "Unknown Merchant"

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class TransactionRow:
    """A mapped transaction ready to be written."""

    id: uuid.UUID
    account_id: uuid.UUID
    merchant_name: str
    amount: Decimal
    currency: str
    occurred_at: datetime
    authorized_at: Optional[datetime]
    pending: bool
    category: str
    description: Optional[str]


def dialect_insert(session, table):
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect](table)
    except KeyError:
        raise ConfigurationError(f"Upserts are not supported on dialect: {dialect}")


class StorageUpserter:
    """Writes accounts, merchants and transactions for one unit of work."""

    def __init__(self, session, schema: Optional[SchemaDescriptor] = None):
        self.session = session
        self.schema = schema or SchemaDescriptor()

    def _check_tenant(self, owner_id: uuid.UUID) -> None:
        tenant = self.session.info.get("owner_id")
        if tenant is not None and tenant != owner_id:
            raise TenantContextError(
                f"Storage call for owner {owner_id} inside tenant session {tenant}"
            )

    @contextmanager
    def _row(self, entity: str, key):
        """Savepoint around one row; database errors become RowUpsertError."""
        try:
            with self.session.begin_nested():
                yield
        except SQLAlchemyError as e:
            logger.warning(f"{entity} upsert failed for {key}: {e.__class__.__name__}")
            raise RowUpsertError(f"{entity} upsert failed", entity=entity, key=str(key)) from e

    def _assert_row_owner(self, model, row_id: uuid.UUID, owner_id: uuid.UUID) -> None:
        existing = self.session.execute(
            select(model.user_id).where(model.id == row_id)
        ).scalar_one_or_none()
        if existing is not None and existing != owner_id:
            raise RowUpsertError(
                f"{model.__name__} {row_id} belongs to another owner",
                entity=model.__name__,
                key=str(row_id),
            )

    # ========================================================================
    # USERS
    # ========================================================================

    def ensure_user(self, owner_id: uuid.UUID, email: str, full_name: Optional[str] = None) -> None:
        """Upsert the tenant's user row. Failures abort the unit of work."""
        self._check_tenant(owner_id)
        table = User.__table__
        values = {"id": owner_id, "email": email}
        update = {"email": email}
        if self.schema.users_have_full_name:
            values["full_name"] = full_name
            update["full_name"] = func.coalesce(full_name, table.c.full_name)

        stmt = dialect_insert(self.session, table).values(**values)
        stmt = stmt.on_conflict_do_update(index_elements=[table.c.id], set_=update)
        self.session.execute(stmt)

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    def upsert_account(self, owner_id: uuid.UUID, account_id: uuid.UUID, name: str, institution: str) -> bool:
        """Insert or rename an account.

        Returns:
            True if written, False if the row was skipped
        """
        self._check_tenant(owner_id)
        table = Account.__table__
        stmt = dialect_insert(self.session, table).values(
            id=account_id, user_id=owner_id, name=name, institution=institution
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={"name": stmt.excluded.name, "institution": stmt.excluded.institution},
            where=table.c.user_id == owner_id,
        )
        try:
            with self._row("Account", account_id):
                self._assert_row_owner(Account, account_id, owner_id)
                self.session.execute(stmt)
        except RowUpsertError as e:
            logger.warning(f"Skipping account {account_id}: {e.message}", extra={"owner_id": str(owner_id)})
            return False
        return True

    # ========================================================================
    # MERCHANTS
    # ========================================================================

    def upsert_merchant(self, cache: Dict[str, uuid.UUID], name: Optional[str]) -> uuid.UUID:
        """Resolve a merchant name to its id, writing the catalog row once.

        ``cache`` is owned by the caller and lives for one sync invocation.
        """
        normalized = normalize_merchant_name(name or "") or UNKNOWN_MERCHANT
        cached = cache.get(normalized)
        if cached is not None:
            return cached

        merchant_id = derive_merchant_id(normalized)
        table = Merchant.__table__
        stmt = dialect_insert(self.session, table).values(id=merchant_id, name=normalized)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id], set_={"name": stmt.excluded.name}
        )
        try:
            with self._row("Merchant", normalized):
                self.session.execute(stmt)
        except RowUpsertError:
            # Same name stored under another id (rows created before ids were derived)
            existing = self.session.execute(
                select(Merchant.id).where(Merchant.name == normalized)
            ).scalar_one_or_none()
            if existing is not None:
                merchant_id = existing

        cache[normalized] = merchant_id
        return merchant_id

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def upsert_transaction(self, owner_id: uuid.UUID, row: TransactionRow, merchant_id: uuid.UUID) -> bool:
        """Insert or refresh a transaction.

        Returns:
            True if written, False if the row was skipped
        """
        self._check_tenant(owner_id)
        table = Transaction.__table__
        stmt = dialect_insert(self.session, table).values(
            id=row.id,
            user_id=owner_id,
            account_id=row.account_id,
            merchant_id=merchant_id,
            amount=row.amount,
            currency=row.currency,
            occurred_at=row.occurred_at,
            authorized_at=row.authorized_at,
            pending=row.pending,
            category=row.category,
            description=row.description,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "account_id": excluded.account_id,
                "merchant_id": excluded.merchant_id,
                "amount": excluded.amount,
                "currency": excluded.currency,
                "occurred_at": excluded.occurred_at,
                "authorized_at": excluded.authorized_at,
                "pending": excluded.pending,
                "category": excluded.category,
                "description": excluded.description,
            },
            where=table.c.user_id == owner_id,
        )
        try:
            with self._row("Transaction", row.id):
                self._assert_row_owner(Transaction, row.id, owner_id)
                self.session.execute(stmt)
        except RowUpsertError as e:
            logger.warning(f"Skipping transaction {row.id}: {e.message}", extra={"owner_id": str(owner_id)})
            return False
        return True

    # ========================================================================
    # RESET
    # ========================================================================

    def delete_owner_ledger(self, owner_id: uuid.UUID) -> Dict[str, int]:
        """Delete the owner's transactions, then accounts. Merchants stay."""
        self._check_tenant(owner_id)
        transactions = self.session.execute(
            delete(Transaction).where(Transaction.user_id == owner_id)
        ).rowcount
        accounts = self.session.execute(
            delete(Account).where(Account.user_id == owner_id)
        ).rowcount
        return {"transactions": transactions, "accounts": accounts}
