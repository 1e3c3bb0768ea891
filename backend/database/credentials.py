"""
Linked credential persistence.

The token column name is negotiated at startup (see database.schema), so
queries go through a lightweight table built from the descriptor instead
of the ORM model.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, String, Text, Uuid, column, delete, func, select, table

from database.ledger import dialect_insert
from database.schema import CREDENTIALS_TABLE, SchemaDescriptor
from errors import CredentialConflictError
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class StoredCredential:
    item_id: str
    owner_id: uuid.UUID
    token_blob: Optional[str]
    linked_at: Optional[datetime] = None


class CredentialRepository:
    """Reads and writes linked credentials for one unit of work."""

    def __init__(self, session, schema: Optional[SchemaDescriptor] = None):
        self.session = session
        self.schema = schema or SchemaDescriptor()
        self.table = table(
            CREDENTIALS_TABLE,
            column("item_id", String),
            column("user_id", Uuid),
            column(self.schema.token_column, Text),
            column("linked_at", DateTime(timezone=True)),
        )

    @property
    def _token(self):
        return self.table.c[self.schema.token_column]

    def list_for_owner(self, owner_id: uuid.UUID) -> List[StoredCredential]:
        """All credentials linked by ``owner_id``, oldest link first."""
        t = self.table
        rows = self.session.execute(
            select(t.c.item_id, t.c.user_id, self._token, t.c.linked_at)
            .where(t.c.user_id == owner_id)
            .order_by(t.c.linked_at, t.c.item_id)
        ).all()
        return [
            StoredCredential(item_id=r[0], owner_id=r[1], token_blob=r[2], linked_at=r[3])
            for r in rows
        ]

    def owners_with_credentials(self) -> List[uuid.UUID]:
        t = self.table
        return list(
            self.session.execute(select(t.c.user_id).distinct().order_by(t.c.user_id)).scalars()
        )

    def save(self, owner_id: uuid.UUID, item_id: str, token_blob: str) -> None:
        """Store a credential, rotating the token if the item is re-linked.

        Raises:
            CredentialConflictError: if the item is linked by another owner
        """
        t = self.table
        existing_owner = self.session.execute(
            select(t.c.user_id).where(t.c.item_id == item_id)
        ).scalar_one_or_none()
        if existing_owner is not None and existing_owner != owner_id:
            raise CredentialConflictError(f"Item {item_id} is linked to another user")

        stmt = dialect_insert(self.session, t).values(
            {"item_id": item_id, "user_id": owner_id, self.schema.token_column: token_blob}
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["item_id"],
            set_={self.schema.token_column: token_blob, "linked_at": func.now()},
        )
        self.session.execute(stmt)
        logger.info(
            "Credential linked",
            extra={"owner_id": str(owner_id), "item_id": item_id},
        )

    def delete_for_owner(self, owner_id: uuid.UUID, keep_item_id: Optional[str] = None) -> int:
        """Delete the owner's credentials, except ``keep_item_id`` if given."""
        stmt = delete(self.table).where(self.table.c.user_id == owner_id)
        if keep_item_id is not None:
            stmt = stmt.where(self.table.c.item_id != keep_item_id)
        result = self.session.execute(stmt)
        return result.rowcount

    def replace_for_owner(self, owner_id: uuid.UUID, item_id: str, token_blob: str) -> int:
        """Link ``item_id`` as the owner's only credential.

        Re-linking through the aggregator issues a fresh item id, so the
        owner's previous items are removed in the same unit of work.

        Returns:
            int: number of replaced credentials

        Raises:
            CredentialConflictError: if the item is linked by another owner
        """
        self.save(owner_id, item_id, token_blob)
        replaced = self.delete_for_owner(owner_id, keep_item_id=item_id)
        if replaced:
            logger.info(
                f"Replaced {replaced} previously linked credential(s)",
                extra={"owner_id": str(owner_id), "item_id": item_id},
            )
        return replaced
