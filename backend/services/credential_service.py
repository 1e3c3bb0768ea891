"""
Credential Service - Business Logic

Links aggregator items (public-token exchange, link tokens) and resets a
tenant's ledger.
"""

import uuid
from typing import Optional

from database import CredentialRepository, SchemaDescriptor, StorageUpserter, tenant_session
from errors import ValidationError
from integrations.plaid_client import PlaidClient
from logging_config import get_logger
from security.vault import CredentialVault
from services.profiles import UserProfile

logger = get_logger(__name__)


class CredentialService:
    def __init__(
        self,
        session_factory,
        vault: CredentialVault,
        client: PlaidClient,
        schema: Optional[SchemaDescriptor] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.vault = vault
        self.client = client
        self.schema = schema or SchemaDescriptor()
        self.statement_timeout_ms = statement_timeout_ms

    def exchange(self, profile: UserProfile, public_token, trace_id: Optional[str] = None) -> dict:
        """
        Exchange a Link public token and store the encrypted access token.

        The new item replaces any item the owner linked before.

        The aggregator call happens before the unit of work is opened; a
        failed write leaves an access token nobody stored, which the user
        recovers from by linking again.

        Returns:
            {'itemId', 'status', 'requestId'}
        """
        if not isinstance(public_token, str) or not public_token.strip():
            raise ValidationError("publicToken is required")

        exchanged = self.client.exchange_public_token(public_token.strip())
        blob = self.vault.encrypt(exchanged.access_token)

        with tenant_session(self.session_factory, profile.owner_id, self.statement_timeout_ms) as session:
            StorageUpserter(session, self.schema).ensure_user(
                profile.owner_id, profile.email, profile.full_name
            )
            CredentialRepository(session, self.schema).replace_for_owner(
                profile.owner_id, exchanged.item_id, blob
            )

        logger.info(
            "Public token exchanged",
            extra={"trace_id": trace_id, "owner_id": str(profile.owner_id), "item_id": exchanged.item_id},
        )
        return {
            "itemId": exchanged.item_id,
            "status": "SUCCESS",
            "requestId": exchanged.request_id,
        }

    def create_link_token(self, owner_id: uuid.UUID) -> dict:
        link = self.client.create_link_token(client_user_id=str(owner_id))
        return {
            "linkToken": link.link_token,
            "expiration": link.expiration,
            "requestId": link.request_id,
        }

    def reset(self, owner_id: uuid.UUID, unlink: bool = False, trace_id: Optional[str] = None) -> dict:
        """
        Delete the tenant's accounts and transactions.

        Args:
            owner_id: Tenant to reset
            unlink: Also delete the tenant's linked credentials

        Returns:
            Counts of deleted rows
        """
        with tenant_session(self.session_factory, owner_id, self.statement_timeout_ms) as session:
            deleted = StorageUpserter(session, self.schema).delete_owner_ledger(owner_id)
            deleted["credentials"] = (
                CredentialRepository(session, self.schema).delete_for_owner(owner_id) if unlink else 0
            )

        logger.info(
            f"Ledger reset: {deleted}",
            extra={"trace_id": trace_id, "owner_id": str(owner_id)},
        )
        return deleted
