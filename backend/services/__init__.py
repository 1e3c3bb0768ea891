"""
Service layer for business logic.

Services sit between the HTTP routes / Celery tasks and the storage and
integration layers. ``build_services`` wires one instance of each for an
application.
"""

from dataclasses import dataclass
from typing import Optional

from auth.verifier import AuthVerifier
from config import Settings
from database import SchemaDescriptor, create_db_engine, create_session_factory, negotiate_schema
from integrations.plaid_client import PlaidClient
from security.vault import CredentialVault
from services.credential_service import CredentialService
from services.sync_service import SyncOrchestrator


@dataclass
class LedgerServices:
    settings: Settings
    engine: object
    session_factory: object
    schema: SchemaDescriptor
    vault: CredentialVault
    verifier: AuthVerifier
    plaid: PlaidClient
    sync: SyncOrchestrator
    credentials: CredentialService


def build_services(
    settings: Settings,
    engine=None,
    vault: Optional[CredentialVault] = None,
    verifier: Optional[AuthVerifier] = None,
    plaid: Optional[PlaidClient] = None,
) -> LedgerServices:
    """Wire the service graph. Schema negotiation runs here, once."""
    engine = engine or create_db_engine(settings.database)
    session_factory = create_session_factory(engine)
    schema = negotiate_schema(engine, require_tables=settings.database.schema_guard_enabled)
    vault = vault or CredentialVault.from_config(settings.vault)
    verifier = verifier or AuthVerifier(settings.identity, settings.demo)
    plaid = plaid or PlaidClient(settings.plaid)
    timeout = settings.database.statement_timeout_ms

    return LedgerServices(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        schema=schema,
        vault=vault,
        verifier=verifier,
        plaid=plaid,
        sync=SyncOrchestrator(
            session_factory,
            vault,
            plaid,
            schema=schema,
            config=settings.sync,
            statement_timeout_ms=timeout,
        ),
        credentials=CredentialService(
            session_factory, vault, plaid, schema=schema, statement_timeout_ms=timeout
        ),
    )
