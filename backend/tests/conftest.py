"""Core test fixtures.

Provides reusable fixtures for the database, the service graph, the Flask
test client, aggregator API mocking and token minting.

Tests run against an in-memory SQLite database created from the ORM
metadata. SQLite gets foreign keys switched on and SAVEPOINT support so
per-row containment behaves as it does on PostgreSQL.
"""

import base64
import json
import os
import time
import uuid

import jwt
import pytest
import responses
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt import PyJWKClient
from jwt.algorithms import RSAAlgorithm
from sqlalchemy import create_engine, event, select
from sqlalchemy.pool import StaticPool

os.environ["TESTING"] = "true"

from auth.verifier import AuthVerifier  # noqa: E402
from config import (  # noqa: E402
    DatabaseConfig,
    DemoConfig,
    IdentityConfig,
    PlaidConfig,
    Settings,
    SyncConfig,
    VaultConfig,
)
from database import (  # noqa: E402
    Base,
    CredentialRepository,
    StorageUpserter,
    create_session_factory,
    tenant_session,
)
from database.models import Account, LinkedCredential, Merchant, Transaction  # noqa: E402
from security.vault import CredentialVault  # noqa: E402

TEST_OWNER_ID = uuid.UUID("0f08d2b9-28b3-4b28-bd33-41a36161e9ab")
OTHER_OWNER_ID = uuid.UUID("7c5e2a10-9d4b-4e61-8f3a-2b6c0d9e1f47")
DATA_KEY = bytes(range(32))
DEMO_SECRET = "demo-secret-for-tests-0123456789abcdef"
ISSUER = "https://idp.example.test/pool-1"
JWKS_URL = f"{ISSUER}/.well-known/jwks.json"
AUDIENCE = "ledger-web"
NATIVE_CLIENT_ID = "ledger-native"
KEY_ID = "test-signing-key"
PLAID_URL = "https://sandbox.plaid.com"
ITEM_ID = "item-sandbox-1"
ACCESS_TOKEN = "access-sandbox-0001"


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with the ledger schema.

    Yields:
        Engine: one shared connection (StaticPool), so all sessions see
        the same database
    """
    test_engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(test_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    """Plain session for assertions, closed after the test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def owners(session_factory):
    """User rows for the two test tenants."""
    for owner_id, email in ((TEST_OWNER_ID, "owner@example.test"), (OTHER_OWNER_ID, "other@example.test")):
        with tenant_session(session_factory, owner_id) as session:
            StorageUpserter(session).ensure_user(owner_id, email, None)
    return TEST_OWNER_ID, OTHER_OWNER_ID


@pytest.fixture
def vault():
    return CredentialVault(data_key=DATA_KEY)


@pytest.fixture
def linked_credential(session_factory, owners, vault):
    """One linked aggregator item for TEST_OWNER_ID."""
    with tenant_session(session_factory, TEST_OWNER_ID) as session:
        CredentialRepository(session).save(TEST_OWNER_ID, ITEM_ID, vault.encrypt(ACCESS_TOKEN))
    return ITEM_ID


def snapshot(session):
    """Every ledger row, for before/after comparisons."""
    tables = (Account, Merchant, Transaction, LinkedCredential)
    result = {}
    for model in tables:
        columns = list(model.__table__.columns)
        result[model.__tablename__] = sorted(
            tuple(row) for row in session.execute(select(*columns)).all()
        )
    return result


@pytest.fixture
def ledger_snapshot(session_factory):
    """Callable returning a snapshot of all ledger rows."""

    def take():
        session = session_factory()
        try:
            return snapshot(session)
        finally:
            session.close()

    return take


# ============================================================================
# CONFIGURATION AND SERVICES
# ============================================================================


@pytest.fixture
def settings():
    return Settings(
        database=DatabaseConfig(url="sqlite://"),
        plaid=PlaidConfig(client_id="test-client-id", secret="test-secret", page_size=3),
        vault=VaultConfig(data_key=base64.b64encode(DATA_KEY).decode("ascii")),
        identity=IdentityConfig(
            issuer=ISSUER,
            jwks_url=JWKS_URL,
            audiences=[AUDIENCE],
            client_ids=[NATIVE_CLIENT_ID],
        ),
        demo=DemoConfig(jwt_secret=DEMO_SECRET),
        sync=SyncConfig(),
        secret_key="test-secret-key",
    )


@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(signing_key):
    jwk = json.loads(RSAAlgorithm.to_jwk(signing_key.public_key()))
    jwk.update({"kid": KEY_ID, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


@pytest.fixture
def jwks_endpoint(monkeypatch, jwks):
    """Serve the test key set to PyJWKClient without network access.

    Returns:
        list: one entry per key-set fetch
    """
    fetches = []

    def fetch_data(self):
        fetches.append(self.uri)
        if self.jwk_set_cache is not None:
            self.jwk_set_cache.put(jwks)
        return jwks

    monkeypatch.setattr(PyJWKClient, "fetch_data", fetch_data)
    return fetches


@pytest.fixture
def make_token(signing_key):
    """Mint identity-provider tokens.

    Example:
        token = make_token(aud="someone-else")
        token = make_token(exp_offset=-60)
    """

    def mint(key=None, kid=KEY_ID, exp_offset=3600, drop=(), **claims):
        now = int(time.time())
        payload = {
            "sub": str(TEST_OWNER_ID),
            "iss": ISSUER,
            "aud": AUDIENCE,
            "email": "owner@example.test",
            "name": "Test Owner",
            "iat": now,
            "exp": now + exp_offset,
        }
        payload.update(claims)
        for name in drop:
            payload.pop(name, None)
        return jwt.encode(payload, key or signing_key, algorithm="RS256", headers={"kid": kid})

    return mint


@pytest.fixture
def make_demo_token():
    def mint(secret=DEMO_SECRET, issuer="ledger-demo", sub=str(TEST_OWNER_ID)):
        payload = {"iss": issuer, "iat": int(time.time()), "exp": int(time.time()) + 3600}
        if sub is not None:
            payload["sub"] = sub
        return jwt.encode(payload, secret, algorithm="HS256")

    return mint


@pytest.fixture(scope="session")
def private_key_pem(signing_key):
    return signing_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def verifier(settings, jwks_endpoint):
    return AuthVerifier(settings.identity, settings.demo)


@pytest.fixture
def services(settings, engine, vault, verifier):
    from services import build_services

    return build_services(settings, engine=engine, vault=vault, verifier=verifier)


# ============================================================================
# FLASK FIXTURES
# ============================================================================


@pytest.fixture
def app(settings, services):
    """Flask app wired to the test services.

    Returns:
        Flask: Configured Flask application instance
    """
    from app import create_app

    flask_app = create_app(settings, services)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}


# ============================================================================
# API MOCKING FIXTURES
# ============================================================================


@pytest.fixture
def mock_responses():
    """Enable HTTP request mocking.

    Intercepts every request made with the requests library.

    Yields:
        RequestsMock: HTTP request mocking context manager
    """
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def plaid_account():
    def build(account_id, name="Everyday Checking", official_name=None, type_="depository", subtype="checking"):
        return {
            "account_id": account_id,
            "name": name,
            "official_name": official_name,
            "type": type_,
            "subtype": subtype,
        }

    return build


@pytest.fixture
def plaid_transaction():
    """Build an aggregator transaction record (amount in provider sign)."""

    def build(transaction_id, account_id, amount, day="2026-03-01", **overrides):
        record = {
            "transaction_id": transaction_id,
            "account_id": account_id,
            "amount": amount,
            "date": day,
            "authorized_date": None,
            "name": f"Purchase {transaction_id}",
            "merchant_name": "Corner Store",
            "category": ["Shops"],
            "personal_finance_category": {"primary": "GENERAL_MERCHANDISE", "detailed": "GENERAL_MERCHANDISE_OTHER"},
            "iso_currency_code": "USD",
            "unofficial_currency_code": None,
            "pending": False,
        }
        record.update(overrides)
        return record

    return build


@pytest.fixture
def transactions_page():
    def build(records, accounts, total):
        return {
            "transactions": records,
            "accounts": accounts,
            "total_transactions": total,
            "request_id": "req-transactions",
        }

    return build
