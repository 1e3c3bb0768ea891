"""
Service Configuration Management
Loads environment variables into validated dataclass sections.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=False)


class PlaidEnvironment(str, Enum):
    """Aggregator environments and their API hosts"""
    SANDBOX = "sandbox"
    DEVELOPMENT = "development"
    PRODUCTION = "production"


PLAID_BASE_URLS = {
    PlaidEnvironment.SANDBOX: "https://sandbox.plaid.com",
    PlaidEnvironment.DEVELOPMENT: "https://development.plaid.com",
    PlaidEnvironment.PRODUCTION: "https://production.plaid.com",
}

DEFAULT_DEMO_ISSUER = "ledger-demo"
DEFAULT_TOKEN_COLUMN = "encrypted_access_token"


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {value!r}")


@dataclass
class DatabaseConfig:
    """Connection settings for the ledger store"""
    url: str
    statement_timeout_ms: Optional[int] = None
    schema_guard_enabled: bool = True
    pool_size: int = 10

    def __post_init__(self):
        if not self.url:
            raise ValueError("Database URL must not be empty")
        if self.statement_timeout_ms is not None and self.statement_timeout_ms <= 0:
            raise ValueError(
                f"Statement timeout must be positive: {self.statement_timeout_ms}"
            )
        if self.pool_size <= 0:
            raise ValueError(f"Pool size must be positive: {self.pool_size}")


@dataclass
class PlaidConfig:
    """Aggregator credentials and transport limits"""
    client_id: Optional[str] = None
    secret: Optional[str] = None
    environment: PlaidEnvironment = PlaidEnvironment.SANDBOX
    base_url: Optional[str] = None
    products: List[str] = field(default_factory=lambda: ["transactions"])
    country_codes: List[str] = field(default_factory=lambda: ["US"])
    redirect_uri: Optional[str] = None
    webhook_url: Optional[str] = None
    timeout_seconds: float = 8.0
    page_size: int = 250
    max_pages: int = 100

    def __post_init__(self):
        if not self.base_url:
            self.base_url = PLAID_BASE_URLS[self.environment]
        self.base_url = self.base_url.rstrip("/")
        if self.timeout_seconds <= 0:
            raise ValueError(f"Aggregator timeout must be positive: {self.timeout_seconds}")
        if not 1 <= self.page_size <= 500:
            raise ValueError(f"Page size must be between 1 and 500: {self.page_size}")
        if self.max_pages <= 0:
            raise ValueError(f"Max pages must be positive: {self.max_pages}")

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.secret)


@dataclass
class VaultConfig:
    """Key material for the credential vault. Either source may be absent."""
    data_key: Optional[str] = None
    kms_key_id: Optional[str] = None
    aws_region: Optional[str] = None


@dataclass
class IdentityConfig:
    """Identity provider integration"""
    issuer: Optional[str] = None
    jwks_url: Optional[str] = None
    audiences: List[str] = field(default_factory=list)
    client_ids: List[str] = field(default_factory=list)
    jwe_private_key: Optional[str] = None
    jwks_ttl_seconds: int = 3600
    cookie_name: str = "ledger_token"

    def __post_init__(self):
        if self.jwks_ttl_seconds <= 0:
            raise ValueError(f"JWKS cache TTL must be positive: {self.jwks_ttl_seconds}")
        if self.jwe_private_key:
            self.jwe_private_key = self.jwe_private_key.replace("\\n", "\n")

    @property
    def allowed_audiences(self) -> List[str]:
        merged = []
        for value in self.audiences + self.client_ids:
            if value not in merged:
                merged.append(value)
        return merged


@dataclass
class DemoConfig:
    """Lightweight demo-token path (disabled unless a long secret is set)"""
    jwt_secret: Optional[str] = None
    issuer: str = DEFAULT_DEMO_ISSUER

    @property
    def enabled(self) -> bool:
        return bool(self.jwt_secret) and len(self.jwt_secret) >= 32


@dataclass
class SyncConfig:
    default_lookback_days: int = 30
    full_lookback_days: int = 90

    def __post_init__(self):
        if self.default_lookback_days <= 0 or self.full_lookback_days <= 0:
            raise ValueError("Sync lookback windows must be positive")


@dataclass
class Settings:
    database: DatabaseConfig
    plaid: PlaidConfig = field(default_factory=PlaidConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    demo: DemoConfig = field(default_factory=DemoConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    secret_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:5173"])
    production: bool = False


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return url
    from sqlalchemy import URL

    return URL.create(
        "postgresql+psycopg2",
        username=os.getenv("POSTGRES_USER", "ledger_user"),
        password=os.getenv("POSTGRES_PASSWORD", "ledger_password"),
        host=os.getenv("POSTGRES_HOST", "localhost"),
        port=int(os.getenv("POSTGRES_PORT", "5432")),
        database=os.getenv("POSTGRES_DB", "ledger_db"),
    ).render_as_string(hide_password=False)


def load_settings() -> Settings:
    """
    Load service configuration from environment variables.

    Environment Variables:
    - DATABASE_URL or POSTGRES_HOST/PORT/USER/PASSWORD/DB
    - DB_STATEMENT_TIMEOUT_MS: per-request statement timeout (optional)
    - SCHEMA_GUARD_ENABLED: refuse to start without migrated tables (default: true)
    - PLAID_CLIENT_ID, PLAID_SECRET: aggregator credentials
    - PLAID_ENV: sandbox|development|production (default: sandbox)
    - PLAID_BASE_URL: explicit API host (overrides PLAID_ENV)
    - PLAID_PRODUCTS, PLAID_COUNTRY_CODES: comma separated lists
    - PLAID_REDIRECT_URI, PLAID_WEBHOOK_URL: link-token options
    - PLAID_TIMEOUT_SECONDS: per-call timeout (default: 8)
    - PLAID_PAGE_SIZE: transactions per page (default: 250)
    - TOKEN_ENCRYPTION_KEY: 32-byte vault key, base64 or hex
    - KMS_KEY_ID, AWS_REGION: envelope encryption key
    - IDP_ISSUER, IDP_JWKS_URL, IDP_AUDIENCES, IDP_CLIENT_IDS
    - IDP_JWE_PRIVATE_KEY: PEM private key for encrypted bearer tokens
    - DEMO_JWT_SECRET, DEMO_JWT_ISSUER: demo token verification

    Returns:
        Settings object
    """
    timeout_ms = os.getenv("DB_STATEMENT_TIMEOUT_MS", "").strip()
    database = DatabaseConfig(
        url=_database_url(),
        statement_timeout_ms=int(timeout_ms) if timeout_ms else None,
        schema_guard_enabled=_env_bool("SCHEMA_GUARD_ENABLED", True),
        pool_size=_env_int("DB_POOL_SIZE", 10),
    )

    env_name = os.getenv("PLAID_ENV", "sandbox").strip().lower()
    try:
        environment = PlaidEnvironment(env_name)
    except ValueError:
        raise ValueError(
            f"Invalid PLAID_ENV: {env_name}. "
            f"Must be one of: {', '.join([e.value for e in PlaidEnvironment])}"
        )

    plaid = PlaidConfig(
        client_id=os.getenv("PLAID_CLIENT_ID") or None,
        secret=os.getenv("PLAID_SECRET") or None,
        environment=environment,
        base_url=os.getenv("PLAID_BASE_URL") or None,
        products=_split_list(os.getenv("PLAID_PRODUCTS")) or ["transactions"],
        country_codes=_split_list(os.getenv("PLAID_COUNTRY_CODES")) or ["US"],
        redirect_uri=os.getenv("PLAID_REDIRECT_URI") or None,
        webhook_url=os.getenv("PLAID_WEBHOOK_URL") or None,
        timeout_seconds=float(os.getenv("PLAID_TIMEOUT_SECONDS", "8")),
        page_size=_env_int("PLAID_PAGE_SIZE", 250),
        max_pages=_env_int("PLAID_MAX_PAGES", 100),
    )

    vault = VaultConfig(
        data_key=os.getenv("TOKEN_ENCRYPTION_KEY") or None,
        kms_key_id=os.getenv("KMS_KEY_ID") or None,
        aws_region=os.getenv("AWS_REGION") or None,
    )

    identity = IdentityConfig(
        issuer=os.getenv("IDP_ISSUER") or None,
        jwks_url=os.getenv("IDP_JWKS_URL") or None,
        audiences=_split_list(os.getenv("IDP_AUDIENCES")),
        client_ids=_split_list(os.getenv("IDP_CLIENT_IDS")),
        jwe_private_key=os.getenv("IDP_JWE_PRIVATE_KEY") or None,
        jwks_ttl_seconds=_env_int("IDP_JWKS_TTL_SECONDS", 3600),
        cookie_name=os.getenv("AUTH_COOKIE_NAME", "ledger_token"),
    )

    demo = DemoConfig(
        jwt_secret=os.getenv("DEMO_JWT_SECRET") or None,
        issuer=os.getenv("DEMO_JWT_ISSUER", DEFAULT_DEMO_ISSUER),
    )

    return Settings(
        database=database,
        plaid=plaid,
        vault=vault,
        identity=identity,
        demo=demo,
        sync=SyncConfig(
            default_lookback_days=_env_int("SYNC_DEFAULT_LOOKBACK_DAYS", 30),
            full_lookback_days=_env_int("SYNC_FULL_LOOKBACK_DAYS", 90),
        ),
        secret_key=os.getenv("FLASK_SECRET_KEY") or None,
        cors_origins=_split_list(os.getenv("CORS_ORIGINS")) or ["http://localhost:5173"],
        production=os.getenv("FLASK_ENV") == "production",
    )
