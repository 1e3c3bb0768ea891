"""Backend configuration module"""

from .settings import (
    DEFAULT_DEMO_ISSUER,
    DEFAULT_TOKEN_COLUMN,
    DatabaseConfig,
    DemoConfig,
    IdentityConfig,
    PlaidConfig,
    PlaidEnvironment,
    Settings,
    SyncConfig,
    VaultConfig,
    load_settings,
)

__all__ = [
    "DEFAULT_DEMO_ISSUER",
    "DEFAULT_TOKEN_COLUMN",
    "DatabaseConfig",
    "DemoConfig",
    "IdentityConfig",
    "PlaidConfig",
    "PlaidEnvironment",
    "Settings",
    "SyncConfig",
    "VaultConfig",
    "load_settings",
]
