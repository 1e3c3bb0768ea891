"""Routes package for API endpoints."""

from routes.credential import credential_bp
from routes.health import health_bp
from routes.transactions import transactions_bp

__all__ = [
    "credential_bp",
    "health_bp",
    "transactions_bp",
]
