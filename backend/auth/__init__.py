"""
Flask-Login authentication configuration

Stateless bearer authentication: every request is loaded from its token by
the request loader, nothing is kept in the session.
"""

from typing import Optional

from flask import current_app, g
from flask_login import LoginManager, UserMixin, current_user

from auth.verifier import AuthVerifier, VerifiedClaims
from errors import Unauthorized

# Initialize Flask-Login manager
login_manager = LoginManager()
login_manager.session_protection = None  # No session state to protect


class AuthenticatedUser(UserMixin):
    """Request-scoped user built from verified token claims."""

    def __init__(self, claims: VerifiedClaims):
        self.claims = claims

    @property
    def owner_id(self):
        return self.claims.owner_id

    def get_id(self):
        return str(self.claims.owner_id)

    def __repr__(self):
        return f"<AuthenticatedUser(owner_id={self.claims.owner_id}, demo={self.claims.demo})>"


def extract_token(request, cookie_name: str) -> Optional[str]:
    """Bearer token from the Authorization header, else the auth cookie."""
    header = request.headers.get("Authorization", "")
    if header[:7].lower() == "bearer ":
        token = header[7:].strip()
    else:
        token = request.cookies.get(cookie_name)
    if token is None or token.strip() in ("", "undefined", "null"):
        return None
    return token.strip()


@login_manager.request_loader
def load_user_from_request(request):
    """Verify the request's token.

    Called by Flask-Login the first time ``current_user`` is touched in a
    request. A rejected token is kept on ``g`` so the unauthorized handler
    can report which kind of failure it was.

    Returns:
        AuthenticatedUser or None if the token is missing or rejected
    """
    services = current_app.extensions["ledger"]
    token = extract_token(request, services.settings.identity.cookie_name)
    try:
        claims = services.verifier.verify(token)
    except Unauthorized as e:
        g.auth_error = e
        return None
    return AuthenticatedUser(claims)


@login_manager.unauthorized_handler
def unauthorized():
    """Handle unauthorized access attempts.

    Raises the stored verification error; the app's error handler renders
    it as a 401 JSON body with the failure kind.
    """
    raise g.get("auth_error") or Unauthorized("missing", "Authentication required")


def init_app(app):
    """Initialize Flask-Login with Flask app.

    Args:
        app: Flask application instance
    """
    login_manager.init_app(app)


__all__ = [
    "AuthVerifier",
    "AuthenticatedUser",
    "VerifiedClaims",
    "current_user",
    "extract_token",
    "init_app",
    "login_manager",
]
