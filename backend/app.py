import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask import request as flask_request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Settings, load_settings
from errors import LedgerError
from logging_config import get_logger
from middleware.trace import current_trace_id

# Load .env from project root (parent directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path, override=False)

logger = get_logger(__name__)

# Public endpoints that don't require authentication
PUBLIC_ENDPOINTS = {
    "/health",
}


def create_app(settings: Optional[Settings] = None, services=None) -> Flask:
    """Build the Flask application.

    Args:
        settings: Configuration (defaults to load_settings())
        services: Prebuilt LedgerServices (defaults to build_services(settings))

    Returns:
        Configured Flask app
    """
    from services import build_services

    if settings is None:
        settings = services.settings if services is not None else load_settings()

    app = Flask(__name__)

    # CORS configuration - credentials allowed for the auth cookie
    CORS(app, origins=settings.cors_origins, supports_credentials=True)

    # ========================================================================
    # SECURITY CONFIGURATION
    # ========================================================================

    app.config["SECRET_KEY"] = settings.secret_key or os.urandom(32).hex()
    app.config.update(
        SESSION_COOKIE_SECURE=settings.production,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Strict",
        MAX_CONTENT_LENGTH=64 * 1024,
    )

    app.extensions["ledger"] = services or build_services(settings)

    # ========================================================================
    # MIDDLEWARE (trace ids first so every later hook can log them)
    # ========================================================================

    from middleware.trace import init_app as init_trace

    init_trace(app)

    from auth import init_app as init_auth

    init_auth(app)

    from middleware.security_headers import init_app as init_security_headers

    init_security_headers(app, production=settings.production)

    # ========================================================================
    # REGISTER BLUEPRINTS
    # ========================================================================

    from routes import credential_bp, health_bp, transactions_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(credential_bp)

    # ========================================================================
    # AUTHENTICATION ENFORCEMENT (Global Route Protection)
    # ========================================================================

    from auth import login_manager
    from flask_login import current_user

    @app.before_request
    def require_authentication():
        """Enforce authentication on all routes except public endpoints.

        Returns:
            None if authenticated or accessing a public endpoint; otherwise
            the unauthorized handler raises the verification error
        """
        if flask_request.method == "OPTIONS":
            return None

        path = flask_request.path
        if any(path == endpoint or path.startswith(endpoint + "/") for endpoint in PUBLIC_ENDPOINTS):
            return None

        if not current_user.is_authenticated:
            return login_manager.unauthorized()

        return None

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error: LedgerError):
        trace_id = current_trace_id()
        if error.status >= 500:
            logger.error(f"{error.code}: {error.message}", extra={"trace_id": trace_id})
        else:
            logger.info(f"{error.code}: {error.message}", extra={"trace_id": trace_id})
        return jsonify(error.to_dict(trace_id)), error.status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        body = {
            "code": (error.name or "HTTP_ERROR").upper().replace(" ", "_"),
            "message": error.description,
            "traceId": current_trace_id(),
        }
        return jsonify({"error": body}), error.code

    return app


# ============================================================================
# APPLICATION STARTUP
# ============================================================================

if __name__ == "__main__":
    app = create_app()
    logger.info("Ledger backend starting on http://0.0.0.0:5000")
    app.run(debug=False, use_reloader=False, host="0.0.0.0", port=5000)
