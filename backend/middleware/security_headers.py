"""
Security headers middleware

The backend only serves JSON, so responses are locked down completely:
no framing, no content sniffing, no caching of ledger data.
"""


def set_security_headers(response, production=False):
    """Apply security headers to all responses.

    Args:
        response: Flask response object
        production: Send HSTS (HTTPS deployments only)

    Returns:
        Modified response with security headers
    """
    response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "no-referrer"
    response.headers["Cache-Control"] = "no-store"

    if production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


def init_app(app, production=False):
    """Register security headers middleware with Flask app.

    Args:
        app: Flask application instance
        production: Whether the app is served over HTTPS
    """

    @app.after_request
    def apply_security_headers(response):
        """Apply security headers to all responses."""
        return set_security_headers(response, production=production)
