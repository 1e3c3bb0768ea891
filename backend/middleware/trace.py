"""
Request trace ids

Every request gets a trace id, taken from the X-Request-Trace header when
the caller supplies one. It is echoed on the response and included in
every error body and log line for the request.
"""

import re
import uuid

from flask import g, request

TRACE_HEADER = "X-Request-Trace"
_VALID_TRACE = re.compile(r"^[A-Za-z0-9._-]{8,128}$")


def current_trace_id():
    return g.get("trace_id")


def init_app(app):
    """Register trace id handling with Flask app.

    Args:
        app: Flask application instance
    """

    @app.before_request
    def assign_trace_id():
        supplied = request.headers.get(TRACE_HEADER, "")
        g.trace_id = supplied if _VALID_TRACE.match(supplied) else uuid.uuid4().hex

    @app.after_request
    def echo_trace_id(response):
        trace_id = g.get("trace_id")
        if trace_id:
            response.headers[TRACE_HEADER] = trace_id
        return response
