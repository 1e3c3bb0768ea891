"""JSON error responses shared by the blueprints."""

from flask import jsonify

from middleware.trace import current_trace_id


def error_response(code: str, message: str, status: int, details=None):
    body = {"code": code, "message": message, "traceId": current_trace_id()}
    if details:
        body["details"] = details
    return jsonify({"error": body}), status


def services():
    from flask import current_app

    return current_app.extensions["ledger"]
