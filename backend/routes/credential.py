"""
Credential Routes - Flask Blueprint

Links aggregator items for the caller: link-token creation and public-token
exchange. ``POST /credential/exchange?sync=1`` runs a sync right after the
item is stored.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user

from errors import LedgerError
from logging_config import get_logger
from middleware.trace import current_trace_id
from routes.responses import error_response, services
from services.profiles import UserProfile
from services.sync_service import SyncOptions, coerce_bool

logger = get_logger(__name__)

credential_bp = Blueprint("credential", __name__, url_prefix="/credential")


@credential_bp.route("/exchange", methods=["POST"])
def exchange_public_token():
    """
    Exchange a Link public token and store the encrypted access token.

    Body:
        publicToken (str): Token returned by Plaid Link

    Query params:
        sync (bool): Run a sync immediately after linking

    Returns:
        200 {itemId, status, requestId}, or 202 sync result when sync=1
    """
    trace_id = current_trace_id()
    payload = request.get_json(silent=True) or {}
    public_token = payload.get("publicToken") if isinstance(payload, dict) else None
    profile = UserProfile.from_claims(current_user.claims)
    try:
        linked = services().credentials.exchange(profile, public_token, trace_id=trace_id)
        if coerce_bool(request.args.get("sync")):
            result = services().sync.synchronize(
                profile.owner_id, SyncOptions(), profile=profile, trace_id=trace_id
            )
            body = result.to_dict(trace_id)
            body["itemId"] = linked["itemId"]
            return jsonify(body), 202
        return jsonify(linked), 200
    except LedgerError:
        raise
    except Exception:
        logger.exception("Public token exchange failed", extra={"trace_id": trace_id})
        return error_response("CREDENTIAL_EXCHANGE_FAILED", "Failed to link credential", 500)


@credential_bp.route("/link-token", methods=["POST"])
def create_link_token():
    """
    Create a Plaid Link token for the caller.

    Returns:
        200 {linkToken, expiration, requestId}
    """
    trace_id = current_trace_id()
    try:
        return jsonify(services().credentials.create_link_token(current_user.owner_id)), 200
    except LedgerError:
        raise
    except Exception:
        logger.exception("Link token creation failed", extra={"trace_id": trace_id})
        return error_response("LINK_TOKEN_FAILED", "Failed to create link token", 500)
