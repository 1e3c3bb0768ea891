"""
Transaction Routes - Flask Blueprint

Sync and reset endpoints. Routes are thin controllers that delegate to the
sync orchestrator and credential service; LedgerError subclasses propagate
to the app's error handler.
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

transactions_bp = Blueprint("transactions", __name__, url_prefix="/transactions")


@transactions_bp.route("/sync", methods=["POST"])
def sync_transactions():
    """
    Sync the caller's transactions from linked aggregator items.

    Body (all optional):
        demoSeed (bool): Replace the ledger with the demo dataset
        forceFullSync (bool): 90-day lookback instead of 30
        startMonth (str): YYYY-MM, sync from the first of that month

    Returns:
        202 {status, from, to, items, fetched, upserted, traceId}
    """
    trace_id = current_trace_id()
    try:
        options = SyncOptions.from_payload(request.get_json(silent=True))
        result = services().sync.synchronize(
            current_user.owner_id,
            options,
            profile=UserProfile.from_claims(current_user.claims),
            trace_id=trace_id,
        )
        return jsonify(result.to_dict(trace_id)), 202
    except LedgerError:
        raise
    except Exception:
        logger.exception("Transaction sync failed", extra={"trace_id": trace_id})
        return error_response("TRANSACTIONS_SYNC_FAILED", "Failed to sync transactions", 500)


@transactions_bp.route("/reset", methods=["POST"])
def reset_transactions():
    """
    Delete the caller's accounts and transactions.

    Body (optional):
        unlinkCredential (bool): Also delete linked aggregator credentials

    Returns:
        202 {status, traceId}
    """
    trace_id = current_trace_id()
    payload = request.get_json(silent=True)
    unlink = coerce_bool(payload.get("unlinkCredential")) if isinstance(payload, dict) else False
    try:
        services().credentials.reset(current_user.owner_id, unlink=unlink, trace_id=trace_id)
        return jsonify({"status": "ACCEPTED", "traceId": trace_id}), 202
    except LedgerError:
        raise
    except Exception:
        logger.exception("Transaction reset failed", extra={"trace_id": trace_id})
        return error_response("TRANSACTIONS_RESET_FAILED", "Failed to reset transactions", 500)
