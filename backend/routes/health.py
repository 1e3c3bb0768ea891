"""
Minimal health check endpoint

No internal state is exposed: probes only learn whether the service and its
database answer.
"""

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger
from routes.responses import services

logger = get_logger(__name__)

health_bp = Blueprint("health", __name__)


def check_db_connection() -> bool:
    """Test database connectivity.

    Returns:
        True if database is accessible
    """
    try:
        with services().engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1
    except SQLAlchemyError as e:
        logger.warning(f"Health check database probe failed: {e.__class__.__name__}")
        return False


@health_bp.route("/health", methods=["GET"])
def health_check():
    """Liveness probe.

    Returns:
        200: Service and database are reachable
        503: Database is unreachable
    """
    if check_db_connection():
        return jsonify({"status": "ok"}), 200
    return jsonify({"status": "unavailable"}), 503
