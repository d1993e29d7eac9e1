"""Health check endpoints."""
import logging

from flask import Blueprint
from sqlalchemy import text

from directory_hub.api import get_services

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic liveness endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: the database answers a trivial query."""
    session = get_services().session_factory()
    try:
        session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc.__class__.__name__)
        return ("database unavailable", 503, {"Content-Type": "text/plain"})
    finally:
        session.close()
    return ("ready", 200, {"Content-Type": "text/plain"})
