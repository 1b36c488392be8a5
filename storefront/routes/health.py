import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront.extensions import db

logger = logging.getLogger(__name__)

bp = Blueprint("health", __name__)


def _check_database():
    start = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        latency = round((time.time() - start) * 1000, 2)
        return {"status": "ok", "latency_ms": latency}
    except SQLAlchemyError as e:
        logger.error("Database health check failed", extra={"error": str(e)})
        return {"status": "error", "error": str(e)}


@bp.route("/health", methods=["GET"])
def health():
    database = _check_database()
    healthy = database["status"] == "ok"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "api": "ok",
        "database": database,
    }), 200 if healthy else 503
