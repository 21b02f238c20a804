# Overview: Flask API routes for health and version checks.

# backend/boxoffice/routes/system.py
"""
System health endpoints.

Used by the deployment's liveness probe and by the admin UI footer.
"""

import time

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Event, Order, AdminOperator
from boxoffice.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a round trip and a few counts."""
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "events": db.session.query(Event).count(),
            "orders": db.session.query(Order).count(),
            "operators": db.session.query(AdminOperator).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503


@system_bp.get("/api/version")
def version():
    return jsonify({
        "name": "boxoffice",
        "version": current_app.config.get("APP_VERSION", "dev"),
        "currency": current_app.config.get("CURRENCY"),
    })
