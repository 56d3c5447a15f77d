# backend/settlement/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports whether a cash drawer is open.
"""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import CashDrawer, PaymentMethod
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        payment_methods = db.session.query(PaymentMethod).filter_by(is_active=True).count()
        open_drawers = db.session.query(CashDrawer).filter_by(status="open").count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_payment_methods": payment_methods,
                "open_drawers": open_drawers,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = "ok" if database["status"] == "healthy" else "degraded"
    body = {"status": status, "time": to_utc_z(utcnow()), "database": database}
    return jsonify(body), 200 if status == "ok" else 503
