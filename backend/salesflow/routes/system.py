# backend/salesflow/routes/system.py
"""
System health and caller capability endpoints.
"""

import time
from flask import Blueprint, jsonify, g, current_app
from ..extensions import db
from ..decorators import require_identity
from ..models import User, ProductRequest, Invoice
from ..permissions import approvable_roles, can_sell, get_role_permissions
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        request_count = db.session.query(ProductRequest).count()
        invoice_count = db.session.query(Invoice).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "requests": request_count,
                "invoices": invoice_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), 200 if healthy else 503


@system_bp.get("/api/me")
@require_identity
def me():
    """Caller identity plus the capabilities the UI uses to build navigation."""
    identity = g.identity
    return jsonify({
        "identity": identity.to_dict(),
        "permissions": sorted(get_role_permissions(identity.role)),
        "can_sell": can_sell(identity.role),
        "approves_roles": list(approvable_roles(identity.role)),
    }), 200
