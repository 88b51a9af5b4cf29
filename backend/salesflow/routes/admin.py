# backend/salesflow/routes/admin.py
"""
Admin API routes: operation intent inspection and the reconciliation sweep.
"""
from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app
from ..decorators import require_identity, require_permission
from ..errors import WorkflowError
from ..services import reconciliation_service
from . import error_response, unexpected_error


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _older_than():
    minutes = request.args.get("older_than_minutes", type=int)
    if minutes is None:
        return None
    return timedelta(minutes=max(minutes, 0))


@admin_bp.route("/intents", methods=["GET"])
@require_identity
@require_permission("RECONCILE_OPERATIONS")
def list_incomplete_intents():
    """Pending intents past the stale window. Query params: older_than_minutes"""
    rows = reconciliation_service.list_incomplete_intents(_older_than())
    return jsonify({"intents": [i.to_dict() for i in rows]}), 200


@admin_bp.route("/reconcile", methods=["POST"])
@require_identity
@require_permission("RECONCILE_OPERATIONS")
def reconcile():
    """
    Resolve stale pending intents.

    Returns:
        200: {"checked", "completed": [keys], "failed": [keys]}
    """
    try:
        report = reconciliation_service.reconcile(_older_than())
        current_app.logger.info(
            "Reconciliation: %s checked, %s completed, %s failed",
            report.checked, len(report.completed), len(report.failed),
        )
        return jsonify(report.to_dict()), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
