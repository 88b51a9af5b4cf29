# backend/salesflow/routes/activity.py
"""
Activity log read API (append-only audit trail).
"""
from flask import Blueprint, request, jsonify
from ..decorators import require_identity, require_permission
from ..services import activity_service


activity_bp = Blueprint("activity", __name__, url_prefix="/api/activities")


@activity_bp.route("", methods=["GET"])
@require_identity
@require_permission("VIEW_ACTIVITY")
def list_activities():
    """
    Query params: request_id, invoice_id, type, actor, limit (max 500)
    """
    limit = request.args.get("limit", default=100, type=int)
    rows = activity_service.list_activities(
        request_id=request.args.get("request_id"),
        invoice_id=request.args.get("invoice_id"),
        activity_type=request.args.get("type"),
        actor_user_id=request.args.get("actor"),
        limit=min(max(limit, 1), 500),
    )
    return jsonify({"activities": [a.to_dict() for a in rows]}), 200
