# backend/salesflow/routes/requests.py
"""
Product request API routes: create, approve/reject, fulfill, history, tracker.
"""
from flask import Blueprint, request, jsonify, g
from ..decorators import require_identity, require_permission
from ..errors import WorkflowError
from ..services import request_service, fulfillment_service
from . import error_response, unexpected_error


requests_bp = Blueprint("requests", __name__, url_prefix="/api/requests")


@requests_bp.route("", methods=["POST"])
@require_identity
@require_permission("CREATE_REQUEST")
def create_request():
    """
    Create a product request.

    Request body:
    {
        "items": [{"product_id": str, "quantity": int, "unit": str?, "urgency": str?}],
        "notes": str (optional),
        "priority": "low" | "normal" | "high" | "urgent" (optional),
        "location": str (optional)
    }

    Returns:
        201: Request created (pending)
        400: Invalid request
        403: Forbidden
    """
    data = request.get_json(silent=True) or {}

    try:
        req = request_service.create_request(
            g.identity,
            data.get("items"),
            notes=data.get("notes"),
            priority=data.get("priority") or "normal",
            location=data.get("location"),
        )
        return jsonify(req.to_dict()), 201

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@requests_bp.route("", methods=["GET"])
@require_identity
@require_permission("VIEW_REQUESTS")
def list_requests():
    """
    Request history for the caller, or a tracker search.

    Query params:
        status: filter by status
        q: tracker search (request number, requester name or status)
    """
    status = request.args.get("status")
    term = request.args.get("q")

    if term is not None:
        rows = request_service.search_requests(term, status=status)
    else:
        rows = request_service.list_requests_for_requester(g.identity.user_id, status=status)

    return jsonify({"requests": [r.to_dict() for r in rows]}), 200


@requests_bp.route("/pending", methods=["GET"])
@require_identity
@require_permission("APPROVE_REQUESTS")
def list_pending():
    """
    Pending requests the caller may approve.

    Query params: location, priority, requested_by
    """
    view = request_service.list_pending_for(
        g.identity,
        location=request.args.get("location"),
        priority=request.args.get("priority"),
        requested_by_user_id=request.args.get("requested_by"),
    )
    return jsonify({"requests": [r.to_dict() for r in view]}), 200


@requests_bp.route("/<request_id>", methods=["GET"])
@require_identity
@require_permission("VIEW_REQUESTS")
def get_request(request_id: str):
    try:
        return jsonify(request_service.get_request_summary(request_id)), 200
    except WorkflowError as e:
        return error_response(e)


@requests_bp.route("/<request_id>/approve", methods=["POST"])
@require_identity
@require_permission("APPROVE_REQUESTS")
def approve_request(request_id: str):
    """
    Approve a pending request.

    Request body: {"notes": str (optional)}

    Returns:
        200: Request approved
        403: Role cannot approve this requester, or own request
        404: Request not found
        409: Request is no longer pending
    """
    data = request.get_json(silent=True) or {}

    try:
        req = request_service.approve_request(request_id, g.identity, data.get("notes"))
        return jsonify(req.to_dict()), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@requests_bp.route("/<request_id>/reject", methods=["POST"])
@require_identity
@require_permission("APPROVE_REQUESTS")
def reject_request(request_id: str):
    """
    Reject a pending request.

    Request body: {"reason": str (optional)}
    """
    data = request.get_json(silent=True) or {}

    try:
        req = request_service.reject_request(request_id, g.identity, data.get("reason"))
        return jsonify(req.to_dict()), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@requests_bp.route("/<request_id>/fulfill", methods=["POST"])
@require_identity
@require_permission("FULFILL_REQUESTS")
def fulfill_request(request_id: str):
    """
    Move an approved request into location stock.

    Request body: {"location": str (optional)}

    Returns:
        200: Request completed; inventory_ids credited (same ids on replay)
        409: Request pending or rejected
    """
    data = request.get_json(silent=True) or {}

    try:
        inventory_ids = fulfillment_service.fulfill(request_id, g.identity, location=data.get("location"))
        req = request_service.get_request(request_id)
        return jsonify({"request": req.to_dict(), "inventory_ids": inventory_ids}), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
