# backend/salesflow/routes/invoices.py
"""
Invoice API routes: walk-in and request-derived invoices, payments, quotes.
"""
from flask import Blueprint, request, jsonify, g
from ..decorators import require_identity, require_permission
from ..errors import WorkflowError
from ..services import invoice_service
from . import error_response, unexpected_error


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _creation_options(data: dict) -> dict:
    options = {
        "discount_bps": data.get("discount_bps", 0),
        "tax_rate_bps": data.get("tax_rate_bps"),
        "notes": data.get("notes"),
        "mode": data.get("mode") or invoice_service.MODE_SALE,
        "payment_method": data.get("payment_method") or "cash",
        "idempotency_key": request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
    }
    return options


@invoices_bp.route("", methods=["POST"])
@require_identity
@require_permission("CREATE_INVOICE")
def create_walk_in_invoice():
    """
    Create a walk-in invoice against location stock.

    Headers:
        Idempotency-Key: optional; a replay returns the first invoice

    Request body:
    {
        "customer": {"name": str, "phone": str?, "address": str?, "email": str?},
        "items": [{"inventory_record_id": str | "product_id": str, "quantity": int,
                   "unit_price_cents": int?}],
        "discount_bps": int (optional),
        "tax_rate_bps": int (optional),
        "mode": "sale" | "quote" (optional),
        "payment_method": "cash" | "card" | "credit" (optional),
        "location": str (optional),
        "notes": str (optional)
    }

    Returns:
        201: Invoice created
        400: Invalid request
        403: Role cannot sell
        409: Insufficient stock (details carry product_id, requested, available)
    """
    data = request.get_json(silent=True) or {}

    try:
        invoice = invoice_service.create_walk_in_invoice(
            g.identity,
            data.get("customer"),
            data.get("items"),
            location=data.get("location"),
            **_creation_options(data),
        )
        return jsonify(invoice.to_dict()), 201

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@invoices_bp.route("/from-request/<request_id>", methods=["POST"])
@require_identity
@require_permission("CREATE_INVOICE")
def create_request_invoice(request_id: str):
    """
    Create an invoice drawn against a completed request.

    Request body: as for walk-in invoices; items default to the full request.
    """
    data = request.get_json(silent=True) or {}

    try:
        invoice = invoice_service.create_request_invoice(
            g.identity,
            request_id,
            data.get("customer"),
            data.get("items"),
            **_creation_options(data),
        )
        return jsonify(invoice.to_dict()), 201

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@invoices_bp.route("", methods=["GET"])
@require_identity
@require_permission("VIEW_INVOICES")
def list_invoices():
    """
    Query params: status, payment_status, q (number or customer), mine=1, limit
    """
    created_by = g.identity.user_id if request.args.get("mine") in ("1", "true") else None
    limit = request.args.get("limit", default=100, type=int)

    rows = invoice_service.list_invoices(
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        search=request.args.get("q"),
        created_by_user_id=created_by,
        limit=min(max(limit, 1), 500),
    )
    return jsonify({"invoices": [inv.to_dict() for inv in rows]}), 200


@invoices_bp.route("/summary", methods=["GET"])
@require_identity
@require_permission("VIEW_INVOICES")
def invoice_summary():
    created_by = g.identity.user_id if request.args.get("mine") in ("1", "true") else None
    return jsonify(invoice_service.invoice_summary_stats(created_by_user_id=created_by)), 200


@invoices_bp.route("/<invoice_id>", methods=["GET"])
@require_identity
@require_permission("VIEW_INVOICES")
def get_invoice(invoice_id: str):
    try:
        return jsonify(invoice_service.get_invoice_summary(invoice_id)), 200
    except WorkflowError as e:
        return error_response(e)


@invoices_bp.route("/<invoice_id>/payments", methods=["POST"])
@require_identity
@require_permission("RECORD_PAYMENT")
def record_payment(invoice_id: str):
    """
    Record a payment.

    Request body: {"amount_cents": int, "method": "cash" | "card" | "credit", "note": str?}

    Headers:
        Idempotency-Key: optional; a replay returns the invoice without
        recording the payment twice

    Returns:
        200: Payment recorded
        400: Invalid amount or overpayment
        409: Draft invoice or already paid
    """
    data = request.get_json(silent=True) or {}

    try:
        invoice = invoice_service.record_payment(
            invoice_id,
            g.identity,
            data["amount_cents"],
            method=data.get("method") or "cash",
            note=data.get("note"),
            idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
        )
        return jsonify(invoice.to_dict()), 200

    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@invoices_bp.route("/<invoice_id>/finalize", methods=["POST"])
@require_identity
@require_permission("CREATE_INVOICE")
def finalize_invoice(invoice_id: str):
    """Convert a draft (quote) into a completed sale, deducting stock."""
    try:
        invoice = invoice_service.finalize_invoice(invoice_id, g.identity)
        return jsonify(invoice.to_dict()), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)
