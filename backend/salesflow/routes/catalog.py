# backend/salesflow/routes/catalog.py
"""
Catalog API routes: products, stock levels, stock management.
"""
from datetime import date

from flask import Blueprint, request, jsonify, g, current_app
from ..decorators import require_identity, require_permission
from ..errors import ValidationError, WorkflowError
from ..services import catalog_service
from . import error_response, unexpected_error


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


def _inventory_row(record) -> dict:
    row = record.to_dict()
    row["status"] = catalog_service.stock_status(
        record.quantity,
        low=current_app.config.get("LOW_STOCK_THRESHOLD", catalog_service.LOW_STOCK_THRESHOLD),
    )
    return row


@catalog_bp.route("/products", methods=["GET"])
@require_identity
def list_products():
    """Query params: q (name search), all=1 to include inactive products."""
    rows = catalog_service.list_products(
        active_only=request.args.get("all") not in ("1", "true"),
        search=request.args.get("q"),
    )
    return jsonify({"products": [p.to_dict() for p in rows]}), 200


@catalog_bp.route("/products", methods=["POST"])
@require_identity
@require_permission("MANAGE_CATALOG")
def create_product():
    """
    Request body:
    {
        "name": str,
        "variant_name": str (optional),
        "unit": str (optional),
        "price_cents": int (optional),
        "id": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        product = catalog_service.create_product(
            name=data.get("name"),
            price_cents=data.get("price_cents"),
            unit=data.get("unit") or "units",
            variant_name=data.get("variant_name"),
            product_id=data.get("id"),
        )
        return jsonify(product.to_dict()), 201

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/products/<product_id>/price", methods=["PUT"])
@require_identity
@require_permission("MANAGE_CATALOG")
def update_price(product_id: str):
    data = request.get_json(silent=True) or {}

    try:
        product = catalog_service.update_product_price(product_id, data.get("price_cents"))
        return jsonify(product.to_dict()), 200

    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/products/<product_id>/availability", methods=["GET"])
@require_identity
@require_permission("VIEW_INVENTORY")
def availability(product_id: str):
    location = request.args.get("location")
    return jsonify({
        "product_id": product_id,
        "location": location,
        "available": catalog_service.get_available(product_id, location),
    }), 200


@catalog_bp.route("/inventory", methods=["GET"])
@require_identity
@require_permission("VIEW_INVENTORY")
def list_inventory():
    """
    Query params:
        location: defaults to the caller's location; "all" for every location
        q: product name or batch search
        low_stock=1: only records below LOW_STOCK_THRESHOLD
    """
    location = request.args.get("location") or g.identity.location
    if location == "all":
        location = None

    if request.args.get("low_stock") in ("1", "true"):
        rows = catalog_service.low_stock_items(
            threshold=current_app.config.get("LOW_STOCK_THRESHOLD", catalog_service.LOW_STOCK_THRESHOLD),
            location=location,
        )
    else:
        rows = catalog_service.list_inventory(location=location, search=request.args.get("q"))

    return jsonify({"inventory": [_inventory_row(r) for r in rows]}), 200


@catalog_bp.route("/inventory", methods=["PUT"])
@require_identity
@require_permission("MANAGE_CATALOG")
def upsert_inventory():
    """
    Set a record's on-hand quantity directly (stock management).

    Request body:
    {
        "product_id": str,
        "location": str,
        "quantity": int,
        "unit_price_cents": int (optional),
        "batch_number": str (optional),
        "expiry_date": "YYYY-MM-DD" (optional),
        "note": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        expiry = data.get("expiry_date")
        if expiry:
            try:
                expiry = date.fromisoformat(expiry)
            except ValueError as exc:
                raise ValidationError("expiry_date must be YYYY-MM-DD") from exc

        record = catalog_service.upsert_inventory_record(
            product_id=data["product_id"],
            location=data["location"],
            quantity=data["quantity"],
            actor=g.identity,
            unit_price_cents=data.get("unit_price_cents"),
            batch_number=data.get("batch_number"),
            expiry_date=expiry or None,
            note=data.get("note"),
        )
        return jsonify(_inventory_row(record)), 200

    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/inventory/<record_id>/adjust", methods=["POST"])
@require_identity
@require_permission("ADJUST_INVENTORY")
def adjust_inventory(record_id: str):
    """
    Manual stock correction.

    Request body: {"delta": int, "note": str (optional)}

    Returns:
        200: {"inventory_record_id", "quantity"}
        409: Adjustment would make stock negative
    """
    data = request.get_json(silent=True) or {}

    try:
        quantity = catalog_service.adjust_stock(
            record_id,
            data["delta"],
            actor=g.identity,
            note=data.get("note"),
        )
        return jsonify({"inventory_record_id": record_id, "quantity": quantity}), 200

    except KeyError as e:
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except WorkflowError as e:
        return error_response(e)
    except Exception as e:
        return unexpected_error(e)


@catalog_bp.route("/inventory/<record_id>/movements", methods=["GET"])
@require_identity
@require_permission("VIEW_INVENTORY")
def inventory_movements(record_id: str):
    try:
        catalog_service.get_inventory_record(record_id)
    except WorkflowError as e:
        return error_response(e)
    rows = catalog_service.movements_for_record(record_id)
    return jsonify({"movements": [m.to_dict() for m in rows]}), 200
