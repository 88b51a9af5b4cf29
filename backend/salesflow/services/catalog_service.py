# Overview: Service-layer operations for the product/inventory catalog; encapsulates business logic and database work.

"""
Product and inventory catalog.

INVARIANT: InventoryRecord.quantity is never negative.

adjust() is the only function that changes a quantity. It re-reads the row
under lock, validates current + delta, writes, journals a StockMovement and
flushes so the version_id compare-and-set runs inside the caller's
transaction. It never commits: fulfillment and invoicing batch several
adjustments with their own writes and commit once.

Reads (get_available, list_inventory) see the latest committed rows; nothing
caches a quantity across the validate-then-write boundary.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, or_

from ..errors import NegativeStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, Product, StockMovement
from ..time_utils import utcnow
from . import datastore
from .activity_service import INVENTORY_ADJUSTED, append_activity
from .concurrency import lock_for_update, run_with_retry
from .identity_service import as_identity, require_permission

logger = logging.getLogger(__name__)


# Stock movement reasons
REASON_FULFILLMENT = "FULFILLMENT"
REASON_SALE = "SALE"
REASON_ADJUST = "ADJUST"
REASON_OPENING = "OPENING"
MOVEMENT_REASONS = {REASON_FULFILLMENT, REASON_SALE, REASON_ADJUST, REASON_OPENING}

# Stock level bands shown on inventory screens
LOW_STOCK_THRESHOLD = 10
NORMAL_STOCK_THRESHOLD = 50


def stock_status(quantity: int, *, low: int = LOW_STOCK_THRESHOLD, normal: int = NORMAL_STOCK_THRESHOLD) -> str:
    """out (0), low (< low), normal (< normal), good."""
    if quantity <= 0:
        return "out"
    if quantity < low:
        return "low"
    if quantity < normal:
        return "normal"
    return "good"


def _validate_price(price_cents) -> None:
    if price_cents is None:
        return
    if not isinstance(price_cents, int) or isinstance(price_cents, bool) or price_cents < 0:
        raise ValidationError("price_cents must be a non-negative integer", details={"price_cents": price_cents})


# -- Products --

def get_product(product_id: str) -> Product:
    product = datastore.fetch("products", product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def list_products(*, active_only: bool = True, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(term), Product.variant_name.ilike(term)))
    return q.order_by(Product.name, Product.id).all()


def create_product(
    *,
    name: str,
    price_cents: int | None = None,
    unit: str = "units",
    variant_name: str | None = None,
    product_id: str | None = None,
) -> Product:
    """Create a catalog product."""
    def _op():
        if not name or not name.strip():
            raise ValidationError("Product name is required")
        _validate_price(price_cents)
        if product_id and db.session.get(Product, product_id) is not None:
            raise ValidationError(f"Product {product_id} already exists", details={"product_id": product_id})

        product = Product(
            name=name.strip(),
            variant_name=variant_name,
            unit=unit or "units",
            price_cents=price_cents,
        )
        if product_id:
            product.id = product_id
        db.session.add(product)
        db.session.commit()

        logger.info("Product %s created (%s)", product.id, product.display_name)
        return product

    return run_with_retry(_op)


def update_product_price(product_id: str, price_cents: int) -> Product:
    def _op():
        _validate_price(price_cents)
        product = datastore.fetch("products", product_id, for_update=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        product.price_cents = price_cents
        db.session.commit()
        return product

    return run_with_retry(_op)


# -- Stock reads --

def get_available(product_id: str, location: str | None = None) -> int:
    """Quantity on hand for a product, at one location or summed across all."""
    q = db.session.query(func.coalesce(func.sum(InventoryRecord.quantity), 0)).filter(
        InventoryRecord.product_id == product_id
    )
    if location:
        q = q.filter(InventoryRecord.location == location)
    return int(q.scalar() or 0)


def get_inventory_record(record_id: str) -> InventoryRecord:
    record = datastore.fetch("inventory", record_id)
    if record is None:
        raise NotFoundError(f"Inventory record {record_id} not found", details={"inventory_record_id": record_id})
    return record


def list_inventory(
    *,
    location: str | None = None,
    search: str | None = None,
    product_id: str | None = None,
    in_stock_only: bool = False,
) -> list[InventoryRecord]:
    q = db.session.query(InventoryRecord)
    if location:
        q = q.filter(InventoryRecord.location == location)
    if product_id:
        q = q.filter(InventoryRecord.product_id == product_id)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(InventoryRecord.product_name.ilike(term), InventoryRecord.batch_number.ilike(term)))
    if in_stock_only:
        q = q.filter(InventoryRecord.quantity > 0)
    return q.order_by(InventoryRecord.location, InventoryRecord.product_name, InventoryRecord.id).all()


def low_stock_items(*, threshold: int = LOW_STOCK_THRESHOLD, location: str | None = None) -> list[InventoryRecord]:
    """Records below threshold (out-of-stock included), emptiest first."""
    q = db.session.query(InventoryRecord).filter(InventoryRecord.quantity < threshold)
    if location:
        q = q.filter(InventoryRecord.location == location)
    return q.order_by(InventoryRecord.quantity, InventoryRecord.product_name).all()


def movements_for_record(record_id: str) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(inventory_record_id=record_id)
        .order_by(StockMovement.id)
        .all()
    )


# -- Stock writes --

def adjust(
    record_id: str,
    delta: int,
    *,
    actor=None,
    reason: str = REASON_ADJUST,
    request_id: str | None = None,
    invoice_id: str | None = None,
    note: str | None = None,
) -> int:
    """
    Apply delta to one inventory record and return the new quantity.

    Raises:
        ValidationError: delta is not an integer, or unknown reason
        NotFoundError: unknown record
        NegativeStockError: current + delta < 0 (nothing is written)

    Flushes but does not commit.
    """
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise ValidationError("delta must be an integer", details={"delta": delta})
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"Unknown stock movement reason '{reason}'", details={"reason": reason})

    record = datastore.fetch("inventory", record_id, for_update=True)
    if record is None:
        raise NotFoundError(f"Inventory record {record_id} not found", details={"inventory_record_id": record_id})

    current = record.quantity or 0
    new_quantity = current + delta
    if new_quantity < 0:
        raise NegativeStockError(record_id, current, delta)

    record.quantity = new_quantity
    db.session.add(StockMovement(
        inventory_record_id=record.id,
        product_id=record.product_id,
        quantity_delta=delta,
        quantity_after=new_quantity,
        reason=reason,
        request_id=request_id,
        invoice_id=invoice_id,
        actor_user_id=getattr(actor, "user_id", None),
        note=note,
        occurred_at=utcnow(),
    ))
    db.session.flush()

    logger.info(
        "Stock %s %+d -> %s (record=%s product=%s)",
        reason, delta, new_quantity, record.id, record.product_id,
    )
    return new_quantity


def _open_record(
    product: Product,
    location: str,
    *,
    batch_number: str | None = None,
    unit_price_cents: int | None = None,
    expiry_date: date | None = None,
) -> InventoryRecord:
    record = InventoryRecord(
        product_id=product.id,
        product_name=product.display_name,
        location=location,
        quantity=0,
        unit=product.unit,
        unit_price_cents=unit_price_cents,
        batch_number=batch_number,
        expiry_date=expiry_date,
    )
    db.session.add(record)
    db.session.flush()
    return record


def credit_stock(
    product_id: str,
    location: str,
    quantity: int,
    *,
    actor=None,
    reason: str = REASON_FULFILLMENT,
    request_id: str | None = None,
    batch_number: str | None = None,
    note: str | None = None,
) -> InventoryRecord:
    """
    Create-or-increment the record for (product, location, batch).

    Flushes but does not commit.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})
    if not location:
        raise ValidationError("location is required")

    product = get_product(product_id)
    record = lock_for_update(
        db.session.query(InventoryRecord).filter_by(
            product_id=product_id, location=location, batch_number=batch_number,
        )
    ).first()
    if record is None:
        record = _open_record(product, location, batch_number=batch_number)

    adjust(record.id, quantity, actor=actor, reason=reason, request_id=request_id, note=note)
    return record


def upsert_inventory_record(
    *,
    product_id: str,
    location: str,
    quantity: int,
    actor,
    unit_price_cents: int | None = None,
    batch_number: str | None = None,
    expiry_date: date | None = None,
    note: str | None = None,
) -> InventoryRecord:
    """
    Set the on-hand quantity (and price/expiry) of a record directly.

    Stock management path: the quantity change still goes through adjust()
    as an OPENING (new record) or ADJUST (existing record) movement.
    """
    identity = as_identity(actor)
    require_permission(identity, "MANAGE_CATALOG")

    def _op():
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
            raise ValidationError("quantity must be a non-negative integer", details={"quantity": quantity})
        if not location:
            raise ValidationError("location is required")
        _validate_price(unit_price_cents)

        product = get_product(product_id)
        record = lock_for_update(
            db.session.query(InventoryRecord).filter_by(
                product_id=product_id, location=location, batch_number=batch_number,
            )
        ).first()
        reason = REASON_ADJUST
        if record is None:
            record = _open_record(
                product, location,
                batch_number=batch_number,
                unit_price_cents=unit_price_cents,
                expiry_date=expiry_date,
            )
            reason = REASON_OPENING
        else:
            if unit_price_cents is not None:
                record.unit_price_cents = unit_price_cents
            if expiry_date is not None:
                record.expiry_date = expiry_date

        delta = quantity - (record.quantity or 0)
        if delta:
            adjust(record.id, delta, actor=identity, reason=reason, note=note)

        append_activity(
            activity_type=INVENTORY_ADJUSTED,
            actor=identity,
            details={
                "inventory_record_id": record.id,
                "product_id": product_id,
                "location": location,
                "delta": delta,
                "quantity": quantity,
                "reason": reason,
            },
        )
        db.session.commit()
        return record

    return run_with_retry(_op)


def adjust_stock(record_id: str, delta: int, *, actor, note: str | None = None) -> int:
    """Manual stock correction; commits the adjustment and its activity entry."""
    identity = as_identity(actor)
    require_permission(identity, "ADJUST_INVENTORY")

    def _op():
        new_quantity = adjust(record_id, delta, actor=identity, reason=REASON_ADJUST, note=note)
        append_activity(
            activity_type=INVENTORY_ADJUSTED,
            actor=identity,
            details={
                "inventory_record_id": record_id,
                "delta": delta,
                "quantity": new_quantity,
                "note": note,
            },
        )
        db.session.commit()
        return new_quantity

    return run_with_retry(_op)
