from __future__ import annotations

from ..extensions import db
from ..push_ids import generate_push_id
from salesflow.time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable product master data.

    Requests name products by id; invoices price lines from the stock record
    first and fall back to price_cents here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)
    name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(255), nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="units")

    # Authoritative storage in cents (clients only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        if self.variant_name:
            return f"{self.name} - {self.variant_name}"
        return self.name

    def __repr__(self) -> str:
        return f"<Product id={self.id!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "variant_name": self.variant_name,
            "unit": self.unit,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryRecord(db.Model):
    """
    Quantity on hand for one product at one location.

    INVARIANT: quantity is never negative. The only writer is
    catalog_service.adjust(), which locks the row, validates, writes and
    lets version_id reject a concurrent stale write.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location", "batch_number", name="uq_inventory_product_location_batch"),
        db.Index("ix_inventory_location_product", "location", "product_id"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)
    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    # Denormalized so stock lists render without a join
    product_name = db.Column(db.String(255), nullable=False)

    location = db.Column(db.String(64), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False, default="units")

    # Selling price at this location; None means use Product.price_cents
    unit_price_cents = db.Column(db.Integer, nullable=True)

    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryRecord id={self.id!r} product_id={self.product_id!r} location={self.location!r} qty={self.quantity}>"

    def effective_price_cents(self) -> int | None:
        if self.unit_price_cents is not None:
            return self.unit_price_cents
        return self.product.price_cents if self.product else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "location": self.location,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only journal of every quantity change on an InventoryRecord.

    reason is one of FULFILLMENT, SALE, ADJUST, OPENING.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_record_occurred", "inventory_record_id", "occurred_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_record_id = db.Column(db.String(32), db.ForeignKey("inventory_records.id"), nullable=False, index=True)
    product_id = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    request_id = db.Column(db.String(32), nullable=True, index=True)
    invoice_id = db.Column(db.String(32), nullable=True, index=True)

    actor_user_id = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_record_id": self.inventory_record_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "request_id": self.request_id,
            "invoice_id": self.invoice_id,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
