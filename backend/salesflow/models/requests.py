from __future__ import annotations

from ..extensions import db
from ..push_ids import generate_push_id
from salesflow.time_utils import to_utc_z


class ProductRequest(db.Model):
    """
    Demand for product quantities raised by one role for approval by another.

    LIFECYCLE:
    1. pending: created by a requester role
    2. approved / rejected: one approver acts, exactly once
    3. completed: approved request fulfilled into inventory (consumed)

    rejected and completed are terminal. version_id turns the approve/reject
    write into a compare-and-set so two approvers cannot both win.
    """
    __tablename__ = "product_requests"
    __table_args__ = (
        db.Index("ix_product_requests_status_requested", "status", "requested_at"),
        db.Index("ix_product_requests_role_status", "requested_by_role", "status"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)

    # Human-readable number (e.g. "REQ-20261018-0007")
    request_number = db.Column(db.String(32), nullable=False, unique=True)

    requested_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=False, index=True)
    requested_by_name = db.Column(db.String(255), nullable=False)
    requested_by_role = db.Column(db.String(64), nullable=False)
    location = db.Column(db.String(64), nullable=True, index=True)

    # pending, approved, rejected, completed
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    notes = db.Column(db.Text, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)

    approved_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=True)
    approved_by_name = db.Column(db.String(255), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    rejected_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=True)
    rejected_by_name = db.Column(db.String(255), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Fulfillment (consumed marker)
    completed_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_location = db.Column(db.String(64), nullable=True)
    fulfilled_inventory_ids = db.Column(db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "ProductRequestItem",
        backref="request",
        order_by="ProductRequestItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductRequest id={self.id!r} number={self.request_number!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_number": self.request_number,
            "requested_by_user_id": self.requested_by_user_id,
            "requested_by_name": self.requested_by_name,
            "requested_by_role": self.requested_by_role,
            "location": self.location,
            "status": self.status,
            "priority": self.priority,
            "notes": self.notes,
            "requested_at": to_utc_z(self.requested_at),
            "approved_by_user_id": self.approved_by_user_id,
            "approved_by_name": self.approved_by_name,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approval_notes": self.approval_notes,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_by_name": self.rejected_by_name,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejection_reason": self.rejection_reason,
            "completed_by_user_id": self.completed_by_user_id,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "fulfilled_location": self.fulfilled_location,
            "fulfilled_inventory_ids": self.fulfilled_inventory_ids or [],
            "version_id": self.version_id,
            "items": [item.to_dict() for item in self.items],
        }


class ProductRequestItem(db.Model):
    """One requested product line, kept in the order the requester entered it."""
    __tablename__ = "product_request_items"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(32), db.ForeignKey("product_requests.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="units")
    urgency = db.Column(db.String(16), nullable=False, default="normal")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "urgency": self.urgency,
        }
