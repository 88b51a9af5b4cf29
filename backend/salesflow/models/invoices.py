from __future__ import annotations

from ..extensions import db
from ..push_ids import generate_push_id
from salesflow.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Priced, itemized customer bill issued against available stock.

    Totals are derived from the lines by invoice_service.compute_totals and
    written together; nothing updates a total on its own.
    INVARIANT: remaining_cents + total_paid_cents == total_cents.

    source is "walk_in" (ad hoc counter sale) or "request" (drawn against a
    completed product request, source_request_id set).
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_status_created", "status", "created_at"),
        db.Index("ix_invoices_payment_status", "payment_status"),
        db.CheckConstraint("total_paid_cents >= 0", name="ck_invoices_paid_non_negative"),
        db.CheckConstraint("remaining_cents >= 0", name="ck_invoices_remaining_non_negative"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)

    # Human-readable number (e.g. "INV-20261018-4821-037")
    invoice_number = db.Column(db.String(40), nullable=False, unique=True)

    created_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_name = db.Column(db.String(255), nullable=False)
    created_by_role = db.Column(db.String(64), nullable=False)
    location = db.Column(db.String(64), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)

    source = db.Column(db.String(16), nullable=False, default="walk_in")
    source_request_id = db.Column(db.String(32), db.ForeignKey("product_requests.id"), nullable=True, index=True)

    # All amounts in cents, rates in basis points
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # draft (quote, stock untouched) or completed (stock deducted)
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)
    # pending, partial, paid
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_method = db.Column(db.String(16), nullable=True)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    payments = db.relationship(
        "InvoicePayment",
        backref="invoice",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id!r} number={self.invoice_number!r} total_cents={self.total_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by_name,
            "created_by_role": self.created_by_role,
            "location": self.location,
            "customer": {
                "name": self.customer_name,
                "phone": self.customer_phone,
                "address": self.customer_address,
                "email": self.customer_email,
            },
            "source": self.source,
            "source_request_id": self.source_request_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_bps": self.discount_bps,
            "discount_cents": self.discount_cents,
            "taxable_cents": self.taxable_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "total_paid_cents": self.total_paid_cents,
            "remaining_cents": self.remaining_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "due_date": to_utc_z(self.due_date),
            "version_id": self.version_id,
            "items": [line.to_dict() for line in self.lines],
        }


class InvoiceLine(db.Model):
    """Individual line on an invoice; line_total_cents = quantity * unit_price_cents."""
    __tablename__ = "invoice_lines"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.String(32), db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False)
    inventory_record_id = db.Column(db.String(32), db.ForeignKey("inventory_records.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="units")
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "inventory_record_id": self.inventory_record_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class InvoicePayment(db.Model):
    """Payment received against an invoice (cash, card or credit settlement)."""
    __tablename__ = "invoice_payments"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.String(32), db.ForeignKey("invoices.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, default="cash")
    received_by_user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    # Client key for a payment retried after a lost response; unique when set
    idempotency_key = db.Column(db.String(64), nullable=True, unique=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
            "note": self.note,
        }
