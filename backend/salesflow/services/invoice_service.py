# backend/salesflow/services/invoice_service.py
"""
Invoice generation and stock deduction.

Two creation paths:
- create_walk_in_invoice: ad hoc counter sale from location stock
- create_request_invoice: sale drawn against a completed product request,
  never exceeding the quantities that request delivered

Both resolve and validate every line against current stock BEFORE anything is
written, then commit a pending intent, then write the invoice, its activity
entry and every stock decrement in one transaction.

A line given by product_id draws on all of that product's records at the
selling location (batches, earliest expiry first) and becomes one invoice
line per record used, so it fails only when the product's total stock there
falls short.

MONEY: integer cents, rates in basis points (1000 = 10%). Each derived amount
(line total, discount, tax) is rounded half-up to the cent once; intermediate
products are never rounded.

MODES:
- sale: invoice completed, stock deducted; cash/card are paid in full,
  credit leaves the balance pending
- quote: invoice draft, stock untouched until finalize_invoice()
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    InventoryRecord,
    Invoice,
    InvoiceLine,
    InvoicePayment,
    ProductRequest,
)
from ..push_ids import generate_push_id
from ..time_utils import add_days, utcnow
from . import datastore
from .activity_service import (
    INVOICE_CREATED,
    INVOICE_FINALIZED,
    INVOICE_PAYMENT,
    append_activity,
)
from .catalog_service import REASON_SALE, adjust
from .concurrency import lock_for_update, run_with_retry
from .identity_service import as_identity, require_can_sell, require_permission
from .intent_service import (
    INTENT_KIND_INVOICE,
    INTENT_STATUS_COMPLETED,
    begin_intent,
    complete_intent,
    fail_intent,
    get_intent,
)
from .request_service import REQUEST_STATUS_COMPLETED

logger = logging.getLogger(__name__)


# Invoice status constants
INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_COMPLETED = "completed"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

PAYMENT_METHODS = ("cash", "card", "credit")
MODE_SALE = "sale"
MODE_QUOTE = "quote"

SOURCE_WALK_IN = "walk_in"
SOURCE_REQUEST = "request"

BPS_DENOMINATOR = 10000
MAX_NUMBER_ATTEMPTS = 5


# -- Totals --

@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_cents: int
    discount_cents: int
    taxable_cents: int
    tax_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rounded half-up to the cent."""
    return (amount_cents * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def line_total(quantity: int, unit_price_cents: int) -> int:
    return quantity * unit_price_cents


def compute_totals(lines, discount_bps: int = 0, tax_rate_bps: int = 0) -> InvoiceTotals:
    """
    Pure totals over lines of {"quantity", "unit_price_cents"} (or
    {"line_total_cents"}).

    subtotal = sum(line totals)
    discount = round(subtotal * discount%)
    taxable  = subtotal - discount
    tax      = round(taxable * tax%)
    total    = taxable + tax
    """
    _validate_rates(discount_bps, tax_rate_bps)
    subtotal = 0
    for line in lines:
        if "line_total_cents" in line:
            subtotal += line["line_total_cents"]
        else:
            subtotal += line_total(line["quantity"], line["unit_price_cents"])

    discount = apply_rate(subtotal, discount_bps)
    taxable = subtotal - discount
    tax = apply_rate(taxable, tax_rate_bps)
    return InvoiceTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_cents=taxable,
        tax_cents=tax,
        total_cents=taxable + tax,
    )


def _validate_rates(discount_bps, tax_rate_bps) -> None:
    for name, value in (("discount_bps", discount_bps), ("tax_rate_bps", tax_rate_bps)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    if discount_bps > BPS_DENOMINATOR:
        raise ValidationError("discount_bps cannot exceed 10000 (100%)", details={"discount_bps": discount_bps})


def payment_status_for(total_cents: int, paid_cents: int) -> str:
    if paid_cents >= total_cents:
        return PAYMENT_STATUS_PAID
    if paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


# -- Numbering --

def generate_invoice_number(now: datetime | None = None) -> str:
    """INV-YYYYMMDD-<last 4 ms digits><3 random digits>."""
    now = now or utcnow()
    millis = int(now.timestamp() * 1000)
    return f"INV-{now:%Y%m%d}-{millis % 10000:04d}{secrets.randbelow(1000):03d}"


def _unique_invoice_number(now: datetime) -> str:
    for _ in range(MAX_NUMBER_ATTEMPTS):
        number = generate_invoice_number(now)
        exists = db.session.query(Invoice.id).filter_by(invoice_number=number).first()
        if not exists:
            return number
    raise InvalidStateError("Could not allocate a unique invoice number")


# -- Line resolution and stock validation --

@dataclass
class _ResolvedLine:
    record: InventoryRecord
    quantity: int
    unit_price_cents: int


def _validate_customer(customer) -> dict:
    if not isinstance(customer, dict):
        raise ValidationError("Customer details are required")
    name = (customer.get("name") or "").strip()
    if not name:
        raise ValidationError("Customer name is required")
    return {
        "name": name,
        "phone": customer.get("phone"),
        "address": customer.get("address"),
        "email": customer.get("email"),
    }


def _parse_quantity(item, index: int) -> int:
    quantity = item.get("quantity")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError(
            "Item quantity must be a whole number of at least 1",
            details={"index": index, "quantity": quantity},
        )
    return quantity


def _stock_pool(product_id: str, location: str | None, *, for_update: bool = False) -> list[InventoryRecord]:
    """Records a product line draws from: earliest expiry first, then fullest."""
    q = db.session.query(InventoryRecord).filter(InventoryRecord.product_id == product_id)
    if location:
        q = q.filter(InventoryRecord.location == location)
    q = q.order_by(
        InventoryRecord.expiry_date.is_(None),
        InventoryRecord.expiry_date,
        InventoryRecord.quantity.desc(),
        InventoryRecord.id,
    )
    if for_update:
        q = lock_for_update(q).populate_existing()
    return q.all()


def _line_price(item, record: InventoryRecord, index: int) -> int:
    price = item.get("unit_price_cents")
    if price is None:
        price = record.effective_price_cents()
    if price is None:
        raise ValidationError(
            f"No price set for product {record.product_id}",
            details={"index": index, "product_id": record.product_id},
        )
    if not isinstance(price, int) or isinstance(price, bool) or price < 0:
        raise ValidationError(
            "unit_price_cents must be a non-negative integer",
            details={"index": index, "unit_price_cents": price},
        )
    return price


def _resolve_lines(items, location: str | None, *, for_update: bool = False) -> list[_ResolvedLine]:
    """
    Resolve invoice items to inventory records and check them against stock.

    An item names either inventory_record_id (that record only) or product_id,
    which draws from every record of the product at location (all locations
    when location is None), earliest expiry first. One resolved line is
    produced per record drawn from. unit_price_cents overrides the record price.

    Named records are reserved before any product_id item is spread, so a
    product item never takes units a named line needs.

    Raises:
        ValidationError: malformed item, unknown record, missing price
        InsufficientStockError: an item asks for more than its record (or
            its product's records) still hold; available is their total
    """
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("At least one item is required")

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        quantity = _parse_quantity(item, index)
        if not item.get("inventory_record_id") and not item.get("product_id"):
            raise ValidationError("Item needs inventory_record_id or product_id", details={"index": index})
        parsed.append((index, item, quantity))

    # Units of each record not yet allocated to a line
    free: dict[str, int] = {}
    drawn: dict[int, list[tuple[InventoryRecord, int]]] = {}

    for index, item, quantity in parsed:
        record_id = item.get("inventory_record_id")
        if not record_id:
            continue
        record = datastore.fetch("inventory", record_id, for_update=for_update)
        if record is None:
            raise ValidationError(
                f"Unknown inventory record {record_id}",
                details={"index": index, "inventory_record_id": record_id},
            )
        product_id = item.get("product_id")
        if product_id and product_id != record.product_id:
            raise ValidationError(
                "Item product does not match its inventory record",
                details={"index": index, "product_id": product_id, "inventory_record_id": record_id},
            )
        on_hand = record.quantity or 0
        free.setdefault(record.id, on_hand)
        if quantity > free[record.id]:
            raise InsufficientStockError(record.product_id, on_hand - free[record.id] + quantity, on_hand)
        free[record.id] -= quantity
        drawn[index] = [(record, quantity)]

    pools: dict[str, list[InventoryRecord]] = {}
    for index, item, quantity in parsed:
        if item.get("inventory_record_id"):
            continue
        product_id = item["product_id"]
        if product_id not in pools:
            pools[product_id] = _stock_pool(product_id, location, for_update=for_update)
        pool = pools[product_id]
        for record in pool:
            free.setdefault(record.id, record.quantity or 0)

        on_hand = sum(record.quantity or 0 for record in pool)
        left = sum(free[record.id] for record in pool)
        if quantity > left:
            raise InsufficientStockError(product_id, on_hand - left + quantity, on_hand)

        parts = []
        remaining = quantity
        for record in pool:
            if not remaining:
                break
            take = min(remaining, free[record.id])
            if take:
                parts.append((record, take))
                free[record.id] -= take
                remaining -= take
        drawn[index] = parts

    resolved = []
    for index, item, _ in parsed:
        for record, quantity in drawn[index]:
            resolved.append(_ResolvedLine(
                record=record,
                quantity=quantity,
                unit_price_cents=_line_price(item, record, index),
            ))
    return resolved


def _line_dicts(lines: list[_ResolvedLine]) -> list[dict]:
    return [{"quantity": l.quantity, "unit_price_cents": l.unit_price_cents} for l in lines]


def _validate_against_request(request: ProductRequest, lines: list[_ResolvedLine]) -> None:
    """
    Invoiced quantity per product stays within what the request delivered.

    Completed invoices already drawn against the request count; drafts do
    not, and are checked again when finalized.
    """
    allowed: dict[str, int] = {}
    for item in request.items:
        allowed[item.product_id] = allowed.get(item.product_id, 0) + item.quantity

    already = dict(
        db.session.query(InvoiceLine.product_id, func.coalesce(func.sum(InvoiceLine.quantity), 0))
        .join(Invoice, Invoice.id == InvoiceLine.invoice_id)
        .filter(
            Invoice.source_request_id == request.id,
            Invoice.status == INVOICE_STATUS_COMPLETED,
        )
        .group_by(InvoiceLine.product_id)
        .all()
    )

    wanted: dict[str, int] = {}
    for line in lines:
        product_id = line.record.product_id
        if product_id not in allowed:
            raise ValidationError(
                f"Product {product_id} is not part of request {request.request_number}",
                details={"product_id": product_id, "request_id": request.id},
            )
        wanted[product_id] = wanted.get(product_id, 0) + line.quantity
        remaining = allowed[product_id] - int(already.get(product_id, 0))
        if wanted[product_id] > remaining:
            raise ValidationError(
                f"Quantity for product {product_id} exceeds what request {request.request_number} delivered",
                details={
                    "product_id": product_id,
                    "requested": wanted[product_id],
                    "remaining": remaining,
                },
            )


def _load_source_request(request_id: str, *, for_update: bool = False) -> ProductRequest:
    request = datastore.fetch("requests", request_id, for_update=for_update)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", details={"request_id": request_id})
    if request.status != REQUEST_STATUS_COMPLETED:
        raise InvalidStateError(
            f"Cannot invoice request in {request.status} status",
            details={"request_id": request_id, "status": request.status},
        )
    return request


# -- Creation --

def _create_invoice(
    identity,
    customer,
    items,
    *,
    source: str,
    source_request_id: str | None,
    discount_bps: int,
    tax_rate_bps: int | None,
    notes: str | None,
    mode: str,
    payment_method: str,
    idempotency_key: str | None,
    location: str | None,
) -> Invoice:
    require_can_sell(identity)

    if tax_rate_bps is None:
        tax_rate_bps = current_app.config.get("DEFAULT_TAX_RATE_BPS", 0)
    if mode not in (MODE_SALE, MODE_QUOTE):
        raise ValidationError(f"Invalid mode '{mode}'", details={"allowed": [MODE_SALE, MODE_QUOTE]})
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{payment_method}'",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    _validate_rates(discount_bps, tax_rate_bps)
    customer_fields = _validate_customer(customer)
    location = location or identity.location

    key = f"invoice:{idempotency_key or generate_push_id()}"
    if idempotency_key:
        existing = get_intent(key)
        if existing is not None and existing.status == INTENT_STATUS_COMPLETED and existing.result_id:
            logger.info("Invoice replay for key %s returns %s", key, existing.result_id)
            return get_invoice(existing.result_id)

    # Validation before any write
    lines = _resolve_lines(items, location)
    if source_request_id:
        _validate_against_request(_load_source_request(source_request_id), lines)

    def _begin():
        begin_intent(key=key, kind=INTENT_KIND_INVOICE, target_id=source_request_id, actor=identity)
        db.session.commit()

    run_with_retry(_begin)

    def _apply():
        intent = get_intent(key)
        if intent is not None and intent.status == INTENT_STATUS_COMPLETED and intent.result_id:
            return get_invoice(intent.result_id)

        # Re-read under lock; stock may have moved since the first validation.
        # The source request is locked first so invoices drawn against it serialize.
        source_request = None
        if source_request_id:
            source_request = _load_source_request(source_request_id, for_update=True)
        locked = _resolve_lines(items, location, for_update=True)
        if source_request is not None:
            _validate_against_request(source_request, locked)

        totals = compute_totals(_line_dicts(locked), discount_bps, tax_rate_bps)
        now = utcnow()
        is_sale = mode == MODE_SALE
        paid = totals.total_cents if is_sale and payment_method != "credit" else 0

        invoice = Invoice(
            invoice_number=_unique_invoice_number(now),
            created_by_user_id=identity.user_id,
            created_by_name=identity.display_name,
            created_by_role=identity.role,
            location=location,
            customer_name=customer_fields["name"],
            customer_phone=customer_fields["phone"],
            customer_address=customer_fields["address"],
            customer_email=customer_fields["email"],
            source=source,
            source_request_id=source_request_id,
            subtotal_cents=totals.subtotal_cents,
            discount_bps=discount_bps,
            discount_cents=totals.discount_cents,
            taxable_cents=totals.taxable_cents,
            tax_rate_bps=tax_rate_bps,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            status=INVOICE_STATUS_COMPLETED if is_sale else INVOICE_STATUS_DRAFT,
            payment_status=payment_status_for(totals.total_cents, paid) if is_sale else PAYMENT_STATUS_PENDING,
            payment_method=payment_method,
            total_paid_cents=paid,
            remaining_cents=totals.total_cents - paid,
            notes=notes,
            created_at=now,
            completed_at=now if is_sale else None,
            due_date=add_days(now, current_app.config.get("INVOICE_DUE_DAYS", 30)),
        )
        for position, line in enumerate(locked, start=1):
            invoice.lines.append(InvoiceLine(
                position=position,
                product_id=line.record.product_id,
                inventory_record_id=line.record.id,
                product_name=line.record.product_name,
                quantity=line.quantity,
                unit=line.record.unit,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line_total(line.quantity, line.unit_price_cents),
            ))
        if paid:
            invoice.payments.append(InvoicePayment(
                amount_cents=paid,
                method=payment_method,
                received_by_user_id=identity.user_id,
                received_at=now,
            ))
        db.session.add(invoice)
        db.session.flush()

        append_activity(
            activity_type=INVOICE_CREATED,
            actor=identity,
            invoice_id=invoice.id,
            request_id=source_request_id,
            occurred_at=now,
            details={
                "invoice_number": invoice.invoice_number,
                "customer": customer_fields["name"],
                "source": source,
                "mode": mode,
                "total_cents": invoice.total_cents,
                "item_count": len(locked),
            },
        )

        if is_sale:
            for line in locked:
                adjust(
                    line.record.id,
                    -line.quantity,
                    actor=identity,
                    reason=REASON_SALE,
                    invoice_id=invoice.id,
                    request_id=source_request_id,
                    note=invoice.invoice_number,
                )

        complete_intent(key, invoice.id)
        db.session.commit()

        logger.info(
            "Invoice %s (%s, %s) created by %s: total_cents=%s",
            invoice.invoice_number, source, mode, identity.user_id, invoice.total_cents,
        )
        return invoice

    try:
        return run_with_retry(_apply)
    except Exception as exc:
        db.session.rollback()
        fail_intent(key, f"{type(exc).__name__}: {exc}")
        raise


def create_walk_in_invoice(
    actor,
    customer: dict,
    items: list[dict],
    *,
    discount_bps: int = 0,
    tax_rate_bps: int | None = None,
    notes: str | None = None,
    mode: str = MODE_SALE,
    payment_method: str = "cash",
    idempotency_key: str | None = None,
    location: str | None = None,
) -> Invoice:
    """
    Ad hoc counter sale against location stock.

    Raises:
        ValidationError: missing customer name, empty items, bad rates/mode
        InsufficientStockError: a line asks for more than its record holds
            (raised before anything is written)
        PermissionDeniedError: role cannot sell
    """
    identity = as_identity(actor)
    return _create_invoice(
        identity,
        customer,
        items,
        source=SOURCE_WALK_IN,
        source_request_id=None,
        discount_bps=discount_bps,
        tax_rate_bps=tax_rate_bps,
        notes=notes,
        mode=mode,
        payment_method=payment_method,
        idempotency_key=idempotency_key,
        location=location,
    )


def create_request_invoice(
    actor,
    request_id: str,
    customer: dict,
    items: list[dict] | None = None,
    *,
    discount_bps: int = 0,
    tax_rate_bps: int | None = None,
    notes: str | None = None,
    mode: str = MODE_SALE,
    payment_method: str = "cash",
    idempotency_key: str | None = None,
) -> Invoice:
    """
    Sale drawn against a completed request.

    items defaults to every requested product at its full quantity. Lines are
    taken from the location the request was fulfilled into.

    Raises:
        NotFoundError: unknown request
        InvalidStateError: request not completed
        ValidationError: product not on the request, or quantity beyond it
        InsufficientStockError: as for walk-in invoices
    """
    identity = as_identity(actor)
    request = datastore.fetch("requests", request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", details={"request_id": request_id})
    if items is None:
        items = [{"product_id": item.product_id, "quantity": item.quantity} for item in request.items]
    return _create_invoice(
        identity,
        customer,
        items,
        source=SOURCE_REQUEST,
        source_request_id=request_id,
        discount_bps=discount_bps,
        tax_rate_bps=tax_rate_bps,
        notes=notes,
        mode=mode,
        payment_method=payment_method,
        idempotency_key=idempotency_key,
        location=request.fulfilled_location or request.location,
    )


# -- Payments and finalization --

def _replayed_payment(idempotency_key: str, invoice_id: str) -> Invoice | None:
    """The invoice a keyed payment was already recorded on, or None."""
    payment = db.session.query(InvoicePayment).filter_by(idempotency_key=idempotency_key).first()
    if payment is None:
        return None
    if payment.invoice_id != invoice_id:
        raise ValidationError(
            "Idempotency key was already used for another invoice",
            details={"idempotency_key": idempotency_key, "invoice_id": payment.invoice_id},
        )
    logger.info("Payment replay for key %s on invoice %s", idempotency_key, invoice_id)
    return get_invoice(invoice_id)


def record_payment(
    invoice_id: str,
    actor,
    amount_cents: int,
    method: str = "cash",
    note: str | None = None,
    *,
    idempotency_key: str | None = None,
) -> Invoice:
    """
    Record a payment against a completed invoice.

    INVARIANT: remaining_cents + total_paid_cents == total_cents.

    With an idempotency_key a repeated call returns the invoice without
    recording the payment again, and storage failures are retried. Without
    one the write is attempted once.

    Raises:
        ValidationError: amount not positive, overpayment, unknown method,
            key already used on another invoice
        InvalidStateError: draft invoice, or already paid
        StorageError: the database stayed unavailable
    """
    identity = as_identity(actor)
    require_permission(identity, "RECORD_PAYMENT")

    def _op():
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise ValidationError("amount_cents must be a positive integer", details={"amount_cents": amount_cents})
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method '{method}'", details={"allowed": list(PAYMENT_METHODS)})

        invoice = datastore.fetch("invoices", invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        if idempotency_key:
            replay = _replayed_payment(idempotency_key, invoice_id)
            if replay is not None:
                return replay
        if invoice.status != INVOICE_STATUS_COMPLETED:
            raise InvalidStateError(
                f"Cannot record payment on {invoice.status} invoice",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )
        if invoice.remaining_cents <= 0:
            raise InvalidStateError("Invoice is already paid", details={"invoice_id": invoice_id})
        if amount_cents > invoice.remaining_cents:
            raise ValidationError(
                "Payment exceeds the remaining balance",
                details={"amount_cents": amount_cents, "remaining_cents": invoice.remaining_cents},
            )

        now = utcnow()
        invoice.payments.append(InvoicePayment(
            amount_cents=amount_cents,
            method=method,
            received_by_user_id=identity.user_id,
            received_at=now,
            note=note,
            idempotency_key=idempotency_key,
        ))
        invoice.total_paid_cents += amount_cents
        invoice.remaining_cents = invoice.total_cents - invoice.total_paid_cents
        invoice.payment_status = payment_status_for(invoice.total_cents, invoice.total_paid_cents)
        invoice.payment_method = method
        try:
            db.session.flush()
        except IntegrityError:
            # A concurrent call with the same key got there first
            db.session.rollback()
            replay = _replayed_payment(idempotency_key, invoice_id) if idempotency_key else None
            if replay is None:
                raise
            return replay

        append_activity(
            activity_type=INVOICE_PAYMENT,
            actor=identity,
            invoice_id=invoice.id,
            occurred_at=now,
            details={
                "invoice_number": invoice.invoice_number,
                "amount_cents": amount_cents,
                "method": method,
                "remaining_cents": invoice.remaining_cents,
            },
        )
        db.session.commit()

        logger.info(
            "Payment of %s cents on %s (%s), remaining %s",
            amount_cents, invoice.invoice_number, method, invoice.remaining_cents,
        )
        return invoice

    # Only keyed payments are safe to replay after a storage failure
    return run_with_retry(_op, attempts=3 if idempotency_key else 1)


def finalize_invoice(invoice_id: str, actor) -> Invoice:
    """
    Convert a draft (quote) into a completed sale.

    Re-validates every line against current stock (and, for a request-derived
    draft, against what the request has left to invoice) and deducts it in the
    same transaction as the status change.
    """
    identity = as_identity(actor)
    require_can_sell(identity)

    def _op():
        invoice = datastore.fetch("invoices", invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise InvalidStateError(
                f"Cannot finalize invoice in {invoice.status} status",
                details={"invoice_id": invoice_id, "status": invoice.status},
            )

        source_request = None
        if invoice.source_request_id:
            source_request = _load_source_request(invoice.source_request_id, for_update=True)

        lines = _resolve_lines(
            [
                {"inventory_record_id": line.inventory_record_id, "quantity": line.quantity,
                 "unit_price_cents": line.unit_price_cents}
                for line in invoice.lines
            ],
            invoice.location,
            for_update=True,
        )
        if source_request is not None:
            _validate_against_request(source_request, lines)

        for line in lines:
            adjust(
                line.record.id,
                -line.quantity,
                actor=identity,
                reason=REASON_SALE,
                invoice_id=invoice.id,
                request_id=invoice.source_request_id,
                note=invoice.invoice_number,
            )

        now = utcnow()
        invoice.status = INVOICE_STATUS_COMPLETED
        invoice.completed_at = now
        db.session.flush()

        append_activity(
            activity_type=INVOICE_FINALIZED,
            actor=identity,
            invoice_id=invoice.id,
            occurred_at=now,
            details={"invoice_number": invoice.invoice_number, "total_cents": invoice.total_cents},
        )
        db.session.commit()

        logger.info("Invoice %s finalized by %s", invoice.invoice_number, identity.user_id)
        return invoice

    return run_with_retry(_op)


# -- Reads --

def get_invoice(invoice_id: str) -> Invoice:
    invoice = datastore.fetch("invoices", invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def get_invoice_summary(invoice_id: str) -> dict:
    """Invoice with payments and due-date standing."""
    invoice = get_invoice(invoice_id)
    summary = invoice.to_dict()
    summary["payments"] = [payment.to_dict() for payment in invoice.payments]
    summary["is_overdue"] = _is_overdue(invoice, utcnow())
    return summary


def _is_overdue(invoice: Invoice, now: datetime) -> bool:
    return (
        invoice.status == INVOICE_STATUS_COMPLETED
        and invoice.remaining_cents > 0
        and invoice.due_date is not None
        and invoice.due_date < now
    )


def list_invoices(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    search: str | None = None,
    created_by_user_id: str | None = None,
    limit: int = 100,
) -> list[Invoice]:
    """Newest first; search matches invoice number or customer name."""
    q = db.session.query(Invoice)
    if status:
        q = q.filter(Invoice.status == status)
    if payment_status:
        q = q.filter(Invoice.payment_status == payment_status)
    if created_by_user_id:
        q = q.filter(Invoice.created_by_user_id == created_by_user_id)
    if search and search.strip():
        like = f"%{search.strip()}%"
        q = q.filter(or_(Invoice.invoice_number.ilike(like), Invoice.customer_name.ilike(like)))
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()


def invoice_summary_stats(*, created_by_user_id: str | None = None, now: datetime | None = None) -> dict:
    """Outstanding balance, payments received this month, overdue and draft counts."""
    now = now or utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    invoices_q = db.session.query(Invoice)
    if created_by_user_id:
        invoices_q = invoices_q.filter(Invoice.created_by_user_id == created_by_user_id)
    invoices = invoices_q.all()

    payments_q = (
        db.session.query(func.coalesce(func.sum(InvoicePayment.amount_cents), 0))
        .join(Invoice, Invoice.id == InvoicePayment.invoice_id)
        .filter(InvoicePayment.received_at >= month_start)
    )
    if created_by_user_id:
        payments_q = payments_q.filter(Invoice.created_by_user_id == created_by_user_id)

    completed = [inv for inv in invoices if inv.status == INVOICE_STATUS_COMPLETED]
    return {
        "invoice_count": len(invoices),
        "outstanding_cents": sum(inv.remaining_cents for inv in completed),
        "paid_this_month_cents": int(payments_q.scalar() or 0),
        "overdue_count": sum(1 for inv in completed if _is_overdue(inv, now)),
        "draft_count": sum(1 for inv in invoices if inv.status == INVOICE_STATUS_DRAFT),
    }
