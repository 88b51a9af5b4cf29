# backend/salesflow/services/request_service.py
"""
Product request lifecycle.

WHY: Field roles ask for stock; an approver with authority over the
requester's role decides once; the approved request is then consumed by
fulfillment. Every transition is recorded in the activity log in the same
transaction.

LIFECYCLE:
1. pending: created by a requester role
2. approved / rejected: exactly one approver acts (compare-and-set)
3. completed: approved request fulfilled into inventory

INVARIANT: status only moves pending -> approved | rejected and
approved -> completed. Approver fields are written once.
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ActivityLogEntry, Product, ProductRequest, ProductRequestItem
from ..permissions import approvable_roles
from ..time_utils import utcnow
from . import datastore
from .activity_service import (
    REQUEST_APPROVED,
    REQUEST_CREATED,
    REQUEST_REJECTED,
    append_activity,
)
from .concurrency import run_with_retry
from .document_service import next_document_number
from .identity_service import as_identity, require_can_approve, require_permission

logger = logging.getLogger(__name__)


# Request status constants
REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_APPROVED = "approved"
REQUEST_STATUS_REJECTED = "rejected"
REQUEST_STATUS_COMPLETED = "completed"

ALLOWED_TRANSITIONS = {
    REQUEST_STATUS_PENDING: {REQUEST_STATUS_APPROVED, REQUEST_STATUS_REJECTED},
    REQUEST_STATUS_APPROVED: {REQUEST_STATUS_COMPLETED},
    REQUEST_STATUS_REJECTED: set(),
    REQUEST_STATUS_COMPLETED: set(),
}

PRIORITIES = ("low", "normal", "high", "urgent")
URGENCIES = PRIORITIES

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
_ACTION_TARGETS = {
    ACTION_APPROVE: REQUEST_STATUS_APPROVED,
    ACTION_REJECT: REQUEST_STATUS_REJECTED,
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _validate_items(items) -> list[tuple[dict, Product]]:
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("At least one item is required")

    resolved = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})

        product_id = item.get("product_id")
        if not product_id:
            raise ValidationError("Item is missing product_id", details={"index": index})
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ValidationError(
                f"Unknown product {product_id}",
                details={"index": index, "product_id": product_id},
            )

        quantity = item.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(
                "Item quantity must be a whole number of at least 1",
                details={"index": index, "product_id": product_id, "quantity": quantity},
            )

        urgency = item.get("urgency") or "normal"
        if urgency not in URGENCIES:
            raise ValidationError(
                f"Invalid urgency '{urgency}'",
                details={"index": index, "allowed": list(URGENCIES)},
            )
        resolved.append(({**item, "urgency": urgency}, product))
    return resolved


def create_request(
    requester,
    items: list[dict],
    *,
    notes: str | None = None,
    priority: str = "normal",
    location: str | None = None,
) -> ProductRequest:
    """
    Create a pending product request for the session identity.

    Args:
        requester: Identity (or User) raising the request
        items: [{"product_id", "quantity", "unit"?, "urgency"?}, ...]
        notes: Free text shown to approvers
        priority: low | normal | high | urgent
        location: Stock location the request is for (defaults to the requester's)

    Raises:
        ValidationError: empty items, unknown product, quantity < 1, bad priority
        PermissionDeniedError: role cannot raise requests
    """
    identity = as_identity(requester)
    require_permission(identity, "CREATE_REQUEST")

    def _op():
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority '{priority}'", details={"allowed": list(PRIORITIES)})
        resolved = _validate_items(items)

        now = utcnow()
        request = ProductRequest(
            request_number=next_document_number(document_type="REQUEST", prefix="REQ"),
            requested_by_user_id=identity.user_id,
            requested_by_name=identity.display_name,
            requested_by_role=identity.role,
            location=location or identity.location,
            status=REQUEST_STATUS_PENDING,
            priority=priority,
            notes=notes,
            requested_at=now,
        )
        for position, (item, product) in enumerate(resolved, start=1):
            request.items.append(ProductRequestItem(
                position=position,
                product_id=product.id,
                product_name=product.display_name,
                quantity=item["quantity"],
                unit=item.get("unit") or product.unit,
                urgency=item["urgency"],
            ))

        db.session.add(request)
        db.session.flush()

        append_activity(
            activity_type=REQUEST_CREATED,
            actor=identity,
            request_id=request.id,
            occurred_at=now,
            details={
                "request_number": request.request_number,
                "item_count": len(resolved),
                "priority": priority,
            },
        )
        db.session.commit()

        logger.info(
            "Request %s created by %s (%s) with %s item(s)",
            request.request_number, identity.user_id, identity.role, len(resolved),
        )
        return request

    return run_with_retry(_op)


def get_request(request_id: str) -> ProductRequest:
    request = datastore.fetch("requests", request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", details={"request_id": request_id})
    return request


def transition(request_id: str, actor, action: str, note: str | None = None) -> ProductRequest:
    """
    Approve or reject a pending request.

    The row is re-read under lock inside the unit of work and the write is a
    version_id compare-and-set. If a concurrent approver commits first, the
    retry re-reads the request, finds it no longer pending and raises
    InvalidStateError; the first decision stands.

    Raises:
        ValidationError: unknown action
        NotFoundError: unknown request
        InvalidStateError: request is not pending
        PermissionDeniedError: actor cannot act on the requester's role,
            or actor is the requester
    """
    identity = as_identity(actor)
    target = _ACTION_TARGETS.get(action)
    if target is None:
        raise ValidationError(f"Unknown action '{action}'", details={"allowed": sorted(_ACTION_TARGETS)})

    def _op():
        request = datastore.fetch("requests", request_id, for_update=True)
        if request is None:
            raise NotFoundError(f"Request {request_id} not found", details={"request_id": request_id})

        if not can_transition(request.status, target):
            raise InvalidStateError(
                f"Cannot {action} request in {request.status} status",
                details={"request_id": request_id, "status": request.status},
            )

        require_can_approve(identity, request.requested_by_user_id, request.requested_by_role)

        now = utcnow()
        request.status = target
        if target == REQUEST_STATUS_APPROVED:
            request.approved_by_user_id = identity.user_id
            request.approved_by_name = identity.display_name
            request.approved_at = now
            request.approval_notes = note
            activity_type = REQUEST_APPROVED
        else:
            request.rejected_by_user_id = identity.user_id
            request.rejected_by_name = identity.display_name
            request.rejected_at = now
            request.rejection_reason = note
            activity_type = REQUEST_REJECTED

        db.session.flush()

        append_activity(
            activity_type=activity_type,
            actor=identity,
            request_id=request.id,
            occurred_at=now,
            details={
                "request_number": request.request_number,
                "requested_by_role": request.requested_by_role,
                "note": note,
            },
        )
        db.session.commit()

        logger.info("Request %s %s by %s (%s)", request.request_number, target, identity.user_id, identity.role)
        return request

    return run_with_retry(_op)


def approve_request(request_id: str, actor, notes: str | None = None) -> ProductRequest:
    return transition(request_id, actor, ACTION_APPROVE, notes)


def reject_request(request_id: str, actor, reason: str | None = None) -> ProductRequest:
    return transition(request_id, actor, ACTION_REJECT, reason)


class PendingRequests:
    """
    Pending requests an approver may act on.

    Iterating runs a fresh query and streams rows in batches, so the view is
    lazy, always finite, and can be iterated again to see newer state.
    """

    def __init__(
        self,
        roles: tuple[str, ...],
        *,
        location: str | None = None,
        requested_by_user_id: str | None = None,
        priority: str | None = None,
        exclude_user_id: str | None = None,
        batch_size: int = 50,
    ):
        self.roles = roles
        self.location = location
        self.requested_by_user_id = requested_by_user_id
        self.priority = priority
        self.exclude_user_id = exclude_user_id
        self.batch_size = batch_size

    def _query(self):
        q = db.session.query(ProductRequest).filter(
            ProductRequest.status == REQUEST_STATUS_PENDING,
            ProductRequest.requested_by_role.in_(self.roles),
        )
        if self.location:
            q = q.filter(ProductRequest.location == self.location)
        if self.requested_by_user_id:
            q = q.filter(ProductRequest.requested_by_user_id == self.requested_by_user_id)
        if self.priority:
            q = q.filter(ProductRequest.priority == self.priority)
        if self.exclude_user_id:
            q = q.filter(ProductRequest.requested_by_user_id != self.exclude_user_id)
        return q.order_by(ProductRequest.requested_at, ProductRequest.id)

    def __iter__(self):
        if not self.roles:
            return iter(())
        return iter(self._query().yield_per(self.batch_size))

    def count(self) -> int:
        if not self.roles:
            return 0
        return self._query().count()


def list_pending_for(
    actor_or_role,
    *,
    location: str | None = None,
    requested_by_user_id: str | None = None,
    priority: str | None = None,
) -> PendingRequests:
    """Pending requests from roles within the approver's scope."""
    if isinstance(actor_or_role, str):
        role, exclude = actor_or_role, None
    else:
        identity = as_identity(actor_or_role)
        role, exclude = identity.role, identity.user_id
    return PendingRequests(
        approvable_roles(role),
        location=location,
        requested_by_user_id=requested_by_user_id,
        priority=priority,
        exclude_user_id=exclude,
    )


def list_requests_for_requester(user_id: str, status: str | None = None) -> list[ProductRequest]:
    """Request history for one requester, newest first."""
    q = db.session.query(ProductRequest).filter(ProductRequest.requested_by_user_id == user_id)
    if status:
        q = q.filter(ProductRequest.status == status)
    return q.order_by(ProductRequest.requested_at.desc(), ProductRequest.id.desc()).all()


def search_requests(
    term: str | None = None,
    *,
    status: str | None = None,
    limit: int = 50,
) -> list[ProductRequest]:
    """Request tracker lookup by number, requester name or status."""
    q = db.session.query(ProductRequest)
    if status:
        q = q.filter(ProductRequest.status == status)
    if term and term.strip():
        like = f"%{term.strip()}%"
        q = q.filter(or_(
            ProductRequest.request_number.ilike(like),
            ProductRequest.requested_by_name.ilike(like),
            ProductRequest.status == term.strip().lower(),
        ))
    return q.order_by(ProductRequest.requested_at.desc(), ProductRequest.id.desc()).limit(limit).all()


def get_request_summary(request_id: str) -> dict:
    """Request with item totals and its activity timeline (oldest first)."""
    request = get_request(request_id)
    timeline = (
        db.session.query(ActivityLogEntry)
        .filter(ActivityLogEntry.request_id == request_id)
        .order_by(ActivityLogEntry.occurred_at, ActivityLogEntry.id)
        .all()
    )
    summary = request.to_dict()
    summary["item_count"] = len(request.items)
    summary["total_quantity"] = sum(item.quantity for item in request.items)
    summary["timeline"] = [entry.to_dict() for entry in timeline]
    return summary

