# backend/salesflow/services/fulfillment_service.py
"""
Fulfillment: turn an approved request into location stock.

WHY: Approval is a decision; fulfillment is the stock movement. Each
requested item credits the inventory record for (product, location) through
catalog_service.adjust and the request is marked completed (consumed) in the
same transaction.

IDEMPOTENCY: keyed by the intent "fulfillment:<request id>" and the request's
consumed marker. Fulfilling a completed request returns the inventory ids
recorded the first time and credits nothing.

FAILURE: the pending intent is committed before any stock moves. If the
transfer fails, everything it wrote rolls back and the intent is marked
failed with the error. Nothing is retried blindly.
"""
from __future__ import annotations

import logging

from flask import current_app

from ..errors import InvalidStateError, NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import ProductRequest
from ..permissions import can_approve
from ..time_utils import utcnow
from . import datastore
from .activity_service import REQUEST_FULFILLED, append_activity
from .catalog_service import REASON_FULFILLMENT, credit_stock
from .concurrency import run_with_retry
from .identity_service import as_identity, require_permission
from .intent_service import INTENT_KIND_FULFILLMENT, begin_intent, complete_intent, fail_intent
from .request_service import (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_COMPLETED,
    can_transition,
)

logger = logging.getLogger(__name__)


def intent_key(request_id: str) -> str:
    return f"fulfillment:{request_id}"


def _load_request(request_id: str) -> ProductRequest:
    request = datastore.fetch("requests", request_id, for_update=True)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found", details={"request_id": request_id})
    return request


def _check_fulfiller(identity, request: ProductRequest) -> None:
    # The requester accepts delivery; an approver over the requester's role may too
    if identity.user_id == request.requested_by_user_id:
        return
    if can_approve(identity.role, request.requested_by_role):
        return
    raise PermissionDeniedError(
        "Only the requester or an approver over the requester's role can fulfill this request",
        details={"request_id": request.id, "role": identity.role},
    )


def _target_location(request: ProductRequest, location: str | None) -> str:
    return location or request.location or current_app.config["DEFAULT_FULFILLMENT_LOCATION"]


def fulfill(request_id: str, actor, location: str | None = None) -> list[str]:
    """
    Credit an approved request into inventory and mark it completed.

    Args:
        request_id: Approved request
        actor: Identity (or User) performing the transfer
        location: Destination; defaults to the request's location, then
            DEFAULT_FULFILLMENT_LOCATION

    Returns:
        list[str]: inventory record ids credited, in item order

    Raises:
        NotFoundError: unknown request
        InvalidStateError: request is pending or rejected
        PermissionDeniedError: actor cannot fulfill this request
    """
    identity = as_identity(actor)
    require_permission(identity, "FULFILL_REQUESTS")
    key = intent_key(request_id)

    def _begin():
        request = _load_request(request_id)
        if request.status == REQUEST_STATUS_COMPLETED:
            return list(request.fulfilled_inventory_ids or [])
        if not can_transition(request.status, REQUEST_STATUS_COMPLETED):
            raise InvalidStateError(
                f"Cannot fulfill request in {request.status} status",
                details={"request_id": request_id, "status": request.status},
            )
        _check_fulfiller(identity, request)
        begin_intent(key=key, kind=INTENT_KIND_FULFILLMENT, target_id=request_id, actor=identity)
        db.session.commit()
        return None

    earlier = run_with_retry(_begin)
    if earlier is not None:
        logger.info("Request %s already fulfilled; returning recorded inventory ids", request_id)
        return earlier

    def _apply():
        request = _load_request(request_id)
        if request.status == REQUEST_STATUS_COMPLETED:
            # Another session won the race; its result stands
            complete_intent(key, request.id)
            db.session.commit()
            return list(request.fulfilled_inventory_ids or [])
        if request.status != REQUEST_STATUS_APPROVED:
            raise InvalidStateError(
                f"Cannot fulfill request in {request.status} status",
                details={"request_id": request_id, "status": request.status},
            )

        destination = _target_location(request, location)
        inventory_ids: list[str] = []
        for item in request.items:
            record = credit_stock(
                item.product_id,
                destination,
                item.quantity,
                actor=identity,
                reason=REASON_FULFILLMENT,
                request_id=request.id,
                note=request.request_number,
            )
            if record.id not in inventory_ids:
                inventory_ids.append(record.id)

        now = utcnow()
        request.status = REQUEST_STATUS_COMPLETED
        request.completed_by_user_id = identity.user_id
        request.completed_at = now
        request.fulfilled_location = destination
        request.fulfilled_inventory_ids = inventory_ids
        db.session.flush()

        append_activity(
            activity_type=REQUEST_FULFILLED,
            actor=identity,
            request_id=request.id,
            occurred_at=now,
            details={
                "request_number": request.request_number,
                "location": destination,
                "inventory_ids": inventory_ids,
                "items": [
                    {"product_id": item.product_id, "quantity": item.quantity}
                    for item in request.items
                ],
            },
        )
        complete_intent(key, request.id)
        db.session.commit()

        logger.info(
            "Request %s fulfilled into %s by %s (%s record(s))",
            request.request_number, destination, identity.user_id, len(inventory_ids),
        )
        return inventory_ids

    try:
        return run_with_retry(_apply)
    except Exception as exc:
        db.session.rollback()
        fail_intent(key, f"{type(exc).__name__}: {exc}")
        raise
