# Overview: Service-layer operations for the activity log; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import ActivityLogEntry
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

"""
Activity log invariants

- Append-only audit trail for workflow state changes.
- Entries are written inside the same DB transaction as the change they record;
  the caller commits (or rolls back) both together.
- No updates or deletes of existing entries.
"""

# Known activity types
REQUEST_CREATED = "request.created"
REQUEST_APPROVED = "request.approved"
REQUEST_REJECTED = "request.rejected"
REQUEST_FULFILLED = "request.fulfilled"
INVOICE_CREATED = "invoice.created"
INVOICE_FINALIZED = "invoice.finalized"
INVOICE_PAYMENT = "invoice.payment_recorded"
INVENTORY_ADJUSTED = "inventory.adjusted"
INTENT_RECONCILED = "intent.reconciled"


def append_activity(
    *,
    activity_type: str,
    actor=None,
    request_id: str | None = None,
    invoice_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    details: dict | None = None,
) -> ActivityLogEntry:
    """
    Append one activity entry and flush it into the current transaction.

    actor is an Identity (or anything with user_id/display_name/role);
    None records a system action.
    """
    entry = ActivityLogEntry(
        type=activity_type,
        actor_user_id=getattr(actor, "user_id", None),
        actor_name=getattr(actor, "display_name", None),
        actor_role=getattr(actor, "role", None),
        request_id=request_id,
        invoice_id=invoice_id,
        occurred_at=occurred_at or utcnow(),
        details=details or {},
    )
    db.session.add(entry)
    db.session.flush()
    logger.debug("Activity %s request=%s invoice=%s", activity_type, request_id, invoice_id)
    return entry


def list_activities(
    *,
    request_id: str | None = None,
    invoice_id: str | None = None,
    activity_type: str | None = None,
    actor_user_id: str | None = None,
    limit: int = 100,
) -> list[ActivityLogEntry]:
    """Newest-first activity entries with optional filters."""
    q = db.session.query(ActivityLogEntry)
    if request_id:
        q = q.filter(ActivityLogEntry.request_id == request_id)
    if invoice_id:
        q = q.filter(ActivityLogEntry.invoice_id == invoice_id)
    if activity_type:
        q = q.filter(ActivityLogEntry.type == activity_type)
    if actor_user_id:
        q = q.filter(ActivityLogEntry.actor_user_id == actor_user_id)
    return (
        q.order_by(ActivityLogEntry.occurred_at.desc(), ActivityLogEntry.id.desc())
        .limit(limit)
        .all()
    )
