# Overview: Service-layer operations for reconciliation; sweeps operation intents left pending.

"""
Reconciliation sweep.

A pending intent older than the stale window means a process stopped between
committing the intent and committing (or recording the failure of) its steps.
The sweep looks for the effect the intent promised:

- fulfillment: the target request is completed
- invoice: the invoice recorded as the intent's result exists

Present -> the intent is marked completed. Absent -> failed, with a reason,
and logged at WARNING for manual follow-up. The sweep never replays steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Invoice, OperationIntent, ProductRequest
from ..time_utils import utcnow
from .activity_service import INTENT_RECONCILED, append_activity
from .concurrency import lock_for_update, run_with_retry
from .intent_service import (
    INTENT_KIND_FULFILLMENT,
    INTENT_KIND_INVOICE,
    INTENT_STATUS_COMPLETED,
    INTENT_STATUS_FAILED,
    INTENT_STATUS_PENDING,
)
from .request_service import REQUEST_STATUS_COMPLETED

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    checked: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "completed": list(self.completed),
            "failed": list(self.failed),
        }


def _cutoff(older_than: timedelta | None, now: datetime) -> datetime:
    if older_than is None:
        older_than = timedelta(minutes=current_app.config.get("INTENT_STALE_MINUTES", 15))
    return now - older_than


def list_incomplete_intents(older_than: timedelta | None = None, *, now: datetime | None = None) -> list[OperationIntent]:
    """Pending intents not touched within the stale window, oldest first."""
    cutoff = _cutoff(older_than, now or utcnow())
    return (
        db.session.query(OperationIntent)
        .filter(
            OperationIntent.status == INTENT_STATUS_PENDING,
            OperationIntent.updated_at <= cutoff,
        )
        .order_by(OperationIntent.created_at, OperationIntent.id)
        .all()
    )


def _effect_present(intent: OperationIntent) -> tuple[bool, str | None]:
    if intent.kind == INTENT_KIND_FULFILLMENT:
        request = db.session.get(ProductRequest, intent.target_id) if intent.target_id else None
        if request is not None and request.status == REQUEST_STATUS_COMPLETED:
            return True, request.id
        return False, None

    if intent.kind == INTENT_KIND_INVOICE:
        if intent.result_id and db.session.get(Invoice, intent.result_id) is not None:
            return True, intent.result_id
        return False, None

    return False, None


def reconcile(older_than: timedelta | None = None, *, now: datetime | None = None) -> ReconcileReport:
    """Resolve every stale pending intent. Each decision commits separately."""
    now = now or utcnow()
    report = ReconcileReport()

    for stale in list_incomplete_intents(older_than, now=now):
        report.checked += 1
        key = stale.key

        def _op():
            intent = lock_for_update(db.session.query(OperationIntent).filter_by(key=key)).first()
            if intent is None or intent.status != INTENT_STATUS_PENDING:
                return None

            present, result_id = _effect_present(intent)
            resolved_at = utcnow()
            intent.updated_at = resolved_at
            intent.resolved_at = resolved_at
            if present:
                intent.status = INTENT_STATUS_COMPLETED
                intent.result_id = result_id
            else:
                intent.status = INTENT_STATUS_FAILED
                intent.error = "Reconciliation found no effect for a stale pending intent"
            db.session.flush()

            append_activity(
                activity_type=INTENT_RECONCILED,
                request_id=intent.target_id if intent.kind == INTENT_KIND_FULFILLMENT else None,
                invoice_id=result_id if intent.kind == INTENT_KIND_INVOICE else None,
                occurred_at=resolved_at,
                details={"key": intent.key, "kind": intent.kind, "status": intent.status},
            )
            db.session.commit()
            return intent.status

        outcome = run_with_retry(_op)
        if outcome == INTENT_STATUS_COMPLETED:
            report.completed.append(key)
            logger.info("Intent %s reconciled as completed", key)
        elif outcome == INTENT_STATUS_FAILED:
            report.failed.append(key)
            logger.warning("Intent %s reconciled as failed; needs manual follow-up", key)

    return report
