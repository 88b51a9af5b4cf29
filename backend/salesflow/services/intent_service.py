# Overview: Service-layer operations for operation intents (saga records); encapsulates business logic and database work.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import OperationIntent
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

"""
Operation intent invariants

- A pending intent is committed before the first step of its operation runs.
- The steps and the completed marker commit together, in one transaction.
- A failed run rolls the steps back and records the error on the intent in a
  separate commit; it is never retried automatically.
- key is unique; replaying a completed key returns the recorded result.
"""

INTENT_STATUS_PENDING = "pending"
INTENT_STATUS_COMPLETED = "completed"
INTENT_STATUS_FAILED = "failed"

INTENT_KIND_FULFILLMENT = "fulfillment"
INTENT_KIND_INVOICE = "invoice"


def get_intent(key: str) -> OperationIntent | None:
    return db.session.query(OperationIntent).filter_by(key=key).first()


def begin_intent(*, key: str, kind: str, target_id: str | None, actor=None) -> OperationIntent:
    """
    Stage a pending intent for key, or re-arm a failed one.

    A completed intent is returned untouched so the caller can short-circuit.
    Flushes; the caller commits.
    """
    now = utcnow()
    intent = lock_for_update(db.session.query(OperationIntent).filter_by(key=key)).first()
    if intent is None:
        intent = OperationIntent(
            key=key,
            kind=kind,
            status=INTENT_STATUS_PENDING,
            target_id=target_id,
            actor_user_id=getattr(actor, "user_id", None),
            attempts=1,
            created_at=now,
            updated_at=now,
        )
        db.session.add(intent)
    elif intent.status != INTENT_STATUS_COMPLETED:
        intent.status = INTENT_STATUS_PENDING
        intent.attempts = (intent.attempts or 0) + 1
        intent.actor_user_id = getattr(actor, "user_id", None) or intent.actor_user_id
        intent.error = None
        intent.updated_at = now
    db.session.flush()
    return intent


def complete_intent(key: str, result_id: str | None) -> OperationIntent | None:
    """Mark the intent completed inside the caller's transaction."""
    intent = lock_for_update(db.session.query(OperationIntent).filter_by(key=key)).first()
    if intent is None:
        return None
    now = utcnow()
    intent.status = INTENT_STATUS_COMPLETED
    intent.result_id = result_id
    intent.error = None
    intent.updated_at = now
    intent.resolved_at = now
    db.session.flush()
    return intent


def fail_intent(key: str, error: str) -> None:
    """Record a failed run in its own commit (the caller has rolled back)."""
    def _op():
        intent = lock_for_update(db.session.query(OperationIntent).filter_by(key=key)).first()
        if intent is None or intent.status == INTENT_STATUS_COMPLETED:
            return
        now = utcnow()
        intent.status = INTENT_STATUS_FAILED
        intent.error = error[:2000]
        intent.updated_at = now
        intent.resolved_at = now
        db.session.commit()

    run_with_retry(_op)
    logger.error("Operation %s failed, left for follow-up: %s", key, error)
