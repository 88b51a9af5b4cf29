from __future__ import annotations

from ..extensions import db
from salesflow.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-day document sequences.

    WHY: request numbers are date + sequence; two requesters submitting at the
    same moment must not get the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)

    # YYYYMMDD the counter belongs to
    period = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class OperationIntent(db.Model):
    """
    Intent record for a multi-step operation (fulfillment, invoicing).

    LIFECYCLE:
    1. pending: committed before any stock moves
    2. completed: committed in the same transaction as the stock changes
    3. failed: the steps rolled back; error says why

    key is the idempotency key ("fulfillment:<request id>",
    "invoice:<client key>"); a completed intent short-circuits a replay.
    A pending intent older than INTENT_STALE_MINUTES is picked up by the
    reconciliation sweep.
    """
    __tablename__ = "operation_intents"
    __table_args__ = (
        db.Index("ix_operation_intents_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), nullable=False, unique=True)
    kind = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    target_id = db.Column(db.String(32), nullable=True, index=True)
    result_id = db.Column(db.String(32), nullable=True)
    actor_user_id = db.Column(db.String(32), nullable=True)
    error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "kind": self.kind,
            "status": self.status,
            "target_id": self.target_id,
            "result_id": self.result_id,
            "actor_user_id": self.actor_user_id,
            "error": self.error,
            "attempts": self.attempts,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
        }
