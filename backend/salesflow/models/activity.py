from __future__ import annotations

from ..extensions import db
from ..push_ids import generate_push_id
from salesflow.time_utils import to_utc_z


class ActivityLogEntry(db.Model):
    """
    Append-only audit trail of state-changing workflow actions.

    Entries are written in the same DB transaction as the change they record
    and are never updated or deleted. Presentation layers read them as-is.
    """
    __tablename__ = "activity_log"
    __table_args__ = (
        db.Index("ix_activity_log_type_occurred", "type", "occurred_at"),
        db.Index("ix_activity_log_actor_occurred", "actor_user_id", "occurred_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)

    # e.g. request.created, request.approved, request.fulfilled, invoice.created
    type = db.Column(db.String(64), nullable=False, index=True)

    actor_user_id = db.Column(db.String(32), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)
    actor_role = db.Column(db.String(64), nullable=True)

    request_id = db.Column(db.String(32), nullable=True, index=True)
    invoice_id = db.Column(db.String(32), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    details = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "actor": {
                "user_id": self.actor_user_id,
                "name": self.actor_name,
                "role": self.actor_role,
            },
            "request_id": self.request_id,
            "invoice_id": self.invoice_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "details": self.details or {},
        }
