from __future__ import annotations

from ..extensions import db
from ..push_ids import generate_push_id
from salesflow.time_utils import to_utc_z


class User(db.Model):
    """
    Identity directory entry.

    Credentials live with the upstream session provider; this table only
    resolves an authenticated user id into the display name, role, department
    and location the workflow stamps onto requests, invoices and activity.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_push_id)
    display_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)

    # One of permissions.roles.ALL_ROLES
    role = db.Column(db.String(64), nullable=False, index=True)
    department = db.Column(db.String(64), nullable=True)

    # Stock location the user works from (e.g. "DS-SHOWROOM")
    location = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id!r} role={self.role!r} name={self.display_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "location": self.location,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
