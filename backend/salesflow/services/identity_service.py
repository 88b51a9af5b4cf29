# Overview: Service-layer operations for identity; resolves session users and enforces capabilities.

"""
Identity resolution and capability checks.

The upstream session provider authenticates; by the time a call reaches this
module the caller is just a user id. Everything the workflow stamps onto a
record (name, role, location) comes from the users directory, never from the
client payload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import can_approve, can_sell, has_permission, validate_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the services."""
    user_id: str
    display_name: str
    role: str
    department: str | None = None
    location: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            user_id=user.id,
            display_name=user.display_name,
            role=user.role,
            department=user.department,
            location=user.location,
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "role": self.role,
            "department": self.department,
            "location": self.location,
        }


def as_identity(actor) -> Identity:
    """Accept an Identity or a User row."""
    if isinstance(actor, Identity):
        return actor
    if isinstance(actor, User):
        return Identity.from_user(actor)
    raise ValidationError("actor must be an Identity or User")


def resolve_identity(user_id: str | None) -> Identity:
    """
    Resolve an authenticated user id into an Identity.

    Raises:
        PermissionDeniedError: no id, or the account is deactivated
        NotFoundError: unknown user id
    """
    if not user_id:
        raise PermissionDeniedError("Authentication required")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    if not user.is_active:
        logger.warning("Inactive user %s attempted access", user_id)
        raise PermissionDeniedError("User account is deactivated", details={"user_id": user_id})
    return Identity.from_user(user)


def require_permission(identity: Identity, permission_code: str) -> None:
    if not has_permission(identity.role, permission_code):
        logger.info("Permission %s denied for %s (%s)", permission_code, identity.user_id, identity.role)
        raise PermissionDeniedError(
            "Permission denied",
            details={"required_permission": permission_code, "role": identity.role},
        )


def require_can_sell(identity: Identity) -> None:
    if not can_sell(identity.role):
        raise PermissionDeniedError(
            f"Role {identity.role} cannot issue invoices",
            details={"role": identity.role},
        )


def require_can_approve(identity: Identity, requested_by_user_id: str, requested_by_role: str) -> None:
    if identity.user_id == requested_by_user_id:
        raise PermissionDeniedError("Requesters cannot approve or reject their own requests")
    if not can_approve(identity.role, requested_by_role):
        raise PermissionDeniedError(
            f"Role {identity.role} cannot act on requests from {requested_by_role}",
            details={"role": identity.role, "target_role": requested_by_role},
        )


def create_user(
    *,
    display_name: str,
    role: str,
    email: str | None = None,
    department: str | None = None,
    location: str | None = None,
    user_id: str | None = None,
) -> User:
    """Add a directory entry. Caller commits."""
    if not display_name or not display_name.strip():
        raise ValidationError("display_name is required")
    if not validate_role(role):
        raise ValidationError(f"Unknown role '{role}'", details={"role": role})

    user = User(
        display_name=display_name.strip(),
        role=role,
        email=email,
        department=department,
        location=location,
    )
    if user_id:
        user.id = user_id
    db.session.add(user)
    db.session.flush()
    return user
