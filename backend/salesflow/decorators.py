# Overview: Request identity and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import WorkflowError
from .permissions import has_permission
from .services import identity_service

# Set by the upstream session provider once it has authenticated the caller
USER_ID_HEADER = "X-User-Id"


def _is_authenticated() -> bool:
    return hasattr(g, 'identity')


def require_identity(f):
    """
    Resolve the already-authenticated caller.

    Sets g.identity (identity_service.Identity) for the route.

    Returns 401 if the header is missing, the user is unknown, or the
    account is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = request.headers.get(USER_ID_HEADER)
        if not user_id:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.identity = identity_service.resolve_identity(user_id)
        except WorkflowError as e:
            current_app.logger.info("Rejected identity %s on %s: %s", user_id, request.path, e.message)
            return jsonify({"error": "Invalid or inactive user"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission for the resolved identity's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_identity was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not has_permission(g.identity.role, permission_code):
                current_app.logger.info(
                    "Permission %s denied for %s (%s) on %s",
                    permission_code, g.identity.user_id, g.identity.role, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
