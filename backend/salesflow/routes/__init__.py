# Overview: Shared JSON error responses for the API blueprints.

from flask import jsonify, request, current_app

from ..errors import WorkflowError
from ..extensions import db


def error_response(e: WorkflowError):
    """Roll back and render a domain error with its status code."""
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def unexpected_error(e: Exception):
    db.session.rollback()
    current_app.logger.exception("Unexpected error on %s", request.path)
    return jsonify({"error": f"Unexpected error: {e}"}), 500
