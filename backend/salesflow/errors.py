"""
Workflow error taxonomy.

Every domain error carries a human-readable message and a details dict so
routes can surface an actionable response. StorageError is the only
transport-level error; it is raised after the bounded retry in
services.concurrency gives up.
"""


class WorkflowError(Exception):
    """Base class for request/fulfillment/invoice errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "type": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(WorkflowError, ValueError):
    """400-level input problem, always reported before any write."""
    status_code = 400


class NotFoundError(WorkflowError):
    status_code = 404


class InvalidStateError(WorkflowError):
    """Record is not in the status the action expects."""
    status_code = 409


class PermissionDeniedError(WorkflowError):
    status_code = 403


class InsufficientStockError(WorkflowError):
    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class NegativeStockError(WorkflowError):
    status_code = 409

    def __init__(self, record_id: str, current: int, delta: int):
        super().__init__(
            f"Adjustment of {delta} would leave inventory record {record_id} negative (current {current})",
            details={"inventory_record_id": record_id, "current": current, "delta": delta},
        )
        self.record_id = record_id
        self.current = current
        self.delta = delta


class StorageError(WorkflowError):
    """Database/transport failure; safe to retry only for idempotent calls."""
    status_code = 503

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryable"] = True
        return payload
