# Overview: Keyed-store facade over the SQLAlchemy models (paths, push ids, snapshots, subscriptions).

"""
Data access layer.

Records are addressed by path: "collection" names a whole collection and
"collection/<id>" a single record. Snapshots are plain dicts produced by the
models' to_dict(); nothing outside the owning session ever sees a live model.

Writes here are flat field writes for catalog management and tooling. Domain
state changes (request transitions, stock movements, invoices) go through
their services, which use fetch() for the locked model instance; flat writes
to the fields those services own are refused, the activity log is read-only,
and inventory, requests, invoices and activities are never removed.

Subscriptions are process-local: a callback gets the current snapshot when it
subscribes and a fresh one after every commit that touched its collection.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy import event, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    ActivityLogEntry,
    InventoryRecord,
    Invoice,
    OperationIntent,
    Product,
    ProductRequest,
    User,
)
from ..push_ids import generate_push_id
from ..time_utils import parse_iso_datetime
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


COLLECTIONS = {
    "users": User,
    "products": Product,
    "inventory": InventoryRecord,
    "requests": ProductRequest,
    "invoices": Invoice,
    "activities": ActivityLogEntry,
}

# Columns the store owns; callers never write them directly
_READ_ONLY_FIELDS = {"id", "version_id", "created_at", "updated_at"}

# Columns only their service may change; a flat write to one is refused
_SERVICE_OWNED_FIELDS = {
    "inventory": {"quantity"},
    "requests": {
        "status",
        "approved_by_user_id", "approved_by_name", "approved_at", "approval_notes",
        "rejected_by_user_id", "rejected_by_name", "rejected_at", "rejection_reason",
        "completed_by_user_id", "completed_at", "fulfilled_location", "fulfilled_inventory_ids",
    },
    "invoices": {
        "status", "completed_at",
        "subtotal_cents", "discount_bps", "discount_cents", "taxable_cents",
        "tax_rate_bps", "tax_cents", "total_cents",
        "payment_status", "payment_method", "total_paid_cents", "remaining_cents",
    },
}

# Append-only through activity_service
_READ_ONLY_COLLECTIONS = {"activities"}

# Records whose history other rows depend on
_UNDELETABLE_COLLECTIONS = {"inventory", "requests", "invoices", "activities"}

_MISSING = object()

_subscribers: dict[str, list[Callable[[Any], None]]] = {}
_subscribers_lock = threading.Lock()
_TOUCHED_KEY = "salesflow_touched_collections"


def model_for(collection: str):
    model = COLLECTIONS.get(collection)
    if model is None:
        raise ValidationError(f"Unknown collection '{collection}'", details={"collection": collection})
    return model


def split_path(path: str) -> tuple[str, str | None]:
    """Split "collection[/id]" into its parts."""
    if not path or not isinstance(path, str):
        raise ValidationError("Path is required")
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts or len(parts) > 2:
        raise ValidationError(f"Invalid path '{path}'", details={"path": path})
    model_for(parts[0])
    return parts[0], parts[1] if len(parts) == 2 else None


def _require_record_path(path: str) -> tuple[str, str]:
    collection, record_id = split_path(path)
    if record_id is None:
        raise ValidationError(f"Path '{path}' must name a record", details={"path": path})
    return collection, record_id


def _column_types(model) -> dict:
    return {attr.key: attr.columns[0].type for attr in inspect(model).column_attrs}


def _coerce(value, column_type):
    if isinstance(value, str):
        python_type = getattr(column_type, "python_type", None)
        try:
            if python_type is datetime:
                return parse_iso_datetime(value)
            if python_type is date:
                return date.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid date value '{value}'") from exc
    return value


def _require_writable(collection: str, data: dict) -> None:
    if collection in _READ_ONLY_COLLECTIONS:
        raise ValidationError(
            f"Collection '{collection}' is read-only here",
            details={"collection": collection},
        )
    owned = sorted(_SERVICE_OWNED_FIELDS.get(collection, set()) & set(data))
    if owned:
        raise ValidationError(
            f"Fields {', '.join(owned)} of {collection} change only through their service",
            details={"collection": collection, "fields": owned},
        )


def _apply_fields(record, data: dict) -> None:
    types = _column_types(type(record))
    for key, value in data.items():
        if key in _READ_ONLY_FIELDS:
            continue
        if key not in types:
            raise ValidationError(
                f"Unknown field '{key}' for {type(record).__name__}",
                details={"field": key},
            )
        setattr(record, key, _coerce(value, types[key]))


def _commit_write(path: str) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError(
            f"Write to '{path}' violates a record constraint",
            details={"path": path, "reason": str(exc.orig)},
        ) from exc


def fetch(collection: str, record_id: str, *, for_update: bool = False):
    """Model instance for services; row-locked when for_update is set."""
    model = model_for(collection)
    query = db.session.query(model).filter_by(id=record_id)
    if for_update:
        # Locked reads always reflect the row as stored, not the identity map
        query = lock_for_update(query).populate_existing()
    return query.first()


def read(path: str):
    """
    Snapshot read.

    "collection" -> {id: record dict} in key order.
    "collection/<id>" -> record dict, or None when absent.
    """
    collection, record_id = split_path(path)
    model = COLLECTIONS[collection]
    if record_id is not None:
        record = db.session.get(model, record_id)
        return record.to_dict() if record else None
    rows = db.session.query(model).order_by(model.id).all()
    return {row.id: row.to_dict() for row in rows}


def set_at(path: str, data: dict) -> dict:
    """Create the record at path, or overwrite the supplied fields if it exists."""
    collection, record_id = _require_record_path(path)
    model = COLLECTIONS[collection]
    _require_writable(collection, data)

    def _op():
        record = lock_for_update(db.session.query(model).filter_by(id=record_id)).first()
        if record is None:
            record = model(id=record_id)
            db.session.add(record)
        _apply_fields(record, data)
        _commit_write(path)
        return record.to_dict()

    return run_with_retry(_op)


def push(collection: str, data: dict) -> str:
    """Write data under a fresh push id and return the id."""
    model_for(collection)
    record_id = generate_push_id()
    set_at(f"{collection}/{record_id}", data)
    return record_id


def update_at(path: str, data: dict) -> dict:
    """Merge fields into an existing record."""
    collection, record_id = _require_record_path(path)
    model = COLLECTIONS[collection]
    _require_writable(collection, data)

    def _op():
        record = lock_for_update(db.session.query(model).filter_by(id=record_id)).first()
        if record is None:
            raise NotFoundError(f"No record at '{path}'", details={"path": path})
        _apply_fields(record, data)
        _commit_write(path)
        return record.to_dict()

    return run_with_retry(_op)


def remove_at(path: str) -> bool:
    """Delete the record at path. Returns False when nothing was there."""
    collection, record_id = _require_record_path(path)
    model = COLLECTIONS[collection]
    if collection in _UNDELETABLE_COLLECTIONS:
        raise ValidationError(
            f"Records in '{collection}' cannot be removed",
            details={"collection": collection},
        )

    def _op():
        record = db.session.get(model, record_id)
        if record is None:
            return False
        db.session.delete(record)
        db.session.commit()
        return True

    return run_with_retry(_op)


def query(
    collection: str,
    field: str,
    *,
    equal_to=_MISSING,
    start_at=None,
    end_at=None,
    limit: int | None = None,
) -> list[dict]:
    """Equality or inclusive range filter on one field, ordered by that field."""
    model = model_for(collection)
    types = _column_types(model)
    if field not in types:
        raise ValidationError(f"Unknown field '{field}' for {collection}", details={"field": field})
    column = getattr(model, field)

    q = db.session.query(model)
    if equal_to is not _MISSING:
        q = q.filter(column == _coerce(equal_to, types[field]))
    if start_at is not None:
        q = q.filter(column >= _coerce(start_at, types[field]))
    if end_at is not None:
        q = q.filter(column <= _coerce(end_at, types[field]))
    q = q.order_by(column, model.id)
    if limit is not None:
        q = q.limit(limit)
    return [row.to_dict() for row in q.all()]


def subscribe(path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
    """
    Watch a path. The callback receives read(path) now and after each commit
    touching the path's collection. Returns the unsubscribe function.
    """
    split_path(path)
    with _subscribers_lock:
        _subscribers.setdefault(path, []).append(callback)
    callback(read(path))

    def unsubscribe() -> None:
        with _subscribers_lock:
            callbacks = _subscribers.get(path, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                _subscribers.pop(path, None)

    return unsubscribe


def _collection_of(instance) -> str | None:
    for name, model in COLLECTIONS.items():
        if isinstance(instance, model):
            return name
    # Child rows notify their parent collection
    parent = getattr(instance, "request", None) or getattr(instance, "invoice", None)
    if parent is not None and parent is not instance:
        return _collection_of(parent)
    return None


@event.listens_for(Session, "after_flush")
def _track_touched(session, flush_context):
    if session.info.get("salesflow_snapshot"):
        return
    touched = session.info.setdefault(_TOUCHED_KEY, set())
    for instance in list(session.new) + list(session.dirty) + list(session.deleted):
        if isinstance(instance, OperationIntent):
            continue
        name = _collection_of(instance)
        if name:
            touched.add(name)


@event.listens_for(Session, "after_rollback")
def _forget_touched(session):
    session.info.pop(_TOUCHED_KEY, None)


@event.listens_for(Session, "after_commit")
def _notify_subscribers(session):
    touched = session.info.pop(_TOUCHED_KEY, None)
    if not touched:
        return
    with _subscribers_lock:
        targets = [
            (path, list(callbacks))
            for path, callbacks in _subscribers.items()
            if path.strip("/").split("/")[0] in touched
        ]
    if not targets:
        return

    # The committing session cannot emit SQL here; snapshot through a fresh one.
    with Session(bind=db.engine, info={"salesflow_snapshot": True}) as snapshot_session:
        for path, callbacks in targets:
            collection, record_id = split_path(path)
            model = COLLECTIONS[collection]
            if record_id is not None:
                record = snapshot_session.get(model, record_id)
                value = record.to_dict() if record else None
            else:
                rows = snapshot_session.query(model).order_by(model.id).all()
                value = {row.id: row.to_dict() for row in rows}
            for callback in callbacks:
                try:
                    callback(value)
                except Exception:
                    logger.exception("Subscriber for '%s' failed", path)
