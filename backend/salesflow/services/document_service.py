# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


def _current_number(document_type: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 4,
    period: str | None = None,
) -> str:
    """
    Atomically allocate the next document number for a type and day.

    Runs inside the caller's transaction: the UPDATE holds the sequence row
    until the caller commits, so concurrent callers serialize on it. The
    first number of a day inserts the row under a savepoint; losing that
    insert race falls back to the UPDATE.

    Returns e.g. "REQ-20261018-0007".
    """
    if not document_type:
        raise ValidationError("document_type is required")
    period = period or utcnow().strftime("%Y%m%d")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(document_type, period) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(document_type, period) - 1

    return f"{prefix}-{period}-{str(next_num).zfill(pad)}"
