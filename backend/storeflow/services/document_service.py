# Overview: Human-readable per-store document numbers (orders, purchases).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence

ORDER_DOCUMENT = "ORDER"
PURCHASE_DOCUMENT = "PURCHASE"


def _bump(store_id: int, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a store/type.

    Runs inside the caller's transaction (no commit). The UPDATE takes the
    row lock on (store_id, document_type); the first number for a pair is
    created under a savepoint so a concurrent insert only loses the
    savepoint, not the caller's work.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    next_num = _bump(store_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(store_id=store_id, document_type=document_type, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            next_num = _bump(store_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{store_id:03d}-{next_num:0{pad}d}"
