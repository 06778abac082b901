# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_TYPE_CREDIT_ACCOUNT = "CREDIT_ACCOUNT"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(document_type: str) -> int:
    """
    Atomically allocate the next number for a document type.

    The UPDATE takes the row lock on (document_type) so concurrent callers
    never receive the same number. Runs inside the caller's transaction and
    must be the first write of it: losing the create race rolls the session
    back before retrying the UPDATE.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(document_type=document_type, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
        return 1
    except IntegrityError:
        # Another writer created the row first; take the UPDATE path.
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        return current - 1


def format_document_number(prefix: str, number: int, pad: int) -> str:
    return f"{prefix}{number:0{pad}d}"


def next_account_number() -> str:
    """Allocate the next credit account number, e.g. CR0001."""
    prefix = current_app.config.get("CREDIT_ACCOUNT_PREFIX", "CR")
    pad = current_app.config.get("CREDIT_ACCOUNT_NUMBER_PAD", 4)
    return format_document_number(prefix, _allocate(DOC_TYPE_CREDIT_ACCOUNT), pad)
