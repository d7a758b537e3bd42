"""
Ownership guard shared by every owner-scoped operation.

SECURITY INVARIANTS:
1. Every product and invoice has exactly one owner (owner_id).
2. Reads and writes go through require_owned(), never through an
   unscoped lookup followed by an ad-hoc comparison.
3. Existence is checked before ownership: a missing record is "not found",
   an existing record of another user is "forbidden".
"""

from __future__ import annotations

import enum

from flask import current_app, has_app_context

from ..extensions import db


class NotFoundError(LookupError):
    """404-level: no such record."""


class ForbiddenError(PermissionError):
    """403-level: the record exists but belongs to another owner."""


class Ownership(enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


def assert_owned(record, owner_id: int) -> Ownership:
    """Classify `record` against the requesting owner without raising."""
    if record is None:
        return Ownership.NOT_FOUND
    if record.owner_id != owner_id:
        return Ownership.FORBIDDEN
    return Ownership.OK


def _label(model) -> str:
    return getattr(model, "__name__", "Record")


def raise_for_ownership(result: Ownership, *, model, record_id, owner_id: int) -> None:
    if result is Ownership.NOT_FOUND:
        raise NotFoundError(f"{_label(model)} not found")
    if result is Ownership.FORBIDDEN:
        if has_app_context():
            current_app.logger.warning(
                "Ownership violation: user=%s attempted %s id=%s",
                owner_id, _label(model), record_id,
            )
        raise ForbiddenError(f"Not authorized to access this {_label(model).lower()}")


def require_owned(model, record_id: int, owner_id: int, *, query=None):
    """
    Load `model` by primary key and verify the owner.

    `query` lets callers pass a pre-built (e.g. locked) query for the model.

    Raises:
        NotFoundError: record does not exist
        ForbiddenError: record belongs to another owner
    """
    q = query if query is not None else db.session.query(model)
    record = q.filter(model.id == record_id).first()
    raise_for_ownership(assert_owned(record, owner_id), model=model, record_id=record_id, owner_id=owner_id)
    return record
