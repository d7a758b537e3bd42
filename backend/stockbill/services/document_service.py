# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import InvoiceSequence
from .concurrency import bump_counter, run_with_retry

INVOICE_PREFIX = "INV"
INVOICE_PAD = 5
NUMBER_SCOPES = {"global", "owner"}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def sequence_scope_key(owner_id: int) -> str:
    scope = current_app.config.get("INVOICE_NUMBER_SCOPE", "global")
    if scope not in NUMBER_SCOPES:
        raise DocumentSequenceError(f"INVOICE_NUMBER_SCOPE must be one of: {', '.join(sorted(NUMBER_SCOPES))}")
    if scope == "owner":
        return f"owner:{owner_id}"
    return "global"


def format_invoice_number(period: datetime, sequence: int) -> str:
    """INV-YYYYMM-NNNNN; the sequence widens past 5 digits instead of wrapping."""
    return f"{INVOICE_PREFIX}-{period:%Y%m}-{sequence:0{INVOICE_PAD}d}"


def allocate_sequence(scope_key: str) -> int:
    """
    Atomically allocate the next sequence value for a scope.

    Increment-then-read on a single counter row, so two concurrent callers
    can never observe the same value. Does not commit; the allocation
    becomes durable with the caller's transaction.
    """
    if not scope_key:
        raise DocumentSequenceError("scope_key is required")

    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.scope_key == scope_key)
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _claimed() -> int:
        current = (
            db.session.query(InvoiceSequence.next_number)
            .filter_by(scope_key=scope_key)
            .scalar()
        )
        return current - 1

    def _op() -> int:
        return bump_counter(
            stmt,
            read=_claimed,
            create=lambda: InvoiceSequence(scope_key=scope_key, next_number=2),
            first_value=1,
        )

    return run_with_retry(_op, label=f"Invoice number allocation ({scope_key})")


def next_invoice_number(*, owner_id: int, period: datetime) -> str:
    """
    Allocate the next invoice number.

    `period` is the creation moment expressed in the business timezone;
    its year/month form the middle segment.
    """
    return format_invoice_number(period, allocate_sequence(sequence_scope_key(owner_id)))
