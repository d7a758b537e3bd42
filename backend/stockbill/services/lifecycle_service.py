# Overview: Service-layer operations for the invoice lifecycle.

"""
Invoice Lifecycle Service

================================================================================
PURPOSE: Enforce draft -> confirmed -> printed for invoices
================================================================================

STATE MACHINE:
    draft -> confirmed -> printed

    draft:     Quote. Totals are fixed, stock is NOT touched.
    confirmed: Stock has been deducted for every line. Happens exactly once.
    printed:   Marked as printed. No inventory effect. Re-printing is allowed.

RULES:
1. No backwards transitions (nothing returns to draft, printed never becomes confirmed)
2. Confirmation is exclusive: the draft -> confirmed change is a conditional
   UPDATE (WHERE status = 'draft'), so two concurrent confirmations cannot
   both succeed
3. Confirmation is all-or-nothing: status change and every line's stock
   deduction commit in one transaction; any shortfall rolls everything back
4. Printing follows INVOICE_PRINT_POLICY:
   - "lenient": print from any status (a draft printed this way is never
     confirmed and never deducts stock)
   - "strict":  print only from confirmed or printed

================================================================================
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Invoice, Product
from ..models.invoices import (
    INVOICE_STATUSES,
    STATUS_CONFIRMED,
    STATUS_DRAFT,
    STATUS_PRINTED,
)
from ..time_utils import utcnow
from ..validation import ConflictError
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import deduct_stock
from .ownership_service import NotFoundError, assert_owned, raise_for_ownership, require_owned

PRINT_POLICY_LENIENT = "lenient"
PRINT_POLICY_STRICT = "strict"
PRINT_POLICIES = {PRINT_POLICY_LENIENT, PRINT_POLICY_STRICT}


class LifecycleError(ConflictError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error. It indicates
    that the user attempted an operation that violates business rules.
    """
    pass


def validate_status(status: str) -> None:
    if status not in INVOICE_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(INVOICE_STATUSES)}"
        )


def get_print_policy() -> str:
    policy = current_app.config.get("INVOICE_PRINT_POLICY", PRINT_POLICY_LENIENT)
    if policy not in PRINT_POLICIES:
        raise ValueError(f"INVOICE_PRINT_POLICY must be one of: {', '.join(sorted(PRINT_POLICIES))}")
    return policy


def can_transition(from_status: str, to_status: str, *, print_policy: str = PRINT_POLICY_LENIENT) -> bool:
    """
    Check if a state transition is valid according to the lifecycle rules.

    Valid transitions:
    - draft -> confirmed
    - confirmed -> printed
    - printed -> printed (re-print)
    - draft -> printed (lenient print policy only)
    """
    validate_status(from_status)
    validate_status(to_status)

    if to_status == STATUS_CONFIRMED:
        return from_status == STATUS_DRAFT

    if to_status == STATUS_PRINTED:
        if from_status in (STATUS_CONFIRMED, STATUS_PRINTED):
            return True
        return print_policy == PRINT_POLICY_LENIENT

    # Nothing ever returns to draft
    return False


def _confirm_locked(invoice: Invoice, owner_id: int) -> None:
    if not can_transition(invoice.status, STATUS_CONFIRMED):
        raise LifecycleError(
            f"Invoice {invoice.invoice_number} has already been {invoice.status}"
        )

    now = utcnow()
    claimed = db.session.execute(
        update(Invoice)
        .where(
            Invoice.id == invoice.id,
            Invoice.owner_id == owner_id,
            Invoice.status == STATUS_DRAFT,
        )
        .values(
            status=STATUS_CONFIRMED,
            confirmed_at=now,
            updated_at=now,
            version_id=Invoice.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if not claimed.rowcount:
        raise LifecycleError(f"Invoice {invoice.invoice_number} has already been confirmed")

    for line in invoice.lines:
        product = db.session.get(Product, line.product_id) if line.product_id else None
        if product is None:
            raise NotFoundError(f"Product {line.product_name} no longer exists")
        raise_for_ownership(
            assert_owned(product, owner_id),
            model=Product,
            record_id=line.product_id,
            owner_id=owner_id,
        )
        deduct_stock(product, line.quantity)


def confirm_invoice(owner_id: int, invoice_id: int) -> Invoice:
    """
    Confirm a draft invoice (draft -> confirmed) and deduct stock.

    Raises:
        NotFoundError / ForbiddenError: ownership rules
        LifecycleError: invoice is not a draft (double confirmation)
        InsufficientStockError: stock drifted below a line quantity since the
            draft was created; nothing is deducted and status stays draft
    """
    def _op() -> Invoice:
        invoice = require_owned(
            Invoice,
            invoice_id,
            owner_id,
            query=lock_for_update(db.session.query(Invoice)),
        )
        _confirm_locked(invoice, owner_id)
        db.session.commit()
        return invoice

    try:
        invoice = run_with_retry(_op, label=f"Confirm invoice {invoice_id}")
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Invoice confirmed: %s id=%s owner=%s", invoice.invoice_number, invoice.id, owner_id,
    )
    return invoice


def print_invoice(owner_id: int, invoice_id: int) -> Invoice:
    """
    Mark an invoice as printed. No inventory effect.

    Raises:
        NotFoundError / ForbiddenError: ownership rules
        LifecycleError: strict print policy and invoice not yet confirmed
    """
    policy = get_print_policy()

    def _op() -> Invoice:
        invoice = require_owned(Invoice, invoice_id, owner_id)
        if not can_transition(invoice.status, STATUS_PRINTED, print_policy=policy):
            raise LifecycleError(
                f"Invoice {invoice.invoice_number} must be confirmed before printing"
            )

        now = utcnow()
        invoice.status = STATUS_PRINTED
        invoice.printed_at = now
        invoice.updated_at = now
        db.session.commit()
        return invoice

    try:
        invoice = run_with_retry(_op, label=f"Print invoice {invoice_id}")
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Invoice printed: %s id=%s owner=%s", invoice.invoice_number, invoice.id, owner_id,
    )
    return invoice
