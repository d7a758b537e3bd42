"""
Invoice Service - draft creation and owner-scoped reads.

Drafts are quotes: stock is checked but NOT deducted. Deduction happens only
in lifecycle_service.confirm_invoice().
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Invoice, InvoiceLine, Product
from ..models.invoices import INVOICE_STATUSES, STATUS_DRAFT
from ..money_utils import apply_rate_cents
from ..time_utils import business_timezone, to_zone, utcnow
from ..validation import ValidationError
from .document_service import next_invoice_number
from .inventory_service import check_available
from .ownership_service import require_owned


def compute_totals(line_totals_cents: list[int], tax_rate_bps: int) -> tuple[int, int, int]:
    """(subtotal, tax, total) in cents; tax is rounded half-up to the cent."""
    subtotal = sum(line_totals_cents)
    tax = apply_rate_cents(subtotal, tax_rate_bps)
    return subtotal, tax, subtotal + tax


def build_lines(owner_id: int, items: list[tuple[int, int]]) -> list[InvoiceLine]:
    """
    Validate requested items against the owner's catalog, in input order.

    The same product may appear on several lines; availability is checked
    against the cumulative requested quantity.

    Raises:
        NotFoundError / ForbiddenError: product missing or not owned
        InsufficientStockError: requested quantity exceeds on-hand quantity
    """
    lines: list[InvoiceLine] = []
    requested_by_product: dict[int, int] = {}

    for position, (product_id, quantity) in enumerate(items, start=1):
        product = require_owned(Product, product_id, owner_id)

        requested = requested_by_product.get(product.id, 0) + quantity
        check_available(product, requested)
        requested_by_product[product.id] = requested

        lines.append(InvoiceLine(
            position=position,
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=product.price_cents * quantity,
        ))

    return lines


def create_draft_invoice(
    owner_id: int,
    *,
    items: list[tuple[int, int]],
    tax_rate_bps: int = 0,
    notes: str = "",
) -> Invoice:
    """
    Create a draft invoice from (product_id, quantity) pairs.

    Product names and prices are snapshotted onto the lines. No product
    quantity changes.
    """
    if not items:
        raise ValidationError("Invoice must contain at least one item")

    try:
        lines = build_lines(owner_id, items)
        subtotal, tax, total = compute_totals([line.line_total_cents for line in lines], tax_rate_bps)

        created_at = utcnow()
        invoice_number = next_invoice_number(
            owner_id=owner_id,
            period=to_zone(created_at, business_timezone()),
        )

        invoice = Invoice(
            owner_id=owner_id,
            invoice_number=invoice_number,
            status=STATUS_DRAFT,
            subtotal_cents=subtotal,
            tax_rate_bps=tax_rate_bps,
            tax_cents=tax,
            total_cents=total,
            notes=notes or "",
            created_at=created_at,
            updated_at=created_at,
        )
        invoice.lines = lines

        db.session.add(invoice)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Draft invoice created: %s id=%s owner=%s total_cents=%s",
        invoice.invoice_number, invoice.id, owner_id, invoice.total_cents,
    )
    return invoice


def list_invoices(owner_id: int, *, status: str | None = None) -> list[Invoice]:
    """All of the owner's invoices, newest first."""
    q = db.session.query(Invoice).filter(Invoice.owner_id == owner_id)
    if status:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")
        q = q.filter(Invoice.status == status)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def get_invoice(owner_id: int, invoice_id: int) -> Invoice:
    return require_owned(Invoice, invoice_id, owner_id)
