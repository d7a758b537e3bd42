from __future__ import annotations

from ..extensions import db
from stockbill.money_utils import bps_to_percent, cents_to_amount
from stockbill.time_utils import to_utc_z, utcnow

STATUS_DRAFT = "draft"
STATUS_CONFIRMED = "confirmed"
STATUS_PRINTED = "printed"
INVOICE_STATUSES = (STATUS_DRAFT, STATUS_CONFIRMED, STATUS_PRINTED)

# Statuses that count as a completed sale
SALE_STATUSES = (STATUS_CONFIRMED, STATUS_PRINTED)


class Invoice(db.Model):
    """
    Invoice document.

    Created as a draft (a quote that does not touch stock). Confirmation is
    the only transition with an inventory side effect. Totals are computed
    once at draft time from snapshotted line prices and never re-derived.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "invoice_number", name="uq_invoices_owner_number"),
        db.Index("ix_invoices_owner_status_created", "owner_id", "status", "created_at"),
        db.CheckConstraint("tax_rate_bps >= 0 AND tax_rate_bps <= 10000", name="ck_invoices_tax_rate_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Human-readable number, e.g. "INV-202610-00042"
    invoice_number = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    owner = db.relationship("User", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "items": [line.to_dict() for line in self.lines],
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax_rate": bps_to_percent(self.tax_rate_bps),
            "tax_amount": cents_to_amount(self.tax_cents),
            "total": cents_to_amount(self.total_cents),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "version_id": self.version_id,
        }


class InvoiceLine(db.Model):
    """Line item on an invoice; name and unit price are snapshots."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "position", name="uq_invoice_lines_position"),
        db.CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": cents_to_amount(self.unit_price_cents),
            "subtotal": cents_to_amount(self.line_total_cents),
        }


class InvoiceSequence(db.Model):
    """
    Atomic invoice number counters.

    scope_key is "global" or "owner:<id>" depending on INVOICE_NUMBER_SCOPE.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("scope_key", name="uq_invoice_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope_key = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope_key": self.scope_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
