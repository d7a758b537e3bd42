# backend/stockbill/services/products_service.py
"""
Products Service (owner-scoped catalog)

OWNERSHIP: every operation takes an explicit owner_id.
- list_products / stock_summary only ever see the owner's products
- get / update / delete distinguish "not found" from "forbidden"
- barcodes are unique per owner
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.inventory import (
    STOCK_STATUSES,
    IN_STOCK,
    LOW_STOCK,
    OUT_OF_STOCK,
    derive_stock_status,
)
from ..validation import ConflictError, ValidationError
from .concurrency import run_with_retry
from .ownership_service import require_owned

PRODUCT_MUTABLE_FIELDS = {"name", "barcode", "price_cents", "quantity", "low_stock_threshold"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _barcode_taken(owner_id: int, barcode: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(
        Product.owner_id == owner_id,
        Product.barcode == barcode,
    )
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def _stock_status_filter(q, stock_status: str):
    if stock_status == OUT_OF_STOCK:
        return q.filter(Product.quantity == 0)
    if stock_status == LOW_STOCK:
        return q.filter(Product.quantity > 0, Product.quantity <= Product.low_stock_threshold)
    if stock_status == IN_STOCK:
        return q.filter(Product.quantity > Product.low_stock_threshold)
    raise ValidationError(f"stock_status must be one of: {', '.join(STOCK_STATUSES)}")


def list_products(
    owner_id: int,
    *,
    search: str | None = None,
    stock_status: str | None = None,
) -> list[Product]:
    """
    Owner-scoped product listing in insertion order.

    Args:
        owner_id: Requesting user
        search: optional case-insensitive substring of the product name
        stock_status: optional IN_STOCK / LOW_STOCK / OUT_OF_STOCK filter
    """
    q = db.session.query(Product).filter(Product.owner_id == owner_id)

    if search:
        q = q.filter(func.lower(Product.name).contains(search.strip().lower(), autoescape=True))

    if stock_status:
        q = _stock_status_filter(q, stock_status.strip().upper())

    return q.order_by(Product.id.asc()).all()


def stock_summary(owner_id: int) -> dict:
    """Counts of products per derived stock status."""
    counts = {status: 0 for status in STOCK_STATUSES}
    rows = (
        db.session.query(Product.quantity, Product.low_stock_threshold)
        .filter(Product.owner_id == owner_id)
        .all()
    )
    for quantity, threshold in rows:
        counts[derive_stock_status(quantity, threshold)] += 1

    return {
        "total": len(rows),
        "in_stock": counts[IN_STOCK],
        "low_stock": counts[LOW_STOCK],
        "out_of_stock": counts[OUT_OF_STOCK],
    }


def get_product(owner_id: int, product_id: int) -> Product:
    """
    Raises:
        NotFoundError: no product with this id
        ForbiddenError: product belongs to another owner
    """
    return require_owned(Product, product_id, owner_id)


def create_product(owner_id: int, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    Quantity defaults to 0 and the low-stock threshold to
    DEFAULT_LOW_STOCK_THRESHOLD when absent.

    Raises:
        ValidationError: name, price or barcode missing
        ConflictError: barcode already exists for this owner
    """
    for required in ("name", "price_cents", "barcode"):
        if patch.get(required) is None:
            raise ValidationError(f"{required.replace('_cents', '')} is required")

    if _barcode_taken(owner_id, patch["barcode"]):
        raise ConflictError("Product with this barcode already exists.")

    p = Product(owner_id=owner_id, quantity=0)
    p.low_stock_threshold = current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10)
    apply_product_patch(p, patch)

    db.session.add(p)
    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent insert with the same barcode won the unique constraint
        db.session.rollback()
        raise ConflictError("Product with this barcode already exists.")
    current_app.logger.info("Product created: id=%s owner=%s barcode=%s", p.id, owner_id, p.barcode)
    return p


def update_product(owner_id: int, product_id: int, patch: dict) -> Product:
    """
    Apply a partial update after the ownership check.

    Raises:
        NotFoundError / ForbiddenError: ownership rules
        ConflictError: new barcode already used by another of the owner's products
    """
    def _op() -> Product:
        p = require_owned(Product, product_id, owner_id)

        if "barcode" in patch and patch["barcode"] != p.barcode:
            if _barcode_taken(owner_id, patch["barcode"], exclude_id=p.id):
                raise ConflictError("Product with this barcode already exists.")

        apply_product_patch(p, patch)
        db.session.commit()
        return p

    try:
        return run_with_retry(_op, label=f"Update product {product_id}")
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product with this barcode already exists.")
    except Exception:
        db.session.rollback()
        raise


def delete_product(owner_id: int, product_id: int) -> dict:
    """
    Hard-delete a product after the ownership check.

    Returns the deleted record (as a dict) for confirmation messaging.
    Invoices keep their snapshotted line names and prices.
    """
    p = require_owned(Product, product_id, owner_id)
    snapshot = p.to_dict()

    db.session.delete(p)
    db.session.commit()
    current_app.logger.info("Product deleted: id=%s owner=%s", product_id, owner_id)
    return snapshot
