# Overview: Service-layer operations for stock quantities.

"""
Stock mutation for invoice confirmation.

deduct_stock() is the only code path that lowers Product.quantity outside
of an owner's explicit edit. It uses a conditional UPDATE
(quantity >= amount) so the quantity can never go negative, even when
several requests race on the same product.

deduct_stock() does NOT commit. The caller owns the transaction so that all
lines of an invoice are deducted together or not at all.
"""

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import ValidationError


class InsufficientStockError(Exception):
    """Raised when a requested quantity exceeds the quantity on hand."""
    def __init__(
        self,
        message: str,
        *,
        product_id: int | None = None,
        product_name: str | None = None,
        available: int = 0,
        requested: int = 0,
    ):
        super().__init__(message)
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    @property
    def details(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "available": self.available,
            "requested": self.requested,
        }


def insufficient_stock(product: Product, requested: int, available: int | None = None) -> InsufficientStockError:
    available = product.quantity if available is None else available
    return InsufficientStockError(
        f"Insufficient stock for {product.name}. Available: {available}, Requested: {requested}",
        product_id=product.id,
        product_name=product.name,
        available=available,
        requested=requested,
    )


def check_available(product: Product, requested: int) -> None:
    """Read-only check used when quoting a draft."""
    if requested > product.quantity:
        raise insufficient_stock(product, requested)


def deduct_stock(product: Product, amount: int) -> int:
    """
    Decrement product quantity by `amount` within the current transaction.

    Returns the new quantity.

    Raises:
        ValidationError: amount is not positive
        InsufficientStockError: amount exceeds the quantity currently stored
    """
    if amount <= 0:
        raise ValidationError("amount must be positive")

    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.quantity >= amount)
        .values(
            quantity=Product.quantity - amount,
            version_id=Product.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    current = db.session.query(Product.quantity).filter(Product.id == product.id).scalar()
    if not result.rowcount:
        raise insufficient_stock(product, amount, available=current or 0)

    return current
