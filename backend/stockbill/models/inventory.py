from __future__ import annotations

from ..extensions import db
from stockbill.money_utils import cents_to_amount
from stockbill.time_utils import to_utc_z, utcnow

OUT_OF_STOCK = "OUT_OF_STOCK"
LOW_STOCK = "LOW_STOCK"
IN_STOCK = "IN_STOCK"
STOCK_STATUSES = (IN_STOCK, LOW_STOCK, OUT_OF_STOCK)


def derive_stock_status(quantity: int, threshold: int) -> str:
    if quantity <= 0:
        return OUT_OF_STOCK
    if quantity <= threshold:
        return LOW_STOCK
    return IN_STOCK


class Product(db.Model):
    """
    Product master data, owned by exactly one user.

    BARCODE: unique per owner (UniqueConstraint("owner_id", "barcode")).
    Stored as a digit string so leading zeros survive.

    QUANTITY: never negative. The CHECK constraint backs up the service-level
    guard; invoice confirmation decrements through a conditional UPDATE.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("owner_id", "barcode", name="uq_products_owner_barcode"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_nonnegative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_products_threshold_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        db.Index("ix_products_owner_name", "owner_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=False)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    owner = db.relationship("User", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def stock_status(self) -> str:
        return derive_stock_status(self.quantity or 0, self.low_stock_threshold or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r} owner_id={self.owner_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "barcode": self.barcode,
            "price": cents_to_amount(self.price_cents),
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "stock_status": self.stock_status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
