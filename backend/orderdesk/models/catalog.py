from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


class Product(db.Model):
    """
    Menu item with a mutable stock counter.

    STOCK: `stock` is only ever changed through inventory_service.reserve /
    inventory_service.restore, always under a row lock. The CHECK constraint
    is the last line of defence against overselling.

    `closed` suspends sales without touching stock (kitchen ran out of an
    ingredient, item off the menu for the day).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in minor units (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    closed = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "closed": self.closed,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Discount(db.Model):
    """
    Percentage discount applied to an order subtotal.

    Discounts without a code (`requires_code=False`) are applied automatically;
    code discounts only when the customer supplies the exact code.
    `time_from`/`time_until` restrict the discount to a daily window in store
    local time and may cross midnight (22:00 -> 02:00).
    """
    __tablename__ = "discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)

    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    min_purchase_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    requires_code = db.Column(db.Boolean, nullable=False, default=False)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    time_from = db.Column(db.Time, nullable=True)
    time_until = db.Column(db.Time, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "percentage": str(self.percentage),
            "min_purchase_cents": self.min_purchase_cents,
            "is_active": self.is_active,
            "requires_code": self.requires_code,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "time_from": self.time_from.strftime("%H:%M") if self.time_from else None,
            "time_until": self.time_until.strftime("%H:%M") if self.time_until else None,
        }


class DiscountUsage(db.Model):
    """One row per discount actually granted on an order (single use per customer/device)."""
    __tablename__ = "discount_usages"
    __table_args__ = (
        db.Index("ix_discount_usages_discount_customer", "discount_id", "customer_email"),
        db.Index("ix_discount_usages_discount_device", "discount_id", "device_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    device_id = db.Column(db.String(128), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    discount_cents = db.Column(db.Integer, nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    discount = db.relationship("Discount", backref=db.backref("usages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "discount_id": self.discount_id,
            "customer_email": self.customer_email,
            "device_id": self.device_id,
            "order_id": self.order_id,
            "discount_cents": self.discount_cents,
            "used_at": to_utc_z(self.used_at),
        }
