# Overview: Service-layer operations for product stock; reserve, restore and read-only cart checks.

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import Product
from ..errors import InsufficientStock
from .concurrency import lock_for_update


OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"


@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int


@dataclass
class ReservedLine:
    product: Product
    quantity: int
    stock_before: int
    stock_after: int

    @property
    def line_total_cents(self) -> int:
        return self.product.price_cents * self.quantity


@dataclass
class ReservationResult:
    lines: list[ReservedLine]

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class StockAlert:
    kind: str
    product_id: int
    product_name: str
    stock: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "stock": self.stock,
        }


def collapse_items(items: Iterable[CartItem]) -> dict[int, int]:
    """Merge repeated product ids, summing quantities. Result is keyed in ascending id order."""
    totals: dict[int, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return dict(sorted(totals.items()))


def _lock_products(product_ids) -> dict[int, Product]:
    """
    Lock product rows in ascending id order.

    A fixed acquisition order keeps two carts that share products from
    deadlocking against each other.
    """
    rows = (
        lock_for_update(
            db.session.query(Product)
            .filter(Product.id.in_(list(product_ids)))
            .order_by(Product.id.asc())
        )
        .all()
    )
    return {p.id: p for p in rows}


def reserve(items: Iterable[CartItem]) -> ReservationResult:
    """
    Atomically decrement stock for every cart line.

    Runs inside the caller's transaction and does not commit. Any failing
    line raises InsufficientStock before anything is flushed, so the whole
    reservation is all-or-nothing.
    """
    wanted = collapse_items(items)
    if not wanted:
        raise InsufficientStock("Cart is empty", product_id=0, reason="empty_cart")

    products = _lock_products(wanted.keys())

    for product_id, quantity in wanted.items():
        product = products.get(product_id)
        if product is None:
            raise InsufficientStock(
                f"Product {product_id} not found",
                product_id=product_id, reason="not_found", requested=quantity,
            )
        if quantity <= 0:
            raise InsufficientStock(
                f"Invalid quantity for {product.name}",
                product_id=product_id, reason="invalid_quantity", requested=quantity, available=product.stock,
            )
        if product.closed:
            raise InsufficientStock(
                f"{product.name} is currently unavailable",
                product_id=product_id, reason="closed", requested=quantity, available=product.stock,
            )
        if product.stock < quantity:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}",
                product_id=product_id, reason="insufficient", requested=quantity, available=product.stock,
            )

    lines: list[ReservedLine] = []
    for product_id, quantity in wanted.items():
        product = products[product_id]
        before = product.stock
        product.stock = before - quantity
        lines.append(ReservedLine(product=product, quantity=quantity, stock_before=before, stock_after=product.stock))

    db.session.flush()
    return ReservationResult(lines=lines)


def stock_alerts(reservation: ReservationResult, low_stock_threshold: int = 20) -> list[StockAlert]:
    """Alerts only for thresholds crossed by this decrement, not for stock that was already low."""
    alerts: list[StockAlert] = []
    for line in reservation.lines:
        if line.stock_after == 0:
            alerts.append(StockAlert(OUT_OF_STOCK, line.product.id, line.product.name, 0))
        elif line.stock_before > low_stock_threshold >= line.stock_after:
            alerts.append(StockAlert(LOW_STOCK, line.product.id, line.product.name, line.stock_after))
    return alerts


def restore(lines) -> int:
    """
    Return stock for (product_id, quantity) pairs. Does not commit.

    Not idempotent: callers guard with Order.cancelled_at. Products that
    disappeared since the order was placed are logged and skipped.
    """
    wanted: dict[int, int] = {}
    for product_id, quantity in lines:
        wanted[product_id] = wanted.get(product_id, 0) + quantity

    products = _lock_products(sorted(wanted))
    restored = 0
    for product_id in sorted(wanted):
        product = products.get(product_id)
        if product is None:
            current_app.logger.warning("Stock restore skipped: product %s no longer exists", product_id)
            continue
        product.stock = product.stock + wanted[product_id]
        restored += wanted[product_id]
    db.session.flush()
    return restored


def validate_cart(items: Iterable[CartItem]) -> list[dict]:
    """Read-only pre-check used by the cart page; no locks are taken."""
    wanted = collapse_items(items)
    if not wanted:
        return []
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(list(wanted))).all()
    }
    issues: list[dict] = []
    for product_id, quantity in wanted.items():
        product = products.get(product_id)
        if product is None:
            issues.append({"product_id": product_id, "issue": "not_found"})
        elif product.closed:
            issues.append({"product_id": product_id, "name": product.name, "issue": "closed"})
        elif product.stock <= 0:
            issues.append({"product_id": product_id, "name": product.name, "issue": "out_of_stock", "available": 0})
        elif product.stock < quantity:
            issues.append({
                "product_id": product_id,
                "name": product.name,
                "issue": "insufficient",
                "requested": quantity,
                "available": product.stock,
            })
    return issues
