"""
Checkout Service - cart to order in one transaction

WHY: Stock, queue number and the order row must appear together or not at
all. Everything that can fail locally (store hours, duplicates, stock,
discount) is decided inside one write transaction; the payment gateway is
only called after that transaction commits, and a failed charge is undone
by a compensating transaction rather than by holding locks across HTTP.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Order, OrderLine, Discount, DiscountUsage
from ..models.orders import (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_GATEWAY,
    VALID_PAYMENT_METHODS,
    PAYMENT_PENDING,
    STATUS_WAITING,
    STATUS_WAITING_FOR_PAYMENT,
)
from ..errors import (
    InvalidCart,
    StoreClosed,
    DuplicateOrder,
    RateLimited,
    GatewayChargeFailed,
)
from orderdesk.time_utils import utcnow, store_today, to_utc_z
from . import inventory_service, queue_service, duplicate_guard_service, discount_service, settings_service
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .gateway_client import GatewayError, get_gateway
from .inventory_service import CartItem


ORDER_CODE_PREFIX = "SO-"
ORDER_CODE_ALPHABET = string.digits + string.ascii_uppercase
ORDER_CODE_LENGTH = 5


@dataclass
class CustomerInfo:
    name: str
    email: str
    phone: str | None = None


@dataclass
class CheckoutResult:
    order: Order
    replayed: bool = False
    payment: dict | None = None
    stock_alerts: list = field(default_factory=list)
    notifications: list = field(default_factory=list)


def generate_order_code() -> str:
    """Random SO-XXXXX code, re-drawn until unused. Runs inside the checkout transaction."""
    while True:
        suffix = "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(ORDER_CODE_LENGTH))
        code = f"{ORDER_CODE_PREFIX}{suffix}"
        if not db.session.query(Order.id).filter_by(order_code=code).first():
            return code


def payment_view(order: Order) -> dict | None:
    if order.payment_method != PAYMENT_METHOD_GATEWAY:
        return None
    return {
        "gateway_reference": order.gateway_reference,
        "token": order.gateway_token,
        "redirect_url": order.gateway_redirect_url,
        "client_key": current_app.config.get("GATEWAY_CLIENT_KEY"),
        "expires_at": to_utc_z(order.payment_expires_at),
    }


def _validate_request(customer: CustomerInfo, items: list[CartItem], payment_method: str) -> None:
    if payment_method not in VALID_PAYMENT_METHODS:
        raise InvalidCart(
            f"payment_method must be one of {VALID_PAYMENT_METHODS}",
            details={"payment_method": payment_method},
        )
    if not customer.name or not customer.email:
        raise InvalidCart("Customer name and email are required")
    if not items:
        raise InvalidCart("Cart is empty")
    for item in items:
        if item.quantity <= 0:
            raise InvalidCart("Quantities must be positive", details={"product_id": item.product_id})


def _requested_discount_id(code: str | None) -> int | None:
    if not code:
        return None
    return db.session.query(Discount.id).filter(Discount.code == code.strip()).scalar()


def _enforce_guard(email: str, order_hash: str, now: datetime) -> None:
    check = duplicate_guard_service.check_duplicate(email, order_hash, now)
    if not check.is_duplicate:
        return
    if check.reason == duplicate_guard_service.TOO_MANY_ATTEMPTS:
        raise RateLimited(check.message, details=check.to_dict())
    raise DuplicateOrder(check.message, details=check.to_dict())


# =============================================================================
# CHECKOUT
# =============================================================================

def checkout(
    customer: CustomerInfo,
    cart: list[CartItem],
    payment_method: str,
    discount_code: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
    device_id: str | None = None,
    now: datetime | None = None,
) -> CheckoutResult:
    """
    Turn a cart into an order.

    Replays return the existing order for a known idempotency key. Cash
    orders are final after commit; gateway orders additionally open a
    hosted payment page.
    """
    _validate_request(customer, cart, payment_method)
    cfg = current_app.config
    email = customer.email.strip().lower()
    notes = (notes or "").strip() or None

    if not settings_service.is_store_open(now):
        raise StoreClosed("The store is currently closed")

    existing = duplicate_guard_service.find_by_idempotency_key(idempotency_key)
    if existing:
        return CheckoutResult(order=existing, replayed=True, payment=payment_view(existing))

    order_hash = duplicate_guard_service.generate_order_hash(
        email, cart, payment_method, notes, _requested_discount_id(discount_code)
    )
    _enforce_guard(email, order_hash, now or utcnow())

    def _op():
        begin_write()
        current = now or utcnow()

        replay = duplicate_guard_service.find_by_idempotency_key(idempotency_key)
        if replay:
            db.session.commit()
            return replay, True, []

        reservation = inventory_service.reserve(cart)
        discount, discount_cents = discount_service.resolve_discount(
            reservation.subtotal_cents, discount_code, email, device_id, current
        )
        price = discount_service.price_order(
            reservation.subtotal_cents, discount, discount_cents, settings_service.get_tax_percentage()
        )

        queue_date = store_today(cfg["STORE_TIMEZONE"], current)
        queue_number = queue_service.next_queue_number(queue_date)
        # The counter row lock serializes same-day checkouts; re-check under it.
        _enforce_guard(email, order_hash, current)

        order_code = generate_order_code()
        is_gateway = payment_method == PAYMENT_METHOD_GATEWAY
        order = Order(
            order_code=order_code,
            queue_date=queue_date,
            queue_number=queue_number,
            queue_display=queue_service.format_queue_number(queue_number, cfg["QUEUE_NUMBER_WIDTH"]),
            customer_name=customer.name.strip(),
            customer_email=email,
            customer_phone=customer.phone,
            customer_notes=notes,
            total_items=reservation.total_items,
            subtotal_cents=price.subtotal_cents,
            discount_id=discount.id if discount else None,
            discount_cents=price.discount_cents,
            tax_percentage=price.tax_percentage,
            tax_cents=price.tax_cents,
            total_cents=price.total_cents,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            gateway_reference=f"{order_code}-{secrets.token_hex(4)}" if is_gateway else None,
            payment_expires_at=current + timedelta(minutes=cfg["PAYMENT_EXPIRY_MINUTES"]) if is_gateway else None,
            status=STATUS_WAITING_FOR_PAYMENT if is_gateway else STATUS_WAITING,
            order_hash=order_hash,
            idempotency_key=idempotency_key,
            last_attempt_at=current,
            created_at=current,
        )
        for line in reservation.lines:
            order.lines.append(OrderLine(
                product_id=line.product.id,
                product_name=line.product.name,
                unit_price_cents=line.product.price_cents,
                quantity=line.quantity,
                line_total_cents=line.line_total_cents,
            ))
        db.session.add(order)
        db.session.flush()

        if discount is not None and price.discount_cents > 0:
            discount_service.record_usage(discount, order, price.discount_cents, device_id)

        alerts = inventory_service.stock_alerts(reservation, cfg["LOW_STOCK_THRESHOLD"])
        db.session.commit()
        return order, False, alerts

    order, replayed, alerts = run_with_retry(_op)
    if replayed:
        return CheckoutResult(order=order, replayed=True, payment=payment_view(order))

    current_app.logger.info(
        "Order %s created: queue %s, %s, total %s",
        order.order_code, order.queue_display, order.payment_method, order.total_cents,
    )

    if order.payment_method == PAYMENT_METHOD_GATEWAY:
        order = _open_payment_page(order)
        events = [notification_service.status_push(order.id)]
    else:
        events = [
            notification_service.confirmation_email(order.id),
            notification_service.broadcast("new_order", order.id),
            notification_service.status_push(order.id),
        ]
    events.extend(notification_service.broadcast("stock_alert", payload=a.to_dict()) for a in alerts)

    results = notification_service.dispatch(events)
    return CheckoutResult(
        order=order,
        payment=payment_view(order),
        stock_alerts=alerts,
        notifications=results,
    )


# =============================================================================
# GATEWAY CHARGE
# =============================================================================

def _open_payment_page(order: Order) -> Order:
    order_id = order.id
    order_code = order.order_code
    try:
        charge = get_gateway().create_charge(order)
    except GatewayError as exc:
        current_app.logger.warning("Charge creation failed for %s: %s", order_code, exc)
        discard_unpaid_order(order_id)
        raise GatewayChargeFailed(
            "Payment could not be started, please try again",
            details={"order_code": order_code, **exc.details},
        ) from exc
    except Exception as exc:
        current_app.logger.exception("Unexpected error creating charge for %s", order_code)
        db.session.rollback()
        discard_unpaid_order(order_id)
        raise GatewayChargeFailed(
            "Payment could not be started, please try again",
            details={"order_code": order_code},
        ) from exc

    def _op():
        begin_write()
        locked = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        locked.gateway_token = charge.token
        locked.gateway_redirect_url = charge.redirect_url
        db.session.commit()
        return locked

    return run_with_retry(_op)


def discard_unpaid_order(order_id: int) -> bool:
    """
    Compensate a checkout whose charge never opened: return stock, delete the order.

    The queue number stays consumed; gaps are acceptable, reuse is not.
    """
    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None or order.payment_status != PAYMENT_PENDING:
            db.session.commit()
            return False
        if order.cancelled_at is None:
            inventory_service.restore([(line.product_id, line.quantity) for line in order.lines])
        db.session.query(DiscountUsage).filter_by(order_id=order.id).delete(synchronize_session=False)
        db.session.delete(order)
        db.session.commit()
        return True

    discarded = run_with_retry(_op)
    if discarded:
        current_app.logger.info("Discarded order %s after failed charge", order_id)
    return discarded
