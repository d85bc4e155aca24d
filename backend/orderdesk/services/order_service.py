# Overview: Service-layer operations for order lookup and staff fulfilment updates.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import (
    PAYMENT_METHOD_CASH,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    STATUS_WAITING,
    STATUS_AWAITING_CONFIRMATION,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
)
from ..errors import NotFound, InvalidTransition
from orderdesk.time_utils import utcnow
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .expiry_service import cancel_order_locked


# Fulfilment moves driven by staff. Gateway payment moves belong to the reconciler.
STAFF_TRANSITIONS = {
    STATUS_WAITING: {STATUS_AWAITING_CONFIRMATION, STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_AWAITING_CONFIRMATION: {STATUS_COMPLETED, STATUS_CANCELLED},
}


def get_order(order_code: str) -> Order:
    order = db.session.query(Order).filter_by(order_code=order_code).first()
    if order is None:
        raise NotFound("Order not found", details={"order_code": order_code})
    return order


def list_customer_orders(customer_email: str, limit: int = 20) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.customer_email == customer_email.strip().lower())
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )


def list_orders_for_review(limit: int = 100) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.needs_review.is_(True))
        .order_by(Order.updated_at.desc())
        .limit(limit)
        .all()
    )


def update_status(order_code: str, new_status: str, amount_received_cents: int | None = None) -> Order:
    """
    Move an order along the kitchen/cashier flow.

    Completing a cash order is the moment it is paid: the tendered amount
    must cover the total. Cancelling returns stock and is only allowed
    before payment.
    """
    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(order_code=order_code)).populate_existing().first()
        if order is None:
            raise NotFound("Order not found", details={"order_code": order_code})

        allowed = STAFF_TRANSITIONS.get(order.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot move order from {order.status} to {new_status}",
                details={"status": order.status, "requested": new_status},
            )

        events = []
        if new_status == STATUS_CANCELLED:
            if order.payment_status == PAYMENT_PAID:
                raise InvalidTransition("Paid orders cannot be cancelled", details={"order_code": order_code})
            events = cancel_order_locked(order, PAYMENT_FAILED, "cancelled by staff")
        else:
            if new_status == STATUS_COMPLETED and order.payment_method == PAYMENT_METHOD_CASH and order.payment_status != PAYMENT_PAID:
                if amount_received_cents is None or amount_received_cents < order.total_cents:
                    raise InvalidTransition(
                        "Amount received does not cover the order total",
                        details={"total_cents": order.total_cents, "amount_received_cents": amount_received_cents},
                    )
                order.amount_received_cents = amount_received_cents
                order.change_cents = amount_received_cents - order.total_cents
                order.payment_status = PAYMENT_PAID
                order.paid_at = utcnow()
            elif new_status == STATUS_COMPLETED and order.payment_status != PAYMENT_PAID:
                raise InvalidTransition("Order has not been paid", details={"payment_status": order.payment_status})
            order.status = new_status
            events = [notification_service.status_push(order.id)]

        db.session.commit()
        return order, events

    order, events = run_with_retry(_op)
    current_app.logger.info("Order %s moved to %s", order.order_code, order.status)
    notification_service.dispatch(events)
    return order
