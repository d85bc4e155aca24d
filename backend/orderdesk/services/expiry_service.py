# Overview: Expiry of unpaid gateway orders; the shared cancellation routine that returns stock exactly once.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Order, PaymentEvent
from ..models.orders import (
    PAYMENT_METHOD_GATEWAY,
    PAYMENT_PENDING,
    PAYMENT_EXPIRED,
    STATUS_CANCELLED,
)
from orderdesk.time_utils import utcnow
from . import inventory_service
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .gateway_client import GatewayError, get_gateway


@dataclass
class SweepReport:
    examined: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "examined": self.examined,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def cancel_order_locked(order: Order, payment_status: str, reason: str) -> list:
    """
    Cancel a locked order and give its stock back.

    Caller holds the row lock and commits. `cancelled_at` is the
    exactly-once guard: a second call is a no-op and returns no events.
    """
    if order.cancelled_at is not None:
        return []

    order.payment_status = payment_status
    order.status = STATUS_CANCELLED
    order.cancelled_at = utcnow()
    inventory_service.restore([(line.product_id, line.quantity) for line in order.lines])

    current_app.logger.info("Order %s cancelled (%s): %s", order.order_code, payment_status, reason)
    return [
        notification_service.cancellation_email(order.id),
        notification_service.broadcast("order_cancelled", order.id),
        notification_service.status_push(order.id),
    ]


def _is_expirable(order: Order | None, cutoff: datetime) -> bool:
    return (
        order is not None
        and order.payment_method == PAYMENT_METHOD_GATEWAY
        and order.payment_status == PAYMENT_PENDING
        and order.cancelled_at is None
        and order.created_at.replace(tzinfo=None) < cutoff
    )


def _expire_at_gateway(order: Order) -> None:
    """Best effort: the local cancellation proceeds whatever the provider says."""
    if not order.gateway_reference:
        return
    try:
        get_gateway().expire_charge(order.gateway_reference)
    except GatewayError as exc:
        current_app.logger.warning("Gateway expiry failed for %s: %s", order.order_code, exc)


def expire_order(order_id: int, cutoff: datetime) -> list | None:
    """
    Expire one order. Returns the notification events, or None when the
    order no longer qualifies (paid, already cancelled, or too young).
    """
    order = db.session.get(Order, order_id)
    if not _is_expirable(order, cutoff):
        return None
    # Provider call happens before the write transaction; the locked re-check decides.
    _expire_at_gateway(order)

    def _op():
        begin_write()
        locked = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
        if not _is_expirable(locked, cutoff):
            db.session.commit()
            return None
        before = locked.payment_status
        events = cancel_order_locked(locked, PAYMENT_EXPIRED, "payment window elapsed")
        db.session.add(PaymentEvent(
            order_id=locked.id,
            source="sweep",
            raw_status="expire",
            outcome="applied",
            payment_status_before=before,
            payment_status_after=locked.payment_status,
            note="payment window elapsed",
        ))
        db.session.commit()
        return events

    return run_with_retry(_op)


def sweep(now: datetime | None = None) -> SweepReport:
    """
    Cancel gateway orders left unpaid past the payment window.

    Each order runs in its own transaction; one failure is logged and the
    sweep moves on.
    """
    now = now or utcnow()
    cutoff = now - timedelta(minutes=current_app.config["PAYMENT_EXPIRY_MINUTES"])
    candidate_ids = [
        row.id
        for row in db.session.query(Order.id)
        .filter(
            Order.payment_method == PAYMENT_METHOD_GATEWAY,
            Order.payment_status == PAYMENT_PENDING,
            Order.cancelled_at.is_(None),
            Order.created_at < cutoff,
        )
        .order_by(Order.id.asc())
        .all()
    ]

    report = SweepReport()
    for order_id in candidate_ids:
        report.examined += 1
        try:
            events = expire_order(order_id, cutoff)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to expire order %s", order_id)
            report.failed += 1
            continue
        if events is None:
            report.skipped += 1
            continue
        report.cancelled += 1
        notification_service.dispatch(events)

    current_app.logger.info(
        "Expiry sweep: %s examined, %s cancelled, %s skipped, %s failed",
        report.examined, report.cancelled, report.skipped, report.failed,
    )
    return report
