"""
Payment Reconciliation Service

WHY: The gateway tells us about a payment twice, through two channels that
race each other: the server-to-server webhook and the customer's browser
polling the status endpoint. Either can arrive first, late, or more than
once. Both feed apply_gateway_status(), which decides the transition under
the order row lock, so the outcome depends only on the sequence of signals
as the lock admits them.

RULES:
- Terminal payment states (paid / expired / failed) never move again.
  The same signal repeated is a duplicate; a different terminal signal is
  a conflict, flagged for manual review.
- A payment reported after the order was cancelled locally does not
  resurrect the order. Stock has already been returned; staff must refund
  or honour it by hand.
- Every signal is appended to payment_events, whatever its outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Order, PaymentEvent
from ..models.orders import (
    PAYMENT_METHOD_GATEWAY,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_EXPIRED,
    PAYMENT_FAILED,
    PAYMENT_CHALLENGE,
    TERMINAL_PAYMENT_STATUSES,
    STATUS_WAITING_FOR_PAYMENT,
    STATUS_WAITING,
)
from ..errors import NotFound
from orderdesk.time_utils import utcnow
from . import notification_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .expiry_service import cancel_order_locked
from .gateway_client import GatewayError, get_gateway


SOURCE_WEBHOOK = "webhook"
SOURCE_POLL = "poll"

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
CONFLICT = "conflict"


@dataclass
class ReconcileResult:
    order_id: int
    order_code: str
    outcome: str
    payment_status_before: str
    payment_status_after: str
    note: str | None = None
    notifications: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_code": self.order_code,
            "outcome": self.outcome,
            "payment_status_before": self.payment_status_before,
            "payment_status_after": self.payment_status_after,
            "note": self.note,
        }


@dataclass
class WebhookResult:
    accepted: bool
    reason: str | None = None
    result: ReconcileResult | None = None


def normalize_gateway_status(raw_status: str | None, fraud_status: str | None = None) -> str:
    """Map a provider transaction status onto the local payment vocabulary."""
    raw = (raw_status or "").strip().lower()
    fraud = (fraud_status or "").strip().lower()
    if raw == "settlement":
        return PAYMENT_PAID
    if raw == "capture":
        if fraud == "challenge":
            return PAYMENT_CHALLENGE
        if fraud in ("", "accept"):
            return PAYMENT_PAID
        return PAYMENT_FAILED
    if raw in ("deny", "cancel", "failure"):
        return PAYMENT_FAILED
    if raw == "expire":
        return PAYMENT_EXPIRED
    return PAYMENT_PENDING


def _flag_for_review(order: Order, reason: str) -> None:
    order.needs_review = True
    order.review_reason = reason[:255]
    current_app.logger.warning("Order %s flagged for review: %s", order.order_code, reason)


def _record_gateway_fields(order: Order, raw_status, fraud_status, payment_type) -> None:
    order.gateway_raw_status = raw_status
    if fraud_status is not None:
        order.gateway_fraud_status = fraud_status
    if payment_type is not None:
        order.gateway_payment_type = payment_type


def _transition(order: Order, target: str, raw_status, fraud_status, payment_type, now: datetime):
    """Decide and apply one signal to a locked order. Returns (outcome, note, events)."""
    current = order.payment_status

    if order.payment_method != PAYMENT_METHOD_GATEWAY:
        return IGNORED, "not a gateway order", []

    if target == PAYMENT_PAID and order.cancelled_at is not None and current != PAYMENT_PAID:
        _flag_for_review(order, f"payment reported after cancellation ({raw_status})")
        return CONFLICT, "paid after cancellation", []

    if order.is_payment_terminal:
        if target == current:
            return DUPLICATE, None, []
        if target in TERMINAL_PAYMENT_STATUSES:
            _flag_for_review(order, f"gateway reported {target} for a {current} order ({raw_status})")
            return CONFLICT, f"{current} -> {target} rejected", []
        return IGNORED, f"{target} after terminal {current}", []

    if target == PAYMENT_PAID:
        _record_gateway_fields(order, raw_status, fraud_status, payment_type)
        order.payment_status = PAYMENT_PAID
        order.paid_at = now
        if order.status == STATUS_WAITING_FOR_PAYMENT:
            order.status = STATUS_WAITING
        events = []
        if order.confirmation_notified_at is None:
            order.confirmation_notified_at = now
            events = [
                notification_service.broadcast("new_order", order.id),
                notification_service.confirmation_email(order.id),
                notification_service.status_push(order.id),
            ]
        current_app.logger.info("Order %s paid (%s)", order.order_code, raw_status)
        return APPLIED, None, events

    if target in (PAYMENT_EXPIRED, PAYMENT_FAILED):
        _record_gateway_fields(order, raw_status, fraud_status, payment_type)
        events = cancel_order_locked(order, target, f"gateway reported {raw_status}")
        return APPLIED, None, events

    if target == PAYMENT_CHALLENGE:
        if current == PAYMENT_CHALLENGE:
            return DUPLICATE, None, []
        _record_gateway_fields(order, raw_status, fraud_status, payment_type)
        order.payment_status = PAYMENT_CHALLENGE
        _flag_for_review(order, "fraud challenge raised by gateway")
        return APPLIED, None, [notification_service.status_push(order.id)]

    # pending: note what the gateway said; never regress a challenge
    if current == PAYMENT_CHALLENGE:
        return IGNORED, "pending does not clear a challenge", []
    _record_gateway_fields(order, raw_status, fraud_status, payment_type)
    return IGNORED, "still pending", []


def apply_gateway_status(
    order_id: int,
    raw_status: str | None,
    fraud_status: str | None = None,
    payment_type: str | None = None,
    source: str = SOURCE_WEBHOOK,
    now: datetime | None = None,
) -> ReconcileResult:
    """
    Single entry point for webhook and poll signals.

    Commits the transition together with its payment_events row, then
    dispatches the resulting notifications.
    """
    target = normalize_gateway_status(raw_status, fraud_status)

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        before = order.payment_status
        outcome, note, events = _transition(order, target, raw_status, fraud_status, payment_type, now or utcnow())
        db.session.add(PaymentEvent(
            order_id=order.id,
            source=source,
            raw_status=raw_status,
            fraud_status=fraud_status,
            payment_type=payment_type,
            outcome=outcome,
            payment_status_before=before,
            payment_status_after=order.payment_status,
            note=note,
        ))
        db.session.commit()
        result = ReconcileResult(
            order_id=order.id,
            order_code=order.order_code,
            outcome=outcome,
            payment_status_before=before,
            payment_status_after=order.payment_status,
            note=note,
        )
        return result, events

    result, events = run_with_retry(_op)
    if result.outcome != APPLIED:
        current_app.logger.info(
            "Gateway signal %s for %s via %s: %s", raw_status, result.order_code, source, result.outcome
        )
    result.notifications = notification_service.dispatch(events)
    return result


# =============================================================================
# INBOUND CHANNELS
# =============================================================================

def find_order_for_reference(reference: str) -> Order | None:
    """Gateway reference first; plain order codes are accepted for older charges."""
    order = db.session.query(Order).filter_by(gateway_reference=reference).first()
    if order is None:
        order = db.session.query(Order).filter_by(order_code=reference).first()
    return order


def handle_webhook(payload: dict) -> WebhookResult:
    """
    Process a gateway notification. Never raises.

    Rejections are logged and reported in the result; the HTTP endpoint
    acknowledges every delivery so the provider stops retrying.
    """
    reference = (payload or {}).get("order_id")
    if not reference:
        current_app.logger.warning("Gateway notification without order_id ignored")
        return WebhookResult(accepted=False, reason="missing_order_id")

    try:
        if current_app.config.get("GATEWAY_VERIFY_SIGNATURE", True) and not get_gateway().verify_signature(payload):
            current_app.logger.warning("Gateway notification for %s has an invalid signature", reference)
            return WebhookResult(accepted=False, reason="invalid_signature")

        order = find_order_for_reference(str(reference))
        if order is None:
            current_app.logger.warning("Gateway notification for unknown order %s", reference)
            return WebhookResult(accepted=False, reason="order_not_found")

        result = apply_gateway_status(
            order.id,
            payload.get("transaction_status"),
            payload.get("fraud_status"),
            payload.get("payment_type"),
            source=SOURCE_WEBHOOK,
        )
        return WebhookResult(accepted=True, result=result)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process gateway notification for %s", reference)
        return WebhookResult(accepted=False, reason="error")


def _needs_gateway_check(order: Order) -> bool:
    return (
        order.payment_method == PAYMENT_METHOD_GATEWAY
        and order.payment_status in (PAYMENT_PENDING, PAYMENT_CHALLENGE)
        and bool(order.gateway_reference)
    )


def _poll_one(order: Order) -> ReconcileResult | None:
    """Query the gateway for one order and apply what it says. Raises GatewayError."""
    status = get_gateway().query_status(order.gateway_reference)
    if not status.found or not status.transaction_status:
        return None
    return apply_gateway_status(
        order.id,
        status.transaction_status,
        status.fraud_status,
        status.payment_type,
        source=SOURCE_POLL,
    )


def poll_payment_status(order_code: str) -> dict:
    """Customer-facing status check; a gateway outage leaves the order untouched."""
    order = db.session.query(Order).filter_by(order_code=order_code).first()
    if order is None:
        raise NotFound("Order not found", details={"order_code": order_code})

    checked = False
    if _needs_gateway_check(order):
        try:
            _poll_one(order)
            checked = True
        except GatewayError as exc:
            current_app.logger.warning("Status check for %s failed: %s", order_code, exc)
        order = db.session.query(Order).filter_by(order_code=order_code).populate_existing().first()

    return {
        "order": order.to_dict(),
        "payment_status": order.payment_status,
        "gateway_raw_status": order.gateway_raw_status,
        "gateway_checked": checked,
    }


def check_pending_payments(max_age_hours: int | None = None, now: datetime | None = None) -> dict:
    """Scheduled catch-up for webhooks that never arrived."""
    now = now or utcnow()
    if max_age_hours is None:
        max_age_hours = current_app.config.get("PENDING_PAYMENT_MAX_AGE_HOURS", 24)
    since = now - timedelta(hours=max_age_hours)

    pending = (
        db.session.query(Order)
        .filter(
            Order.payment_method == PAYMENT_METHOD_GATEWAY,
            Order.payment_status.in_([PAYMENT_PENDING, PAYMENT_CHALLENGE]),
            Order.gateway_reference.isnot(None),
            Order.created_at >= since,
        )
        .order_by(Order.id.asc())
        .all()
    )

    summary = {"checked": 0, "updated": 0, "failed": 0}
    for order in pending:
        summary["checked"] += 1
        try:
            result = _poll_one(order)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Pending payment check failed for %s", order.order_code)
            summary["failed"] += 1
            continue
        if result is not None and result.outcome == APPLIED:
            summary["updated"] += 1

    current_app.logger.info(
        "Pending payment check: %s checked, %s updated, %s failed",
        summary["checked"], summary["updated"], summary["failed"],
    )
    return summary
