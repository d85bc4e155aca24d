# Overview: Duplicate order submission protection (content hash, attempt rate, idempotency keys).

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Order
from ..models.orders import PAYMENT_EXPIRED, PAYMENT_FAILED, STATUS_CANCELLED
from orderdesk.time_utils import utcnow
from .inventory_service import CartItem


IDENTICAL_ORDER = "identical_order"
TOO_MANY_ATTEMPTS = "too_many_attempts"


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    reason: str | None = None
    message: str | None = None
    existing_order_code: str | None = None
    retry_after_seconds: int = 0

    def to_dict(self) -> dict:
        return {
            "is_duplicate": self.is_duplicate,
            "reason": self.reason,
            "message": self.message,
            "existing_order_code": self.existing_order_code,
            "retry_after_seconds": self.retry_after_seconds,
        }


def _window() -> timedelta:
    return timedelta(seconds=current_app.config.get("DUPLICATE_WINDOW_SECONDS", 300))


def generate_order_hash(
    customer_email: str,
    items,
    payment_method: str,
    notes: str | None = None,
    discount_id: int | None = None,
) -> str:
    """
    Content fingerprint of a checkout submission.

    Independent of cart entry order and of repeated product entries;
    quantities that are not positive are dropped.
    """
    quantities: dict[int, int] = {}
    for item in items:
        if not isinstance(item, CartItem):
            item = CartItem(int(item["product_id"]), int(item["quantity"]))
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    normalized = {str(pid): qty for pid, qty in sorted(quantities.items()) if qty > 0}

    canonical = {
        "customer_email": (customer_email or "").strip().lower(),
        "discount_id": discount_id,
        "items": normalized,
        "notes": (notes or "").strip(),
        "payment_method": payment_method,
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def generate_idempotency_key(customer_email: str) -> str:
    seed = f"{(customer_email or '').strip().lower()}|{utcnow().isoformat()}|{secrets.token_hex(16)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def check_duplicate(customer_email: str, order_hash: str, now: datetime | None = None) -> DuplicateCheck:
    """
    Decide whether a submission duplicates a recent one.

    An identical cart counts only while the earlier order is still alive
    (not failed, expired or cancelled). Independently, more than the allowed
    number of attempts inside the window is rate limited.
    """
    now = now or utcnow()
    window = _window()
    since = now - window
    email = (customer_email or "").strip().lower()

    existing = (
        db.session.query(Order)
        .filter(
            Order.customer_email == email,
            Order.order_hash == order_hash,
            Order.created_at >= since,
            Order.payment_status.notin_([PAYMENT_FAILED, PAYMENT_EXPIRED]),
            Order.status != STATUS_CANCELLED,
        )
        .order_by(Order.created_at.desc())
        .first()
    )
    if existing:
        elapsed = int((now - existing.created_at.replace(tzinfo=None)).total_seconds())
        return DuplicateCheck(
            is_duplicate=True,
            reason=IDENTICAL_ORDER,
            message="An identical order was placed moments ago. Please check your order history.",
            existing_order_code=existing.order_code,
            retry_after_seconds=max(int(window.total_seconds()) - elapsed, 0),
        )

    recent_attempts = (
        db.session.query(Order)
        .filter(Order.customer_email == email, Order.last_attempt_at >= since)
        .count()
    )
    limit = current_app.config.get("MAX_CHECKOUT_ATTEMPTS_PER_WINDOW", 3)
    if recent_attempts >= limit:
        return DuplicateCheck(
            is_duplicate=True,
            reason=TOO_MANY_ATTEMPTS,
            message="Too many orders in a short time. Please wait a few minutes.",
            retry_after_seconds=int(window.total_seconds()),
        )

    return DuplicateCheck(is_duplicate=False)


def find_by_idempotency_key(idempotency_key: str | None) -> Order | None:
    """Replays only resolve to live orders; a dead order frees its key for a fresh checkout."""
    if not idempotency_key:
        return None
    return (
        db.session.query(Order)
        .filter(
            Order.idempotency_key == idempotency_key,
            Order.payment_status.notin_([PAYMENT_FAILED, PAYMENT_EXPIRED]),
            Order.status != STATUS_CANCELLED,
        )
        .order_by(Order.id.desc())
        .first()
    )
