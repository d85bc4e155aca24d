# Overview: Service-layer operations for discounts and order pricing (discount, tax, total).

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Discount, DiscountUsage
from ..errors import InvalidDiscount
from orderdesk.time_utils import utcnow, store_now


@dataclass
class PriceBreakdown:
    subtotal_cents: int
    discount_cents: int
    tax_percentage: Decimal
    tax_cents: int
    total_cents: int
    discount: Discount | None = None

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discount_id": self.discount.id if self.discount else None,
            "tax_percentage": str(self.tax_percentage),
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def _percent_of(amount_cents: int, percentage) -> int:
    """Percentage of a minor-unit amount, rounded half-up to a whole minor unit."""
    value = Decimal(amount_cents) * Decimal(str(percentage)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# VALIDITY
# =============================================================================

def _in_time_window(discount: Discount, now: datetime) -> bool:
    if not (discount.time_from and discount.time_until):
        return True
    clock = store_now(current_app.config["STORE_TIMEZONE"], now).time().replace(tzinfo=None)
    if discount.time_from > discount.time_until:
        # Window crosses midnight (22:00 -> 02:00)
        return clock >= discount.time_from or clock <= discount.time_until
    return discount.time_from <= clock <= discount.time_until


def invalid_reason(discount: Discount, now: datetime | None = None) -> str | None:
    """Why a discount cannot be used right now, or None when it can."""
    now = now or utcnow()
    if not discount.is_active:
        return "Discount is not active"
    if discount.valid_from and now < discount.valid_from.replace(tzinfo=None):
        return f"Discount starts on {discount.valid_from:%d %b %Y}"
    if discount.valid_until and now > discount.valid_until.replace(tzinfo=None):
        return f"Discount ended on {discount.valid_until:%d %b %Y}"
    if not _in_time_window(discount, now):
        return f"Discount only applies between {discount.time_from:%H:%M} and {discount.time_until:%H:%M}"
    return None


def is_valid(discount: Discount, now: datetime | None = None) -> bool:
    return invalid_reason(discount, now) is None


def can_be_used_by(discount: Discount, customer_email: str | None, device_id: str | None = None) -> bool:
    """Code discounts are single use per customer and per device."""
    if customer_email:
        used = (
            db.session.query(DiscountUsage.id)
            .filter_by(discount_id=discount.id, customer_email=customer_email.strip().lower())
            .first()
        )
        if used:
            return False
    if device_id:
        used = db.session.query(DiscountUsage.id).filter_by(discount_id=discount.id, device_id=device_id).first()
        if used:
            return False
    return True


# =============================================================================
# RESOLUTION
# =============================================================================

def resolve_discount(
    subtotal_cents: int,
    code: str | None = None,
    customer_email: str | None = None,
    device_id: str | None = None,
    now: datetime | None = None,
) -> tuple[Discount | None, int]:
    """
    Pick the discount for a checkout and its amount.

    With a code, the code must match a usable discount or InvalidDiscount is
    raised. Without one, the best automatic discount whose minimum purchase
    is met wins (highest percentage, then lowest id); no match is fine.
    """
    now = now or utcnow()
    if code:
        discount = db.session.query(Discount).filter(Discount.code == code.strip()).first()
        if discount is None:
            raise InvalidDiscount("Discount code not found", details={"code": code})
        reason = invalid_reason(discount, now)
        if reason:
            raise InvalidDiscount(reason, details={"code": code})
        if subtotal_cents < discount.min_purchase_cents:
            raise InvalidDiscount(
                "Order does not reach the minimum purchase for this discount",
                details={"code": code, "min_purchase_cents": discount.min_purchase_cents},
            )
        if not can_be_used_by(discount, customer_email, device_id):
            raise InvalidDiscount("Discount code has already been used", details={"code": code})
        return discount, _percent_of(subtotal_cents, discount.percentage)

    candidates = (
        db.session.query(Discount)
        .filter(
            Discount.is_active.is_(True),
            Discount.requires_code.is_(False),
            Discount.min_purchase_cents <= subtotal_cents,
        )
        .order_by(Discount.percentage.desc(), Discount.id.asc())
        .all()
    )
    for discount in candidates:
        if is_valid(discount, now):
            return discount, _percent_of(subtotal_cents, discount.percentage)
    return None, 0


def price_order(subtotal_cents: int, discount: Discount | None, discount_cents: int, tax_percentage) -> PriceBreakdown:
    """Tax is charged on the discounted subtotal."""
    discount_cents = min(discount_cents, subtotal_cents)
    taxable = subtotal_cents - discount_cents
    tax_pct = Decimal(str(tax_percentage))
    tax_cents = _percent_of(taxable, tax_pct)
    return PriceBreakdown(
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        tax_percentage=tax_pct,
        tax_cents=tax_cents,
        total_cents=taxable + tax_cents,
        discount=discount,
    )


def record_usage(discount: Discount, order, discount_cents: int, device_id: str | None = None) -> DiscountUsage:
    """Does not commit; part of the checkout transaction."""
    usage = DiscountUsage(
        discount_id=discount.id,
        customer_email=order.customer_email,
        device_id=device_id,
        order_id=order.id,
        discount_cents=discount_cents,
        used_at=utcnow(),
    )
    db.session.add(usage)
    return usage


# =============================================================================
# QUERIES & MAINTENANCE
# =============================================================================

def verify_code(
    code: str,
    amount_cents: int = 0,
    customer_email: str | None = None,
    device_id: str | None = None,
) -> dict:
    """Storefront code check; raises InvalidDiscount with a customer-readable reason."""
    discount, discount_cents = resolve_discount(amount_cents, code, customer_email, device_id)
    return {
        "id": discount.id,
        "name": discount.name,
        "code": discount.code,
        "percentage": str(discount.percentage),
        "discount_cents": discount_cents if amount_cents > 0 else 0,
    }


def available_discounts(amount_cents: int = 0, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    rows = (
        db.session.query(Discount)
        .filter(Discount.is_active.is_(True))
        .order_by(Discount.percentage.desc(), Discount.id.asc())
        .all()
    )
    result = []
    for discount in rows:
        if not is_valid(discount, now):
            continue
        if amount_cents > 0 and amount_cents < discount.min_purchase_cents:
            continue
        data = discount.to_dict()
        data["discount_cents"] = _percent_of(amount_cents, discount.percentage) if amount_cents > 0 else 0
        result.append(data)
    return result


def deactivate_expired(now: datetime | None = None) -> int:
    now = now or utcnow()
    expired = (
        db.session.query(Discount)
        .filter(Discount.is_active.is_(True), Discount.valid_until.isnot(None), Discount.valid_until < now)
        .all()
    )
    for discount in expired:
        discount.is_active = False
        current_app.logger.info("Deactivated expired discount %s (%s)", discount.id, discount.name)
    db.session.commit()
    return len(expired)
