from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z


# =============================================================================
# STATUS VOCABULARY
# =============================================================================

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_GATEWAY = "gateway"
VALID_PAYMENT_METHODS = [PAYMENT_METHOD_CASH, PAYMENT_METHOD_GATEWAY]

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_EXPIRED = "expired"
PAYMENT_FAILED = "failed"
PAYMENT_CHALLENGE = "challenge"
TERMINAL_PAYMENT_STATUSES = {PAYMENT_PAID, PAYMENT_EXPIRED, PAYMENT_FAILED}

STATUS_WAITING_FOR_PAYMENT = "waiting_for_payment"
STATUS_WAITING = "waiting"
STATUS_AWAITING_CONFIRMATION = "awaiting_confirmation"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
VALID_ORDER_STATUSES = [
    STATUS_WAITING_FOR_PAYMENT,
    STATUS_WAITING,
    STATUS_AWAITING_CONFIRMATION,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
]


class QueueCounter(db.Model):
    """
    Daily queue number counter.

    WHY: Queue numbers restart every calendar day. Keying the counter by date
    (instead of resetting a single row at midnight) means there is never a
    window where two days share a counter. Rows for past dates are garbage.
    """
    __tablename__ = "queue_counters"
    __table_args__ = (
        db.UniqueConstraint("queue_date", name="uq_queue_counters_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    queue_date = db.Column(db.Date, nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "queue_date": self.queue_date.isoformat(),
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class Order(db.Model):
    """
    Checkout aggregate: commercial, payment and fulfilment state of one order.

    PAYMENT vs FULFILMENT: `payment_status` is driven by the payment gateway
    (webhook, poll, expiry sweep); `status` is the kitchen/cashier view.
    They are loosely coupled: a paid gateway order moves to `waiting`, an
    expired one to `cancelled`.

    IDEMPOTENCY GUARDS:
    - confirmation_notified_at: set once, in the same commit that queues the
      "paid" notifications. Non-null means they already fired.
    - cancelled_at: set once, in the same commit that returns stock.
      Non-null means stock was already restored.

    GATEWAY REFERENCE: the id sent to the payment provider. Deliberately not
    the order_code so a retried charge never collides provider-side.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_code", name="uq_orders_order_code"),
        db.UniqueConstraint("queue_date", "queue_number", name="uq_orders_queue_date_number"),
        db.UniqueConstraint("gateway_reference", name="uq_orders_gateway_reference"),
        db.Index("ix_orders_customer_hash_created", "customer_email", "order_hash", "created_at"),
        db.Index("ix_orders_customer_attempt", "customer_email", "last_attempt_at"),
        db.Index("ix_orders_expiry_scan", "payment_method", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing identifiers
    order_code = db.Column(db.String(16), nullable=False)
    queue_date = db.Column(db.Date, nullable=False)
    queue_number = db.Column(db.Integer, nullable=False)
    queue_display = db.Column(db.String(16), nullable=False)

    # Customer (identity supplied by the authenticated front end)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_notes = db.Column(db.Text, nullable=True)

    # Totals (all amounts in minor units)
    total_items = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_id = db.Column(db.Integer, db.ForeignKey("discounts.id"), nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    gateway_reference = db.Column(db.String(64), nullable=True)
    gateway_raw_status = db.Column(db.String(32), nullable=True)
    gateway_fraud_status = db.Column(db.String(32), nullable=True)
    gateway_payment_type = db.Column(db.String(64), nullable=True)
    gateway_token = db.Column(db.String(255), nullable=True)
    gateway_redirect_url = db.Column(db.String(512), nullable=True)
    payment_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    amount_received_cents = db.Column(db.Integer, nullable=True)  # cash tendered at the counter
    change_cents = db.Column(db.Integer, nullable=True)

    # Fulfilment
    status = db.Column(db.String(32), nullable=False, index=True)

    # Idempotency guards
    confirmation_notified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Duplicate-submission protection
    order_hash = db.Column(db.String(64), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True, index=True)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Manual review (fraud challenge, late payment after cancellation)
    needs_review = db.Column(db.Boolean, nullable=False, default=False, index=True)
    review_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    discount = db.relationship("Discount")
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_payment_terminal(self) -> bool:
        return self.payment_status in TERMINAL_PAYMENT_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_code": self.order_code,
            "queue_date": self.queue_date.isoformat() if self.queue_date else None,
            "queue_number": self.queue_display,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_notes": self.customer_notes,
            "items": [line.to_dict() for line in self.lines],
            "total_items": self.total_items,
            "subtotal_cents": self.subtotal_cents,
            "discount_id": self.discount_id,
            "discount_cents": self.discount_cents,
            "tax_percentage": str(self.tax_percentage),
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "gateway_reference": self.gateway_reference,
            "gateway_raw_status": self.gateway_raw_status,
            "gateway_payment_type": self.gateway_payment_type,
            "gateway_redirect_url": self.gateway_redirect_url,
            "payment_expires_at": to_utc_z(self.payment_expires_at),
            "paid_at": to_utc_z(self.paid_at),
            "amount_received_cents": self.amount_received_cents,
            "change_cents": self.change_cents,
            "status": self.status,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "needs_review": self.needs_review,
            "review_reason": self.review_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderLine(db.Model):
    """
    Line item snapshot.

    Name and unit price are copied from the locked Product row at checkout and
    never re-read later, so price edits do not rewrite order history.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "subtotal_cents": self.line_total_cents,
        }


class PaymentEvent(db.Model):
    """
    Append-only ledger of gateway signals applied to orders.

    WHY: Webhooks and polls arrive unordered and duplicated. Keeping every
    signal with its outcome (applied / duplicate / ignored / conflict) makes
    the reconciliation history auditable even when Order state did not change.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.Index("ix_payment_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)

    source = db.Column(db.String(16), nullable=False)  # webhook, poll, sweep
    raw_status = db.Column(db.String(32), nullable=True)
    fraud_status = db.Column(db.String(32), nullable=True)
    payment_type = db.Column(db.String(64), nullable=True)

    outcome = db.Column(db.String(16), nullable=False)  # applied, duplicate, ignored, conflict
    payment_status_before = db.Column(db.String(16), nullable=False)
    payment_status_after = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("payment_events", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "source": self.source,
            "raw_status": self.raw_status,
            "fraud_status": self.fraud_status,
            "payment_type": self.payment_type,
            "outcome": self.outcome,
            "payment_status_before": self.payment_status_before,
            "payment_status_after": self.payment_status_after,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
