# Overview: Post-commit notification dispatch (e-mail, realtime broadcast, status push).

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app


CONFIRMATION_EMAIL = "confirmation_email"
CANCELLATION_EMAIL = "cancellation_email"
BROADCAST = "broadcast"
STATUS_PUSH = "status_push"


@dataclass(frozen=True)
class NotificationEvent:
    """
    A side effect decided inside a transaction and delivered after it commits.

    Services return these instead of calling the notifier directly, so a
    rollback never leaves a sent e-mail behind and a failed delivery never
    unwinds a committed state change.
    """
    kind: str
    order_id: int | None = None
    name: str | None = None
    payload: dict = field(default_factory=dict)


@dataclass
class DispatchResult:
    event: NotificationEvent
    ok: bool
    error: str | None = None


def confirmation_email(order_id: int) -> NotificationEvent:
    return NotificationEvent(kind=CONFIRMATION_EMAIL, order_id=order_id)


def cancellation_email(order_id: int) -> NotificationEvent:
    return NotificationEvent(kind=CANCELLATION_EMAIL, order_id=order_id)


def broadcast(name: str, order_id: int | None = None, payload: dict | None = None) -> NotificationEvent:
    return NotificationEvent(kind=BROADCAST, order_id=order_id, name=name, payload=payload or {})


def status_push(order_id: int) -> NotificationEvent:
    return NotificationEvent(kind=STATUS_PUSH, order_id=order_id)


class Notifier:
    """Delivery interface. Implementations may raise; dispatch() isolates failures."""

    extension_name = "order_notifier"

    def init_app(self, app) -> None:
        app.extensions[self.extension_name] = self

    def send_order_confirmation(self, order: dict) -> None:
        raise NotImplementedError

    def send_order_cancellation(self, order: dict) -> None:
        raise NotImplementedError

    def broadcast(self, event_name: str, payload: dict) -> None:
        raise NotImplementedError

    def push_status(self, order: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default notifier: records deliveries in the application log."""

    def send_order_confirmation(self, order: dict) -> None:
        current_app.logger.info("Order confirmation for %s sent to %s", order["order_code"], order["customer_email"])

    def send_order_cancellation(self, order: dict) -> None:
        current_app.logger.info("Order cancellation for %s sent to %s", order["order_code"], order["customer_email"])

    def broadcast(self, event_name: str, payload: dict) -> None:
        current_app.logger.info("Broadcast %s: %s", event_name, payload.get("order_code") or payload.get("product_id"))

    def push_status(self, order: dict) -> None:
        current_app.logger.info("Status push for %s: %s/%s", order["order_code"], order["payment_status"], order["status"])


def get_notifier() -> Notifier:
    return current_app.extensions[Notifier.extension_name]


def dispatch(events) -> list[DispatchResult]:
    """
    Deliver events after commit. Never raises.

    Order events are rendered from the committed row, so receivers see the
    state that was actually persisted.
    """
    from ..extensions import db
    from ..models import Order

    notifier = get_notifier()
    results: list[DispatchResult] = []
    for event in events:
        try:
            order_data = None
            if event.order_id is not None:
                order = db.session.get(Order, event.order_id)
                if order is None:
                    raise LookupError(f"order {event.order_id} no longer exists")
                order_data = order.to_dict()

            if event.kind == CONFIRMATION_EMAIL:
                notifier.send_order_confirmation(order_data)
            elif event.kind == CANCELLATION_EMAIL:
                notifier.send_order_cancellation(order_data)
            elif event.kind == STATUS_PUSH:
                notifier.push_status(order_data)
            elif event.kind == BROADCAST:
                notifier.broadcast(event.name, event.payload or order_data or {})
            else:
                raise ValueError(f"unknown notification kind {event.kind!r}")
            results.append(DispatchResult(event=event, ok=True))
        except Exception as exc:
            current_app.logger.exception(
                "Notification %s (%s) failed for order %s", event.kind, event.name, event.order_id
            )
            results.append(DispatchResult(event=event, ok=False, error=str(exc)))
    return results
