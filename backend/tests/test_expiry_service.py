"""
Expiry sweeper tests.

Verifies:
- Unpaid gateway orders past the payment window are cancelled and restocked
- Paid, cash and young orders are left alone
- Repeated sweeps and repeated cancellations never restock twice
- One failing order does not stop the sweep
"""

from datetime import timedelta

from orderdesk.extensions import db
from orderdesk.models import Order, PaymentEvent, Product
from orderdesk.services import expiry_service, reconciliation_service
from orderdesk.time_utils import utcnow

from conftest import make_product, place_order


def later(minutes=20):
    return utcnow() + timedelta(minutes=minutes)


def reload(order_id):
    return db.session.query(Order).filter_by(id=order_id).populate_existing().one()


class TestSweep:

    def test_cancels_stale_order_and_returns_stock(self, db_session, fake_gateway, notifier):
        p = make_product(stock=10)
        order = place_order(p.id, quantity=3, payment_method="gateway").order
        assert db.session.get(Product, p.id).stock == 7

        report = expiry_service.sweep(now=later())

        fresh = reload(order.id)
        assert report.to_dict() == {"examined": 1, "cancelled": 1, "skipped": 0, "failed": 0}
        assert fresh.payment_status == "expired"
        assert fresh.status == "cancelled"
        assert db.session.get(Product, p.id).stock == 10
        assert fake_gateway.expired == [order.gateway_reference]
        assert notifier.count("cancellation_email", order.order_code) == 1
        assert notifier.count("broadcast:order_cancelled", order.order_code) == 1

        event = db.session.query(PaymentEvent).filter_by(order_id=order.id).one()
        assert event.source == "sweep"
        assert event.payment_status_after == "expired"

    def test_second_sweep_finds_nothing(self, db_session):
        p = make_product(stock=10)
        place_order(p.id, payment_method="gateway")

        expiry_service.sweep(now=later())
        report = expiry_service.sweep(now=later(40))

        assert report.examined == 0
        assert db.session.get(Product, p.id).stock == 10

    def test_leaves_young_paid_and_cash_orders(self, db_session):
        p = make_product(stock=10)
        young = place_order(p.id, payment_method="gateway", who=1).order
        paid = place_order(p.id, payment_method="gateway", who=2).order
        cash = place_order(p.id, payment_method="cash", who=3).order
        reconciliation_service.apply_gateway_status(paid.id, "settlement")

        report = expiry_service.sweep(now=utcnow() + timedelta(minutes=5))
        assert report.examined == 0

        report = expiry_service.sweep(now=later())
        assert report.cancelled == 1
        assert reload(young.id).status == "cancelled"
        assert reload(paid.id).payment_status == "paid"
        assert reload(cash.id).status == "waiting"

    def test_gateway_failure_does_not_block_local_expiry(self, db_session, fake_gateway):
        p = make_product(stock=5)
        order = place_order(p.id, payment_method="gateway").order
        fake_gateway.fail_expire = True

        report = expiry_service.sweep(now=later())

        assert report.cancelled == 1
        assert reload(order.id).payment_status == "expired"
        assert db.session.get(Product, p.id).stock == 5

    def test_one_failure_does_not_stop_the_sweep(self, db_session, monkeypatch):
        p = make_product(stock=10)
        first = place_order(p.id, payment_method="gateway", who=1).order
        second = place_order(p.id, payment_method="gateway", who=2).order
        real_expire = expiry_service.expire_order

        def flaky(order_id, cutoff):
            if order_id == first.id:
                raise RuntimeError("boom")
            return real_expire(order_id, cutoff)

        monkeypatch.setattr(expiry_service, "expire_order", flaky)
        report = expiry_service.sweep(now=later())

        assert report.failed == 1
        assert report.cancelled == 1
        assert reload(first.id).payment_status == "pending"
        assert reload(second.id).payment_status == "expired"

    def test_expire_order_skips_order_paid_meanwhile(self, db_session):
        p = make_product(stock=10)
        order = place_order(p.id, payment_method="gateway").order
        reconciliation_service.apply_gateway_status(order.id, "settlement")

        assert expiry_service.expire_order(order.id, cutoff=later()) is None
        assert reload(order.id).payment_status == "paid"


class TestCancelOrderLocked:

    def test_restocks_exactly_once(self, db_session):
        p = make_product(stock=10)
        order = place_order(p.id, quantity=4, payment_method="gateway").order
        locked = reload(order.id)

        first = expiry_service.cancel_order_locked(locked, "expired", "test")
        second = expiry_service.cancel_order_locked(locked, "expired", "test")
        db.session.commit()

        assert len(first) == 3
        assert second == []
        assert db.session.get(Product, p.id).stock == 10
