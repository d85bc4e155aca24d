"""
Pytest fixtures for OrderDesk backend tests.

Provides the in-memory application, per-test table cleanup, a fake payment
gateway, a recording notifier, and a file-backed application for threaded
concurrency tests.
"""

import threading

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.models import Product, Discount
from orderdesk.services import checkout_service
from orderdesk.services.checkout_service import CustomerInfo
from orderdesk.services.gateway_client import ChargeResult, GatewayError, GatewayStatus, PaymentGateway
from orderdesk.services.inventory_service import CartItem
from orderdesk.services.notification_service import Notifier


SERVER_KEY = "test-server-key"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'STORE_HOURS_ENFORCED': False,
    'GATEWAY_SERVER_KEY': SERVER_KEY,
    'GATEWAY_CLIENT_KEY': 'test-client-key',
    'GATEWAY_VERIFY_SIGNATURE': True,
}


# =============================================================================
# COLLABORATOR FAKES
# =============================================================================

class FakeGateway:
    """In-process stand-in for the hosted payment gateway."""

    def __init__(self):
        self.charges = []
        self.expired = []
        self.statuses = {}
        self.fail_charge = False
        self.fail_status = False
        self.fail_expire = False
        self._lock = threading.Lock()

    def create_charge(self, order):
        if self.fail_charge:
            raise GatewayError("Payment gateway unreachable", details={"reason": "test"})
        ref = order.gateway_reference
        with self._lock:
            self.charges.append(ref)
        return ChargeResult(token=f"tok-{ref}", redirect_url=f"https://pay.test/{ref}", gateway_reference=ref)

    def set_status(self, ref, transaction_status, fraud_status=None, payment_type="bank_transfer"):
        self.statuses[ref] = (transaction_status, fraud_status, payment_type)

    def query_status(self, ref):
        if self.fail_status:
            raise GatewayError("Payment gateway timed out")
        entry = self.statuses.get(ref)
        if entry is None:
            return GatewayStatus(gateway_reference=ref, found=False, status_code="404")
        status, fraud, payment_type = entry
        return GatewayStatus(
            gateway_reference=ref,
            transaction_status=status,
            fraud_status=fraud,
            payment_type=payment_type,
            status_code="200",
        )

    def expire_charge(self, ref):
        if self.fail_expire:
            raise GatewayError("Payment expiry request failed")
        with self._lock:
            self.expired.append(ref)
        return GatewayStatus(gateway_reference=ref, transaction_status="expire", status_code="407")

    def verify_signature(self, payload):
        return PaymentGateway().verify_signature(payload)


class RecordingNotifier(Notifier):
    """Captures deliveries; kinds listed in `fail_on` raise."""

    def __init__(self):
        self.sent = []
        self.fail_on = set()
        self._lock = threading.Lock()

    def _record(self, kind, key):
        if kind in self.fail_on:
            raise RuntimeError(f"{kind} delivery failed")
        with self._lock:
            self.sent.append((kind, key))

    def send_order_confirmation(self, order):
        self._record("confirmation_email", order["order_code"])

    def send_order_cancellation(self, order):
        self._record("cancellation_email", order["order_code"])

    def broadcast(self, event_name, payload):
        self._record(f"broadcast:{event_name}", payload.get("order_code") or payload.get("product_id"))

    def push_status(self, order):
        self._record("status_push", order["order_code"])

    def count(self, kind, key=None):
        return sum(1 for k, v in self.sent if k == kind and (key is None or v == key))


def signed_notification(order_id, transaction_status, gross_amount="22200.00", status_code="200", **extra):
    payload = {
        "order_id": order_id,
        "transaction_status": transaction_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        **extra,
    }
    payload["signature_key"] = PaymentGateway.compute_signature(order_id, status_code, gross_amount, SERVER_KEY)
    return payload


# =============================================================================
# APPLICATION
# =============================================================================

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def fake_gateway(app):
    original = app.extensions["payment_gateway"]
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = original


@pytest.fixture(scope='function')
def notifier(app):
    original = app.extensions["order_notifier"]
    recorder = RecordingNotifier()
    app.extensions["order_notifier"] = recorder
    yield recorder
    app.extensions["order_notifier"] = original


@pytest.fixture(scope='function')
def db_session(app, fake_gateway, notifier):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    File-backed application for threaded tests.

    In-memory SQLite shares a single connection between threads, which would
    hide real lock contention.
    """
    db_path = tmp_path / "concurrency.db"
    app = create_app({**TEST_CONFIG, 'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}"})
    app.extensions["payment_gateway"] = FakeGateway()
    app.extensions["order_notifier"] = RecordingNotifier()

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


# =============================================================================
# DATA HELPERS
# =============================================================================

def make_product(name="Nasi Goreng", price_cents=20000, stock=50, closed=False):
    product = Product(name=name, price_cents=price_cents, stock=stock, closed=closed)
    db.session.add(product)
    db.session.commit()
    return product


def make_discount(**kwargs):
    values = {
        "name": "Promo",
        "percentage": 10,
        "min_purchase_cents": 0,
        "is_active": True,
        "requires_code": False,
    }
    values.update(kwargs)
    discount = Discount(**values)
    db.session.add(discount)
    db.session.commit()
    return discount


def customer(n=1):
    return CustomerInfo(name=f"Customer {n}", email=f"customer{n}@example.com", phone="08123456789")


def place_order(product_id, quantity=1, payment_method="cash", who=1, **kwargs):
    return checkout_service.checkout(
        customer(who),
        [CartItem(product_id=product_id, quantity=quantity)],
        payment_method,
        **kwargs,
    )


@pytest.fixture(scope='function')
def product(db_session):
    return make_product()
