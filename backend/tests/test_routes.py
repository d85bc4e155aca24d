"""
HTTP surface tests: status codes, error bodies and the webhook contract.
"""

import pytest

from orderdesk.extensions import db
from orderdesk.models import Order

from conftest import make_discount, make_product, signed_notification


def checkout_body(product_id, quantity=1, payment_method="cash", email="route@example.com", **extra):
    body = {
        "customer": {"name": "Route Customer", "email": email, "phone": "0812"},
        "cart_items": [{"product_id": product_id, "quantity": quantity}],
        "payment_method": payment_method,
    }
    body.update(extra)
    return body


class TestCheckoutRoutes:

    def test_checkout_created(self, client, db_session):
        p = make_product(stock=5)

        resp = client.post("/api/checkout", json=checkout_body(p.id, 2))

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["is_duplicate"] is False
        assert data["order"]["queue_number"] == "001"
        assert data["order"]["items"][0]["quantity"] == 2
        assert data["order"]["total_cents"] == 44400
        assert data["payment"] is None

    def test_cart_as_mapping(self, client, db_session):
        p = make_product(stock=5)
        body = checkout_body(p.id)
        body["cart_items"] = {str(p.id): 3}

        resp = client.post("/api/checkout", json=body)

        assert resp.status_code == 201
        assert resp.get_json()["order"]["total_items"] == 3

    def test_replay_with_idempotency_key(self, client, db_session):
        p = make_product(stock=5)
        headers = {"X-Idempotency-Key": "key-123"}

        first = client.post("/api/checkout", json=checkout_body(p.id), headers=headers)
        second = client.post("/api/checkout", json=checkout_body(p.id), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["is_duplicate"] is True
        assert second.headers["X-Idempotency-Key"] == "key-123"
        assert second.get_json()["order"]["order_code"] == first.get_json()["order"]["order_code"]
        assert db.session.query(Order).count() == 1

    def test_identical_resubmission_without_key_is_rejected(self, client, db_session):
        p = make_product(stock=5)

        client.post("/api/checkout", json=checkout_body(p.id))
        resp = client.post("/api/checkout", json=checkout_body(p.id))

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "duplicate_order"

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda b: b.pop("customer"),
            lambda b: b["customer"].update(email="not-an-email"),
            lambda b: b.update(cart_items=[]),
            lambda b: b.update(cart_items=[{"product_id": 1, "quantity": 0}]),
            lambda b: b.update(cart_items=[{"product_id": 1, "quantity": 1.5}]),
            lambda b: b.pop("payment_method"),
        ],
    )
    def test_invalid_body(self, client, db_session, mutate):
        body = checkout_body(1)
        mutate(body)

        resp = client.post("/api/checkout", json=body)

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_unknown_payment_method(self, client, db_session):
        p = make_product()

        resp = client.post("/api/checkout", json=checkout_body(p.id, payment_method="bitcoin"))

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_cart"

    def test_insufficient_stock(self, client, db_session):
        p = make_product(stock=1)

        resp = client.post("/api/checkout", json=checkout_body(p.id, 2))

        assert resp.status_code == 409
        data = resp.get_json()
        assert data["code"] == "insufficient_stock"
        assert data["details"]["product_id"] == p.id
        assert data["details"]["available"] == 1

    def test_gateway_checkout_returns_payment_page(self, client, db_session):
        p = make_product()

        resp = client.post("/api/checkout", json=checkout_body(p.id, payment_method="gateway"))

        assert resp.status_code == 201
        payment = resp.get_json()["payment"]
        assert payment["token"].startswith("tok-")
        assert payment["client_key"] == "test-client-key"
        assert payment["expires_at"].endswith("Z")

    def test_failed_charge_is_bad_gateway(self, client, db_session, fake_gateway):
        p = make_product()
        fake_gateway.fail_charge = True

        resp = client.post("/api/checkout", json=checkout_body(p.id, payment_method="gateway"))

        assert resp.status_code == 502
        assert resp.get_json()["code"] == "gateway_charge_failed"

    def test_validate_cart(self, client, db_session):
        p = make_product(stock=1)

        resp = client.post("/api/checkout/validate-cart", json={"cart_items": [{"product_id": p.id, "quantity": 3}]})

        data = resp.get_json()
        assert resp.status_code == 200
        assert data["valid"] is False
        assert data["issues"][0]["issue"] == "insufficient"

    def test_config(self, client, db_session):
        data = client.get("/api/checkout/config").get_json()

        assert data["tax_percentage"] == "11"
        assert data["is_store_open"] is True
        assert data["payment_expiry_minutes"] == 15

    def test_idempotency_key_and_history(self, client, db_session):
        p = make_product()
        key_resp = client.post("/api/checkout/idempotency-key", json={"customer_email": "route@example.com"})
        key = key_resp.get_json()["idempotency_key"]
        client.post("/api/checkout", json=checkout_body(p.id), headers={"X-Idempotency-Key": key})

        history = client.get("/api/checkout/history?customer_email=route@example.com").get_json()

        assert key_resp.status_code == 200
        assert len(history["orders"]) == 1
        assert client.get("/api/checkout/history").status_code == 400


class TestPaymentRoutes:

    def _gateway_order(self, client):
        p = make_product()
        resp = client.post("/api/checkout", json=checkout_body(p.id, payment_method="gateway"))
        return resp.get_json()["order"]

    def test_signed_notification_pays_order(self, client, db_session, notifier):
        order = self._gateway_order(client)

        resp = client.post(
            "/api/payments/notification",
            json=signed_notification(order["gateway_reference"], "settlement"),
        )

        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok"}
        status = client.get(f"/api/payments/{order['order_code']}/status").get_json()
        assert status["payment_status"] == "paid"
        assert status["order"]["status"] == "waiting"
        assert notifier.count("confirmation_email", order["order_code"]) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"order_id": "SO-UNKNOWN", "transaction_status": "settlement"},
            {"order_id": "SO-UNKNOWN", "transaction_status": "settlement", "signature_key": "bad"},
        ],
    )
    def test_rejected_notifications_still_answer_ok(self, client, db_session, payload):
        resp = client.post("/api/payments/notification", json=payload)

        assert resp.status_code == 200

    def test_bad_signature_does_not_pay(self, client, db_session):
        order = self._gateway_order(client)
        payload = signed_notification(order["gateway_reference"], "settlement")
        payload["signature_key"] = "f" * 128

        client.post("/api/payments/notification", json=payload)

        status = client.get(f"/api/payments/{order['order_code']}/status").get_json()
        assert status["payment_status"] == "pending"

    def test_status_of_unknown_order(self, client, db_session):
        resp = client.get("/api/payments/SO-NOPE0/status")

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"


class TestOrderRoutes:

    def test_get_order(self, client, db_session):
        p = make_product()
        code = client.post("/api/checkout", json=checkout_body(p.id)).get_json()["order"]["order_code"]

        resp = client.get(f"/api/orders/{code}")

        assert resp.status_code == 200
        assert resp.get_json()["order"]["order_code"] == code
        assert client.get("/api/orders/SO-NOPE0").status_code == 404

    def test_staff_status_flow(self, client, db_session):
        p = make_product()
        code = client.post("/api/checkout", json=checkout_body(p.id)).get_json()["order"]["order_code"]

        short = client.post(f"/api/orders/{code}/status", json={"status": "completed", "amount_received_cents": 100})
        done = client.post(f"/api/orders/{code}/status", json={"status": "completed", "amount_received_cents": 25000})
        again = client.post(f"/api/orders/{code}/status", json={"status": "cancelled"})

        assert short.status_code == 409
        assert done.status_code == 200
        order = done.get_json()["order"]
        assert order["payment_status"] == "paid"
        assert order["change_cents"] == 2800
        assert again.status_code == 409
        assert again.get_json()["code"] == "invalid_transition"

    def test_payment_events_and_review_queue(self, client, db_session):
        p = make_product()
        order = client.post("/api/checkout", json=checkout_body(p.id, payment_method="gateway")).get_json()["order"]
        client.post(
            "/api/payments/notification",
            json=signed_notification(order["gateway_reference"], "capture", fraud_status="challenge"),
        )

        events = client.get(f"/api/orders/{order['order_code']}/payment-events").get_json()["events"]
        review = client.get("/api/orders/review").get_json()["orders"]

        assert [e["outcome"] for e in events] == ["applied"]
        assert [o["order_code"] for o in review] == [order["order_code"]]


class TestDiscountRoutes:

    def test_verify_unknown_code(self, client, db_session):
        resp = client.post("/api/discounts/verify", json={"code": "NOPE", "amount_cents": 10000})

        assert resp.status_code == 400
        data = resp.get_json()
        assert data["valid"] is False
        assert data["code"] == "invalid_discount"

    def test_verify_code(self, client, db_session):
        make_discount(name="Hemat", code="HEMAT10", requires_code=True, percentage=10)

        data = client.post("/api/discounts/verify", json={"code": "HEMAT10", "amount_cents": 20000}).get_json()

        assert data["valid"] is True
        assert data["discount"]["discount_cents"] == 2000

    def test_available(self, client, db_session):
        make_discount(name="Auto", percentage=5)

        data = client.get("/api/discounts/available?amount_cents=10000").get_json()

        assert [d["name"] for d in data["discounts"]] == ["Auto"]


def test_health(client, db_session):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"
