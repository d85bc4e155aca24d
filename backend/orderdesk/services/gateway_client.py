# Overview: HTTP client for the hosted payment gateway (charge creation, status query, expiry, webhook signatures).

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any

import httpx
from flask import current_app


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""
    def __init__(self, message: str, details: dict | None = None, status_code: int | None = None):
        super().__init__(message)
        self.details = details or {}
        self.status_code = status_code


@dataclass
class ChargeResult:
    token: str
    redirect_url: str
    gateway_reference: str


@dataclass
class GatewayStatus:
    """
    Provider view of one charge.

    `found=False` means the provider has no record of the reference (the
    customer never opened the payment page). That is not an error: there is
    simply nothing to reconcile yet.
    """
    gateway_reference: str
    found: bool = True
    transaction_status: str | None = None
    fraud_status: str | None = None
    payment_type: str | None = None
    status_code: str | None = None
    gross_amount: str | None = None
    raw: dict = field(default_factory=dict)


class PaymentGateway:
    """
    Snap-style hosted payment page plus the core status API.

    Registered as a Flask extension; services look it up through
    get_gateway() so tests can swap in a fake or an httpx.MockTransport.
    """

    extension_name = "payment_gateway"

    def __init__(self, app=None, *, transport: httpx.BaseTransport | None = None):
        self.transport = transport
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.config.setdefault("GATEWAY_SERVER_KEY", "")
        app.config.setdefault("GATEWAY_SNAP_URL", "https://app.sandbox.midtrans.com")
        app.config.setdefault("GATEWAY_API_URL", "https://api.sandbox.midtrans.com")
        app.config.setdefault("GATEWAY_TIMEOUT_SECONDS", 10.0)
        app.config.setdefault("PAYMENT_EXPIRY_MINUTES", 15)
        app.extensions[self.extension_name] = self

    # =============================================================================
    # TRANSPORT
    # =============================================================================

    def _client(self, base_url: str) -> httpx.Client:
        cfg = current_app.config
        return httpx.Client(
            base_url=base_url,
            auth=(cfg["GATEWAY_SERVER_KEY"], ""),
            timeout=cfg["GATEWAY_TIMEOUT_SECONDS"],
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            transport=self.transport,
        )

    def _request(self, base_url: str, method: str, path: str, payload: dict | None = None) -> httpx.Response:
        try:
            with self._client(base_url) as client:
                return client.request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise GatewayError("Payment gateway timed out", details={"path": path}) from exc
        except httpx.HTTPError as exc:
            raise GatewayError("Payment gateway unreachable", details={"path": path, "reason": str(exc)}) from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    # =============================================================================
    # OPERATIONS
    # =============================================================================

    def create_charge(self, order) -> ChargeResult:
        """
        Open a hosted payment page for an order.

        Amounts go out in minor units. The item list is built so it sums to
        the order total: one row per line, a negative DISCOUNT row and a TAX
        row.
        """
        payload = self.build_charge_payload(order)
        response = self._request(current_app.config["GATEWAY_SNAP_URL"], "POST", "/snap/v1/transactions", payload)
        body = self._json(response)
        if response.status_code >= 400:
            raise GatewayError(
                "Payment gateway rejected the charge",
                details={"error_messages": body.get("error_messages", [])},
                status_code=response.status_code,
            )
        token = body.get("token")
        if not token:
            raise GatewayError("Payment gateway returned no token", status_code=response.status_code)
        return ChargeResult(
            token=token,
            redirect_url=body.get("redirect_url", ""),
            gateway_reference=order.gateway_reference,
        )

    def build_charge_payload(self, order) -> dict[str, Any]:
        items = [
            {
                "id": str(line.product_id),
                "price": line.unit_price_cents,
                "quantity": line.quantity,
                "name": line.product_name[:50],
            }
            for line in order.lines
        ]
        if order.discount_cents:
            items.append({"id": "DISCOUNT", "price": -order.discount_cents, "quantity": 1, "name": "Discount"})
        if order.tax_cents:
            items.append({"id": "TAX", "price": order.tax_cents, "quantity": 1, "name": f"Tax ({order.tax_percentage}%)"})

        payload: dict[str, Any] = {
            "transaction_details": {
                "order_id": order.gateway_reference,
                "gross_amount": order.total_cents,
            },
            "item_details": items,
            "customer_details": {
                "first_name": order.customer_name,
                "email": order.customer_email,
                "phone": order.customer_phone or "",
            },
            "expiry": {
                "unit": "minutes",
                "duration": current_app.config["PAYMENT_EXPIRY_MINUTES"],
            },
        }
        finish_url = current_app.config.get("GATEWAY_FINISH_URL")
        if finish_url:
            payload["callbacks"] = {"finish": finish_url}
        return payload

    def query_status(self, gateway_reference: str) -> GatewayStatus:
        response = self._request(current_app.config["GATEWAY_API_URL"], "GET", f"/v2/{gateway_reference}/status")
        body = self._json(response)
        status_code = str(body.get("status_code", response.status_code))
        if response.status_code == 404 or status_code == "404":
            return GatewayStatus(gateway_reference=gateway_reference, found=False, status_code="404", raw=body)
        if response.status_code >= 400:
            raise GatewayError(
                "Payment status query failed",
                details={"status_message": body.get("status_message")},
                status_code=response.status_code,
            )
        return GatewayStatus(
            gateway_reference=gateway_reference,
            transaction_status=body.get("transaction_status"),
            fraud_status=body.get("fraud_status"),
            payment_type=body.get("payment_type"),
            status_code=status_code,
            gross_amount=body.get("gross_amount"),
            raw=body,
        )

    def expire_charge(self, gateway_reference: str) -> GatewayStatus:
        """Ask the provider to close the payment page. Unknown references are not an error."""
        response = self._request(current_app.config["GATEWAY_API_URL"], "POST", f"/v2/{gateway_reference}/expire")
        body = self._json(response)
        status_code = str(body.get("status_code", response.status_code))
        if response.status_code == 404 or status_code == "404":
            return GatewayStatus(gateway_reference=gateway_reference, found=False, status_code="404", raw=body)
        if response.status_code >= 400:
            raise GatewayError(
                "Payment expiry request failed",
                details={"status_message": body.get("status_message")},
                status_code=response.status_code,
            )
        return GatewayStatus(
            gateway_reference=gateway_reference,
            transaction_status=body.get("transaction_status", "expire"),
            status_code=status_code,
            raw=body,
        )

    @staticmethod
    def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
        raw = f"{order_id}{status_code}{gross_amount}{server_key}"
        return hashlib.sha512(raw.encode("utf-8")).hexdigest()

    def verify_signature(self, payload: dict) -> bool:
        """SHA-512 over order_id + status_code + gross_amount + server key."""
        server_key = current_app.config.get("GATEWAY_SERVER_KEY") or ""
        signature = payload.get("signature_key")
        if not server_key or not signature:
            return False
        expected = self.compute_signature(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            server_key,
        )
        return hmac.compare_digest(expected, str(signature))


def get_gateway() -> PaymentGateway:
    return current_app.extensions[PaymentGateway.extension_name]
