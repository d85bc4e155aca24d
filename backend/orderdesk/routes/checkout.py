# Overview: Flask API routes for checkout; parses input and returns JSON responses.

# backend/orderdesk/routes/checkout.py
"""Customer checkout API"""

from datetime import timedelta

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderDeskError
from ..services import checkout_service, inventory_service, settings_service, duplicate_guard_service
from ..services import order_service
from ..validation import ValidationError, parse_cart, parse_customer, optional_str
from orderdesk.time_utils import utcnow, to_utc_z


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
def checkout_route():
    """
    Place an order.

    Header X-Idempotency-Key (optional): resubmitting with the same key
    returns the original order instead of creating a second one.
    """
    try:
        data = request.get_json(silent=True) or {}
        customer = parse_customer(data.get("customer"))
        cart = parse_cart(data.get("cart_items"))
        payment_method = data.get("payment_method")
        if not payment_method:
            return jsonify({"error": "payment_method required", "code": "validation_error", "details": {}}), 400
        discount_code = optional_str(data.get("discount_code"), "discount_code", 64)
        notes = optional_str(data.get("notes"), "notes", 1000)
        device_id = optional_str(data.get("device_id"), "device_id", 128)
        idempotency_key = optional_str(request.headers.get("X-Idempotency-Key"), "X-Idempotency-Key", 128)

        result = checkout_service.checkout(
            customer,
            cart,
            payment_method,
            discount_code=discount_code,
            notes=notes,
            idempotency_key=idempotency_key,
            device_id=device_id,
        )

        body = {
            "order": result.order.to_dict(),
            "payment": result.payment,
            "is_duplicate": result.replayed,
        }
        response = jsonify(body)
        response.status_code = 200 if result.replayed else 201
        if idempotency_key:
            response.headers["X-Idempotency-Key"] = idempotency_key
        return response

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400
    except OrderDeskError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/validate-cart")
def validate_cart_route():
    """Read-only stock pre-check for the cart page."""
    try:
        data = request.get_json(silent=True) or {}
        cart = parse_cart(data.get("cart_items"))
        issues = inventory_service.validate_cart(cart)
        return jsonify({"valid": not issues, "issues": issues}), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400
    except Exception:
        current_app.logger.exception("Failed to validate cart")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/config")
def checkout_config_route():
    try:
        return jsonify({
            "tax_percentage": str(settings_service.get_tax_percentage()),
            "is_store_open": settings_service.is_store_open(),
            "payment_expiry_minutes": current_app.config["PAYMENT_EXPIRY_MINUTES"],
            "gateway_client_key": current_app.config.get("GATEWAY_CLIENT_KEY"),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load checkout config")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/idempotency-key")
def idempotency_key_route():
    """Mint a key the client sends back with its checkout request."""
    data = request.get_json(silent=True) or {}
    email = (data.get("customer_email") or "").strip()
    if not email:
        return jsonify({"error": "customer_email required", "code": "validation_error", "details": {}}), 400
    key = duplicate_guard_service.generate_idempotency_key(email)
    ttl = current_app.config.get("IDEMPOTENCY_KEY_TTL_MINUTES", 30)
    return jsonify({"idempotency_key": key, "expires_at": to_utc_z(utcnow() + timedelta(minutes=ttl))}), 200


@checkout_bp.get("/history")
def history_route():
    email = (request.args.get("customer_email") or "").strip()
    if not email:
        return jsonify({"error": "customer_email required", "code": "validation_error", "details": {}}), 400
    limit = min(request.args.get("limit", 20, type=int) or 20, 100)
    orders = order_service.list_customer_orders(email, limit=limit)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200
