# Overview: Flask API routes for storefront discount lookups.

# backend/orderdesk/routes/discounts.py
"""Discount API"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderDeskError
from ..services import discount_service
from ..validation import ValidationError, parse_int, optional_str


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.post("/verify")
def verify_discount_route():
    try:
        data = request.get_json(silent=True) or {}
        code = optional_str(data.get("code"), "code", 64)
        if not code:
            return jsonify({"error": "code required", "code": "validation_error", "details": {}}), 400
        amount = parse_int(data.get("amount_cents", 0), "amount_cents", minimum=0)
        discount = discount_service.verify_code(
            code,
            amount,
            customer_email=optional_str(data.get("customer_email"), "customer_email"),
            device_id=optional_str(data.get("device_id"), "device_id", 128),
        )
        return jsonify({"valid": True, "discount": discount}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400
    except OrderDeskError as e:
        return jsonify({"valid": False, **e.to_dict()}), e.http_status
    except Exception:
        current_app.logger.exception("Failed to verify discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.get("/available")
def available_discounts_route():
    try:
        amount = parse_int(request.args.get("amount_cents", "0"), "amount_cents", minimum=0)
        return jsonify({"discounts": discount_service.available_discounts(amount)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400
