# Overview: Flask API routes for order lookup and staff fulfilment updates.

# backend/orderdesk/routes/orders.py
"""Order read model and status API"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderDeskError
from ..services import order_service
from ..validation import ValidationError, parse_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/<order_code>")
def get_order_route(order_code: str):
    try:
        order = order_service.get_order(order_code)
        return jsonify({"order": order.to_dict()}), 200
    except OrderDeskError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/<order_code>/payment-events")
def payment_events_route(order_code: str):
    try:
        order = order_service.get_order(order_code)
        return jsonify({"events": [ev.to_dict() for ev in order.payment_events]}), 200
    except OrderDeskError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/review")
def review_queue_route():
    """Orders flagged by the reconciler (fraud challenge, payment after cancellation)."""
    orders = order_service.list_orders_for_review()
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.post("/<order_code>/status")
def update_status_route(order_code: str):
    """
    Staff fulfilment update.

    Body: {"status": "awaiting_confirmation" | "completed" | "cancelled",
           "amount_received_cents": int (cash orders being completed)}
    """
    try:
        data = request.get_json(silent=True) or {}
        new_status = data.get("status")
        if not new_status:
            return jsonify({"error": "status required", "code": "validation_error", "details": {}}), 400
        amount = data.get("amount_received_cents")
        if amount is not None:
            amount = parse_int(amount, "amount_received_cents", minimum=0)

        order = order_service.update_status(order_code, new_status, amount_received_cents=amount)
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error", "details": {}}), 400
    except OrderDeskError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
