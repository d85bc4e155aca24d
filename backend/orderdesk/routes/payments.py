# Overview: Flask API routes for gateway notifications and payment status polling.

# backend/orderdesk/routes/payments.py
"""Payment gateway inbound API"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import OrderDeskError
from ..services import reconciliation_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/notification")
def gateway_notification_route():
    """
    Gateway webhook.

    Always answers 200: rejected or unknown notifications are logged, and a
    non-2xx answer would only make the provider retry the same payload.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form.to_dict()
    result = reconciliation_service.handle_webhook(payload)
    if not result.accepted:
        current_app.logger.info("Gateway notification not applied: %s", result.reason)
    return jsonify({"status": "ok"}), 200


@payments_bp.get("/<order_code>/status")
def payment_status_route(order_code: str):
    try:
        return jsonify(reconciliation_service.poll_payment_status(order_code)), 200
    except OrderDeskError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check payment status")
        return jsonify({"error": "Internal server error"}), 500
