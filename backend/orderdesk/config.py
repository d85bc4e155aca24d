# backend/orderdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Store calendar: queue numbers reset on the local calendar day
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "Asia/Jakarta")
    STORE_HOURS_ENFORCED = _env_bool("STORE_HOURS_ENFORCED", True)
    DEFAULT_OPEN_TIME = "08:00"
    DEFAULT_CLOSE_TIME = "20:00"

    # Pricing defaults (overridable through the settings table)
    DEFAULT_TAX_PERCENTAGE = os.environ.get("DEFAULT_TAX_PERCENTAGE", "11")

    # Checkout behaviour
    PAYMENT_EXPIRY_MINUTES = int(os.environ.get("PAYMENT_EXPIRY_MINUTES", "15"))
    QUEUE_NUMBER_WIDTH = int(os.environ.get("QUEUE_NUMBER_WIDTH", "3"))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "20"))
    DUPLICATE_WINDOW_SECONDS = int(os.environ.get("DUPLICATE_WINDOW_SECONDS", "300"))
    MAX_CHECKOUT_ATTEMPTS_PER_WINDOW = int(os.environ.get("MAX_CHECKOUT_ATTEMPTS_PER_WINDOW", "3"))
    IDEMPOTENCY_KEY_TTL_MINUTES = 30

    # Payment gateway (Snap-style hosted payment page + core status API)
    GATEWAY_SERVER_KEY = os.environ.get("GATEWAY_SERVER_KEY", "")
    GATEWAY_CLIENT_KEY = os.environ.get("GATEWAY_CLIENT_KEY", "")
    GATEWAY_IS_PRODUCTION = _env_bool("GATEWAY_IS_PRODUCTION", False)
    GATEWAY_SNAP_URL = os.environ.get("GATEWAY_SNAP_URL", "https://app.sandbox.midtrans.com")
    GATEWAY_API_URL = os.environ.get("GATEWAY_API_URL", "https://api.sandbox.midtrans.com")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))
    GATEWAY_VERIFY_SIGNATURE = _env_bool("GATEWAY_VERIFY_SIGNATURE", True)
    GATEWAY_FINISH_URL = os.environ.get("GATEWAY_FINISH_URL")

    # Poll job only looks this far back
    PENDING_PAYMENT_MAX_AGE_HOURS = 24
