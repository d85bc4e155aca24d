from __future__ import annotations

import re
from typing import Any

from .services.inventory_service import CartItem
from .services.checkout_service import CustomerInfo


# Largest quantity a single cart line may request
MAX_LINE_QUANTITY = 999

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """400-level input problem."""


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer parsing for JSON input.

    Rejects bools, floats, decimals and scientific notation rather than
    silently truncating them.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and parsed < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return parsed


def parse_customer(data: Any) -> CustomerInfo:
    if not isinstance(data, dict):
        raise ValidationError("customer is required")
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = (data.get("phone") or "").strip() or None
    if not name:
        raise ValidationError("customer.name is required")
    if not EMAIL_RE.match(email):
        raise ValidationError("customer.email is not a valid e-mail address")
    return CustomerInfo(name=name[:255], email=email[:255], phone=phone)


def parse_cart(data: Any) -> list[CartItem]:
    """
    Accept either {"<product_id>": qty, ...} or [{"product_id": .., "quantity": ..}, ...].
    """
    if isinstance(data, dict):
        pairs = list(data.items())
    elif isinstance(data, list):
        pairs = []
        for entry in data:
            if not isinstance(entry, dict):
                raise ValidationError("cart_items entries must be objects")
            pairs.append((entry.get("product_id"), entry.get("quantity")))
    else:
        raise ValidationError("cart_items is required")

    if not pairs:
        raise ValidationError("cart_items must not be empty")

    items = []
    for product_id, quantity in pairs:
        pid = parse_int(product_id, "product_id", minimum=1)
        qty = parse_int(quantity, "quantity", minimum=1)
        if qty > MAX_LINE_QUANTITY:
            raise ValidationError(f"quantity must be at most {MAX_LINE_QUANTITY}")
        items.append(CartItem(product_id=pid, quantity=qty))
    return items


def optional_str(value: Any, field: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None
