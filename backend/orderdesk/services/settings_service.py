from __future__ import annotations

import json
from datetime import datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Setting
from orderdesk.time_utils import store_now


TAX_PERCENTAGE_KEY = "tax_percentage"
STORE_CLOSED_KEY = "store_closed"
WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
VALUE_TYPES = {"string", "int", "decimal", "bool", "json"}


class SettingsError(ValueError):
    pass


class SettingsValidationError(SettingsError):
    pass


def _decode(setting: Setting) -> Any:
    raw = setting.value
    if raw is None:
        return None
    kind = setting.value_type
    try:
        if kind == "int":
            return int(raw)
        if kind == "decimal":
            return Decimal(raw)
        if kind == "bool":
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        if kind == "json":
            return json.loads(raw)
    except (ValueError, InvalidOperation) as exc:
        raise SettingsValidationError(f"Setting {setting.key} holds an invalid {kind} value") from exc
    return raw


def _encode(value: Any, value_type: str) -> str | None:
    if value is None:
        return None
    if value_type == "bool":
        return "true" if value in (True, "true", "1", 1, "yes", "on") else "false"
    if value_type == "json":
        return json.dumps(value)
    if value_type == "decimal":
        try:
            return str(Decimal(str(value)))
        except InvalidOperation as exc:
            raise SettingsValidationError(f"{value!r} is not a decimal") from exc
    if value_type == "int":
        try:
            return str(int(value))
        except (TypeError, ValueError) as exc:
            raise SettingsValidationError(f"{value!r} is not an integer") from exc
    return str(value)


def get_setting(key: str, default: Any = None) -> Any:
    setting = db.session.query(Setting).filter_by(key=key).first()
    if setting is None or setting.value is None:
        return default
    return _decode(setting)


def set_setting(key: str, value: Any, value_type: str = "string", description: str | None = None) -> Setting:
    """Upsert a setting. Commits."""
    if value_type not in VALUE_TYPES:
        raise SettingsValidationError(f"Unknown value_type {value_type}")
    encoded = _encode(value, value_type)
    setting = db.session.query(Setting).filter_by(key=key).first()
    if setting is None:
        setting = Setting(key=key, value_type=value_type)
        db.session.add(setting)
    setting.value_type = value_type
    setting.value = encoded
    if description is not None:
        setting.description = description
    db.session.commit()
    return setting


def seed_defaults() -> int:
    """Create any missing default settings; existing values are left alone."""
    cfg = current_app.config
    defaults = [
        (TAX_PERCENTAGE_KEY, cfg["DEFAULT_TAX_PERCENTAGE"], "decimal", "Tax applied to the discounted subtotal"),
        (STORE_CLOSED_KEY, "false", "bool", "Manually close the store for online orders"),
    ]
    for day in WEEKDAYS:
        defaults.append((f"{day}_open", cfg["DEFAULT_OPEN_TIME"], "string", f"Opening time on {day.title()}"))
        defaults.append((f"{day}_close", cfg["DEFAULT_CLOSE_TIME"], "string", f"Closing time on {day.title()}"))

    existing = {s.key for s in db.session.query(Setting.key).all()}
    created = 0
    for key, value, value_type, description in defaults:
        if key in existing:
            continue
        db.session.add(Setting(key=key, value=value, value_type=value_type, description=description))
        created += 1
    db.session.commit()
    return created


def get_tax_percentage() -> Decimal:
    value = get_setting(TAX_PERCENTAGE_KEY)
    if value is None:
        return Decimal(str(current_app.config["DEFAULT_TAX_PERCENTAGE"]))
    return Decimal(str(value))


def _parse_clock(value: str) -> time:
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as exc:
        raise SettingsValidationError(f"Invalid time {value!r}, expected HH:MM") from exc


def is_store_open(now: datetime | None = None) -> bool:
    """
    Store is open when not manually closed and local time is within the day's hours.

    A close time earlier than the open time means the store closes after
    midnight.
    """
    if get_setting(STORE_CLOSED_KEY, False):
        return False
    if not current_app.config.get("STORE_HOURS_ENFORCED", True):
        return True

    local = store_now(current_app.config["STORE_TIMEZONE"], now)
    day = WEEKDAYS[local.weekday()]
    open_at = _parse_clock(str(get_setting(f"{day}_open", current_app.config["DEFAULT_OPEN_TIME"])))
    close_at = _parse_clock(str(get_setting(f"{day}_close", current_app.config["DEFAULT_CLOSE_TIME"])))
    clock = local.time().replace(tzinfo=None)

    if open_at <= close_at:
        return open_at <= clock <= close_at
    return clock >= open_at or clock <= close_at
