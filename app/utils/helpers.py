from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

_CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_currency(value: Any) -> Decimal:
    try:
        return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except (TypeError, ValueError, InvalidOperation):
        return Decimal("0.00")


def to_minor_units(amount: Any) -> int:
    """29.99 -> 2999"""
    return int((round_currency(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: Any) -> Decimal:
    try:
        return round_currency(Decimal(int(value)) / 100)
    except (TypeError, ValueError, InvalidOperation):
        return Decimal("0.00")


def safe_int(value: Any, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None
