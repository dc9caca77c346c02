# stickershop/utils/formatters.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional
import pytz
from ..config import Config

CENT = Decimal("0.01")

def to_money(value: Any) -> Decimal:
    """Parse a number or numeric string and round it to cents"""
    if value is None or value == "":
        return Decimal(0)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)

def format_number(value: Decimal) -> str:
    """Drop a zero fractional part: 10.00 -> 10, 5.50 -> 5.5"""
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(value.to_integral_value())
    return format(value.normalize(), "f")

def format_datetime(dt: datetime) -> str:
    """Format a timestamp in the shop's timezone"""
    shop_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(shop_tz).strftime("%Y-%m-%d %H:%M:%S")

def utc_now() -> datetime:
    return datetime.now(pytz.utc)

def format_discount_display(discount: Optional[Any]) -> str:
    """Human readable discount: '10% off', '$5 off' or 'Free shipping'"""
    if not discount:
        return ""

    if isinstance(discount, dict):
        discount_type = discount.get("discount_type")
        value = discount.get("discount_value", 0)
    else:
        discount_type = getattr(discount, "discount_type", None)
        value = getattr(discount, "discount_value", 0)

    discount_type = getattr(discount_type, "value", discount_type)
    if discount_type == "percentage":
        return f"{format_number(value)}% off"
    elif discount_type == "fixed_amount":
        return f"${format_number(value)} off"
    elif discount_type == "free_shipping":
        return "Free shipping"
    return ""
