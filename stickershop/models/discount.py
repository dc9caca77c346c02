# stickershop/models/discount.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional
from .base import ApiModel, TimeStampedModel

CENT = Decimal("0.01")

class DiscountType(str, Enum):
    """Discount types"""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"

class RejectionReason(str, Enum):
    """Why a code was refused at checkout"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    MINIMUM_NOT_MET = "minimum_not_met"

class DiscountCode(TimeStampedModel):
    """Discount code row"""
    id: int
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    minimum_order_amount: Decimal = Decimal(0)
    usage_limit: Optional[int] = None
    usage_count: int = 0
    valid_from: datetime
    valid_until: Optional[datetime] = None
    active: bool = True

class DiscountCodeInput(ApiModel):
    """Create/update payload; numeric fields may arrive as strings"""
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    minimum_order_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    active: Optional[bool] = None

class AppliedDiscount(ApiModel):
    id: int
    code: str
    discount_type: DiscountType
    discount_value: Decimal

class DiscountValidation(ApiModel):
    """Outcome of validating a code against an order amount"""
    valid: bool
    discount_code: Optional[AppliedDiscount] = None
    discount_amount: Decimal = Decimal(0)
    message: str
    reason: Optional[RejectionReason] = None

class DiscountUsage(ApiModel):
    id: int
    discount_code_id: int
    order_id: int
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    discount_amount: Decimal
    used_at: datetime
    order_number: Optional[str] = None
    customer_email: Optional[str] = None
    total_price: Optional[Decimal] = None

class DiscountStats(ApiModel):
    total_usage: int = 0
    total_discount_given: Decimal = Decimal(0)
    average_order_value: Decimal = Decimal(0)
    recent_usage: List[DiscountUsage] = []

def calculate_discount_amount(discount: DiscountCode, order_amount: Decimal) -> Decimal:
    """Discount granted by a code for the given order amount"""
    if discount.discount_type == DiscountType.PERCENTAGE:
        amount = order_amount * discount.discount_value / Decimal(100)
    elif discount.discount_type == DiscountType.FIXED_AMOUNT:
        amount = min(discount.discount_value, order_amount)
    else:
        # free shipping does not reduce the merchandise total
        amount = Decimal(0)
    return max(amount, Decimal(0)).quantize(CENT, rounding=ROUND_HALF_UP)

def evaluate_discount(discount: Optional[DiscountCode], order_amount: Decimal,
                      now: datetime) -> DiscountValidation:
    """Apply the eligibility rules to a looked-up code"""
    if discount is None:
        return DiscountValidation(
            valid=False,
            message="Invalid discount code",
            reason=RejectionReason.NOT_FOUND
        )

    if not discount.active:
        return DiscountValidation(
            valid=False,
            message="This discount code is no longer active",
            reason=RejectionReason.INACTIVE
        )

    if now < discount.valid_from:
        return DiscountValidation(
            valid=False,
            message="This discount code is not active yet",
            reason=RejectionReason.NOT_YET_VALID
        )

    if discount.valid_until is not None and now > discount.valid_until:
        return DiscountValidation(
            valid=False,
            message="This discount code has expired",
            reason=RejectionReason.EXPIRED
        )

    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        return DiscountValidation(
            valid=False,
            message="This discount code has reached its usage limit",
            reason=RejectionReason.USAGE_LIMIT_REACHED
        )

    if order_amount < discount.minimum_order_amount:
        return DiscountValidation(
            valid=False,
            message=f"Minimum order amount of ${discount.minimum_order_amount:.2f} required",
            reason=RejectionReason.MINIMUM_NOT_MET
        )

    return DiscountValidation(
        valid=True,
        discount_code=AppliedDiscount(
            id=discount.id,
            code=discount.code.upper(),
            discount_type=discount.discount_type,
            discount_value=discount.discount_value
        ),
        discount_amount=calculate_discount_amount(discount, order_amount),
        message="Discount code applied"
    )
