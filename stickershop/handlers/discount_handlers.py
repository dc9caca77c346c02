# stickershop/handlers/discount_handlers.py
import logging
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import Field
from ..models.base import ApiModel
from ..models.discount import DiscountCodeInput
from ..models.order import FinancialStatus
from ..models.result import Result, ValidationFailed
from .base_handler import get_services, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/discounts", tags=["discounts"])

class ValidateDiscountInput(ApiModel):
    code: str
    order_amount: Decimal = Field(ge=0)
    user_id: Optional[str] = None
    guest_email: Optional[str] = None

@router.post("/validate")
async def validate_discount(data: ValidateDiscountInput, services=Depends(get_services)):
    return await services.discounts.validate_code(
        data.code, data.order_amount, data.user_id, data.guest_email
    )

@router.get("", dependencies=[Depends(require_admin)])
async def list_discounts(services=Depends(get_services)):
    codes = await services.discounts.get_all_discount_codes()
    return [
        {**code.model_dump(by_alias=True, mode="json"),
         "display": services.discounts.format_discount_display(code)}
        for code in codes
    ]

@router.get("/{discount_id}", dependencies=[Depends(require_admin)])
async def get_discount(discount_id: int, services=Depends(get_services)):
    return await services.discounts.get_discount_code(discount_id)

@router.get("/{discount_id}/stats", dependencies=[Depends(require_admin)])
async def get_discount_stats(discount_id: int, services=Depends(get_services)):
    return await services.discounts.get_discount_stats(discount_id)

@router.post("", dependencies=[Depends(require_admin)])
async def create_discount(data: DiscountCodeInput, services=Depends(get_services)):
    created = await services.discounts.create_discount_code(data)
    logger.info(f"Discount code {created.code} created via API")
    return Result.ok(created)

@router.patch("/{discount_id}", dependencies=[Depends(require_admin)])
async def update_discount(discount_id: int, data: DiscountCodeInput,
                          services=Depends(get_services)):
    return Result.ok(await services.discounts.update_discount_code(discount_id, data))

@router.delete("/{discount_id}", dependencies=[Depends(require_admin)])
async def delete_discount(discount_id: int, services=Depends(get_services)):
    return Result.ok(await services.discounts.delete_discount_code(discount_id))

class ApplyDiscountInput(ApiModel):
    code: str

@router.post("/orders/{order_id}/apply", dependencies=[Depends(require_admin)])
async def apply_discount_to_order(order_id: int, data: ApplyDiscountInput,
                                  services=Depends(get_services)):
    """Apply a code to an existing order after checkout"""
    order = await services.orders.get_order(order_id)
    if order.financial_status != FinancialStatus.PENDING.value:
        raise ValidationFailed(f"Order {order.order_number} is not awaiting payment")
    if order.discount_code:
        raise ValidationFailed(f"Order {order.order_number} already has discount {order.discount_code}")

    validation = await services.discounts.validate_code(
        data.code, order.subtotal_price, order.user_id, order.guest_email
    )
    if not validation.valid:
        raise ValidationFailed(validation.message)

    await services.discounts.apply_discount_to_order(
        order_id, validation.discount_code.code, validation.discount_amount
    )
    await services.discounts.record_usage(
        validation.discount_code.id, order_id, order.user_id,
        order.guest_email, validation.discount_amount
    )
    logger.info(f"Discount {validation.discount_code.code} applied to order {order_id}")
    return Result.ok(validation)
