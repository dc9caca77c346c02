# stickershop/handlers/checkout_handler.py
from fastapi import APIRouter, Depends
from ..models.order import CheckoutRequest
from .base_handler import get_services

router = APIRouter(prefix="/api/checkout", tags=["checkout"])

@router.post("")
async def checkout(request: CheckoutRequest, services=Depends(get_services)):
    """Pending order plus Stripe session; partial failures come back in errors"""
    return await services.checkout.checkout(request)
