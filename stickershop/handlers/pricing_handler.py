# stickershop/handlers/pricing_handler.py
from fastapi import APIRouter, Depends
from ..models.pricing import QuoteRequest
from ..services.pricing_service import PRESET_SIZES
from .base_handler import get_services

router = APIRouter(prefix="/api/pricing", tags=["pricing"])

@router.get("/presets")
async def presets():
    return {name: size.model_dump(by_alias=True, mode="json") for name, size in PRESET_SIZES.items()}

@router.post("/quote")
async def quote(request: QuoteRequest, services=Depends(get_services)):
    return services.pricing.quote(request)

@router.post("/cart-item")
async def cart_item(request: QuoteRequest, services=Depends(get_services)):
    return services.pricing.build_cart_item(request)
