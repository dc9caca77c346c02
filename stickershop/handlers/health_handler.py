# stickershop/handlers/health_handler.py
from fastapi import APIRouter, Depends
from ..utils.formatters import format_datetime, utc_now
from .base_handler import get_services

router = APIRouter(tags=["health"])

@router.get("/")
async def root():
    return {"message": "Sticker Shop API", "status": "running"}

@router.get("/health")
async def health(services=Depends(get_services)):
    now = utc_now()
    return {
        "status": "healthy",
        "timestamp": now.isoformat(),
        "shopTime": format_datetime(now),
        "database": services.db.is_ready,
        "stripe": services.payments.stripe.is_ready,
        "easypost": services.shipping.client.is_ready,
    }
