# stickershop/handlers/admin_handlers.py
from fastapi import APIRouter, Depends, Query
from ..models.result import Result
from .base_handler import get_services, require_admin

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

@router.post("/cleanup-abandoned")
async def cleanup_abandoned(max_age_hours: int = Query(24, ge=1, alias="maxAgeHours"),
                            services=Depends(get_services)):
    return Result.ok(await services.checkout.cleanup_abandoned_checkouts(max_age_hours))
