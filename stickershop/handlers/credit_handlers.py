# stickershop/handlers/credit_handlers.py
from fastapi import APIRouter, Depends, Query
from ..models.credit import AddCreditsInput, BulkCreditsInput
from ..models.result import Result
from .base_handler import get_services, require_admin

router = APIRouter(prefix="/api/credits", tags=["credits"])

@router.get("/transactions", dependencies=[Depends(require_admin)])
async def all_transactions(limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0),
                           services=Depends(get_services)):
    return await services.credits.get_all_transactions(limit, offset)

@router.post("/add", dependencies=[Depends(require_admin)])
async def add_credits(data: AddCreditsInput, services=Depends(get_services)):
    entry = await services.credits.add_credits(
        data.user_id, data.amount, data.reason, created_by="admin", expires_at=data.expires_at
    )
    return Result.ok(entry)

@router.post("/add-all", dependencies=[Depends(require_admin)])
async def add_credits_to_all(data: BulkCreditsInput, services=Depends(get_services)):
    count = await services.credits.add_credits_to_all_users(data.amount, data.reason, created_by="admin")
    return Result.ok({"usersCredited": count})

@router.get("/{user_id}/balance")
async def get_balance(user_id: str, services=Depends(get_services)):
    return await services.credits.get_balance(user_id)

@router.get("/{user_id}/history")
async def get_history(user_id: str, services=Depends(get_services)):
    return await services.credits.get_history(user_id)

@router.get("/{user_id}/notifications")
async def get_notifications(user_id: str, services=Depends(get_services)):
    return await services.credits.get_unread_notifications(user_id)

@router.post("/{user_id}/notifications/read")
async def mark_notifications_read(user_id: str, services=Depends(get_services)):
    return Result.ok({"marked": await services.credits.mark_notifications_read(user_id)})
