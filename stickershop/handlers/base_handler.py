# stickershop/handlers/base_handler.py
from typing import Optional
from fastapi import Header, HTTPException, Request
from ..config import Config
from ..models.result import NotConfigured
from ..utils.security import verify_admin_key

def get_services(request: Request):
    """Service container attached to the app at startup"""
    return request.app.state.services

async def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Admin routes need the X-Admin-Key header"""
    if not Config.ADMIN_API_KEY:
        raise NotConfigured("ADMIN_API_KEY is not configured")
    if not verify_admin_key(x_admin_key, Config.ADMIN_API_KEY):
        raise HTTPException(status_code=401, detail="Admin access required")
