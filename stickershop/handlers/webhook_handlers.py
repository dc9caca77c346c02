# stickershop/handlers/webhook_handlers.py
import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from ..config import Config
from ..models.result import ValidationFailed
from ..models.shipping import Tracker
from ..utils.formatters import utc_now
from ..utils.security import verify_stripe_signature
from .base_handler import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "errorKind": "validation_failed"}
    )

@router.post("/stripe")
async def stripe_webhook(request: Request, services=Depends(get_services)):
    payload = await request.body()
    try:
        verify_stripe_signature(payload, request.headers.get("stripe-signature"),
                                Config.STRIPE_WEBHOOK_SECRET)
        event = json.loads(payload)
    except ValidationFailed as e:
        logger.warning(f"Rejected Stripe webhook: {e.message}")
        return _bad_request(e.message)
    except ValueError:
        return _bad_request("Invalid JSON payload")

    result = await services.payments.handle_event(event)
    return {"received": True, "result": result}

@router.post("/easypost")
async def easypost_webhook(request: Request, services=Depends(get_services)):
    try:
        event = json.loads(await request.body())
    except ValueError:
        return _bad_request("Invalid JSON payload")
    if not isinstance(event, dict):
        return _bad_request("Invalid event payload")

    description = event.get("description") or ""
    result = event.get("result") or {}
    if (event.get("object") != "Event" or not description.startswith("tracker.")
            or result.get("object") != "Tracker"):
        logger.info(f"Ignoring EasyPost webhook: {description or event.get('object')}")
        return {"received": True, "processed": False}

    processed = await services.shipping.process_tracking_update(Tracker.model_validate(result))
    return {"received": True, "processed": processed}

@router.api_route("/test", methods=["GET", "POST"])
async def webhook_test():
    return {"status": "ok", "timestamp": utc_now().isoformat()}
