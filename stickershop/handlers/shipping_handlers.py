# stickershop/handlers/shipping_handlers.py
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from ..models.base import ApiModel
from ..models.result import Result
from ..models.shipping import BuyLabelRequest, ShipmentRequest
from .base_handler import get_services, require_admin

router = APIRouter(tags=["shipping"])

class TrackerRequest(ApiModel):
    tracking_code: str
    order_id: int
    carrier: Optional[str] = None

class CreateAndBuyRequest(ApiModel):
    use_lowest_rate: bool = True
    insurance: Optional[str] = None

@router.get("/easypost/status")
async def easypost_status(services=Depends(get_services)):
    return services.shipping.status()

@router.post("/api/shipping/shipments", dependencies=[Depends(require_admin)])
async def create_shipment(data: ShipmentRequest, services=Depends(get_services)):
    shipment = await services.shipping.create_shipment_for_order(
        data.order_id, data.from_address_id, data.dimensions
    )
    return Result.ok(shipment)

@router.post("/api/shipping/labels", dependencies=[Depends(require_admin)])
async def buy_label(data: BuyLabelRequest, services=Depends(get_services)):
    shipment = await services.shipping.buy_shipment(
        data.order_id, data.shipment_id, data.rate_id, data.insurance
    )
    return Result.ok(shipment)

@router.post("/api/shipping/orders/{order_id}/create-and-buy", dependencies=[Depends(require_admin)])
async def create_and_buy(order_id: int, data: CreateAndBuyRequest = CreateAndBuyRequest(),
                         services=Depends(get_services)):
    result = await services.shipping.create_and_buy(order_id, data.use_lowest_rate, data.insurance)
    return Result.ok(result)

@router.post("/api/shipping/trackers", dependencies=[Depends(require_admin)])
async def create_tracker(data: TrackerRequest, services=Depends(get_services)):
    tracker = await services.shipping.create_tracker(data.tracking_code, data.order_id, data.carrier)
    return Result.ok(tracker)

@router.get("/api/shipping/track/{tracking_code}")
async def track_shipment(tracking_code: str, services=Depends(get_services)):
    return await services.shipping.track_shipment(tracking_code)

@router.post("/api/shipping/verify-address")
async def verify_address(address: Dict[str, Any], services=Depends(get_services)):
    return Result.ok(await services.shipping.verify_address(address))
