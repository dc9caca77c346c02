# stickershop/services/shipping_service.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import aiohttp
from ..config import Config
from ..models.order import Order, OrderItem, OrderStatus
from ..models.result import NotConfigured, UpstreamFailure, ValidationFailed
from ..models.shipping import Address, Parcel, Shipment, Tracker, TrackingStatus
from ..utils.rate_monitor import CallRateMonitor

# sleeps before each retry when rates come back empty or without UPS/FedEx
RATE_RETRY_DELAYS = (1, 2, 4, 8)

TRACKING_STATUS_MAP: Dict[str, Dict[str, Any]] = {
    "unknown": {"order_status": "Processing", "fulfillment_status": "unfulfilled",
                "proof_status": None, "progress_step": 0},
    "pre_transit": {"order_status": "Label Printed", "fulfillment_status": "partial",
                    "proof_status": "label_printed", "progress_step": 3},
    "in_transit": {"order_status": OrderStatus.SHIPPED.value, "fulfillment_status": "partial",
                   "proof_status": "shipped", "progress_step": 4},
    "out_for_delivery": {"order_status": "Out for Delivery", "fulfillment_status": "partial",
                         "proof_status": "shipped", "progress_step": 5},
    "delivered": {"order_status": OrderStatus.DELIVERED.value, "fulfillment_status": "fulfilled",
                  "proof_status": "delivered", "progress_step": 6},
    "available_for_pickup": {"order_status": "Available for Pickup", "fulfillment_status": "partial",
                             "proof_status": "shipped", "progress_step": 5},
    "exception": {"order_status": "Shipping Exception", "fulfillment_status": "partial",
                  "proof_status": "shipped", "progress_step": 4},
    "failure": {"order_status": "Shipping Failed", "fulfillment_status": "partial",
                "proof_status": "shipped", "progress_step": 4},
    "return_to_sender": {"order_status": "Returned to Sender", "fulfillment_status": "partial",
                         "proof_status": "shipped", "progress_step": 4},
}

def map_tracking_status(status: Optional[str], current_proof_status: Optional[str] = None) -> TrackingStatus:
    """Translate an EasyPost tracker status into order fields"""
    mapping = dict(TRACKING_STATUS_MAP.get(status or "unknown", TRACKING_STATUS_MAP["unknown"]))
    if mapping["proof_status"] is None:
        mapping["proof_status"] = current_proof_status or "building_proof"
    return TrackingStatus(**mapping)

def estimate_item_weight(item: OrderItem) -> float:
    """Rough item weight in ounces"""
    base_weight = 1.0
    category = (item.product_category or "").lower()
    if "sticker" in category:
        base_weight = 0.1
    elif "banner" in category:
        base_weight = 4.0

    size = (item.calculator_selections or {}).get("size") or {}
    try:
        area = float(size["width"]) * float(size["height"])
        base_weight = max(base_weight, area * 0.01)
    except (KeyError, TypeError, ValueError):
        pass

    return base_weight * item.quantity

def estimate_item_dimensions(item: OrderItem) -> Dict[str, float]:
    """Rough item footprint in inches"""
    length, width = 6.0, 4.0
    height = 0.5 if "banner" in (item.product_category or "").lower() else 0.1

    size = (item.calculator_selections or {}).get("size") or {}
    try:
        length = max(float(size["width"]), 6.0)
        width = max(float(size["height"]), 4.0)
    except (KeyError, TypeError, ValueError):
        pass

    return {"length": length, "width": width, "height": height}

def estimate_parcel(items: List[OrderItem]) -> Parcel:
    """Stack the items' footprints into one parcel"""
    weight = 0.0
    length = width = height = 0.0
    for item in items:
        weight += estimate_item_weight(item)
        dims = estimate_item_dimensions(item)
        length = max(length, dims["length"])
        width = max(width, dims["width"])
        height += dims["height"]
    return Parcel(length=length, width=width, height=height, weight=weight)

def format_order_for_shipment(order: Order, from_address: Union[str, Dict[str, Any]],
                              dimensions: Optional[Parcel] = None) -> Dict[str, Any]:
    """EasyPost shipment payload for an order"""
    shipping = order.shipping_address
    if not shipping:
        raise ValidationFailed("Order must have a shipping address")

    parcel = dimensions or estimate_parcel(order.items)
    name = f"{order.customer_first_name or ''} {order.customer_last_name or ''}".strip()

    to_address = Address(
        name=name or shipping.get("name"),
        company=shipping.get("company"),
        street1=shipping.get("address1") or shipping.get("line1"),
        street2=shipping.get("address2") or shipping.get("line2"),
        city=shipping.get("city"),
        state=shipping.get("province") or shipping.get("state"),
        zip=shipping.get("zip") or shipping.get("postal_code"),
        country=shipping.get("country") or "US",
        phone=shipping.get("phone") or order.customer_phone,
        email=order.customer_email,
    )

    from_data = {"id": from_address} if isinstance(from_address, str) else from_address
    return {
        "to_address": to_address.model_dump(exclude_none=True),
        "from_address": from_data,
        "parcel": parcel.model_dump(),
        "reference": order.order_number,
    }

class EasyPostClient:
    """Minimal EasyPost REST client"""

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None,
                 test_mode: Optional[bool] = None, monitor: Optional[CallRateMonitor] = None):
        self.api_key = api_key if api_key is not None else Config.EASYPOST_API_KEY
        self.api_url = (api_url or Config.EASYPOST_API_URL).rstrip("/")
        self.test_mode = Config.EASYPOST_TEST_MODE if test_mode is None else test_mode
        self.monitor = monitor or CallRateMonitor("easypost", Config.VENDOR_CALLS_PER_MINUTE_WARNING)
        self.logger = logging.getLogger(__name__)
        if not self.api_key:
            self.logger.warning("EasyPost API key not found in environment variables")

    @property
    def is_ready(self) -> bool:
        return bool(self.api_key)

    async def _request(self, method: str, path: str,
                       payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_ready:
            raise NotConfigured("EasyPost client is not configured")

        self.monitor.record()
        url = f"{self.api_url}/{path.lstrip('/')}"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method, url, json=payload, auth=aiohttp.BasicAuth(self.api_key, "")
                ) as response:
                    body = await response.json(content_type=None)
                    if response.status >= 400:
                        message = (body or {}).get("error", {}).get("message", response.reason)
                        raise UpstreamFailure(f"EasyPost error ({response.status}): {message}")
                    return body
        except aiohttp.ClientError as e:
            self.logger.error(f"EasyPost request {method} {path} failed: {e}")
            raise UpstreamFailure(f"EasyPost request failed: {e}") from e

    async def create_shipment(self, shipment_data: Dict[str, Any]) -> Shipment:
        body = await self._request("POST", "shipments", {"shipment": shipment_data})
        return Shipment.model_validate(body)

    async def buy_shipment(self, shipment_id: str, rate_id: str,
                           insurance: Optional[str] = None) -> Shipment:
        payload: Dict[str, Any] = {"rate": {"id": rate_id}}
        if insurance:
            payload["insurance"] = insurance
        body = await self._request("POST", f"shipments/{shipment_id}/buy", payload)
        return Shipment.model_validate(body)

    async def create_tracker(self, tracking_code: str, carrier: Optional[str] = None) -> Tracker:
        tracker: Dict[str, Any] = {"tracking_code": tracking_code}
        if carrier:
            tracker["carrier"] = carrier
        body = await self._request("POST", "trackers", {"tracker": tracker})
        return Tracker.model_validate(body)

    async def verify_address(self, address: Dict[str, Any]) -> Address:
        body = await self._request("POST", "addresses/create_and_verify", {"address": address})
        return Address.model_validate(body.get("address", body))

class ShippingService:
    """Shipments, labels and tracking for orders"""

    def __init__(self, client: EasyPostClient, order_service,
                 from_address_id: Optional[str] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self.orders = order_service
        self.from_address_id = from_address_id if from_address_id is not None else Config.SHIP_FROM_ADDRESS_ID
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    def status(self) -> Dict[str, Any]:
        return {
            "configured": self.client.is_ready,
            "testMode": self.client.test_mode,
            "fromAddressConfigured": bool(self.from_address_id),
            "callsLastMinute": self.client.monitor.calls_last_minute(),
        }

    async def create_shipment(self, shipment_data: Dict[str, Any]) -> Shipment:
        """Create a shipment, retrying while UPS/FedEx rates are missing"""
        shipment_data = dict(shipment_data)
        parcel = Parcel.model_validate(shipment_data["parcel"]).with_carrier_minimums()
        shipment_data["parcel"] = parcel.model_dump()

        shipment = await self.client.create_shipment(shipment_data)
        for attempt, delay in enumerate(RATE_RETRY_DELAYS, start=1):
            if shipment.rates and shipment.has_major_carrier():
                break
            self.logger.warning(
                f"Shipment {shipment.id} returned {len(shipment.rates)} rates without UPS/FedEx, "
                f"retry {attempt}/{len(RATE_RETRY_DELAYS)} in {delay}s"
            )
            await self.sleep(delay)
            shipment = await self.client.create_shipment(shipment_data)

        self.logger.info(f"Shipment {shipment.id} created with {len(shipment.rates)} rates")
        return shipment

    async def create_shipment_for_order(self, order_id: int, from_address_id: Optional[str] = None,
                                        dimensions: Optional[Parcel] = None) -> Shipment:
        from_address = from_address_id or self.from_address_id
        if not from_address:
            raise NotConfigured("No ship-from address configured")

        order = await self.orders.get_order(order_id)
        shipment = await self.create_shipment(
            format_order_for_shipment(order, from_address, dimensions)
        )
        await self.orders.update_order(order_id, {"easypost_shipment_id": shipment.id})
        return shipment

    async def buy_shipment(self, order_id: int, shipment_id: str, rate_id: str,
                        insurance: Optional[str] = None) -> Shipment:
        """Buy the label for a chosen rate; no retry"""
        shipment = await self.client.buy_shipment(shipment_id, rate_id, insurance)
        self.logger.info(f"Label purchased for shipment {shipment.id}")

        fields: Dict[str, Any] = {
            "easypost_shipment_id": shipment.id,
            "order_status": "Label Printed",
            "proof_status": "label_printed",
            "fulfillment_status": "partial",
        }
        if shipment.tracking_code:
            fields["tracking_number"] = shipment.tracking_code
        if shipment.selected_rate:
            fields["tracking_company"] = shipment.selected_rate.carrier
        tracker = shipment.tracker or {}
        if tracker.get("id"):
            fields["easypost_tracker_id"] = tracker["id"]
        if tracker.get("public_url"):
            fields["tracking_url"] = tracker["public_url"]

        await self.orders.update_order(order_id, fields)
        return shipment

    async def create_and_buy(self, order_id: int, use_lowest_rate: bool = True,
                             insurance: Optional[str] = None) -> Dict[str, Any]:
        shipment = await self.create_shipment_for_order(order_id)
        if not use_lowest_rate:
            return {"shipment": shipment, "requiresRateSelection": True}

        rate = shipment.lowest_rate()
        if rate is None:
            raise UpstreamFailure("No rates available for this shipment")
        bought = await self.buy_shipment(order_id, shipment.id, rate.id, insurance)
        return {"shipment": bought, "requiresRateSelection": False}

    async def track_shipment(self, tracking_code: str) -> Tracker:
        return await self.client.create_tracker(tracking_code)

    async def verify_address(self, address: Dict[str, Any]) -> Address:
        return await self.client.verify_address(address)

    async def create_tracker(self, tracking_code: str, order_id: int,
                             carrier: Optional[str] = None) -> Tracker:
        """Register a tracker and mark the order shipped"""
        tracker = await self.client.create_tracker(tracking_code, carrier)
        await self.orders.update_order(order_id, {
            "tracking_number": tracking_code,
            "tracking_company": tracker.carrier,
            "tracking_url": tracker.public_url,
            "easypost_tracker_id": tracker.id,
            "fulfillment_status": "partial",
            "order_status": OrderStatus.SHIPPED.value,
            "proof_status": "label_printed",
        })
        self.logger.info(f"Tracker {tracker.id} created for order {order_id}")
        return tracker

    async def process_tracking_update(self, tracker: Tracker) -> bool:
        """Apply a tracker webhook payload to the matching order"""
        order = await self.orders.find_order("tracking_number", tracker.tracking_code)
        if order is None:
            self.logger.warning(f"No order found with tracking number {tracker.tracking_code}")
            return False

        mapping = map_tracking_status(tracker.status, order.proof_status)
        fields: Dict[str, Any] = {
            "order_status": mapping.order_status,
            "fulfillment_status": mapping.fulfillment_status,
            "proof_status": mapping.proof_status,
            "easypost_tracker_id": tracker.id,
        }
        if tracker.carrier:
            fields["tracking_company"] = tracker.carrier
        if tracker.public_url:
            fields["tracking_url"] = tracker.public_url

        await self.orders.update_order(order.id, fields)
        self.logger.info(f"Order {order.order_number} tracking -> {tracker.status}")
        return True
