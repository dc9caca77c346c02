# stickershop/models/shipping.py
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from .base import ApiModel

# Carrier minimums: 8 x 6 x 2 inches, 1 lb (EasyPost weights are ounces)
MIN_LENGTH = 8.0
MIN_WIDTH = 6.0
MIN_HEIGHT = 2.0
MIN_WEIGHT_OZ = 16.0

MAJOR_CARRIERS = ("UPS", "FEDEX")

class VendorModel(BaseModel):
    """EasyPost objects keep their snake_case keys and any extra fields"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

class Address(VendorModel):
    id: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    street1: Optional[str] = None
    street2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: str = "US"
    phone: Optional[str] = None
    email: Optional[str] = None

class Parcel(VendorModel):
    length: float
    width: float
    height: float
    weight: float

    def with_carrier_minimums(self) -> "Parcel":
        """Raise every dimension below the carrier minimum"""
        return self.model_copy(update={
            "length": max(self.length, MIN_LENGTH),
            "width": max(self.width, MIN_WIDTH),
            "height": max(self.height, MIN_HEIGHT),
            "weight": max(self.weight, MIN_WEIGHT_OZ),
        })

class Rate(VendorModel):
    id: str
    carrier: str
    service: Optional[str] = None
    rate: Decimal
    currency: str = "USD"
    delivery_days: Optional[int] = None

class Shipment(VendorModel):
    id: str
    rates: List[Rate] = []
    tracking_code: Optional[str] = None
    selected_rate: Optional[Rate] = None
    postage_label: Optional[Dict[str, Any]] = None
    tracker: Optional[Dict[str, Any]] = None
    reference: Optional[str] = None

    def lowest_rate(self) -> Optional[Rate]:
        if not self.rates:
            return None
        return min(self.rates, key=lambda r: r.rate)

    def has_major_carrier(self) -> bool:
        carriers = {rate.carrier.upper() for rate in self.rates}
        return any(carrier in carriers for carrier in MAJOR_CARRIERS)

class Tracker(VendorModel):
    id: str
    tracking_code: str
    status: str = "unknown"
    carrier: Optional[str] = None
    public_url: Optional[str] = None
    est_delivery_date: Optional[str] = None

class TrackingStatus(ApiModel):
    order_status: str
    fulfillment_status: str
    proof_status: str
    progress_step: int

class ShipmentRequest(ApiModel):
    order_id: int
    from_address_id: Optional[str] = None
    dimensions: Optional[Parcel] = None

class BuyLabelRequest(ApiModel):
    order_id: int
    shipment_id: str
    rate_id: str
    insurance: Optional[str] = None
