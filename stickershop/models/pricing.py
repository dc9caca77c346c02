# stickershop/models/pricing.py
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import Field
from .base import ApiModel

class BasePriceRow(ApiModel):
    sq_inches: int
    base_price: Decimal

class QuantityDiscountRow(ApiModel):
    quantity: int
    # square inches -> fraction off (0.43 == 43% off)
    discounts: Dict[int, Decimal]

class PriceQuote(ApiModel):
    base_price: Decimal
    discount_multiplier: Decimal
    final_price_per_sticker: Decimal
    total_price: Decimal
    sq_inches: Decimal
    quantity: int
    rush_order: bool = False
    vibrancy_boost: bool = False

class QuoteRequest(ApiModel):
    width: Optional[Decimal] = Field(default=None, gt=0)
    height: Optional[Decimal] = Field(default=None, gt=0)
    preset: Optional[str] = None
    quantity: int = Field(gt=0)
    rush_order: bool = False
    vibrancy_boost: bool = False
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    material: Optional[str] = None
    cut: Optional[str] = None

class PresetSize(ApiModel):
    width: Decimal
    height: Decimal
    label: str

    @property
    def sq_inches(self) -> Decimal:
        return self.width * self.height

class PricingTableData(ApiModel):
    base_pricing: List[BasePriceRow]
    quantity_discounts: List[QuantityDiscountRow]
