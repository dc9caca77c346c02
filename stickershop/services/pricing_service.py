# stickershop/services/pricing_service.py
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Union
from ..config import Config
from ..models.order import CartItem
from ..models.pricing import (
    BasePriceRow, PresetSize, PriceQuote, PricingTableData, QuantityDiscountRow, QuoteRequest
)
from ..models.result import NotConfigured, ValidationFailed
from ..utils.formatters import to_money

RUSH_MULTIPLIER = Decimal("1.4")
VIBRANCY_MULTIPLIER = Decimal("1.05")

PRESET_SIZES: Dict[str, PresetSize] = {
    "small": PresetSize(width=Decimal(2), height=Decimal(2), label="Small (2″ × 2″)"),
    "medium": PresetSize(width=Decimal(3), height=Decimal(3), label="Medium (3″ × 3″)"),
    "large": PresetSize(width=Decimal(4), height=Decimal(4), label="Large (4″ × 4″)"),
    "xlarge": PresetSize(width=Decimal(5), height=Decimal(5), label="X-Large (5″ × 5″)"),
}

def calculate_square_inches(width: Decimal, height: Decimal) -> Decimal:
    return Decimal(width) * Decimal(height)

class PricingTable:
    """Base price and quantity discount tables"""

    def __init__(self, base_pricing: List[BasePriceRow], quantity_discounts: List[QuantityDiscountRow]):
        if not base_pricing:
            raise ValidationFailed("Pricing table has no base prices")
        self.base_pricing = sorted(base_pricing, key=lambda row: row.sq_inches)
        self.quantity_discounts = sorted(quantity_discounts, key=lambda row: row.quantity)

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> "PricingTable":
        path = Path(path or Config.PRICING_TABLE_PATH)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = PricingTableData.model_validate(json.load(f))
        except FileNotFoundError as e:
            raise NotConfigured(f"Pricing table not found at {path}") from e
        return cls(data.base_pricing, data.quantity_discounts)

    def get_base_price(self, sq_inches: Decimal) -> Decimal:
        """Exact row, clamped at both ends, linear in between"""
        sq_inches = Decimal(sq_inches)
        rows = self.base_pricing

        for row in rows:
            if row.sq_inches == sq_inches:
                return row.base_price

        if sq_inches <= rows[0].sq_inches:
            return rows[0].base_price
        if sq_inches >= rows[-1].sq_inches:
            return rows[-1].base_price

        for lower, upper in zip(rows, rows[1:]):
            if lower.sq_inches <= sq_inches <= upper.sq_inches:
                ratio = (sq_inches - lower.sq_inches) / (upper.sq_inches - lower.sq_inches)
                return lower.base_price + ratio * (upper.base_price - lower.base_price)

        return rows[0].base_price

    def get_discount_multiplier(self, quantity: int, sq_inches: Decimal) -> Decimal:
        """Fraction off for the lower quantity tier and lower size column"""
        tier: Optional[QuantityDiscountRow] = None
        for row in self.quantity_discounts:
            if quantity >= row.quantity:
                tier = row
            else:
                break
        if tier is None or not tier.discounts:
            return Decimal(0)

        columns = sorted(tier.discounts)
        column = columns[0]
        for sq_in in columns:
            if sq_inches >= sq_in:
                column = sq_in
            else:
                break
        return tier.discounts.get(column, Decimal(0))

    def calculate_price(self, sq_inches: Decimal, quantity: int, rush_order: bool = False,
                        vibrancy_boost: bool = False) -> PriceQuote:
        if quantity <= 0:
            raise ValidationFailed("Quantity must be positive")
        sq_inches = Decimal(sq_inches)
        if sq_inches <= 0:
            raise ValidationFailed("Size must be positive")

        base_price = self.get_base_price(sq_inches)
        multiplier = self.get_discount_multiplier(quantity, sq_inches)

        per_sticker = base_price * (1 - multiplier) if multiplier > 0 else base_price
        if rush_order:
            per_sticker *= RUSH_MULTIPLIER
        if vibrancy_boost:
            per_sticker *= VIBRANCY_MULTIPLIER

        return PriceQuote(
            base_price=base_price,
            discount_multiplier=multiplier,
            final_price_per_sticker=per_sticker,
            total_price=to_money(per_sticker * quantity),
            sq_inches=sq_inches,
            quantity=quantity,
            rush_order=rush_order,
            vibrancy_boost=vibrancy_boost
        )

class PricingService:
    """Quotes and cart lines for the sticker calculator"""

    def __init__(self, table: Optional[PricingTable] = None):
        self._table = table
        self.logger = logging.getLogger(__name__)

    @property
    def table(self) -> PricingTable:
        if self._table is None:
            self._table = PricingTable.load()
            self.logger.info(f"Loaded pricing table from {Config.PRICING_TABLE_PATH}")
        return self._table

    @staticmethod
    def resolve_size(request: QuoteRequest) -> PresetSize:
        if request.preset:
            preset = PRESET_SIZES.get(request.preset)
            if preset is None:
                raise ValidationFailed(f"Unknown preset size: {request.preset}")
            return preset
        if request.width is None or request.height is None:
            raise ValidationFailed("Width and height are required without a preset")
        return PresetSize(
            width=request.width,
            height=request.height,
            label=f"Custom ({request.width}″ × {request.height}″)"
        )

    def quote(self, request: QuoteRequest) -> PriceQuote:
        size = self.resolve_size(request)
        return self.table.calculate_price(
            calculate_square_inches(size.width, size.height),
            request.quantity, request.rush_order, request.vibrancy_boost
        )

    def build_cart_item(self, request: QuoteRequest) -> CartItem:
        """Checkout line carrying the calculator selections"""
        size = self.resolve_size(request)
        quote = self.quote(request)
        selections = {
            "size": {
                "width": float(size.width),
                "height": float(size.height),
                "sqInches": float(size.sq_inches),
                "label": size.label,
                "preset": request.preset,
            },
            "quantity": request.quantity,
            "rush": request.rush_order,
            "vibrancyBoost": request.vibrancy_boost,
        }
        if request.material:
            selections["material"] = request.material
        if request.cut:
            selections["cut"] = request.cut

        return CartItem(
            product_id=request.product_id or "custom-vinyl-stickers",
            name=request.product_name or "Custom Vinyl Stickers",
            category="vinyl-stickers",
            quantity=request.quantity,
            unit_price=to_money(quote.final_price_per_sticker),
            total_price=quote.total_price,
            calculator_selections=selections
        )
