# stickershop/models/order.py
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import Field
from .base import ApiModel, TimeStampedModel
from .proof import Proof

class FinancialStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

class FulfillmentStatus(str, Enum):
    UNFULFILLED = "unfulfilled"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"

class OrderStatus(str, Enum):
    AWAITING_PAYMENT = "Awaiting Payment"
    CREATING_PROOFS = "Creating Proofs"
    PROOFS_SENT = "Proofs Sent"
    CHANGES_REQUESTED = "Changes Requested"
    READY_FOR_PRODUCTION = "Ready for Production"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    PAYMENT_FAILED = "Payment Failed"
    REFUNDED = "Refunded"
    CANCELLED = "Cancelled"
    NEEDS_REVIEW = "Needs Review"

class OrderItem(ApiModel):
    """Individual item in an order"""
    id: Optional[int] = None
    order_id: Optional[int] = None
    product_id: str
    product_name: str
    product_category: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal
    total_price: Decimal
    calculator_selections: Dict[str, Any] = {}
    custom_files: List[str] = []
    customer_notes: Optional[str] = None

class Order(TimeStampedModel):
    """Order row (orders_main) with its embedded proofs"""
    id: int
    order_number: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    customer_email: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    financial_status: str = FinancialStatus.PENDING.value
    fulfillment_status: str = FulfillmentStatus.UNFULFILLED.value
    order_status: str = OrderStatus.AWAITING_PAYMENT.value
    proof_status: Optional[str] = None
    subtotal_price: Decimal = Decimal(0)
    discount_code: Optional[str] = None
    discount_amount: Decimal = Decimal(0)
    credits_applied: Decimal = Decimal(0)
    total_price: Decimal = Decimal(0)
    currency: str = "usd"
    order_note: Optional[str] = None
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    proofs: List[Proof] = []
    tracking_number: Optional[str] = None
    tracking_company: Optional[str] = None
    tracking_url: Optional[str] = None
    easypost_shipment_id: Optional[str] = None
    easypost_tracker_id: Optional[str] = None
    items: List[OrderItem] = []

    @property
    def is_completed(self) -> bool:
        return self.order_status in [OrderStatus.DELIVERED.value, OrderStatus.REFUNDED.value]

class CartItem(ApiModel):
    """Cart line sent by the storefront at checkout"""
    product_id: str
    name: str
    category: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    total_price: Decimal = Field(ge=0)
    calculator_selections: Dict[str, Any] = {}
    custom_files: List[str] = []
    customer_notes: Optional[str] = None

class CustomerInfo(ApiModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

class CheckoutRequest(ApiModel):
    items: List[CartItem] = Field(min_length=1)
    customer: CustomerInfo
    user_id: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    discount_code: Optional[str] = None
    credits_to_apply: Decimal = Field(default=Decimal(0), ge=0)
    order_note: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

class NewOrder(ApiModel):
    """Values of the pending order row written at checkout"""
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    customer: CustomerInfo
    shipping_address: Optional[Dict[str, Any]] = None
    subtotal_price: Decimal
    discount_code: Optional[str] = None
    discount_amount: Decimal = Decimal(0)
    credits_applied: Decimal = Decimal(0)
    order_note: Optional[str] = None

class CreatedOrder(ApiModel):
    """Outcome of the atomic order write"""
    order_id: int
    order_number: str
    credits_applied: Decimal = Decimal(0)
    total_price: Decimal
    credit_error: Optional[str] = None

class CheckoutResult(ApiModel):
    success: bool
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    subtotal: Decimal = Decimal(0)
    discount_amount: Decimal = Decimal(0)
    credits_applied: Decimal = Decimal(0)
    total: Decimal = Decimal(0)
    errors: List[str] = []

class TrackingUpdate(ApiModel):
    tracking_number: str
    tracking_company: Optional[str] = None
    tracking_url: Optional[str] = None
