# stickershop/services/payment_service.py
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
import aiohttp
from pydantic import BaseModel
from ..config import Config
from ..models.order import CartItem, FinancialStatus, OrderStatus
from ..models.result import NotConfigured, ServiceError, UpstreamFailure
from ..utils.rate_monitor import CallRateMonitor

SHIPPING_OPTIONS = [
    {
        "shipping_rate_data": {
            "type": "fixed_amount",
            "fixed_amount": {"amount": 0, "currency": "usd"},
            "display_name": "UPS Ground (2-3 business days)",
            "delivery_estimate": {
                "minimum": {"unit": "business_day", "value": 2},
                "maximum": {"unit": "business_day", "value": 3},
            },
        }
    },
    {
        "shipping_rate_data": {
            "type": "fixed_amount",
            "fixed_amount": {"amount": 1500, "currency": "usd"},
            "display_name": "UPS Next Day Air (1 business day)",
            "delivery_estimate": {
                "minimum": {"unit": "business_day", "value": 1},
                "maximum": {"unit": "business_day", "value": 1},
            },
        }
    },
]

class PaymentSessionRequest(BaseModel):
    order_id: int
    order_number: str
    items: List[CartItem]
    customer_email: Optional[str] = None
    user_id: Optional[str] = None
    discount_code: Optional[str] = None
    discount_code_id: Optional[int] = None
    discount_amount: Decimal = Decimal(0)
    credits_applied: Decimal = Decimal(0)
    success_url: str
    cancel_url: str
    currency: str = "usd"

class PaymentSession(BaseModel):
    session_id: str
    checkout_url: Optional[str] = None
    amount_total: Optional[int] = None

def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))

def encode_form(params: Any, prefix: str = "") -> List[Tuple[str, str]]:
    """Flatten nested params into Stripe's bracketed form encoding"""
    pairs: List[Tuple[str, str]] = []
    if isinstance(params, dict):
        for key, value in params.items():
            pairs.extend(encode_form(value, f"{prefix}[{key}]" if prefix else str(key)))
    elif isinstance(params, (list, tuple)):
        for index, value in enumerate(params):
            pairs.extend(encode_form(value, f"{prefix}[{index}]"))
    elif isinstance(params, bool):
        pairs.append((prefix, "true" if params else "false"))
    elif params is not None:
        pairs.append((prefix, str(params)))
    return pairs

def build_line_items(items: List[CartItem], reduction: Decimal, currency: str = "usd",
                     label: Optional[str] = None) -> List[Dict[str, Any]]:
    """Spread discount and credits across lines in proportion to their price.

    Charged cents always sum to subtotal - reduction; the rounding remainder
    lands on the last line.
    """
    subtotal_cents = sum(to_cents(item.total_price) for item in items)
    target_cents = max(subtotal_cents - to_cents(reduction), 0)

    amounts = []
    for item in items:
        item_cents = to_cents(item.total_price)
        if subtotal_cents:
            share = (Decimal(item_cents) * target_cents / subtotal_cents)
            amounts.append(int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP)))
        else:
            amounts.append(0)
    if amounts:
        amounts[-1] += target_cents - sum(amounts)

    line_items = []
    for item, unit_amount in zip(items, amounts):
        description = f"{item.name} - Custom Stickers ({item.quantity} pieces)"
        if label:
            description += f" ({label} applied)"
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": {
                    "name": item.name,
                    "description": description,
                    "metadata": {
                        "productId": item.product_id,
                        "sku": item.sku or "",
                        "category": item.category or "custom-stickers",
                        "actualQuantity": str(item.quantity),
                        "originalPrice": f"{item.total_price:.2f}",
                    },
                },
                "unit_amount": unit_amount,
            },
            # actual quantity lives in the description and metadata
            "quantity": 1,
        })
    return line_items

class StripeClient:
    """Minimal Stripe REST client"""

    def __init__(self, secret_key: Optional[str] = None, api_url: Optional[str] = None,
                 monitor: Optional[CallRateMonitor] = None):
        self.secret_key = secret_key if secret_key is not None else Config.STRIPE_SECRET_KEY
        self.api_url = (api_url or Config.STRIPE_API_URL).rstrip("/")
        self.monitor = monitor or CallRateMonitor("stripe", Config.VENDOR_CALLS_PER_MINUTE_WARNING)
        self.logger = logging.getLogger(__name__)
        if not self.secret_key:
            self.logger.warning("Stripe configuration missing, set STRIPE_SECRET_KEY")

    @property
    def is_ready(self) -> bool:
        return bool(self.secret_key)

    async def _request(self, method: str, path: str,
                       params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_ready:
            raise NotConfigured("Stripe is not properly configured")

        self.monitor.record()
        url = f"{self.api_url}/{path.lstrip('/')}"
        form = encode_form(params or {})
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    data=form if method != "GET" else None,
                    params=form if method == "GET" else None,
                    auth=aiohttp.BasicAuth(self.secret_key, ""),
                ) as response:
                    body = await response.json(content_type=None)
                    if response.status >= 400:
                        message = (body or {}).get("error", {}).get("message", response.reason)
                        raise UpstreamFailure(f"Stripe error ({response.status}): {message}")
                    return body
        except aiohttp.ClientError as e:
            self.logger.error(f"Stripe request {method} {path} failed: {e}")
            raise UpstreamFailure(f"Stripe request failed: {e}") from e

    async def create_checkout_session(self, request: PaymentSessionRequest) -> PaymentSession:
        """Create a hosted checkout session for an order"""
        reduction = request.discount_amount + request.credits_applied
        label = f"{request.discount_code} discount" if request.discount_code else None
        subtotal = sum((item.total_price for item in request.items), Decimal(0))

        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": build_line_items(request.items, reduction, request.currency, label),
            "success_url": f"{request.success_url}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": request.cancel_url,
            "customer_email": request.customer_email,
            "client_reference_id": str(request.order_id),
            "metadata": {
                "orderId": str(request.order_id),
                "orderNumber": request.order_number,
                "userId": request.user_id or "guest",
                "itemCount": str(len(request.items)),
                "originalTotalAmount": f"{subtotal:.2f}",
                "discountCode": request.discount_code or "",
                "discountCodeId": str(request.discount_code_id or ""),
                "discountAmount": f"{request.discount_amount:.2f}",
                "creditsApplied": f"{request.credits_applied:.2f}",
                "totalAmount": f"{max(subtotal - reduction, Decimal(0)):.2f}",
            },
            "payment_intent_data": {
                "metadata": {
                    "orderId": str(request.order_id),
                    "orderNumber": request.order_number,
                },
            },
            "shipping_address_collection": {"allowed_countries": ["US", "CA"]},
            "shipping_options": SHIPPING_OPTIONS,
        }

        session = await self._request("POST", "checkout/sessions", params)
        self.logger.info(f"Stripe session {session['id']} created for order {request.order_number}")
        return PaymentSession(
            session_id=session["id"],
            checkout_url=session.get("url"),
            amount_total=session.get("amount_total")
        )

class PaymentService:
    """Applies Stripe webhook events to orders, discounts and credits"""

    def __init__(self, order_service, discount_service, credit_service, stripe: StripeClient):
        self.orders = order_service
        self.discounts = discount_service
        self.credits = credit_service
        self.stripe = stripe
        self.logger = logging.getLogger(__name__)

    async def handle_event(self, event: Dict[str, Any]) -> str:
        """Dispatch a verified Stripe event"""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        self.logger.info(f"Stripe webhook received: {event_type} ({event.get('id')})")

        handlers = {
            "checkout.session.completed": self.handle_checkout_completed,
            "checkout.session.expired": self.handle_checkout_expired,
            "payment_intent.payment_failed": self.handle_payment_failed,
            "charge.refunded": self.handle_charge_refunded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            self.logger.info(f"Unhandled Stripe event type: {event_type}")
            return "ignored"
        return await handler(obj)

    async def _order_for_session(self, session: Dict[str, Any]):
        metadata = session.get("metadata") or {}
        order_id = metadata.get("orderId") or session.get("client_reference_id")
        if order_id:
            return await self.orders.get_order(int(order_id))
        return await self.orders.find_order("stripe_session_id", session.get("id"))

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> str:
        order = await self._order_for_session(session)
        if order is None:
            self.logger.warning(f"No order found for Stripe session {session.get('id')}")
            return "order_not_found"
        if order.financial_status == FinancialStatus.PAID.value:
            self.logger.info(f"Order {order.order_number} already paid, skipping")
            return "already_processed"

        customer = session.get("customer_details") or {}
        shipping = session.get("shipping_details") or {}
        extra: Dict[str, Any] = {"stripe_session_id": session.get("id")}
        if customer.get("email") and not order.customer_email:
            extra["customer_email"] = customer["email"]
        if shipping.get("address"):
            extra["shipping_address"] = {**shipping["address"], "name": shipping.get("name")}

        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        if order.financial_status == FinancialStatus.CANCELLED.value:
            # paid after cleanup already handed its credits back
            try:
                reclaimed = await self.credits.reclaim_for_order(
                    order.id, order.user_id, order.credits_applied
                )
            except ServiceError as e:
                self.logger.error(
                    f"Cancelled order {order.order_number} was paid but its credits "
                    f"could not be reclaimed: {e.message}"
                )
                await self.orders.update_order(order.id, {
                    **extra,
                    "stripe_payment_intent_id": payment_intent,
                    "order_status": OrderStatus.NEEDS_REVIEW.value,
                })
                return "needs_review"
            self.logger.warning(
                f"Cancelled order {order.order_number} was paid, reclaimed {reclaimed} credits"
            )

        order = await self.orders.mark_paid(order.id, payment_intent, extra)
        self.logger.info(f"Order {order.order_number} marked paid")

        metadata = session.get("metadata") or {}
        # follow-up bookkeeping must not undo the payment update
        discount_code_id = metadata.get("discountCodeId")
        if discount_code_id:
            try:
                await self.discounts.record_usage(
                    int(discount_code_id), order.id, order.user_id,
                    order.guest_email, order.discount_amount
                )
            except ServiceError as e:
                self.logger.error(f"Discount usage not recorded for order {order.id}: {e.message}")

        amount_paid = Decimal(session.get("amount_total") or 0) / 100
        try:
            await self.credits.earn_points_from_purchase(order.user_id, amount_paid, order.id)
        except ServiceError as e:
            self.logger.error(f"Cashback not credited for order {order.id}: {e.message}")

        return "paid"

    async def handle_checkout_expired(self, session: Dict[str, Any]) -> str:
        order = await self._order_for_session(session)
        if order is None or order.financial_status != FinancialStatus.PENDING.value:
            return "ignored"
        restored = await self.orders.cancel_order(order.id, self.credits)
        self.logger.info(f"Checkout expired for order {order.order_number}, restored {restored} credits")
        return "cancelled"

    async def handle_payment_failed(self, intent: Dict[str, Any]) -> str:
        order_id = (intent.get("metadata") or {}).get("orderId")
        order = (await self.orders.get_order(int(order_id)) if order_id
                 else await self.orders.find_order("stripe_payment_intent_id", intent.get("id")))
        if order is None:
            return "order_not_found"
        await self.orders.update_order(order.id, {
            "financial_status": FinancialStatus.FAILED.value,
            "order_status": OrderStatus.PAYMENT_FAILED.value,
        })
        return "payment_failed"

    async def handle_charge_refunded(self, charge: Dict[str, Any]) -> str:
        payment_intent = charge.get("payment_intent")
        if not payment_intent:
            return "ignored"
        order = await self.orders.find_order("stripe_payment_intent_id", payment_intent)
        if order is None:
            return "order_not_found"
        await self.orders.update_order(order.id, {
            "financial_status": FinancialStatus.REFUNDED.value,
            "order_status": OrderStatus.REFUNDED.value,
        })
        return "refunded"
