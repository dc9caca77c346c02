# stickershop/services/checkout_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from ..models.discount import DiscountValidation
from ..models.order import CheckoutRequest, CheckoutResult, CreatedOrder, NewOrder
from ..models.result import ServiceError
from ..utils.formatters import to_money
from .payment_service import PaymentSessionRequest

def cap_credits(requested: Decimal, balance: Decimal, subtotal: Decimal,
                discount: Decimal) -> Decimal:
    """Credits that may be applied: min(requested, balance, subtotal - discount), never negative"""
    remaining = max(subtotal - discount, Decimal(0))
    return to_money(max(min(requested, balance, remaining), Decimal(0)))

class CheckoutService:
    """Turns a cart into a pending order and a payment session"""

    def __init__(self, discount_service, credit_service, order_service, stripe,
                 frontend_url: Optional[str] = None):
        self.discounts = discount_service
        self.credits = credit_service
        self.orders = order_service
        self.stripe = stripe
        self.frontend_url = (frontend_url or "").rstrip("/")
        self.logger = logging.getLogger(__name__)

    async def _apply_discount(self, request: CheckoutRequest, subtotal: Decimal,
                              errors: List[str]) -> Optional[DiscountValidation]:
        if not request.discount_code:
            return None
        try:
            validation = await self.discounts.validate_code(
                request.discount_code, subtotal, request.user_id, request.customer.email
            )
        except ServiceError as e:
            self.logger.error(f"Discount validation failed at checkout: {e.message}")
            errors.append(f"Discount code could not be validated: {e.message}")
            return None

        if not validation.valid:
            errors.append(validation.message)
            return None
        return validation

    async def _available_credits(self, request: CheckoutRequest, subtotal: Decimal,
                                 discount_amount: Decimal, errors: List[str]) -> Decimal:
        if request.credits_to_apply <= 0:
            return Decimal(0)
        if not request.user_id or request.user_id == "guest":
            errors.append("Credits can only be applied by signed-in customers")
            return Decimal(0)
        try:
            balance = await self.credits.get_balance(request.user_id)
        except ServiceError as e:
            self.logger.error(f"Credit balance lookup failed for {request.user_id}: {e.message}")
            errors.append("Failed to check credit balance")
            return Decimal(0)
        return cap_credits(request.credits_to_apply, balance.balance, subtotal, discount_amount)

    async def checkout(self, request: CheckoutRequest) -> CheckoutResult:
        """Create the pending order, debit credits and open a Stripe session"""
        errors: List[str] = []
        subtotal = to_money(sum((item.total_price for item in request.items), Decimal(0)))

        validation = await self._apply_discount(request, subtotal, errors)
        discount_amount = validation.discount_amount if validation else Decimal(0)
        credits = await self._available_credits(request, subtotal, discount_amount, errors)

        user_id = request.user_id if request.user_id != "guest" else None
        new_order = NewOrder(
            user_id=user_id,
            guest_email=None if user_id else request.customer.email,
            customer=request.customer,
            shipping_address=request.shipping_address,
            subtotal_price=subtotal,
            discount_code=validation.discount_code.code if validation else None,
            discount_amount=discount_amount,
            credits_applied=credits,
            order_note=request.order_note
        )

        try:
            created: CreatedOrder = await self.orders.create_pending_order(
                new_order, request.items, self.credits
            )
        except ServiceError as e:
            self.logger.error(f"Checkout failed creating order: {e.message}")
            errors.append(e.message)
            return CheckoutResult(
                success=False, subtotal=subtotal, discount_amount=discount_amount,
                total=max(subtotal - discount_amount, Decimal(0)), errors=errors
            )

        if created.credit_error:
            errors.append(created.credit_error)

        result = CheckoutResult(
            success=False,
            order_id=created.order_id,
            order_number=created.order_number,
            subtotal=subtotal,
            discount_amount=discount_amount,
            credits_applied=created.credits_applied,
            total=created.total_price,
            errors=errors
        )
        # validation copied the list; keep appending to the result's own
        errors = result.errors

        if created.total_price <= 0:
            # fully covered by discount and credits
            try:
                await self.orders.mark_paid(created.order_id)
                result.success = True
            except ServiceError as e:
                self.logger.error(f"Failed to mark order {created.order_id} paid: {e.message}")
                errors.append(e.message)
                return result

            # no payment webhook follows a zero total, so usage is booked here
            if validation:
                try:
                    await self.discounts.record_usage(
                        validation.discount_code.id, created.order_id, user_id,
                        new_order.guest_email, discount_amount
                    )
                except ServiceError as e:
                    self.logger.error(f"Discount usage not recorded for order {created.order_id}: {e.message}")
                    errors.append(f"Discount usage could not be recorded: {e.message}")
            return result

        try:
            session = await self.stripe.create_checkout_session(PaymentSessionRequest(
                order_id=created.order_id,
                order_number=created.order_number,
                items=request.items,
                customer_email=request.customer.email,
                user_id=user_id,
                discount_code=new_order.discount_code,
                discount_code_id=validation.discount_code.id if validation else None,
                discount_amount=discount_amount,
                credits_applied=created.credits_applied,
                success_url=request.success_url or f"{self.frontend_url}/cart/success",
                cancel_url=request.cancel_url or f"{self.frontend_url}/cart"
            ))
        except ServiceError as e:
            self.logger.error(f"Payment session failed for order {created.order_number}: {e.message}")
            errors.append(f"Payment session could not be created: {e.message}")
            return result

        try:
            await self.orders.update_order(created.order_id, {"stripe_session_id": session.session_id})
        except ServiceError as e:
            self.logger.error(f"Failed to store session on order {created.order_id}: {e.message}")
            errors.append(e.message)

        result.success = True
        result.session_id = session.session_id
        result.checkout_url = session.checkout_url
        self.logger.info(
            f"Checkout ready for order {created.order_number}: total {created.total_price}, "
            f"discount {discount_amount}, credits {created.credits_applied}"
        )
        return result

    async def cleanup_abandoned_checkouts(self, max_age_hours: int = 24) -> Dict[str, Any]:
        """Cancel stale pending orders and give their credits back"""
        order_ids = await self.orders.find_abandoned_orders(max_age_hours)
        cancelled = 0
        restored = Decimal(0)
        for order_id in order_ids:
            try:
                restored += await self.orders.cancel_order(order_id, self.credits)
                cancelled += 1
            except ServiceError as e:
                self.logger.error(f"Failed to clean up order {order_id}: {e.message}")

        self.logger.info(f"Abandoned checkout cleanup: {cancelled} orders, {restored} credits restored")
        return {"cancelledOrders": cancelled, "creditsRestored": restored}
