from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
import pytest
import pytz
from stickershop.models.credit import CreditBalance
from stickershop.models.discount import DiscountCode, DiscountType, evaluate_discount
from stickershop.models.order import CreatedOrder, FinancialStatus, Order
from stickershop.models.result import NotFound
from stickershop.services.payment_service import PaymentSession

class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakeConnection:
    """Records queries and replays queued results"""

    def __init__(self):
        self.fetch_rows: List[Dict[str, Any]] = []
        self.fetch_results: List[List[Dict[str, Any]]] = []
        self.fetchrow_results: List[Any] = []
        self.fetchval_results: List[Any] = []
        self.execute_result = "UPDATE 1"
        self.queries: List[tuple] = []
        self.error: Optional[Exception] = None

    def _record(self, query, args):
        self.queries.append((" ".join(query.split()), args))
        if self.error is not None:
            raise self.error

    async def fetch(self, query, *args):
        self._record(query, args)
        if self.fetch_results:
            return self.fetch_results.pop(0)
        return list(self.fetch_rows)

    async def fetchrow(self, query, *args):
        self._record(query, args)
        return self.fetchrow_results.pop(0) if self.fetchrow_results else None

    async def fetchval(self, query, *args):
        self._record(query, args)
        return self.fetchval_results.pop(0) if self.fetchval_results else None

    async def execute(self, query, *args):
        self._record(query, args)
        return self.execute_result

    def transaction(self):
        return FakeTransaction()

class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        return FakeAcquire(self.conn)

class FakeDatabase:
    dsn = None

    def __init__(self, conn=None):
        self.conn = conn or FakeConnection()
        self.pool = FakePool(self.conn)

    @property
    def is_ready(self) -> bool:
        return True

def make_discount(**overrides) -> DiscountCode:
    data = {
        "id": 1,
        "code": "SAVE10",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("10"),
        "minimum_order_amount": Decimal("0"),
        "usage_limit": None,
        "usage_count": 0,
        "valid_from": datetime.now(pytz.utc) - timedelta(days=1),
        "valid_until": None,
        "active": True,
    }
    data.update(overrides)
    return DiscountCode(**data)

def make_order(**overrides) -> Order:
    data = {
        "id": 1,
        "order_number": "SS-1000",
        "user_id": "user-1",
        "customer_email": "buyer@example.com",
        "subtotal_price": Decimal("100.00"),
        "total_price": Decimal("100.00"),
    }
    data.update(overrides)
    return Order(**data)

class FakeDiscountService:
    def __init__(self, discount: Optional[DiscountCode] = None, error: Optional[Exception] = None):
        self.discount = discount
        self.error = error
        self.usages: List[tuple] = []
        self.usage_error: Optional[Exception] = None
        self.applied: List[tuple] = []

    async def validate_code(self, code, order_amount, user_id=None, guest_email=None):
        if self.error:
            raise self.error
        found = self.discount if self.discount and self.discount.code == code.upper() else None
        return evaluate_discount(found, order_amount, datetime.now(pytz.utc))

    async def record_usage(self, discount_code_id, order_id, user_id, guest_email, discount_amount):
        if self.usage_error:
            raise self.usage_error
        self.usages.append((discount_code_id, order_id))
        return True

    async def apply_discount_to_order(self, order_id, discount_code, discount_amount):
        self.applied.append((order_id, discount_code, discount_amount))
        return True

class FakeCreditService:
    def __init__(self, balance: Decimal = Decimal(0), error: Optional[Exception] = None):
        self.balance = balance
        self.error = error
        self.restored: List[int] = []
        self.earned: List[tuple] = []
        self.reclaimed: List[tuple] = []
        self.restore_error: Optional[Exception] = None
        self.reclaim_error: Optional[Exception] = None

    async def get_balance(self, user_id):
        if self.error:
            raise self.error
        return CreditBalance(balance=self.balance)

    async def restore_for_order(self, order_id, conn=None):
        if self.restore_error:
            raise self.restore_error
        self.restored.append(order_id)
        return Decimal("5.00")

    async def reclaim_for_order(self, order_id, user_id, credits_applied):
        if self.reclaim_error:
            raise self.reclaim_error
        self.reclaimed.append((order_id, credits_applied))
        return credits_applied

    async def earn_points_from_purchase(self, user_id, order_total, order_id):
        self.earned.append((user_id, order_total, order_id))

class FakeOrderService:
    def __init__(self, orders: Optional[Dict[int, Order]] = None):
        self.orders: Dict[int, Order] = orders or {}
        self.created: List[tuple] = []
        self.updates: List[tuple] = []
        self.paid: List[int] = []
        self.cancelled: List[int] = []
        self.abandoned: List[int] = []
        self.credit_error: Optional[str] = None

    async def create_pending_order(self, new_order, items, credit_service=None):
        self.created.append((new_order, items))
        credits = Decimal(0) if self.credit_error else new_order.credits_applied
        order_id = len(self.created)
        total = max(new_order.subtotal_price - new_order.discount_amount - credits, Decimal(0))
        self.orders[order_id] = make_order(
            id=order_id, order_number=f"SS-{999 + order_id}", user_id=new_order.user_id,
            subtotal_price=new_order.subtotal_price, total_price=total
        )
        return CreatedOrder(
            order_id=order_id, order_number=f"SS-{999 + order_id}",
            credits_applied=credits, total_price=total, credit_error=self.credit_error
        )

    async def get_order(self, order_id):
        if order_id not in self.orders:
            raise NotFound(f"Order {order_id} not found")
        return self.orders[order_id]

    async def find_order(self, column, value):
        for order in self.orders.values():
            if getattr(order, column) == value:
                return order
        return None

    async def update_order(self, order_id, fields):
        self.updates.append((order_id, fields))
        order = await self.get_order(order_id)
        self.orders[order_id] = order.model_copy(update=fields)
        return self.orders[order_id]

    async def mark_paid(self, order_id, payment_intent_id=None, extra=None):
        self.paid.append(order_id)
        fields = {"financial_status": FinancialStatus.PAID.value,
                  "stripe_payment_intent_id": payment_intent_id}
        fields.update(extra or {})
        return await self.update_order(order_id, fields)

    async def cancel_order(self, order_id, credit_service=None):
        # restore before the status write so a failed restore leaves the order pending
        restored = Decimal(0)
        if credit_service is not None:
            restored = await credit_service.restore_for_order(order_id)
        self.cancelled.append(order_id)
        await self.update_order(order_id, {"financial_status": FinancialStatus.CANCELLED.value})
        return restored

    async def find_abandoned_orders(self, max_age_hours):
        return [order_id for order_id in self.abandoned
                if self.orders[order_id].financial_status == FinancialStatus.PENDING.value]

class FakeStripe:
    is_ready = True

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.requests = []

    async def create_checkout_session(self, request):
        if self.error:
            raise self.error
        self.requests.append(request)
        return PaymentSession(session_id="cs_test_123", checkout_url="https://checkout.stripe.test/cs_test_123")

@pytest.fixture
def fake_conn():
    return FakeConnection()

@pytest.fixture
def fake_db(fake_conn):
    return FakeDatabase(fake_conn)
