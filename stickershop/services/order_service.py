# stickershop/services/order_service.py
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncpg
from ..models.order import (
    CartItem, CreatedOrder, FinancialStatus, NewOrder, Order, OrderItem,
    OrderStatus, TrackingUpdate
)
from ..models.proof import Proof, ProofInput, ProofStatus
from ..models.result import NotFound, ServiceError, UpstreamFailure, ValidationFailed
from ..utils.formatters import utc_now

# columns an update may touch
UPDATABLE_COLUMNS = {
    "financial_status", "fulfillment_status", "order_status", "proof_status",
    "customer_email", "customer_first_name", "customer_last_name", "customer_phone",
    "shipping_address", "stripe_session_id", "stripe_payment_intent_id",
    "tracking_number", "tracking_company", "tracking_url",
    "easypost_shipment_id", "easypost_tracker_id", "total_price",
}

def summarize_proofs(proofs: List[Proof]) -> Tuple[Optional[str], Optional[str]]:
    """Order level (proof_status, order_status) implied by its proofs"""
    if not proofs:
        return None, None

    statuses = [p.status for p in proofs]
    if all(s == ProofStatus.APPROVED for s in statuses):
        return "approved", OrderStatus.READY_FOR_PRODUCTION.value
    if ProofStatus.CHANGES_REQUESTED in statuses:
        return "changes_requested", OrderStatus.CHANGES_REQUESTED.value
    if ProofStatus.SENT in statuses:
        return "awaiting_approval", OrderStatus.PROOFS_SENT.value
    return "building_proof", None

class OrderService:
    """Orders, their items, proofs and tracking fields"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def create_pending_order(self, new_order: NewOrder, items: List[CartItem],
                                   credit_service=None) -> CreatedOrder:
        """Write the order, its items and the credit debit in one transaction"""
        credits = new_order.credits_applied if new_order.user_id else Decimal(0)
        credit_error = None

        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    order = await conn.fetchrow("""
                        INSERT INTO orders_main (
                            user_id, guest_email, customer_email, customer_first_name,
                            customer_last_name, customer_phone, shipping_address,
                            subtotal_price, discount_code, discount_amount,
                            credits_applied, total_price, order_note
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                        RETURNING id, order_number
                    """,
                        new_order.user_id,
                        new_order.guest_email,
                        new_order.customer.email,
                        new_order.customer.first_name,
                        new_order.customer.last_name,
                        new_order.customer.phone,
                        new_order.shipping_address,
                        new_order.subtotal_price,
                        new_order.discount_code,
                        new_order.discount_amount,
                        credits,
                        max(new_order.subtotal_price - new_order.discount_amount - credits, Decimal(0)),
                        new_order.order_note
                    )
                    order_id = order["id"]

                    for item in items:
                        await conn.execute("""
                            INSERT INTO order_items_new (
                                order_id, product_id, product_name, product_category,
                                sku, quantity, unit_price, total_price,
                                calculator_selections, custom_files, customer_notes
                            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                        """,
                            order_id, item.product_id, item.name, item.category,
                            item.sku, item.quantity, item.unit_price, item.total_price,
                            item.calculator_selections, item.custom_files,
                            item.customer_notes
                        )

                    if credits > 0 and credit_service is not None:
                        try:
                            # savepoint: a failed debit must not lose the order
                            async with conn.transaction():
                                await credit_service.debit_for_order(
                                    conn, new_order.user_id, order_id, credits
                                )
                        except (ServiceError, asyncpg.PostgresError) as e:
                            self.logger.error(f"Credit debit failed for order {order_id}: {e}")
                            credit_error = f"Failed to apply credits: {getattr(e, 'message', e)}"
                            credits = Decimal(0)
                            await conn.execute("""
                                UPDATE orders_main
                                SET credits_applied = 0, total_price = $2
                                WHERE id = $1
                            """, order_id,
                                max(new_order.subtotal_price - new_order.discount_amount, Decimal(0)))

        except asyncpg.PostgresError as e:
            self.logger.error(f"Failed to create order: {e}")
            raise UpstreamFailure("Failed to create order") from e

        total = max(new_order.subtotal_price - new_order.discount_amount - credits, Decimal(0))
        self.logger.info(f"Created order {order['order_number']} (id {order_id}) total {total}")
        return CreatedOrder(
            order_id=order_id,
            order_number=order["order_number"],
            credits_applied=credits,
            total_price=total,
            credit_error=credit_error
        )

    async def _load_items(self, conn, order_id: int) -> List[OrderItem]:
        rows = await conn.fetch("""
            SELECT *
            FROM order_items_new
            WHERE order_id = $1
            ORDER BY id
        """, order_id)
        return [OrderItem.model_validate(dict(r)) for r in rows]

    async def get_order(self, order_id: int) -> Order:
        """Order with its items"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM orders_main WHERE id = $1", order_id)
            if not row:
                raise NotFound(f"Order {order_id} not found")
            items = await self._load_items(conn, order_id)
        return Order.model_validate({**dict(row), "items": items})

    async def find_order(self, column: str, value: Any) -> Optional[Order]:
        """First order whose column matches; used by webhook lookups"""
        if column not in ("stripe_session_id", "stripe_payment_intent_id",
                          "tracking_number", "order_number"):
            raise ValueError(f"Unsupported lookup column: {column}")

        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM orders_main WHERE {column} = $1 ORDER BY id DESC LIMIT 1",
                value
            )
            if not row:
                return None
            items = await self._load_items(conn, row["id"])
        return Order.model_validate({**dict(row), "items": items})

    async def update_order(self, order_id: int, fields: Dict[str, Any]) -> Order:
        """Update whitelisted columns of an order"""
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")
        if not fields:
            return await self.get_order(order_id)

        query_parts = []
        params = []
        for param_count, (key, value) in enumerate(fields.items(), start=1):
            query_parts.append(f"{key} = ${param_count}")
            params.append(value)
        params.append(order_id)

        try:
            async with self.db.pool.acquire() as conn:
                result = await conn.execute(f"""
                    UPDATE orders_main
                    SET {', '.join(query_parts)}, updated_at = NOW()
                    WHERE id = ${len(params)}
                """, *params)
        except asyncpg.PostgresError as e:
            self.logger.error(f"Failed to update order {order_id}: {e}")
            raise UpstreamFailure("Failed to update order") from e

        if result != "UPDATE 1":
            raise NotFound(f"Order {order_id} not found")
        self.logger.info(f"Order {order_id} updated: {sorted(fields)}")
        return await self.get_order(order_id)

    async def mark_paid(self, order_id: int, payment_intent_id: Optional[str] = None,
                        extra: Optional[Dict[str, Any]] = None) -> Order:
        fields = {
            "financial_status": FinancialStatus.PAID.value,
            "order_status": OrderStatus.CREATING_PROOFS.value,
            "proof_status": "building_proof",
        }
        if payment_intent_id:
            fields["stripe_payment_intent_id"] = payment_intent_id
        fields.update(extra or {})
        return await self.update_order(order_id, fields)

    async def update_tracking(self, order_id: int, tracking: TrackingUpdate) -> Order:
        """Admin entry of tracking details"""
        return await self.update_order(order_id, {
            "tracking_number": tracking.tracking_number,
            "tracking_company": tracking.tracking_company,
            "tracking_url": tracking.tracking_url,
            "order_status": OrderStatus.SHIPPED.value,
            "fulfillment_status": "partial",
        })

    async def find_abandoned_orders(self, max_age_hours: int) -> List[int]:
        """Pending orders older than the cutoff"""
        cutoff = utc_now() - timedelta(hours=max_age_hours)
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT id
                FROM orders_main
                WHERE financial_status = 'pending'
                AND created_at < $1
                ORDER BY id
            """, cutoff)
            return [r["id"] for r in rows]

    async def cancel_order(self, order_id: int, credit_service=None) -> Decimal:
        """Cancel an order that was never paid and give back its credits.

        Both happen in one transaction; returns the credits restored.
        """
        restored = Decimal(0)
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow("""
                        SELECT order_number, financial_status
                        FROM orders_main
                        WHERE id = $1
                        FOR UPDATE
                    """, order_id)
                    if not row:
                        raise NotFound(f"Order {order_id} not found")
                    if row["financial_status"] != FinancialStatus.PENDING.value:
                        raise ValidationFailed(f"Order {row['order_number']} is not awaiting payment")

                    await conn.execute("""
                        UPDATE orders_main
                        SET financial_status = $2, order_status = $3, updated_at = NOW()
                        WHERE id = $1
                    """, order_id, FinancialStatus.CANCELLED.value, OrderStatus.CANCELLED.value)

                    if credit_service is not None:
                        restored = await credit_service.restore_for_order(order_id, conn=conn)
        except asyncpg.PostgresError as e:
            self.logger.error(f"Failed to cancel order {order_id}: {e}")
            raise UpstreamFailure("Failed to cancel order") from e

        self.logger.info(f"Order {order_id} cancelled, {restored} credits restored")
        return restored

    # Proofs

    async def _mutate_proofs(self, order_id: int,
                             mutate: Callable[[List[Proof], datetime], List[Proof]]) -> Order:
        """Load proofs under a row lock, apply `mutate`, write back with derived statuses"""
        now = utc_now()
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow("""
                    SELECT proofs, order_status, proof_status
                    FROM orders_main
                    WHERE id = $1
                    FOR UPDATE
                """, order_id)
                if not row:
                    raise NotFound(f"Order {order_id} not found")

                proofs = [Proof.model_validate(p) for p in (row["proofs"] or [])]
                proofs = mutate(proofs, now)

                proof_status, order_status = summarize_proofs(proofs)
                await conn.execute("""
                    UPDATE orders_main
                    SET proofs = $2,
                        proof_status = COALESCE($3, proof_status),
                        order_status = COALESCE($4, order_status),
                        updated_at = NOW()
                    WHERE id = $1
                """, order_id, [p.model_dump(mode="json") for p in proofs],
                    proof_status, order_status)

        return await self.get_order(order_id)

    @staticmethod
    def _index_of(proofs: List[Proof], proof_id: str) -> int:
        for index, proof in enumerate(proofs):
            if proof.id == proof_id:
                return index
        raise NotFound(f"Proof {proof_id} not found")

    async def add_proof(self, order_id: int, data: ProofInput) -> Order:
        """Attach a new pending proof"""
        def mutate(proofs: List[Proof], now: datetime) -> List[Proof]:
            return proofs + [Proof(
                id=uuid.uuid4().hex,
                proof_url=data.proof_url,
                proof_title=data.proof_title,
                order_item_id=data.order_item_id,
                admin_notes=data.admin_notes,
                uploaded_at=now
            )]

        order = await self._mutate_proofs(order_id, mutate)
        self.logger.info(f"Proof added to order {order_id}")
        return order

    async def send_proofs(self, order_id: int) -> Order:
        """Send every pending proof to the customer"""
        def mutate(proofs: List[Proof], now: datetime) -> List[Proof]:
            pending = [p for p in proofs if p.status == ProofStatus.PENDING]
            if not pending:
                raise ValidationFailed("No pending proofs to send")
            return [
                p.transition(ProofStatus.SENT, now) if p.status == ProofStatus.PENDING else p
                for p in proofs
            ]

        return await self._mutate_proofs(order_id, mutate)

    async def respond_to_proof(self, order_id: int, proof_id: str, approved: bool,
                               customer_notes: Optional[str] = None) -> Order:
        """Approve a sent proof or ask for changes"""
        target = ProofStatus.APPROVED if approved else ProofStatus.CHANGES_REQUESTED

        def mutate(proofs: List[Proof], now: datetime) -> List[Proof]:
            index = self._index_of(proofs, proof_id)
            updated = proofs[index].transition(target, now)
            if customer_notes is not None:
                updated = updated.model_copy(update={"customer_notes": customer_notes})
            return proofs[:index] + [updated] + proofs[index + 1:]

        order = await self._mutate_proofs(order_id, mutate)
        self.logger.info(f"Proof {proof_id} on order {order_id} -> {target.value}")
        return order

    async def replace_proof(self, order_id: int, proof_id: str, data: ProofInput) -> Order:
        """Upload a replacement after changes were requested"""
        def mutate(proofs: List[Proof], now: datetime) -> List[Proof]:
            index = self._index_of(proofs, proof_id)
            updated = proofs[index].transition(ProofStatus.PENDING, now).model_copy(update={
                "proof_url": data.proof_url,
                "proof_title": data.proof_title or proofs[index].proof_title,
                "admin_notes": data.admin_notes,
            })
            return proofs[:index] + [updated] + proofs[index + 1:]

        return await self._mutate_proofs(order_id, mutate)
