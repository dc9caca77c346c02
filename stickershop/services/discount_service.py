# stickershop/services/discount_service.py
import logging
from typing import Dict, List, Optional, Any
from decimal import Decimal
import asyncpg
from ..models.discount import (
    DiscountCode, DiscountCodeInput, DiscountStats, DiscountUsage,
    DiscountValidation, evaluate_discount
)
from ..models.result import NotFound, UpstreamFailure, ValidationFailed
from ..utils.formatters import format_discount_display, to_money, utc_now

class DiscountService:
    """Discount code validation, CRUD and usage tracking"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    async def find_by_code(self, code: str) -> Optional[DiscountCode]:
        """Look a code up case-insensitively"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT *
                FROM discount_codes
                WHERE UPPER(code) = UPPER($1)
            """, code.strip())
            return DiscountCode.model_validate(dict(row)) if row else None

    async def validate_code(self, code: str, order_amount: Decimal,
                            user_id: Optional[str] = None,
                            guest_email: Optional[str] = None) -> DiscountValidation:
        """Check a code against an order amount"""
        self.logger.info(f"Validating discount code {code!r} for amount {order_amount}")
        try:
            discount = await self.find_by_code(code)
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error(f"Error validating discount code {code!r}: {e}")
            raise UpstreamFailure("Error validating discount code") from e

        result = evaluate_discount(discount, to_money(order_amount), utc_now())
        if not result.valid:
            self.logger.info(f"Discount code {code!r} rejected: {result.reason.value}")
        return result

    async def record_usage(self, discount_code_id: int, order_id: int,
                           user_id: Optional[str], guest_email: Optional[str],
                           discount_amount: Decimal) -> bool:
        """Store a redemption once per order and bump the usage count"""
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    usage_id = await conn.fetchval("""
                        INSERT INTO discount_usage (
                            discount_code_id, order_id, user_id,
                            guest_email, discount_amount
                        ) VALUES ($1, $2, $3, $4, $5)
                        ON CONFLICT (discount_code_id, order_id) DO NOTHING
                        RETURNING id
                    """, discount_code_id, order_id, user_id, guest_email, discount_amount)

                    if usage_id is None:
                        self.logger.info(
                            f"Discount usage for code {discount_code_id} on order {order_id} already recorded"
                        )
                        return False

                    await conn.execute("""
                        UPDATE discount_codes
                        SET usage_count = usage_count + 1, updated_at = NOW()
                        WHERE id = $1
                    """, discount_code_id)

            self.logger.info(f"Discount usage recorded for code {discount_code_id} on order {order_id}")
            return True
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error recording discount usage: {e}")
            raise UpstreamFailure("Failed to record discount usage") from e

    async def get_all_discount_codes(self) -> List[DiscountCode]:
        """All codes, newest first"""
        try:
            async with self.db.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT *
                    FROM discount_codes
                    ORDER BY created_at DESC, id DESC
                """)
                return [DiscountCode.model_validate(dict(r)) for r in rows]
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error fetching discount codes: {e}")
            raise UpstreamFailure("Failed to fetch discount codes") from e

    async def get_discount_code(self, discount_id: int) -> DiscountCode:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM discount_codes WHERE id = $1", discount_id)
        if not row:
            raise NotFound(f"Discount code {discount_id} not found")
        return DiscountCode.model_validate(dict(row))

    async def create_discount_code(self, data: DiscountCodeInput) -> DiscountCode:
        """Create a new discount code"""
        if not data.code or not data.code.strip():
            raise ValidationFailed("Discount code is required")
        if data.discount_type is None:
            raise ValidationFailed("Discount type is required")
        if data.discount_value is None:
            raise ValidationFailed("Discount value is required")

        self.logger.info(f"Creating discount code {data.code.upper()}")
        try:
            async with self.db.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO discount_codes (
                        code, description, discount_type, discount_value,
                        minimum_order_amount, usage_limit, valid_from,
                        valid_until, active
                    ) VALUES ($1, $2, $3, $4, $5, $6, COALESCE($7, NOW()), $8, $9)
                    RETURNING *
                """,
                    data.code.strip().upper(),
                    data.description,
                    data.discount_type.value,
                    to_money(data.discount_value),
                    to_money(data.minimum_order_amount),
                    data.usage_limit or None,
                    data.valid_from,
                    data.valid_until,
                    data.active is not False
                )
        except asyncpg.UniqueViolationError as e:
            raise ValidationFailed("A discount code with this code already exists") from e
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error creating discount code: {e}")
            raise UpstreamFailure("Failed to create discount code") from e

        return DiscountCode.model_validate(dict(row))

    async def update_discount_code(self, discount_id: int, data: DiscountCodeInput) -> DiscountCode:
        """Update only the fields present in the payload"""
        update_data: Dict[str, Any] = {}
        provided = data.model_fields_set

        if "code" in provided and data.code:
            update_data["code"] = data.code.strip().upper()
        if "description" in provided:
            update_data["description"] = data.description
        if "discount_type" in provided and data.discount_type is not None:
            update_data["discount_type"] = data.discount_type.value
        if "discount_value" in provided:
            update_data["discount_value"] = to_money(data.discount_value)
        if "minimum_order_amount" in provided:
            update_data["minimum_order_amount"] = to_money(data.minimum_order_amount)
        if "usage_limit" in provided:
            update_data["usage_limit"] = data.usage_limit or None
        if "valid_from" in provided and data.valid_from is not None:
            update_data["valid_from"] = data.valid_from
        if "valid_until" in provided:
            update_data["valid_until"] = data.valid_until
        if "active" in provided and data.active is not None:
            update_data["active"] = data.active

        if not update_data:
            return await self.get_discount_code(discount_id)

        query_parts = []
        params = []
        for param_count, (key, value) in enumerate(update_data.items(), start=1):
            query_parts.append(f"{key} = ${param_count}")
            params.append(value)

        params.append(discount_id)
        query = f"""
            UPDATE discount_codes
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE id = ${len(params)}
            RETURNING *
        """

        self.logger.info(f"Updating discount code {discount_id}: {sorted(update_data)}")
        try:
            async with self.db.pool.acquire() as conn:
                row = await conn.fetchrow(query, *params)
        except asyncpg.UniqueViolationError as e:
            raise ValidationFailed("A discount code with this code already exists") from e
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error updating discount code {discount_id}: {e}")
            raise UpstreamFailure("Failed to update discount code") from e

        if not row:
            raise NotFound(f"Discount code {discount_id} not found")
        return DiscountCode.model_validate(dict(row))

    async def delete_discount_code(self, discount_id: int) -> bool:
        """Delete a discount code"""
        try:
            async with self.db.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM discount_codes WHERE id = $1", discount_id
                )
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error deleting discount code {discount_id}: {e}")
            raise UpstreamFailure("Failed to delete discount code") from e

        if result != "DELETE 1":
            raise NotFound(f"Discount code {discount_id} not found")
        self.logger.info(f"Discount code {discount_id} deleted")
        return True

    async def get_discount_stats(self, discount_id: int) -> DiscountStats:
        """Usage statistics for a code"""
        await self.get_discount_code(discount_id)

        async with self.db.pool.acquire() as conn:
            stats = await conn.fetchrow("""
                SELECT
                    COUNT(*) AS total_usage,
                    COALESCE(SUM(du.discount_amount), 0) AS total_discount_given,
                    COALESCE(AVG(o.total_price), 0) AS average_order_value
                FROM discount_usage du
                JOIN orders_main o ON o.id = du.order_id
                WHERE du.discount_code_id = $1
            """, discount_id)

            recent = await conn.fetch("""
                SELECT du.*, o.order_number, o.customer_email, o.total_price
                FROM discount_usage du
                JOIN orders_main o ON o.id = du.order_id
                WHERE du.discount_code_id = $1
                ORDER BY du.used_at DESC
                LIMIT 10
            """, discount_id)

        return DiscountStats(
            total_usage=stats["total_usage"] or 0,
            total_discount_given=to_money(stats["total_discount_given"]),
            average_order_value=to_money(stats["average_order_value"]),
            recent_usage=[DiscountUsage.model_validate(dict(r)) for r in recent]
        )

    async def apply_discount_to_order(self, order_id: int, discount_code: str,
                                      discount_amount: Decimal) -> bool:
        """Write a discount onto a pending order that has none and recompute its total"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE orders_main
                SET discount_code = $2,
                    discount_amount = $3,
                    total_price = GREATEST(subtotal_price - $3 - credits_applied, 0),
                    updated_at = NOW()
                WHERE id = $1
                AND financial_status = 'pending'
                AND discount_code IS NULL
            """, order_id, discount_code.upper(), discount_amount)

        if result != "UPDATE 1":
            raise ValidationFailed(f"Order {order_id} is not a pending order without a discount")
        self.logger.info(f"Discount {discount_code.upper()} applied to order {order_id}")
        return True

    @staticmethod
    def format_discount_display(discount) -> str:
        return format_discount_display(discount)
