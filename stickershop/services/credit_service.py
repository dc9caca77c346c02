# stickershop/services/credit_service.py
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import asyncpg
from ..models.credit import (
    CreditBalance, CreditHistory, CreditNotification, CreditTransaction,
    CreditTransactionPage, CreditTransactionType, available_balance
)
from ..models.result import UpstreamFailure, ValidationFailed
from ..utils.formatters import to_money, utc_now

CASHBACK_RATE = Decimal("0.05")

class CreditService:
    """Store-credit ledger"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(__name__)

    @staticmethod
    async def _current_balance(conn, user_id: str) -> Decimal:
        rows = await conn.fetch("""
            SELECT amount, expires_at, created_at
            FROM credits
            WHERE user_id = $1
            ORDER BY created_at, id
        """, user_id)
        return to_money(available_balance(rows, utc_now()))

    async def _insert_entry(self, conn, user_id: str, amount: Decimal,
                            transaction_type: CreditTransactionType, reason: str,
                            order_id: Optional[int] = None,
                            created_by: Optional[str] = None,
                            expires_at: Optional[datetime] = None) -> CreditTransaction:
        """Append a ledger row; caller must hold a transaction"""
        # serialise ledger writes per user
        await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", user_id)

        balance = await self._current_balance(conn, user_id)
        new_balance = balance + amount
        if amount < 0 and new_balance < 0:
            raise ValidationFailed(
                f"Insufficient credit balance: {balance} available, {-amount} requested"
            )

        row = await conn.fetchrow("""
            INSERT INTO credits (
                user_id, amount, balance, reason, transaction_type,
                order_id, created_by, expires_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
        """, user_id, amount, new_balance, reason, transaction_type.value,
            order_id, created_by, expires_at)
        return CreditTransaction.model_validate(dict(row))

    async def get_balance(self, user_id: str) -> CreditBalance:
        """Current balance plus ledger statistics"""
        try:
            async with self.db.pool.acquire() as conn:
                balance = await self._current_balance(conn, user_id)
                stats = await conn.fetchrow("""
                    SELECT COUNT(*) AS transaction_count,
                           MAX(created_at) AS last_transaction_date
                    FROM credits
                    WHERE user_id = $1
                """, user_id)
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error getting credit balance for {user_id}: {e}")
            raise UpstreamFailure("Failed to load credit balance") from e

        return CreditBalance(
            balance=balance,
            transaction_count=stats["transaction_count"] or 0,
            last_transaction_date=stats["last_transaction_date"]
        )

    async def get_history(self, user_id: str) -> CreditHistory:
        """Ledger rows of a user, newest first"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT c.*, o.order_number
                FROM credits c
                LEFT JOIN orders_main o ON o.id = c.order_id
                WHERE c.user_id = $1
                ORDER BY c.created_at DESC, c.id DESC
            """, user_id)
            balance = await self._current_balance(conn, user_id)

        return CreditHistory(
            transactions=[CreditTransaction.model_validate(dict(r)) for r in rows],
            current_balance=balance
        )

    async def get_all_transactions(self, limit: int = 50, offset: int = 0) -> CreditTransactionPage:
        """Admin listing of every ledger row"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT c.*, o.order_number
                FROM credits c
                LEFT JOIN orders_main o ON o.id = c.order_id
                ORDER BY c.created_at DESC, c.id DESC
                LIMIT $1 OFFSET $2
            """, limit, offset)
            total = await conn.fetchval("SELECT COUNT(*) FROM credits")

        return CreditTransactionPage(
            transactions=[CreditTransaction.model_validate(dict(r)) for r in rows],
            total_count=total or 0
        )

    async def get_unread_notifications(self, user_id: str) -> List[CreditNotification]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM credit_notifications
                WHERE user_id = $1 AND read = FALSE
                ORDER BY created_at DESC
            """, user_id)
            return [CreditNotification.model_validate(dict(r)) for r in rows]

    async def mark_notifications_read(self, user_id: str) -> int:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE credit_notifications
                SET read = TRUE
                WHERE user_id = $1 AND read = FALSE
            """, user_id)
        return int(result.split()[-1])

    async def add_credits(self, user_id: str, amount: Decimal, reason: Optional[str] = None,
                          created_by: Optional[str] = None,
                          expires_at: Optional[datetime] = None) -> CreditTransaction:
        """Grant credits to a user (admin)"""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationFailed("Credit amount must be positive")
        reason = reason or "Store credit added by admin"

        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    entry = await self._insert_entry(
                        conn, user_id, amount, CreditTransactionType.ADD, reason,
                        created_by=created_by, expires_at=expires_at
                    )
                    await conn.execute("""
                        INSERT INTO credit_notifications (
                            user_id, credit_id, amount, reason, notification_type
                        ) VALUES ($1, $2, $3, $4, 'credit_added')
                    """, user_id, entry.id, amount, reason)
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error adding credits to {user_id}: {e}")
            raise UpstreamFailure("Failed to add credits") from e

        self.logger.info(f"Added {amount} credits to {user_id}")
        return entry

    async def add_credits_to_all_users(self, amount: Decimal, reason: Optional[str] = None,
                                       created_by: Optional[str] = None) -> int:
        """Grant the same credit to every known customer"""
        async with self.db.pool.acquire() as conn:
            user_ids = await conn.fetch("""
                SELECT user_id FROM credits WHERE user_id IS NOT NULL
                UNION
                SELECT user_id FROM orders_main WHERE user_id IS NOT NULL
            """)

        reason = reason or "Promotional credit"
        for row in user_ids:
            await self.add_credits(row["user_id"], amount, reason, created_by)

        self.logger.info(f"Added {amount} credits to {len(user_ids)} users")
        return len(user_ids)

    async def debit_for_order(self, conn, user_id: str, order_id: int,
                              amount: Decimal) -> CreditTransaction:
        """Deduct credits for an order inside the caller's transaction"""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationFailed("Credit amount must be positive")

        entry = await self._insert_entry(
            conn, user_id, -amount, CreditTransactionType.DEDUCTION,
            f"Applied to order #{order_id}", order_id=order_id
        )
        self.logger.info(f"Debited {amount} credits from {user_id} for order {order_id}")
        return entry

    async def _restore(self, conn, order_id: int) -> Decimal:
        rows = await conn.fetch("""
            SELECT user_id, COALESCE(SUM(amount), 0) AS net
            FROM credits
            WHERE order_id = $1
            AND transaction_type IN ('deduction', 'restore')
            GROUP BY user_id
        """, order_id)

        restored = Decimal(0)
        for row in rows:
            owed = -to_money(row["net"])
            if owed <= 0:
                continue
            await self._insert_entry(
                conn, row["user_id"], owed, CreditTransactionType.RESTORE,
                f"Restored from unpaid order #{order_id}", order_id=order_id
            )
            restored += owed
        return restored

    async def restore_for_order(self, order_id: int, conn=None) -> Decimal:
        """Give back credits deducted for an order that was never paid.

        Pass `conn` to run inside the caller's transaction. Safe to repeat:
        only the part not yet restored is written back.
        """
        if conn is not None:
            restored = await self._restore(conn, order_id)
        else:
            try:
                async with self.db.pool.acquire() as conn:
                    async with conn.transaction():
                        restored = await self._restore(conn, order_id)
            except asyncpg.PostgresError as e:
                self.logger.error(f"Error restoring credits for order {order_id}: {e}")
                raise UpstreamFailure("Failed to restore credits") from e

        if restored:
            self.logger.info(f"Restored {restored} credits for order {order_id}")
        return restored

    async def reclaim_for_order(self, order_id: int, user_id: Optional[str],
                                credits_applied: Decimal) -> Decimal:
        """Debit again the credits of a cancelled order that got paid after all"""
        if not user_id or credits_applied <= 0:
            return Decimal(0)

        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    net = await conn.fetchval("""
                        SELECT COALESCE(SUM(amount), 0)
                        FROM credits
                        WHERE order_id = $1 AND user_id = $2
                        AND transaction_type IN ('deduction', 'restore')
                    """, order_id, user_id)
                    owed = to_money(credits_applied) + to_money(net)
                    if owed <= 0:
                        return Decimal(0)
                    await self._insert_entry(
                        conn, user_id, -owed, CreditTransactionType.DEDUCTION,
                        f"Applied to order #{order_id}", order_id=order_id
                    )
        except asyncpg.PostgresError as e:
            self.logger.error(f"Error reclaiming credits for order {order_id}: {e}")
            raise UpstreamFailure("Failed to reclaim credits") from e

        self.logger.info(f"Reclaimed {owed} credits from {user_id} for order {order_id}")
        return owed

    async def earn_points_from_purchase(self, user_id: Optional[str], order_total: Decimal,
                                        order_id: int) -> Optional[CreditTransaction]:
        """5% cashback on a paid order"""
        if not user_id or user_id == "guest":
            self.logger.info("Skipping points earning for guest checkout")
            return None

        points = to_money(to_money(order_total) * CASHBACK_RATE)
        if points <= 0:
            return None

        reason = f"${points:.2f} earned from your recent order"
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                already = await conn.fetchval("""
                    SELECT COUNT(*) FROM credits
                    WHERE order_id = $1 AND transaction_type = 'earned'
                """, order_id)
                if already:
                    return None

                entry = await self._insert_entry(
                    conn, user_id, points, CreditTransactionType.EARNED, reason,
                    order_id=order_id
                )
                await conn.execute("""
                    INSERT INTO credit_notifications (
                        user_id, credit_id, amount, reason, notification_type
                    ) VALUES ($1, $2, $3, $4, 'credit_earned')
                """, user_id, entry.id, points, reason)

        self.logger.info(f"User {user_id} earned {points} credits from order {order_id}")
        return entry
