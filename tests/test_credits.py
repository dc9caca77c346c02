from datetime import datetime, timedelta
from decimal import Decimal
import pytest
import pytz
from stickershop.models.credit import available_balance
from stickershop.models.result import ValidationFailed
from stickershop.services.credit_service import CreditService

NOW = datetime(2025, 6, 1, tzinfo=pytz.utc)

def ledger_row(amount, balance, transaction_type, **overrides):
    row = {
        "id": 1,
        "user_id": "user-1",
        "amount": Decimal(amount),
        "balance": Decimal(balance),
        "reason": "test",
        "transaction_type": transaction_type,
        "order_id": None,
        "created_at": NOW,
    }
    row.update(overrides)
    return row

def entry(amount, days_ago, expires_in_days=None):
    """Balance query row; days are relative to the real clock"""
    now = datetime.now(pytz.utc)
    expires_at = now + timedelta(days=expires_in_days) if expires_in_days is not None else None
    return {"amount": Decimal(amount), "created_at": now - timedelta(days=days_ago),
            "expires_at": expires_at}

def test_balance_only_lapses_unspent_part_of_grant():
    now = datetime.now(pytz.utc)
    spent = [entry("50", 30, expires_in_days=-1), entry("-50", 20)]
    assert available_balance(spent, now) == Decimal(0)

    partly_spent = [entry("50", 30, expires_in_days=-1), entry("-30", 20), entry("20", 10)]
    assert available_balance(partly_spent, now) == Decimal("20")

def test_deductions_draw_on_soonest_expiring_grant():
    now = datetime.now(pytz.utc)
    rows = [entry("40", 30), entry("40", 29, expires_in_days=-1), entry("-40", 20)]
    # the expiring grant was used up first, the permanent one is intact
    assert available_balance(rows, now) == Decimal("40")

def test_grant_expired_before_spending_is_not_drawn_on():
    now = datetime.now(pytz.utc)
    rows = [entry("50", 30, expires_in_days=-25), entry("30", 10), entry("-30", 2)]
    assert available_balance(rows, now) == Decimal(0)

async def test_debit_beyond_balance_fails(fake_db, fake_conn):
    fake_conn.fetch_results = [[entry("10.00", 5)]]
    service = CreditService(fake_db)

    with pytest.raises(ValidationFailed):
        await service.debit_for_order(fake_conn, "user-1", 5, Decimal("25"))
    assert not any(q.startswith("INSERT INTO credits") for q, _ in fake_conn.queries)

async def test_debit_writes_negative_entry(fake_db, fake_conn):
    fake_conn.fetch_results = [[entry("50.00", 5)]]
    fake_conn.fetchrow_results = [ledger_row("-20.00", "30.00", "deduction", order_id=5)]

    entry_row = await CreditService(fake_db).debit_for_order(fake_conn, "user-1", 5, Decimal("20"))

    assert entry_row.balance == Decimal("30.00")
    assert fake_conn.queries[0][0] == "SELECT pg_advisory_xact_lock(hashtext($1))"
    insert_args = next(args for q, args in fake_conn.queries if q.startswith("INSERT INTO credits"))
    assert insert_args[1] == Decimal("-20.00")
    assert insert_args[2] == Decimal("30.00")
    assert insert_args[4] == "deduction"

async def test_grant_after_spent_grant_expired(fake_db, fake_conn):
    fake_conn.fetch_results = [[entry("50.00", 30, expires_in_days=-1), entry("-50.00", 20)]]
    fake_conn.fetchrow_results = [ledger_row("20.00", "20.00", "add", id=3)]

    granted = await CreditService(fake_db).add_credits("user-1", Decimal("20"))

    assert granted.amount == Decimal("20.00")
    insert_args = next(args for q, args in fake_conn.queries if q.startswith("INSERT INTO credits"))
    assert insert_args[2] == Decimal("20.00")

async def test_balance_of_expired_spent_grant_is_zero(fake_db, fake_conn):
    fake_conn.fetch_results = [[entry("50.00", 30, expires_in_days=-1), entry("-50.00", 20)]]
    fake_conn.fetchrow_results = [{"transaction_count": 2, "last_transaction_date": NOW}]

    balance = await CreditService(fake_db).get_balance("user-1")

    assert balance.balance == Decimal("0.00")
    assert balance.transaction_count == 2

async def test_add_credits_must_be_positive(fake_db):
    with pytest.raises(ValidationFailed):
        await CreditService(fake_db).add_credits("user-1", Decimal("0"))

async def test_earn_points_skips_guests_and_zero(fake_db, fake_conn):
    service = CreditService(fake_db)
    assert await service.earn_points_from_purchase(None, Decimal("100"), 1) is None
    assert await service.earn_points_from_purchase("guest", Decimal("100"), 1) is None
    assert await service.earn_points_from_purchase("user-1", Decimal("0"), 1) is None
    assert fake_conn.queries == []

async def test_earn_points_once_per_order(fake_db, fake_conn):
    fake_conn.fetchval_results = [1]
    assert await CreditService(fake_db).earn_points_from_purchase("user-1", Decimal("100"), 1) is None
    assert not any(q.startswith("INSERT INTO credits") for q, _ in fake_conn.queries)

async def test_earn_points_five_percent(fake_db, fake_conn):
    fake_conn.fetchval_results = [0]
    fake_conn.fetchrow_results = [ledger_row("4.50", "4.50", "earned", order_id=1)]

    earned = await CreditService(fake_db).earn_points_from_purchase("user-1", Decimal("90"), 1)

    assert earned.amount == Decimal("4.50")
    insert_args = next(args for q, args in fake_conn.queries if q.startswith("INSERT INTO credits"))
    assert insert_args[1] == Decimal("4.50")

async def test_restore_only_owed_credits(fake_db, fake_conn):
    fake_conn.fetch_rows = [{"user_id": "user-1", "net": Decimal("0.00")}]
    assert await CreditService(fake_db).restore_for_order(9) == Decimal(0)
    assert not any(q.startswith("INSERT INTO credits") for q, _ in fake_conn.queries)

async def test_restore_writes_back_deduction(fake_db, fake_conn):
    fake_conn.fetch_results = [
        [{"user_id": "user-1", "net": Decimal("-15.00")}],
        [entry("20.00", 5), entry("-15.00", 1)],
    ]
    fake_conn.fetchrow_results = [ledger_row("15.00", "20.00", "restore", order_id=9)]

    assert await CreditService(fake_db).restore_for_order(9) == Decimal("15.00")
    insert_args = next(args for q, args in fake_conn.queries if q.startswith("INSERT INTO credits"))
    assert insert_args[2] == Decimal("20.00")

async def test_reclaim_debits_restored_credits_again(fake_db, fake_conn):
    fake_conn.fetchval_results = [Decimal("0.00")]
    fake_conn.fetch_results = [[entry("40.00", 5), entry("-15.00", 2), entry("15.00", 1)]]
    fake_conn.fetchrow_results = [ledger_row("-15.00", "25.00", "deduction", order_id=9)]

    assert await CreditService(fake_db).reclaim_for_order(9, "user-1", Decimal("15")) == Decimal("15.00")
    insert_args = next(args for q, args in fake_conn.queries if q.startswith("INSERT INTO credits"))
    assert insert_args[1] == Decimal("-15.00")
    assert insert_args[4] == "deduction"

async def test_reclaim_skips_when_nothing_was_restored(fake_db, fake_conn):
    fake_conn.fetchval_results = [Decimal("-15.00")]
    assert await CreditService(fake_db).reclaim_for_order(9, "user-1", Decimal("15")) == Decimal(0)
    assert not any(q.startswith("INSERT INTO credits") for q, _ in fake_conn.queries)

async def test_reclaim_fails_when_credits_were_spent(fake_db, fake_conn):
    fake_conn.fetchval_results = [Decimal("0.00")]
    fake_conn.fetch_results = [[entry("15.00", 5), entry("-15.00", 2), entry("15.00", 1), entry("-15.00", 0)]]

    with pytest.raises(ValidationFailed):
        await CreditService(fake_db).reclaim_for_order(9, "user-1", Decimal("15"))

async def test_mark_notifications_read_counts_rows(fake_db, fake_conn):
    fake_conn.execute_result = "UPDATE 3"
    assert await CreditService(fake_db).mark_notifications_read("user-1") == 3
