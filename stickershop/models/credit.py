# stickershop/models/credit.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional
from enum import Enum
from pydantic import Field
from .base import ApiModel, TimeStampedModel

class CreditTransactionType(str, Enum):
    ADD = "add"
    EARNED = "earned"
    DEDUCTION = "deduction"
    RESTORE = "restore"

class CreditTransaction(TimeStampedModel):
    """Ledger row; amount is signed, balance is the running total after it"""
    id: int
    user_id: str
    amount: Decimal
    balance: Decimal
    reason: Optional[str] = None
    transaction_type: CreditTransactionType
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    created_by: Optional[str] = None
    expires_at: Optional[datetime] = None

class CreditBalance(ApiModel):
    balance: Decimal = Decimal(0)
    transaction_count: int = 0
    last_transaction_date: Optional[datetime] = None

class CreditHistory(ApiModel):
    transactions: List[CreditTransaction] = []
    current_balance: Decimal = Decimal(0)

class CreditTransactionPage(ApiModel):
    transactions: List[CreditTransaction] = []
    total_count: int = 0

class CreditNotification(ApiModel):
    id: int
    user_id: str
    credit_id: Optional[int] = None
    amount: Decimal
    reason: Optional[str] = None
    notification_type: str
    read: bool = False
    created_at: datetime

class AddCreditsInput(ApiModel):
    user_id: str
    amount: Decimal = Field(gt=0)
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

class BulkCreditsInput(ApiModel):
    amount: Decimal = Field(gt=0)
    reason: Optional[str] = None

def available_balance(entries: Iterable[Mapping[str, Any]], now: datetime) -> Decimal:
    """Spendable credit from ledger rows in the order they were written.

    A deduction draws on the grants still valid when it was made, soonest
    expiring first. Only the unspent part of a grant lapses when it expires.
    """
    lots: List[List[Any]] = []
    for entry in entries:
        amount = Decimal(entry["amount"])
        if amount > 0:
            lots.append([amount, entry["expires_at"]])
        elif amount < 0:
            owed = -amount
            spent_at = entry["created_at"]
            live = [lot for lot in lots if lot[0] > 0 and (lot[1] is None or lot[1] > spent_at)]
            live.sort(key=lambda lot: (lot[1] is None, lot[1] or spent_at))
            for lot in live:
                taken = min(lot[0], owed)
                lot[0] -= taken
                owed -= taken
                if owed <= 0:
                    break

    return sum((lot[0] for lot in lots if lot[1] is None or lot[1] > now), Decimal(0))
