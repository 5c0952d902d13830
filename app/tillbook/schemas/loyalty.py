from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class LoyaltyTransactionResponse(BaseModel):
    id: str
    sale_id: str | None
    transaction_type: str
    amount: Decimal
    points: int
    balance_before: Decimal
    balance_after: Decimal
    points_before: int
    points_after: int
    earned_date: date
    expires_at: date | None
    description: str | None
    created_at: datetime


class LoyaltyAccountResponse(BaseModel):
    id: str
    customer_name: str
    customer_email: str | None
    customer_phone: str | None
    as_of: date
    balance: Decimal
    points: int
    pending_credit: Decimal
    spendable: Decimal
    used_today: Decimal
    remaining_daily: Decimal | None
    total_earned: Decimal
    total_spent: Decimal
    last_activity_at: datetime | None
    transactions: list[LoyaltyTransactionResponse]
    trace_id: str
