from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from app.tillbook.core.money import quantize_money
from app.tillbook.db.models import LoyaltyAccount, LoyaltyDailyUsage, LoyaltySettingsRecord, LoyaltyTransaction

# Float columns; absorbs binary drift when comparing summed cents to the cap.
_CAP_TOLERANCE = 0.001


class LoyaltyRepository:
    def __init__(self, db):
        self.db = db

    def get_settings(self, business_id: str) -> LoyaltySettingsRecord | None:
        stmt = select(LoyaltySettingsRecord).where(LoyaltySettingsRecord.business_id == business_id)
        return self.db.execute(stmt).scalars().first()

    def get_account(self, account_id: str, business_id: str, *, for_update: bool = False) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(
            LoyaltyAccount.id == account_id,
            LoyaltyAccount.business_id == business_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def get_daily_usage(self, account_id: str, usage_date: date) -> Decimal:
        stmt = select(LoyaltyDailyUsage.amount_used).where(
            LoyaltyDailyUsage.loyalty_account_id == account_id,
            LoyaltyDailyUsage.usage_date == usage_date,
        )
        return quantize_money(self.db.execute(stmt).scalar_one_or_none() or 0)

    def pending_earned_total(self, account_id: str, as_of: date) -> Decimal:
        stmt = select(func.coalesce(func.sum(LoyaltyTransaction.amount), 0)).where(
            LoyaltyTransaction.loyalty_account_id == account_id,
            LoyaltyTransaction.transaction_type == "earn",
            LoyaltyTransaction.earned_date > as_of,
        )
        return quantize_money(self.db.execute(stmt).scalar_one())

    def increment_daily_usage(
        self,
        *,
        business_id: str,
        account_id: str,
        usage_date: date,
        amount: Decimal,
        cap: Decimal | None,
    ) -> bool:
        """Atomically add ``amount`` to the day's usage row.

        Returns False when the increment would push usage above ``cap``; in
        that case nothing is written.
        """
        if cap is not None and amount > cap:
            return False
        insert = postgresql.insert if self.db.get_bind().dialect.name == "postgresql" else sqlite.insert
        now = datetime.utcnow()
        stmt = insert(LoyaltyDailyUsage).values(
            id=uuid.uuid4(),
            business_id=business_id,
            loyalty_account_id=account_id,
            usage_date=usage_date,
            amount_used=float(amount),
            updated_at=now,
        )
        merged_amount = LoyaltyDailyUsage.amount_used + stmt.excluded.amount_used
        stmt = stmt.on_conflict_do_update(
            index_elements=["loyalty_account_id", "usage_date"],
            set_={"amount_used": merged_amount, "updated_at": stmt.excluded.updated_at},
            where=None if cap is None else merged_amount <= float(cap) + _CAP_TOLERANCE,
        )
        result = self.db.execute(stmt)
        return result.rowcount > 0

    def add_transaction(self, transaction: LoyaltyTransaction) -> LoyaltyTransaction:
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def save_account(self, account: LoyaltyAccount) -> LoyaltyAccount:
        self.db.add(account)
        self.db.flush()
        return account

    def list_transactions(self, account_id: str) -> list[LoyaltyTransaction]:
        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.loyalty_account_id == account_id)
            .order_by(LoyaltyTransaction.created_at, LoyaltyTransaction.transaction_type.desc())
        )
        return self.db.execute(stmt).scalars().all()
