from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.money import ZERO, quantize_money
from app.tillbook.repos.businesses import BusinessRepository
from app.tillbook.repos.loyalty import LoyaltyRepository
from app.tillbook.services.loyalty_ledger import LoyaltyAccountSnapshot, LoyaltySettings, derive_points
from app.tillbook.services.sale_draft import BusinessSettings


@dataclass(frozen=True)
class LoyaltyAccountSummary:
    account: object
    as_of: date
    balance: Decimal
    points: int
    pending_credit: Decimal
    spendable: Decimal
    used_today: Decimal
    remaining_daily: Decimal | None
    transactions: list


class LoyaltyAccountService:
    def __init__(self, db, business_id: str):
        self.repo = LoyaltyRepository(db)
        self.businesses = BusinessRepository(db)
        self.business_id = business_id

    def summary(self, account_id: str) -> LoyaltyAccountSummary:
        account = self.repo.get_account(account_id, self.business_id)
        if account is None:
            raise AppError(ErrorCatalog.LOYALTY_ACCOUNT_NOT_FOUND, details={"loyalty_account_id": account_id})
        business = self.businesses.get_by_id(self.business_id)
        if business is None:
            raise AppError(ErrorCatalog.BUSINESS_NOT_FOUND, details={"business_id": self.business_id})
        as_of = BusinessSettings.from_record(business).local_date()
        record = self.repo.get_settings(self.business_id)
        loyalty_settings = LoyaltySettings.from_record(record) if record is not None else LoyaltySettings()

        snapshot = LoyaltyAccountSnapshot(
            id=str(account.id),
            balance=quantize_money(account.balance),
            used_today=self.repo.get_daily_usage(account.id, as_of),
            pending_earned=self.repo.pending_earned_total(account.id, as_of),
        )
        daily_limit = loyalty_settings.daily_limit_dollars
        remaining_daily = None if daily_limit is None else max(ZERO, daily_limit - snapshot.used_today)
        return LoyaltyAccountSummary(
            account=account,
            as_of=as_of,
            balance=quantize_money(abs(snapshot.balance)),
            points=derive_points(snapshot.balance, loyalty_settings.redemption_rate),
            pending_credit=snapshot.pending_earned,
            spendable=snapshot.spendable,
            used_today=snapshot.used_today,
            remaining_daily=remaining_daily,
            transactions=self.repo.list_transactions(account.id),
        )
