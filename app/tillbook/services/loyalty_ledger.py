"""Loyalty credit quoting and ledger planning.

Balances are dollars. Points are always derived from a dollar amount with
``derive_points``; nothing in the engine carries a points figure that was not
produced by it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.core.money import ZERO, quantize_money, round_half_up_int, to_decimal

AUTO_APPLY_ALWAYS = "always"
AUTO_APPLY_CHOICES = ("always", "never", "customer_choice")


def derive_points(balance, redemption_rate) -> int:
    return round_half_up_int(abs(to_decimal(balance)) * to_decimal(redemption_rate))


def add_months(value: date, months: int) -> date:
    """Calendar-month offset; day 31 lands on the last day of a shorter month."""
    return value + relativedelta(months=months)


@dataclass(frozen=True)
class LoyaltySettings:
    """Per-business program configuration. Redemption limits are in points."""

    is_active: bool = True
    mode: str = "dollars"
    redemption_rate: Decimal = Decimal("100")
    min_redemption: Decimal = ZERO
    max_redemption_per_day: Decimal | None = None
    max_redemption_per_transaction: Decimal | None = None
    earn_rate_percentage: Decimal = Decimal("1")
    auto_apply: str = "never"
    allow_partial_redemption: bool = True
    credits_expire: bool = False
    expiry_months: int = 12

    def _points_to_dollars(self, points: Decimal | None) -> Decimal | None:
        if points is None:
            return None
        if self.redemption_rate <= 0:
            return ZERO
        return quantize_money(to_decimal(points) / self.redemption_rate)

    @property
    def min_redemption_dollars(self) -> Decimal:
        return self._points_to_dollars(self.min_redemption)

    @property
    def daily_limit_dollars(self) -> Decimal | None:
        return self._points_to_dollars(self.max_redemption_per_day)

    @property
    def per_transaction_limit_dollars(self) -> Decimal | None:
        return self._points_to_dollars(self.max_redemption_per_transaction)

    @classmethod
    def from_record(cls, record) -> "LoyaltySettings":
        def optional(value):
            return None if value is None else to_decimal(value)

        return cls(
            is_active=bool(record.is_active),
            mode=record.loyalty_mode,
            redemption_rate=to_decimal(record.redemption_rate),
            min_redemption=to_decimal(record.min_redemption),
            max_redemption_per_day=optional(record.max_redemption_per_day),
            max_redemption_per_transaction=optional(record.max_redemption_per_transaction),
            earn_rate_percentage=to_decimal(record.earn_rate_percentage),
            auto_apply=record.auto_apply if record.auto_apply in AUTO_APPLY_CHOICES else "never",
            allow_partial_redemption=bool(record.allow_partial_redemption),
            credits_expire=bool(record.credits_expire),
            expiry_months=int(record.expiry_months or 0),
        )

    def to_state(self) -> dict:
        def optional(value):
            return None if value is None else str(value)

        return {
            "is_active": self.is_active,
            "mode": self.mode,
            "redemption_rate": str(self.redemption_rate),
            "min_redemption": str(self.min_redemption),
            "max_redemption_per_day": optional(self.max_redemption_per_day),
            "max_redemption_per_transaction": optional(self.max_redemption_per_transaction),
            "earn_rate_percentage": str(self.earn_rate_percentage),
            "auto_apply": self.auto_apply,
            "allow_partial_redemption": self.allow_partial_redemption,
            "credits_expire": self.credits_expire,
            "expiry_months": self.expiry_months,
        }

    @classmethod
    def from_state(cls, state: dict) -> "LoyaltySettings":
        def optional(value):
            return None if value is None else to_decimal(value)

        return cls(
            is_active=bool(state["is_active"]),
            mode=state["mode"],
            redemption_rate=to_decimal(state["redemption_rate"]),
            min_redemption=to_decimal(state["min_redemption"]),
            max_redemption_per_day=optional(state.get("max_redemption_per_day")),
            max_redemption_per_transaction=optional(state.get("max_redemption_per_transaction")),
            earn_rate_percentage=to_decimal(state["earn_rate_percentage"]),
            auto_apply=state["auto_apply"],
            allow_partial_redemption=bool(state["allow_partial_redemption"]),
            credits_expire=bool(state["credits_expire"]),
            expiry_months=int(state["expiry_months"]),
        )


@dataclass(frozen=True)
class LoyaltyAccountSnapshot:
    id: str
    balance: Decimal
    used_today: Decimal = ZERO
    pending_earned: Decimal = ZERO
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None

    @property
    def spendable(self) -> Decimal:
        return max(ZERO, quantize_money(abs(self.balance) - self.pending_earned))


@dataclass(frozen=True)
class LoyaltyQuote:
    account_id: str | None = None
    balance: Decimal = ZERO
    points_balance: int = 0
    available_credit: Decimal = ZERO
    remaining_daily: Decimal | None = None
    auto_applied: Decimal = ZERO
    min_redemption_dollars: Decimal = ZERO
    allow_partial_redemption: bool = True
    points_to_earn: int = 0

    @property
    def applies(self) -> bool:
        return self.account_id is not None

    def to_state(self) -> dict:
        return {
            "account_id": self.account_id,
            "balance": str(self.balance),
            "points_balance": self.points_balance,
            "available_credit": str(self.available_credit),
            "remaining_daily": None if self.remaining_daily is None else str(self.remaining_daily),
            "auto_applied": str(self.auto_applied),
            "min_redemption_dollars": str(self.min_redemption_dollars),
            "allow_partial_redemption": self.allow_partial_redemption,
            "points_to_earn": self.points_to_earn,
        }

    @classmethod
    def from_state(cls, state: dict | None) -> "LoyaltyQuote":
        if not state:
            return NO_LOYALTY
        remaining = state.get("remaining_daily")
        return cls(
            account_id=state.get("account_id"),
            balance=quantize_money(state.get("balance")),
            points_balance=int(state.get("points_balance", 0)),
            available_credit=quantize_money(state.get("available_credit")),
            remaining_daily=None if remaining is None else quantize_money(remaining),
            auto_applied=quantize_money(state.get("auto_applied")),
            min_redemption_dollars=quantize_money(state.get("min_redemption_dollars")),
            allow_partial_redemption=bool(state.get("allow_partial_redemption", True)),
            points_to_earn=int(state.get("points_to_earn", 0)),
        )


NO_LOYALTY = LoyaltyQuote()


def earning_for(subtotal, redeemed, settings: LoyaltySettings) -> tuple[Decimal, int]:
    """Dollars and points earned on the part of the sale not paid with loyalty."""
    base = max(ZERO, to_decimal(subtotal) - to_decimal(redeemed))
    dollars = quantize_money(base * settings.earn_rate_percentage / Decimal("100"))
    return dollars, derive_points(dollars, settings.redemption_rate)


def quote_loyalty(
    subtotal,
    settings: LoyaltySettings | None,
    account: LoyaltyAccountSnapshot | None,
    *,
    discount=ZERO,
) -> LoyaltyQuote:
    """Quote the credit a sale may redeem and how much of it is applied automatically.

    The ceiling caps credit at the subtotal net of the manual discount rather
    than the gross subtotal, so redemption can never push the sale below zero.
    """
    if settings is None or account is None or not settings.is_active or settings.redemption_rate <= 0:
        return NO_LOYALTY

    subtotal = quantize_money(subtotal)
    redeemable = max(ZERO, subtotal - quantize_money(discount))
    ceilings = [account.spendable, redeemable]

    remaining_daily = None
    daily_limit = settings.daily_limit_dollars
    if daily_limit is not None:
        remaining_daily = max(ZERO, daily_limit - account.used_today)
        ceilings.append(remaining_daily)
    per_transaction = settings.per_transaction_limit_dollars
    if per_transaction is not None:
        ceilings.append(per_transaction)
    available = max(ZERO, min(ceilings))

    min_dollars = settings.min_redemption_dollars
    auto_applied = ZERO
    if settings.auto_apply == AUTO_APPLY_ALWAYS and available > 0 and available >= min_dollars:
        if settings.allow_partial_redemption:
            auto_applied = min(available, redeemable)
        else:
            auto_applied = min(min_dollars, available, redeemable)

    _, points_to_earn = earning_for(subtotal, auto_applied, settings)
    return LoyaltyQuote(
        account_id=account.id,
        balance=quantize_money(abs(account.balance)),
        points_balance=derive_points(account.balance, settings.redemption_rate),
        available_credit=available,
        remaining_daily=remaining_daily,
        auto_applied=auto_applied,
        min_redemption_dollars=min_dollars,
        allow_partial_redemption=settings.allow_partial_redemption,
        points_to_earn=points_to_earn,
    )


@dataclass(frozen=True)
class LedgerEntry:
    transaction_type: str
    amount: Decimal
    points: int
    balance_before: Decimal
    balance_after: Decimal
    points_before: int
    points_after: int
    earned_date: date
    expires_at: date | None
    description: str


@dataclass(frozen=True)
class LedgerPlan:
    entries: tuple[LedgerEntry, ...]
    balance_before: Decimal
    balance_after: Decimal
    redeemed: Decimal
    earned: Decimal
    points_earned: int


def plan_ledger(
    account: LoyaltyAccountSnapshot,
    settings: LoyaltySettings,
    *,
    subtotal,
    redeemed,
    sale_date: date,
    receipt_number: str | None = None,
) -> LedgerPlan:
    """Build the redeem/earn rows for a settled sale.

    Redemption is applied before earning; earned credit is dated the day after
    the sale so it cannot fund the sale that produced it.
    """
    rate = settings.redemption_rate
    redeemed = quantize_money(redeemed)
    start = quantize_money(abs(account.balance))
    reference = f" on {receipt_number}" if receipt_number else ""

    if redeemed > account.spendable:
        raise AppError(
            ErrorCatalog.LOYALTY_INSUFFICIENT_BALANCE,
            details={
                "loyalty_account_id": account.id,
                "requested": redeemed,
                "spendable": account.spendable,
            },
        )

    entries: list[LedgerEntry] = []
    running = start
    if redeemed > 0:
        after = running - redeemed
        entries.append(
            LedgerEntry(
                transaction_type="redeem",
                amount=redeemed,
                points=derive_points(redeemed, rate),
                balance_before=running,
                balance_after=after,
                points_before=derive_points(running, rate),
                points_after=derive_points(after, rate),
                earned_date=sale_date,
                expires_at=None,
                description=f"Redeemed ${redeemed}{reference}",
            )
        )
        running = after

    earned, points_earned = earning_for(subtotal, redeemed, settings)
    if points_earned > 0:
        after = running + earned
        earned_date = sale_date + timedelta(days=1)
        expires_at = None
        if settings.credits_expire and settings.expiry_months > 0:
            expires_at = add_months(earned_date, settings.expiry_months)
        entries.append(
            LedgerEntry(
                transaction_type="earn",
                amount=earned,
                points=points_earned,
                balance_before=running,
                balance_after=after,
                points_before=derive_points(running, rate),
                points_after=derive_points(after, rate),
                earned_date=earned_date,
                expires_at=expires_at,
                description=f"Earned ${earned}{reference}",
            )
        )
        running = after
    else:
        earned = ZERO

    return LedgerPlan(
        entries=tuple(entries),
        balance_before=start,
        balance_after=running,
        redeemed=redeemed,
        earned=earned,
        points_earned=points_earned,
    )
