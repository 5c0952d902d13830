from datetime import date
from decimal import Decimal

import pytest

from app.tillbook.core.error_catalog import AppError, ErrorCatalog
from app.tillbook.services.loyalty_ledger import (
    NO_LOYALTY,
    LoyaltyAccountSnapshot,
    LoyaltySettings,
    add_months,
    derive_points,
    earning_for,
    plan_ledger,
    quote_loyalty,
)


def _account(balance: str, **kwargs) -> LoyaltyAccountSnapshot:
    return LoyaltyAccountSnapshot(id="acct-1", balance=Decimal(balance), **kwargs)


def test_auto_apply_without_partial_uses_minimum():
    settings = LoyaltySettings(
        redemption_rate=Decimal("100"),
        min_redemption=Decimal("500"),
        allow_partial_redemption=False,
        auto_apply="always",
    )

    quote = quote_loyalty(Decimal("20.00"), settings, _account("10.00"))

    assert quote.available_credit == Decimal("10.00")
    assert quote.auto_applied == Decimal("5.00")
    assert quote.min_redemption_dollars == Decimal("5.00")
    assert quote.points_balance == 1000


def test_auto_apply_with_partial_uses_available_credit():
    settings = LoyaltySettings(auto_apply="always")
    quote = quote_loyalty(Decimal("20.00"), settings, _account("10.00"))
    assert quote.auto_applied == Decimal("10.00")


def test_auto_apply_skipped_below_minimum():
    settings = LoyaltySettings(min_redemption=Decimal("500"), auto_apply="always", allow_partial_redemption=False)
    quote = quote_loyalty(Decimal("20.00"), settings, _account("4.00"))
    assert quote.available_credit == Decimal("4.00")
    assert quote.auto_applied == Decimal("0.00")


def test_auto_apply_never_leaves_credit_for_tenders():
    quote = quote_loyalty(Decimal("20.00"), LoyaltySettings(), _account("10.00"))
    assert quote.auto_applied == Decimal("0.00")
    assert quote.available_credit == Decimal("10.00")


@pytest.mark.parametrize(
    "balance, subtotal, used_today, daily_points, per_txn_points",
    [
        ("10.00", "20.00", "0", None, None),
        ("50.00", "20.00", "0", None, None),
        ("50.00", "80.00", "35.00", "5000", None),
        ("50.00", "80.00", "0", "5000", "1500"),
        ("-30.00", "80.00", "0", None, None),
        ("50.00", "80.00", "60.00", "5000", None),
    ],
)
def test_available_credit_ceiling(balance, subtotal, used_today, daily_points, per_txn_points):
    settings = LoyaltySettings(
        max_redemption_per_day=None if daily_points is None else Decimal(daily_points),
        max_redemption_per_transaction=None if per_txn_points is None else Decimal(per_txn_points),
    )
    account = _account(balance, used_today=Decimal(used_today))

    quote = quote_loyalty(Decimal(subtotal), settings, account)

    ceilings = [abs(Decimal(balance)), Decimal(subtotal)]
    if quote.remaining_daily is not None:
        ceilings.append(quote.remaining_daily)
    if settings.per_transaction_limit_dollars is not None:
        ceilings.append(settings.per_transaction_limit_dollars)
    assert Decimal("0") <= quote.available_credit <= min(ceilings)


def test_daily_limit_in_points_converts_to_dollars():
    settings = LoyaltySettings(max_redemption_per_day=Decimal("5000"))
    quote = quote_loyalty(Decimal("80.00"), settings, _account("100.00", used_today=Decimal("10.00")))
    assert settings.daily_limit_dollars == Decimal("50.00")
    assert quote.remaining_daily == Decimal("40.00")
    assert quote.available_credit == Decimal("40.00")


@pytest.mark.parametrize("balance", ["10.00", "55.67", "99.99", "0.00", "-12.34"])
@pytest.mark.parametrize("min_points", ["0", "500", "2500"])
def test_auto_applied_never_between_zero_and_minimum(balance, min_points):
    settings = LoyaltySettings(min_redemption=Decimal(min_points), auto_apply="always", allow_partial_redemption=False)
    quote = quote_loyalty(Decimal("40.00"), settings, _account(balance))

    expected = min(settings.min_redemption_dollars, quote.available_credit, Decimal("40.00"))
    assert quote.auto_applied in (Decimal("0.00"), expected)
    assert not (Decimal("0") < quote.auto_applied < settings.min_redemption_dollars)


def test_inactive_program_means_no_loyalty():
    settings = LoyaltySettings(is_active=False, auto_apply="always")
    assert quote_loyalty(Decimal("20.00"), settings, _account("10.00")) is NO_LOYALTY
    assert quote_loyalty(Decimal("20.00"), None, _account("10.00")) is NO_LOYALTY


def test_discount_lowers_redeemable_amount():
    quote = quote_loyalty(Decimal("20.00"), LoyaltySettings(), _account("50.00"), discount=Decimal("15.00"))
    assert quote.available_credit == Decimal("5.00")


@pytest.mark.parametrize("balance", ["0", "0.01", "0.005", "12.345", "-7.25", "1000.10"])
@pytest.mark.parametrize("rate", ["1", "10", "100", "250"])
def test_points_always_derived_from_balance(balance, rate):
    settings = LoyaltySettings(redemption_rate=Decimal(rate))
    quote = quote_loyalty(Decimal("5.00"), settings, _account(balance))
    assert quote.points_balance == derive_points(Decimal(balance), Decimal(rate))
    assert derive_points(Decimal(balance), Decimal(rate)) == derive_points(-Decimal(balance), Decimal(rate))


def test_earning_excludes_redeemed_portion():
    settings = LoyaltySettings(earn_rate_percentage=Decimal("5"))
    dollars, points = earning_for(Decimal("40.00"), Decimal("10.00"), settings)
    assert dollars == Decimal("1.50")
    assert points == 150


def test_plan_ledger_redeems_before_earning():
    settings = LoyaltySettings(earn_rate_percentage=Decimal("10"))
    sale_date = date(2026, 3, 14)

    plan = plan_ledger(
        _account("10.00"),
        settings,
        subtotal=Decimal("30.00"),
        redeemed=Decimal("10.00"),
        sale_date=sale_date,
        receipt_number="RTB260314001",
    )

    redeem, earn = plan.entries
    assert redeem.transaction_type == "redeem"
    assert redeem.balance_before == Decimal("10.00")
    assert redeem.balance_after == Decimal("0.00")
    assert redeem.points_before == 1000
    assert redeem.points_after == 0
    assert earn.transaction_type == "earn"
    assert earn.amount == Decimal("2.00")
    assert earn.balance_before == Decimal("0.00")
    assert earn.balance_after == Decimal("2.00")
    assert earn.points_after == 200
    assert earn.earned_date == date(2026, 3, 15)
    assert earn.expires_at is None
    assert plan.balance_after == Decimal("2.00")
    assert "RTB260314001" in redeem.description


def test_plan_ledger_rejects_overdraft():
    with pytest.raises(AppError) as exc_info:
        plan_ledger(
            _account("5.00"),
            LoyaltySettings(),
            subtotal=Decimal("30.00"),
            redeemed=Decimal("6.00"),
            sale_date=date(2026, 3, 14),
        )
    assert exc_info.value.error.code == ErrorCatalog.LOYALTY_INSUFFICIENT_BALANCE.code


def test_pending_earned_credit_is_not_spendable():
    account = _account("12.00", pending_earned=Decimal("2.00"))
    assert account.spendable == Decimal("10.00")

    quote = quote_loyalty(Decimal("50.00"), LoyaltySettings(), account)
    assert quote.available_credit == Decimal("10.00")

    with pytest.raises(AppError):
        plan_ledger(account, LoyaltySettings(), subtotal=Decimal("50.00"), redeemed=Decimal("11.00"), sale_date=date(2026, 3, 14))


def test_expiring_credits_get_expiry_date():
    settings = LoyaltySettings(credits_expire=True, expiry_months=12)
    plan = plan_ledger(
        _account("0.00"),
        settings,
        subtotal=Decimal("100.00"),
        redeemed=Decimal("0"),
        sale_date=date(2026, 2, 28),
    )
    (earn,) = plan.entries
    assert earn.earned_date == date(2026, 3, 1)
    assert earn.expires_at == date(2027, 3, 1)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)
