from datetime import date, datetime, timezone
from decimal import Decimal

from app.tillbook.core.error_catalog import ErrorCatalog
from app.tillbook.db.models import LoyaltyDailyUsage, LoyaltyTransaction, Sale
from app.tillbook.repos.loyalty import LoyaltyRepository
from tests.checkout_helpers import (
    create_business_with_staff,
    create_loyalty_account,
    create_loyalty_program,
    finalize,
    line,
    login,
    money,
    open_session,
    tender,
)


def test_increment_daily_usage_respects_cap(db_session):
    business, _cashier, _manager = create_business_with_staff(db_session, suffix="usage-cap")
    account = create_loyalty_account(db_session, business, balance=200.0)
    repo = LoyaltyRepository(db_session)
    day = date(2026, 3, 14)
    cap = Decimal("50.00")

    assert repo.increment_daily_usage(
        business_id=str(business.id), account_id=account.id, usage_date=day, amount=Decimal("10.00"), cap=cap
    )
    assert repo.increment_daily_usage(
        business_id=str(business.id), account_id=account.id, usage_date=day, amount=Decimal("30.00"), cap=cap
    )
    assert not repo.increment_daily_usage(
        business_id=str(business.id), account_id=account.id, usage_date=day, amount=Decimal("30.00"), cap=cap
    )
    assert repo.increment_daily_usage(
        business_id=str(business.id), account_id=account.id, usage_date=day, amount=Decimal("10.00"), cap=cap
    )
    db_session.commit()

    assert repo.get_daily_usage(account.id, day) == Decimal("50.00")
    assert db_session.query(LoyaltyDailyUsage).filter(LoyaltyDailyUsage.loyalty_account_id == account.id).count() == 1


def test_increment_daily_usage_resets_per_day_and_without_cap(db_session):
    business, _cashier, _manager = create_business_with_staff(db_session, suffix="usage-days")
    account = create_loyalty_account(db_session, business, balance=200.0)
    repo = LoyaltyRepository(db_session)

    assert not repo.increment_daily_usage(
        business_id=str(business.id),
        account_id=account.id,
        usage_date=date(2026, 3, 14),
        amount=Decimal("60.00"),
        cap=Decimal("50.00"),
    )
    assert repo.increment_daily_usage(
        business_id=str(business.id),
        account_id=account.id,
        usage_date=date(2026, 3, 15),
        amount=Decimal("45.00"),
        cap=Decimal("50.00"),
    )
    assert repo.increment_daily_usage(
        business_id=str(business.id),
        account_id=account.id,
        usage_date=date(2026, 3, 15),
        amount=Decimal("500.00"),
        cap=None,
    )
    db_session.commit()

    assert repo.get_daily_usage(account.id, date(2026, 3, 14)) == Decimal("0.00")
    assert repo.get_daily_usage(account.id, date(2026, 3, 15)) == Decimal("545.00")


def test_two_terminals_cannot_exceed_daily_cap(client, db_session):
    business, cashier, _manager = create_business_with_staff(db_session, suffix="two-terminals")
    create_loyalty_program(db_session, business, max_redemption_per_day=5000)
    account = create_loyalty_account(db_session, business, balance=100.0)
    business_date = datetime.now(timezone.utc).date()
    db_session.add(
        LoyaltyDailyUsage(
            business_id=business.id,
            loyalty_account_id=account.id,
            usage_date=business_date,
            amount_used=10.0,
        )
    )
    db_session.commit()
    token = login(client, cashier.username)

    sessions = []
    for terminal in ("a", "b"):
        session = open_session(
            client,
            token,
            f"open-{terminal}",
            [line(unit_price="40.00")],
            loyalty_account_id=str(account.id),
        )
        assert money(session["loyalty"]["remaining_daily"]) == Decimal("40.00")
        assert money(session["loyalty"]["available_credit"]) == Decimal("40.00")
        for index, (amount, method) in enumerate((("30.00", "loyalty_credit"), ("10.00", "card"))):
            response = tender(client, token, session["id"], f"tender-{terminal}-{index}", amount, method)
            assert response.status_code == 200
            assert response.json()["status"] == "accepted"
        sessions.append(session["id"])

    first = finalize(client, token, sessions[0], "finalize-a")
    assert first.status_code == 200
    assert money(first.json()["loyalty_redeemed"]) == Decimal("30.00")

    second = finalize(client, token, sessions[1], "finalize-b")
    assert second.status_code == 409
    assert second.json()["code"] == ErrorCatalog.LOYALTY_DAILY_LIMIT_EXCEEDED.code

    db_session.expire_all()
    usage = LoyaltyRepository(db_session).get_daily_usage(account.id, business_date)
    assert usage == Decimal("40.00")
    assert db_session.query(Sale).filter(Sale.business_id == business.id).count() == 1
    assert (
        db_session.query(LoyaltyTransaction)
        .filter(LoyaltyTransaction.loyalty_account_id == account.id, LoyaltyTransaction.transaction_type == "redeem")
        .count()
        == 1
    )
