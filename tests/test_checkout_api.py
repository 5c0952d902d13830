import uuid
from decimal import Decimal

from app.tillbook.core.error_catalog import ErrorCatalog
from app.tillbook.db.models import AuditEvent, CheckoutSession, Receipt, Sale, SaleTender
from app.tillbook.repos.audit import AuditRepository
from app.tillbook.services.checkout import BusinessTaxOracle
from tests.checkout_helpers import (
    MANAGER_PIN,
    auth_headers,
    create_business_with_staff,
    create_loyalty_account,
    create_loyalty_program,
    create_tax_rule,
    finalize,
    line,
    login,
    money,
    open_session,
    tender,
)


def test_cash_sale_with_change(client, db_session):
    business, cashier, _manager = create_business_with_staff(db_session, suffix="cash-sale")
    create_tax_rule(db_session, business, rate=0.13)
    token = login(client, cashier.username)

    session = open_session(client, token, "open-cash", [line(unit_price="25.00", quantity=2)])
    assert money(session["subtotal"]) == Decimal("50.00")
    assert money(session["tax"]["total_tax"]) == Decimal("6.50")
    assert money(session["display_total"]) == Decimal("56.50")
    assert money(session["next_default_amount"]) == Decimal("56.50")
    assert session["payable"] is False

    response = tender(client, token, session["id"], "tender-cash", "60.00", "cash")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert money(body["session"]["change_owed"]) == Decimal("3.50")
    assert money(body["session"]["remaining_balance"]) == Decimal("0.00")

    settled = finalize(client, token, session["id"], "finalize-cash")
    assert settled.status_code == 200
    result = settled.json()
    assert result["receipt_number"].startswith("RTB")
    assert result["receipt_number"].endswith("001")
    assert money(result["final_total"]) == Decimal("56.50")
    assert money(result["change_owed"]) == Decimal("3.50")
    assert result["replayed"] is False

    sale = db_session.query(Sale).filter(Sale.checkout_session_id == uuid.UUID(session["id"])).one()
    assert sale.receipt_number == result["receipt_number"]
    assert db_session.query(Receipt).filter(Receipt.sale_id == sale.id).count() == 1
    record = db_session.get(CheckoutSession, uuid.UUID(session["id"]))
    assert record.status == "SETTLED"
    event = db_session.query(AuditEvent).filter(AuditEvent.action == "checkout.sale.settled").one()
    assert event.entity_id == result["sale_id"]


def test_finalize_requires_full_payment(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="unpaid-api")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-unpaid", [line(unit_price="20.00")])
    tender(client, token, session["id"], "tender-unpaid", "5.00", "card")

    response = finalize(client, token, session["id"], "finalize-unpaid")

    assert response.status_code == 422
    assert response.json()["code"] == ErrorCatalog.SETTLEMENT_BALANCE_OUTSTANDING.code
    assert money(response.json()["details"]["remaining_balance"]) == Decimal("15.00")
    assert db_session.query(Sale).count() == 0


def test_finalize_twice_returns_stored_result(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="refinalize")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-twice", [line(unit_price="20.00")])
    tender(client, token, session["id"], "tender-twice", "20.00", "card")

    first = finalize(client, token, session["id"], "finalize-once")
    second = finalize(client, token, session["id"], "finalize-again")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["sale_id"] == first.json()["sale_id"]
    assert db_session.query(Sale).count() == 1

    closed = tender(client, token, session["id"], "tender-after", "1.00", "card")
    assert closed.status_code == 409
    assert closed.json()["code"] == ErrorCatalog.CHECKOUT_SESSION_CLOSED.code


def test_manager_override_flow(client, db_session):
    business, cashier, manager = create_business_with_staff(db_session, suffix="override")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-override", [line(unit_price="100.00")])
    session_id = session["id"]

    proposed = tender(client, token, session_id, "tender-over", "120.00", "card")
    assert proposed.status_code == 200
    assert proposed.json()["status"] == "authorization_required"
    pending = proposed.json()["session"]
    assert pending["authorization"]["state"] == "pending_approval"
    assert money(pending["remaining_balance"]) == Decimal("100.00")
    assert pending["tenders"] == []

    blocked = tender(client, token, session_id, "tender-blocked", "10.00", "cash")
    assert blocked.status_code == 409
    assert blocked.json()["code"] == ErrorCatalog.AUTHORIZATION_PENDING.code

    denied = client.post(
        f"/tillbook/checkout/sessions/{session_id}/authorization",
        headers=auth_headers(token, "auth-wrong"),
        json={"pin": "0000"},
    )
    assert denied.status_code == 403
    assert denied.json()["code"] == ErrorCatalog.MANAGER_CREDENTIAL_INVALID.code
    current = client.get(f"/tillbook/checkout/sessions/{session_id}", headers=auth_headers(token)).json()
    assert current["authorization"]["state"] == "pending_approval"
    assert money(current["remaining_balance"]) == Decimal("100.00")

    approved = client.post(
        f"/tillbook/checkout/sessions/{session_id}/authorization",
        headers=auth_headers(token, "auth-right"),
        json={"pin": MANAGER_PIN},
    )
    assert approved.status_code == 200
    body = approved.json()
    assert body["status"] == "accepted"
    assert body["session"]["authorization"]["state"] == "idle"
    assert body["session"]["tenders"][0]["manager_override"] is True
    assert money(body["session"]["change_owed"]) == Decimal("20.00")

    settled = finalize(client, token, session_id, "finalize-override")
    assert settled.status_code == 200
    stored = db_session.query(SaleTender).filter(SaleTender.sale_id == uuid.UUID(settled.json()["sale_id"])).one()
    assert stored.manager_override is True
    assert stored.change_given == 20.0

    events = AuditRepository(db_session).list_for_entity(
        business_id=str(business.id), entity_type="checkout_session", entity_id=session_id
    )
    actions = {(event.action, event.result) for event in events}
    assert ("checkout.manager_override.denied", "denied") in actions
    assert ("checkout.manager_override.approved", "success") in actions
    approval = next(event for event in events if event.action == "checkout.manager_override.approved")
    assert approval.event_metadata["manager_user_id"] == str(manager.id)


def test_dismiss_authorization_discards_pending_tender(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="dismiss")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-dismiss", [line(unit_price="30.00")])
    tender(client, token, session["id"], "tender-dismiss", "45.00", "gift_card")

    response = client.delete(
        f"/tillbook/checkout/sessions/{session['id']}/authorization",
        headers=auth_headers(token, "dismiss-1"),
    )

    assert response.status_code == 200
    assert response.json()["authorization"]["state"] == "idle"
    assert response.json()["tenders"] == []
    assert money(response.json()["remaining_balance"]) == Decimal("30.00")


def test_discount_sign_off_blocks_tenders_until_approved(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="sign-off")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-sign-off", [line(unit_price="80.00")], discount_amount="25.00")
    session_id = session["id"]

    requested = client.post(
        f"/tillbook/checkout/sessions/{session_id}/authorization/request",
        headers=auth_headers(token, "sign-off-1"),
        json={"reason": "large_discount", "amount": "25.00"},
    )
    assert requested.status_code == 200
    assert requested.json()["authorization"]["state"] == "pending_approval"
    assert requested.json()["authorization"]["reason"] == "large_discount"
    assert money(requested.json()["authorization"]["requested_amount"]) == Decimal("25.00")

    blocked = tender(client, token, session_id, "sign-off-tender-1", "55.00", "card")
    assert blocked.status_code == 409
    assert blocked.json()["code"] == ErrorCatalog.AUTHORIZATION_PENDING.code

    approved = client.post(
        f"/tillbook/checkout/sessions/{session_id}/authorization",
        headers=auth_headers(token, "sign-off-pin"),
        json={"pin": MANAGER_PIN},
    )
    assert approved.status_code == 200
    assert approved.json()["session"]["authorization"]["state"] == "idle"
    assert approved.json()["session"]["tenders"] == []

    paid = tender(client, token, session_id, "sign-off-tender-2", "55.00", "card")
    assert paid.status_code == 200
    assert paid.json()["status"] == "accepted"


def test_tip_and_tender_removal(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="tips", tip_enabled=True)
    token = login(client, cashier.username)
    session = open_session(client, token, "open-tips", [line(unit_price="40.00")])
    assert money(session["tip_amount"]) == Decimal("6.00")

    changed = client.post(
        f"/tillbook/checkout/sessions/{session['id']}/tip",
        headers=auth_headers(token, "tip-1"),
        json={"tip_amount": "4.03"},
    )
    assert changed.status_code == 200
    assert money(changed.json()["display_total"]) == Decimal("44.03")

    tender(client, token, session["id"], "tender-tip-1", "10.00", "cash")
    tender(client, token, session["id"], "tender-tip-2", "10.00", "card")
    locked = client.post(
        f"/tillbook/checkout/sessions/{session['id']}/tip",
        headers=auth_headers(token, "tip-2"),
        json={"tip_amount": "1.00"},
    )
    assert locked.status_code == 409
    assert locked.json()["code"] == ErrorCatalog.TIP_LOCKED.code

    current = client.get(f"/tillbook/checkout/sessions/{session['id']}", headers=auth_headers(token)).json()
    assert money(current["display_total"]) == Decimal("44.05")
    assert current["cash_rounding_applied"] is True
    assert money(current["tenders"][0]["tip_amount"]) == Decimal("4.03")

    removed = client.delete(
        f"/tillbook/checkout/sessions/{session['id']}/tenders/0",
        headers=auth_headers(token, "remove-0"),
    )
    assert removed.status_code == 200
    body = removed.json()
    assert [t["method"] for t in body["tenders"]] == ["card"]
    assert money(body["display_total"]) == Decimal("44.03")
    assert money(body["remaining_balance"]) == Decimal("34.03")

    missing = client.delete(
        f"/tillbook/checkout/sessions/{session['id']}/tenders/5",
        headers=auth_headers(token, "remove-5"),
    )
    assert missing.status_code == 404
    assert missing.json()["code"] == ErrorCatalog.TENDER_NOT_FOUND.code


def test_loyalty_auto_apply_reduces_total_and_tax(client, db_session):
    business, cashier, _manager = create_business_with_staff(db_session, suffix="auto-apply")
    create_tax_rule(db_session, business, rate=0.10)
    create_loyalty_program(
        db_session,
        business,
        min_redemption=500,
        allow_partial_redemption=False,
        auto_apply="always",
    )
    account = create_loyalty_account(db_session, business, balance=10.0)
    token = login(client, cashier.username)

    session = open_session(
        client,
        token,
        "open-auto",
        [line(unit_price="20.00")],
        loyalty_account_id=str(account.id),
    )

    assert money(session["loyalty"]["auto_applied"]) == Decimal("5.00")
    assert session["loyalty"]["points_balance"] == 1000
    assert money(session["loyalty_discount"]) == Decimal("5.00")
    assert money(session["tax"]["total_tax"]) == Decimal("1.50")
    assert money(session["display_total"]) == Decimal("16.50")

    tender(client, token, session["id"], "tender-auto", "16.50", "card")
    settled = finalize(client, token, session["id"], "finalize-auto")
    assert settled.status_code == 200
    assert money(settled.json()["loyalty_redeemed"]) == Decimal("5.00")
    assert settled.json()["loyalty_points_earned"] == 15

    summary = client.get(f"/tillbook/loyalty/accounts/{account.id}", headers=auth_headers(token))
    assert summary.status_code == 200
    body = summary.json()
    assert money(body["balance"]) == Decimal("5.15")
    assert body["points"] == 515
    assert money(body["pending_credit"]) == Decimal("0.15")
    assert money(body["spendable"]) == Decimal("5.00")
    assert [row["transaction_type"] for row in body["transactions"]] == ["redeem", "earn"]


def test_validation_errors_leave_session_unchanged(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="validation")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-validation", [line(unit_price="20.00")])

    missing_name = tender(client, token, session["id"], "bad-custom", "5.00", "custom")
    assert missing_name.status_code == 422
    assert missing_name.json()["code"] == ErrorCatalog.TENDER_MISSING_CUSTOM_NAME.code

    zero = tender(client, token, session["id"], "bad-zero", "0", "card")
    assert zero.status_code == 422
    assert zero.json()["code"] == ErrorCatalog.TENDER_INVALID_AMOUNT.code

    huge = tender(client, token, session["id"], "bad-huge", "1E+30", "cash")
    assert huge.status_code == 422
    assert huge.json()["code"] == ErrorCatalog.VALIDATION_ERROR.code

    huge_tip = client.post(
        f"/tillbook/checkout/sessions/{session['id']}/tip",
        headers=auth_headers(token, "bad-huge-tip"),
        json={"tip_amount": "1E+30"},
    )
    assert huge_tip.status_code == 422

    current = client.get(f"/tillbook/checkout/sessions/{session['id']}", headers=auth_headers(token)).json()
    assert current["tenders"] == []
    assert money(current["remaining_balance"]) == Decimal("20.00")


def test_tender_idempotency_replay_and_conflict(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="idem")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-idem", [line(unit_price="20.00")])

    first = tender(client, token, session["id"], "tender-idem", "5.00", "card")
    replay = tender(client, token, session["id"], "tender-idem", "5.00", "card")
    assert replay.status_code == 200
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == ErrorCatalog.IDEMPOTENCY_REPLAY.code

    current = client.get(f"/tillbook/checkout/sessions/{session['id']}", headers=auth_headers(token)).json()
    assert len(current["tenders"]) == 1

    conflict = tender(client, token, session["id"], "tender-idem", "6.00", "card")
    assert conflict.status_code == 409
    assert conflict.json()["code"] == ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD.code

    missing_key = client.post(
        f"/tillbook/checkout/sessions/{session['id']}/tenders",
        headers=auth_headers(token),
        json={"amount": "1.00", "method": "card"},
    )
    assert missing_key.status_code == 400
    assert missing_key.json()["code"] == ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED.code


def test_sessions_are_scoped_to_business(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="scope-a")
    _other, other_cashier, _other_manager = create_business_with_staff(db_session, suffix="scope-b")
    token = login(client, cashier.username)
    other_token = login(client, other_cashier.username)
    session = open_session(client, token, "open-scope", [line(unit_price="20.00")])

    response = client.get(f"/tillbook/checkout/sessions/{session['id']}", headers=auth_headers(other_token))

    assert response.status_code == 404
    assert response.json()["code"] == ErrorCatalog.CHECKOUT_SESSION_NOT_FOUND.code


def test_requests_without_token_are_rejected(client):
    response = client.get(f"/tillbook/checkout/sessions/{uuid.uuid4()}")
    assert response.status_code == 401


def test_pending_authorization_freezes_tip_and_tender_removal(client, db_session):
    _business, cashier, _manager = create_business_with_staff(db_session, suffix="frozen")
    token = login(client, cashier.username)
    session = open_session(client, token, "open-frozen", [line(unit_price="100.00")])
    session_id = session["id"]
    assert tender(client, token, session_id, "frozen-card", "40.00", "card").json()["status"] == "accepted"
    proposed = tender(client, token, session_id, "frozen-over", "80.00", "card")
    assert proposed.json()["status"] == "authorization_required"

    removed = client.delete(
        f"/tillbook/checkout/sessions/{session_id}/tenders/0",
        headers=auth_headers(token, "frozen-remove"),
    )
    assert removed.status_code == 409
    assert removed.json()["code"] == ErrorCatalog.AUTHORIZATION_PENDING.code

    tipped = client.post(
        f"/tillbook/checkout/sessions/{session_id}/tip",
        headers=auth_headers(token, "frozen-tip"),
        json={"tip_amount": "5.00"},
    )
    assert tipped.status_code == 409
    assert tipped.json()["code"] == ErrorCatalog.AUTHORIZATION_PENDING.code

    current = client.get(f"/tillbook/checkout/sessions/{session_id}", headers=auth_headers(token)).json()
    assert len(current["tenders"]) == 1
    assert money(current["remaining_balance"]) == Decimal("60.00")
    assert current["authorization"]["state"] == "pending_approval"


def test_tax_outage_is_requoted_before_first_tender(client, db_session, monkeypatch):
    business, cashier, _manager = create_business_with_staff(db_session, suffix="tax-outage")
    create_tax_rule(db_session, business, rate=0.13)
    token = login(client, cashier.username)

    def unavailable(self, *args, **kwargs):
        raise RuntimeError("tax rules unavailable")

    monkeypatch.setattr(BusinessTaxOracle, "compute_tax", unavailable)
    session = open_session(client, token, "open-tax-outage", [line(unit_price="100.00")])
    assert session["tax"]["degraded"] is True
    assert money(session["tax"]["total_tax"]) == Decimal("0.00")
    assert money(session["display_total"]) == Decimal("100.00")

    monkeypatch.undo()
    response = tender(client, token, session["id"], "tax-outage-card", "50.00", "card")

    assert response.status_code == 200
    body = response.json()["session"]
    assert body["tax"]["degraded"] is False
    assert money(body["tax"]["total_tax"]) == Decimal("13.00")
    assert money(body["display_total"]) == Decimal("113.00")
    assert money(body["remaining_balance"]) == Decimal("63.00")
