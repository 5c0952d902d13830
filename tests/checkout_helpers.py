from __future__ import annotations

import uuid
from decimal import Decimal

from app.tillbook.core.security import hash_secret
from app.tillbook.db.models import Business, LoyaltyAccount, LoyaltySettingsRecord, TaxRule, User

PASSWORD = "Pass1234!"
MANAGER_PIN = "4321"


def login(client, username: str, password: str = PASSWORD) -> str:
    response = client.post(
        "/tillbook/auth/login",
        json={"username_or_email": username, "password": password},
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def auth_headers(token: str, key: str | None = None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if key:
        headers["Idempotency-Key"] = key
    return headers


def create_business(
    db_session,
    *,
    suffix: str,
    tip_enabled: bool = False,
    default_tip_percent: float = 0.15,
    cash_rounding_enabled: bool = True,
    timezone: str = "UTC",
):
    business = Business(
        id=uuid.uuid4(),
        name=f"Business {suffix}",
        short_code="TB",
        timezone=timezone,
        tip_enabled=tip_enabled,
        default_tip_percent=default_tip_percent,
        cash_rounding_enabled=cash_rounding_enabled,
    )
    db_session.add(business)
    db_session.commit()
    return business


def create_user(db_session, business, *, username: str, role: str = "CASHIER", pin: str | None = None, **kwargs):
    user = User(
        id=uuid.uuid4(),
        business_id=business.id,
        username=username,
        email=f"{username}@example.com",
        hashed_password=hash_secret(PASSWORD),
        hashed_pin=hash_secret(pin) if pin else None,
        role=role,
        is_active=kwargs.pop("is_active", True),
    )
    db_session.add(user)
    db_session.commit()
    return user


def create_business_with_staff(db_session, *, suffix: str, **business_kwargs):
    business = create_business(db_session, suffix=suffix, **business_kwargs)
    cashier = create_user(db_session, business, username=f"cashier-{suffix}")
    manager = create_user(db_session, business, username=f"manager-{suffix}", role="MANAGER", pin=MANAGER_PIN)
    return business, cashier, manager


def create_tax_rule(db_session, business, *, name: str = "HST", rate: float = 0.13, category_type: str = "tax", **kwargs):
    rule = TaxRule(
        id=uuid.uuid4(),
        business_id=business.id,
        name=name,
        category_type=category_type,
        rate=rate,
        category_ids=kwargs.pop("category_ids", ["general"]),
        rebate_affects=kwargs.pop("rebate_affects", None),
        is_active=True,
    )
    db_session.add(rule)
    db_session.commit()
    return rule


def create_loyalty_program(db_session, business, **overrides):
    values = {
        "is_active": True,
        "loyalty_mode": "dollars",
        "redemption_rate": 100,
        "min_redemption": 0,
        "max_redemption_per_day": None,
        "max_redemption_per_transaction": None,
        "earn_rate_percentage": 1.0,
        "auto_apply": "never",
        "allow_partial_redemption": True,
        "credits_expire": False,
        "expiry_months": 12,
    }
    values.update(overrides)
    record = LoyaltySettingsRecord(id=uuid.uuid4(), business_id=business.id, **values)
    db_session.add(record)
    db_session.commit()
    return record


def create_loyalty_account(db_session, business, *, balance: float = 0.0, name: str = "Casey Customer"):
    account = LoyaltyAccount(
        id=uuid.uuid4(),
        business_id=business.id,
        customer_name=name,
        customer_email="casey@example.com",
        customer_phone="555-0100",
        balance=balance,
    )
    db_session.add(account)
    db_session.commit()
    return account


def line(name: str = "Coffee beans", unit_price: str = "10.00", quantity: int = 1, category_id: str = "general"):
    return {"sku": f"SKU-{name[:4].upper()}", "name": name, "unit_price": unit_price, "quantity": quantity, "category_id": category_id}


def open_session(client, token: str, key: str, items: list[dict], **extra):
    response = client.post(
        "/tillbook/checkout/sessions",
        headers=auth_headers(token, key),
        json={"items": items, **extra},
    )
    assert response.status_code == 201, response.json()
    return response.json()


def tender(client, token: str, session_id: str, key: str, amount: str, method: str, custom_name: str | None = None):
    payload = {"amount": amount, "method": method}
    if custom_name is not None:
        payload["custom_name"] = custom_name
    return client.post(
        f"/tillbook/checkout/sessions/{session_id}/tenders",
        headers=auth_headers(token, key),
        json=payload,
    )


def finalize(client, token: str, session_id: str, key: str):
    return client.post(
        f"/tillbook/checkout/sessions/{session_id}/finalize",
        headers=auth_headers(token, key),
        json={},
    )


def money(value) -> Decimal:
    return Decimal(str(value))
