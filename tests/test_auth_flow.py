import uuid

from app.tillbook.core.error_catalog import ErrorCatalog
from app.tillbook.db.models import AuditEvent
from tests.checkout_helpers import PASSWORD, auth_headers, create_business, create_user, login


def test_login_success(client, db_session):
    business = create_business(db_session, suffix="login")
    create_user(db_session, business, username="jane")

    response = client.post("/tillbook/auth/login", json={"email": "jane@example.com", "password": PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["access_token"]
    assert body["token_type"] == "bearer"
    assert body["business_id"] == str(business.id)
    assert body["role"] == "CASHIER"
    event = db_session.query(AuditEvent).filter(AuditEvent.action == "auth.login").one()
    assert event.result == "success"


def test_login_invalid_password(client, db_session):
    business = create_business(db_session, suffix="login-bad")
    create_user(db_session, business, username="jane")

    response = client.post("/tillbook/auth/login", json={"username_or_email": "jane", "password": "wrong-pass"})

    assert response.status_code == 401
    assert response.json()["code"] == ErrorCatalog.INVALID_CREDENTIALS.code
    event = db_session.query(AuditEvent).filter(AuditEvent.action == "auth.login.failed").one()
    assert event.result == "failure"


def test_login_unknown_user(client):
    response = client.post("/tillbook/auth/login", json={"username_or_email": "ghost", "password": PASSWORD})
    assert response.status_code == 401
    assert response.json()["code"] == ErrorCatalog.INVALID_CREDENTIALS.code


def test_login_blocked_inactive(client, db_session):
    business = create_business(db_session, suffix="login-inactive")
    create_user(db_session, business, username="jane", is_active=False)

    response = client.post("/tillbook/auth/login", json={"username_or_email": "jane", "password": PASSWORD})

    assert response.status_code == 403
    assert response.json()["code"] == ErrorCatalog.USER_INACTIVE.code


def test_invalid_token_rejected(client):
    response = client.get(
        f"/tillbook/loyalty/accounts/{uuid.uuid4()}",
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == ErrorCatalog.INVALID_TOKEN.code


def test_unknown_loyalty_account(client, db_session):
    business = create_business(db_session, suffix="loyalty-missing")
    create_user(db_session, business, username="jane")
    token = login(client, "jane")

    response = client.get(f"/tillbook/loyalty/accounts/{uuid.uuid4()}", headers=auth_headers(token))

    assert response.status_code == 404
    assert response.json()["code"] == ErrorCatalog.LOYALTY_ACCOUNT_NOT_FOUND.code
