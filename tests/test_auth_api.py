from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadhub.core.auth import decode_access_token, hash_password, verify_password
from leadhub.core.database import get_db
from leadhub.crm.models import User
from leadhub.main import app

from factories import auth_headers


REGISTRATION = {
    "first_name": "John",
    "last_name": "Doe",
    "email": "john.doe@example.com",
    "password": "password123",
    "role": "Sales Executive",
}


@pytest.fixture()
def auth_client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _register(client: TestClient, **overrides: object):
    payload = dict(REGISTRATION)
    payload.update(overrides)
    return client.post("/api/v1/auth/register", json=payload)


def test_register_returns_user_and_token(auth_client: TestClient, db_session: Session) -> None:
    response = _register(auth_client)

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "john.doe@example.com"
    assert body["user"]["role"] == "Sales Executive"
    assert "password_hash" not in body["user"]
    assert decode_access_token(body["token"]) is not None
    assert str(decode_access_token(body["token"])) == body["user"]["id"]

    stored = db_session.scalar(select(User).where(User.email == "john.doe@example.com"))
    assert stored is not None
    assert stored.password_hash != "password123"
    assert verify_password("password123", stored.password_hash)


def test_register_rejects_duplicate_email(auth_client: TestClient) -> None:
    assert _register(auth_client).status_code == 201

    response = _register(auth_client, first_name="Jane")

    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "conflict"
    assert body["code"] == "auth_register_failed"
    assert "already registered" in body["message"]


def test_register_rejects_invalid_input(auth_client: TestClient) -> None:
    response = _register(auth_client, first_name="", email="invalid-email", password="123")

    assert response.status_code == 422
    body = response.json()
    assert body["kind"] == "validation_error"
    assert {item["field"] for item in body["details"]} == {"first_name", "email", "password"}


def test_register_rejects_unknown_role(auth_client: TestClient) -> None:
    response = _register(auth_client, role="Owner")

    assert response.status_code == 422
    assert response.json()["details"] == [{"field": "role", "message": "Role must be one of: Admin, Manager, Sales Executive"}]


def test_register_rejects_password_over_bcrypt_limit(auth_client: TestClient) -> None:
    response = _register(auth_client, password="é" * 40)

    assert response.status_code == 422
    assert response.json()["details"][0]["field"] == "password"


def test_first_registration_may_claim_admin_but_later_ones_may_not(auth_client: TestClient) -> None:
    first = _register(auth_client, email="root@example.com", role="Admin")
    assert first.status_code == 201
    assert first.json()["user"]["role"] == "Admin"

    second = _register(auth_client, email="climber@example.com", role="Manager")

    assert second.status_code == 403
    assert second.json()["kind"] == "forbidden"


def test_login_returns_user_and_token(auth_client: TestClient) -> None:
    _register(auth_client)

    response = auth_client.post("/api/v1/auth/login", json={"email": "john.doe@example.com", "password": "password123"})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "john.doe@example.com"
    assert body["token"]


@pytest.mark.parametrize(
    "credentials",
    [
        {"email": "wrong@example.com", "password": "password123"},
        {"email": "john.doe@example.com", "password": "wrongpassword"},
    ],
)
def test_login_rejects_bad_credentials(auth_client: TestClient, credentials: dict[str, str]) -> None:
    _register(auth_client)

    response = auth_client.post("/api/v1/auth/login", json=credentials)

    assert response.status_code == 401
    body = response.json()
    assert body["kind"] == "unauthorized"
    assert body["message"] == "Invalid email or password"


def test_login_rejects_inactive_and_passwordless_users(auth_client: TestClient, db_session: Session) -> None:
    db_session.add_all(
        [
            User(
                email="gone@example.com",
                first_name="Gil",
                last_name="Gone",
                is_active=False,
                password_hash=hash_password("password123"),
            ),
            User(email="invited@example.com", first_name="Ivy", last_name="Invited"),
        ]
    )
    db_session.commit()

    for email in ("gone@example.com", "invited@example.com"):
        response = auth_client.post("/api/v1/auth/login", json={"email": email, "password": "password123"})
        assert response.status_code == 401


def test_me_returns_profile_for_issued_token(auth_client: TestClient) -> None:
    _register(auth_client)
    token = auth_client.post(
        "/api/v1/auth/login",
        json={"email": "john.doe@example.com", "password": "password123"},
    ).json()["token"]

    response = auth_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["email"] == "john.doe@example.com"
    assert "password_hash" not in response.json()


def test_me_requires_a_valid_token(auth_client: TestClient) -> None:
    missing = auth_client.get("/api/v1/auth/me")
    assert missing.status_code == 401
    assert missing.json()["message"] == "authentication required"

    invalid = auth_client.get("/api/v1/auth/me", headers={"Authorization": "Bearer invalid-token"})
    assert invalid.status_code == 401


def test_admin_provisioned_password_allows_login(auth_client: TestClient, db_session: Session) -> None:
    admin = User(email="admin@example.com", first_name="Ada", last_name="Admin", role="Admin")
    db_session.add(admin)
    db_session.commit()

    created = auth_client.post(
        "/api/v1/users",
        json={"email": "new@example.com", "first_name": "Nia", "last_name": "New", "password": "s3cret-pass"},
        headers=auth_headers(admin),
    )
    assert created.status_code == 201

    response = auth_client.post("/api/v1/auth/login", json={"email": "new@example.com", "password": "s3cret-pass"})

    assert response.status_code == 200
    assert response.json()["user"]["id"] == created.json()["id"]
