from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from leadhub.core.auth import create_access_token, decode_access_token
from leadhub.crm.models import User
from leadhub.notifications.realtime import (
    ALL_USERS_ROOM,
    authenticate_socket,
    lead_room,
    role_room,
    set_session_factory,
    user_room,
)

from factories import auth_headers


def test_missing_token_is_unauthorized(token_client: TestClient) -> None:
    response = token_client.get("/api/v1/leads")

    assert response.status_code == 401
    body = response.json()
    assert body["kind"] == "unauthorized"
    assert body["correlation_id"] == response.headers["x-correlation-id"]


def test_garbage_token_is_unauthorized(token_client: TestClient) -> None:
    response = token_client.get("/api/v1/leads", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_inactive_user_is_rejected(token_client: TestClient, users: dict[str, User]) -> None:
    response = token_client.get("/api/v1/auth/me", headers=auth_headers(users["inactive"]))

    assert response.status_code == 401


def test_me_returns_the_token_subject(token_client: TestClient, users: dict[str, User]) -> None:
    response = token_client.get("/api/v1/auth/me", headers=auth_headers(users["manager"]))

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == str(users["manager"].id)
    assert body["email"] == "manager@example.com"
    assert body["role"] == "Manager"
    assert body["is_active"] is True
    assert "password_hash" not in body


def test_token_round_trip(users: dict[str, User]) -> None:
    token = create_access_token(users["exec1"].id, users["exec1"].role)

    assert decode_access_token(token) == users["exec1"].id
    assert decode_access_token(create_access_token(users["exec1"].id, "x", expires_minutes=-1)) is None


def test_socket_handshake_resolves_active_users_only(
    session_factory: sessionmaker[Session],
    users: dict[str, User],
) -> None:
    set_session_factory(session_factory)

    identity = authenticate_socket(create_access_token(users["exec1"].id, users["exec1"].role))
    assert identity == {"user_id": str(users["exec1"].id), "email": "sam@example.com", "role": "Sales Executive"}

    assert authenticate_socket(create_access_token(users["inactive"].id, "Sales Executive")) is None
    assert authenticate_socket("junk") is None
    assert authenticate_socket(None) is None


def test_room_names() -> None:
    assert user_room("42") == "user:42"
    assert role_room("Manager") == "role:Manager"
    assert lead_room("7") == "lead:7"
    assert ALL_USERS_ROOM == "all-users"
