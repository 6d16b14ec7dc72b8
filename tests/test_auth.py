"""Tests for signup, login and bearer-token authentication."""

from datetime import timedelta

import pytest

from docportal.utils.auth import create_access_token

pytestmark = pytest.mark.security


def test_signup_returns_token_and_user(client):
    response = client.post(
        "/api/signup",
        json={"email": "  Carol@Example.com ", "password": "s3cret-pass", "firstName": "Carol"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["token"]
    assert body["user"]["email"] == "carol@example.com"
    assert body["user"]["firstName"] == "Carol"
    assert "passwordHash" not in body["user"]
    assert "password_hash" not in body["user"]


@pytest.mark.parametrize("payload", [
    {"email": "dave@example.com"},
    {"password": "s3cret-pass"},
    {"email": "", "password": ""},
])
def test_signup_requires_email_and_password(client, payload):
    response = client.post("/api/signup", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "Email and password required"


def test_signup_rejects_malformed_email(client):
    response = client.post("/api/signup", json={"email": "not-an-email", "password": "s3cret-pass"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid email address"


def test_signup_rejects_short_password(client):
    response = client.post("/api/signup", json={"email": "eve@example.com", "password": "short"})

    assert response.status_code == 400


def test_signup_rejects_existing_email(client, alice):
    response = client.post("/api/signup", json={"email": "ALICE@example.com", "password": "another-pass"})

    assert response.status_code == 400
    assert response.json()["detail"] == "User already exists"


def test_login_with_valid_credentials(client, alice):
    response = client.post("/api/login", json={"email": "alice@example.com", "password": "correct-horse"})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == alice[0]["id"]
    me = client.get("/api/auth/user", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "alice@example.com"


def test_login_with_wrong_password(client, alice):
    response = client.post("/api/login", json={"email": "alice@example.com", "password": "wrong-horse"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_login_unknown_user(client):
    response = client.post("/api/login", json={"email": "nobody@example.com", "password": "whatever1"})

    assert response.status_code == 401


def test_login_requires_fields(client):
    response = client.post("/api/login", json={"email": "alice@example.com"})

    assert response.status_code == 400


def test_oauth2_token_endpoint(client, alice):
    response = client.post(
        "/api/auth/token",
        data={"username": "alice@example.com", "password": "correct-horse"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    me = client.get("/api/auth/user", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200


def test_current_user(client, alice):
    user, headers = alice

    response = client.get("/api/auth/user", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == user["id"]
    assert body["lastName"] == "Ng"


def test_missing_token_is_unauthorized(client):
    response = client.get("/api/auth/user")

    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"


def test_garbage_token_is_rejected(client):
    response = client.get("/api/auth/user", headers={"Authorization": "Bearer not.a.token"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_expired_token_is_rejected(client, alice):
    user, _ = alice
    token = create_access_token(user["id"], user["email"], expires_delta=timedelta(minutes=-1))

    response = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_token_for_deleted_user(client):
    token = create_access_token("00000000-0000-0000-0000-000000000000", "ghost@example.com")

    response = client.get("/api/auth/user", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 404


def test_logout(client):
    response = client.get("/api/logout")

    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}
