"""
Integration tests for the authentication flow.

Verifies Register -> Login -> Me -> Logout, and that every protected route
answers 401 without a usable token.
"""

import pytest
from sqlalchemy import select

from conftest import TEST_PASSWORD, auth_headers, create_user
from globetrotter.app.core.config import settings
from globetrotter.app.models.audit_log import AuditLog
from globetrotter.app.services.audit import AuditAction


@pytest.mark.asyncio
async def test_register_login_me(client):
    payload = {
        "email": "Dana@Example.com",
        "username": "dana",
        "password": "password123",
        "display_name": "Dana"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["token_type"] == "bearer"
    # Stored lower-cased so invites by e-mail match
    assert data["email"] == "dana@example.com"

    # Login by e-mail, typed differently
    response = await client.post("/v1/auth/login", json={"username": "DANA@example.com", "password": "password123"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    me = response.json()
    assert me["username"] == "dana"
    assert me["display_name"] == "Dana"
    assert me["id"] == data["user_id"]


@pytest.mark.asyncio
async def test_duplicate_registration_rejected(client, alice):
    response = await client.post("/v1/auth/register", json={
        "email": "someone@example.com", "username": "alice", "password": "password123"
    })
    assert response.status_code == 400
    assert response.json()["message"] == "Username already registered"

    response = await client.post("/v1/auth/register", json={
        "email": "ALICE@example.com", "username": "alice2", "password": "password123"
    })
    assert response.status_code == 400
    assert response.json()["message"] == "Email already registered"


@pytest.mark.asyncio
async def test_bad_credentials_are_audited(client, db_session, alice):
    response = await client.post("/v1/auth/login", json={"username": "alice", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_001"

    response = await client.post("/v1/auth/login", json={"username": "nobody", "password": TEST_PASSWORD})
    assert response.status_code == 401

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.LOGIN_FAILED).order_by(AuditLog.id)
    )
    reasons = [entry.meta_data["reason"] for entry in result.scalars().all()]
    assert reasons == ["Invalid password", "User not found"]


@pytest.mark.asyncio
async def test_inactive_user_cannot_login(client, db_session):
    await create_user(db_session, "frozen", is_active=False)

    response = await client.post("/v1/auth/login", json={"username": "frozen", "password": TEST_PASSWORD})

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_logout_revokes_token(client, alice, redis_client_session):
    headers = auth_headers(alice)

    response = await client.post("/v1/auth/logout", headers=headers)
    assert response.status_code == 200
    assert response.json()["revoked"] is True

    # The entry lives only as long as the token would have
    [ttl] = redis_client_session.ttls.values()
    assert 0 < ttl <= settings.access_token_expire_minutes * 60

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_AUTH_002"

    # Tokens issued afterwards are unaffected
    response = await client.post("/v1/auth/login", json={"username": "alice", "password": TEST_PASSWORD})
    fresh = {"Authorization": f"Bearer {response.json()['access_token']}"}
    assert (await client.get("/v1/auth/me", headers=fresh)).status_code == 200


@pytest.mark.asyncio
async def test_protected_routes_require_token(client):
    assert (await client.get("/v1/auth/me")).status_code == 401
    assert (await client.post("/v1/trips", json={"name": "Lisbon"})).status_code == 401
    assert (await client.get("/v1/invites/pending")).status_code == 401

    response = await client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["redis"] == "up"
    assert response.json()["database"] == "up"
    assert response.json()["chat_connections"] == 0
