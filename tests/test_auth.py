from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qari.auth import services as auth_service
from qari.auth.models import AuthSession
from qari.core.exceptions import AuthError, AuthErrorKind

from conftest import PASSWORD


@pytest.mark.asyncio
async def test_login_success(admin, client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "sheikh@example.com", "password": PASSWORD, "role": "teacher"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["approval_state"] == "approved"
    assert data["account"]["id"] == admin["account_id"]
    assert data["account"]["admin"] is True

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "sheikh@example.com"


@pytest.mark.asyncio
async def test_login_is_case_insensitive_on_email(admin, client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "Sheikh@Example.com", "password": PASSWORD, "role": "teacher"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_login_wrong_password(admin, client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "sheikh@example.com", "password": "wrong-password", "role": "teacher"},
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "nobody@example.com", "password": PASSWORD, "role": "parent"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_wrong_portal_signs_out(admin, client: AsyncClient, db_session: AsyncSession) -> None:
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "sheikh@example.com", "password": PASSWORD, "role": "parent"},
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Account type does not match the selected portal"

    # Only the registration session remains active
    sessions = (await db_session.execute(
        select(AuthSession).where(AuthSession.identity_id == UUID(admin["account_id"]))
    )).scalars().all()
    assert len(sessions) == 2
    assert sum(1 for s in sessions if s.revoked_at is None) == 1


@pytest.mark.asyncio
async def test_login_without_account_is_disabled(client: AsyncClient, db_session: AsyncSession) -> None:
    result = await auth_service.sign_up(db_session, "ghost@example.com", PASSWORD)

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": "ghost@example.com", "password": PASSWORD, "role": "parent"},
    )
    assert response.status_code == 403
    assert "disabled" in response.json()["detail"]

    # The login session was revoked; only the sign-up session is still open
    sessions = (await db_session.execute(
        select(AuthSession).where(AuthSession.identity_id == result.identity_id)
    )).scalars().all()
    assert len(sessions) == 2
    assert sum(1 for s in sessions if s.revoked_at is None) == 1


@pytest.mark.asyncio
async def test_refresh_and_logout(admin, client: AsyncClient) -> None:
    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": admin["refresh_token"]})
    assert response.status_code == 200
    headers = {"Authorization": f"Bearer {response.json()['access_token']}"}

    assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200
    assert (await client.post("/api/v1/auth/logout", headers=headers)).status_code == 204

    # Both the access token and the refresh token die with the session
    assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 401
    response = await client.post("/api/v1/auth/refresh", json={"refresh_token": admin["refresh_token"]})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_sign_up_duplicate_email(db_session: AsyncSession) -> None:
    await auth_service.sign_up(db_session, "dup@example.com", PASSWORD)
    with pytest.raises(AuthError) as exc_info:
        await auth_service.sign_up(db_session, "DUP@example.com", PASSWORD)
    assert exc_info.value.kind == AuthErrorKind.EMAIL_ALREADY_IN_USE
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_register_validation(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "a@example.com", "password": "123", "role": "parent", "name": "A"},
    )
    assert response.status_code == 422

    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "a@example.com", "password": PASSWORD, "role": "parent", "name": "   "},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_identity_removes_sessions(db_session: AsyncSession) -> None:
    result = await auth_service.sign_up(db_session, "leaving@example.com", PASSWORD)
    assert await auth_service.delete_identity(db_session, result.identity_id) is True

    assert await auth_service.get_identity_by_email(db_session, "leaving@example.com") is None
    sessions = (await db_session.execute(
        select(AuthSession).where(AuthSession.identity_id == result.identity_id)
    )).scalars().all()
    assert sessions == []
    assert await auth_service.current_identity(db_session, result.access_token) is None
    assert await auth_service.delete_identity(db_session, result.identity_id) is False
