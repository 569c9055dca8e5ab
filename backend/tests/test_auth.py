# tests/test_auth.py — Sign-up, sign-in and session lifecycle tests
import asyncio
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Session, ActivityLog, User
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestSignUp:
    async def test_sign_up_success(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signUp", json={
            "email": "newuser@hermes.dev",
            "name": "New User",
            "password": "SecurePass123",
        })
        assert res.status_code == 200
        data = res.json()
        assert len(data["token"]) == 64
        assert data["user"]["email"] == "newuser@hermes.dev"
        assert data["user"]["role"] == "user"
        assert "passwordHash" not in data["user"]

    async def test_sign_up_token_opens_session(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signUp", json={
            "email": "session@hermes.dev",
            "name": "Session User",
            "password": "SecurePass123",
        })
        token = res.json()["token"]
        me = await client.get("/api/trpc/auth.me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "session@hermes.dev"

    async def test_sign_up_duplicate_email(self, client: AsyncClient, test_user):
        res = await client.post("/api/trpc/auth.signUp", json={
            "email": test_user.email,
            "name": "Someone Else",
            "password": "SecurePass123",
        })
        assert res.status_code == 409

    async def test_concurrent_sign_up_same_email(self, client: AsyncClient, db_session):
        body = {"email": "race@hermes.dev", "name": "Racer", "password": "SecurePass123"}
        first, second = await asyncio.gather(
            client.post("/api/trpc/auth.signUp", json=body),
            client.post("/api/trpc/auth.signUp", json=body),
        )
        assert sorted([first.status_code, second.status_code]) == [200, 409]

        result = await db_session.execute(select(User).where(User.email == "race@hermes.dev"))
        assert len(result.scalars().all()) == 1

    async def test_sign_up_short_password(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signUp", json={
            "email": "weak@hermes.dev",
            "name": "Weak",
            "password": "short",
        })
        assert res.status_code == 422

    async def test_sign_up_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signUp", json={
            "email": "not-an-email",
            "name": "Nobody",
            "password": "SecurePass123",
        })
        assert res.status_code == 422


@pytest.mark.asyncio
class TestSignIn:
    async def test_sign_in_success(self, client: AsyncClient, test_user, db_session):
        res = await client.post("/api/trpc/auth.signIn", json={
            "email": "testuser@hermes.dev",
            "password": "TestPassword123",
        })
        assert res.status_code == 200
        data = res.json()
        assert data["user"]["id"] == test_user.id
        assert data["user"]["lastActiveAt"] is not None

        result = await db_session.execute(select(Session).where(Session.token == data["token"]))
        assert result.scalar_one_or_none() is not None

        result = await db_session.execute(select(ActivityLog).where(ActivityLog.action == "auth.signed_in"))
        assert len(result.scalars().all()) == 1

    async def test_sign_in_wrong_password(self, client: AsyncClient, test_user):
        res = await client.post("/api/trpc/auth.signIn", json={
            "email": "testuser@hermes.dev",
            "password": "WrongPassword123",
        })
        assert res.status_code == 401

    async def test_sign_in_unknown_email(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signIn", json={
            "email": "nobody@hermes.dev",
            "password": "SomePassword123",
        })
        assert res.status_code == 401
        assert res.json()["detail"] == "Invalid credentials"

    async def test_sign_in_sso_account_without_password(self, client: AsyncClient, test_user, db_session):
        test_user.password_hash = None
        await db_session.commit()
        res = await client.post("/api/trpc/auth.signIn", json={
            "email": "testuser@hermes.dev",
            "password": "TestPassword123",
        })
        assert res.status_code == 401

    async def test_workos_not_implemented(self, client: AsyncClient):
        res = await client.post("/api/trpc/auth.signInWithWorkOS", json={"code": "abc", "state": "xyz"})
        assert res.status_code == 501


@pytest.mark.asyncio
class TestSessions:
    async def test_me_without_token(self, client: AsyncClient):
        res = await client.get("/api/trpc/auth.me")
        assert res.status_code == 401

    async def test_me_with_unknown_token(self, client: AsyncClient):
        res = await client.get("/api/trpc/auth.me", headers={"Authorization": "Bearer deadbeef"})
        assert res.status_code == 401

    async def test_me_with_expired_session(self, client: AsyncClient, db_session, test_user):
        headers = await get_auth_headers(db_session, test_user, expires_in=timedelta(hours=-1))
        res = await client.get("/api/trpc/auth.me", headers=headers)
        assert res.status_code == 401

    async def test_sign_out_deletes_session(self, client: AsyncClient, auth_headers):
        res = await client.post("/api/trpc/auth.signOut", headers=auth_headers)
        assert res.status_code == 200
        assert res.json() == {"success": True}

        res = await client.get("/api/trpc/auth.me", headers=auth_headers)
        assert res.status_code == 401

    async def test_refresh_session_extends_expiry(self, client: AsyncClient, db_session, test_user):
        headers = await get_auth_headers(db_session, test_user, expires_in=timedelta(minutes=5))
        res = await client.post("/api/trpc/auth.refreshSession", headers=headers)
        assert res.status_code == 200
        assert "expiresAt" in res.json()

        token = headers["Authorization"].split(" ", 1)[1]
        db_session.expire_all()
        result = await db_session.execute(select(Session).where(Session.token == token))
        session = result.scalar_one()
        # SQLite hands back naive datetimes
        assert session.expires_at.replace(tzinfo=None) > (session.created_at.replace(tzinfo=None) + timedelta(hours=23))
