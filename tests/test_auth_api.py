"""HTTP tests for registration, login and bearer-token enforcement."""
import uuid
from datetime import timedelta

import pytest

from app.utils.security import create_access_token, decode_access_token

AUTH = "/api/v1/auth"
PROFILE = "/api/v1/profile/"


async def _register(client, email="alice@example.com", password="secret123", name="Alice"):
    return await client.post(
        f"{AUTH}/register",
        json={"email": email, "password": password, "name": name},
    )


class TestRegister:

    @pytest.mark.asyncio
    async def test_register_returns_token_and_user(self, api_client):
        resp = await _register(api_client)

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["user"]["email"] == "alice@example.com"
        assert body["user"]["name"] == "Alice"
        assert body["user"]["isActive"] is True
        assert "passwordHash" not in body["user"]
        assert decode_access_token(body["token"]) == uuid.UUID(body["user"]["id"])

    @pytest.mark.asyncio
    async def test_email_is_normalised(self, api_client):
        resp = await _register(api_client, email="  Alice@Example.COM ")
        assert resp.json()["user"]["email"] == "alice@example.com"

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, api_client):
        await _register(api_client)
        resp = await _register(api_client, email="ALICE@example.com")

        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "detail": "User with this email already exists",
        }

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, api_client):
        resp = await _register(api_client, password="12345")
        assert resp.status_code == 400
        assert "at least 6" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_overlong_password_rejected(self, api_client):
        resp = await _register(api_client, password="x" * 100)
        assert resp.status_code == 400
        assert "at most 72 bytes" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_password_length_counts_utf8_bytes(self, api_client):
        # 40 characters, 80 bytes
        resp = await _register(api_client, password="\u00e9" * 40)
        assert resp.status_code == 400

        ok = await _register(api_client, password="x" * 72)
        assert ok.status_code == 201

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, api_client):
        resp = await _register(api_client, name=" ")
        assert resp.status_code == 400


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_issues_working_token(self, api_client):
        await _register(api_client)
        resp = await api_client.post(
            f"{AUTH}/login",
            json={"email": "alice@example.com", "password": "secret123"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["lastActive"] is not None

        me = await api_client.get(
            PROFILE, headers={"Authorization": f"Bearer {body['token']}"},
        )
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "alice@example.com"

    @pytest.mark.asyncio
    async def test_wrong_password_is_401(self, api_client):
        await _register(api_client)
        resp = await api_client.post(
            f"{AUTH}/login",
            json={"email": "alice@example.com", "password": "wrong-password"},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_overlong_password_is_401(self, api_client):
        await _register(api_client)
        resp = await api_client.post(
            f"{AUTH}/login",
            json={"email": "alice@example.com", "password": "x" * 100},
        )
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_unknown_email_is_401(self, api_client):
        resp = await api_client.post(
            f"{AUTH}/login",
            json={"email": "nobody@example.com", "password": "secret123"},
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_logout(self, api_client):
        resp = await api_client.post(f"{AUTH}/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True


class TestBearerTokens:

    @pytest.mark.asyncio
    async def test_missing_token(self, api_client):
        resp = await api_client.get(PROFILE)
        assert resp.status_code == 401
        assert resp.json()["detail"] == "No token provided"

    @pytest.mark.asyncio
    async def test_garbage_token(self, api_client):
        resp = await api_client.get(PROFILE, headers={"Authorization": "Bearer abc.def"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, api_client, make_user):
        alice = await make_user("Alice")
        token = create_access_token(alice.id, alice.email, expires_delta=timedelta(minutes=-1))
        resp = await api_client.get(PROFILE, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_missing_user(self, api_client):
        token = create_access_token(uuid.uuid4(), "ghost@example.com")
        resp = await api_client.get(PROFILE, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid token - user not found"
