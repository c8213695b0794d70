"""Registration, login and user administration flows."""

import asyncio

import pytest
from sqlalchemy import select

from conftest import DEFAULT_PASSWORD, auth_headers, identity_of
from database import get_db_context
from db.models import Log, Machine, User
from schemas.audit import LogAction
from schemas.security import UserRole
from services.auth_service import AuthService, InvalidTokenError, get_auth_service, reset_auth_service
from services.machine_locks import MachineLockRegistry
from services.user_service import ACCOUNT_INACTIVE, PENDING_APPROVAL, UserService


async def _register(client, role: str | None, email: str, password: str = DEFAULT_PASSWORD):
    payload = {"name": "New User", "email": email, "password": password}
    if role is not None:
        payload["role"] = role
    return await client.post("/api/auth/register", json=payload)


async def _login(client, email: str, password: str = DEFAULT_PASSWORD):
    return await client.post("/api/auth/login", json={"email": email, "password": password})


class TestRegistration:

    @pytest.mark.asyncio
    async def test_viewer_signup_approval_flow(self, client, admin, make_machine):
        """Sign up, get refused while pending, get approved, read but not write."""
        machine = await make_machine()

        resp = await _register(client, "Viewer", "vera@plant.example.com")
        assert resp.status_code == 201
        body = resp.json()
        assert "pending" in body["message"].lower()
        assert body["user"]["approved"] is False
        assert "token" not in body
        user_id = body["user"]["id"]

        resp = await _login(client, "vera@plant.example.com")
        assert resp.status_code == 403
        assert resp.json()["message"] == PENDING_APPROVAL

        resp = await client.post(f"/api/auth/approve/{user_id}", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["user"]["approved"] is True

        resp = await _login(client, "vera@plant.example.com")
        assert resp.status_code == 200
        token = resp.json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        resp = await client.get("/api/machines", headers=headers)
        assert resp.status_code == 200

        resp = await client.post(f"/api/machines/{machine.id}/start", headers=headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_signup_gets_token(self, client):
        resp = await _register(client, "admin", "boss@plant.example.com")
        assert resp.status_code == 201
        body = resp.json()
        assert body["token"]
        assert body["tokenType"] == "bearer"
        assert body["user"]["role"] == "Admin"
        assert body["user"]["approved"] is True

        resp = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"}
        )
        assert resp.status_code == 200
        assert resp.json()["email"] == "boss@plant.example.com"

    @pytest.mark.asyncio
    async def test_unknown_role_registers_viewer(self, client):
        resp = await _register(client, "Overlord", "who@plant.example.com")
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "Viewer"

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, client):
        assert (await _register(client, None, "dup@plant.example.com")).status_code == 201
        resp = await _register(client, None, "DUP@plant.example.com")
        assert resp.status_code == 409
        assert resp.json()["error"] == "DuplicateResource"

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, client):
        resp = await _register(client, None, "short@plant.example.com", password="abc")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_password_hash_never_returned(self, client):
        resp = await _register(client, None, "safe@plant.example.com")
        assert set(resp.json()["user"]) == {
            "id", "name", "email", "role", "approved", "active", "createdAt",
        }


class TestLogin:

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, make_user):
        user = await make_user(UserRole.ENGINEER)
        resp = await _login(client, user.email, "not-the-password")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_unknown_email(self, client):
        resp = await _login(client, "ghost@plant.example.com")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_account(self, client, make_user):
        user = await make_user(UserRole.ENGINEER, active=False)
        resp = await _login(client, user.email)
        assert resp.status_code == 403
        assert resp.json()["message"] == ACCOUNT_INACTIVE

    @pytest.mark.asyncio
    async def test_login_returns_profile(self, client, make_user):
        user = await make_user(UserRole.ENGINEER)
        resp = await _login(client, user.email.upper())
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["id"] == user.id
        assert body["expiresIn"] > 0


class TestAdministration:

    @pytest.mark.asyncio
    async def test_suspend_blocks_existing_token(self, client, admin, engineer):
        engineer_headers = auth_headers(engineer)
        assert (await client.get("/api/machines", headers=engineer_headers)).status_code == 200

        resp = await client.post(f"/api/auth/suspend/{engineer.id}", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["user"]["active"] is False

        resp = await client.get("/api/machines", headers=engineer_headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == ACCOUNT_INACTIVE

        resp = await client.post(f"/api/auth/suspend/{engineer.id}", headers=auth_headers(admin))
        assert resp.status_code == 400

        resp = await client.post(f"/api/auth/reactivate/{engineer.id}", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert (await client.get("/api/machines", headers=engineer_headers)).status_code == 200

    @pytest.mark.asyncio
    async def test_admin_cannot_suspend_self(self, client, admin):
        resp = await client.post(f"/api/auth/suspend/{admin.id}", headers=auth_headers(admin))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_reactivate_active_user(self, client, admin, viewer):
        resp = await client.post(f"/api/auth/reactivate/{viewer.id}", headers=auth_headers(admin))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_reject_pending_only(self, client, admin, make_user):
        pending = await make_user(UserRole.ENGINEER, approved=False)
        approved = await make_user(UserRole.ENGINEER)
        headers = auth_headers(admin)

        resp = await client.get("/api/auth/pending", headers=headers)
        assert [u["id"] for u in resp.json()] == [pending.id]

        resp = await client.post(f"/api/auth/reject/{approved.id}", headers=headers)
        assert resp.status_code == 400

        resp = await client.post(f"/api/auth/reject/{pending.id}", headers=headers)
        assert resp.status_code == 200

        async with get_db_context() as db:
            assert await db.get(User, pending.id) is None

    @pytest.mark.asyncio
    async def test_approve_unknown_user(self, client, admin):
        resp = await client.post("/api/auth/approve/999", headers=auth_headers(admin))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_role_change_releases_machines(self, client, admin, engineer, make_machine):
        machine = await make_machine(assigned_engineer_id=engineer.id)

        resp = await client.post(
            f"/api/auth/role/{engineer.id}", json={"role": "Viewer"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "Viewer"

        async with get_db_context() as db:
            assert (await db.get(Machine, machine.id)).assigned_engineer_id is None
            [log] = (await db.execute(
                select(Log).where(Log.action == LogAction.ROLE_CHANGE)
            )).scalars().all()
        assert log.details == f"userId={engineer.id}, role=Viewer"

    @pytest.mark.asyncio
    async def test_invalid_role_rejected(self, client, admin, viewer):
        resp = await client.post(
            f"/api/auth/role/{viewer.id}", json={"role": "King"}, headers=auth_headers(admin)
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_counts_and_listing(self, client, admin, engineer, viewer, make_user):
        await make_user(UserRole.ENGINEER, approved=False)
        headers = auth_headers(admin)

        resp = await client.get("/api/auth/counts", headers=headers)
        assert resp.json() == {"viewerCount": 1, "engineerCount": 1, "adminCount": 1}

        resp = await client.get("/api/auth/users", params={"role": "Engineer"}, headers=headers)
        assert [u["id"] for u in resp.json()] == [engineer.id]

    @pytest.mark.asyncio
    async def test_user_admin_requires_admin(self, client, engineer, viewer):
        resp = await client.get("/api/auth/pending", headers=auth_headers(engineer))
        assert resp.status_code == 403
        resp = await client.post(f"/api/auth/suspend/{viewer.id}", headers=auth_headers(engineer))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_role_change_waits_for_machine_lock(self, admin, engineer, make_machine):
        machine = await make_machine(assigned_engineer_id=engineer.id)
        locks = MachineLockRegistry()

        async def demote():
            async with get_db_context() as db:
                return await UserService(db, locks=locks).change_role(
                    identity_of(admin), engineer.id, UserRole.VIEWER
                )

        async with locks.hold(machine.id):
            task = asyncio.create_task(demote())
            await asyncio.sleep(0.05)
            assert not task.done()
            async with get_db_context() as db:
                assert (await db.get(Machine, machine.id)).assigned_engineer_id == engineer.id

        user = await task
        assert user.role == UserRole.VIEWER
        async with get_db_context() as db:
            assert (await db.get(Machine, machine.id)).assigned_engineer_id is None


class TestAuthService:

    @pytest.mark.asyncio
    async def test_password_hash_roundtrip(self):
        auth = get_auth_service()
        hashed = await auth.hash_password(DEFAULT_PASSWORD)

        assert hashed != DEFAULT_PASSWORD
        assert await auth.verify_password(DEFAULT_PASSWORD, hashed)
        assert not await auth.verify_password("wrong-password", hashed)

    def test_token_carries_user_and_role(self):
        auth = get_auth_service()
        token = auth.create_access_token(42, UserRole.ENGINEER)

        data = auth.verify_token(token)
        assert data.user_id == 42
        assert data.role == UserRole.ENGINEER

    def test_tampered_token_rejected(self):
        token = get_auth_service().create_access_token(42, UserRole.ADMIN)
        with pytest.raises(InvalidTokenError):
            get_auth_service().verify_token(token[:-4] + "abcd")

    def test_singleton_reset(self):
        first = get_auth_service()
        assert get_auth_service() is first
        reset_auth_service()
        assert isinstance(get_auth_service(), AuthService)
        assert get_auth_service() is not first
