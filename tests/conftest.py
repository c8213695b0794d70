"""Plantwatch — Pytest Configuration & Fixtures.

Provides an isolated testing environment with:
1. A fresh in-memory SQLite database per test (schema created from the ORM).
2. AsyncClient for testing FastAPI endpoints through ASGITransport.
3. Factory fixtures for users, machines and authentication headers.

Usage:
    @pytest.mark.asyncio
    async def test_my_endpoint(client, admin):
        response = await client.get("/api/machines", headers=auth_headers(admin))
        assert response.status_code == 200
"""

import os

# Must be set before any application module reads settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_CREATE_TABLES"] = "true"
os.environ.setdefault("SECURITY_JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ["SECURITY_BCRYPT_ROUNDS"] = "4"
os.environ["SECURITY_RATE_LIMIT_ENABLED"] = "false"
os.environ["SIMULATION_ENABLED"] = "false"

from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import get_settings
from database import get_db_context, init_database, shutdown_database
from db.models import Alert, Machine, User
from schemas.alert import AlertSeverity, AlertType
from schemas.machine import MachineStatus
from schemas.security import Identity, UserRole
from services.auth_service import get_auth_service, reset_auth_service

DEFAULT_PASSWORD = "correct-horse-battery"


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture(autouse=True)
async def database() -> AsyncGenerator[None, None]:
    """Fresh schema for every test.

    The in-memory database lives on the single StaticPool connection, so
    disposing the engine at teardown discards all data.
    """
    get_settings.cache_clear()
    reset_auth_service()
    await init_database(create_tables=True)
    yield
    await shutdown_database()


# =============================================================================
# API Client
# =============================================================================

@pytest.fixture
def app():
    from api_server import create_app

    return create_app()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the app without a network socket."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user() -> Callable[..., Awaitable[User]]:
    """Factory fixture that inserts a user directly into the database."""
    counter = {"n": 0}

    async def _make_user(
        role: UserRole = UserRole.VIEWER,
        *,
        name: str | None = None,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        approved: bool = True,
        active: bool = True,
    ) -> User:
        counter["n"] += 1
        n = counter["n"]
        async with get_db_context() as db:
            user = User(
                name=name or f"{role.value} {n}",
                email=email or f"{role.value.lower()}{n}@plant.example.com",
                password_hash=await get_auth_service().hash_password(password),
                role=role,
                approved=approved,
                active=active,
            )
            db.add(user)
            await db.commit()
            await db.refresh(user)
            return user

    return _make_user


@pytest.fixture
def make_machine() -> Callable[..., Awaitable[Machine]]:
    """Factory fixture that inserts a machine directly into the database."""

    async def _make_machine(
        name: str = "Lathe L1",
        *,
        status: MachineStatus = MachineStatus.IDLE,
        temperature: float = 40.0,
        efficiency: float = 90.0,
        assigned_engineer_id: int | None = None,
        under_maintenance: bool = False,
    ) -> Machine:
        async with get_db_context() as db:
            machine = Machine(
                name=name,
                type="Lathe",
                status=status,
                temperature=temperature,
                efficiency=efficiency,
                assigned_engineer_id=assigned_engineer_id,
                under_maintenance=under_maintenance,
                maintenance_reason="Scheduled" if under_maintenance else None,
            )
            db.add(machine)
            await db.commit()
            await db.refresh(machine)
            return machine

    return _make_machine


@pytest.fixture
def make_alert() -> Callable[..., Awaitable[Alert]]:
    async def _make_alert(
        machine_id: int,
        *,
        type: AlertType = AlertType.OVERHEAT,
        severity: AlertSeverity = AlertSeverity.HIGH,
        resolved: bool = False,
    ) -> Alert:
        async with get_db_context() as db:
            alert = Alert(
                machine_id=machine_id,
                type=type,
                severity=severity,
                message=f"{type.value} alert",
                resolved=resolved,
                acknowledged=False,
            )
            db.add(alert)
            await db.commit()
            await db.refresh(alert)
            return alert

    return _make_alert


@pytest_asyncio.fixture
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN)


@pytest_asyncio.fixture
async def engineer(make_user) -> User:
    return await make_user(UserRole.ENGINEER)


@pytest_asyncio.fixture
async def viewer(make_user) -> User:
    return await make_user(UserRole.VIEWER)


# =============================================================================
# Authentication helpers
# =============================================================================

def auth_headers(user: User) -> dict[str, str]:
    """Bearer headers for ``user``."""
    token = get_auth_service().create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


def identity_of(user: User) -> Identity:
    return Identity.model_validate(user)
