"""Pytest configuration and fixtures for FieldStock tests.

Every test gets its own in-memory SQLite database with the full schema,
a session bound to it, an HTTP client wired to that session, and a set
of actors / locations / items to work with.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RECONCILIATION_ENABLED", "false")

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from app.auth.actor import Actor  # noqa: E402
from app.auth.jwt import create_access_token  # noqa: E402
from app.auth.permissions import resolve_permissions  # noqa: E402
from app.database import Base, build_engine, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import InventoryItem, Location  # noqa: E402
from app.services import stock_ledger  # noqa: E402


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with session_factory() as session:
        yield session

        # Nothing persists past the test
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose requests share the test session.

    Each request runs in a SAVEPOINT so a failed request is rolled back
    the same way get_db() would roll back its transaction.
    """

    async def override_get_db():
        async with db_session.begin_nested():
            yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Actors ───────────────────────────────────────────────────────

def _actor(actor_id: str, name: str, role: str, vehicle_id: str | None = None) -> Actor:
    return Actor(
        id=actor_id,
        name=name,
        email=f"{actor_id}@example.com",
        role=role,
        vehicle_id=vehicle_id,
        permissions=frozenset(resolve_permissions(role)),
    )


@pytest.fixture
def admin() -> Actor:
    return _actor("admin-1", "Alex Admin", "admin")


@pytest.fixture
def manager() -> Actor:
    return _actor("manager-1", "Morgan Manager", "manager")


@pytest.fixture
def technician() -> Actor:
    return _actor("tech-1", "Taylor Tech", "technician", vehicle_id="VAN-1")


def token_for(actor: Actor) -> str:
    return create_access_token(
        actor_id=actor.id,
        name=actor.name,
        role=actor.role,
        permissions=sorted(actor.permissions),
        email=actor.email,
        vehicle_id=actor.vehicle_id,
    )


@pytest.fixture
def auth_headers(admin: Actor) -> dict:
    """Authorization headers for the admin actor."""
    return {"Authorization": f"Bearer {token_for(admin)}"}


@pytest.fixture
def technician_headers(technician: Actor) -> dict:
    return {"Authorization": f"Bearer {token_for(technician)}"}


# ── Test Data Fixtures ───────────────────────────────────────────

async def _location(db: AsyncSession, name: str, type_: str, **kwargs) -> Location:
    location = Location(name=name, type=type_, **kwargs)
    db.add(location)
    await db.flush()
    return location


@pytest_asyncio.fixture
async def warehouse(db_session: AsyncSession) -> Location:
    return await _location(db_session, "Main Warehouse", "warehouse", code="W1")


@pytest_asyncio.fixture
async def van(db_session: AsyncSession) -> Location:
    """Vehicle location for VAN-1 (the technician's vehicle)."""
    return await _location(db_session, "Van 1", "vehicle", vehicle_id="VAN-1")


@pytest_asyncio.fixture
async def other_van(db_session: AsyncSession) -> Location:
    return await _location(db_session, "Van 2", "Vehicle ", vehicle_id="VAN-2")


@pytest_asyncio.fixture
async def supplier(db_session: AsyncSession) -> Location:
    return await _location(db_session, "Acme Supply", "supplier")


@pytest_asyncio.fixture
async def item(db_session: AsyncSession) -> InventoryItem:
    sku = InventoryItem(sku="S1", name="Cat6 Cable 305m", unit="box")
    db_session.add(sku)
    await db_session.flush()
    return sku


@pytest_asyncio.fixture
async def stocked(db_session, admin, item, warehouse) -> InventoryItem:
    """10 units of the item in the main warehouse."""
    await stock_ledger.receive(
        db_session, admin,
        sku_id=item.id, location_id=warehouse.id, quantity=10,
    )
    return item


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP API tests")
    config.addinivalue_line("markers", "integration: Integration tests")
