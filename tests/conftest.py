"""
Pytest configuration and fixtures for the lifecycle engine tests.

Every test gets its own SQLite database file, seeded with one organization,
three branches (DEL, BOM, PNQ), a vehicle and a customer.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import uuid
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.database import build_engine, build_session_factory, get_db, init_db
from app.models import Branch, Customer, Organization, Vehicle
from app.services.booking_service import BookingService
from app.services.manifest_service import ManifestService
from factories import booking_payload, make_auth, manifest_data


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh database per test"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'freight.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db):
    """Organization, branches, vehicle and customer shared by most tests"""
    org = Organization(id=uuid.uuid4(), name="Acme Roadways", code="ACME")
    delhi = Branch(id=uuid.uuid4(), organization_id=org.id, name="Delhi Hub", code="DEL", city="Delhi")
    mumbai = Branch(id=uuid.uuid4(), organization_id=org.id, name="Mumbai Hub", code="BOM", city="Mumbai")
    pune = Branch(id=uuid.uuid4(), organization_id=org.id, name="Pune Depot", code="PNQ", city="Pune")
    vehicle = Vehicle(
        id=uuid.uuid4(),
        organization_id=org.id,
        branch_id=delhi.id,
        vehicle_number="DL01AB1234",
        vehicle_type="32ft container",
    )
    customer = Customer(
        id=uuid.uuid4(),
        organization_id=org.id,
        branch_id=delhi.id,
        name="Ravi Traders",
        mobile="9876543210",
        address="12 Chandni Chowk, Delhi",
    )
    db.add(org)
    await db.flush()
    db.add_all([delhi, mumbai, pune])
    await db.flush()
    db.add_all([vehicle, customer])
    await db.commit()

    return SimpleNamespace(
        org=org,
        delhi=delhi,
        mumbai=mumbai,
        pune=pune,
        vehicle=vehicle,
        customer=customer,
    )


@pytest.fixture
def admin_auth(seed):
    return make_auth(seed, "admin")


@pytest.fixture
def delhi_auth(seed):
    return make_auth(seed, "branch_manager", seed.delhi)


@pytest.fixture
def mumbai_auth(seed):
    return make_auth(seed, "branch_manager", seed.mumbai)


@pytest.fixture
def pune_auth(seed):
    return make_auth(seed, "branch_manager", seed.pune)


@pytest.fixture
def create_bookings(db, seed, delhi_auth):
    """Factory: create N DEL -> BOM bookings"""
    async def _create(count: int = 1, **overrides):
        service = BookingService(db)
        return [
            await service.create_booking(delhi_auth, booking_payload(seed, **overrides))
            for _ in range(count)
        ]
    return _create


@pytest.fixture
def dispatched_manifest(db, seed, delhi_auth, create_bookings):
    """Factory: DEL -> BOM manifest loaded with N bookings and dispatched"""
    async def _build(count: int = 3):
        bookings = await create_bookings(count)
        service = ManifestService(db)
        manifest = await service.create_manifest(delhi_auth, manifest_data(seed))
        await service.add_bookings(delhi_auth, manifest.id, [b.id for b in bookings])
        manifest = await service.dispatch_manifest(delhi_auth, manifest.id)
        return manifest, bookings
    return _build


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client bound to the per-test database"""
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
