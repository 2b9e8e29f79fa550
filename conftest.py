import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_BACKEND", "cache+memory://")
os.environ.setdefault("REPORT_TIMEZONE", "UTC")

import asyncio
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.deps import build_container, get_container
from app.core.enums import FuelType, OperatorRole
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.station import Station
from app.models.vehicle import Vehicle
from app.utils.dates import utcnow


class RecordingNotifier:
    """Stands in for the Celery-backed dispatcher and remembers what it was given."""

    def __init__(self):
        self.dispatched = []

    def dispatch(self, txn, alert=None):
        self.dispatched.append((txn.id, alert))


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 5},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def container(notifier):
    return build_container(notifier=notifier)


@pytest.fixture
def ledger(container):
    return container.ledger


@pytest.fixture
def analytics(container):
    return container.analytics


@pytest.fixture
def recorder(container):
    return container.recorder


@pytest.fixture
def current_period():
    now = utcnow()
    return now - timedelta(days=1), now + timedelta(days=20)


@pytest.fixture
async def seed(db, ledger, current_period):
    """A petrol car with 60L, a diesel lorry with 200L and three stations."""
    petrol_car = Vehicle(
        registration_number="CAB-1234",
        chassis_number="CH-0001",
        vehicle_type="car",
        fuel_type=FuelType.PETROL,
        engine_capacity=1500,
        owner_ref="owner-1",
    )
    diesel_lorry = Vehicle(
        registration_number="LR-9876",
        chassis_number="CH-0002",
        vehicle_type="lorry",
        fuel_type=FuelType.DIESEL,
        owner_ref="owner-2",
    )
    full_station = Station(name="Colombo Central", registration_number="ST-001", city="Colombo",
                           has_petrol=True, has_diesel=True, active=True)
    diesel_station = Station(name="Kandy Diesel", registration_number="ST-002", city="Kandy",
                             has_petrol=False, has_diesel=True, active=True)
    closed_station = Station(name="Galle Closed", registration_number="ST-003", city="Galle",
                             has_petrol=True, has_diesel=True, active=False)
    db.add_all([petrol_car, diesel_lorry, full_station, diesel_station, closed_station])
    await db.commit()

    start, end = current_period
    await ledger.rollover(db, petrol_car.id, Decimal("60"), start, end)
    await ledger.rollover(db, diesel_lorry.id, Decimal("200"), start, end)

    # ids only: a rollback in the shared session expires the ORM objects
    return SimpleNamespace(
        petrol_car=petrol_car.id,
        diesel_lorry=diesel_lorry.id,
        full_station=full_station.id,
        diesel_station=diesel_station.id,
        closed_station=closed_station.id,
    )


@pytest.fixture
async def client(session_factory, container):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_container] = lambda: container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    return create_access_token("admin_1", OperatorRole.ADMIN)


@pytest.fixture
def operator_token(seed):
    return create_access_token("operator_1", OperatorRole.STATION_OPERATOR, station_id=seed.full_station)


@pytest.fixture
def owner_token():
    return create_access_token("owner-1", OperatorRole.VEHICLE_OWNER)


@pytest.fixture
def expired_token():
    return create_access_token("operator_1", OperatorRole.STATION_OPERATOR, expires_minutes=-60)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "ledger: marks tests related to quota ledger state"
    )
    config.addinivalue_line(
        "markers", "analytics: marks tests related to consumption analytics"
    )
    config.addinivalue_line(
        "markers", "idempotency: marks tests related to idempotency"
    )
    config.addinivalue_line(
        "markers", "webhooks: marks tests related to notification webhooks"
    )


def pytest_collection_modifyitems(config, items):
    for item in items:
        if asyncio.iscoroutinefunction(item.function):
            item.add_marker(pytest.mark.asyncio)


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def operator_headers(operator_token):
    return {"Authorization": f"Bearer {operator_token}"}


@pytest.fixture
def owner_headers(owner_token):
    return {"Authorization": f"Bearer {owner_token}"}


@pytest.fixture
def diesel_operator_headers(seed):
    token = create_access_token("operator_2", OperatorRole.STATION_OPERATOR, station_id=seed.diesel_station)
    return {"Authorization": f"Bearer {token}"}
