import itertools

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from backoffice_service.app import models
from backoffice_service.app.reservations import ReservationService, VehicleLocks


plates = itertools.count(1)


def make_engine(path):
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = make_engine(tmp_path / "test.db")
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return VehicleLocks()


@pytest.fixture
def service(db, locks):
    return ReservationService(db, locks)


@pytest.fixture
def make_vehicle(db):
    async def _make(**overrides):
        data = dict(
            name="Ford Transit",
            make="Ford",
            model="Transit",
            year=2021,
            license_plate=f"1AB {next(plates):04d}",
            status=models.VehicleStatus.AVAILABLE,
            rate4h=500.0,
            rate12h=900.0,
            daily_rate=1200.0,
            features=["tow hitch"],
            current_mileage=10000,
            description="",
            dimensions="",
        )
        data.update(overrides)
        vehicle = models.Vehicle(**data)
        db.add(vehicle)
        await db.commit()
        await db.refresh(vehicle)
        return vehicle
    return _make


@pytest.fixture
def make_customer(db):
    async def _make(**overrides):
        data = dict(
            first_name="Jan",
            last_name="Novák",
            email="jan.novak@example.com",
            phone="+420 777 123 456",
            driver_license_number="EF123456",
            address="Vodičkova 1, Praha",
        )
        data.update(overrides)
        customer = models.Customer(**data)
        db.add(customer)
        await db.commit()
        await db.refresh(customer)
        return customer
    return _make


@pytest.fixture
def customer_data():
    return dict(
        first_name="Petra",
        last_name="Svobodová",
        email="petra@example.com",
        phone="+420 602 000 111",
        driver_license_number="XY987654",
        address="Husova 5, Brno",
        driver_license_image_url="https://files.example.com/licenses/abc.png",
    )
